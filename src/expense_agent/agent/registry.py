"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

import json
from collections.abc import Callable
from enum import Enum
from time import perf_counter
from typing import Any

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict, Field

from expense_agent.types import ToolTrace

ToolObserver = Callable[[ToolTrace], None]


class ToolName(str, Enum):
    """Closed set of tools the expense agent exposes to the model."""

    GET_SUMMARY = "get_summary"
    QUERY_EXPENSES = "query_expenses"
    TREND_BY_MONTH = "trend_by_month"


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[BaseModel], Any]
    tags: list[str] = Field(default_factory=list)

    def invoke(self, payload: dict[str, Any]) -> Any:
        data = self.args_schema.model_validate(payload)
        return self.handler(data)


class ToolRegistry:
    """Stores tool specs and exports LangChain-compatible tool objects."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def get(self, name: str) -> ToolSpec | None:
        """Exact-match lookup; unknown names return None."""
        return self._tools.get(name)

    def execute(
        self,
        name: str,
        payload: dict[str, Any],
        *,
        observer: ToolObserver | None = None,
    ) -> Any:
        spec = self._tools.get(name)
        if spec is None:
            raise KeyError(f"Unknown tool: {name}")
        return self._execute_spec(spec, payload, observer)

    def as_langchain_tools(self) -> list[StructuredTool]:
        tools: list[StructuredTool] = []
        for spec in self._tools.values():
            tools.append(
                StructuredTool.from_function(
                    name=spec.name,
                    description=spec.description,
                    args_schema=spec.args_schema,
                    func=self._build_function(spec),
                )
            )
        return tools

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def _build_function(self, spec: ToolSpec) -> Callable[..., Any]:
        def _callable(**kwargs: Any) -> Any:
            return self._execute_spec(spec, kwargs, None)

        return _callable

    def _execute_spec(
        self,
        spec: ToolSpec,
        payload: dict[str, Any],
        observer: ToolObserver | None,
    ) -> Any:
        start = perf_counter()
        try:
            output = spec.invoke(payload)
        except Exception as exc:
            if observer is not None:
                observer(
                    ToolTrace(
                        name=spec.name,
                        input_payload=payload,
                        output_preview="",
                        latency_ms=(perf_counter() - start) * 1000.0,
                        error=str(exc),
                    )
                )
            raise
        latency_ms = (perf_counter() - start) * 1000.0

        if observer is not None:
            observer(
                ToolTrace(
                    name=spec.name,
                    input_payload=payload,
                    output_preview=serialize_tool_output(output)[:320],
                    latency_ms=latency_ms,
                )
            )
        return output


def serialize_tool_output(output: Any) -> str:
    """Serialize a tool result for a tool-result message."""
    if isinstance(output, str):
        return output
    return json.dumps(output, default=str)
