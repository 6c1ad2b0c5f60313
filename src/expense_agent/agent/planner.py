"""Bounded tool-calling loop that answers questions about expenses."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage, ToolMessage

from expense_agent.agent.answer import extract_answer
from expense_agent.agent.provider import create_chat_model
from expense_agent.agent.registry import ToolRegistry, serialize_tool_output
from expense_agent.config import AgentConfig, ProviderConfig
from expense_agent.obs.tracing import Timer, TraceStore, estimate_token_count
from expense_agent.types import ToolCallRequest, ToolTrace

logger = logging.getLogger(__name__)

REFUSAL_MESSAGE = "I could not complete that. Please rephrase or narrow the question."

_SYSTEM_PROMPT = """
You are an assistant for the Expense Tracker application.
You help users answer questions about their spending, budgeting trends,
and historical expense behavior. If you lack enough context to answer,
respond politely asking for clarification. Keep responses concise.

You have tools to query expenses. Use them to gather data before answering.
Ask for clarification if the question is ambiguous.
""".strip()


@dataclass(slots=True)
class _Conversation:
    rounds: int = 0
    model_calls: int = 0
    outcome: str = "exhausted"
    tool_traces: list[ToolTrace] = field(default_factory=list)


class ExpenseAgent:
    """Answers one question per call through at most `max_rounds` model rounds.

    Each round sends the full exchange to the model. A response without tool
    calls ends the loop; otherwise every requested tool is resolved, in the
    order the model emitted them, before the next round starts. Tool failures
    and unknown tool names become tool-result messages, so only a missing
    provider credential escapes as an exception.
    """

    def __init__(
        self,
        *,
        tool_registry: ToolRegistry,
        provider_config: ProviderConfig | None = None,
        config: AgentConfig | None = None,
        llm: Any | None = None,
        trace_store: TraceStore | None = None,
    ) -> None:
        self.tool_registry = tool_registry
        self.provider_config = provider_config or ProviderConfig()
        self.config = config or AgentConfig()
        self.trace_store = trace_store or TraceStore()
        self.tools = self.tool_registry.as_langchain_tools()
        self._llm = llm
        self._bound_model: Any | None = None

    @property
    def model_configured(self) -> bool:
        return self._llm is not None or self.provider_config.has_credentials

    async def ask(self, question: str) -> str:
        result = await self.invoke(question)
        return result["answer"]

    async def invoke(self, question: str) -> dict[str, Any]:
        """Run one question-answer cycle and persist its trace.

        Returns:
            A payload with the answer, trace id, round and model call counts,
            the outcome (`answered`, `exhausted` or `timeout`) and latency.

        Raises:
            ProviderConfigurationError: no model was injected and the provider
                configuration carries no API key.
        """

        model = self._model()
        conversation = _Conversation()
        with Timer() as timer:
            try:
                answer = await asyncio.wait_for(
                    self._converse(model, question, conversation),
                    timeout=self.config.deadline_seconds,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Question timed out after %.1fs in round %d",
                    self.config.deadline_seconds,
                    conversation.rounds,
                )
                conversation.outcome = "timeout"
                answer = REFUSAL_MESSAGE

        record = self.trace_store.create_record(
            question=question,
            answer=answer,
            outcome=conversation.outcome,
            rounds=conversation.rounds,
            model_calls=conversation.model_calls,
            tool_traces=list(conversation.tool_traces),
            input_tokens=estimate_token_count(question),
            output_tokens=estimate_token_count(answer),
            latency_ms=timer.elapsed_ms,
        )
        logger.info(
            "Answered question trace_id=%s outcome=%s rounds=%d tools=%d latency_ms=%.1f",
            record.trace_id,
            record.outcome,
            record.rounds,
            len(record.tool_traces),
            record.latency_ms,
        )

        return {
            "answer": answer,
            "trace_id": record.trace_id,
            "outcome": record.outcome,
            "rounds": record.rounds,
            "model_calls": record.model_calls,
            "latency_ms": record.latency_ms,
            "latency_target_met": record.latency_ms
            <= (self.config.target_latency_seconds * 1000.0),
        }

    def _model(self) -> Any:
        if self._bound_model is None:
            llm = self._llm if self._llm is not None else create_chat_model(self.provider_config)
            self._bound_model = llm.bind_tools(self.tools)
            self._llm = llm
        return self._bound_model

    async def _converse(
        self, model: Any, question: str, conversation: _Conversation
    ) -> str:
        messages: list[BaseMessage] = [
            SystemMessage(content=_SYSTEM_PROMPT),
            HumanMessage(content=question),
        ]

        for _ in range(self.config.max_rounds):
            conversation.rounds += 1
            conversation.model_calls += 1
            response = await model.ainvoke(messages)

            calls = normalize_tool_calls(response)
            if not calls:
                conversation.outcome = "answered"
                return extract_answer(response)

            # The assistant turn carrying the requests must precede their results.
            messages.append(response)
            for call in calls:
                messages.append(await self._resolve(call, conversation))

        logger.info(
            "No final answer after %d rounds; returning refusal", self.config.max_rounds
        )
        return REFUSAL_MESSAGE

    async def _resolve(self, call: ToolCallRequest, conversation: _Conversation) -> ToolMessage:
        if self.tool_registry.get(call.name) is None:
            logger.warning("Model requested unknown tool %r", call.name)
            content = f'Tool "{call.name}" not found'
            conversation.tool_traces.append(
                ToolTrace(
                    name=call.name,
                    input_payload=call.args,
                    output_preview=content,
                    latency_ms=0.0,
                    error=content,
                )
            )
        elif call.parse_error is not None:
            logger.warning("Malformed arguments for tool %s: %s", call.name, call.parse_error)
            content = f"Tool execution error: {call.parse_error}"
            conversation.tool_traces.append(
                ToolTrace(
                    name=call.name,
                    input_payload={},
                    output_preview=content,
                    latency_ms=0.0,
                    error=call.parse_error,
                )
            )
        else:
            try:
                result = await asyncio.to_thread(
                    self.tool_registry.execute,
                    call.name,
                    call.args,
                    observer=conversation.tool_traces.append,
                )
                content = serialize_tool_output(result)
            except Exception as exc:
                logger.warning("Tool %s failed: %s", call.name, exc)
                content = f"Tool execution error: {exc}"

        return ToolMessage(content=content, tool_call_id=call.id, name=call.name)


def normalize_tool_calls(response: Any) -> list[ToolCallRequest]:
    """Collect the tool-call requests of a model response as plain dict arguments.

    Requests the provider could not parse (`invalid_tool_calls`) are kept so
    each one still receives a tool-result message.
    """

    raw_calls = [
        *(_field(response, "tool_calls") or []),
        *(_field(response, "invalid_tool_calls") or []),
    ]
    calls: list[ToolCallRequest] = []
    for index, raw in enumerate(raw_calls):
        args, parse_error = _parse_arguments(_field(raw, "args"))
        calls.append(
            ToolCallRequest(
                id=str(_field(raw, "id") or f"call_{index}"),
                name=str(_field(raw, "name") or ""),
                args=args,
                parse_error=parse_error,
            )
        )
    return calls


def _parse_arguments(raw: Any) -> tuple[dict[str, Any], str | None]:
    if raw is None or raw == "":
        return {}, None
    if isinstance(raw, dict):
        return dict(raw), None
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            return {}, f"invalid JSON arguments: {exc}"
        if not isinstance(parsed, dict):
            return {}, "arguments must be a JSON object"
        return parsed, None
    return {}, f"unsupported arguments type: {type(raw).__name__}"


def _field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)
