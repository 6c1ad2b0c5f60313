import asyncio
import json
import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from expense_agent.agent.planner import REFUSAL_MESSAGE, ExpenseAgent, normalize_tool_calls
from expense_agent.agent.provider import ProviderConfigurationError
from expense_agent.agent.tools import build_expense_tool_registry
from expense_agent.config import AgentConfig, ProviderConfig
from expense_agent.obs.tracing import TraceStore
from expense_agent.storage.expense_store import InMemoryExpenseStore
from expense_agent.types import Expense

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


class ScriptedChatModel:
    """Replays scripted responses; callables receive the message history."""

    def __init__(self, *responses) -> None:
        self._responses = list(responses)
        self.calls: list[list[object]] = []
        self.bound_tools: list[str] = []

    def bind_tools(self, tools):
        self.bound_tools = [tool.name for tool in tools]
        return self

    async def ainvoke(self, messages):
        self.calls.append(list(messages))
        response = self._responses[min(len(self.calls), len(self._responses)) - 1]
        return response(messages) if callable(response) else response


class SlowChatModel(ScriptedChatModel):
    async def ainvoke(self, messages):
        self.calls.append(list(messages))
        await asyncio.sleep(5)
        return AIMessage(content="too late")


class OfflineStore(InMemoryExpenseStore):
    def totals(self, since, until):
        raise RuntimeError("store offline")


def _tool_call(name: str, args, call_id: str = "call-1") -> AIMessage:
    return AIMessage(content="", tool_calls=[{"id": call_id, "name": name, "args": args}])


def _store() -> InMemoryExpenseStore:
    return InMemoryExpenseStore(
        [
            Expense(amount=40.0, description="Groceries", category="Food", date=NOW - timedelta(days=2)),
            Expense(amount=60.0, description="Fuel", category="Transport", date=NOW - timedelta(days=20)),
            Expense(amount=50.0, description="Dinner", category="Food", date=NOW - timedelta(days=60)),
        ]
    )


def _agent(llm, store=None, **config) -> ExpenseAgent:
    return ExpenseAgent(
        tool_registry=build_expense_tool_registry(store or _store(), clock=lambda: NOW),
        provider_config=ProviderConfig(),
        config=AgentConfig(**config),
        llm=llm,
        trace_store=TraceStore(),
    )


def _answer_from_summary(messages) -> AIMessage:
    payload = json.loads(messages[-1].content)
    return AIMessage(
        content=(
            f"You spent {payload['totalAmount']:.2f} across {payload['count']} expenses "
            f"(average {payload['avgAmount']:.2f})."
        )
    )


def test_direct_answer_uses_single_model_call() -> None:
    llm = ScriptedChatModel(AIMessage(content="  Ask me about your spending.  "))
    agent = _agent(llm)

    answer = asyncio.run(agent.ask("Hello?"))

    assert answer == "Ask me about your spending."
    assert len(llm.calls) == 1
    first_call = llm.calls[0]
    assert isinstance(first_call[0], SystemMessage)
    assert isinstance(first_call[1], HumanMessage)
    assert first_call[1].content == "Hello?"
    assert sorted(llm.bound_tools) == ["get_summary", "query_expenses", "trend_by_month"]


def test_summary_question_runs_tool_and_answers_from_result() -> None:
    llm = ScriptedChatModel(_tool_call("get_summary", {"days": 90}), _answer_from_summary)
    agent = _agent(llm)

    result = asyncio.run(agent.invoke("How much did I spend in the last 90 days?"))

    assert result["answer"] == "You spent 150.00 across 3 expenses (average 50.00)."
    assert result["outcome"] == "answered"
    assert result["model_calls"] == 2

    history = llm.calls[1]
    assert [type(message) for message in history] == [SystemMessage, HumanMessage, AIMessage, ToolMessage]
    assert history[2].tool_calls[0]["id"] == "call-1"
    assert history[3].tool_call_id == "call-1"

    trace = agent.trace_store.get(result["trace_id"])
    assert [tool.name for tool in trace.tool_traces] == ["get_summary"]


def test_unknown_tool_is_reported_back_to_the_model() -> None:
    llm = ScriptedChatModel(
        _tool_call("delete_everything", {}),
        AIMessage(content="I can only read your expenses."),
    )
    agent = _agent(llm)

    answer = asyncio.run(agent.ask("Delete all my expenses"))

    assert answer == "I can only read your expenses."
    assert len(llm.calls) == 2
    tool_message = llm.calls[1][-1]
    assert isinstance(tool_message, ToolMessage)
    assert tool_message.content == 'Tool "delete_everything" not found'
    assert tool_message.tool_call_id == "call-1"


def test_round_budget_exhaustion_returns_refusal() -> None:
    llm = ScriptedChatModel(_tool_call("trend_by_month", {"months": 6}))
    agent = _agent(llm)

    result = asyncio.run(agent.invoke("Keep looking"))

    assert result["answer"] == REFUSAL_MESSAGE
    assert result["outcome"] == "exhausted"
    assert len(llm.calls) == 3
    assert result["rounds"] == 3


def test_failing_tool_does_not_abort_the_round() -> None:
    llm = ScriptedChatModel(
        AIMessage(
            content="",
            tool_calls=[
                {"id": "call-1", "name": "get_summary", "args": {"days": 30}},
                {"id": "call-2", "name": "trend_by_month", "args": {"months": 3}},
            ],
        ),
        AIMessage(content="Your summary is unavailable, but the trend is steady."),
    )
    agent = _agent(llm, store=OfflineStore(_store().list_expenses()))

    answer = asyncio.run(agent.ask("How am I doing?"))

    assert answer == "Your summary is unavailable, but the trend is steady."
    summary_message, trend_message = llm.calls[1][-2:]
    assert summary_message.tool_call_id == "call-1"
    assert summary_message.content == "Tool execution error: store offline"
    assert trend_message.tool_call_id == "call-2"
    assert [row["month"] for row in json.loads(trend_message.content)] == ["2026-01", "2026-02", "2026-03"]


def test_invalid_arguments_become_tool_errors() -> None:
    llm = ScriptedChatModel(
        _tool_call("get_summary", {"days": 0}),
        AIMessage(content="Please give a positive number of days."),
    )
    agent = _agent(llm)

    answer = asyncio.run(agent.ask("Spending over the last 0 days?"))

    assert answer == "Please give a positive number of days."
    assert llm.calls[1][-1].content.startswith("Tool execution error:")


def test_serialized_arguments_are_parsed_before_dispatch() -> None:
    llm = ScriptedChatModel(
        SimpleNamespace(
            content="",
            tool_calls=[{"id": "call-7", "name": "get_summary", "args": '{"days": 30}'}],
        ),
        _answer_from_summary,
    )
    agent = _agent(llm)

    answer = asyncio.run(agent.ask("Last 30 days?"))

    assert answer == "You spent 100.00 across 2 expenses (average 50.00)."


def test_malformed_arguments_are_answered_not_raised() -> None:
    llm = ScriptedChatModel(
        AIMessage(
            content="",
            invalid_tool_calls=[
                {"id": "call-9", "name": "get_summary", "args": '{"days": ', "error": None}
            ],
        ),
        AIMessage(content="Could you rephrase?"),
    )
    agent = _agent(llm)

    answer = asyncio.run(agent.ask("Summary please"))

    assert answer == "Could you rephrase?"
    tool_message = llm.calls[1][-1]
    assert tool_message.tool_call_id == "call-9"
    assert tool_message.content.startswith("Tool execution error: invalid JSON arguments")


def test_missing_credentials_raise_before_any_model_call() -> None:
    agent = ExpenseAgent(
        tool_registry=build_expense_tool_registry(_store()),
        provider_config=ProviderConfig(api_key=None),
    )

    assert not agent.model_configured
    with pytest.raises(ProviderConfigurationError):
        asyncio.run(agent.ask("How much did I spend?"))
    assert agent.trace_store.list_recent() == []


def test_deadline_maps_to_refusal() -> None:
    llm = SlowChatModel()
    agent = _agent(llm, deadline_seconds=0.05)

    result = asyncio.run(agent.invoke("Slow question"))

    assert result["answer"] == REFUSAL_MESSAGE
    assert result["outcome"] == "timeout"
    assert len(llm.calls) == 1


def test_empty_question_is_forwarded_to_the_model() -> None:
    llm = ScriptedChatModel(AIMessage(content="What would you like to know?"))

    answer = asyncio.run(_agent(llm).ask(""))

    assert answer == "What would you like to know?"
    assert llm.calls[0][1].content == ""


def test_normalize_tool_calls_keeps_emitted_order() -> None:
    response = AIMessage(
        content="",
        tool_calls=[
            {"id": "a", "name": "trend_by_month", "args": {"months": 2}},
            {"id": "b", "name": "get_summary", "args": {}},
        ],
    )

    calls = normalize_tool_calls(response)

    assert [(call.id, call.name) for call in calls] == [("a", "trend_by_month"), ("b", "get_summary")]
    assert calls[0].args == {"months": 2}
    assert normalize_tool_calls(AIMessage(content="done")) == []


class SlowStore(InMemoryExpenseStore):
    def totals(self, since, until):
        time.sleep(0.3)
        return super().totals(since, until)


def test_recorded_trace_is_not_changed_by_late_tool_results() -> None:
    llm = ScriptedChatModel(_tool_call("get_summary", {"days": 90}), AIMessage(content="done"))
    agent = _agent(llm, store=SlowStore(_store().list_expenses()), deadline_seconds=0.05)

    # asyncio.run waits for the worker thread, so the tool finishes before it returns.
    result = asyncio.run(agent.invoke("How much did I spend?"))

    assert result["outcome"] == "timeout"
    assert agent.trace_store.get(result["trace_id"]).tool_traces == []
