"""FastAPI entrypoint for ask/expense/trace endpoints."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from expense_agent.agent.planner import ExpenseAgent
from expense_agent.agent.provider import ProviderConfigurationError
from expense_agent.agent.tools import build_expense_tool_registry
from expense_agent.config import AgentConfig, ProviderConfig, StoreConfig
from expense_agent.obs.tracing import TraceStore
from expense_agent.storage.expense_store import (
    ExpenseConflictError,
    ExpenseStore,
    InMemoryExpenseStore,
)
from expense_agent.storage.sqlite_store import SqliteExpenseStore
from expense_agent.types import Expense, ExpenseInput

load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _create_store(config: StoreConfig) -> ExpenseStore:
    if config.sqlite_path:
        return SqliteExpenseStore(config.sqlite_path)
    return InMemoryExpenseStore()


class AskRequest(BaseModel):
    question: str = Field(min_length=1, max_length=500)


class AskResponse(BaseModel):
    answer: str


app = FastAPI(title="Expense Agent", version="0.1.0")

_store = _create_store(StoreConfig.from_env())
_trace_store = TraceStore()
_agent = ExpenseAgent(
    tool_registry=build_expense_tool_registry(_store),
    provider_config=ProviderConfig.from_env(),
    config=AgentConfig(),
    trace_store=_trace_store,
)


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "llm_configured": _agent.model_configured,
        "store": getattr(_store, "kind", type(_store).__name__),
        "tools": {spec.name: spec.tags for spec in _agent.tool_registry.specs()},
    }


@app.post("/ask", response_model=AskResponse)
async def ask(request: AskRequest) -> AskResponse:
    try:
        answer = await _agent.ask(request.question)
    except ProviderConfigurationError as exc:
        logger.error("Model provider is not configured: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Failed to answer question")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return AskResponse(answer=answer)


@app.post("/expenses", status_code=201)
def create_expense(data: ExpenseInput) -> Expense:
    try:
        return _store.add(Expense(**data.model_dump()))
    except ExpenseConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.get("/expenses")
def list_expenses(limit: int | None = Query(default=None, ge=1)) -> list[Expense]:
    return _store.list_expenses(limit=limit)


@app.get("/expenses/{expense_id}")
def get_expense(expense_id: str) -> Expense:
    expense = _store.get(expense_id)
    if expense is None:
        raise HTTPException(status_code=404, detail=f"Expense not found: {expense_id}")
    return expense


@app.put("/expenses/{expense_id}")
def update_expense(expense_id: str, data: ExpenseInput) -> Expense:
    expense = _store.update(expense_id, Expense(**data.model_dump()))
    if expense is None:
        raise HTTPException(status_code=404, detail=f"Expense not found: {expense_id}")
    return expense


@app.delete("/expenses/{expense_id}", status_code=204)
def delete_expense(expense_id: str) -> None:
    if not _store.delete(expense_id):
        raise HTTPException(status_code=404, detail=f"Expense not found: {expense_id}")


@app.get("/traces")
def traces(limit: int = 20) -> dict[str, Any]:
    records = [asdict(record) for record in _trace_store.list_recent(limit=limit)]
    return {"items": records}


@app.get("/traces/{trace_id}")
def trace_detail(trace_id: str) -> dict[str, Any]:
    try:
        record = _trace_store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(record)


@app.get("/metrics")
def metrics() -> dict[str, Any]:
    return _trace_store.summary()
