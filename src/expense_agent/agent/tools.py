"""Read-only expense query tools exposed to the model."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, Field

from expense_agent.agent.registry import ToolName, ToolRegistry, ToolSpec
from expense_agent.storage.expense_store import ExpenseStore
from expense_agent.types import Expense, ExpenseFilter, ensure_utc

Clock = Callable[[], datetime]

TOP_CATEGORY_LIMIT = 10
RECENT_EXPENSE_LIMIT = 5


class SummaryToolInput(BaseModel):
    days: int = Field(default=90, ge=1, le=3650, description="Window size in days, ending now.")


class QueryExpensesToolInput(BaseModel):
    query: str | None = Field(
        default=None, description="Case-insensitive text matched against description or tags."
    )
    category: str | None = Field(default=None, description="Exact category name.")
    min: float | None = Field(default=None, description="Minimum amount, inclusive.")
    max: float | None = Field(default=None, description="Maximum amount, inclusive.")
    since: datetime | None = Field(default=None, description="ISO-8601 start timestamp.")
    until: datetime | None = Field(default=None, description="ISO-8601 end timestamp.")
    limit: int = Field(default=20, ge=1, le=100)


class TrendToolInput(BaseModel):
    months: int = Field(default=12, ge=1, le=60, description="Number of months, including the current one.")


def register_expense_tools(
    registry: ToolRegistry,
    store: ExpenseStore,
    *,
    clock: Clock | None = None,
) -> None:
    """Register the expense query tools.

    Tools:
    - `get_summary`: totals, top categories and recent expenses for a window.
    - `query_expenses`: filtered search, newest first.
    - `trend_by_month`: monthly totals for the last N months.
    """

    now = clock or _utcnow

    def _summary(input_data: SummaryToolInput) -> dict[str, Any]:
        until = ensure_utc(now())
        since = until - timedelta(days=input_data.days)
        totals = store.totals(since, until)
        by_category = store.totals_by_category(since, until, limit=TOP_CATEGORY_LIMIT)
        recent = store.find(
            ExpenseFilter(since=since, until=until), limit=RECENT_EXPENSE_LIMIT
        )
        return {
            "range": {"since": since.isoformat(), "until": until.isoformat()},
            "totalAmount": totals.total_amount,
            "count": totals.count,
            "avgAmount": totals.total_amount / totals.count if totals.count else 0,
            "byCategory": [
                {
                    "category": row.category,
                    "totalAmount": row.total_amount,
                    "count": row.count,
                }
                for row in by_category
            ],
            "recentExpenses": [_expense_view(e) for e in recent],
        }

    def _query(input_data: QueryExpensesToolInput) -> dict[str, Any]:
        expense_filter = ExpenseFilter(
            text=input_data.query or None,
            category=input_data.category or None,
            min_amount=input_data.min,
            max_amount=input_data.max,
            since=input_data.since,
            until=input_data.until,
        )
        items = store.find(expense_filter, limit=input_data.limit)
        return {
            "count": len(items),
            "items": [_expense_view(e, with_tags=True) for e in items],
        }

    def _trend(input_data: TrendToolInput) -> list[dict[str, Any]]:
        since = month_window_start(ensure_utc(now()), input_data.months)
        return [
            {"month": row.month, "totalAmount": row.total_amount, "count": row.count}
            for row in store.totals_by_month(since)
        ]

    registry.register(
        ToolSpec(
            name=ToolName.GET_SUMMARY.value,
            description=(
                "Get spending summary, top categories, and recent expenses "
                "for a time window (days)."
            ),
            args_schema=SummaryToolInput,
            handler=_summary,
            tags=["aggregate"],
        )
    )
    registry.register(
        ToolSpec(
            name=ToolName.QUERY_EXPENSES.value,
            description=(
                "Search expenses by free-text, category, amount range, and date range. "
                "Returns recent matches."
            ),
            args_schema=QueryExpensesToolInput,
            handler=_query,
            tags=["search"],
        )
    )
    registry.register(
        ToolSpec(
            name=ToolName.TREND_BY_MONTH.value,
            description=(
                "Monthly totals for the last N months. "
                "Useful for trend and seasonality questions."
            ),
            args_schema=TrendToolInput,
            handler=_trend,
            tags=["aggregate", "trend"],
        )
    )


def build_expense_tool_registry(
    store: ExpenseStore, *, clock: Clock | None = None
) -> ToolRegistry:
    registry = ToolRegistry()
    register_expense_tools(registry, store, clock=clock)
    return registry


def month_window_start(now: datetime, months: int) -> datetime:
    """First instant of the month `months - 1` months before `now`'s month."""

    index = now.year * 12 + (now.month - 1) - (months - 1)
    year, month = divmod(index, 12)
    return datetime(year, month + 1, 1, tzinfo=timezone.utc)


def _expense_view(expense: Expense, *, with_tags: bool = False) -> dict[str, Any]:
    view: dict[str, Any] = {
        "date": expense.date.isoformat(),
        "amount": expense.amount,
        "category": expense.category,
        "description": expense.description,
    }
    if with_tags:
        view["tags"] = list(expense.tags)
    return view


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
