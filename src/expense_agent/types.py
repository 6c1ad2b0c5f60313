"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, field_validator


class Receipt(BaseModel):
    """Metadata of an uploaded receipt file."""

    filename: str
    original_name: str
    mime_type: str
    size: int = Field(ge=0)
    path: str


class ExpenseInput(BaseModel):
    """Expense fields accepted from clients; the store assigns the id."""

    amount: float = Field(ge=0.0)
    description: str = Field(min_length=1)
    category: str = Field(min_length=1)
    date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    tags: list[str] = Field(default_factory=list)
    payment_method: str | None = None
    receipt: Receipt | None = None

    @field_validator("description", "category", "payment_method", mode="before")
    @classmethod
    def _strip_text(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("tags", mode="before")
    @classmethod
    def _strip_tags(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [tag.strip() if isinstance(tag, str) else tag for tag in value]
        return value

    @field_validator("date")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class Expense(ExpenseInput):
    """A single expense record as held by the expense store."""

    id: str | None = None


@dataclass(slots=True)
class ExpenseFilter:
    """Read filter over expenses; absent fields impose no constraint."""

    text: str | None = None
    category: str | None = None
    min_amount: float | None = None
    max_amount: float | None = None
    since: datetime | None = None
    until: datetime | None = None

    def matches(self, expense: Expense) -> bool:
        if self.category is not None and expense.category != self.category:
            return False
        if self.min_amount is not None and expense.amount < self.min_amount:
            return False
        if self.max_amount is not None and expense.amount > self.max_amount:
            return False
        if self.since is not None and expense.date < ensure_utc(self.since):
            return False
        if self.until is not None and expense.date > ensure_utc(self.until):
            return False
        if self.text:
            needle = self.text.lower()
            haystack = [expense.description, *expense.tags]
            if not any(needle in value.lower() for value in haystack):
                return False
        return True


@dataclass(slots=True)
class AmountTotals:
    total_amount: float
    count: int


@dataclass(slots=True)
class CategoryTotal:
    category: str
    total_amount: float
    count: int


@dataclass(slots=True)
class MonthTotal:
    """Aggregate for one calendar month, keyed as YYYY-MM."""

    month: str
    total_amount: float
    count: int


@dataclass(slots=True)
class ToolCallRequest:
    """A tool invocation requested by the model, arguments normalized."""

    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    parse_error: str | None = None


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
    error: str | None = None


def ensure_utc(value: datetime) -> datetime:
    """Return `value` as an aware UTC datetime; naive values are read as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def month_key(value: datetime) -> str:
    value = ensure_utc(value)
    return f"{value.year:04d}-{value.month:02d}"
