"""Expense store interfaces and the in-memory adapter."""

from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime
from threading import Lock
from typing import Protocol

from expense_agent.types import (
    AmountTotals,
    CategoryTotal,
    Expense,
    ExpenseFilter,
    MonthTotal,
    month_key,
)


class ExpenseConflictError(ValueError):
    """Raised when an expense id is already taken."""


class ExpenseStore(Protocol):
    """Minimal expense store contract used by the query tools and the API."""

    def add(self, expense: Expense) -> Expense:
        """Persist an expense and return it with its assigned id.

        Raises:
            ExpenseConflictError: the expense carries an id already stored.
        """

    def get(self, expense_id: str) -> Expense | None:
        """Return the expense with `expense_id`, or None."""

    def update(self, expense_id: str, expense: Expense) -> Expense | None:
        """Replace the stored fields of `expense_id`; None when unknown."""

    def delete(self, expense_id: str) -> bool:
        """Remove `expense_id`; False when it was not stored."""

    def list_expenses(self, limit: int | None = None) -> list[Expense]:
        """Return expenses newest first."""

    def find(self, expense_filter: ExpenseFilter, *, limit: int) -> list[Expense]:
        """Return at most `limit` matching expenses, newest first."""

    def totals(self, since: datetime, until: datetime) -> AmountTotals:
        """Sum and count expenses dated within `[since, until]`."""

    def totals_by_category(
        self, since: datetime, until: datetime, *, limit: int
    ) -> list[CategoryTotal]:
        """Per-category totals within the window, largest total first."""

    def totals_by_month(
        self, since: datetime, until: datetime | None = None
    ) -> list[MonthTotal]:
        """Per-month totals from `since`, in ascending month order."""


class InMemoryExpenseStore:
    """Deterministic expense store used for tests and local prototyping."""

    kind = "memory"

    def __init__(self, expenses: list[Expense] | None = None) -> None:
        self._store: dict[str, Expense] = {}
        self._lock = Lock()
        for expense in expenses or []:
            self.add(expense)

    def add(self, expense: Expense) -> Expense:
        stored = expense.model_copy(update={"id": expense.id or uuid.uuid4().hex})
        with self._lock:
            if stored.id in self._store:
                raise ExpenseConflictError(f"Expense already exists: {stored.id}")
            self._store[stored.id] = stored
        return stored

    def get(self, expense_id: str) -> Expense | None:
        with self._lock:
            return self._store.get(expense_id)

    def update(self, expense_id: str, expense: Expense) -> Expense | None:
        stored = expense.model_copy(update={"id": expense_id})
        with self._lock:
            if expense_id not in self._store:
                return None
            self._store[expense_id] = stored
        return stored

    def delete(self, expense_id: str) -> bool:
        with self._lock:
            return self._store.pop(expense_id, None) is not None

    def list_expenses(self, limit: int | None = None) -> list[Expense]:
        ranked = self._newest_first(self._snapshot())
        return ranked if limit is None else ranked[:limit]

    def find(self, expense_filter: ExpenseFilter, *, limit: int) -> list[Expense]:
        matched = [e for e in self._snapshot() if expense_filter.matches(e)]
        return self._newest_first(matched)[:limit]

    def totals(self, since: datetime, until: datetime) -> AmountTotals:
        window = self._window(since, until)
        return AmountTotals(
            total_amount=sum(e.amount for e in window),
            count=len(window),
        )

    def totals_by_category(
        self, since: datetime, until: datetime, *, limit: int
    ) -> list[CategoryTotal]:
        groups: dict[str, list[float]] = defaultdict(list)
        for expense in self._window(since, until):
            groups[expense.category].append(expense.amount)
        rows = [
            CategoryTotal(category=name, total_amount=sum(amounts), count=len(amounts))
            for name, amounts in groups.items()
        ]
        rows.sort(key=lambda row: row.total_amount, reverse=True)
        return rows[:limit]

    def totals_by_month(
        self, since: datetime, until: datetime | None = None
    ) -> list[MonthTotal]:
        window = ExpenseFilter(since=since, until=until)
        groups: dict[str, list[float]] = defaultdict(list)
        for expense in self._snapshot():
            if window.matches(expense):
                groups[month_key(expense.date)].append(expense.amount)
        return [
            MonthTotal(month=month, total_amount=sum(amounts), count=len(amounts))
            for month, amounts in sorted(groups.items())
        ]

    def _snapshot(self) -> list[Expense]:
        with self._lock:
            return list(self._store.values())

    def _window(self, since: datetime, until: datetime) -> list[Expense]:
        window = ExpenseFilter(since=since, until=until)
        return [e for e in self._snapshot() if window.matches(e)]

    @staticmethod
    def _newest_first(expenses: list[Expense]) -> list[Expense]:
        return sorted(expenses, key=lambda e: e.date, reverse=True)
