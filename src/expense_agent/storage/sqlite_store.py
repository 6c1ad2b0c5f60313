"""SQLite-backed expense store."""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

from expense_agent.storage.expense_store import ExpenseConflictError
from expense_agent.types import (
    AmountTotals,
    CategoryTotal,
    Expense,
    ExpenseFilter,
    MonthTotal,
    Receipt,
    ensure_utc,
)

logger = logging.getLogger(__name__)

# Fixed-width UTC text keeps lexicographic order equal to chronological order.
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS expenses (
    id TEXT PRIMARY KEY,
    amount REAL NOT NULL CHECK (amount >= 0),
    description TEXT NOT NULL,
    category TEXT NOT NULL,
    date TEXT NOT NULL,
    tags TEXT NOT NULL DEFAULT '[]',
    payment_method TEXT,
    receipt TEXT
)
"""

_COLUMNS = "id, amount, description, category, date, tags, payment_method, receipt"


class SqliteExpenseStore:
    """Expense store persisted in a local SQLite file.

    A connection is opened per operation, so one instance can serve
    concurrent readers from worker threads.
    """

    kind = "sqlite"

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        with self._connect() as conn:
            conn.execute(_SCHEMA)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_expenses_date ON expenses(date)")
            conn.commit()
        logger.info("Opened expense store at %s", self._path)

    def add(self, expense: Expense) -> Expense:
        stored = expense.model_copy(update={"id": expense.id or uuid.uuid4().hex})
        with self._connect() as conn:
            cursor = conn.execute(
                f"INSERT INTO expenses({_COLUMNS}) VALUES(?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(id) DO NOTHING",
                (stored.id, *_row_values(stored)),
            )
            conn.commit()
        if cursor.rowcount == 0:
            raise ExpenseConflictError(f"Expense already exists: {stored.id}")
        return stored

    def get(self, expense_id: str) -> Expense | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM expenses WHERE id = ?", (expense_id,)
            ).fetchone()
        return _row_to_expense(row) if row else None

    def update(self, expense_id: str, expense: Expense) -> Expense | None:
        stored = expense.model_copy(update={"id": expense_id})
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE expenses SET amount = ?, description = ?, category = ?, date = ?, "
                "tags = ?, payment_method = ?, receipt = ? WHERE id = ?",
                (*_row_values(stored), expense_id),
            )
            conn.commit()
        return stored if cursor.rowcount else None

    def delete(self, expense_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM expenses WHERE id = ?", (expense_id,))
            conn.commit()
        return cursor.rowcount > 0

    def list_expenses(self, limit: int | None = None) -> list[Expense]:
        sql = f"SELECT {_COLUMNS} FROM expenses ORDER BY date DESC"
        params: list[Any] = []
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_expense(row) for row in rows]

    def find(self, expense_filter: ExpenseFilter, *, limit: int) -> list[Expense]:
        where, params = _build_where(expense_filter)
        sql = f"SELECT {_COLUMNS} FROM expenses{where} ORDER BY date DESC LIMIT ?"
        with self._connect() as conn:
            rows = conn.execute(sql, [*params, limit]).fetchall()
        return [_row_to_expense(row) for row in rows]

    def totals(self, since: datetime, until: datetime) -> AmountTotals:
        where, params = _build_where(ExpenseFilter(since=since, until=until))
        with self._connect() as conn:
            total, count = conn.execute(
                f"SELECT COALESCE(SUM(amount), 0), COUNT(*) FROM expenses{where}", params
            ).fetchone()
        return AmountTotals(total_amount=float(total), count=int(count))

    def totals_by_category(
        self, since: datetime, until: datetime, *, limit: int
    ) -> list[CategoryTotal]:
        where, params = _build_where(ExpenseFilter(since=since, until=until))
        sql = (
            f"SELECT category, SUM(amount) AS total, COUNT(*) FROM expenses{where} "
            "GROUP BY category ORDER BY total DESC LIMIT ?"
        )
        with self._connect() as conn:
            rows = conn.execute(sql, [*params, limit]).fetchall()
        return [
            CategoryTotal(category=row[0], total_amount=float(row[1]), count=int(row[2]))
            for row in rows
        ]

    def totals_by_month(
        self, since: datetime, until: datetime | None = None
    ) -> list[MonthTotal]:
        where, params = _build_where(ExpenseFilter(since=since, until=until))
        sql = (
            f"SELECT substr(date, 1, 7) AS month, SUM(amount), COUNT(*) FROM expenses{where} "
            "GROUP BY month ORDER BY month ASC"
        )
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [
            MonthTotal(month=row[0], total_amount=float(row[1]), count=int(row[2]))
            for row in rows
        ]

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path)
        conn.create_function("contains_ci", 2, _contains_ci, deterministic=True)
        return conn


def _build_where(expense_filter: ExpenseFilter) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if expense_filter.category is not None:
        clauses.append("category = ?")
        params.append(expense_filter.category)
    if expense_filter.min_amount is not None:
        clauses.append("amount >= ?")
        params.append(expense_filter.min_amount)
    if expense_filter.max_amount is not None:
        clauses.append("amount <= ?")
        params.append(expense_filter.max_amount)
    if expense_filter.since is not None:
        clauses.append("date >= ?")
        params.append(_format_date(expense_filter.since))
    if expense_filter.until is not None:
        clauses.append("date <= ?")
        params.append(_format_date(expense_filter.until))
    if expense_filter.text:
        clauses.append(
            "(contains_ci(description, ?) OR EXISTS "
            "(SELECT 1 FROM json_each(expenses.tags) WHERE contains_ci(json_each.value, ?)))"
        )
        params.extend([expense_filter.text, expense_filter.text])
    if not clauses:
        return "", params
    return " WHERE " + " AND ".join(clauses), params


def _contains_ci(value: str | None, needle: str | None) -> bool:
    if value is None or needle is None:
        return False
    return needle.lower() in value.lower()


def _format_date(value: datetime) -> str:
    return ensure_utc(value).strftime(_DATE_FORMAT)


def _row_to_expense(row: tuple[Any, ...]) -> Expense:
    expense_id, amount, description, category, date, tags, payment_method, receipt = row
    return Expense(
        id=expense_id,
        amount=amount,
        description=description,
        category=category,
        date=ensure_utc(datetime.strptime(date, _DATE_FORMAT)),
        tags=json.loads(tags),
        payment_method=payment_method,
        receipt=Receipt.model_validate_json(receipt) if receipt else None,
    )


def _row_values(expense: Expense) -> tuple[Any, ...]:
    return (
        expense.amount,
        expense.description,
        expense.category,
        _format_date(expense.date),
        json.dumps(expense.tags),
        expense.payment_method,
        expense.receipt.model_dump_json() if expense.receipt else None,
    )
