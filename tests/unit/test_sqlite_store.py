from datetime import datetime, timedelta, timezone

from expense_agent.storage.sqlite_store import SqliteExpenseStore
from expense_agent.types import Expense, ExpenseFilter, Receipt

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def test_sqlite_store_persists_full_records(tmp_path) -> None:
    path = tmp_path / "expenses.db"
    store = SqliteExpenseStore(path)
    created = store.add(
        Expense(
            amount=12.5,
            description="  Lunch with team ",
            category="Food",
            date=NOW,
            tags=["work", "café"],
            payment_method="cash",
            receipt=Receipt(
                filename="r-1.png",
                original_name="receipt.png",
                mime_type="image/png",
                size=2048,
                path="uploads/r-1.png",
            ),
        )
    )

    reopened = SqliteExpenseStore(path)
    [loaded] = reopened.list_expenses()

    assert created.id
    assert loaded.id == created.id
    assert loaded.description == "Lunch with team"
    assert loaded.tags == ["work", "café"]
    assert loaded.date == NOW
    assert loaded.receipt is not None
    assert loaded.receipt.original_name == "receipt.png"


def test_sqlite_store_orders_and_limits(tmp_path) -> None:
    store = SqliteExpenseStore(tmp_path / "expenses.db")
    for offset in range(5):
        store.add(
            Expense(
                amount=float(offset),
                description=f"item {offset}",
                category="Misc",
                date=NOW - timedelta(days=offset),
            )
        )

    newest = store.list_expenses(limit=2)

    assert [e.description for e in newest] == ["item 0", "item 1"]
    assert len(store.find(ExpenseFilter(), limit=3)) == 3


def test_sqlite_text_match_is_unicode_case_insensitive(tmp_path) -> None:
    store = SqliteExpenseStore(tmp_path / "expenses.db")
    store.add(Expense(amount=3.0, description="Croissant", category="Food", date=NOW, tags=["CAFÉ"]))

    matches = store.find(ExpenseFilter(text="café"), limit=10)

    assert [e.description for e in matches] == ["Croissant"]


def test_sqlite_window_bounds_are_inclusive(tmp_path) -> None:
    store = SqliteExpenseStore(tmp_path / "expenses.db")
    store.add(Expense(amount=10.0, description="edge", category="Misc", date=NOW))

    totals = store.totals(NOW, NOW)

    assert totals.count == 1
    assert totals.total_amount == 10.0
