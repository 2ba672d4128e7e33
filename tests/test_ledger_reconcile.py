from __future__ import annotations

import threading
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from receipt_ledger.core.db import SessionLocal
from receipt_ledger.core.errors import ReconciliationFailure
from receipt_ledger.modules.expenses.models import Expense, ExpenseSource, LineItem
from receipt_ledger.modules.expenses.schemas import VoiceExpense
from receipt_ledger.modules.expenses.service import (
    deactivate_expense,
    reconcile_invoice,
    record_manual_expense,
    record_voice_expense,
)
from receipt_ledger.modules.extraction.service import InvoiceResult, LineItemResult

DAY = date(2025, 9, 19)


def _invoice(total, *, vendor=None, currency="USD", items=None):
    if items is None:
        items = [
            LineItemResult(
                description="item", amount=total, currency=currency, quantity=None
            )
        ]
    return InvoiceResult(
        vendor_name=vendor,
        total=total,
        currency=currency,
        invoice_date=DAY,
        items=items,
    )


def _expense_count(**where) -> int:
    with SessionLocal() as session:
        stmt = select(func.count()).select_from(Expense)
        for key, value in where.items():
            stmt = stmt.where(getattr(Expense, key) == value)
        return session.scalar(stmt)


def test_first_reconciliation_creates_expense_with_defaults():
    expense_id = reconcile_invoice(
        user_id=1,
        group_id=2,
        expense_date=DAY,
        invoice=InvoiceResult(
            vendor_name=None,
            total=None,
            currency="USD",
            invoice_date=None,
            items=[LineItemResult(description=None, amount=None, currency="USD", quantity=None)],
        ),
    )

    with SessionLocal() as session:
        expense = session.get(Expense, expense_id)
        assert expense.vendor_name == "Unknown"
        assert expense.total_amount == Decimal("0.00")
        assert expense.currency == "USD"
        assert expense.source == ExpenseSource.INVOICE
        assert expense.is_active is True
        [item] = expense.line_items
        assert item.description == "Unknown Item"
        assert item.amount == Decimal("0.00")
        assert item.quantity == 1.0


def test_same_key_merges_into_single_expense():
    first = reconcile_invoice(
        user_id=1, group_id=2, expense_date=DAY, invoice=_invoice(Decimal("50"), vendor="Cafe")
    )
    second = reconcile_invoice(
        user_id=1,
        group_id=2,
        expense_date=DAY,
        invoice=_invoice(Decimal("30"), vendor="Bakery", currency="EUR"),
    )

    assert first == second
    assert _expense_count(user_id=1, group_id=2, expense_date=DAY) == 1
    with SessionLocal() as session:
        expense = session.get(Expense, first)
        assert expense.total_amount == Decimal("80.00")
        assert expense.currency == "EUR"
        assert expense.vendor_name == "Cafe, Bakery"
        assert [i.amount for i in expense.line_items] == [Decimal("50.00"), Decimal("30.00")]


def test_vendor_join_skips_empty_and_placeholder_sides():
    expense_id = reconcile_invoice(
        user_id=1, group_id=2, expense_date=DAY, invoice=_invoice(Decimal("5"))
    )
    reconcile_invoice(
        user_id=1, group_id=2, expense_date=DAY, invoice=_invoice(Decimal("5"), vendor="Kiosk")
    )
    reconcile_invoice(
        user_id=1, group_id=2, expense_date=DAY, invoice=_invoice(Decimal("5"), vendor="  ")
    )
    with SessionLocal() as session:
        assert session.get(Expense, expense_id).vendor_name == "Kiosk"


def test_different_keys_do_not_merge():
    a = reconcile_invoice(user_id=1, group_id=2, expense_date=DAY, invoice=_invoice(Decimal("1")))
    b = reconcile_invoice(user_id=1, group_id=3, expense_date=DAY, invoice=_invoice(Decimal("1")))
    c = reconcile_invoice(
        user_id=1, group_id=2, expense_date=date(2025, 9, 20), invoice=_invoice(Decimal("1"))
    )
    assert len({a, b, c}) == 3


def test_voice_submissions_never_merge():
    invoice_id = reconcile_invoice(
        user_id=1, group_id=2, expense_date=DAY, invoice=_invoice(Decimal("10"))
    )
    voice_ids = [
        record_voice_expense(
            user_id=1,
            group_id=2,
            voice=VoiceExpense(amount=Decimal("4"), item="tea", merchant="Stall", expense_date=DAY),
        )
        for _ in range(3)
    ]

    assert len(set(voice_ids)) == 3
    assert invoice_id not in voice_ids
    assert _expense_count(user_id=1, group_id=2, expense_date=DAY) == 4
    assert _expense_count(source=ExpenseSource.VOICE) == 3
    with SessionLocal() as session:
        assert session.get(Expense, invoice_id).total_amount == Decimal("10.00")
        voice = session.get(Expense, voice_ids[0])
        assert voice.vendor_name == "Stall"
        assert voice.line_items[0].description == "tea from Stall (Voice Entry)"


def test_voice_without_merchant_uses_placeholder_vendor():
    expense_id = record_voice_expense(
        user_id=1,
        group_id=2,
        voice=VoiceExpense(quantity=2, amount=Decimal("120"), item="milk", currency="INR"),
    )
    with SessionLocal() as session:
        expense = session.get(Expense, expense_id)
        assert expense.vendor_name == "Voice Entry"
        assert expense.currency == "INR"
        assert expense.line_items[0].description == "milk (Voice Entry)"
        assert expense.line_items[0].quantity == 2.0


def test_manual_expense_merges_with_invoice_same_day():
    invoice_id = reconcile_invoice(
        user_id=1, group_id=2, expense_date=DAY, invoice=_invoice(Decimal("20"), vendor="Shop")
    )
    manual_id = record_manual_expense(
        user_id=1,
        group_id=2,
        vendor_name=None,
        item_name="Parking",
        price=Decimal("3.50"),
        currency="€",
        expense_date=DAY,
    )
    assert manual_id == invoice_id
    with SessionLocal() as session:
        expense = session.get(Expense, invoice_id)
        assert expense.total_amount == Decimal("23.50")
        assert expense.currency == "EUR"
        assert expense.vendor_name == "Shop"
        assert expense.line_items[-1].description == "Parking"


def test_manual_expense_validation():
    with pytest.raises(ValueError):
        record_manual_expense(
            user_id=1, group_id=2, vendor_name="x", item_name=" ", price=Decimal("1")
        )
    with pytest.raises(ValueError):
        record_manual_expense(
            user_id=1, group_id=2, vendor_name="x", item_name="pen", price=Decimal("0")
        )
    assert _expense_count() == 0


def test_manual_expense_without_vendor_gets_placeholder():
    expense_id = record_manual_expense(
        user_id=1,
        group_id=2,
        vendor_name="",
        item_name="Pen",
        price=Decimal("2"),
        expense_date=DAY,
    )
    with SessionLocal() as session:
        expense = session.get(Expense, expense_id)
        assert expense.vendor_name == "Manual Entry"
        assert expense.currency == "USD"
        assert expense.source == ExpenseSource.MANUAL


def test_deactivated_expense_no_longer_receives_merges():
    first = reconcile_invoice(user_id=1, group_id=2, expense_date=DAY, invoice=_invoice(Decimal("7")))
    assert deactivate_expense(expense_id=first) is True
    assert deactivate_expense(expense_id=first) is False

    second = reconcile_invoice(
        user_id=1, group_id=2, expense_date=DAY, invoice=_invoice(Decimal("8"))
    )
    assert second != first
    with SessionLocal() as session:
        old = session.get(Expense, first)
        assert old.is_active is False
        assert all(not i.is_active for i in old.line_items)
        assert session.get(Expense, second).total_amount == Decimal("8.00")


def test_failure_rolls_back_expense_and_items(monkeypatch):
    from receipt_ledger.modules.expenses import service as expenses_service

    def _boom(session, *, expense, items):
        raise OperationalError("INSERT INTO expenses_line_item", {}, Exception("disk full"))

    monkeypatch.setattr(expenses_service, "_add_line_items", _boom)

    with pytest.raises(ReconciliationFailure):
        reconcile_invoice(user_id=1, group_id=2, expense_date=DAY, invoice=_invoice(Decimal("9")))

    assert _expense_count() == 0
    with SessionLocal() as session:
        assert session.scalar(select(func.count()).select_from(LineItem)) == 0


def test_concurrent_insert_conflict_retries_as_merge(monkeypatch):
    from receipt_ledger.modules.expenses import service as expenses_service

    existing = reconcile_invoice(
        user_id=1, group_id=2, expense_date=DAY, invoice=_invoice(Decimal("50"))
    )

    real_find = expenses_service.find_active_expense
    calls = {"n": 0}

    def _stale_find(session, **kwargs):
        # First lookup misses, as if another writer inserted after our read.
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return real_find(session, **kwargs)

    monkeypatch.setattr(expenses_service, "find_active_expense", _stale_find)

    merged = reconcile_invoice(
        user_id=1, group_id=2, expense_date=DAY, invoice=_invoice(Decimal("30"))
    )

    assert merged == existing
    assert calls["n"] == 2
    assert _expense_count() == 1
    with SessionLocal() as session:
        expense = session.get(Expense, existing)
        assert expense.total_amount == Decimal("80.00")
        assert len(expense.line_items) == 2


def test_concurrent_merges_for_same_key_keep_both_totals(monkeypatch):
    from receipt_ledger.modules.expenses import service as expenses_service

    seeded = reconcile_invoice(
        user_id=1, group_id=2, expense_date=DAY, invoice=_invoice(Decimal("10"))
    )

    real_find = expenses_service.find_active_expense
    barrier = threading.Barrier(2)
    lock = threading.Lock()
    reads = {"n": 0}

    def _find_then_wait(session, **kwargs):
        found = real_find(session, **kwargs)
        with lock:
            reads["n"] += 1
            hold = reads["n"] <= 2
        if hold:
            # Both writers have read the same total before either one writes.
            barrier.wait(timeout=10)
        return found

    monkeypatch.setattr(expenses_service, "find_active_expense", _find_then_wait)

    results: list[int] = []
    errors: list[Exception] = []

    def _reconcile(total: Decimal) -> None:
        try:
            results.append(
                reconcile_invoice(
                    user_id=1, group_id=2, expense_date=DAY, invoice=_invoice(total)
                )
            )
        except Exception as e:  # noqa: BLE001
            errors.append(e)

    threads = [
        threading.Thread(target=_reconcile, args=(Decimal(total),)) for total in ("50", "30")
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    assert results == [seeded, seeded]
    assert reads["n"] == 3
    assert _expense_count(user_id=1, group_id=2, expense_date=DAY) == 1
    with SessionLocal() as session:
        expense = session.get(Expense, seeded)
        assert expense.total_amount == Decimal("90.00")
        assert sorted(i.amount for i in expense.line_items) == [
            Decimal("10.00"),
            Decimal("30.00"),
            Decimal("50.00"),
        ]
