from __future__ import annotations

import time
from collections.abc import Iterable
from datetime import date
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from receipt_ledger.core.currencies import DEFAULT_CURRENCY, normalize_currency
from receipt_ledger.core.db import session_scope
from receipt_ledger.core.errors import ReconciliationFailure
from receipt_ledger.core.logging import get_logger, log_event, log_exception, monotonic_ms
from receipt_ledger.core.models import today_utc, utcnow
from receipt_ledger.modules.expenses.models import Expense, ExpenseSource, LineItem
from receipt_ledger.modules.expenses.schemas import VoiceExpense
from receipt_ledger.modules.extraction.service import InvoiceResult, LineItemResult

logger = get_logger(__name__)

UNKNOWN_VENDOR = "Unknown"
MANUAL_VENDOR = "Manual Entry"
VOICE_VENDOR = "Voice Entry"
UNKNOWN_ITEM = "Unknown Item"
_PLACEHOLDER_VENDORS = frozenset({UNKNOWN_VENDOR, MANUAL_VENDOR, VOICE_VENDOR})

_CENTS = Decimal("0.01")
# A concurrent write for the same key surfaces as a unique-index violation (two
# inserts) or a stale version (two merges); the next attempt re-reads the row the
# other writer committed and merges into it.
_MAX_ATTEMPTS = 3


def reconcile_invoice(
    *,
    user_id: int,
    group_id: int,
    expense_date: date,
    invoice: InvoiceResult,
    source: ExpenseSource = ExpenseSource.INVOICE,
    vendor_placeholder: str = UNKNOWN_VENDOR,
) -> int:
    """
    Fold an invoice into the ledger and return the expense id.

    Invoice and manual submissions merge into the active expense for
    (user, group, day); voice submissions always get a fresh expense. The
    expense write and the line-item inserts commit together or not at all.
    """
    merge = source != ExpenseSource.VOICE
    start = time.monotonic()
    for attempt in range(1, _MAX_ATTEMPTS + 1):
        try:
            with session_scope() as session:
                expense, merged = _write_expense(
                    session,
                    user_id=user_id,
                    group_id=group_id,
                    expense_date=expense_date,
                    vendor_name=invoice.vendor_name,
                    total=invoice.total,
                    currency=invoice.currency,
                    source=source,
                    vendor_placeholder=vendor_placeholder,
                    merge=merge,
                )
                _add_line_items(session, expense=expense, items=invoice.items)
                session.flush()
                expense_id = expense.id
                total_amount = expense.total_amount
        except (IntegrityError, StaleDataError) as e:
            if merge and attempt < _MAX_ATTEMPTS:
                log_event(
                    logger,
                    "ledger.reconcile.retry",
                    user_id=user_id,
                    group_id=group_id,
                    expense_date=expense_date.isoformat(),
                    attempt=attempt,
                    conflict=type(e).__name__,
                )
                continue
            log_exception(
                logger,
                "ledger.reconcile.failure",
                user_id=user_id,
                group_id=group_id,
                expense_date=expense_date.isoformat(),
                duration_ms=monotonic_ms(start),
            )
            raise ReconciliationFailure(f"Ledger write conflict: {e}") from e
        except SQLAlchemyError as e:
            log_exception(
                logger,
                "ledger.reconcile.failure",
                user_id=user_id,
                group_id=group_id,
                expense_date=expense_date.isoformat(),
                duration_ms=monotonic_ms(start),
            )
            raise ReconciliationFailure(f"Ledger write failed: {e}") from e

        log_event(
            logger,
            "ledger.reconcile.success",
            expense_id=expense_id,
            user_id=user_id,
            group_id=group_id,
            expense_date=expense_date.isoformat(),
            source=source.value,
            merged=merged,
            item_count=len(invoice.items),
            total_amount=str(total_amount),
            duration_ms=monotonic_ms(start),
        )
        return expense_id
    raise AssertionError("unreachable")  # pragma: no cover


def record_manual_expense(
    *,
    user_id: int,
    group_id: int,
    vendor_name: str | None,
    item_name: str,
    price: Decimal,
    currency: str | None = None,
    expense_date: date | None = None,
) -> int:
    item_name = (item_name or "").strip()
    if not item_name:
        raise ValueError("Item name is required")
    if price is None or price <= 0:
        raise ValueError("Price must be positive")

    code = normalize_currency(currency) if currency and currency.strip() else DEFAULT_CURRENCY
    invoice = InvoiceResult(
        vendor_name=(vendor_name or "").strip() or None,
        total=price,
        currency=code,
        invoice_date=expense_date,
        items=[LineItemResult(description=item_name, amount=price, currency=code, quantity=1)],
    )
    return reconcile_invoice(
        user_id=user_id,
        group_id=group_id,
        expense_date=expense_date or today_utc(),
        invoice=invoice,
        source=ExpenseSource.MANUAL,
        vendor_placeholder=MANUAL_VENDOR,
    )


def record_voice_expense(*, user_id: int, group_id: int, voice: VoiceExpense) -> int:
    item = (voice.item or "").strip()
    if not item:
        raise ValueError("Could not extract a valid item description")
    if voice.amount is None or voice.amount <= 0:
        raise ValueError("Could not extract a valid amount")

    merchant = (voice.merchant or "").strip() or None
    description = item + (f" from {merchant}" if merchant else "") + " (Voice Entry)"
    invoice = InvoiceResult(
        vendor_name=merchant,
        total=voice.amount,
        currency=voice.currency,
        invoice_date=voice.expense_date,
        items=[
            LineItemResult(
                description=description,
                amount=voice.amount,
                currency=voice.currency,
                quantity=voice.quantity,
            )
        ],
    )
    return reconcile_invoice(
        user_id=user_id,
        group_id=group_id,
        expense_date=voice.expense_date or today_utc(),
        invoice=invoice,
        source=ExpenseSource.VOICE,
        vendor_placeholder=VOICE_VENDOR,
    )


def deactivate_expense(*, expense_id: int) -> bool:
    with session_scope() as session:
        expense = session.get(Expense, expense_id, with_for_update=True)
        if not expense or not expense.is_active:
            return False
        expense.is_active = False
        expense.updated_at = utcnow()
        session.execute(
            update(LineItem).where(LineItem.expense_id == expense_id).values(is_active=False)
        )
    log_event(logger, "ledger.expense.deactivated", expense_id=expense_id)
    return True


def find_active_expense(
    session: Session, *, user_id: int, group_id: int, expense_date: date
) -> Expense | None:
    return session.scalar(
        select(Expense)
        .where(
            Expense.user_id == user_id,
            Expense.group_id == group_id,
            Expense.expense_date == expense_date,
            Expense.is_active.is_(True),
            Expense.source != ExpenseSource.VOICE,
        )
        .with_for_update()
    )


def _write_expense(
    session: Session,
    *,
    user_id: int,
    group_id: int,
    expense_date: date,
    vendor_name: str | None,
    total: Decimal | None,
    currency: str | None,
    source: ExpenseSource,
    vendor_placeholder: str,
    merge: bool,
) -> tuple[Expense, bool]:
    delta = _money(total)
    existing = (
        find_active_expense(
            session, user_id=user_id, group_id=group_id, expense_date=expense_date
        )
        if merge
        else None
    )
    if existing:
        existing.total_amount = _money(existing.total_amount) + delta
        if currency:
            existing.currency = currency
        existing.vendor_name = _join_vendors(existing.vendor_name, vendor_name)
        existing.updated_at = utcnow()
        return existing, True

    expense = Expense(
        user_id=user_id,
        group_id=group_id,
        expense_date=expense_date,
        vendor_name=(vendor_name or "").strip() or vendor_placeholder,
        total_amount=delta,
        currency=currency or DEFAULT_CURRENCY,
        source=source,
        is_active=True,
    )
    session.add(expense)
    # Flush to obtain the surrogate id before line items reference it.
    session.flush()
    return expense, False


def _add_line_items(
    session: Session, *, expense: Expense, items: Iterable[LineItemResult]
) -> None:
    for item in items:
        session.add(
            LineItem(
                expense_id=expense.id,
                description=(item.description or "").strip() or UNKNOWN_ITEM,
                amount=_money(item.amount),
                currency=item.currency or expense.currency,
                quantity=item.quantity if item.quantity is not None else 1.0,
                is_active=True,
            )
        )


def _join_vendors(current: str | None, incoming: str | None) -> str | None:
    sides = (None if current in _PLACEHOLDER_VENDORS else current, incoming)
    parts = [p.strip() for p in sides if p and p.strip()]
    if not parts:
        return current
    return ", ".join(parts)


def _money(value: Decimal | None) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(value).quantize(_CENTS)
