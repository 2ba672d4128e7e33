from __future__ import annotations

import json
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from receipt_ledger.core.config import settings
from receipt_ledger.core.currencies import normalize_currency
from receipt_ledger.core.logging import get_logger, log_event, log_exception
from receipt_ledger.core.models import today_utc
from receipt_ledger.modules.expenses.schemas import VoiceExpense

logger = get_logger(__name__)

_EXTRACT_EXPENSE_TOOL: dict[str, Any] = {
    "type": "function",
    "function": {
        "name": "extract_expense",
        "description": (
            "Extract the quantity, total monetary amount, currency, item, merchant/place "
            "and optional date from a free-form expense sentence."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "quantity": {
                    "type": ["number", "null"],
                    "description": (
                        "Number of items bought, the number right before the item name "
                        "('2 liters milk' -> 2). Default 1."
                    ),
                },
                "amount": {
                    "type": "number",
                    "description": (
                        "Money paid, the number next to a currency symbol or word "
                        "('Rs 120' -> 120, '25 dollars' -> 25). Never the quantity."
                    ),
                },
                "currency": {
                    "type": "string",
                    "description": "Currency symbol, word or ISO code ('rupees', '$', 'EUR').",
                },
                "item": {
                    "type": "string",
                    "description": "The specific item bought, never a generic category.",
                },
                "merchant": {
                    "type": ["string", "null"],
                    "description": "Store or place, usually after 'from', 'at' or 'went to'.",
                },
                "date": {
                    "type": ["string", "null"],
                    "description": "Date if mentioned: today, yesterday or a specific date.",
                },
            },
            "required": ["quantity", "amount", "currency", "item"],
        },
    },
}


def voice_ai_available() -> bool:
    return bool(settings.voice_ai_enabled and settings.openai_api_key)


def extract_voice_expense(speech_text: str, *, today: date | None = None) -> VoiceExpense | None:
    """
    Best-effort extraction of a single expense from transcribed speech.

    Returns None when the provider is disabled, unreachable, or answers with
    something that is not a usable `extract_expense` call.
    """
    if not voice_ai_available():
        return None
    text = (speech_text or "").strip()
    if not text:
        return None

    payload = {
        "model": settings.openai_model,
        "temperature": 0,
        "tools": [_EXTRACT_EXPENSE_TOOL],
        "tool_choice": {"type": "function", "function": {"name": "extract_expense"}},
        "messages": [
            {
                "role": "system",
                "content": (
                    "You extract one expense from a spoken purchase description.\n"
                    "QUANTITY is the count before the item name; AMOUNT is the number "
                    "attached to a currency symbol or word.\n"
                    "'2 liters milk for Rs 120' -> quantity=2, amount=120, currency=INR.\n"
                    "The merchant usually follows 'from', 'at' or 'went to'."
                ),
            },
            {"role": "user", "content": text},
        ],
    }
    headers = {
        "Authorization": f"Bearer {settings.openai_api_key}",
        "Content-Type": "application/json",
    }
    url = settings.openai_base_url.rstrip("/") + "/chat/completions"
    try:
        resp = httpx.post(
            url,
            headers=headers,
            json=payload,
            timeout=float(settings.voice_ai_timeout_seconds or 20.0),
            follow_redirects=True,
        )
        resp.raise_for_status()
    except httpx.HTTPError:
        log_exception(logger, "voice.extract.failure", reason="http_error")
        return None

    try:
        message = resp.json()["choices"][0]["message"]
        call = _tool_call(message)
    except (AttributeError, KeyError, IndexError, TypeError, ValueError):
        log_event(logger, "voice.extract.failure", reason="bad_response_shape")
        return None
    if call is None:
        log_event(logger, "voice.extract.failure", reason="no_tool_call")
        return None

    return _to_voice_expense(call, today=today or today_utc())


def _tool_call(message: dict[str, Any]) -> dict[str, Any] | None:
    calls = message.get("tool_calls") or []
    for call in calls:
        fn = call.get("function") or {}
        if fn.get("name") == "extract_expense":
            args = json.loads(fn.get("arguments") or "{}")
            return args if isinstance(args, dict) else None
    # Legacy function_call responses.
    fn = message.get("function_call")
    if isinstance(fn, dict) and fn.get("name") == "extract_expense":
        args = json.loads(fn.get("arguments") or "{}")
        return args if isinstance(args, dict) else None
    return None


def _to_voice_expense(args: dict[str, Any], *, today: date) -> VoiceExpense | None:
    try:
        amount = Decimal(str(args.get("amount")))
    except (InvalidOperation, ValueError):
        log_event(logger, "voice.extract.failure", reason="invalid_amount")
        return None
    item = str(args.get("item") or "").strip()
    if not item or not amount.is_finite():
        log_event(logger, "voice.extract.failure", reason="missing_required_field")
        return None

    quantity = args.get("quantity")
    try:
        quantity = float(quantity) if quantity is not None else 1.0
    except (TypeError, ValueError):
        quantity = 1.0

    merchant = args.get("merchant")
    merchant = str(merchant).strip() if merchant else None

    voice = VoiceExpense(
        quantity=quantity if quantity > 0 else 1.0,
        amount=amount,
        item=item,
        currency=normalize_currency(args.get("currency")),
        merchant=merchant or None,
        expense_date=resolve_spoken_date(args.get("date"), today=today),
    )
    log_event(
        logger,
        "voice.extract.success",
        amount=str(voice.amount),
        currency=voice.currency,
        item=voice.item,
        merchant=voice.merchant,
        expense_date=voice.expense_date.isoformat() if voice.expense_date else None,
    )
    return voice


def resolve_spoken_date(raw: Any, *, today: date) -> date:
    value = str(raw or "").strip().lower()
    if not value or value == "today":
        return today
    if value == "yesterday":
        return today - timedelta(days=1)
    if value == "tomorrow":
        return today + timedelta(days=1)
    for fmt in ("%Y-%m-%d", "%d %B %Y", "%d %b %Y", "%B %d, %Y", "%b %d, %Y", "%m/%d/%Y"):
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return today
