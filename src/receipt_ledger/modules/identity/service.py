from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from receipt_ledger.core.config import settings
from receipt_ledger.core.currencies import is_known_currency
from receipt_ledger.modules.identity.models import User


def get_default_currency(session: Session, *, user_id: int) -> str:
    currency = session.scalar(select(User.default_currency).where(User.id == user_id))
    if currency and is_known_currency(currency):
        return currency.strip().upper()
    return settings.default_currency
