from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel


class VoiceExpense(BaseModel):
    quantity: float = 1
    amount: Decimal
    item: str
    currency: str = "USD"
    merchant: str | None = None
    expense_date: date | None = None
