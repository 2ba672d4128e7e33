"""
Typed view over the field bag returned by the document analysis provider.

Every lookup returns a value or ``None``; a field that is absent, or present
with a different type than asked for, never raises.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal


@dataclass(frozen=True)
class Missing:
    content: str | None = None


@dataclass(frozen=True)
class StringField:
    value: str | None
    content: str | None = None


@dataclass(frozen=True)
class NumberField:
    value: float | None
    content: str | None = None


@dataclass(frozen=True)
class CurrencyField:
    amount: Decimal | None
    code: str | None = None
    content: str | None = None


@dataclass(frozen=True)
class DateField:
    value: date | None
    content: str | None = None


@dataclass(frozen=True)
class ListField:
    items: tuple[FieldMap, ...] = ()
    content: str | None = None


FieldValue = Missing | StringField | NumberField | CurrencyField | DateField | ListField

MISSING = Missing()


@dataclass(frozen=True)
class FieldMap:
    fields: dict[str, FieldValue] = field(default_factory=dict)

    def __contains__(self, name: object) -> bool:
        return name in self.fields

    def get(self, name: str, default: FieldValue = MISSING) -> FieldValue:
        return self.fields.get(name, default)

    def string(self, name: str) -> str | None:
        value = self.get(name)
        if isinstance(value, StringField) and value.value and value.value.strip():
            return value.value.strip()
        return None

    def number(self, name: str) -> float | None:
        value = self.get(name)
        if isinstance(value, NumberField):
            return value.value
        if isinstance(value, CurrencyField) and value.amount is not None:
            return float(value.amount)
        return None

    def currency(self, name: str) -> CurrencyField | None:
        value = self.get(name)
        return value if isinstance(value, CurrencyField) else None

    def amount(self, name: str) -> Decimal | None:
        value = self.currency(name)
        return value.amount if value else None

    def date(self, name: str) -> date | None:
        value = self.get(name)
        return value.value if isinstance(value, DateField) else None

    def entries(self, name: str) -> tuple[FieldMap, ...]:
        value = self.get(name)
        return value.items if isinstance(value, ListField) else ()
