from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from receipt_ledger.core.models import Base, IntegerPrimaryKey, Timestamped, utcnow


class ExpenseSource(str, enum.Enum):
    INVOICE = "INVOICE"
    MANUAL = "MANUAL"
    VOICE = "VOICE"


_MERGEABLE_ACTIVE = text("is_active AND source <> 'VOICE'")


class Expense(IntegerPrimaryKey, Timestamped, Base):
    __tablename__ = "expenses_expense"
    __table_args__ = (
        Index("ix_expenses_expense_user_date", "user_id", "expense_date"),
        # One active mergeable expense per (user, group, day); voice entries stay separate.
        Index(
            "uq_expenses_expense_active_day",
            "user_id",
            "group_id",
            "expense_date",
            unique=True,
            sqlite_where=_MERGEABLE_ACTIVE,
            postgresql_where=_MERGEABLE_ACTIVE,
        ),
    )

    user_id: Mapped[int] = mapped_column(Integer)
    group_id: Mapped[int] = mapped_column(Integer, index=True)
    expense_date: Mapped[date] = mapped_column(Date)

    vendor_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    source: Mapped[ExpenseSource] = mapped_column(
        Enum(ExpenseSource, native_enum=False, length=16)
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    # Bumped on every write; a merge based on a stale read fails its UPDATE.
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    line_items: Mapped[list[LineItem]] = relationship(
        back_populates="expense", cascade="all, delete-orphan", order_by="LineItem.id"
    )


class LineItem(IntegerPrimaryKey, Base):
    __tablename__ = "expenses_line_item"

    expense_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("expenses_expense.id", ondelete="CASCADE"), index=True
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    quantity: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    expense: Mapped[Expense] = relationship(back_populates="line_items")
