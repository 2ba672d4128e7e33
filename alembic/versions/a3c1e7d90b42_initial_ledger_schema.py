"""initial ledger schema

Revision ID: a3c1e7d90b42
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "a3c1e7d90b42"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_MERGEABLE_ACTIVE = sa.text("is_active AND source <> 'VOICE'")


def upgrade() -> None:
    op.create_table(
        "identity_user",
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("display_name", sa.String(length=200), nullable=True),
        sa.Column("default_currency", sa.String(length=3), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_identity_user_username"), "identity_user", ["username"], unique=True
    )

    op.create_table(
        "expenses_expense",
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("group_id", sa.Integer(), nullable=False),
        sa.Column("expense_date", sa.Date(), nullable=False),
        sa.Column("vendor_name", sa.Text(), nullable=True),
        sa.Column("total_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column(
            "source",
            sa.Enum(
                "INVOICE",
                "MANUAL",
                "VOICE",
                name="expensesource",
                native_enum=False,
                length=16,
            ),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_expenses_expense_group_id"), "expenses_expense", ["group_id"]
    )
    op.create_index(
        "ix_expenses_expense_user_date", "expenses_expense", ["user_id", "expense_date"]
    )
    op.create_index(
        "uq_expenses_expense_active_day",
        "expenses_expense",
        ["user_id", "group_id", "expense_date"],
        unique=True,
        sqlite_where=_MERGEABLE_ACTIVE,
        postgresql_where=_MERGEABLE_ACTIVE,
    )

    op.create_table(
        "expenses_line_item",
        sa.Column("expense_id", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.ForeignKeyConstraint(
            ["expense_id"], ["expenses_expense.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_expenses_line_item_expense_id"), "expenses_line_item", ["expense_id"]
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_expenses_line_item_expense_id"), table_name="expenses_line_item")
    op.drop_table("expenses_line_item")
    op.drop_index("uq_expenses_expense_active_day", table_name="expenses_expense")
    op.drop_index("ix_expenses_expense_user_date", table_name="expenses_expense")
    op.drop_index(op.f("ix_expenses_expense_group_id"), table_name="expenses_expense")
    op.drop_table("expenses_expense")
    op.drop_index(op.f("ix_identity_user_username"), table_name="identity_user")
    op.drop_table("identity_user")
