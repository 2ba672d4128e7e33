"""
Alembic model import hook.

Importing this module ensures all SQLAlchemy models are registered on Base.metadata.
"""

from __future__ import annotations

from receipt_ledger.modules.identity.models import User  # noqa: F401

from receipt_ledger.modules.expenses.models import Expense, LineItem  # noqa: F401
