from __future__ import annotations

import receipt_ledger.models  # noqa: F401
from receipt_ledger.core.config import settings
from receipt_ledger.core.db import engine
from receipt_ledger.core.models import Base


def bootstrap() -> None:
    if settings.environment == "dev" and str(settings.database_url).startswith("sqlite"):
        Base.metadata.create_all(engine)
