from __future__ import annotations

import os

import pytest

# Set env before any receipt_ledger imports (settings/engine are created at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./.receipt_ledger_test.db")
os.environ.setdefault("QUEUE_BACKEND", "local")
os.environ.setdefault("AWS_REGION", "us-east-1")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")


@pytest.fixture(autouse=True)
def _reset_db_and_queue() -> None:
    import receipt_ledger.models  # noqa: F401
    from receipt_ledger.core.db import engine
    from receipt_ledger.core.models import Base

    # Reset queue singleton
    import receipt_ledger.core.queue as queue_mod

    queue_mod._queue = None

    # Reset DB schema
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)

    yield
