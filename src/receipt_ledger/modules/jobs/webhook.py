from __future__ import annotations

import time
from typing import Any
from urllib.parse import urlparse

import httpx

from receipt_ledger.core.config import settings
from receipt_ledger.core.errors import NotificationFailure
from receipt_ledger.core.logging import get_logger, log_event, log_exception, monotonic_ms

logger = get_logger(__name__)


def notify(url: str, payload: dict[str, Any]) -> None:
    """
    Fire-and-forget POST of a job outcome.

    One attempt; delivery failures are logged and swallowed.
    """
    start = time.monotonic()
    host = urlparse(url).hostname
    try:
        status_code = _post(url, payload)
    except NotificationFailure:
        log_exception(
            logger,
            "webhook.post.failure",
            host=host,
            job_status=payload.get("Status"),
            duration_ms=monotonic_ms(start),
        )
        return
    log_event(
        logger,
        "webhook.post.success",
        host=host,
        job_status=payload.get("Status"),
        status_code=status_code,
        duration_ms=monotonic_ms(start),
    )


def _post(url: str, payload: dict[str, Any]) -> int:
    try:
        resp = httpx.post(
            url,
            json=payload,
            timeout=float(settings.webhook_timeout_seconds or 10.0),
        )
    except Exception as e:  # noqa: BLE001
        raise NotificationFailure(f"Webhook unreachable: {type(e).__name__}") from e
    if not resp.is_success:
        raise NotificationFailure(f"Webhook answered HTTP {resp.status_code}")
    return resp.status_code
