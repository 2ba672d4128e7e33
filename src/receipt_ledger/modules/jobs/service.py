from __future__ import annotations

import uuid
from datetime import UTC, datetime

from receipt_ledger.core.db import SessionLocal
from receipt_ledger.core.logging import get_logger, log_event
from receipt_ledger.core.queue import MessageQueue, get_queue
from receipt_ledger.modules.expenses.service import reconcile_invoice, today_utc
from receipt_ledger.modules.extraction.service import DocumentFieldExtractor, InvoiceResult
from receipt_ledger.modules.identity.service import get_default_currency
from receipt_ledger.modules.jobs.schemas import JobMessage

logger = get_logger(__name__)


def submit_job(
    *,
    user_id: int,
    group_id: int,
    document_uri: str,
    webhook_url: str | None = None,
    queue: MessageQueue | None = None,
) -> str:
    queue = queue or get_queue()
    job = JobMessage(
        job_id=str(uuid.uuid4()),
        group_id=group_id,
        user_id=user_id,
        document_uri=document_uri,
        webhook_url=webhook_url,
        created_at=datetime.now(UTC),
    )
    queue.ensure_queue()
    message_id = queue.send(body=job.to_body())
    log_event(
        logger,
        "job.submitted",
        job_id=job.job_id,
        message_id=message_id,
        user_id=user_id,
        group_id=group_id,
    )
    return job.job_id


def execute_job(
    job: JobMessage, *, extractor: DocumentFieldExtractor
) -> tuple[int, InvoiceResult]:
    """Extract the document and fold it into the ledger; errors propagate to the caller."""
    with SessionLocal() as session:
        fallback_currency = get_default_currency(session, user_id=job.user_id)

    invoice = extractor.extract(job.document_uri, fallback_currency=fallback_currency)
    expense_id = reconcile_invoice(
        user_id=job.user_id,
        group_id=job.group_id,
        expense_date=invoice.invoice_date or today_utc(),
        invoice=invoice,
    )
    return expense_id, invoice
