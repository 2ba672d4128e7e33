from __future__ import annotations

import enum
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, ValidationError
from pydantic.alias_generators import to_pascal

from receipt_ledger.core.errors import DecodeError
from receipt_ledger.modules.extraction.service import InvoiceResult

Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class JobStatus(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_pascal,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class JobMessage(_WireModel):
    job_id: str = Field(min_length=1)
    group_id: int
    user_id: int
    document_uri: str = Field(alias="BlobSasUrl", min_length=1)
    webhook_url: str | None = None
    created_at: datetime | None = None

    def to_body(self) -> str:
        return self.model_dump_json(by_alias=True)


def decode_job(body: str | bytes | None) -> JobMessage:
    if not body or not str(body).strip():
        raise DecodeError("Empty message body")
    try:
        return JobMessage.model_validate_json(body)
    except ValidationError as e:
        raise DecodeError(f"Malformed job message: {e.error_count()} error(s)") from e


class InvoiceItemOut(_WireModel):
    description: str | None = None
    amount: Money | None = None
    currency: str
    quantity: float | None = None


class InvoiceDataOut(_WireModel):
    vendor_name: str | None = None
    invoice_total: Money | None = None
    currency: str
    invoice_date: date | None = None
    items: list[InvoiceItemOut] = Field(default_factory=list)

    @classmethod
    def from_invoice(cls, invoice: InvoiceResult) -> InvoiceDataOut:
        return cls(
            vendor_name=invoice.vendor_name,
            invoice_total=invoice.total,
            currency=invoice.currency,
            invoice_date=invoice.invoice_date,
            items=[
                InvoiceItemOut(
                    description=item.description,
                    amount=item.amount,
                    currency=item.currency,
                    quantity=item.quantity,
                )
                for item in invoice.items
            ],
        )


class WebhookPayload(_WireModel):
    job_id: str
    group_id: int
    user_id: int
    document_uri: str = Field(alias="BlobSasUrl")
    status: JobStatus
    processed_at: datetime
    invoice_data: InvoiceDataOut | None = None
    error: str | None = None

    @classmethod
    def completed(cls, job: JobMessage, invoice: InvoiceResult) -> WebhookPayload:
        return cls(
            job_id=job.job_id,
            group_id=job.group_id,
            user_id=job.user_id,
            document_uri=job.document_uri,
            status=JobStatus.COMPLETED,
            processed_at=datetime.now(UTC),
            invoice_data=InvoiceDataOut.from_invoice(invoice),
        )

    @classmethod
    def failed(cls, job: JobMessage, *, error: str) -> WebhookPayload:
        return cls(
            job_id=job.job_id,
            group_id=job.group_id,
            user_id=job.user_id,
            document_uri=job.document_uri,
            status=JobStatus.FAILED,
            processed_at=datetime.now(UTC),
            error=error,
        )

    def to_json(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True)
        # Completed callbacks carry InvoiceData, failed ones carry Error; never both.
        for key in ("InvoiceData", "Error"):
            if data.get(key) is None:
                data.pop(key, None)
        return data
