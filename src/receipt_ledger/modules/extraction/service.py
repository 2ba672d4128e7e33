from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from urllib.parse import urlparse

import httpx
from botocore.exceptions import BotoCoreError, ClientError

from receipt_ledger.core.aws import aws_client
from receipt_ledger.core.config import settings
from receipt_ledger.core.currencies import DEFAULT_CURRENCY, infer_from_field
from receipt_ledger.core.errors import ExtractionFailure
from receipt_ledger.core.logging import get_logger, log_event, log_exception, monotonic_ms
from receipt_ledger.modules.extraction.fields import (
    CurrencyField,
    DateField,
    FieldMap,
    FieldValue,
    ListField,
    Missing,
    NumberField,
    StringField,
)

logger = get_logger(__name__)

# Provider field type -> (canonical name, kind)
_SUMMARY_FIELDS: dict[str, tuple[str, str]] = {
    "VENDOR_NAME": ("VendorName", "string"),
    "INVOICE_RECEIPT_DATE": ("InvoiceDate", "date"),
    "TOTAL": ("InvoiceTotal", "currency"),
    "AMOUNT_DUE": ("AmountDue", "currency"),
    "AMOUNT_PAID": ("AmountDue", "currency"),
    "SUBTOTAL": ("SubTotal", "currency"),
    "TAX": ("TotalTax", "currency"),
    "CURRENCY": ("Currency", "string"),
    "CURRENCY_CODE": ("CurrencyCode", "string"),
}

_LINE_ITEM_FIELDS: dict[str, tuple[str, str]] = {
    "ITEM": ("Description", "string"),
    "PRICE": ("Amount", "currency"),
    "UNIT_PRICE": ("UnitPrice", "currency"),
    "QUANTITY": ("Quantity", "number"),
}

CURRENCY_FALLBACK_FIELDS: tuple[str, ...] = ("CurrencyCode", "Currency", "SubTotal", "TotalTax")

_DATE_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d.%m.%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
)


@dataclass(frozen=True)
class LineItemResult:
    description: str | None
    amount: Decimal | None
    currency: str
    quantity: float | None


@dataclass(frozen=True)
class InvoiceResult:
    vendor_name: str | None
    total: Decimal | None
    currency: str
    invoice_date: date | None
    items: list[LineItemResult] = field(default_factory=list)


class DocumentFieldExtractor:
    """Runs invoice analysis on a stored document and maps the result to an `InvoiceResult`."""

    def __init__(self, client: Any | None = None) -> None:
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = aws_client("textract", endpoint_url=settings.textract_endpoint_url)
        return self._client

    def extract(
        self, document_uri: str, *, fallback_currency: str = DEFAULT_CURRENCY
    ) -> InvoiceResult:
        fields = self.analyze(document_uri)
        invoice = map_invoice(fields, fallback_currency=fallback_currency)
        log_event(
            logger,
            "extraction.mapped",
            vendor_name=invoice.vendor_name,
            total=str(invoice.total) if invoice.total is not None else None,
            currency=invoice.currency,
            invoice_date=invoice.invoice_date.isoformat() if invoice.invoice_date else None,
            item_count=len(invoice.items),
        )
        return invoice

    def analyze(self, document_uri: str) -> FieldMap:
        start = time.monotonic()
        document = _document_argument(document_uri)
        try:
            resp = self.client.analyze_expense(Document=document)
        except (ClientError, BotoCoreError) as e:
            log_exception(
                logger,
                "extraction.analyze.failure",
                document_scheme=urlparse(document_uri).scheme,
                duration_ms=monotonic_ms(start),
            )
            raise ExtractionFailure(f"Document analysis failed: {e}") from e

        docs = resp.get("ExpenseDocuments") if isinstance(resp, dict) else None
        if not docs or not isinstance(docs[0], dict):
            log_event(
                logger,
                "extraction.analyze.empty",
                duration_ms=monotonic_ms(start),
            )
            raise ExtractionFailure("Document analysis returned no analyzed document")

        fields = build_field_map(docs[0])
        log_event(
            logger,
            "extraction.analyze.success",
            field_count=len(fields.fields),
            duration_ms=monotonic_ms(start),
        )
        return fields


def map_invoice(fields: FieldMap, *, fallback_currency: str = DEFAULT_CURRENCY) -> InvoiceResult:
    currency = resolve_invoice_currency(fields) or fallback_currency
    total = fields.amount("InvoiceTotal")
    if total is None:
        total = fields.amount("AmountDue")

    items: list[LineItemResult] = []
    for entry in fields.entries("Items"):
        items.append(
            LineItemResult(
                description=entry.string("Description"),
                amount=entry.amount("Amount"),
                currency=_field_currency(entry.get("Amount")) or currency,
                quantity=entry.number("Quantity"),
            )
        )

    return InvoiceResult(
        vendor_name=fields.string("VendorName"),
        total=total,
        currency=currency,
        invoice_date=fields.date("InvoiceDate"),
        items=items,
    )


def resolve_invoice_currency(fields: FieldMap) -> str | None:
    found = _field_currency(fields.get("InvoiceTotal"))
    if found:
        return found
    for name in CURRENCY_FALLBACK_FIELDS:
        found = _field_currency(fields.get(name))
        if found:
            return found
    return None


def _field_currency(value: FieldValue) -> str | None:
    if isinstance(value, CurrencyField):
        return infer_from_field(value.code, value.content)
    if isinstance(value, StringField):
        return infer_from_field(value.value, None)
    return None


def build_field_map(document: dict[str, Any]) -> FieldMap:
    fields: dict[str, FieldValue] = {}
    for raw in document.get("SummaryFields") or []:
        if not isinstance(raw, dict):
            continue
        mapped = _SUMMARY_FIELDS.get(_field_type(raw))
        if mapped is None or mapped[0] in fields:
            continue
        fields[mapped[0]] = _build_field(raw, kind=mapped[1])

    items: list[FieldMap] = []
    for group in document.get("LineItemGroups") or []:
        if not isinstance(group, dict):
            continue
        for line in group.get("LineItems") or []:
            items.append(_build_line_item(line))
    if items:
        fields["Items"] = ListField(items=tuple(items))
    return FieldMap(fields)


def _build_line_item(line: Any) -> FieldMap:
    if not isinstance(line, dict):
        return FieldMap()
    fields: dict[str, FieldValue] = {}
    for raw in line.get("LineItemExpenseFields") or []:
        if not isinstance(raw, dict):
            continue
        mapped = _LINE_ITEM_FIELDS.get(_field_type(raw))
        if mapped is None or mapped[0] in fields:
            continue
        fields[mapped[0]] = _build_field(raw, kind=mapped[1])
    return FieldMap(fields)


def _field_type(raw: dict[str, Any]) -> str:
    type_info = raw.get("Type")
    if not isinstance(type_info, dict):
        return ""
    return str(type_info.get("Text") or "").strip().upper()


def _build_field(raw: dict[str, Any], *, kind: str) -> FieldValue:
    detection = raw.get("ValueDetection")
    text = detection.get("Text") if isinstance(detection, dict) else None
    content = str(text).strip() if text is not None else None
    if not content:
        return Missing(content=content)
    try:
        if kind == "currency":
            currency_info = raw.get("Currency")
            code = currency_info.get("Code") if isinstance(currency_info, dict) else None
            return CurrencyField(
                amount=_parse_decimal_amount(content),
                code=str(code) if code else None,
                content=content,
            )
        if kind == "date":
            return DateField(value=_parse_date_any(content), content=content)
        if kind == "number":
            return NumberField(value=_parse_number(content), content=content)
        return StringField(value=content, content=content)
    except (ArithmeticError, TypeError, ValueError):
        return Missing(content=content)


def _document_argument(document_uri: str) -> dict[str, Any]:
    uri = (document_uri or "").strip()
    parsed = urlparse(uri)
    if parsed.scheme == "s3":
        key = parsed.path.lstrip("/")
        if not parsed.netloc or not key:
            raise ExtractionFailure(f"Invalid S3 document URI: {uri}")
        return {"S3Object": {"Bucket": parsed.netloc, "Name": key}}
    if parsed.scheme in {"http", "https"}:
        return {"Bytes": _download(uri)}
    raise ExtractionFailure(f"Unsupported document URI scheme: {parsed.scheme or 'none'}")


def _download(url: str) -> bytes:
    start = time.monotonic()
    try:
        resp = httpx.get(url, timeout=30.0, follow_redirects=True)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        log_exception(
            logger,
            "extraction.download.failure",
            host=urlparse(url).hostname,
            duration_ms=monotonic_ms(start),
        )
        raise ExtractionFailure(f"Document download failed: {e}") from e
    body = resp.content
    if not body:
        raise ExtractionFailure("Document download returned an empty body")
    log_event(
        logger,
        "extraction.download.success",
        host=urlparse(url).hostname,
        byte_size=len(body),
        duration_ms=monotonic_ms(start),
    )
    return body


def _parse_number(raw: str) -> float | None:
    m = re.search(r"[-+]?[0-9]+(?:[.,][0-9]+)?", raw)
    if not m:
        return None
    return float(m.group(0).replace(",", "."))


def _parse_decimal_amount(raw: str) -> Decimal | None:
    s = str(raw or "").strip()
    if not s:
        return None
    negative = s.startswith("-") or (s.startswith("(") and s.endswith(")"))
    s = s.replace("\u202f", " ").replace("\xa0", " ")
    s = re.sub(r"[^0-9,.' ]", "", s)
    s = s.replace(" ", "").replace("'", "")
    if not s or not any(ch.isdigit() for ch in s):
        return None

    if "," in s and "." in s:
        decimal_sep = "," if s.rfind(",") > s.rfind(".") else "."
        thousands_sep = "." if decimal_sep == "," else ","
        normalized = s.replace(thousands_sep, "").replace(decimal_sep, ".")
    elif "," in s:
        if s.count(",") > 1:
            normalized = s.replace(",", "")
        else:
            idx = s.rfind(",")
            digits_after = len(s) - idx - 1
            if digits_after in {0, 1, 2}:
                normalized = s.replace(",", ".")
            else:
                normalized = s.replace(",", "")
    elif "." in s and s.count(".") > 1:
        normalized = s.replace(".", "")
    else:
        normalized = s

    try:
        amount = Decimal(normalized.strip("."))
    except InvalidOperation:
        return None
    return -amount if negative else amount


def _parse_date_any(s: str | None) -> date | None:
    if not s:
        return None
    raw = " ".join(str(s).split())
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    # 12/31/2025 or 31/12/2025 (prefer month-first when both are valid)
    m = re.fullmatch(r"([0-9]{1,2})[/-]([0-9]{1,2})[/-]([0-9]{2}|[0-9]{4})", raw)
    if m:
        a, b, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
        if year < 100:
            year += 2000
        for month, day in ((a, b), (b, a)):
            try:
                return date(year, month, day)
            except ValueError:
                continue
    return None
