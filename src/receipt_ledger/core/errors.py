from __future__ import annotations


class PipelineError(RuntimeError):
    pass


class DecodeError(PipelineError):
    """Queue message body is not a valid job message."""


class ExtractionFailure(PipelineError):
    """Document analysis failed or returned nothing usable."""


class ReconciliationFailure(PipelineError):
    """Ledger write failed; the transaction was rolled back."""


class NotificationFailure(PipelineError):
    """Webhook target unreachable or answered with a non-2xx status."""


class QueueError(PipelineError):
    pass
