# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Exception taxonomy for the webhook ingestion path.

Client errors carry the HTTP status and a machine-readable ``reason`` the
controller puts on the wire. Processing errors carry ``retryable`` so the
retry executor can classify them without importing this module's callers.
"""

from typing import List, Optional


# ── Client input errors (4xx, never retried) ──
class WebhookClientError(Exception):
    status_code: int = 400
    reason: str = "bad_request"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class EmptyPayloadError(WebhookClientError):
    status_code = 400
    reason = "empty_body"

    def __init__(self):
        super().__init__("Empty request body")


class PayloadTooLargeError(WebhookClientError):
    status_code = 413
    reason = "payload_too_large"

    def __init__(self, size: int, limit: int):
        super().__init__(f"Request body too large: {size} bytes exceeds limit of {limit} bytes")
        self.size = size
        self.limit = limit


class MalformedPayloadError(WebhookClientError):
    status_code = 400
    reason = "malformed_json"


class SchemaValidationError(WebhookClientError):
    status_code = 422
    reason = "schema_validation_failed"

    def __init__(self, violations: List[str]):
        super().__init__("Invalid webhook payload: " + "; ".join(violations))
        self.violations = list(violations)


# ── Downstream processing errors ──
class ProcessingError(Exception):
    """Failure reported by the downstream alert processor."""

    retryable: bool = True


class TransientProcessingError(ProcessingError):
    retryable = True


class PermanentProcessingError(ProcessingError):
    retryable = False


# ── Terminal failure surfaced by the ingestion pipeline (5xx) ──
class WebhookProcessingError(Exception):
    status_code: int = 500
    reason: str = "processing_failed"

    def __init__(self, failure_kind: str, cause: Optional[BaseException]):
        super().__init__(f"Failed to process webhook ({failure_kind}): {cause}")
        self.failure_kind = failure_kind
        self.cause = cause
