# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Service: the webhook ingestion pipeline.

    received ─► validated ─► deduplicated ─┬─(hit)──► succeeded
                                           └─(miss)─► processing ─► succeeded | failed

Processing runs the downstream call through retry(circuit_breaker(processor)).
The idempotency key is recorded only after processing succeeded, so a failed
delivery can simply be sent again.
"""

from dataclasses import dataclass
from typing import Any, Optional, Protocol

from alertgate.core.exceptions import (
    EmptyPayloadError,
    PayloadTooLargeError,
    WebhookClientError,
    WebhookProcessingError,
)
from alertgate.core.logging import get_logger
from alertgate.metrics import IDEMPOTENCY_HITS, WEBHOOK_PROCESSING, WEBHOOK_REQUESTS
from alertgate.schemas import AlertmanagerWebhook
from alertgate.services.circuit_breaker import CircuitBreaker, CircuitOpenError
from alertgate.services.idempotency import WebhookIdempotencyManager
from alertgate.services.retry import (
    CancellationToken,
    RetryCancelledError,
    RetryExecutor,
    RetryExhaustedError,
)
from alertgate.services.validator import WebhookValidator

logger = get_logger(__name__)


class WebhookProcessor(Protocol):
    def process_webhook(self, webhook: AlertmanagerWebhook) -> Any:
        ...


@dataclass(frozen=True)
class IngestionResult:
    fingerprint: str
    duplicate: bool
    alerts_count: int
    status: str

    @property
    def message(self) -> str:
        if self.duplicate:
            return "Duplicate request processed successfully"
        return "Webhook processed successfully"


def classify_failure(error: BaseException) -> str:
    """Diagnostic label for a processing failure; clients only ever see a 500."""
    if isinstance(error, RetryCancelledError):
        return "cancelled"
    if isinstance(error, RetryExhaustedError):
        if isinstance(error.last_error, CircuitOpenError):
            return "circuit_open"
        return "attempts_exhausted"
    if isinstance(error, CircuitOpenError):
        return "circuit_open"
    return "non_retryable"


class WebhookService:
    """Validate, deduplicate and reliably hand off Alertmanager webhooks."""

    def __init__(
        self,
        validator: WebhookValidator,
        idempotency: WebhookIdempotencyManager,
        retry_executor: RetryExecutor,
        circuit_breaker: CircuitBreaker,
        processor: WebhookProcessor,
        max_body_bytes: int,
    ):
        self._validator = validator
        self._idempotency = idempotency
        self._retry = retry_executor
        self._breaker = circuit_breaker
        self._processor = processor
        self._max_body_bytes = max_body_bytes

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def idempotency(self) -> WebhookIdempotencyManager:
        return self._idempotency

    def record_rejection(self, exc: WebhookClientError):
        """Count and log a delivery refused for bad input.

        Also called by the HTTP layer for bodies it refuses before ``ingest``.
        """
        WEBHOOK_REQUESTS.labels(outcome="rejected").inc()
        logger.warning(
            "Webhook rejected reason=%s: %s", exc.reason, exc.message,
            extra={"context": {"reason": exc.reason, "status_code": exc.status_code}},
        )

    def ingest(self, body: bytes, cancel: Optional[CancellationToken] = None) -> IngestionResult:
        """Run one delivery through the pipeline.

        Raises WebhookClientError subclasses for bad input and
        WebhookProcessingError when the hand-off ultimately failed.
        """
        with WEBHOOK_PROCESSING.time():
            try:
                result = self._ingest(body, cancel)
            except WebhookClientError as exc:
                self.record_rejection(exc)
                raise
            except WebhookProcessingError as exc:
                WEBHOOK_REQUESTS.labels(outcome="failed").inc()
                logger.error(
                    "Failed to process webhook kind=%s: %s", exc.failure_kind, exc.cause,
                    extra={"context": {"failure_kind": exc.failure_kind,
                                       "error_type": type(exc.cause).__name__}},
                )
                raise
        WEBHOOK_REQUESTS.labels(outcome="duplicate" if result.duplicate else "processed").inc()
        return result

    def _ingest(self, body: bytes, cancel: Optional[CancellationToken]) -> IngestionResult:
        if not body:
            raise EmptyPayloadError()
        if len(body) > self._max_body_bytes:
            raise PayloadTooLargeError(len(body), self._max_body_bytes)

        webhook = self._validator.validate(body)
        key = self._idempotency.fingerprint(body)

        if self._idempotency.is_already_processed(body):
            IDEMPOTENCY_HITS.inc()
            logger.info("Duplicate webhook detected fingerprint=%s, returning cached response", key)
            return IngestionResult(
                fingerprint=key, duplicate=True,
                alerts_count=len(webhook.alerts), status=webhook.status,
            )

        try:
            self._retry.execute(
                lambda: self._breaker.call(self._processor.process_webhook, webhook),
                cancel=cancel,
            )
        except Exception as exc:
            raise WebhookProcessingError(classify_failure(exc), exc) from exc

        try:
            self._idempotency.mark_as_processed(body)
        except Exception:
            # Not re-raised: the downstream call already succeeded.
            logger.exception("Failed to mark webhook as processed fingerprint=%s", key)

        logger.info(
            "Successfully processed Alertmanager webhook fingerprint=%s", key,
            extra={"context": {"alerts_count": len(webhook.alerts), "status": webhook.status}},
        )
        return IngestionResult(
            fingerprint=key, duplicate=False,
            alerts_count=len(webhook.alerts), status=webhook.status,
        )
