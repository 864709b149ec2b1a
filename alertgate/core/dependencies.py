# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
FastAPI dependency injection — wire the ingestion pipeline.

This module is the composition root: every shared component (idempotency
store, circuit breaker, rate limiter) is built once here and handed to its
consumers explicitly.
"""

from alertgate.core.config import settings
from alertgate.core.database import create_db_engine
from alertgate.repositories import IdempotencyRepository
from alertgate.services.alert_processor import AlertProcessor
from alertgate.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    log_state_change,
)
from alertgate.services.idempotency import (
    InMemoryIdempotencyStore,
    SqlIdempotencyStore,
    WebhookIdempotencyManager,
)
from alertgate.services.incident_client import IncidentClient
from alertgate.services.rate_limiter import SlidingWindowRateLimiter
from alertgate.services.retry import RetryExecutor, RetryPolicy, default_is_retryable
from alertgate.services.validator import WebhookValidator
from alertgate.services.webhook_service import WebhookService


def build_idempotency_store():
    if settings.IDEMPOTENCY_BACKEND == "database":
        return SqlIdempotencyStore(
            IdempotencyRepository(create_db_engine()),
            sweep_interval=settings.IDEMPOTENCY_SWEEP_INTERVAL_SECONDS,
        )
    if settings.IDEMPOTENCY_BACKEND != "memory":
        raise ValueError(f"Unknown IDEMPOTENCY_BACKEND {settings.IDEMPOTENCY_BACKEND!r}")
    return InMemoryIdempotencyStore(sweep_interval=settings.IDEMPOTENCY_SWEEP_INTERVAL_SECONDS)


def build_circuit_breaker() -> CircuitBreaker:
    breaker = CircuitBreaker(
        "incident-management",
        CircuitBreakerConfig(
            failure_threshold=settings.CB_FAILURE_THRESHOLD,
            cooldown=settings.CB_COOLDOWN_SECONDS,
            half_open_max_calls=settings.CB_HALF_OPEN_MAX_CALLS,
        ),
    )
    breaker.add_listener(log_state_change)
    return breaker


def build_retry_executor() -> RetryExecutor:
    return RetryExecutor(
        RetryPolicy(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
            max_delay=settings.RETRY_MAX_DELAY_SECONDS,
            multiplier=settings.RETRY_MULTIPLIER,
        ),
        is_retryable=default_is_retryable,
    )


# ── Singleton instances ──
_idempotency_store = build_idempotency_store()
_incident_client = IncidentClient()
_rate_limiter = SlidingWindowRateLimiter(settings.RATE_LIMIT_RPM, 60)

_webhook_service = WebhookService(
    validator=WebhookValidator(),
    idempotency=WebhookIdempotencyManager(_idempotency_store, settings.IDEMPOTENCY_TTL_SECONDS),
    retry_executor=build_retry_executor(),
    circuit_breaker=build_circuit_breaker(),
    processor=AlertProcessor(_incident_client),
    max_body_bytes=settings.WEBHOOK_MAX_BODY_BYTES,
)


# ── FastAPI dependency functions ──
def get_webhook_service() -> WebhookService:
    return _webhook_service


def get_rate_limiter() -> SlidingWindowRateLimiter:
    return _rate_limiter


def shutdown():
    """Stop background work and release pooled connections."""
    _idempotency_store.close()
    _incident_client.close()
