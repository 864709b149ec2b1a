# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Controller: System endpoints — health, readiness, metrics.
Pure HTTP layer — no business logic.
"""

from fastapi import APIRouter, Depends, HTTPException
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from alertgate.core.config import settings
from alertgate.core.dependencies import get_webhook_service
from alertgate.services.webhook_service import WebhookService

router = APIRouter(tags=["System"])


@router.get("/health")
def health_check():
    """Shallow health check — confirms the process is alive."""
    return {"status": "ok", "service": settings.SERVICE_NAME}


@router.get("/health/ready")
def readiness_check(service: WebhookService = Depends(get_webhook_service)):
    """Deep health check — idempotency backend and downstream breaker state."""
    store = service.idempotency.store
    verify = getattr(store, "verify_connection", None)
    if verify is not None:
        try:
            verify()
        except Exception as exc:
            raise HTTPException(status_code=503, detail=f"Database unavailable: {exc}")

    breaker = service.circuit_breaker.snapshot()
    return {
        "status": "ok",
        "idempotency_backend": settings.IDEMPOTENCY_BACKEND,
        "circuit_breaker": {
            "name": breaker.name,
            "state": breaker.state.value,
            "failure_count": breaker.failure_count,
        },
    }


@router.get("/metrics")
def prometheus_metrics():
    """Expose Prometheus metrics in OpenMetrics format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
