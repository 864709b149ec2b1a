# type: ignore
# pyright: reportGeneralTypeIssues=false
# pyright: reportOptionalMemberAccess=false
"""
Alertgate — Alertmanager Webhook Ingestion
==========================================
Receives Alertmanager webhooks, validates them against the payload contract,
drops duplicate deliveries by content fingerprint, and hands each new payload
to incident-management behind a retry executor and a circuit breaker.

Port: 8001
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from alertgate.controllers import system_controller, webhook_controller
from alertgate.core import dependencies
from alertgate.core.config import settings
from alertgate.core.logging import get_logger
from alertgate.middleware import MetricsMiddleware, RateLimitMiddleware, RequestIDMiddleware
from alertgate.schemas import ErrorResponse

logger = get_logger(settings.SERVICE_NAME)


# ── Lifespan ──────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Stop the idempotency sweeper and close the downstream client on shutdown."""
    logger.info(
        "Webhook ingestion starting idempotency_backend=%s downstream=%s",
        settings.IDEMPOTENCY_BACKEND, settings.INCIDENT_MANAGEMENT_URL,
    )
    yield
    dependencies.shutdown()
    logger.info("Idempotency sweeper stopped and downstream client closed — shutting down")


# ── FastAPI App ───────────────────────────────────────────────────────────
app = FastAPI(
    title="Alertgate",
    description="Reliable Alertmanager webhook ingestion for the incident platform.",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
    responses={
        500: {"model": ErrorResponse, "description": "Internal server error"},
    },
)

app.add_middleware(RateLimitMiddleware)
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(system_controller.router)
app.include_router(webhook_controller.router)


# ── Global exception handler ─────────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    req_id = getattr(request.state, "request_id", None)
    logger.exception("Unhandled exception", extra={"request_id": req_id})
    return JSONResponse(
        status_code=500,
        content={"error": "internal_server_error", "detail": str(exc), "request_id": req_id},
    )


# ── Entrypoint ────────────────────────────────────────────────────────────
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.SERVICE_PORT, log_level="info")
