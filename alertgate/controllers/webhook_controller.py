# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Controller: Alertmanager webhook endpoint.
Thin HTTP layer — delegates ALL logic to WebhookService.
"""

import functools

import anyio
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from alertgate.core.config import settings
from alertgate.core.exceptions import (
    PayloadTooLargeError,
    WebhookClientError,
    WebhookProcessingError,
)
from alertgate.core.dependencies import get_webhook_service
from alertgate.schemas import WebhookAccepted, WebhookError
from alertgate.services.retry import CancellationToken
from alertgate.services.webhook_service import WebhookService

router = APIRouter(prefix="/api/v1", tags=["Webhooks"])


def _error(request: Request, status_code: int, reason: str, message: str) -> JSONResponse:
    body = WebhookError(
        error=message,
        code=status_code,
        reason=reason,
        request_id=getattr(request.state, "request_id", None),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


def _declared_length(request: Request) -> int | None:
    raw = request.headers.get("content-length")
    if raw is None or not raw.isdigit():
        return None
    return int(raw)


async def _read_body(request: Request, limit: int) -> bytes:
    """Read at most ``limit`` bytes; chunked bodies are cut off mid-stream."""
    declared = _declared_length(request)
    if declared is not None and declared > limit:
        raise PayloadTooLargeError(declared, limit)

    chunks = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > limit:
            raise PayloadTooLargeError(received, limit)
        chunks.append(chunk)
    return b"".join(chunks)


async def run_ingest(service: WebhookService, body: bytes, cancel: CancellationToken):
    """Run the blocking pipeline on a worker thread.

    If the awaiting request is cancelled (client gone, server shutting down)
    the token fires, so the worker stops at its next attempt or backoff.
    """
    try:
        return await anyio.to_thread.run_sync(
            functools.partial(service.ingest, body, cancel), abandon_on_cancel=True
        )
    except anyio.get_cancelled_exc_class():
        cancel.cancel()
        raise


@router.post(
    "/webhooks/alertmanager",
    response_model=WebhookAccepted,
    summary="Ingest an Alertmanager webhook",
    responses={
        400: {"model": WebhookError, "description": "Empty body or malformed JSON"},
        413: {"model": WebhookError, "description": "Body exceeds the size ceiling"},
        422: {"model": WebhookError, "description": "Schema validation failed"},
        500: {"model": WebhookError, "description": "Processing failed; safe to redeliver"},
    },
)
async def receive_alertmanager_webhook(
    request: Request,
    service: WebhookService = Depends(get_webhook_service),
):
    """Validate, deduplicate and hand off one webhook delivery.

    The pipeline itself is blocking (backoff sleeps, downstream HTTP), so it
    runs on the worker thread pool.
    """
    try:
        body = await _read_body(request, settings.WEBHOOK_MAX_BODY_BYTES)
    except PayloadTooLargeError as exc:
        service.record_rejection(exc)
        return _error(request, exc.status_code, exc.reason, exc.message)

    try:
        cancel = CancellationToken.with_timeout(settings.WEBHOOK_PROCESSING_TIMEOUT_SECONDS)
        result = await run_ingest(service, body, cancel)
    except WebhookClientError as exc:
        return _error(request, exc.status_code, exc.reason, exc.message)
    except WebhookProcessingError as exc:
        return _error(request, exc.status_code, exc.reason, "Failed to process webhook")

    return WebhookAccepted(message=result.message)
