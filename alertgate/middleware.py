# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
HTTP Middleware — request ID propagation, Prometheus metrics, rate limiting.
"""

import json
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from alertgate.core.config import settings
from alertgate.core.dependencies import get_rate_limiter
from alertgate.metrics import HTTP_ERRORS, RATE_LIMITED, REQUEST_COUNT, REQUEST_LATENCY

SKIP_PATHS: tuple[str, ...] = (
    "/health", "/health/ready", "/metrics", "/openapi.json", "/docs", "/redoc",
)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Propagate or generate X-Request-ID for distributed tracing."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    """Track request count, latency, and error rate via Prometheus."""

    async def dispatch(self, request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        duration = time.time() - start

        path = request.url.path
        if path not in SKIP_PATHS:
            REQUEST_COUNT.labels(
                method=request.method,
                endpoint=path,
                status=str(response.status_code),
            ).inc()
            REQUEST_LATENCY.labels(
                method=request.method,
                endpoint=path,
            ).observe(duration)
            if response.status_code >= 400:
                HTTP_ERRORS.labels(
                    method=request.method,
                    endpoint=path,
                    status=str(response.status_code),
                ).inc()

        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client-IP sliding window on the webhook endpoint."""

    async def dispatch(self, request: Request, call_next):
        if (
            not settings.RATE_LIMIT_ENABLED
            or request.method == "OPTIONS"
            or request.url.path not in settings.RATE_LIMIT_PATHS
        ):
            return await call_next(request)

        limiter = get_rate_limiter()
        client_ip = request.client.host if request.client else "unknown"
        allowed, remaining, retry_after = limiter.is_allowed(client_ip)

        if not allowed:
            RATE_LIMITED.inc()
            return Response(
                content=json.dumps({
                    "status": "error",
                    "error": "Rate limit exceeded. Try again later.",
                    "code": 429,
                    "reason": "rate_limited",
                }),
                status_code=429, media_type="application/json",
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Limit": str(limiter.max_requests),
                    "X-RateLimit-Remaining": "0",
                },
            )
        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limiter.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response
