"""
Request tracing and CORS middleware

Provides request ID tracking and timing bound into structlog context, and
the permissive cross-origin headers that browser dashboards and gateways
expect on every response.
"""
import time
from typing import List, Optional
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
import structlog

from .utils import generate_request_id

logger = structlog.get_logger()


# ============================================================================
# Request Tracing Middleware
# ============================================================================

class RequestTracingMiddleware(BaseHTTPMiddleware):
    """
    Binds request_id, method and path (plus X-Device-ID when a gateway sends
    one) into structlog context for the duration of a request, and echoes
    X-Request-ID / X-Response-Time on the response.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or generate_request_id()

        context = {"request_id": request_id, "method": request.method, "path": request.url.path}
        device_id = request.headers.get("X-Device-ID")
        if device_id:
            context["device_id"] = device_id
        structlog.contextvars.bind_contextvars(**context)

        started = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception as e:
                logger.error("request_failed", error=str(e), error_type=type(e).__name__,
                             duration_ms=_elapsed_ms(started))
                raise

            elapsed = _elapsed_ms(started)
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{elapsed:.2f}ms"

            log = logger.warning if response.status_code >= 500 else logger.info
            log("request_completed", status_code=response.status_code, duration_ms=elapsed)
            return response
        finally:
            # request_completed is logged while the context is still bound
            structlog.contextvars.unbind_contextvars(*context)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


# ============================================================================
# CORS Middleware
# ============================================================================

def cors_headers(allow_origin: str, allow_headers: List[str]) -> dict:
    """Headers attached to every response"""
    return {
        "Access-Control-Allow-Origin": allow_origin,
        "Access-Control-Allow-Headers": ", ".join(allow_headers),
        "Access-Control-Allow-Methods": "GET, POST, PATCH, DELETE, OPTIONS",
    }


class PermissiveCORSMiddleware(BaseHTTPMiddleware):
    """
    Answers every OPTIONS preflight with an empty body and stamps the same
    CORS headers on all other responses, errors included.
    """

    def __init__(self, app, allow_origin: str = "*", allow_headers: Optional[List[str]] = None):
        super().__init__(app)
        self.headers = cors_headers(allow_origin, allow_headers or ["content-type"])

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=self.headers)

        response = await call_next(request)
        for name, value in self.headers.items():
            response.headers[name] = value
        return response
