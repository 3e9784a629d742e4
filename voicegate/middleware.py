"""
Custom middleware for the voice biometric gateway.
"""

import time
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from voicegate.observability import get_trace_context

logger = structlog.get_logger()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Request/response logging with correlation ID support.

    The correlation id is taken from ``X-Call-ID``, falling back to the
    provider's ``X-Twilio-CallSid`` header when present.
    """

    def __init__(self, app, exclude_paths: Optional[set] = None):
        super().__init__(app)
        self.exclude_paths = exclude_paths or {"/healthz", "/docs", "/redoc", "/openapi.json"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.exclude_paths:
            return await call_next(request)

        correlation_id = (
            request.headers.get("X-Call-ID")
            or request.headers.get("X-Twilio-CallSid")
            or f"req_{int(time.time() * 1000)}"
        )

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id, **get_trace_context())

        start_time = time.time()
        logger.info(
            "Request started",
            method=request.method,
            path=request.url.path,
            user_agent=request.headers.get("User-Agent", "unknown")
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                error=str(e),
                error_type=type(e).__name__,
                process_time_ms=round((time.time() - start_time) * 1000, 2)
            )
            return JSONResponse(
                status_code=500,
                content={
                    "error": "InternalServerError",
                    "message": "An unexpected error occurred",
                    "correlation_id": correlation_id,
                    "timestamp": datetime.now(timezone.utc).isoformat()
                },
                headers={"X-Call-ID": correlation_id}
            )

        logger.info(
            "Request completed",
            status_code=response.status_code,
            process_time_ms=round((time.time() - start_time) * 1000, 2)
        )
        response.headers["X-Call-ID"] = correlation_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add security headers to responses.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers.update({
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
            "Referrer-Policy": "strict-origin-when-cross-origin"
        })

        return response
