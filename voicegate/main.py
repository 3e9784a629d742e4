"""Main FastAPI application for the voice biometric gateway."""

import logging
import signal
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse

from voicegate import __version__
from voicegate.api.biometric import router as biometric_router
from voicegate.config import settings
from voicegate.dependencies import close_orchestrator, get_orchestrator
from voicegate.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from voicegate.models.api_models import HealthResponse
from voicegate.observability import instrument_fastapi_app, setup_observability
from voicegate.services.orchestrator import VerificationOrchestrator


logging.basicConfig(format="%(message)s", level=settings.log_level.upper())

# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info(
        "Starting voice biometric gateway",
        port=settings.port,
        host=settings.host,
        store_backend=settings.store_backend
    )

    setup_observability(
        service_name="voicegate",
        service_version=__version__,
        otlp_endpoint=settings.otlp_endpoint
    )
    instrument_fastapi_app(app)

    yield

    await close_orchestrator()

    logger.info("Shutting down voice biometric gateway")


app = FastAPI(
    title="Voice Biometric Gateway",
    description="Call-based voice enrollment and verification with risk scoring and lockout",
    version=__version__,
    lifespan=lifespan
)

# Add middleware (order matters - last added is executed first)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(biometric_router)


@app.get("/healthz", response_model=HealthResponse)
async def health_check(orchestrator: VerificationOrchestrator = Depends(get_orchestrator)):
    """
    Health check endpoint.

    Pings the session store and the profile repository; answers 503 with
    status "degraded" when either is unreachable.
    """
    checks = {
        "sessions": await orchestrator.sessions.health_check(),
        "profiles": await orchestrator.profiles.health_check(),
    }
    response = HealthResponse(
        status="healthy" if all(checks.values()) else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=__version__,
        checks=checks
    )

    if response.status != "healthy":
        logger.warning("Health check degraded", checks=checks)
        return JSONResponse(status_code=503, content=response.model_dump(mode="json"))
    return response


def handle_shutdown(signum, frame):
    """Handle graceful shutdown signals."""
    logger.info("Received shutdown signal", signal=signum)
    sys.exit(0)


if __name__ == "__main__":
    import uvicorn

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    uvicorn.run(
        "voicegate.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False
    )
