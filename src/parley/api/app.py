"""
Parley FastAPI Application

Main application factory and configuration.
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from parley import __version__
from parley.config import get_settings
from parley.log import configure_logging
from parley.realtime.relay import close_relay, init_relay

from .limits import limiter, rate_limit_exceeded
from .routes import analysis, health, relay, sessions, transcription

logger = structlog.get_logger()


# ══════════════════════════════════════════════════════════════
# Lifespan Management
# ══════════════════════════════════════════════════════════════


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()
    configure_logging(settings.log_level, json=settings.is_production)

    logger.info(
        "Starting Parley relay",
        version=__version__,
        environment=settings.app_env,
    )

    relay_service = await init_relay(settings)

    if not settings.openai_configured:
        logger.warning("OpenAI API key not configured, provider calls will fail")

    logger.info(
        "Parley relay started",
        heartbeat_interval=relay_service.monitor.interval_seconds,
        max_connections=relay_service.registry.max_connections,
    )

    yield

    logger.info("Shutting down Parley relay")
    await close_relay()
    logger.info("Parley relay shutdown complete")


# ══════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.app_name} API",
        description="Real-time meeting transcription and analysis relay",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    # ──────────────────────────────────────────────────────────
    # Middleware
    # ──────────────────────────────────────────────────────────

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded)
    app.add_middleware(SlowAPIMiddleware)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests with timing."""
        start = time.perf_counter()

        response = await call_next(request)

        duration = (time.perf_counter() - start) * 1000
        logger.info(
            "Request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(duration, 2),
        )

        return response

    # ──────────────────────────────────────────────────────────
    # Routes
    # ──────────────────────────────────────────────────────────

    app.include_router(health.router, tags=["Health"])

    # WebSocket relay and its counters
    app.include_router(relay.router, tags=["Relay"])

    api_prefix = f"/api/{settings.api_version}"

    app.include_router(
        sessions.router,
        prefix=f"{api_prefix}/sessions",
        tags=["Sessions"],
    )

    app.include_router(
        analysis.router,
        prefix=f"{api_prefix}/analysis",
        tags=["Analysis"],
    )

    app.include_router(
        transcription.router,
        prefix=f"{api_prefix}/transcription",
        tags=["Transcription"],
    )

    return app
