"""Health check endpoints."""

from fastapi import APIRouter, Depends

from parley import __version__
from parley.api.limits import limiter
from parley.config import Settings, get_settings
from parley.core.models import utcnow
from parley.realtime.relay import RelayService, get_relay

router = APIRouter()


@router.get("/health")
@limiter.exempt
async def health_check() -> dict:
    """Basic health check."""
    return {
        "status": "healthy",
        "version": __version__,
        "timestamp": utcnow().isoformat(),
    }


@router.get("/health/live")
@limiter.exempt
async def liveness_check() -> dict:
    """Kubernetes liveness probe."""
    return {"status": "alive"}


@router.get("/health/detailed")
@limiter.exempt
async def detailed_health_check(
    settings: Settings = Depends(get_settings),
    relay: RelayService = Depends(get_relay),
) -> dict:
    """Health with dependency checks and relay counters."""
    services = {
        "openai": "configured" if settings.openai_configured else "not_configured",
        "heartbeat": "running" if relay.monitor.running else "stopped",
    }
    return {
        "status": "healthy" if settings.openai_configured else "degraded",
        "version": __version__,
        "environment": settings.app_env,
        "timestamp": utcnow().isoformat(),
        "services": services,
        "relay": relay.get_stats(),
    }
