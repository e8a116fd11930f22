"""
Health Check Endpoints

Provides health monitoring:
- /health/live - Liveness check (is process running)
- /health/ready - Readiness check (cache tier status, upstream credentials)
- /health - Simple status with version
"""

from fastapi import APIRouter, Depends, HTTPException, status
from datetime import datetime, timezone
import time

from ..config import settings
from ..errors import CacheUnavailableError
from ..services.availability_service import AvailabilityService, get_availability_service

router = APIRouter(prefix="/health", tags=["Health"])

VERSION = "1.0.0"


def get_cache_health(service: AvailabilityService) -> dict:
    """Check cache tier status and latency"""
    try:
        start = time.time()
        backend_status = service.cache.backend.status()
        latency_ms = (time.time() - start) * 1000
    except CacheUnavailableError as e:
        return {"status": "down", "error": e.message}

    result = {
        "status": "degraded" if backend_status.get("degraded") else "up",
        "latency_ms": round(latency_ms, 2),
    }
    result.update(backend_status)
    return result


def get_upstream_health() -> dict:
    """Beds24 credentials present (no outbound call, protects the rate limit)"""
    if not settings.has_upstream_credentials:
        return {"status": "not_configured"}
    return {"status": "configured", "base_url": settings.beds24_base_url}


# ================================
# ENDPOINTS
# ================================

@router.get("/live")
@router.get("/live/")
async def liveness_check():
    """
    Liveness probe - is the process running?
    Used by load balancers and orchestrators.
    """
    return {
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/ready")
@router.get("/ready/")
def readiness_check(service: AvailabilityService = Depends(get_availability_service)):
    """
    Readiness probe - is the service ready to accept traffic?

    A Redis outage only degrades readiness (the in-process tier takes over);
    missing upstream credentials make the service not ready.
    """
    cache_health = get_cache_health(service)
    upstream_health = get_upstream_health()

    if upstream_health["status"] == "not_configured" or cache_health["status"] == "down":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "not_ready",
                "checks": {"cache": cache_health, "upstream": upstream_health},
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        )

    return {
        "status": "degraded" if cache_health["status"] == "degraded" else "ready",
        "checks": {
            "cache": cache_health,
            "upstream": upstream_health,
        },
        "apartments": sorted(service.apartments),
        "cache_ttls": settings.cache_ttls,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("")
@router.get("/")
async def simple_health_check():
    """Simple health check without dependencies."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
        "environment": settings.environment,
    }
