"""
Rate Limiter Configuration

Supports both in-memory and Redis storage for rate limiting.
Redis is recommended for production (multiple instances).
"""

import logging

from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from ..config import settings

logger = logging.getLogger(__name__)


def get_real_client_ip(request: Request) -> str:
    """Get real client IP behind reverse proxy"""
    # Check X-Forwarded-For header (set by proxies)
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP (original client)
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return get_remote_address(request)


def create_limiter() -> Limiter:
    """
    Create a rate limiter with appropriate storage backend.
    Uses the shared Redis when REDIS_URL is set, otherwise in-memory.
    """
    if settings.redis_url:
        logger.info("Using Redis rate limiter storage")
        return Limiter(
            key_func=get_real_client_ip,
            storage_uri=settings.redis_url,
            default_limits=[settings.api_rate_limit],
            # Redis outage must not take the API down with it
            in_memory_fallback_enabled=True,
            swallow_errors=True,
        )

    logger.info("Using in-memory rate limiter storage")
    return Limiter(
        key_func=get_real_client_ip,
        default_limits=[settings.api_rate_limit]
    )


# Global rate limiter instance
limiter = create_limiter()


# ================================
# RATE LIMIT CONFIGURATIONS
# ================================

RATE_LIMITS = {
    # Calendar views - relaxed, mostly served from cache
    "availability": "120/minute",
    "availability_batch": "30/minute",

    # Invalidation hits both cache tiers
    "cache_invalidate": "20/minute",

    # Pure computation
    "pricing": "120/minute",
}


def get_rate_limit(operation: str) -> str:
    """Get rate limit for a specific operation."""
    return RATE_LIMITS.get(operation, settings.api_rate_limit)
