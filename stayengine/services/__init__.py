# Services package
from .beds24_client import Beds24Client, get_beds24_client, Beds24Response
from .calendar_normalizer import normalize_calendar
from .cache_store import (
    AvailabilityCacheStore,
    CacheBackend,
    MemoryCacheBackend,
    RedisCacheBackend,
    FallbackCacheBackend,
    get_cache_store,
)
from .availability_matcher import is_range_available, MatchResult, ViolatedConstraint
from .pricing_engine import calculate_pricing, PricingBreakdown
from .loyalty import LoyaltyTier, calculate_loyalty_tier
from .availability_service import AvailabilityService, AvailabilityResult, get_availability_service

__all__ = [
    "Beds24Client", "get_beds24_client", "Beds24Response",
    "normalize_calendar",
    "AvailabilityCacheStore", "CacheBackend", "MemoryCacheBackend",
    "RedisCacheBackend", "FallbackCacheBackend", "get_cache_store",
    "is_range_available", "MatchResult", "ViolatedConstraint",
    "calculate_pricing", "PricingBreakdown",
    "LoyaltyTier", "calculate_loyalty_tier",
    "AvailabilityService", "AvailabilityResult", "get_availability_service",
]
