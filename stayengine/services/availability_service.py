"""
Availability Service

Answers "is apartment X free for [check_in, check_out) and what does it cost?"

Flow (cache-aside):
1. Validate input (known apartment, range, guest counts) before any I/O
2. Cache lookup (skipped on force_refresh)
3. Miss: Beds24 fetch -> normalize -> store (complete payloads only)
4. Upstream failure: serve a stale entry flagged stale, or fail with
   AvailabilityTemporarilyUnavailableError. Availability is never guessed.
5. Match the requested nights, then price them

Also the hook the booking writer calls after a confirmed booking so the
apartment's cached windows are dropped.
"""

import logging
import time
from dataclasses import dataclass
from datetime import date
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..config import settings as default_settings, Settings
from ..errors import (
    AvailabilityTemporarilyUnavailableError,
    BatchTooLargeError,
    ConfigurationError,
    InvalidDateRangeError,
    InvalidGuestCountError,
    StayEngineError,
    UnknownApartmentError,
    UpstreamAuthError,
    UpstreamError,
)
from ..models.availability import ApartmentRef, AvailabilityWindow
from ..utils.logging_config import get_logger
from ..utils.metrics import cache_invalidations_total, record_availability_request
from .availability_matcher import MatchResult, is_range_available
from .beds24_client import Beds24Client, get_beds24_client
from .cache_store import AvailabilityCacheStore, availability_key, get_cache_store
from .calendar_normalizer import normalize_calendar
from .loyalty import LoyaltyTier
from .pricing_engine import PricingBreakdown, calculate_pricing

logger = get_logger(__name__)

MAX_GUESTS = 20
MAX_CHILDREN = 10
MAX_BATCH_SIZE = 10

CACHE_HIT = "HIT"
CACHE_MISS = "MISS"
CACHE_STALE = "STALE"
CACHE_BYPASS = "BYPASS"


@dataclass
class AvailabilityQuery:
    apartment: str
    check_in: date
    check_out: date
    guests: int = 2
    children: int = 0
    loyalty_tier: Optional[LoyaltyTier] = None
    force_refresh: bool = False


@dataclass
class AvailabilityResult:
    apartment: ApartmentRef
    check_in: date
    check_out: date
    guests: int
    children: int
    window: AvailabilityWindow
    match: MatchResult
    pricing: PricingBreakdown
    cache_status: str
    cached_at: Optional[float] = None
    duration_ms: float = 0.0

    @property
    def stale(self) -> bool:
        return self.cache_status == CACHE_STALE

    @property
    def is_available(self) -> bool:
        return self.match.ok


@dataclass
class BatchItemResult:
    index: int
    query: AvailabilityQuery
    result: Optional[AvailabilityResult] = None
    error: Optional[StayEngineError] = None

    @property
    def success(self) -> bool:
        return self.error is None


class AvailabilityService:
    """
    Orchestrates cache, upstream client, normalizer, matcher and pricing.

    Stateless apart from its collaborators; safe to share across requests.
    """

    def __init__(
        self,
        client: Optional[Beds24Client] = None,
        cache: Optional[AvailabilityCacheStore] = None,
        config: Optional[Settings] = None,
        apartments: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ):
        self.settings = config or default_settings
        self.client = client or get_beds24_client()
        self.cache = cache or get_cache_store()
        self.apartments = self._load_apartments(
            apartments if apartments is not None else self.settings.apartments
        )
        self.ttl = self.settings.cache_ttls["availability"]

    @staticmethod
    def _load_apartments(mapping: Mapping[str, Mapping[str, Any]]) -> Dict[str, ApartmentRef]:
        return {
            slug: ApartmentRef(
                slug=slug,
                prop_id=str(entry["prop_id"]),
                room_id=str(entry["room_id"]),
                name=entry.get("name", slug),
                max_guests=entry.get("max_guests"),
            )
            for slug, entry in mapping.items()
        }

    # ==================
    # Validation
    # ==================

    def resolve_apartment(self, slug: str) -> ApartmentRef:
        if not self.apartments:
            raise ConfigurationError(detail="No apartments configured")
        ref = self.apartments.get(slug)
        if ref is None:
            raise UnknownApartmentError(f"Unknown apartment: {slug}")
        return ref

    def validate_request(self, check_in: date, check_out: date, guests: int, children: int):
        if check_out <= check_in:
            raise InvalidDateRangeError("Check-out must be after check-in")
        if (check_out - check_in).days > self.settings.upstream_max_range_days:
            raise InvalidDateRangeError(
                f"Stay may not exceed {self.settings.upstream_max_range_days} nights"
            )
        if guests < 1 or guests > MAX_GUESTS:
            raise InvalidGuestCountError(f"Guests must be between 1 and {MAX_GUESTS}")
        if children < 0 or children > MAX_CHILDREN:
            raise InvalidGuestCountError(f"Children must be between 0 and {MAX_CHILDREN}")

    # ==================
    # Availability
    # ==================

    def _load_window(
        self,
        ref: ApartmentRef,
        check_in: date,
        check_out: date,
        key: str,
        force_refresh: bool,
    ) -> Tuple[AvailabilityWindow, str, Optional[float]]:
        if not force_refresh:
            entry = self.cache.get(key)
            if entry is not None:
                return entry.window, CACHE_HIT, entry.stored_at

        try:
            raw = self.client.fetch_calendar(ref, check_in, check_out)
        except UpstreamAuthError:
            # Credentials problem; stale data would hide it
            logger.error(f"Beds24 rejected credentials while fetching {ref.slug}")
            raise
        except UpstreamError as e:
            logger.log_with_context(
                logging.WARNING,
                f"Upstream fetch failed for {ref.slug} {check_in}..{check_out}, trying stale cache",
                apartment=ref.slug,
                error_code=e.code,
                detail=e.detail,
            )
            entry = self.cache.get_stale(key)
            if entry is not None:
                return entry.window, CACHE_STALE, entry.stored_at
            raise AvailabilityTemporarilyUnavailableError(
                detail=f"{ref.slug} {check_in}..{check_out}: {e.detail}"
            ) from e

        window = normalize_calendar(
            raw,
            check_in,
            check_out,
            self.settings.default_min_stay,
            self.settings.default_max_stay,
            apartment=ref.slug,
        )
        if raw.complete:
            self.cache.set(key, window, self.ttl)
        else:
            # One bad payload must not be cached as an open calendar
            logger.log_with_context(
                logging.WARNING,
                f"Not caching {ref.slug} {check_in}..{check_out}: malformed {', '.join(raw.malformed)} payload",
                apartment=ref.slug,
                malformed=raw.malformed,
            )
        return window, CACHE_BYPASS if force_refresh else CACHE_MISS, time.time()

    def check_availability(
        self,
        apartment: str,
        check_in: date,
        check_out: date,
        guests: int = 2,
        children: int = 0,
        loyalty_tier: Optional[LoyaltyTier] = None,
        force_refresh: bool = False,
    ) -> AvailabilityResult:
        """
        Availability and price for one stay.

        Raises:
            UnknownApartmentError, InvalidDateRangeError, InvalidGuestCountError:
                rejected before any I/O
            AvailabilityTemporarilyUnavailableError: upstream down, nothing cached
            UpstreamAuthError, ConfigurationError: operator action needed
        """
        start_time = time.perf_counter()

        ref = self.resolve_apartment(apartment)
        self.validate_request(check_in, check_out, guests, children)

        key = availability_key(ref.slug, check_in, check_out, guests)
        window, cache_status, cached_at = self._load_window(
            ref, check_in, check_out, key, force_refresh
        )

        match = is_range_available(
            window, check_in, check_out,
            guests=guests + children,
            max_guests=ref.max_guests,
        )

        # Priced even when unavailable so the caller can still show a quote
        pricing = calculate_pricing(
            window.nightly_prices(check_in, check_out),
            guests,
            children,
            loyalty_tier=loyalty_tier,
            check_in=check_in,
            currency=self.settings.currency,
        )

        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        record_availability_request(cache_status)
        logger.availability_served(
            ref.slug,
            check_in.isoformat(),
            check_out.isoformat(),
            cache_status,
            match.ok,
            duration_ms,
        )

        return AvailabilityResult(
            apartment=ref,
            check_in=check_in,
            check_out=check_out,
            guests=guests,
            children=children,
            window=window,
            match=match,
            pricing=pricing,
            cache_status=cache_status,
            cached_at=cached_at,
            duration_ms=duration_ms,
        )

    def check_batch(self, queries: List[AvailabilityQuery]) -> List[BatchItemResult]:
        """Run several checks; one failing item does not fail the others"""
        if len(queries) > MAX_BATCH_SIZE:
            raise BatchTooLargeError(f"At most {MAX_BATCH_SIZE} requests per batch")

        results = []
        for index, query in enumerate(queries):
            try:
                result = self.check_availability(
                    query.apartment,
                    query.check_in,
                    query.check_out,
                    guests=query.guests,
                    children=query.children,
                    loyalty_tier=query.loyalty_tier,
                    force_refresh=query.force_refresh,
                )
                results.append(BatchItemResult(index=index, query=query, result=result))
            except StayEngineError as e:
                logger.warning(f"Batch item {index} ({query.apartment}) failed: {e.code}")
                results.append(BatchItemResult(index=index, query=query, error=e))
        return results

    def quote(
        self,
        nightly_prices: Mapping[date, Any],
        guests: int,
        children: int = 0,
        loyalty_tier: Optional[LoyaltyTier] = None,
        check_in: Optional[date] = None,
    ) -> PricingBreakdown:
        """Price explicit nightly rates without touching the calendar"""
        if guests > MAX_GUESTS or children > MAX_CHILDREN:
            raise InvalidGuestCountError(
                f"At most {MAX_GUESTS} guests and {MAX_CHILDREN} children"
            )
        return calculate_pricing(
            nightly_prices,
            guests,
            children,
            loyalty_tier=loyalty_tier,
            check_in=check_in,
            currency=self.settings.currency,
        )

    # ==================
    # Invalidation
    # ==================

    def invalidate_apartment(self, slug: str, trigger: str = "manual") -> int:
        ref = self.resolve_apartment(slug)
        deleted = self.cache.invalidate(f"{ref.slug}:*")
        cache_invalidations_total.inc(trigger=trigger)
        logger.log_with_context(
            logging.INFO, f"Invalidated {deleted} cache entries for {ref.slug}",
            apartment=ref.slug, trigger=trigger, deleted=deleted,
        )
        return deleted

    def invalidate_pattern(self, pattern: str) -> int:
        deleted = self.cache.invalidate(pattern)
        cache_invalidations_total.inc(trigger="pattern")
        logger.info(f"Invalidated {deleted} cache entries matching {pattern}")
        return deleted

    def clear_all(self) -> int:
        deleted = self.cache.clear_all()
        cache_invalidations_total.inc(trigger="clear_all")
        return deleted

    def on_booking_confirmed(self, slug: str) -> int:
        """Called by the booking writer after a confirmed booking"""
        return self.invalidate_apartment(slug, trigger="booking")

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()


@lru_cache()
def get_availability_service() -> AvailabilityService:
    """Process-wide service used by the routers"""
    return AvailabilityService()
