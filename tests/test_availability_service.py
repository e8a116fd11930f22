"""
Tests for the Availability Service (orchestrator)

Cache hit / miss / stale-serve / outage fall-through, validation and
invalidation, with a mocked Beds24 client and an in-memory cache.
"""

import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from stayengine.config import Settings
from stayengine.errors import (
    AvailabilityTemporarilyUnavailableError,
    BatchTooLargeError,
    CacheUnavailableError,
    ConfigurationError,
    InvalidDateRangeError,
    InvalidGuestCountError,
    UnknownApartmentError,
    UpstreamAuthError,
    UpstreamUnavailableError,
)
from stayengine.models.availability import RawCalendar
from stayengine.services.availability_matcher import ViolatedConstraint
from stayengine.services.availability_service import (
    AvailabilityQuery,
    AvailabilityService,
    CACHE_BYPASS,
    CACHE_HIT,
    CACHE_MISS,
    CACHE_STALE,
)
from stayengine.services.cache_store import (
    AvailabilityCacheStore,
    FallbackCacheBackend,
    MemoryCacheBackend,
    RedisCacheBackend,
    availability_key,
)
from stayengine.services.loyalty import LoyaltyTier
from stayengine.utils.metrics import availability_requests_total, cache_invalidations_total

APARTMENTS = {
    "design-apartman": {"prop_id": "227484", "room_id": "483027", "name": "Design"},
    "lite-apartman": {"prop_id": "168900", "room_id": "357932", "name": "Lite"},
}

CHECK_IN = date(2024, 6, 10)
CHECK_OUT = date(2024, 6, 17)

RAW = RawCalendar(
    days=[{"from": "2024-06-01", "to": "2024-06-30", "numAvail": 1, "price1": 100}],
    bookings=[],
)


@pytest.fixture
def client():
    mock = MagicMock()
    mock.fetch_calendar.return_value = RAW
    return mock


@pytest.fixture
def cache(clock):
    return AvailabilityCacheStore(MemoryCacheBackend(clock=clock), stale_grace_seconds=86400, clock=clock)


@pytest.fixture
def service(client, cache):
    return AvailabilityService(client=client, cache=cache, apartments=APARTMENTS)


class TestCacheAside:
    """Miss fetches and stores; hit skips the upstream"""

    def test_miss_then_hit(self, service, client):
        first = service.check_availability("design-apartman", CHECK_IN, CHECK_OUT, guests=2)
        second = service.check_availability("design-apartman", CHECK_IN, CHECK_OUT, guests=2)

        assert first.cache_status == CACHE_MISS
        assert second.cache_status == CACHE_HIT
        assert client.fetch_calendar.call_count == 1
        assert second.window == first.window

    def test_fetch_uses_apartment_mapping(self, service, client):
        service.check_availability("lite-apartman", CHECK_IN, CHECK_OUT)
        ref, start, end = client.fetch_calendar.call_args[0]
        assert (ref.prop_id, ref.room_id) == ("168900", "357932")
        assert (start, end) == (CHECK_IN, CHECK_OUT)

    def test_guest_count_is_part_of_key(self, service, client):
        service.check_availability("design-apartman", CHECK_IN, CHECK_OUT, guests=2)
        service.check_availability("design-apartman", CHECK_IN, CHECK_OUT, guests=3)
        assert client.fetch_calendar.call_count == 2

    def test_expired_entry_refetched(self, service, client, clock):
        service.check_availability("design-apartman", CHECK_IN, CHECK_OUT)
        clock.advance(301)
        result = service.check_availability("design-apartman", CHECK_IN, CHECK_OUT)
        assert result.cache_status == CACHE_MISS
        assert client.fetch_calendar.call_count == 2

    def test_force_refresh_bypasses_cache(self, service, client):
        service.check_availability("design-apartman", CHECK_IN, CHECK_OUT)
        result = service.check_availability("design-apartman", CHECK_IN, CHECK_OUT, force_refresh=True)
        assert result.cache_status == CACHE_BYPASS
        assert client.fetch_calendar.call_count == 2

    def test_metrics_by_cache_status(self, service):
        service.check_availability("design-apartman", CHECK_IN, CHECK_OUT)
        service.check_availability("design-apartman", CHECK_IN, CHECK_OUT)
        assert availability_requests_total.get(cache_status="MISS") == 1
        assert availability_requests_total.get(cache_status="HIT") == 1


class TestIncompletePayload:
    """A malformed upstream payload is served but never cached"""

    def test_malformed_calendar_not_cached(self, service, client, cache):
        client.fetch_calendar.return_value = RawCalendar(days=[], bookings=[], malformed=["calendar"])

        first = service.check_availability("design-apartman", CHECK_IN, CHECK_OUT)
        assert first.cache_status == CACHE_MISS
        assert cache.get(availability_key("design-apartman", CHECK_IN, CHECK_OUT, 2)) is None

        client.fetch_calendar.return_value = RAW
        second = service.check_availability("design-apartman", CHECK_IN, CHECK_OUT)
        assert second.cache_status == CACHE_MISS
        assert client.fetch_calendar.call_count == 2

    def test_malformed_bookings_not_cached(self, service, client, cache):
        client.fetch_calendar.return_value = RawCalendar(days=RAW.days, bookings=[], malformed=["bookings"])
        service.check_availability("design-apartman", CHECK_IN, CHECK_OUT)
        assert cache.get(availability_key("design-apartman", CHECK_IN, CHECK_OUT, 2)) is None


class TestCacheTtl:

    def test_only_availability_category(self):
        assert set(Settings().cache_ttls) == {"availability"}

    def test_availability_ttl_applied(self, client, cache):
        config = Settings(CACHE_TTL_AVAILABILITY=60)
        service = AvailabilityService(client=client, cache=cache, config=config, apartments=APARTMENTS)
        service.check_availability("design-apartman", CHECK_IN, CHECK_OUT)

        entry = cache.get(availability_key("design-apartman", CHECK_IN, CHECK_OUT, 2))
        assert entry.ttl == 60


class TestCapacity:
    """Party size against the configured max_guests"""

    @pytest.fixture
    def sized(self, client, cache):
        apartments = {
            "design-apartman": {**APARTMENTS["design-apartman"], "max_guests": 6},
            "lite-apartman": {**APARTMENTS["lite-apartman"], "max_guests": 2},
        }
        return AvailabilityService(client=client, cache=cache, apartments=apartments)

    def test_children_count_toward_capacity(self, sized):
        result = sized.check_availability("lite-apartman", CHECK_IN, CHECK_OUT, guests=2, children=1)

        assert result.is_available is False
        assert result.match.violated_constraint == ViolatedConstraint.TOO_MANY_GUESTS
        assert result.match.max_guests == 2
        assert result.pricing.nights == 7

    def test_within_capacity(self, sized):
        result = sized.check_availability("design-apartman", CHECK_IN, CHECK_OUT, guests=4, children=2)
        assert result.is_available is True

    def test_default_apartments_carry_capacity(self, client, cache):
        service = AvailabilityService(client=client, cache=cache, config=Settings(APARTMENT_MAPPING=""))
        assert service.apartments["lite-apartman"].max_guests == 2
        assert service.apartments["design-apartman"].max_guests == 6
        assert service.apartments["deluxe-apartman"].max_guests == 6

    def test_invalid_capacity_in_mapping(self):
        mapping = '{"x": {"prop_id": "1", "room_id": "2", "max_guests": 0}}'
        with pytest.raises(ValueError):
            Settings(APARTMENT_MAPPING=mapping)


class TestResult:
    """Match and pricing are combined"""

    def test_available_stay_priced(self, service):
        result = service.check_availability("design-apartman", CHECK_IN, CHECK_OUT, guests=2)

        assert result.is_available is True
        assert result.stale is False
        assert result.pricing.nights == 7
        assert result.pricing.subtotal == Decimal("700.00")
        assert result.pricing.final_total == Decimal("630.00")

    def test_unavailable_stay_still_priced(self, service, client):
        client.fetch_calendar.return_value = RawCalendar(
            days=RAW.days,
            bookings=[{"arrival": "2024-06-12", "departure": "2024-06-14", "status": "confirmed"}],
        )
        result = service.check_availability("design-apartman", CHECK_IN, CHECK_OUT)

        assert result.is_available is False
        assert result.match.violated_constraint == ViolatedConstraint.INSUFFICIENT_AVAILABILITY
        assert result.match.unavailable_dates == [date(2024, 6, 12), date(2024, 6, 13)]
        assert result.pricing.final_total == Decimal("630.00")

    def test_loyalty_passed_through(self, service):
        result = service.check_availability(
            "design-apartman", CHECK_IN, CHECK_OUT, loyalty_tier=LoyaltyTier.GOLD
        )
        assert result.pricing.loyalty_discount_amount == Decimal("70.00")

    def test_price_gaps_flagged(self, service, client):
        client.fetch_calendar.return_value = RawCalendar(days=[], bookings=[])
        result = service.check_availability("design-apartman", CHECK_IN, CHECK_OUT)

        assert result.is_available is True
        assert result.pricing.is_complete is False
        assert len(result.window.price_gaps) == 7
        assert result.pricing.final_total == Decimal("0.00")


class TestUpstreamFailure:
    """Stale data beats no data; no data beats guessed data"""

    def test_stale_served_when_upstream_down(self, service, client, clock):
        fresh = service.check_availability("design-apartman", CHECK_IN, CHECK_OUT)
        clock.advance(3600)
        client.fetch_calendar.side_effect = UpstreamUnavailableError(detail="timeout")

        result = service.check_availability("design-apartman", CHECK_IN, CHECK_OUT)

        assert result.cache_status == CACHE_STALE
        assert result.stale is True
        assert result.window == fresh.window

    def test_no_stale_entry_raises_temporarily_unavailable(self, service, client):
        client.fetch_calendar.side_effect = UpstreamUnavailableError(detail="503")
        with pytest.raises(AvailabilityTemporarilyUnavailableError):
            service.check_availability("design-apartman", CHECK_IN, CHECK_OUT)

    def test_auth_failure_not_masked_by_stale(self, service, client, clock):
        service.check_availability("design-apartman", CHECK_IN, CHECK_OUT)
        clock.advance(3600)
        client.fetch_calendar.side_effect = UpstreamAuthError()
        with pytest.raises(UpstreamAuthError):
            service.check_availability("design-apartman", CHECK_IN, CHECK_OUT)

    def test_configuration_error_propagates(self, service, client):
        client.fetch_calendar.side_effect = ConfigurationError(detail="no token")
        with pytest.raises(ConfigurationError):
            service.check_availability("design-apartman", CHECK_IN, CHECK_OUT)


class TestCacheOutage:
    """Redis unreachable: get misses without raising, upstream is used"""

    def test_falls_through_to_upstream(self, client, clock):
        redis_client = MagicMock()
        import redis as redis_lib
        redis_client.get.side_effect = redis_lib.exceptions.ConnectionError("refused")
        redis_client.set.side_effect = redis_lib.exceptions.ConnectionError("refused")
        store = AvailabilityCacheStore(RedisCacheBackend(client=redis_client), clock=clock)
        service = AvailabilityService(client=client, cache=store, apartments=APARTMENTS)

        result = service.check_availability("design-apartman", CHECK_IN, CHECK_OUT)

        assert result.cache_status == CACHE_MISS
        assert result.is_available is True
        client.fetch_calendar.assert_called_once()

    def test_memory_tier_serves_during_outage(self, client, clock):
        primary = MagicMock(spec=RedisCacheBackend)
        primary.name = "redis"
        primary.get_raw.side_effect = CacheUnavailableError()
        primary.set_raw.side_effect = CacheUnavailableError()
        store = AvailabilityCacheStore(
            FallbackCacheBackend(primary, MemoryCacheBackend(clock=clock)), clock=clock
        )
        service = AvailabilityService(client=client, cache=store, apartments=APARTMENTS)

        service.check_availability("design-apartman", CHECK_IN, CHECK_OUT)
        second = service.check_availability("design-apartman", CHECK_IN, CHECK_OUT)

        assert second.cache_status == CACHE_HIT
        assert client.fetch_calendar.call_count == 1


class TestValidation:
    """Bad input is rejected before any I/O"""

    def test_unknown_apartment(self, service, client):
        with pytest.raises(UnknownApartmentError):
            service.check_availability("penthouse", CHECK_IN, CHECK_OUT)
        client.fetch_calendar.assert_not_called()

    @pytest.mark.parametrize("check_out", [CHECK_IN, date(2024, 6, 1)])
    def test_invalid_range(self, service, client, check_out):
        with pytest.raises(InvalidDateRangeError):
            service.check_availability("design-apartman", CHECK_IN, check_out)
        client.fetch_calendar.assert_not_called()

    def test_range_too_long(self, service, client):
        with pytest.raises(InvalidDateRangeError):
            service.check_availability("design-apartman", date(2024, 1, 1), date(2026, 1, 1))
        client.fetch_calendar.assert_not_called()

    @pytest.mark.parametrize("guests,children", [(0, 0), (21, 0), (2, -1), (2, 11)])
    def test_guest_bounds(self, service, client, guests, children):
        with pytest.raises(InvalidGuestCountError):
            service.check_availability("design-apartman", CHECK_IN, CHECK_OUT, guests=guests, children=children)
        client.fetch_calendar.assert_not_called()

    def test_no_apartments_configured(self, client, cache):
        service = AvailabilityService(client=client, cache=cache, apartments={})
        with pytest.raises(ConfigurationError):
            service.check_availability("design-apartman", CHECK_IN, CHECK_OUT)


class TestInvalidation:
    """Booking writer and manual invalidation"""

    def test_booking_confirmed_drops_apartment_windows(self, service, client):
        service.check_availability("design-apartman", CHECK_IN, CHECK_OUT)
        service.check_availability("lite-apartman", CHECK_IN, CHECK_OUT)

        assert service.on_booking_confirmed("design-apartman") == 1
        assert cache_invalidations_total.get(trigger="booking") == 1

        assert service.check_availability("design-apartman", CHECK_IN, CHECK_OUT).cache_status == CACHE_MISS
        assert service.check_availability("lite-apartman", CHECK_IN, CHECK_OUT).cache_status == CACHE_HIT

    def test_invalidate_unknown_apartment(self, service):
        with pytest.raises(UnknownApartmentError):
            service.invalidate_apartment("penthouse")

    def test_pattern_and_clear_all(self, service):
        service.check_availability("design-apartman", CHECK_IN, CHECK_OUT)
        service.check_availability("lite-apartman", CHECK_IN, CHECK_OUT)

        assert service.invalidate_pattern("lite-apartman:*") == 1
        assert service.clear_all() == 1


class TestBatchAndQuote:

    def test_batch_isolates_failures(self, service):
        results = service.check_batch([
            AvailabilityQuery("design-apartman", CHECK_IN, CHECK_OUT),
            AvailabilityQuery("penthouse", CHECK_IN, CHECK_OUT),
            AvailabilityQuery("lite-apartman", CHECK_OUT, CHECK_IN),
        ])
        assert [r.success for r in results] == [True, False, False]
        assert results[1].error.code == "unknown_apartment"
        assert results[2].error.code == "invalid_date_range"

    def test_batch_limit(self, service):
        queries = [AvailabilityQuery("design-apartman", CHECK_IN, CHECK_OUT)] * 11
        with pytest.raises(BatchTooLargeError):
            service.check_batch(queries)

    def test_quote_without_calendar(self, service, client):
        prices = {date(2024, 12, d): Decimal("100") for d in range(1, 15)}
        breakdown = service.quote(prices, guests=2)
        assert breakdown.final_total == Decimal("910.00")
        client.fetch_calendar.assert_not_called()

    def test_quote_guest_limit(self, service):
        with pytest.raises(InvalidGuestCountError):
            service.quote({CHECK_IN: Decimal("100")}, guests=25)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
