"""
Availability Schemas

Pydantic models for the availability API.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import Field

from ..services.availability_service import AvailabilityQuery, AvailabilityResult, BatchItemResult
from ..services.loyalty import LoyaltyTier
from .pricing import CamelModel, PricingInfo


class AvailabilityResponse(CamelModel):
    """Calendar view plus match and price for one stay"""
    success: bool = True
    apartment: str
    check_in: date
    check_out: date
    guests: int
    children: int
    available: List[date]
    booked: List[date]
    prices: Dict[date, Decimal]
    min_stay: int
    max_stay: int
    max_guests: Optional[int] = None
    is_available: bool
    violated_constraint: Optional[str] = None
    unavailable_dates: List[date] = []
    total_price: Decimal
    pricing_info: PricingInfo
    stale: bool = False
    price_gaps: List[date] = []
    cache_status: str
    cached_at: Optional[datetime] = None

    @classmethod
    def from_result(cls, result: AvailabilityResult) -> "AvailabilityResponse":
        window = result.window
        match = result.match
        cached_at = None
        if result.cached_at is not None:
            cached_at = datetime.fromtimestamp(result.cached_at, tz=timezone.utc)
        return cls(
            apartment=result.apartment.slug,
            check_in=result.check_in,
            check_out=result.check_out,
            guests=result.guests,
            children=result.children,
            available=window.available_dates,
            booked=window.booked_dates,
            prices=window.prices,
            min_stay=match.min_stay,
            max_stay=match.max_stay,
            max_guests=match.max_guests,
            is_available=match.ok,
            violated_constraint=match.violated_constraint.value if match.violated_constraint else None,
            unavailable_dates=match.unavailable_dates,
            total_price=result.pricing.final_total,
            pricing_info=PricingInfo.from_breakdown(result.pricing),
            stale=result.stale,
            price_gaps=window.price_gaps,
            cache_status=result.cache_status,
            cached_at=cached_at,
        )


class InvalidationResponse(CamelModel):
    success: bool = True
    scope: str
    deleted: int


class BatchAvailabilityItem(CamelModel):
    apartment: str
    check_in: date
    check_out: date
    guests: int = Field(default=2, ge=1, le=20)
    children: int = Field(default=0, ge=0, le=10)
    loyalty_tier: Optional[LoyaltyTier] = None
    force_refresh: bool = False

    def to_query(self) -> AvailabilityQuery:
        return AvailabilityQuery(
            apartment=self.apartment,
            check_in=self.check_in,
            check_out=self.check_out,
            guests=self.guests,
            children=self.children,
            loyalty_tier=self.loyalty_tier,
            force_refresh=self.force_refresh,
        )


class BatchAvailabilityRequest(CamelModel):
    requests: List[BatchAvailabilityItem] = Field(..., min_length=1, max_length=10)


class BatchItemResponse(CamelModel):
    index: int
    success: bool
    data: Optional[AvailabilityResponse] = None
    error: Optional[str] = None
    code: Optional[str] = None

    @classmethod
    def from_item(cls, item: BatchItemResult) -> "BatchItemResponse":
        if item.success:
            return cls(index=item.index, success=True, data=AvailabilityResponse.from_result(item.result))
        return cls(index=item.index, success=False, error=item.error.message, code=item.error.code)


class BatchAvailabilityResponse(CamelModel):
    success: bool = True
    total: int
    succeeded: int
    failed: int
    results: List[BatchItemResponse]
