"""
Pricing API Router

Endpoints for computing stay prices and listing discount rules.
"""

from fastapi import APIRouter, Depends, Request

from ..config import settings
from ..services.availability_service import AvailabilityService, get_availability_service
from ..services.loyalty import LOYALTY_TIERS
from ..services.pricing_engine import (
    ADULT_FEE_PER_NIGHT,
    BASE_OCCUPANCY,
    CHILD_FEE_PER_NIGHT,
    COMBINED_DISCOUNT_CAP,
    OFF_SEASON_MONTHS,
    SEASONAL_RATE,
    discount_tiers,
)
from ..schemas.pricing import (
    DiscountTier,
    DiscountTiersResponse,
    LoyaltyTierResponse,
    PriceQuoteRequest,
    PriceQuoteResponse,
    PricingInfo,
)
from ..utils.rate_limiter import limiter, get_rate_limit

router = APIRouter(prefix="/api/pricing", tags=["Pricing"])


@router.post("/calculate", response_model=PriceQuoteResponse)
@limiter.limit(get_rate_limit("pricing"))
def calculate_price(
    request: Request,
    payload: PriceQuoteRequest,
    service: AvailabilityService = Depends(get_availability_service),
):
    """
    Authoritative quote.

    With nightlyPrices the calculation is pure; with apartment + dates the
    nightly prices come from the (cached) Beds24 calendar.
    """
    if payload.nightly_prices is not None:
        breakdown = service.quote(
            payload.nightly_prices,
            payload.guests,
            payload.children,
            loyalty_tier=payload.loyalty_tier,
            check_in=payload.check_in,
        )
        return PriceQuoteResponse(pricing=PricingInfo.from_breakdown(breakdown))

    result = service.check_availability(
        payload.apartment,
        payload.check_in,
        payload.check_out,
        guests=payload.guests,
        children=payload.children,
        loyalty_tier=payload.loyalty_tier,
    )
    return PriceQuoteResponse(
        apartment=result.apartment.slug,
        is_available=result.is_available,
        stale=result.stale,
        pricing=PricingInfo.from_breakdown(result.pricing),
    )


@router.get("/discount-tiers", response_model=DiscountTiersResponse)
async def get_discount_tiers():
    """Stay, seasonal and loyalty discount rules plus guest surcharges"""
    return DiscountTiersResponse(
        stay_tiers=[DiscountTier(**tier) for tier in discount_tiers()],
        seasonal_rate=SEASONAL_RATE,
        seasonal_months=sorted(OFF_SEASON_MONTHS),
        combined_cap=COMBINED_DISCOUNT_CAP,
        loyalty_tiers=[
            LoyaltyTierResponse(
                tier=info.tier,
                display_name=info.display_name,
                rate=info.rate,
                min_bookings=info.min_bookings,
            )
            for info in reversed(LOYALTY_TIERS)
        ],
        adult_fee_per_night=ADULT_FEE_PER_NIGHT,
        child_fee_per_night=CHILD_FEE_PER_NIGHT,
        base_occupancy=BASE_OCCUPANCY,
        currency=settings.currency,
    )
