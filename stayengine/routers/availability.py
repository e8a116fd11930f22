"""
Availability API Router

Endpoints for calendar availability, quotes and cache invalidation.
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from ..services.availability_service import AvailabilityService, get_availability_service
from ..services.loyalty import LoyaltyTier
from ..schemas.availability import (
    AvailabilityResponse,
    BatchAvailabilityRequest,
    BatchAvailabilityResponse,
    BatchItemResponse,
    InvalidationResponse,
)
from ..utils.rate_limiter import limiter, get_rate_limit

router = APIRouter(prefix="/api/availability", tags=["Availability"])


@router.get("", response_model=AvailabilityResponse)
@limiter.limit(get_rate_limit("availability"))
def get_availability(
    request: Request,
    response: Response,
    apartment: str = Query(..., min_length=1, description="Apartment slug"),
    check_in: date = Query(..., alias="checkIn"),
    check_out: date = Query(..., alias="checkOut"),
    guests: int = Query(2, ge=1, le=20),
    children: int = Query(0, ge=0, le=10),
    loyalty_tier: Optional[LoyaltyTier] = Query(None, alias="loyaltyTier"),
    force_refresh: bool = Query(False, alias="forceRefresh"),
    service: AvailabilityService = Depends(get_availability_service),
):
    """
    Availability, booked dates, nightly prices and a full quote for one stay.

    X-Cache-Status is HIT, MISS, STALE (served from an expired entry because
    Beds24 was unreachable) or BYPASS (forceRefresh).
    """
    result = service.check_availability(
        apartment,
        check_in,
        check_out,
        guests=guests,
        children=children,
        loyalty_tier=loyalty_tier,
        force_refresh=force_refresh,
    )
    response.headers["X-Cache-Status"] = result.cache_status
    response.headers["X-Response-Time"] = f"{result.duration_ms}ms"
    return AvailabilityResponse.from_result(result)


@router.delete("", response_model=InvalidationResponse)
@limiter.limit(get_rate_limit("cache_invalidate"))
def invalidate_availability(
    request: Request,
    apartment: Optional[str] = Query(None, description="Drop every cached window of this apartment"),
    pattern: Optional[str] = Query(None, description="Glob pattern, e.g. design-apartman:*"),
    clear_all: bool = Query(False, alias="clearAll"),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Invalidate cached availability (called after bookings or manual changes)"""
    if clear_all:
        return InvalidationResponse(scope="all", deleted=service.clear_all())
    if apartment:
        return InvalidationResponse(
            scope=f"apartment:{apartment}",
            deleted=service.invalidate_apartment(apartment),
        )
    if pattern:
        return InvalidationResponse(
            scope=f"pattern:{pattern}",
            deleted=service.invalidate_pattern(pattern),
        )
    raise HTTPException(status_code=400, detail="Specify apartment, pattern or clearAll=true")


@router.post("/batch", response_model=BatchAvailabilityResponse)
@limiter.limit(get_rate_limit("availability_batch"))
def check_availability_batch(
    request: Request,
    payload: BatchAvailabilityRequest,
    service: AvailabilityService = Depends(get_availability_service),
):
    """Up to 10 availability checks; failures are reported per item"""
    items = service.check_batch([item.to_query() for item in payload.requests])
    results = [BatchItemResponse.from_item(item) for item in items]
    succeeded = sum(1 for r in results if r.success)
    return BatchAvailabilityResponse(
        total=len(results),
        succeeded=succeeded,
        failed=len(results) - succeeded,
        results=results,
    )
