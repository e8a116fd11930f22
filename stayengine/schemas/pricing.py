"""
Pricing Schemas

Pydantic models for pricing API requests and responses.
Field names are camelCase on the wire.
"""

from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..services.loyalty import LoyaltyTier
from ..services.pricing_engine import PricingBreakdown


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class StayDiscountInfo(CamelModel):
    tier: Optional[str] = None
    rate: Decimal
    amount: Decimal


class SeasonalDiscountInfo(CamelModel):
    rate: Decimal
    amount: Decimal


class LoyaltyDiscountInfo(CamelModel):
    tier: Optional[LoyaltyTier] = None
    rate: Decimal
    amount: Decimal


class NextTierInfo(CamelModel):
    label: str
    min_nights: int
    rate: Decimal
    nights_needed: int


class PricingInfo(CamelModel):
    """Full breakdown returned with every quote"""
    nights: int
    priced_nights: int
    base_price: Decimal
    missing_price_dates: List[date] = []
    additional_adults: int
    children: int
    guest_fee_per_night: Decimal
    guest_fee_total: Decimal
    subtotal: Decimal
    stay_discount: StayDiscountInfo
    seasonal_discount: SeasonalDiscountInfo
    combined_discount_rate: Decimal
    combined_discount_amount: Decimal
    cap_applied: bool
    loyalty_discount: LoyaltyDiscountInfo
    total_discount: Decimal
    final_total: Decimal
    effective_nightly_rate: Decimal
    currency: str
    is_complete: bool
    next_tier: Optional[NextTierInfo] = None

    @classmethod
    def from_breakdown(cls, b: PricingBreakdown) -> "PricingInfo":
        return cls(
            nights=b.nights,
            priced_nights=b.priced_nights,
            base_price=b.base_total,
            missing_price_dates=b.missing_price_dates,
            additional_adults=b.additional_adults,
            children=b.children,
            guest_fee_per_night=b.guest_fee_per_night,
            guest_fee_total=b.guest_fee_total,
            subtotal=b.subtotal,
            stay_discount=StayDiscountInfo(
                tier=b.stay_discount_tier,
                rate=b.stay_discount_rate,
                amount=b.stay_discount_amount,
            ),
            seasonal_discount=SeasonalDiscountInfo(
                rate=b.seasonal_discount_rate,
                amount=b.seasonal_discount_amount,
            ),
            combined_discount_rate=b.combined_discount_rate,
            combined_discount_amount=b.combined_discount_amount,
            cap_applied=b.cap_applied,
            loyalty_discount=LoyaltyDiscountInfo(
                tier=b.loyalty_tier,
                rate=b.loyalty_discount_rate,
                amount=b.loyalty_discount_amount,
            ),
            total_discount=b.total_discount,
            final_total=b.final_total,
            effective_nightly_rate=b.effective_nightly_rate,
            currency=b.currency,
            is_complete=b.is_complete,
            next_tier=NextTierInfo(**b.next_tier) if b.next_tier else None,
        )


class PriceQuoteRequest(CamelModel):
    """
    Quote either explicit nightly prices, or an apartment stay whose prices
    come from the availability calendar.
    """
    nightly_prices: Optional[Dict[date, Optional[Decimal]]] = Field(
        None, description="Price per night; null for unknown"
    )
    apartment: Optional[str] = None
    check_in: Optional[date] = None
    check_out: Optional[date] = None
    guests: int = Field(default=2, ge=1, le=20)
    children: int = Field(default=0, ge=0, le=10)
    loyalty_tier: Optional[LoyaltyTier] = None

    @field_validator('nightly_prices')
    @classmethod
    def validate_nightly_prices(cls, v):
        if v is not None and not v:
            raise ValueError("nightlyPrices must contain at least one night")
        return v

    @model_validator(mode='after')
    def validate_mode(self):
        if self.nightly_prices is None:
            if not (self.apartment and self.check_in and self.check_out):
                raise ValueError("Provide nightlyPrices, or apartment with checkIn and checkOut")
        return self


class PriceQuoteResponse(CamelModel):
    success: bool = True
    apartment: Optional[str] = None
    is_available: Optional[bool] = None
    stale: bool = False
    pricing: PricingInfo


class DiscountTier(CamelModel):
    label: str
    min_nights: int
    rate: Decimal


class LoyaltyTierResponse(CamelModel):
    tier: LoyaltyTier
    display_name: str
    rate: Decimal
    min_bookings: int


class DiscountTiersResponse(CamelModel):
    stay_tiers: List[DiscountTier]
    seasonal_rate: Decimal
    seasonal_months: List[int]
    combined_cap: Decimal
    loyalty_tiers: List[LoyaltyTierResponse]
    adult_fee_per_night: Decimal
    child_fee_per_night: Decimal
    base_occupancy: int
    currency: str
