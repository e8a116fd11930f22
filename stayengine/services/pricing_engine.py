"""
Pricing Engine Service

Computes the price of a stay from nightly base rates:
- Additional-guest surcharge (above 2 adults, every child)
- Stay-length discount tiers (weekly / extended / monthly, never stacked)
- Off-season discount (check-in October-March), combined with the stay
  discount under a 40% cap
- Optional loyalty discount, applied on top and outside the cap

Pricing Formula:
1. base = sum of known positive nightly prices
2. subtotal = base + (extra_adults * 20 + children * 10) * nights
3. combined = subtotal * min(stay_rate + seasonal_rate, 0.40) when both apply,
   otherwise whichever applies, uncapped
4. loyalty = subtotal * loyalty_rate
5. final = max(0, subtotal - combined - loyalty)

Pure and deterministic: the same inputs always give the same breakdown. The
HTTP quote endpoint and the availability check both call calculate_pricing.
"""

from datetime import date
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional
from dataclasses import dataclass, field

from ..errors import InvalidPricingInputError
from .loyalty import LoyaltyTier, loyalty_rate

CENT = Decimal("0.01")

BASE_OCCUPANCY = 2
ADULT_FEE_PER_NIGHT = Decimal("20")
CHILD_FEE_PER_NIGHT = Decimal("10")

SEASONAL_RATE = Decimal("0.20")
OFF_SEASON_MONTHS = frozenset({10, 11, 12, 1, 2, 3})
COMBINED_DISCOUNT_CAP = Decimal("0.40")


@dataclass(frozen=True)
class StayDiscountTier:
    min_nights: int
    rate: Decimal
    label: str


# Ordered by min_nights descending; first match wins
STAY_DISCOUNT_TIERS: List[StayDiscountTier] = [
    StayDiscountTier(30, Decimal("0.20"), "monthly"),
    StayDiscountTier(14, Decimal("0.15"), "extended"),
    StayDiscountTier(7, Decimal("0.10"), "weekly"),
]


@dataclass
class PricingBreakdown:
    """Full price calculation for one stay. Never persisted."""
    nights: int
    priced_nights: int
    base_total: Decimal
    missing_price_dates: List[date]
    additional_adults: int
    children: int
    guest_fee_per_night: Decimal
    guest_fee_total: Decimal
    subtotal: Decimal
    stay_discount_tier: Optional[str]
    stay_discount_rate: Decimal
    stay_discount_amount: Decimal
    seasonal_discount_rate: Decimal
    seasonal_discount_amount: Decimal
    combined_discount_rate: Decimal
    combined_discount_amount: Decimal
    cap_applied: bool
    loyalty_tier: Optional[LoyaltyTier]
    loyalty_discount_rate: Decimal
    loyalty_discount_amount: Decimal
    total_discount: Decimal
    final_total: Decimal
    effective_nightly_rate: Decimal
    currency: str = "EUR"
    next_tier: Optional[Dict[str, Any]] = None
    nightly_prices: Dict[date, Optional[Decimal]] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        return not self.missing_price_dates


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _to_price(value: Any) -> Optional[Decimal]:
    """Known positive price or None"""
    if value is None or isinstance(value, bool):
        return None
    try:
        price = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        return None
    if not price.is_finite() or price <= 0:
        return None
    return price


def select_stay_discount(nights: int) -> Optional[StayDiscountTier]:
    """Highest tier the stay qualifies for, or None"""
    for tier in STAY_DISCOUNT_TIERS:
        if nights >= tier.min_nights:
            return tier
    return None


def next_discount_tier(nights: int) -> Optional[Dict[str, Any]]:
    """Next tier the guest could reach by staying longer"""
    for tier in reversed(STAY_DISCOUNT_TIERS):
        if nights < tier.min_nights:
            return {
                "label": tier.label,
                "min_nights": tier.min_nights,
                "rate": tier.rate,
                "nights_needed": tier.min_nights - nights,
            }
    return None


def discount_tiers() -> List[Dict[str, Any]]:
    """Stay discount tiers in ascending order, for display"""
    return [
        {"label": t.label, "min_nights": t.min_nights, "rate": t.rate}
        for t in reversed(STAY_DISCOUNT_TIERS)
    ]


def seasonal_discount_rate(check_in: Optional[date]) -> Decimal:
    if check_in is not None and check_in.month in OFF_SEASON_MONTHS:
        return SEASONAL_RATE
    return Decimal("0")


def additional_guest_fee(guests: int, children: int) -> Decimal:
    """Surcharge per night for guests above base occupancy"""
    extra_adults = max(0, guests - BASE_OCCUPANCY)
    return extra_adults * ADULT_FEE_PER_NIGHT + max(0, children) * CHILD_FEE_PER_NIGHT


def calculate_pricing(
    nightly_prices: Mapping[date, Any],
    guests: int,
    children: int = 0,
    loyalty_tier: Optional[LoyaltyTier] = None,
    check_in: Optional[date] = None,
    currency: str = "EUR",
) -> PricingBreakdown:
    """
    Price a stay.

    Args:
        nightly_prices: One entry per night; None or non-positive means unknown
        guests: Adults, at least 1
        children: Children, 0 or more
        loyalty_tier: Caller-supplied tier, None for no loyalty discount
        check_in: Decides the seasonal discount; defaults to the first night

    Raises:
        InvalidPricingInputError: no nights or negative guest counts
    """
    nights = len(nightly_prices)
    if nights == 0:
        raise InvalidPricingInputError("A stay must have at least one night")
    if guests < 1:
        raise InvalidPricingInputError("At least one guest is required")
    if children < 0:
        raise InvalidPricingInputError("Children cannot be negative")

    if check_in is None:
        check_in = min(nightly_prices)

    prices: Dict[date, Optional[Decimal]] = {}
    missing: List[date] = []
    base_total = Decimal("0")
    for night in sorted(nightly_prices):
        price = _to_price(nightly_prices[night])
        prices[night] = price
        if price is None:
            missing.append(night)
        else:
            base_total += price
    base_total = _money(base_total)

    # Step 1: Guest surcharge
    fee_per_night = _money(additional_guest_fee(guests, children))
    fee_total = _money(fee_per_night * nights)
    subtotal = base_total + fee_total

    # Step 2: Stay tier and seasonal, capped only when combined
    tier = select_stay_discount(nights)
    stay_rate = tier.rate if tier else Decimal("0")
    seasonal_rate = seasonal_discount_rate(check_in)

    cap_applied = False
    if stay_rate and seasonal_rate:
        combined_rate = stay_rate + seasonal_rate
        if combined_rate > COMBINED_DISCOUNT_CAP:
            combined_rate = COMBINED_DISCOUNT_CAP
            cap_applied = True
    else:
        combined_rate = stay_rate or seasonal_rate

    combined_amount = _money(subtotal * combined_rate)
    stay_amount = _money(subtotal * stay_rate)
    # Seasonal absorbs any reduction from the cap
    seasonal_amount = combined_amount - stay_amount

    # Step 3: Loyalty, outside the cap
    l_rate = loyalty_rate(loyalty_tier)
    loyalty_amount = _money(subtotal * l_rate)

    total_discount = combined_amount + loyalty_amount
    final_total = max(Decimal("0.00"), subtotal - total_discount)

    return PricingBreakdown(
        nights=nights,
        priced_nights=nights - len(missing),
        base_total=base_total,
        missing_price_dates=missing,
        additional_adults=max(0, guests - BASE_OCCUPANCY),
        children=children,
        guest_fee_per_night=fee_per_night,
        guest_fee_total=fee_total,
        subtotal=subtotal,
        stay_discount_tier=tier.label if tier else None,
        stay_discount_rate=stay_rate,
        stay_discount_amount=stay_amount,
        seasonal_discount_rate=seasonal_rate,
        seasonal_discount_amount=seasonal_amount,
        combined_discount_rate=combined_rate,
        combined_discount_amount=combined_amount,
        cap_applied=cap_applied,
        loyalty_tier=LoyaltyTier(loyalty_tier) if loyalty_tier else None,
        loyalty_discount_rate=l_rate,
        loyalty_discount_amount=loyalty_amount,
        total_discount=total_discount,
        final_total=final_total,
        effective_nightly_rate=_money(final_total / nights),
        currency=currency,
        next_tier=next_discount_tier(nights),
        nightly_prices=prices,
    )
