"""
Availability Matcher

Decides whether a requested stay fits an availability window.

Order of checks:
1. Range validity (at least one night)
2. Party size against the apartment capacity, when one is configured
3. Stay length against the effective min/max stay
4. Every night present and available
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import List, Optional

from ..models.availability import AvailabilityWindow, date_range


class ViolatedConstraint(str, Enum):
    INVALID_RANGE = "invalid_range"
    STAY_TOO_SHORT = "stay_too_short"
    STAY_TOO_LONG = "stay_too_long"
    INSUFFICIENT_AVAILABILITY = "insufficient_availability"
    TOO_MANY_GUESTS = "too_many_guests"


@dataclass
class MatchResult:
    ok: bool
    nights: int
    min_stay: int
    max_stay: int
    violated_constraint: Optional[ViolatedConstraint] = None
    unavailable_dates: List[date] = field(default_factory=list)
    max_guests: Optional[int] = None


def effective_stay_limits(window: AvailabilityWindow, check_in: date, check_out: date):
    """
    (min_stay, max_stay) for the requested nights.

    The strictest rule wins: the largest minStay and the smallest maxStay of
    any requested night. Nights outside the window fall back to the window's
    own limits.
    """
    records = [window.get(d) for d in date_range(check_in, check_out)]
    records = [r for r in records if r is not None]
    if not records:
        return window.min_stay, window.max_stay
    return max(r.min_stay for r in records), min(r.max_stay for r in records)


def is_range_available(
    window: AvailabilityWindow,
    check_in: date,
    check_out: date,
    guests: int = 0,
    max_guests: Optional[int] = None,
) -> MatchResult:
    """guests counts adults and children together; max_guests None means unlimited"""
    nights = (check_out - check_in).days
    if nights <= 0:
        return MatchResult(
            ok=False,
            nights=max(nights, 0),
            min_stay=window.min_stay,
            max_stay=window.max_stay,
            violated_constraint=ViolatedConstraint.INVALID_RANGE,
            max_guests=max_guests,
        )

    min_stay, max_stay = effective_stay_limits(window, check_in, check_out)

    if max_guests is not None and guests > max_guests:
        return MatchResult(
            False, nights, min_stay, max_stay,
            ViolatedConstraint.TOO_MANY_GUESTS,
            max_guests=max_guests,
        )

    # Stay length is rejected before looking at individual dates
    if nights < min_stay:
        return MatchResult(False, nights, min_stay, max_stay, ViolatedConstraint.STAY_TOO_SHORT, max_guests=max_guests)
    if max_stay and nights > max_stay:
        return MatchResult(False, nights, min_stay, max_stay, ViolatedConstraint.STAY_TOO_LONG, max_guests=max_guests)

    unavailable = []
    for day in date_range(check_in, check_out):
        record = window.get(day)
        if record is None or not record.available:
            unavailable.append(day)

    if unavailable:
        return MatchResult(
            False, nights, min_stay, max_stay,
            ViolatedConstraint.INSUFFICIENT_AVAILABILITY,
            unavailable,
            max_guests,
        )
    return MatchResult(True, nights, min_stay, max_stay, max_guests=max_guests)
