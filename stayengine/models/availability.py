"""
Availability domain model

Plain value objects shared by the normalizer, cache store, matcher and
orchestrator. Windows serialize to JSON-safe dicts for the cache tiers.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Any


@dataclass(frozen=True)
class ApartmentRef:
    """Internal apartment slug -> upstream property/room pair"""
    slug: str
    prop_id: str
    room_id: str
    name: str = ""
    max_guests: Optional[int] = None


@dataclass(frozen=True)
class DateAvailabilityRecord:
    """One calendar day for one apartment"""
    date: date
    available: bool
    price: Optional[Decimal]
    min_stay: int
    max_stay: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "available": self.available,
            "price": str(self.price) if self.price is not None else None,
            "min_stay": self.min_stay,
            "max_stay": self.max_stay,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DateAvailabilityRecord":
        price = data.get("price")
        return cls(
            date=date.fromisoformat(data["date"]),
            available=bool(data["available"]),
            price=Decimal(price) if price is not None else None,
            min_stay=int(data["min_stay"]),
            max_stay=int(data["max_stay"]),
        )


@dataclass
class AvailabilityWindow:
    """
    Per-date availability for one apartment over [start, end).

    Every date in the range has exactly one record.
    """
    apartment: str
    start: date
    end: date
    days: Dict[date, DateAvailabilityRecord] = field(default_factory=dict)

    def __iter__(self) -> Iterator[DateAvailabilityRecord]:
        for day in sorted(self.days):
            yield self.days[day]

    def get(self, day: date) -> Optional[DateAvailabilityRecord]:
        return self.days.get(day)

    @property
    def available_dates(self) -> List[date]:
        return [r.date for r in self if r.available]

    @property
    def booked_dates(self) -> List[date]:
        return [r.date for r in self if not r.available]

    @property
    def price_gaps(self) -> List[date]:
        """Available dates without a known price"""
        return [r.date for r in self if r.available and r.price is None]

    @property
    def prices(self) -> Dict[date, Decimal]:
        return {r.date: r.price for r in self if r.price is not None}

    @property
    def min_stay(self) -> int:
        return min((r.min_stay for r in self), default=1)

    @property
    def max_stay(self) -> int:
        return max((r.max_stay for r in self), default=0)

    def nightly_prices(self, check_in: date, check_out: date) -> Dict[date, Optional[Decimal]]:
        """Price per requested night, None where unknown or outside the window"""
        prices = {}
        current = check_in
        while current < check_out:
            record = self.days.get(current)
            prices[current] = record.price if record else None
            current += timedelta(days=1)
        return prices

    def to_dict(self) -> Dict[str, Any]:
        return {
            "apartment": self.apartment,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "days": [r.to_dict() for r in self],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AvailabilityWindow":
        records = [DateAvailabilityRecord.from_dict(d) for d in data.get("days", [])]
        return cls(
            apartment=data["apartment"],
            start=date.fromisoformat(data["start"]),
            end=date.fromisoformat(data["end"]),
            days={r.date: r for r in records},
        )


@dataclass
class RawCalendar:
    """
    Raw upstream items, exactly as Beds24 returned them.

    days: calendar entries (single date or from/to range)
    bookings: reservations with arrival/departure/status
    malformed: operations whose payload could not be read
    """
    days: List[Dict[str, Any]] = field(default_factory=list)
    bookings: List[Dict[str, Any]] = field(default_factory=list)
    malformed: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.malformed


def date_range(start: date, end: date) -> List[date]:
    """Dates from start (inclusive) to end (exclusive)."""
    dates = []
    current = start
    while current < end:
        dates.append(current)
        current += timedelta(days=1)
    return dates
