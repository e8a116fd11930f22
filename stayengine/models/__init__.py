# Models package
from .availability import (
    ApartmentRef,
    AvailabilityWindow,
    DateAvailabilityRecord,
    RawCalendar,
    date_range,
)
from .rate_state import PropertyRateState

__all__ = [
    "ApartmentRef",
    "AvailabilityWindow",
    "DateAvailabilityRecord",
    "RawCalendar",
    "date_range",
    "PropertyRateState",
]
