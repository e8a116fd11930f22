"""
Error taxonomy for the availability & pricing engine.

Every error that may cross the HTTP boundary carries a status code and a
user-safe message. Internal details (upstream payloads, credentials) stay in
the logs.
"""

from typing import Optional


class StayEngineError(Exception):
    """Base error. `message` is safe to show to API consumers."""

    status_code = 500
    code = "internal_error"
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, *, detail: Optional[str] = None):
        self.message = message or self.default_message
        # Internal context, logged but never returned to clients
        self.detail = detail
        super().__init__(self.message)


# ==================
# Configuration errors (fatal, not retried)
# ==================

class ConfigurationError(StayEngineError):
    status_code = 500
    code = "configuration_error"
    default_message = "Service is misconfigured"


# ==================
# Input validation errors (caller errors, rejected before I/O)
# ==================

class InvalidDateRangeError(StayEngineError):
    status_code = 400
    code = "invalid_date_range"
    default_message = "Invalid date range"


class UnknownApartmentError(StayEngineError):
    status_code = 404
    code = "unknown_apartment"
    default_message = "Unknown apartment"


class InvalidPricingInputError(StayEngineError):
    status_code = 400
    code = "invalid_pricing_input"
    default_message = "Invalid pricing input"


class InvalidGuestCountError(StayEngineError):
    status_code = 400
    code = "invalid_guest_count"
    default_message = "Invalid guest count"


# ==================
# Upstream errors
# ==================

class UpstreamError(StayEngineError):
    status_code = 502
    code = "upstream_error"
    default_message = "Calendar provider error"


class UpstreamAuthError(UpstreamError):
    """Credentials rejected. Needs operator intervention, never retried."""
    status_code = 502
    code = "upstream_auth_error"
    default_message = "Calendar provider rejected our credentials"


class UpstreamUnavailableError(UpstreamError):
    """Timeout, network failure, 429 or 5xx after retries."""
    status_code = 503
    code = "upstream_unavailable"
    default_message = "Calendar provider is unavailable"


class AvailabilityTemporarilyUnavailableError(StayEngineError):
    """Upstream failed and no cached copy exists. Never guess availability."""
    status_code = 503
    code = "availability_unavailable"
    default_message = "Availability is temporarily unavailable, please try again shortly"


# ==================
# Cache errors (never cross the cache store boundary)
# ==================

class CacheUnavailableError(StayEngineError):
    code = "cache_unavailable"
    default_message = "Cache backend unreachable"


class BatchTooLargeError(StayEngineError):
    status_code = 400
    code = "batch_too_large"
    default_message = "Too many requests in one batch"
