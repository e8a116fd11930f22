"""
Beds24 API Client

Wrapper for the Beds24 v2 API that handles:
- Authentication via "token" header, with refresh-token renewal on 401
- Token bucket rate limiting per property
- Request logging with request_id (credentials redacted)
- Error handling with structured mapping
- Exponential backoff with 429 pause handling

Only read calls used by the availability engine live here. The client never
caches; callers own caching.

Beds24 API Documentation: https://beds24.com/api/v2/
"""

import time
import threading
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Any, Tuple
from dataclasses import dataclass

import httpx

from ..config import settings
from ..errors import (
    ConfigurationError,
    InvalidDateRangeError,
    UpstreamAuthError,
    UpstreamError,
    UpstreamUnavailableError,
)
from ..models.availability import ApartmentRef, RawCalendar
from ..models.rate_state import PropertyRateState
from ..utils.logging_config import get_logger, current_request_id
from ..utils.metrics import record_upstream_call

logger = get_logger(__name__)


@dataclass
class Beds24Response:
    """Wrapper for Beds24 API responses with structured error info"""
    success: bool
    status_code: int
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    request_id: Optional[str] = None
    should_retry: bool = False
    rate_limited: bool = False


@dataclass
class Beds24Error:
    """Structured error from Beds24 API"""
    code: str
    message: str
    status_code: int
    retryable: bool = False


# Error mapping for Beds24 responses
ERROR_MAP = {
    400: Beds24Error("bad_request", "Invalid request parameters", 400, False),
    401: Beds24Error("unauthorized", "Invalid or expired token", 401, False),
    403: Beds24Error("forbidden", "Access denied to this resource", 403, False),
    404: Beds24Error("not_found", "Resource not found", 404, False),
    429: Beds24Error("rate_limited", "Too many requests", 429, True),
    500: Beds24Error("server_error", "Beds24 server error", 500, True),
    502: Beds24Error("bad_gateway", "Beds24 gateway error", 502, True),
    503: Beds24Error("service_unavailable", "Beds24 service unavailable", 503, True),
}

SENSITIVE_KEYS = ("token", "refreshtoken", "authorization", "secret", "password", "api_key")


class TokenBucketRateLimiter:
    """
    In-process token bucket rate limiter, one bucket per upstream property.

    Shared by every client in the process so concurrent requests draw from the
    same budget.
    """

    def __init__(self, rate_per_minute: Optional[int] = None):
        self.rate_per_minute = rate_per_minute or settings.upstream_rate_limit
        self._states: Dict[str, PropertyRateState] = {}
        self._lock = threading.Lock()

    def get_or_create_state(self, prop_id: str) -> PropertyRateState:
        state = self._states.get(prop_id)
        if state is None:
            state = PropertyRateState(prop_id=prop_id, rate_per_minute=self.rate_per_minute)
            self._states[prop_id] = state
        return state

    def can_make_request(self, prop_id: str) -> Tuple[bool, float]:
        """
        Check if we can make a request for this property.

        Returns: (can_request, wait_time_seconds)
        """
        with self._lock:
            state = self.get_or_create_state(prop_id)
            if state.is_paused():
                return False, max(0.0, (state.paused_until - datetime.utcnow()).total_seconds())
            wait = state.wait_time_for_token()
            return wait == 0.0, wait

    def consume(self, prop_id: str) -> bool:
        with self._lock:
            state = self.get_or_create_state(prop_id)
            if state.is_paused():
                return False
            return state.consume_token()

    def on_429(self, prop_id: str):
        """Handle 429 response - pause the property"""
        with self._lock:
            state = self.get_or_create_state(prop_id)
            state.pause_on_429()
        logger.warning(
            f"Property {prop_id} paused until {state.paused_until} "
            f"due to 429 (attempt {state.pause_count})"
        )

    def on_success(self, prop_id: str):
        with self._lock:
            self.get_or_create_state(prop_id).clear_pause()


# Process-wide limiter
rate_limiter = TokenBucketRateLimiter()


class Beds24Client:
    """
    Client for Beds24 calendar reads.

    Features:
    - "token" auth header, refreshed once per 401 via refresh token
    - Token bucket rate limiting per property
    - Bounded timeout on every call
    - Structured error mapping
    - Exponential backoff, 429 pauses the property
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        http_client: Optional[httpx.Client] = None,
        limiter: Optional[TokenBucketRateLimiter] = None,
        request_id: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = (base_url or settings.beds24_base_url).rstrip("/")
        self.access_token = access_token if access_token is not None else settings.beds24_access_token
        self.refresh_token = refresh_token if refresh_token is not None else settings.beds24_refresh_token
        self.timeout = timeout or settings.upstream_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.upstream_max_retries
        self.max_range_days = settings.upstream_max_range_days
        self._request_id = request_id

        self._http = http_client
        self._limiter = limiter or rate_limiter
        self._sleep = sleep
        self._token_lock = threading.Lock()

        # Retry configuration
        self.base_delay = 0.5
        self.max_delay = 8.0

    # ==================
    # Plumbing
    # ==================

    @property
    def request_id(self) -> str:
        """Explicit id, else the id of the HTTP request being served"""
        return self._request_id or current_request_id() or "no-request-id"

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "token": self.access_token,
            "User-Agent": "StayEngine/1.0",
            "X-Request-ID": self.request_id,
        }

    @staticmethod
    def _sanitize(values: Optional[Dict]) -> Optional[Dict]:
        """Remove credentials before logging"""
        if not values:
            return values
        return {
            k: "[REDACTED]" if any(s in k.lower() for s in SENSITIVE_KEYS) else v
            for k, v in values.items()
        }

    def _map_error(self, status_code: int, response_data: Optional[Any]) -> Beds24Error:
        """Map HTTP status code to structured error"""
        if status_code in ERROR_MAP:
            error = ERROR_MAP[status_code]
            if isinstance(response_data, dict):
                msg = response_data.get("error") or response_data.get("message")
                if isinstance(msg, str) and msg:
                    return Beds24Error(error.code, msg, status_code, error.retryable)
            return error

        if status_code >= 500:
            return Beds24Error("server_error", f"Server error: {status_code}", status_code, True)

        return Beds24Error("unknown", f"Unknown error: {status_code}", status_code, False)

    def _send(self, method: str, url: str, headers: Dict, params: Optional[Dict]) -> httpx.Response:
        if self._http is not None:
            return self._http.request(method, url, headers=headers, params=params, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.request(method, url, headers=headers, params=params)

    def _rate_limited_response(self, message: str) -> Beds24Response:
        return Beds24Response(
            success=False,
            status_code=429,
            error=message,
            error_code="rate_limited",
            should_retry=True,
            rate_limited=True,
            request_id=self.request_id
        )

    def _wait_for_token(self, prop_id: str) -> bool:
        can_request, wait_time = self._limiter.can_make_request(prop_id)
        if can_request:
            return True
        if wait_time > self.max_delay:
            return False
        logger.info(f"[{self.request_id}] Rate limited, waiting {wait_time:.2f}s")
        self._sleep(wait_time)
        can_request, _ = self._limiter.can_make_request(prop_id)
        return can_request

    def _make_request(
        self,
        method: str,
        endpoint: str,
        prop_id: str,
        params: Optional[Dict] = None,
    ) -> Beds24Response:
        """
        Make an HTTP request to Beds24 with rate limiting and retry logic.

        Auth failures are refreshed once; network errors and 5xx are retried
        with exponential backoff. A 429 pauses the property and ends the call:
        nothing more is sent until the pause expires.
        """
        url = f"{self.base_url}{endpoint}"

        if not self.access_token:
            self.refresh_access_token()

        last_error = None
        last_status = 0
        refreshed = False
        attempt = 0

        while attempt < self.max_retries:
            # Checked before every send, retries included
            if not self._wait_for_token(prop_id) or not self._limiter.consume(prop_id):
                return self._rate_limited_response("Rate limit exceeded, try later")
            try:
                logger.debug(
                    f"[{self.request_id}] {method} {url} params={self._sanitize(params)}"
                )
                response = self._send(method, url, self._get_headers(), params)
                status_code = response.status_code
                last_status = status_code

                try:
                    data = response.json()
                except ValueError:
                    data = None

                if 200 <= status_code < 300:
                    self._limiter.on_success(prop_id)
                    return Beds24Response(
                        success=True,
                        status_code=status_code,
                        data=data,
                        request_id=self.request_id
                    )

                # Expired token - refresh once and retry without counting an attempt
                if status_code == 401 and not refreshed and self.refresh_token:
                    refreshed = True
                    self.refresh_access_token()
                    continue

                if status_code == 429:
                    self._limiter.on_429(prop_id)
                    logger.warning(f"[{self.request_id}] Rate limited (429) on property {prop_id}, not retrying")
                    return self._rate_limited_response("Rate limited by upstream")

                if status_code >= 500:
                    last_error = f"Server error {status_code}"
                    delay = min(self.base_delay * (2 ** attempt), self.max_delay)
                    logger.warning(f"[{self.request_id}] Server error ({status_code}), retrying in {delay}s")
                    self._sleep(delay)
                    attempt += 1
                    continue

                # Client error - don't retry
                error = self._map_error(status_code, data)
                return Beds24Response(
                    success=False,
                    status_code=status_code,
                    error=error.message,
                    error_code=error.code,
                    data=data,
                    should_retry=error.retryable,
                    request_id=self.request_id
                )

            except httpx.HTTPError as e:
                last_error = f"{type(e).__name__}: {e}"
                delay = min(self.base_delay * (2 ** attempt), self.max_delay)
                logger.warning(f"[{self.request_id}] Request failed: {last_error}, retrying in {delay}s")
                self._sleep(delay)
                attempt += 1

        return Beds24Response(
            success=False,
            status_code=last_status,
            error=f"All retries failed: {last_error}",
            error_code="retries_exhausted",
            should_retry=True,
            request_id=self.request_id
        )

    # ==================
    # Authentication
    # ==================

    def refresh_access_token(self) -> str:
        """
        Exchange the refresh token for a new access token.

        Raises ConfigurationError when no credentials are configured and
        UpstreamAuthError when Beds24 rejects the refresh token.
        """
        with self._token_lock:
            if not self.refresh_token:
                if self.access_token:
                    return self.access_token
                raise ConfigurationError(detail="BEDS24_ACCESS_TOKEN / BEDS24_REFRESH_TOKEN not set")

            url = f"{self.base_url}/authentication/token"
            headers = {"Accept": "application/json", "refreshToken": self.refresh_token}
            try:
                if self._http is not None:
                    response = self._http.get(url, headers=headers, timeout=self.timeout)
                else:
                    with httpx.Client(timeout=self.timeout) as client:
                        response = client.get(url, headers=headers)
            except httpx.HTTPError as e:
                raise UpstreamUnavailableError(detail=f"Token refresh failed: {type(e).__name__}")

            if response.status_code in (401, 403):
                raise UpstreamAuthError(detail="Refresh token rejected")
            if response.status_code >= 400:
                raise UpstreamUnavailableError(detail=f"Token refresh returned {response.status_code}")

            try:
                token = response.json().get("token")
            except (ValueError, AttributeError):
                token = None
            if not token:
                raise UpstreamAuthError(detail="Token refresh response had no token")

            self.access_token = token
            logger.info(f"[{self.request_id}] Beds24 access token refreshed")
            return token

    # ==================
    # Calendar Operations
    # ==================

    def validate_range(self, start_date: date, end_date: date):
        """Reject empty, inverted or multi-year ranges before any I/O"""
        if end_date <= start_date:
            raise InvalidDateRangeError("Check-out must be after check-in")
        if (end_date - start_date).days > self.max_range_days:
            raise InvalidDateRangeError(
                f"Date range may not exceed {self.max_range_days} days"
            )

    @staticmethod
    def _extract_items(data: Any) -> Optional[List[Dict]]:
        """Unwrap the {"data": [...]} envelope. None when malformed."""
        if isinstance(data, dict) and isinstance(data.get("data"), list):
            items = data["data"]
        elif isinstance(data, list):
            items = data
        else:
            return None
        return [item for item in items if isinstance(item, dict)]

    def _raise_for_failure(self, response: Beds24Response, operation: str):
        if response.status_code in (401, 403):
            raise UpstreamAuthError(detail=f"{operation}: {response.error}")
        if response.should_retry or response.rate_limited or response.status_code == 0:
            raise UpstreamUnavailableError(detail=f"{operation}: {response.error}")
        raise UpstreamError(detail=f"{operation}: {response.error_code} {response.error}")

    def _fetch_items(
        self,
        operation: str,
        endpoint: str,
        apartment: ApartmentRef,
        params: Dict[str, Any],
    ) -> Optional[List[Dict]]:
        """Items of the response envelope, None when the payload is malformed"""
        start_time = time.perf_counter()
        success = False
        try:
            response = self._make_request("GET", endpoint, apartment.prop_id, params=params)
            if not response.success:
                self._raise_for_failure(response, operation)

            items = self._extract_items(response.data)
            if items is None:
                logger.warning(
                    f"[{self.request_id}] Malformed {operation} response for "
                    f"{apartment.slug}, treating as empty"
                )
            success = True
            return items
        finally:
            duration = time.perf_counter() - start_time
            record_upstream_call(operation, success, duration)
            logger.upstream_call(
                apartment.slug,
                operation,
                "success" if success else "error",
                round(duration * 1000, 2),
                request_id=self.request_id,
            )

    def get_room_calendar(self, apartment: ApartmentRef, start_date: date, end_date: date) -> Optional[List[Dict]]:
        """
        Per-date inventory for one room.

        Beds24 end dates are inclusive, so the last requested night is end - 1.
        """
        params = {
            "propertyId": apartment.prop_id,
            "roomId": apartment.room_id,
            "startDate": start_date.isoformat(),
            "endDate": (end_date - timedelta(days=1)).isoformat(),
            "includeNumAvail": "true",
            "includePrices": "true",
            "includeMinStay": "true",
            "includeMaxStay": "true",
        }
        return self._fetch_items("calendar", "/inventory/rooms/calendar", apartment, params)

    def get_bookings(self, apartment: ApartmentRef, start_date: date, end_date: date) -> Optional[List[Dict]]:
        """Bookings overlapping [start_date, end_date); None when the payload is malformed"""
        params = {
            "propertyId": apartment.prop_id,
            "roomId": apartment.room_id,
            "arrivalTo": (end_date - timedelta(days=1)).isoformat(),
            "departureFrom": (start_date + timedelta(days=1)).isoformat(),
            "status": ["confirmed", "new"],
        }
        return self._fetch_items("bookings", "/bookings", apartment, params)

    def fetch_calendar(self, apartment: ApartmentRef, start_date: date, end_date: date) -> RawCalendar:
        """
        Raw calendar and booking records for [start_date, end_date).

        Raises:
            InvalidDateRangeError: empty or too long range (no I/O performed)
            ConfigurationError: no credentials configured
            UpstreamAuthError: credentials rejected (fatal)
            UpstreamUnavailableError: timeout / 429 / 5xx after retries
        """
        self.validate_range(start_date, end_date)
        if not self.access_token and not self.refresh_token:
            raise ConfigurationError(detail="Beds24 credentials missing")

        days = self.get_room_calendar(apartment, start_date, end_date)
        bookings = self.get_bookings(apartment, start_date, end_date)
        malformed = [name for name, items in (("calendar", days), ("bookings", bookings)) if items is None]
        return RawCalendar(days=days or [], bookings=bookings or [], malformed=malformed)


def get_beds24_client(request_id: Optional[str] = None) -> Beds24Client:
    """Factory function to create a Beds24 client from settings"""
    return Beds24Client(request_id=request_id)
