"""
Rate State

Per-property rate limiting state for the Beds24 API, kept in process.
Token bucket: `rate_per_minute` tokens, refilled continuously.

On 429: pause property for 60s, then exponential backoff.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional


@dataclass
class PropertyRateState:
    """
    Tracks rate limiting state per upstream property.

    Pause state:
    - paused_until: if set and > now, property is paused
    - pause_count: how many consecutive pauses (for exponential backoff)
    """
    prop_id: str
    rate_per_minute: float = 30.0
    tokens: float = field(default=-1.0)
    last_refill_at: datetime = field(default_factory=datetime.utcnow)

    paused_until: Optional[datetime] = None
    pause_count: int = 0
    last_429_at: Optional[datetime] = None

    total_requests: int = 0
    total_429s: int = 0

    BASE_PAUSE_SECONDS = 60
    MAX_PAUSE_SECONDS = 600  # 10 minutes max pause

    def __post_init__(self):
        if self.tokens < 0:
            self.tokens = self.max_tokens

    @property
    def max_tokens(self) -> float:
        return float(self.rate_per_minute)

    @property
    def refill_rate(self) -> float:
        """Tokens per second"""
        return self.rate_per_minute / 60.0

    def refill_tokens(self) -> float:
        """Refill based on elapsed time. Returns token count after refill."""
        now = datetime.utcnow()
        elapsed_seconds = (now - self.last_refill_at).total_seconds()
        self.tokens = min(self.max_tokens, self.tokens + elapsed_seconds * self.refill_rate)
        self.last_refill_at = now
        return self.tokens

    def consume_token(self) -> bool:
        """Try to consume a token. Returns True if successful."""
        self.refill_tokens()
        if self.tokens >= 1.0:
            self.tokens -= 1.0
            self.total_requests += 1
            return True
        return False

    def wait_time_for_token(self) -> float:
        """Seconds to wait before a token is available."""
        self.refill_tokens()
        if self.tokens >= 1.0:
            return 0.0
        return (1.0 - self.tokens) / self.refill_rate

    def is_paused(self) -> bool:
        if not self.paused_until:
            return False
        return datetime.utcnow() < self.paused_until

    def pause_on_429(self):
        """Exponential backoff: 60s, 120s, 240s, 480s, max 600s"""
        self.pause_count += 1
        self.total_429s += 1
        self.last_429_at = datetime.utcnow()

        pause_seconds = min(
            self.BASE_PAUSE_SECONDS * (2 ** (self.pause_count - 1)),
            self.MAX_PAUSE_SECONDS
        )
        self.paused_until = datetime.utcnow() + timedelta(seconds=pause_seconds)

    def clear_pause(self):
        """Clear pause state after a successful request."""
        if self.paused_until and datetime.utcnow() >= self.paused_until:
            self.paused_until = None
        # Decay slowly rather than reset
        if self.pause_count > 0:
            self.pause_count = max(0, self.pause_count - 1)
