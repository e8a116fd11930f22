"""
Multi-Tier Cache Store

Cache-aside storage for availability windows.

Tiers:
- RedisCacheBackend: shared across instances, the source of cache truth
- MemoryCacheBackend: in-process dict, used only while Redis is unreachable
- FallbackCacheBackend: tries the primary, falls back to the secondary on
  CacheUnavailableError, with a circuit breaker in front of the primary

Entries are stored as an envelope {stored_at, ttl, payload}. The backend keeps
them for ttl + stale grace so an expired entry can still be served (flagged
stale) when the upstream API is down.

A cache outage never raises past AvailabilityCacheStore: it degrades to a miss.
"""

import fnmatch
import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from decimal import InvalidOperation
from enum import Enum
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Tuple

import redis

from ..config import settings
from ..errors import CacheUnavailableError
from ..models.availability import AvailabilityWindow
from ..utils.logging_config import get_logger
from ..utils.metrics import cache_circuit_open, record_cache_result

logger = get_logger(__name__)


def availability_key(apartment: str, start: date, end: date, guests: int) -> str:
    return f"availability:{apartment}:{start.isoformat()}:{end.isoformat()}:{guests}"


# ==================
# Backends
# ==================

class CacheBackend(ABC):
    """Raw string storage with physical expiry"""

    name = "backend"

    @abstractmethod
    def get_raw(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set_raw(self, key: str, value: str, ttl: int) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    def delete_pattern(self, pattern: str) -> int:
        """Delete keys matching a glob pattern. Returns count deleted."""

    @abstractmethod
    def clear(self) -> int:
        ...

    @abstractmethod
    def ping(self) -> bool:
        ...

    @abstractmethod
    def key_count(self) -> int:
        ...

    def get_raw_tiered(self, key: str) -> Tuple[Optional[str], str]:
        """Value plus the name of the tier that answered"""
        return self.get_raw(key), self.name

    def status(self) -> Dict[str, Any]:
        try:
            healthy = self.ping()
        except CacheUnavailableError:
            healthy = False
        return {"tier": self.name, "healthy": healthy}


class MemoryCacheBackend(CacheBackend):
    """Thread-safe in-process dict with per-key expiry"""

    name = "memory"

    def __init__(self, max_entries: int = 1000, clock: Callable[[], float] = time.time):
        self.max_entries = max_entries
        self._clock = clock
        self._data: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _purge_expired(self, now: float):
        for key in [k for k, (_, exp) in self._data.items() if exp <= now]:
            del self._data[key]

    def get_raw(self, key: str) -> Optional[str]:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at <= self._clock():
                del self._data[key]
                return None
            return value

    def set_raw(self, key: str, value: str, ttl: int) -> None:
        with self._lock:
            now = self._clock()
            if key not in self._data and len(self._data) >= self.max_entries:
                self._purge_expired(now)
                if len(self._data) >= self.max_entries:
                    # Evict the entry closest to expiry
                    oldest = min(self._data, key=lambda k: self._data[k][1])
                    del self._data[oldest]
            self._data[key] = (value, now + ttl)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            keys = [k for k in self._data if fnmatch.fnmatchcase(k, pattern)]
            for key in keys:
                del self._data[key]
            return len(keys)

    def clear(self) -> int:
        with self._lock:
            count = len(self._data)
            self._data.clear()
            return count

    def ping(self) -> bool:
        return True

    def key_count(self) -> int:
        with self._lock:
            self._purge_expired(self._clock())
            return len(self._data)


class RedisCacheBackend(CacheBackend):
    """
    Redis tier. Every redis error is converted to CacheUnavailableError.

    Keys are namespaced so a shared Redis can hold other data.
    """

    name = "redis"

    def __init__(
        self,
        url: Optional[str] = None,
        client: Optional[redis.Redis] = None,
        namespace: str = "stayengine:",
        timeout: Optional[float] = None,
    ):
        self.namespace = namespace
        if client is not None:
            self.client = client
        else:
            timeout = timeout or settings.redis_timeout_seconds
            self.client = redis.Redis.from_url(
                url or settings.redis_url,
                socket_timeout=timeout,
                socket_connect_timeout=timeout,
                decode_responses=True,
            )

    def _k(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def get_raw(self, key: str) -> Optional[str]:
        try:
            return self.client.get(self._k(key))
        except redis.RedisError as e:
            raise CacheUnavailableError(detail=f"GET failed: {e}") from e

    def set_raw(self, key: str, value: str, ttl: int) -> None:
        try:
            self.client.set(self._k(key), value, ex=max(1, int(ttl)))
        except redis.RedisError as e:
            raise CacheUnavailableError(detail=f"SET failed: {e}") from e

    def delete(self, key: str) -> bool:
        try:
            return bool(self.client.delete(self._k(key)))
        except redis.RedisError as e:
            raise CacheUnavailableError(detail=f"DEL failed: {e}") from e

    def delete_pattern(self, pattern: str) -> int:
        """Delete matching keys using SCAN (never KEYS)"""
        try:
            keys = list(self.client.scan_iter(match=self._k(pattern), count=500))
            deleted = 0
            for i in range(0, len(keys), 500):
                deleted += self.client.delete(*keys[i:i + 500])
            return deleted
        except redis.RedisError as e:
            raise CacheUnavailableError(detail=f"SCAN/DEL failed: {e}") from e

    def clear(self) -> int:
        return self.delete_pattern("*")

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            raise CacheUnavailableError(detail=f"PING failed: {e}") from e

    def key_count(self) -> int:
        try:
            return sum(1 for _ in self.client.scan_iter(match=self._k("*"), count=500))
        except redis.RedisError as e:
            raise CacheUnavailableError(detail=f"SCAN failed: {e}") from e


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, skip primary
    HALF_OPEN = "half_open"  # Testing if primary recovered


class CircuitBreaker:
    """
    Stops hammering an unreachable cache tier.

    After `failure_threshold` consecutive failures the circuit opens and the
    primary is skipped for `recovery_timeout` seconds; the next call then
    probes it (half-open).
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._failure_count = 0
        self._opened_at: Optional[float] = None
        self._state = CircuitState.CLOSED
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            if self._state == CircuitState.OPEN and self._opened_at is not None:
                if self._clock() - self._opened_at >= self.recovery_timeout:
                    self._state = CircuitState.HALF_OPEN
            return self._state

    def allow(self) -> bool:
        return self.state != CircuitState.OPEN

    def record_success(self):
        with self._lock:
            self._failure_count = 0
            if self._state != CircuitState.CLOSED:
                self._state = CircuitState.CLOSED
                self._opened_at = None
                cache_circuit_open.set(0)
                logger.info("Cache circuit breaker recovered, closing circuit")

    def record_failure(self):
        with self._lock:
            self._failure_count += 1
            if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
                if self._state != CircuitState.OPEN:
                    logger.warning(
                        f"Cache circuit breaker opened after {self._failure_count} failures"
                    )
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()
                cache_circuit_open.set(1)

    def stats(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "failure_count": self._failure_count,
            "threshold": self.failure_threshold,
        }


class FallbackCacheBackend(CacheBackend):
    """
    Primary tier with an in-process secondary used only during primary outages.

    The secondary is not a second freshness level: while the primary is up,
    reads and writes go to the primary only.

    Invalidations the primary could not apply are queued and replayed before
    the next call that reaches it, so a recovered primary never serves an
    entry that was invalidated during the outage.
    """

    name = "fallback"

    def __init__(
        self,
        primary: CacheBackend,
        secondary: CacheBackend,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.primary = primary
        self.secondary = secondary
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=settings.cache_circuit_failure_threshold,
            recovery_timeout=settings.cache_circuit_recovery_seconds,
        )
        self._pending: List[str] = []
        self._pending_lock = threading.Lock()

    def _defer_invalidation(self, pattern: str):
        with self._pending_lock:
            if pattern not in self._pending:
                self._pending.append(pattern)
        logger.warning(
            f"Invalidation of {pattern} deferred until {self.primary.name} is reachable"
        )

    def _replay_pending(self):
        """Apply queued invalidations to the primary; raises CacheUnavailableError"""
        with self._pending_lock:
            pending, self._pending = self._pending, []
        for index, pattern in enumerate(pending):
            try:
                self.primary.delete_pattern(pattern)
            except CacheUnavailableError:
                with self._pending_lock:
                    remaining = pending[index:]
                    self._pending = remaining + [p for p in self._pending if p not in remaining]
                raise
        if pending:
            logger.info(f"Replayed {len(pending)} deferred invalidations on {self.primary.name}")

    @property
    def pending_invalidations(self) -> List[str]:
        with self._pending_lock:
            return list(self._pending)

    def _try_primary(self, operation: str, func: Callable, *args) -> Tuple[bool, Any]:
        """(True, result) when the primary answered, (False, None) otherwise"""
        if not self.breaker.allow():
            return False, None
        try:
            self._replay_pending()
            result = func(*args)
        except CacheUnavailableError as e:
            self.breaker.record_failure()
            record_cache_result(operation, self.primary.name, "error")
            logger.warning(f"Cache tier {self.primary.name} unavailable during {operation}: {e.detail}")
            return False, None
        self.breaker.record_success()
        return True, result

    def get_raw_tiered(self, key: str) -> Tuple[Optional[str], str]:
        ok, value = self._try_primary("get", self.primary.get_raw, key)
        if ok:
            return value, self.primary.name
        return self.secondary.get_raw(key), self.secondary.name

    def get_raw(self, key: str) -> Optional[str]:
        return self.get_raw_tiered(key)[0]

    def set_raw(self, key: str, value: str, ttl: int) -> None:
        ok, _ = self._try_primary("set", self.primary.set_raw, key, value, ttl)
        if not ok:
            self.secondary.set_raw(key, value, ttl)

    def delete(self, key: str) -> bool:
        ok, deleted = self._try_primary("delete", self.primary.delete, key)
        if not ok:
            self._defer_invalidation(key)
        return self.secondary.delete(key) or bool(deleted)

    def delete_pattern(self, pattern: str) -> int:
        # Both tiers: the secondary may hold entries written during an outage
        ok, deleted = self._try_primary("delete", self.primary.delete_pattern, pattern)
        if not ok:
            self._defer_invalidation(pattern)
        return (deleted or 0) + self.secondary.delete_pattern(pattern)

    def clear(self) -> int:
        ok, deleted = self._try_primary("clear", self.primary.clear)
        if not ok:
            self._defer_invalidation("*")
        return (deleted or 0) + self.secondary.clear()

    def ping(self) -> bool:
        ok, result = self._try_primary("ping", self.primary.ping)
        return bool(ok and result)

    def key_count(self) -> int:
        ok, count = self._try_primary("count", self.primary.key_count)
        return (count if ok else 0) + self.secondary.key_count()

    def status(self) -> Dict[str, Any]:
        primary_healthy = self.ping()
        return {
            "tier": self.primary.name if primary_healthy else self.secondary.name,
            "healthy": True,
            "primary": self.primary.name,
            "primary_healthy": primary_healthy,
            "degraded": not primary_healthy,
            "pending_invalidations": len(self.pending_invalidations),
            "circuit_breaker": self.breaker.stats(),
        }


# ==================
# Store
# ==================

@dataclass
class CacheEntry:
    """A cached availability window and its freshness metadata"""
    key: str
    window: AvailabilityWindow
    stored_at: float
    ttl: int
    tier: str

    def age(self, now: float) -> float:
        return max(0.0, now - self.stored_at)

    def is_expired(self, now: float) -> bool:
        return self.age(now) >= self.ttl


class AvailabilityCacheStore:
    """
    Envelope-aware availability cache on top of any CacheBackend.

    get() returns fresh entries only; get_stale() also returns entries past
    their ttl but still inside the stale grace period.
    """

    def __init__(
        self,
        backend: CacheBackend,
        stale_grace_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self.stale_grace_seconds = (
            stale_grace_seconds if stale_grace_seconds is not None
            else settings.cache_stale_grace_seconds
        )
        self._clock = clock
        self._stats = {"hits": 0, "misses": 0, "stale_hits": 0, "sets": 0, "errors": 0, "invalidations": 0}
        self._stats_lock = threading.Lock()

    def _bump(self, name: str):
        with self._stats_lock:
            self._stats[name] += 1

    def _read(self, key: str, operation: str) -> Optional[CacheEntry]:
        try:
            raw, tier = self.backend.get_raw_tiered(key)
        except CacheUnavailableError as e:
            self._bump("errors")
            record_cache_result(operation, self.backend.name, "error")
            logger.warning(f"Cache read failed for {key}, treating as miss: {e.detail}")
            return None

        if raw is None:
            return None

        try:
            envelope = json.loads(raw)
            return CacheEntry(
                key=key,
                window=AvailabilityWindow.from_dict(envelope["payload"]),
                stored_at=float(envelope["stored_at"]),
                ttl=int(envelope["ttl"]),
                tier=tier,
            )
        except (ValueError, KeyError, TypeError, AttributeError, InvalidOperation) as e:
            self._bump("errors")
            logger.warning(f"Discarding corrupt cache entry {key}: {e!r}")
            self._discard(key)
            return None

    def _discard(self, key: str):
        try:
            self.backend.delete(key)
        except CacheUnavailableError as e:
            logger.warning(f"Could not delete corrupt cache entry {key}: {e.detail}")

    def get(self, key: str) -> Optional[CacheEntry]:
        """Fresh entry or None (miss, expired, or cache outage)"""
        entry = self._read(key, "get")
        if entry is None or entry.is_expired(self._clock()):
            self._bump("misses")
            tier = entry.tier if entry else self.backend.name
            record_cache_result("get", tier, "miss")
            logger.cache_event("miss", key, tier)
            return None

        self._bump("hits")
        record_cache_result("get", entry.tier, "hit")
        logger.cache_event("hit", key, entry.tier)
        return entry

    def get_stale(self, key: str) -> Optional[CacheEntry]:
        """Entry regardless of logical expiry, for serving during upstream outages"""
        entry = self._read(key, "get_stale")
        if entry is None:
            record_cache_result("get_stale", self.backend.name, "miss")
            return None

        self._bump("stale_hits")
        record_cache_result("get_stale", entry.tier, "stale")
        logger.cache_event("stale", key, entry.tier, age_seconds=round(entry.age(self._clock()), 1))
        return entry

    def set(self, key: str, window: AvailabilityWindow, ttl: int) -> bool:
        envelope = {
            "stored_at": self._clock(),
            "ttl": int(ttl),
            "payload": window.to_dict(),
        }
        try:
            self.backend.set_raw(key, json.dumps(envelope), int(ttl) + self.stale_grace_seconds)
        except CacheUnavailableError as e:
            self._bump("errors")
            record_cache_result("set", self.backend.name, "error")
            logger.warning(f"Cache write failed for {key}: {e.detail}")
            return False

        self._bump("sets")
        record_cache_result("set", self.backend.name, "ok")
        return True

    def invalidate(self, pattern: str) -> int:
        """
        Remove entries matching an apartment-scoped pattern, e.g. "design-apartman:*".

        The pattern matches either the full key or the key after its category
        prefix, so "design-apartman:*" clears availability and pricing entries
        for that apartment.
        """
        if pattern in ("*", ""):
            return self.clear_all()

        deleted = 0
        try:
            deleted += self.backend.delete_pattern(pattern)
            if not pattern.startswith("*"):
                deleted += self.backend.delete_pattern(f"*:{pattern}")
        except CacheUnavailableError as e:
            self._bump("errors")
            logger.warning(f"Cache invalidation failed for {pattern}: {e.detail}")
            return deleted

        self._bump("invalidations")
        logger.cache_event("invalidate", pattern, self.backend.name, deleted=deleted)
        return deleted

    def clear_all(self) -> int:
        try:
            deleted = self.backend.clear()
        except CacheUnavailableError as e:
            self._bump("errors")
            logger.warning(f"Cache clear failed: {e.detail}")
            return 0
        self._bump("invalidations")
        logger.info(f"Cache cleared ({deleted} entries)")
        return deleted

    def stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            counters = dict(self._stats)
        lookups = counters["hits"] + counters["misses"]
        counters["hit_rate"] = round(counters["hits"] / lookups, 4) if lookups else 0.0
        try:
            counters["keys"] = self.backend.key_count()
        except CacheUnavailableError:
            counters["keys"] = None
        counters["backend"] = self.backend.status()
        return counters


def build_cache_backend() -> CacheBackend:
    """Redis with in-process fallback when REDIS_URL is set, else memory only"""
    if settings.redis_url:
        logger.info("Cache: Redis primary with in-memory fallback")
        return FallbackCacheBackend(RedisCacheBackend(), MemoryCacheBackend())
    logger.info("Cache: in-memory only (REDIS_URL not set)")
    return MemoryCacheBackend()


@lru_cache()
def get_cache_store() -> AvailabilityCacheStore:
    """Process-wide cache store"""
    return AvailabilityCacheStore(build_cache_backend())
