"""
Fixed-window request counting for the redirect path.

A window is kept per ``scope:identifier`` key. The first hit opens the window
(count 1, reset at ``now + window``), later hits increment it, and any hit after
the reset time opens a fresh window. Rejected hits still count.

Two stores share those semantics: Redis (shared between instances, survives
restarts) and a process-local dict. Store failures are absorbed by
``FailOpenStore`` so callers never see them.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import redis

from .errors import RateLimitStoreError
from .utils import now_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    limited: bool
    remaining: int
    reset_time: int  # epoch milliseconds
    limit: int


class MemoryRateLimitStore:
    """Process-local windows. Only correct for single-instance deployments.

    Expired windows are swept from ``hit`` at most once per window length (or
    ``sweep_interval_ms``, whichever is shorter), so keys of clients that went
    away do not pile up.
    """

    def __init__(self, sweep_interval_ms: int = 60000):
        self._windows: Dict[str, Tuple[int, int]] = {}
        self._lock = threading.Lock()
        self.sweep_interval_ms = sweep_interval_ms
        self._next_sweep: Optional[int] = None

    def hit(self, key: str, window_ms: int, now: int) -> Tuple[int, int]:
        with self._lock:
            if self._next_sweep is None or now >= self._next_sweep:
                self._sweep(now)
                self._next_sweep = now + min(self.sweep_interval_ms, window_ms)
            entry = self._windows.get(key)
            if entry is None or now > entry[1]:
                entry = (1, now + window_ms)
            else:
                entry = (entry[0] + 1, entry[1])
            self._windows[key] = entry
            return entry

    def _sweep(self, now: int) -> int:
        expired = [k for k, (_, reset) in self._windows.items() if now > reset]
        for k in expired:
            del self._windows[k]
        return len(expired)

    def cleanup(self, now: int) -> int:
        """Drop windows whose reset time has passed; returns how many were removed."""
        with self._lock:
            return self._sweep(now)

    def __len__(self):
        return len(self._windows)


# INCR the counter, start the expiry on the first hit, report the remaining TTL.
_HIT_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
local ttl = redis.call('PTTL', KEYS[1])
if count == 1 or ttl < 0 then
  redis.call('PEXPIRE', KEYS[1], ARGV[1])
  ttl = tonumber(ARGV[1])
end
return {count, ttl}
"""


class RedisRateLimitStore:
    """Windows kept in Redis as expiring counters under ``ratelimit:<key>``."""

    def __init__(self, client: redis.Redis, prefix: str = "ratelimit:"):
        self.client = client
        self.prefix = prefix
        self._script = client.register_script(_HIT_SCRIPT)

    @classmethod
    def from_url(cls, url: str, timeout: float = 0.5) -> "RedisRateLimitStore":
        client = redis.Redis.from_url(
            url,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
            decode_responses=True,
        )
        return cls(client)

    def hit(self, key: str, window_ms: int, now: int) -> Tuple[int, int]:
        # The key outlives reset_time by 1 ms: the window is still open at
        # exactly reset_time and a fresh one starts after it, as in memory.
        try:
            count, ttl = self._script(keys=[self.prefix + key], args=[window_ms + 1])
        except redis.RedisError as e:
            raise RateLimitStoreError(str(e)) from e
        return int(count), now + int(ttl) - 1


class FailOpenStore:
    """Wraps a store so that backend outages let requests through."""

    def __init__(self, store):
        self.store = store

    def hit(self, key: str, window_ms: int, now: int) -> Optional[Tuple[int, int]]:
        try:
            return self.store.hit(key, window_ms, now)
        except RateLimitStoreError as e:
            logger.warning(f"Rate limit store unavailable, allowing request for {key}: {e}")
            return None


class RateLimiter:
    def __init__(self, store, clock: Callable[[], int] = now_ms,
                 shortcode_limit: int = 1000, ip_limit: int = 500, window_ms: int = 3600000):
        self.store = store
        self.clock = clock
        self.shortcode_limit = shortcode_limit
        self.ip_limit = ip_limit
        self.window_ms = window_ms

    def check_limit(self, scope: str, identifier: str, limit: int, window_ms: int) -> RateLimitResult:
        now = self.clock()
        hit = self.store.hit(f"{scope}:{identifier}", window_ms, now)
        if hit is None:
            return RateLimitResult(limited=False, remaining=limit, reset_time=now + window_ms, limit=limit)
        count, reset_time = hit
        return RateLimitResult(
            limited=count > limit,
            remaining=max(0, limit - count),
            reset_time=reset_time,
            limit=limit,
        )

    def check_redirect_limit(self, short_code: str, ip_address: Optional[str] = None) -> RateLimitResult:
        """Apply the per-short-code and per-IP limits and return the stricter outcome.

        Both windows are always counted, even when the first one already rejects.
        """
        results = [self.check_limit("redirect:shortcode", short_code, self.shortcode_limit, self.window_ms)]
        if ip_address:
            results.append(self.check_limit("redirect:ip", ip_address, self.ip_limit, self.window_ms))
        return min(results, key=lambda r: (not r.limited, r.remaining))


def build_rate_limit_store(settings):
    """Pick the backing store from settings: Redis when configured, memory otherwise."""
    if settings.redis_url:
        logger.info("Using Redis for rate limiting")
        store = RedisRateLimitStore.from_url(settings.redis_url, timeout=settings.redis_timeout_seconds)
    else:
        logger.info("REDIS_URL not set, using in-memory rate limiting")
        store = MemoryRateLimitStore()
    return FailOpenStore(store)
