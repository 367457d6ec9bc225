"""Fixed-window request rate limiting with a pluggable counter store."""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Protocol, Tuple

import redis

logger = logging.getLogger(__name__)


class CounterStore(Protocol):
    def increment(self, key: str, window_seconds: int) -> int:
        """Increment the counter for `key` in its current window and return the new count."""
        ...


class InMemoryCounterStore:
    """Process-local counters; suitable for a single instance."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._counters: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()
        self._last_prune = 0.0

    def _prune(self, now: float, window_seconds: int) -> None:
        if now - self._last_prune < window_seconds:
            return
        self._last_prune = now
        expired = [key for key, (_, reset_at) in self._counters.items() if now >= reset_at]
        for key in expired:
            del self._counters[key]

    def increment(self, key: str, window_seconds: int) -> int:
        now = self.clock()
        with self._lock:
            self._prune(now, window_seconds)
            count, reset_at = self._counters.get(key, (0, 0.0))
            if now >= reset_at:
                count, reset_at = 0, now + window_seconds
            count += 1
            self._counters[key] = (count, reset_at)
            return count

    def __len__(self) -> int:
        return len(self._counters)


class RedisCounterStore:
    """Counters shared across instances through Redis (INCR + EXPIRE)."""

    def __init__(self, redis_url: str, prefix: str = "ratelimit:"):
        self.client = redis.Redis.from_url(redis_url, decode_responses=True)
        self.prefix = prefix

    def increment(self, key: str, window_seconds: int) -> int:
        name = f"{self.prefix}{key}"
        pipe = self.client.pipeline()
        pipe.incr(name)
        pipe.expire(name, window_seconds, nx=True)
        count, _ = pipe.execute()
        return int(count)


class RateLimiter:
    """Per-client, per-route-prefix request limits over fixed windows."""

    def __init__(
        self,
        store: CounterStore,
        window_seconds: int = 60,
        default_limit: int = 60,
        route_limits: Optional[List[Tuple[str, int]]] = None,
    ):
        self.store = store
        self.window_seconds = window_seconds
        self.default_limit = default_limit
        self.route_limits = route_limits or []

    def limit_for(self, path: str) -> int:
        for prefix, limit in self.route_limits:
            if path.startswith(prefix):
                return limit
        return self.default_limit

    @staticmethod
    def bucket_for(path: str) -> str:
        """First two path segments, e.g. /api/cards."""
        return "/".join(path.split("/")[:3])

    def allow(self, client_ip: str, path: str) -> bool:
        count = self.store.increment(f"{client_ip}|{self.bucket_for(path)}", self.window_seconds)
        allowed = count <= self.limit_for(path)
        if not allowed:
            logger.warning(f"Rate limit exceeded for {client_ip} on {path}")
        return allowed
