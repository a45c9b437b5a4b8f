"""In-memory token-bucket rate limiting, keyed by client address + endpoint class.

Buckets are process-local. Running several instances needs a shared store.
"""
import enum
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)

AUTH_PATH_PREFIXES = (
    "/api/auth/login",
    "/api/auth/register",
    "/api/auth/refresh",
    "/api/auth/password/forgot",
    "/api/auth/password/reset",
    "/api/auth/oauth/exchange",
)


class EndpointClass(str, enum.Enum):
    AUTH = "auth"
    API = "api"


def classify(path: str) -> EndpointClass:
    if path.startswith(AUTH_PATH_PREFIXES):
        return EndpointClass.AUTH
    return EndpointClass.API


def bucket_key(client_ip: str, endpoint_class: EndpointClass) -> str:
    return f"{client_ip}:{endpoint_class.value}"


@dataclass(frozen=True)
class RateDecision:
    permitted: bool
    remaining: int
    limit: int


@dataclass
class _Bucket:
    capacity: int
    tokens: float
    updated_at: float
    last_access: float
    lock: threading.Lock = field(default_factory=threading.Lock)


class RateLimiter:
    def __init__(
        self,
        idle_ttl_seconds: float = 3600,
        max_buckets: int = 100_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.idle_ttl_seconds = idle_ttl_seconds
        self.max_buckets = max_buckets
        self._clock = clock
        self._buckets: OrderedDict[str, _Bucket] = OrderedDict()
        self._map_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._buckets)

    def allow(self, key: str, limit_per_minute: int) -> RateDecision:
        if limit_per_minute <= 0:
            return RateDecision(permitted=True, remaining=0, limit=limit_per_minute)

        now = self._clock()
        bucket = self._get_bucket(key, limit_per_minute, now)
        with bucket.lock:
            if bucket.capacity != limit_per_minute:
                # Limit changed by configuration; keep the fill ratio.
                bucket.tokens = bucket.tokens * limit_per_minute / bucket.capacity
                bucket.capacity = limit_per_minute
            elapsed = max(0.0, now - bucket.updated_at)
            bucket.tokens = min(float(bucket.capacity), bucket.tokens + elapsed * bucket.capacity / 60.0)
            bucket.updated_at = now
            if bucket.tokens < 1.0:
                return RateDecision(permitted=False, remaining=0, limit=limit_per_minute)
            bucket.tokens -= 1.0
            return RateDecision(permitted=True, remaining=int(bucket.tokens), limit=limit_per_minute)

    def _get_bucket(self, key: str, capacity: int, now: float) -> _Bucket:
        with self._map_lock:
            bucket = self._buckets.get(key)
            if bucket is not None and now - bucket.last_access > self.idle_ttl_seconds:
                del self._buckets[key]
                bucket = None
            if bucket is None:
                bucket = _Bucket(capacity=capacity, tokens=float(capacity), updated_at=now, last_access=now)
                self._buckets[key] = bucket
                self._evict(now)
            else:
                bucket.last_access = now
                self._buckets.move_to_end(key)
            return bucket

    def _evict(self, now: float) -> None:
        # Oldest entries sit at the front of the map.
        while self._buckets:
            oldest_key, oldest = next(iter(self._buckets.items()))
            if len(self._buckets) > self.max_buckets or now - oldest.last_access > self.idle_ttl_seconds:
                del self._buckets[oldest_key]
                continue
            break

    def reset(self) -> None:
        with self._map_lock:
            self._buckets.clear()
