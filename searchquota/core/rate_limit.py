"""
Hourly rate limiting for coarse abuse protection.

Counters are bucketed per key per fixed window (one hour by default). The
in-memory limiter is process-local and is lost on restart, which degrades to
"no rate limiting" rather than affecting quota. Multi-instance deployments set
REDIS_URL to share counters through Redis with TTL-based expiry.
"""
import logging
import random
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Protocol, Tuple

from fastapi import HTTPException, status
from redis import Redis

from searchquota.core import config
from searchquota.core.plan_limits import get_hourly_rate_limit
from searchquota.core.time_windows import HOUR_SECONDS, as_utc, utc_now

logger = logging.getLogger(__name__)


class RateLimiter(Protocol):
    def allow(self, key: str, limit: int, window_seconds: int = HOUR_SECONDS,
              now: Optional[datetime] = None) -> bool:
        ...


class InMemoryRateLimiter:
    """Fixed-window counter map with probabilistic eviction of old buckets."""

    def __init__(
        self,
        cleanup_probability: float = config.RATE_LIMIT_CLEANUP_PROBABILITY,
        retention_hours: int = config.RATE_LIMIT_RETENTION_HOURS,
        rng: Callable[[], float] = random.random,
    ):
        self.cleanup_probability = cleanup_probability
        self.retention_seconds = retention_hours * HOUR_SECONDS
        self._rng = rng
        self._lock = threading.Lock()
        # {(key, window_seconds, bucket): count}
        self._counts: Dict[Tuple[str, int, int], int] = {}

    def allow(self, key: str, limit: int, window_seconds: int = HOUR_SECONDS,
              now: Optional[datetime] = None) -> bool:
        """
        Count one call for key in the current window.
        
        Returns False once the count before this call already equals limit;
        rejected calls are not counted.
        """
        now = as_utc(now or utc_now())
        timestamp = int(now.timestamp())
        bucket = timestamp // window_seconds
        bucket_key = (key, window_seconds, bucket)

        with self._lock:
            current = self._counts.get(bucket_key, 0)
            if current >= limit:
                allowed = False
            else:
                self._counts[bucket_key] = current + 1
                allowed = True

            if self._rng() < self.cleanup_probability:
                self._evict(timestamp)

        return allowed

    def count(self, key: str, window_seconds: int = HOUR_SECONDS,
              now: Optional[datetime] = None) -> int:
        now = as_utc(now or utc_now())
        bucket = int(now.timestamp()) // window_seconds
        with self._lock:
            return self._counts.get((key, window_seconds, bucket), 0)

    def _evict(self, timestamp: int) -> None:
        cutoff = timestamp - self.retention_seconds
        stale = [
            bucket_key for bucket_key in self._counts
            if (bucket_key[2] + 1) * bucket_key[1] <= cutoff
        ]
        for bucket_key in stale:
            del self._counts[bucket_key]
        if stale:
            logger.debug(f"Evicted {len(stale)} rate limit buckets")

    def __len__(self) -> int:
        return len(self._counts)


class RedisRateLimiter:
    """Fixed-window counters shared across instances through Redis INCR + EXPIRE."""

    def __init__(self, redis: Redis, prefix: str = "ratelimit"):
        self.redis = redis
        self.prefix = prefix

    def allow(self, key: str, limit: int, window_seconds: int = HOUR_SECONDS,
              now: Optional[datetime] = None) -> bool:
        now = as_utc(now or utc_now())
        bucket = int(now.timestamp()) // window_seconds
        redis_key = f"{self.prefix}:{key}:{window_seconds}:{bucket}"

        with self.redis.pipeline(transaction=True) as pipe:
            pipe.incr(redis_key)
            pipe.expire(redis_key, window_seconds * 2)
            count, _ = pipe.execute()

        return int(count) <= limit


_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Process-wide limiter, Redis-backed when REDIS_URL is configured."""
    global _rate_limiter
    if _rate_limiter is None:
        if config.REDIS_URL:
            _rate_limiter = RedisRateLimiter(Redis.from_url(config.REDIS_URL))
            logger.info("Rate limiter backed by Redis")
        else:
            _rate_limiter = InMemoryRateLimiter()
    return _rate_limiter


def allow_hourly(account_id: str, max_per_hour: int, action: str = "any",
                 limiter: Optional[RateLimiter] = None,
                 now: Optional[datetime] = None) -> bool:
    """Per-account, per-action hourly check."""
    limiter = limiter or get_rate_limiter()
    return limiter.allow(f"{account_id}:{action}", max_per_hour, HOUR_SECONDS, now=now)


def rate_limit_by_usage(action: str, max_per_hour: Optional[int] = None):
    """
    Dependency that rejects an account's requests past an hourly cap.
    
    Args:
        action: Action being rate limited (used in the key and error detail)
        max_per_hour: Cap override; defaults to the configured cap for action
        
    Raises:
        HTTPException 429: Rate limit exceeded
    """
    limit = max_per_hour or get_hourly_rate_limit(action, config.RATE_LIMIT_MAX_PER_HOUR)

    def rate_limit_checker(account_id: str) -> str:
        if not allow_hourly(account_id, limit, action):
            now = utc_now()
            reset_time = now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
            logger.warning(f"Rate limit exceeded: account_id={account_id}, action={action}, max_per_hour={limit}")
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "error": "rate_limit_exceeded",
                    "action": action,
                    "max_per_hour": limit,
                    "reset_time": reset_time.isoformat(),
                }
            )
        return account_id

    return rate_limit_checker
