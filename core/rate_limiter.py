"""
Per-Client Rate Limiting.

Token bucket rate limiting keyed by client IP. This sits in front of the fetch
dispatcher: the dispatcher protects the upstream API from the service as a
whole, while this limiter keeps one client from monopolising the dispatcher's
small backlog.

Key Components:
- `RateLimitRule`: Requests allowed per window, with an optional burst capacity.
- `TokenBucket`: The token bucket algorithm. Tokens refill continuously at
  `requests / window` per second, so short bursts are absorbed.
- `MemoryRateLimiter`: Holds one bucket per (rule, identifier) pair in a local
  dictionary, periodically dropping buckets that have refilled. Suitable for
  the single-process deployment this service runs as.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from core.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class RateLimitRule:
    """Rate limit rule configuration"""

    requests: int  # Number of requests allowed
    window: int  # Time window in seconds
    burst: Optional[int] = None  # Burst capacity (defaults to requests)

    def __post_init__(self):
        if self.burst is None:
            self.burst = self.requests


@dataclass
class TokenBucket:
    """Token bucket for rate limiting"""

    capacity: int
    tokens: float
    refill_rate: float  # tokens per second
    last_refill: float
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    def consume(self, tokens: int = 1) -> bool:
        """Try to consume tokens from the bucket"""
        now = self.clock()

        elapsed = now - self.last_refill
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

        if self.tokens >= tokens:
            self.tokens -= tokens
            return True

        return False

    def time_until_available(self, tokens: int = 1) -> float:
        """Get time in seconds until tokens are available"""
        if self.tokens >= tokens:
            return 0.0

        needed_tokens = tokens - self.tokens
        return needed_tokens / self.refill_rate

    def is_full(self, now: float) -> bool:
        """A full bucket behaves exactly like a freshly created one"""
        return self.tokens + (now - self.last_refill) * self.refill_rate >= self.capacity


class MemoryRateLimiter:
    """In-memory rate limiter using token bucket algorithm"""

    def __init__(
        self, clock: Callable[[], float] = time.monotonic, sweep_interval: float = 60.0
    ):
        self.buckets: Dict[str, TokenBucket] = {}
        self.rules: Dict[str, RateLimitRule] = {}
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._last_sweep = clock()
        self._lock = threading.Lock()

    def _sweep(self, now: float) -> None:
        """Drop buckets that have refilled completely. Caller holds the lock."""
        idle = [key for key, bucket in self.buckets.items() if bucket.is_full(now)]
        for key in idle:
            del self.buckets[key]
        self._last_sweep = now
        if idle:
            logger.debug(f"Swept {len(idle)} idle rate limit buckets")

    def add_rule(self, key: str, rule: RateLimitRule):
        """Add a rate limiting rule"""
        with self._lock:
            self.rules[key] = rule
            logger.info(
                f"Added rate limit rule for {key}: {rule.requests} requests per {rule.window}s"
            )

    def check_rate_limit(
        self, identifier: str, rule_key: str = "default"
    ) -> Tuple[bool, Dict[str, Any]]:
        """Check if request is within rate limit"""
        with self._lock:
            if rule_key not in self.rules:
                # No rule defined, allow request
                return True, {"allowed": True, "remaining": None, "retry_after": 0}

            now = self._clock()
            if now - self._last_sweep >= self.sweep_interval:
                self._sweep(now)

            rule = self.rules[rule_key]
            bucket_key = f"{rule_key}:{identifier}"

            bucket = self.buckets.get(bucket_key)
            if bucket is None:
                bucket = TokenBucket(
                    capacity=rule.burst,
                    tokens=rule.burst,
                    refill_rate=rule.requests / rule.window,
                    last_refill=now,
                    clock=self._clock,
                )
                self.buckets[bucket_key] = bucket

            allowed = bucket.consume(1)
            retry_after = bucket.time_until_available(1) if not allowed else 0

            info = {
                "allowed": allowed,
                "limit": rule.requests,
                "window": rule.window,
                "remaining": int(bucket.tokens),
                "retry_after": retry_after,
            }

            if not allowed:
                logger.warning(
                    f"Rate limit exceeded for {identifier} on rule {rule_key}"
                )

            return allowed, info

    def reset_limit(self, identifier: str, rule_key: str = "default"):
        """Reset rate limit for an identifier"""
        with self._lock:
            bucket_key = f"{rule_key}:{identifier}"
            rule = self.rules.get(rule_key)
            if bucket_key in self.buckets and rule:
                self.buckets[bucket_key].tokens = rule.burst
                logger.info(f"Reset rate limit for {identifier} on rule {rule_key}")

    def get_stats(self) -> Dict[str, Any]:
        """Get rate limiter statistics"""
        with self._lock:
            return {
                "total_buckets": len(self.buckets),
                "total_rules": len(self.rules),
                "rules": {
                    k: {"requests": v.requests, "window": v.window, "burst": v.burst}
                    for k, v in self.rules.items()
                },
            }
