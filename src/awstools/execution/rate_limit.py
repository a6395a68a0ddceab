"""Per-service token bucket throttling of outbound calls.

Buckets live in process memory. Processes that must share one logical
limit need an external, synchronized store; this module does not provide
one.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable

import structlog

from awstools.config import ToolsConfig

logger = structlog.get_logger()

# Refill arithmetic is inexact; a shortfall below this counts as a whole token
TOKEN_EPSILON = 1e-9


@dataclass
class TokenBucket:
    """Token count in [0, capacity], refilled at ``rate`` tokens/sec."""

    rate: float
    capacity: float
    tokens: float
    last_refill: float

    def refill(self, now: float) -> None:
        elapsed = now - self.last_refill
        if elapsed > 0:
            self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
            self.last_refill = now

    def try_consume(self, now: float) -> float:
        """Take one token if available.

        Returns:
            0.0 if a token was consumed, otherwise seconds until one is available
        """
        self.refill(now)
        if self.tokens >= 1.0 - TOKEN_EPSILON:
            self.tokens = max(0.0, self.tokens - 1.0)
            return 0.0
        return (1.0 - self.tokens) / self.rate


@dataclass
class RateLimiter:
    """Blocks callers until their service's bucket has a token."""

    rates: dict[str, float] = field(default_factory=dict)
    default_rate: float = 50.0
    burst: float = 1.0
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], None] = time.sleep
    _buckets: dict[str, TokenBucket] = field(default_factory=dict, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @classmethod
    def from_config(
        cls,
        config: ToolsConfig,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "RateLimiter":
        return cls(
            rates=dict(config.rate_limits),
            default_rate=config.default_rate_limit,
            burst=config.rate_limit_burst,
            clock=clock,
            sleep=sleep,
        )

    def rate_for(self, service: str) -> float:
        return self.rates.get(service.lower(), self.default_rate)

    def bucket(self, service: str, rate: float | None = None) -> TokenBucket:
        """Get (creating on first use) the bucket for a service.

        ``rate`` overrides the configured rate when the bucket is created.
        """
        key = service.lower()
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                capacity = max(1.0, self.burst)
                bucket = TokenBucket(
                    rate=rate or self.rate_for(key),
                    capacity=capacity,
                    tokens=capacity,
                    last_refill=self.clock(),
                )
                self._buckets[key] = bucket
            return bucket

    def acquire(self, service: str, rate: float | None = None) -> float:
        """Wait for and consume one token.

        Never rejects a request, only delays it.

        Returns:
            Total seconds spent waiting
        """
        bucket = self.bucket(service, rate)
        waited = 0.0
        while True:
            with self._lock:
                wait = bucket.try_consume(self.clock())
            if wait <= 0:
                if waited:
                    logger.debug("rate_limit_waited", service=service, seconds=round(waited, 3))
                return waited
            self.sleep(wait)
            waited += wait
