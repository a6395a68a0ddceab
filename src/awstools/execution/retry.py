"""Bounded exponential backoff around one unit of work."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

import structlog

from awstools.core.exceptions import RetriesExhaustedError, RetryableExecutionError

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and backoff schedule.

    The delay before retry ``n`` (0-based) is ``base_delay * 2**n`` plus a
    jitter drawn from ``[0, min(max_jitter, base_delay)]``. Capping the
    jitter at ``base_delay`` keeps delays non-decreasing across attempts.
    """

    max_retries: int = 3
    base_delay: float = 2.0
    max_jitter: float = 0.5

    def delay(self, attempt: int, rng: random.Random | None = None) -> float:
        jitter_bound = min(self.max_jitter, self.base_delay)
        jitter = (rng or random).uniform(0.0, jitter_bound) if jitter_bound > 0 else 0.0
        return self.base_delay * (2 ** attempt) + jitter


class RetryEngine:
    """Runs an attempt function until it succeeds or stops being retryable.

    The attempt function receives the 0-based attempt number. It signals a
    transient failure by raising ``RetryableExecutionError``; any other
    exception (including ``FatalExecutionError`` and ``KeyboardInterrupt``)
    propagates immediately.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.policy = policy
        self.sleep = sleep
        self.rng = rng

    def run(self, attempt_fn: Callable[[int], T]) -> tuple[T, int]:
        """Run ``attempt_fn`` with retries.

        Returns:
            Tuple of (result, retries used)

        Raises:
            RetriesExhaustedError: If the last permitted attempt was still retryable
        """
        attempt = 0
        while True:
            try:
                return attempt_fn(attempt), attempt
            except RetryableExecutionError as e:
                if attempt >= self.policy.max_retries:
                    logger.warning(
                        "retries_exhausted",
                        service=e.service,
                        retries=attempt,
                        error_code=e.error_code,
                    )
                    raise RetriesExhaustedError(e, retries=attempt) from e

                delay = self.policy.delay(attempt, self.rng)
                logger.info(
                    "retrying",
                    service=e.service,
                    attempt=attempt,
                    error_code=e.error_code,
                    delay=round(delay, 3),
                )
                self.sleep(delay)
                attempt += 1
