"""
Retry classification and backoff for queue items.

The sync worker consults a single BackoffPolicy for every failure: whether
the error is worth another attempt, and how long to wait before it.

Delays grow exponentially with the retry count and carry random jitter so
that items failing together do not all come back at the same moment.

Configuration:
    - Default base delay: 2.0 seconds
    - Default multiplier: 2.0x per retry
    - Default cap: 300 seconds
    - Jitter: Random variance of ±20% added to delay
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable

from collabsync.core.config.models import RetryConfig
from collabsync.core.exceptions import RateLimitError, SyncError

logger = logging.getLogger(__name__)


class BackoffPolicy:
    """
    Decides between retry and terminal failure, and computes delays.

    Attributes:
        base_delay: Delay in seconds before the first retry
        multiplier: Exponential backoff multiplier
        max_delay: Upper bound on a single delay
        jitter_ratio: Random variance ratio for jitter (0.0-1.0)
    """

    def __init__(
        self,
        base_delay: float = 2.0,
        multiplier: float = 2.0,
        max_delay: float = 300.0,
        jitter_ratio: float = 0.2,
        *,
        rng: Callable[[float, float], float] = random.uniform,
    ) -> None:
        """
        Initialize the policy.

        Args:
            base_delay: Delay in seconds before the first retry
            multiplier: Exponential backoff multiplier
            max_delay: Upper bound on a single delay
            jitter_ratio: Random variance ratio for jitter (0.0-1.0)
            rng: Source of jitter, ``uniform(a, b)``-shaped

        Raises:
            ValueError: If parameters are invalid
        """
        if base_delay < 0:
            raise ValueError("base_delay must be non-negative")
        if multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if max_delay < 0:
            raise ValueError("max_delay must be non-negative")
        if not 0.0 <= jitter_ratio <= 1.0:
            raise ValueError("jitter_ratio must be between 0.0 and 1.0")

        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.jitter_ratio = jitter_ratio
        self._rng = rng

    @classmethod
    def from_config(cls, config: RetryConfig) -> BackoffPolicy:
        """Build a policy from the retry section of the configuration."""
        return cls(
            base_delay=config.base_delay,
            multiplier=config.multiplier,
            max_delay=config.max_delay,
            jitter_ratio=config.jitter_ratio,
        )

    def is_retryable(self, error: BaseException) -> bool:
        """
        Determine if a failure is worth another attempt.

        Only errors from the collabsync taxonomy that flag themselves as
        retryable qualify: rate limits, transient network errors and
        rejected ref updates. Anything else (including unexpected
        exceptions) is terminal.
        """
        return isinstance(error, SyncError) and error.retryable

    def delay_for(self, retry_count: int, error: BaseException | None = None) -> float:
        """
        Calculate the delay before the next attempt.

        delay = base_delay * multiplier ** (retry_count - 1), capped at
        max_delay, with ±jitter_ratio variance. A rate limit that names a
        wait time is honored when it is longer.

        Args:
            retry_count: Retry number about to be scheduled (1 for the first)
            error: The failure being retried

        Returns:
            Delay in seconds
        """
        exponent = max(0, retry_count - 1)
        delay = min(self.max_delay, self.base_delay * (self.multiplier**exponent))

        if self.jitter_ratio:
            variance = delay * self.jitter_ratio
            delay = delay + self._rng(-variance, variance)

        if isinstance(error, RateLimitError) and error.retry_after is not None:
            delay = max(delay, error.retry_after)

        return max(0.0, delay)
