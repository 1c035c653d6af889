"""Exponential backoff with jitter.

delay = base * 2^(attempt-1) * multiplier * jitter, clamped to a ceiling.
The jitter factor is drawn uniformly from [0.8, 1.2] so concurrent workers
do not retry in lockstep. The random source is injectable for tests.
"""

import logging
import random
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_BASE_DELAY_SECONDS = 1.0
DEFAULT_MAX_DELAY_SECONDS = 300.0
DEFAULT_JITTER_RANGE = (0.8, 1.2)
THROTTLE_MODE_FACTOR = 2.0  # Extra slow-down in explicit throttle-retry mode


class BackoffPolicy:
    """Computes retry delays. Immutable after construction."""

    def __init__(
        self,
        base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
        max_delay: float = DEFAULT_MAX_DELAY_SECONDS,
        jitter_range: Tuple[float, float] = DEFAULT_JITTER_RANGE,
        rng: Optional[random.Random] = None,
    ):
        """Initializes the backoff policy.

        Args:
            base_delay: Delay in seconds before the first retry (before multiplier and jitter).
            max_delay: Hard ceiling for any single delay.
            jitter_range: Lower and upper bound of the random jitter factor.
            rng: Random source; defaults to a private ``random.Random`` instance.
        """
        if base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {base_delay}")
        if max_delay < 0:
            raise ValueError(f"max_delay must be >= 0, got {max_delay}")
        low, high = jitter_range
        if not 0 < low <= high:
            raise ValueError(f"Invalid jitter range: {jitter_range}")
        self.base_delay = float(base_delay)
        self.max_delay = float(max_delay)
        self.jitter_range = (float(low), float(high))
        self._rng = rng or random.Random()

    def delay(self, attempt: int, multiplier: float = 1.0, explicit_throttle_mode: bool = False) -> float:
        """Returns the delay in seconds to wait after a failed attempt.

        Args:
            attempt: The 1-based number of the attempt that just failed.
            multiplier: Category backoff multiplier (>= 1.0).
            explicit_throttle_mode: Doubles the delay on top of the multiplier.

        Raises:
            ValueError: If attempt < 1 or multiplier < 1.0.
        """
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        if multiplier < 1.0:
            raise ValueError(f"multiplier must be >= 1.0, got {multiplier}")
        if explicit_throttle_mode:
            multiplier *= THROTTLE_MODE_FACTOR
        try:
            raw = self.base_delay * (2.0 ** (attempt - 1)) * multiplier
        except OverflowError:
            raw = float("inf") if self.base_delay > 0 else 0.0
        jitter = self._rng.uniform(*self.jitter_range)
        return min(raw * jitter, self.max_delay)

    def schedule(self, retries: int, multiplier: float = 1.0, explicit_throttle_mode: bool = False) -> List[float]:
        """Delays after attempts 1..retries, e.g. for display."""
        return [self.delay(n, multiplier, explicit_throttle_mode) for n in range(1, retries + 1)]

    def with_base_delay(self, base_delay: float) -> "BackoffPolicy":
        """Derives a policy with a different base delay sharing this random source."""
        return BackoffPolicy(base_delay, self.max_delay, self.jitter_range, self._rng)

    def __repr__(self) -> str:
        return f"BackoffPolicy(base_delay={self.base_delay}, max_delay={self.max_delay}, jitter={self.jitter_range})"
