"""
Adaptive pacing between indexer batches.

Keeps a delay between embedding batches:
- Fixed base delay while the provider is happy
- Doubles the delay on each rate limit, up to a cap
- Steps back toward the base delay after sustained success
- Provides observable pacing state for logging and progress output
"""

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class PacerState:
    """Current state of the batch pacer."""
    current_delay: float
    success_streak: int
    total_rate_limits: int
    total_recoveries: int


class BatchPacer:
    """
    Manages the delay between indexer batches.

    Behavior:
    - Starts at base_delay (default 0.5s)
    - On rate limit: multiply delay by backoff_factor (2x), clamped to max_delay
    - After recovery_threshold consecutive successful batches: divide the
      delay by backoff_factor, never below base_delay

    Example:
        pacer = BatchPacer(base_delay=0.5)

        # After a successful batch
        delay = pacer.on_success()

        # When the provider rate limits us
        delay = pacer.on_rate_limited()

        time.sleep(pacer.current_delay)
    """

    def __init__(
        self,
        base_delay: float = 0.5,
        max_delay: float = 60.0,
        backoff_factor: float = 2.0,
        recovery_threshold: int = 5,
    ):
        """
        Initialize the pacer.

        Args:
            base_delay: Delay between batches when not rate limited (seconds)
            max_delay: Maximum delay after repeated rate limits (seconds)
            backoff_factor: Multiply delay by this on rate limit
            recovery_threshold: Consecutive successes before stepping the delay back down
        """
        self.base_delay = max(0.0, base_delay)
        self.max_delay = max(self.base_delay, max_delay)
        self.backoff_factor = backoff_factor
        self.recovery_threshold = recovery_threshold

        self._current_delay = self.base_delay
        self._success_streak = 0
        self._total_rate_limits = 0
        self._total_recoveries = 0

    @property
    def current_delay(self) -> float:
        """Current delay between batches in seconds."""
        return self._current_delay

    def backoff_delay(self, attempt: int) -> float:
        """
        Delay before retrying a rate-limited batch.

        Args:
            attempt: 1-based retry attempt

        Returns:
            current_delay scaled by backoff_factor per attempt, clamped to max_delay
        """
        # base_delay of 0 still needs some wait after a 429
        delay = max(self._current_delay, 1.0) * (self.backoff_factor ** (attempt - 1))
        return min(self.max_delay, delay)

    def on_rate_limited(self) -> float:
        """
        Called when a batch is rate limited.

        Immediately backs off and resets the success streak.

        Returns:
            New delay after backoff
        """
        old_delay = self._current_delay
        self._success_streak = 0
        self._total_rate_limits += 1
        self._current_delay = min(
            self.max_delay,
            max(self._current_delay, 0.1) * self.backoff_factor,
        )

        logger.warning(
            f"Rate limited! Slowing down: {old_delay:.2f}s -> {self._current_delay:.2f}s "
            f"between batches (total rate limits: {self._total_rate_limits})"
        )

        return self._current_delay

    def on_success(self) -> float:
        """
        Called after a batch completes without rate limiting.

        Returns:
            Current delay (may be reduced)
        """
        self._success_streak += 1

        if self._success_streak >= self.recovery_threshold and self._current_delay > self.base_delay:
            old_delay = self._current_delay
            self._current_delay = max(self.base_delay, self._current_delay / self.backoff_factor)
            self._success_streak = 0
            self._total_recoveries += 1

            logger.info(
                f"Pacing recovery: {old_delay:.2f}s -> {self._current_delay:.2f}s "
                f"between batches (recovery #{self._total_recoveries})"
            )

        return self._current_delay

    def on_error(self) -> float:
        """
        Called when a batch fails for a reason other than rate limiting.

        Partially resets the success streak but doesn't change the delay.
        """
        self._success_streak = max(0, self._success_streak - 2)
        return self._current_delay

    def get_state(self) -> PacerState:
        """Get current pacer state for monitoring."""
        return PacerState(
            current_delay=self._current_delay,
            success_streak=self._success_streak,
            total_rate_limits=self._total_rate_limits,
            total_recoveries=self._total_recoveries,
        )

    def reset(self) -> None:
        """Return to the base delay."""
        self._current_delay = self.base_delay
        self._success_streak = 0
        logger.info(f"Pacer reset to {self._current_delay:.2f}s between batches")
