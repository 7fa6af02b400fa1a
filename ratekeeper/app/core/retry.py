"""Backoff policies for bucket store retries.

Version conflicts and transient store failures are retried differently:
conflicts mean fresh data is already waiting and get a short jittered pause,
failures mean the store is struggling and get exponential backoff.
"""

import random
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class RetryPolicy:
    """Configuration for retry behavior with exponential backoff and jitter.

    Attributes:
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Initial delay between retries in seconds (default: 0.05)
        max_delay: Maximum delay between retries in seconds (default: 1.0)
        exponential_base: Base for exponential calculation (default: 2.0)
        jitter: Fraction of the delay randomised away, 0 disables jitter

    Example:
        >>> policy = RetryPolicy(max_retries=5, base_delay=1.0, jitter=0.0)
        >>> delay = policy.calculate_delay(attempt=2)  # Returns 4.0
    """

    max_retries: int = 3
    base_delay: float = 0.05
    max_delay: float = 1.0
    exponential_base: float = 2.0
    jitter: float = 0.5
    random_func: Callable[[], float] = field(default=random.random, repr=False)

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay for a given retry attempt.

        Uses exponential backoff capped at max_delay, then removes up to
        ``jitter`` of it at random so that callers retrying in lockstep spread out.

        Args:
            attempt: The current retry attempt number (0-indexed)

        Returns:
            Delay in seconds
        """
        delay = min(self.base_delay * (self.exponential_base**attempt), self.max_delay)
        if self.jitter > 0:
            delay -= delay * self.jitter * self.random_func()
        return max(0.0, delay)


@dataclass
class ConflictBackoff:
    """Short uniform jitter between optimistic concurrency attempts.

    Attributes:
        max_retries: Re-reads allowed after the first conflicting write
        max_delay: Upper bound of the uniform pause in seconds
    """

    max_retries: int = 3
    max_delay: float = 0.025
    random_func: Callable[[], float] = field(default=random.random, repr=False)

    def calculate_delay(self) -> float:
        """Return a pause in ``[0, max_delay)``."""
        return self.max_delay * self.random_func()
