"""Retry delay computation for client requests."""

import random
from typing import Callable


def compute_backoff_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    jitter_ratio: float = 0.1,
    rng: Callable[[], float] = random.random,
) -> float:
    """
    Exponential backoff with proportional jitter, in seconds.

    delay = min(base * 2^attempt + U[0, jitter_ratio * base * 2^attempt), max)

    Args:
        attempt: Zero-based index of the try that just failed
        base_delay: Delay before the first retry
        max_delay: Upper bound for any single delay
        jitter_ratio: Jitter as a fraction of the exponential delay
        rng: Uniform [0, 1) source, injectable for tests

    Returns:
        Seconds to sleep before the next try
    """
    exponential = base_delay * (2 ** attempt)
    jitter = rng() * jitter_ratio * exponential
    return min(exponential + jitter, max_delay)
