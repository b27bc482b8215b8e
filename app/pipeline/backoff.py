"""
Exponential backoff with jitter shared by call-level and job-level retries.
"""

from __future__ import annotations

import random
from collections.abc import Callable


def compute_backoff(
    attempts_made: int,
    *,
    base_seconds: float,
    jitter_ratio: float = 0.1,
    rng: Callable[[], float] = random.random,
) -> float:
    """
    Delay before the next attempt after ``attempts_made`` failed attempts.

    The delay is ``base * 2 ** (attempts_made - 1)`` scaled by a random factor
    in ``[1 - jitter_ratio, 1 + jitter_ratio]``.
    """

    if attempts_made < 1 or base_seconds <= 0:
        return 0.0
    delay = base_seconds * (2 ** (attempts_made - 1))
    if jitter_ratio <= 0:
        return delay
    return delay * (1.0 + jitter_ratio * (2.0 * rng() - 1.0))
