"""Exponential backoff delays used by the request scheduler."""
from __future__ import annotations

import random

JITTER = 0.25


def backoff_delay(
    attempt: int,
    *,
    base: float = 1.0,
    cap: float = 10.0,
    jitter: float = JITTER,
    rng: random.Random | None = None,
) -> float:
    """Delay before retry number *attempt* (0-based): ``base * 2**attempt``.

    The raw delay is capped at *cap*, then scaled by a uniform factor in
    ``[1 - jitter, 1 + jitter]``.
    """
    delay = min(base * (2.0 ** max(attempt, 0)), cap)
    if jitter:
        r = rng or random
        delay *= 1.0 + r.uniform(-jitter, jitter)
    return max(delay, 0.0)
