"""Exponential backoff with jitter."""

from __future__ import annotations

import random


def compute_backoff(attempt: int, base_delay_ms: int, max_delay_ms: int, rng: random.Random | None = None) -> int:
    """Return the delay in milliseconds before retry ``attempt`` (0-based).

    ``min(max_delay, base_delay * 2**attempt)`` plus a jitter drawn uniformly
    from ``[0, max(1, capped // 4))``.
    """
    exp_backoff = base_delay_ms * (2 ** max(attempt, 0))
    capped = min(exp_backoff, max_delay_ms)
    jitter_range = max(1, capped // 4)
    jitter = (rng or random).randrange(jitter_range)
    return capped + jitter
