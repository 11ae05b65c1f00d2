"""Randomized exponential retry backoff."""

from __future__ import annotations

import random

from crew_sync.config import DEFAULT_BASE_RETRY_MS, DEFAULT_MAX_RETRY_MS


def compute_delay(
    attempt: int,
    base_ms: int = DEFAULT_BASE_RETRY_MS,
    cap_ms: int = DEFAULT_MAX_RETRY_MS,
    rng: random.Random | None = None,
) -> int:
    """Delay in milliseconds before retry number ``attempt``.

    ``min(cap, base * 2**attempt)`` scaled by a uniform factor in
    ``[0.5, 1.5)``, then clamped to ``cap_ms`` so jitter never exceeds it.
    """
    attempt = max(0, attempt)
    ceiling = min(cap_ms, base_ms * 2**attempt)
    jitter = 0.5 + (rng or random).random()
    return round(min(cap_ms, ceiling * jitter))


def next_attempt_at(
    previous: int,
    now: int,
    attempt: int,
    base_ms: int = DEFAULT_BASE_RETRY_MS,
    cap_ms: int = DEFAULT_MAX_RETRY_MS,
    rng: random.Random | None = None,
) -> int:
    """Schedule the next try, never earlier than the previous schedule."""
    return max(now + compute_delay(attempt, base_ms, cap_ms, rng), previous)
