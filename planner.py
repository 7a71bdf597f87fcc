"""Slicing of the endpoint list under a per-invocation request budget."""

from __future__ import annotations

from typing import Sequence

from constants import (
    DEFAULT_CONCURRENCY,
    DEFAULT_SUBREQ_BUDGET,
    MAX_REQUESTED_CONCURRENCY,
    MAX_SUBREQ_BUDGET,
    POLITE_CONCURRENCY,
)
from models import BatchPlan

__all__ = ["clamp_budget", "clamp_concurrency", "plan_batch"]


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def clamp_budget(raw: object, default: int = DEFAULT_SUBREQ_BUDGET) -> int:
    """Coerce a configured subrequest budget into 1..1000."""
    try:
        budget = int(raw)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        budget = default
    return _clamp(budget, 1, MAX_SUBREQ_BUDGET)


def clamp_concurrency(raw: object, default: int = DEFAULT_CONCURRENCY) -> int:
    """Coerce a requested worker count into 1..10, then cap it at the polite ceiling."""
    try:
        requested = int(raw)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        requested = default
    requested = _clamp(requested, 1, MAX_REQUESTED_CONCURRENCY)
    return _clamp(requested, 1, POLITE_CONCURRENCY)


def plan_batch(endpoints: Sequence[str], budget: int, cursor: int = 0) -> BatchPlan:
    """Return the slice starting at `cursor` and the cursor to resume from.

    `nextCursor` is None once the slice reaches the end of the list.
    """
    total = len(endpoints)
    start = max(0, int(cursor))
    end = min(total, start + clamp_budget(budget))
    return {
        "slice": list(endpoints[start:end]),
        "batchStart": start,
        "batchEnd": end,
        "nextCursor": end if end < total else None,
    }
