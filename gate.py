"""Hourly rate lock and last-seen change marker."""

from __future__ import annotations

import time
from typing import Optional

from constants import LAST_SEEN_KEY, RATE_LIMIT_KEY, RATE_LIMIT_TTL
from store import KeyValueStore

__all__ = ["RateGate", "now_ms"]


def now_ms() -> int:
    return int(time.time() * 1000)


class RateGate:
    """Gate real runs behind a one-hour marker and skip unchanged deploys.

    Only the presence of the rate-limit key matters; its value (the start
    time in milliseconds) is kept for the status page.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    async def check_rate_limit(self) -> bool:
        """Return True when a real run happened within the last hour."""
        return await self.store.get(RATE_LIMIT_KEY) is not None

    async def check_change_is_new(self, candidate_id: str) -> bool:
        last_seen = await self.store.get(LAST_SEEN_KEY)
        return last_seen != candidate_id

    async def acquire(self, started_ms: Optional[int] = None) -> bool:
        """Write the rate-limit marker; False if another run already holds it."""
        stamp = now_ms() if started_ms is None else started_ms
        return await self.store.put_if_absent(RATE_LIMIT_KEY, str(stamp), RATE_LIMIT_TTL)

    async def record_change(self, change_id: str) -> None:
        await self.store.put(LAST_SEEN_KEY, change_id)

    async def last_ping_ms(self) -> Optional[int]:
        raw = await self.store.get(RATE_LIMIT_KEY)
        if raw is None:
            return None
        try:
            return int(float(raw))
        except ValueError:
            return None

    async def lock_remaining_ms(self, at_ms: Optional[int] = None) -> int:
        """Milliseconds until the next real run is allowed (0 when unlocked)."""
        last = await self.last_ping_ms()
        if last is None:
            return 0
        current = now_ms() if at_ms is None else at_ms
        return max(0, RATE_LIMIT_TTL * 1000 - (current - last))
