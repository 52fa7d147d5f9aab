"""
TTL tier — in-memory keyed store whose entries expire.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import timedelta


class TtlTier[T]:
    """
    In-memory tier with a time-to-live per entry.

    Expired entries read as misses and are dropped on access. The clock is
    monotonic seconds; inject one in tests.

    Example:
        tier = TtlTier[BalanceSnapshot](ttl=timedelta(seconds=30))
    """

    def __init__(
        self,
        ttl: timedelta,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl.total_seconds()
        self._clock = clock
        self._entries: dict[str, tuple[T, float]] = {}

    async def get(self, key: str) -> T | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, stored_at = entry
        if self._clock() - stored_at >= self._ttl:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: T) -> None:
        self._entries[key] = (value, self._clock())

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None


__all__ = ("TtlTier",)
