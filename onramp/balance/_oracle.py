"""
Balance oracle — cached operator balance minus in-flight exposure.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

from kungfu import LazyCoroResult, Result, Ok, Error
from loguru import logger

from onramp.balance._tier import TtlTier
from onramp.balance._types import (
    BalanceSnapshot,
    Capacity,
    BalanceError,
    BalanceErrorKind,
)
from onramp.ledger import Ledger, in_flight
from onramp.ledger._store import Clock
from onramp.ledger._types import utcnow
from onramp.venue import BalanceSource

SNAPSHOT_KEY = "operator-balance"


class BalanceOracle:
    """
    Answers "how much can still be promised to new deposits".

    The venue balance is cached for ``ttl`` (stale by at most that much);
    pending exposure is always read fresh from the ledger. Concurrent misses
    share one upstream fetch.

    Example:
        oracle = BalanceOracle(venue, ledger, ttl=timedelta(seconds=30))

        match await oracle.get_available():
            case Ok(cap):
                cap.available_for_onramp
            case Error(e):
                ...  # fail closed
    """

    def __init__(
        self,
        source: BalanceSource,
        ledger: Ledger,
        *,
        ttl: timedelta = timedelta(seconds=30),
        tier: TtlTier[BalanceSnapshot] | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._source = source
        self._ledger = ledger
        self._tier = tier if tier is not None else TtlTier[BalanceSnapshot](ttl)
        self._clock = clock
        self._fetch_lock = asyncio.Lock()

    def snapshot(self) -> LazyCoroResult[BalanceSnapshot, BalanceError]:
        """Cached snapshot, or a fresh one on miss. Errors are never cached."""

        async def execute() -> Result[BalanceSnapshot, BalanceError]:
            cached = await self._tier.get(SNAPSHOT_KEY)
            if cached is not None:
                return Ok(cached)

            async with self._fetch_lock:
                # Another waiter may have filled it
                cached = await self._tier.get(SNAPSHOT_KEY)
                if cached is not None:
                    return Ok(cached)

                try:
                    fetched = await self._source.withdrawable()
                except Exception as e:
                    logger.exception("BALANCE: balance source raised")
                    return Error(BalanceError(
                        BalanceErrorKind.UPSTREAM_UNAVAILABLE, f"Balance source raised: {e}"
                    ))

                match fetched:
                    case Ok(balance):
                        snap = BalanceSnapshot(balance=balance, fetched_at=self._clock())
                        await self._tier.set(SNAPSHOT_KEY, snap)
                        logger.debug(f"BALANCE: fetched operator balance {balance}")
                        return Ok(snap)
                    case Error(e):
                        logger.error(f"BALANCE: venue balance unavailable: {e.message}")
                        return Error(BalanceError(
                            BalanceErrorKind.UPSTREAM_UNAVAILABLE, e.message
                        ))

        return LazyCoroResult(execute)

    def get_available(self) -> LazyCoroResult[Capacity, BalanceError]:
        """Snapshot minus the sum of PENDING and PROCESSING intents."""

        async def execute() -> Result[Capacity, BalanceError]:
            match await self.snapshot():
                case Error(e):
                    return Error(e)
                case Ok(snap):
                    pass

            match await self._ledger.sum_exposure(in_flight):
                case Ok(exposure):
                    return Ok(Capacity.of(snap, exposure))
                case Error(e):
                    logger.error(f"BALANCE: pending exposure unavailable: {e.message}")
                    return Error(BalanceError(
                        BalanceErrorKind.EXPOSURE_UNAVAILABLE, e.message
                    ))

        return LazyCoroResult(execute)

    async def invalidate(self) -> bool:
        """Drop the cached snapshot. Returns True if one was cached."""
        return await self._tier.delete(SNAPSHOT_KEY)


__all__ = ("BalanceOracle",)
