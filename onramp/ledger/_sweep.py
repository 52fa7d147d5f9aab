"""
Ledger sweeps — retention purge and stuck-intent reconciliation.

Runs as its own asyncio task, independent of request handling. Every
mutation goes through the Ledger protocol, so it shares the ledger's
locking discipline with settlement.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from datetime import timedelta

from kungfu import Result, Ok, Error
from loguru import logger

from onramp.lift import catching_async
from onramp.ledger._types import (
    DepositIntent,
    LedgerError,
    TERMINAL,
    in_flight,
    utcnow,
)
from onramp.ledger._store import Clock, Ledger


# ═══════════════════════════════════════════════════════════════════════════════
# One-shot sweeps
# ═══════════════════════════════════════════════════════════════════════════════


async def purge_expired(ledger: Ledger, retention: timedelta) -> Result[int, LedgerError]:
    """Drop COMPLETED/FAILED intents idle longer than retention."""
    result = await ledger.purge_older_than(retention, TERMINAL)
    match result:
        case Ok(count) if count:
            logger.info(f"LEDGER SWEEP: purged {count} terminal intents older than {retention}")
        case Error(err):
            logger.error(f"LEDGER SWEEP: purge failed: {err.message}")
        case _:
            pass
    return result


async def find_stuck(
    ledger: Ledger,
    older_than: timedelta,
    clock: Clock = utcnow,
) -> Result[list[DepositIntent], LedgerError]:
    """
    In-flight intents that have not moved for longer than older_than.

    Note: Reported, never mutated. A stuck PROCESSING intent may or may not
    have been credited by the venue and only an operator can tell. Failing
    it here (and refunding) could pay the user twice.
    """
    listed = await ledger.list_all()
    match listed:
        case Error(err):
            logger.error(f"LEDGER SWEEP: stuck scan failed: {err.message}")
            return Error(err)
        case Ok(intents):
            now = clock()
            limit = older_than.total_seconds()
            stuck = [
                i for i in intents
                if in_flight(i.status) and i.idle_for(now) > limit
            ]
            for intent in stuck:
                logger.critical(
                    f"LEDGER SWEEP: intent {intent.id} (session {intent.session_id}) "
                    f"stuck in {intent.status.value} for {intent.idle_for(now):.0f}s, "
                    f"{intent.amount} USDC to {intent.destination} needs reconciliation"
                )
            return Ok(stuck)


# ═══════════════════════════════════════════════════════════════════════════════
# Periodic sweeper
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class SweepReport:
    """Outcome of a single sweeper tick."""

    purged: int
    stuck: tuple[DepositIntent, ...]


class LedgerSweeper:
    """
    Background task: purge + stuck scan every ``interval``.

    Example:
        sweeper = LedgerSweeper(ledger, retention=timedelta(hours=24))
        sweeper.start()
        ...
        await sweeper.stop()
    """

    def __init__(
        self,
        ledger: Ledger,
        *,
        retention: timedelta = timedelta(hours=24),
        stuck_after: timedelta = timedelta(minutes=15),
        interval: timedelta = timedelta(minutes=5),
        clock: Clock = utcnow,
    ) -> None:
        self._ledger = ledger
        self._retention = retention
        self._stuck_after = stuck_after
        self._interval = interval
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> SweepReport:
        purged = 0
        stuck: tuple[DepositIntent, ...] = ()
        match await purge_expired(self._ledger, self._retention):
            case Ok(count):
                purged = count
            case Error(_):
                pass
        match await find_stuck(self._ledger, self._stuck_after, self._clock):
            case Ok(intents):
                stuck = tuple(intents)
            case Error(_):
                pass
        return SweepReport(purged=purged, stuck=stuck)

    async def _loop(self) -> None:
        while True:
            tick = await catching_async(self.run_once, on_error=repr)
            match tick:
                case Error(reason):
                    logger.error(f"LEDGER SWEEP: tick crashed, retrying next interval: {reason}")
                case Ok(_):
                    pass
            await asyncio.sleep(self._interval.total_seconds())

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="ledger-sweeper")
        logger.info(f"LEDGER SWEEP: started, every {self._interval}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("LEDGER SWEEP: stopped")


__all__ = (
    "purge_expired",
    "find_stuck",
    "SweepReport",
    "LedgerSweeper",
)
