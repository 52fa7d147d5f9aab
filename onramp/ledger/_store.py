"""
Ledger store — typed storage protocol for deposit intents.

The ledger is the only owner of DepositIntent records and the single
source of truth for "has this session already been settled".
All methods return Result for explicit error handling.
"""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Protocol

from kungfu import Result, Ok, Error

from onramp.ledger._types import (
    IntentStatus,
    TERMINAL,
    DepositIntent,
    LedgerError,
    LedgerErrorKind,
    check_transition,
    new_intent_id,
    utcnow,
)


type StatusPredicate = Callable[[IntentStatus], bool]
type Clock = Callable[[], datetime]


# ═══════════════════════════════════════════════════════════════════════════════
# Ledger Protocol — Typed, Result-based
# ═══════════════════════════════════════════════════════════════════════════════


class Ledger(Protocol):
    """
    Deposit intent store.

    Note: Implementations must make find_or_create atomic per session:
    two concurrent callers must never both observe "absent" and both create.
    A durable backend (see SQLAlchemyLedger) replaces MemoryLedger without
    touching the orchestrator.
    """

    async def find_by_session(
        self, session_id: str
    ) -> Result[DepositIntent | None, LedgerError]:
        """Exact-match lookup. Returns Ok(None) if absent."""
        ...

    async def create(
        self, session_id: str, destination: str, amount: Decimal
    ) -> Result[DepositIntent, LedgerError]:
        """Create a PENDING intent. DUPLICATE_SESSION if one exists."""
        ...

    async def find_or_create(
        self, session_id: str, destination: str, amount: Decimal
    ) -> Result[tuple[DepositIntent, bool], LedgerError]:
        """Atomic lookup-or-create. Returns (intent, created)."""
        ...

    async def transition(
        self,
        intent_id: str,
        status: IntentStatus,
        *,
        settlement_ref: str | None = None,
        failure_reason: str | None = None,
    ) -> Result[DepositIntent, LedgerError]:
        """Apply a state-machine transition and refresh updated_at."""
        ...

    async def sum_exposure(
        self, predicate: StatusPredicate
    ) -> Result[Decimal, LedgerError]:
        """Sum amounts of intents whose status matches predicate (one snapshot)."""
        ...

    async def settled_total(self) -> Result[Decimal, LedgerError]:
        """Running sum of every COMPLETED transition. Purges never lower it."""
        ...

    async def purge_older_than(
        self,
        retention: timedelta,
        statuses: Iterable[IntentStatus] = TERMINAL,
    ) -> Result[int, LedgerError]:
        """Remove terminal intents idle longer than retention. Returns count."""
        ...

    async def list_all(self) -> Result[list[DepositIntent], LedgerError]:
        """All intents, oldest first."""
        ...


def purgeable(statuses: Iterable[IntentStatus]) -> frozenset[IntentStatus]:
    """Restrict a purge request to terminal statuses."""
    return frozenset(statuses) & TERMINAL


# ═══════════════════════════════════════════════════════════════════════════════
# Memory Ledger
# ═══════════════════════════════════════════════════════════════════════════════


class MemoryLedger:
    """
    In-memory ledger.

    Note: Single process only, state does not survive a restart.
    One lock serializes every read-modify-write; outbound calls never run
    under it, so holding it is always short.
    """

    def __init__(self, clock: Clock = utcnow) -> None:
        self._intents: dict[str, DepositIntent] = {}
        self._by_session: dict[str, str] = {}
        self._settled = Decimal(0)
        self._lock = asyncio.Lock()
        self._clock = clock

    def _new(self, session_id: str, destination: str, amount: Decimal) -> DepositIntent:
        now = self._clock()
        intent = DepositIntent(
            id=new_intent_id(),
            session_id=session_id,
            destination=destination,
            amount=amount,
            status=IntentStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self._intents[intent.id] = intent
        self._by_session[session_id] = intent.id
        return intent

    def _lookup(self, session_id: str) -> DepositIntent | None:
        intent_id = self._by_session.get(session_id)
        return self._intents.get(intent_id) if intent_id is not None else None

    async def find_by_session(
        self, session_id: str
    ) -> Result[DepositIntent | None, LedgerError]:
        async with self._lock:
            return Ok(self._lookup(session_id))

    async def create(
        self, session_id: str, destination: str, amount: Decimal
    ) -> Result[DepositIntent, LedgerError]:
        async with self._lock:
            if self._lookup(session_id) is not None:
                return Error(LedgerError(
                    LedgerErrorKind.DUPLICATE_SESSION,
                    f"Intent already exists for session: {session_id}",
                ))
            return Ok(self._new(session_id, destination, amount))

    async def find_or_create(
        self, session_id: str, destination: str, amount: Decimal
    ) -> Result[tuple[DepositIntent, bool], LedgerError]:
        async with self._lock:
            existing = self._lookup(session_id)
            if existing is not None:
                return Ok((existing, False))
            return Ok((self._new(session_id, destination, amount), True))

    async def transition(
        self,
        intent_id: str,
        status: IntentStatus,
        *,
        settlement_ref: str | None = None,
        failure_reason: str | None = None,
    ) -> Result[DepositIntent, LedgerError]:
        async with self._lock:
            current = self._intents.get(intent_id)
            if current is None:
                return Error(LedgerError(
                    LedgerErrorKind.NOT_FOUND, f"No intent: {intent_id}"
                ))

            rejected = check_transition(current, status, settlement_ref, failure_reason)
            if rejected is not None:
                return Error(rejected)

            updated = dataclasses.replace(
                current,
                status=status,
                settlement_ref=settlement_ref if status == IntentStatus.COMPLETED else None,
                failure_reason=failure_reason if status == IntentStatus.FAILED else None,
                updated_at=self._clock(),
            )
            self._intents[intent_id] = updated
            if status == IntentStatus.COMPLETED:
                self._settled += updated.amount
            return Ok(updated)

    async def sum_exposure(
        self, predicate: StatusPredicate
    ) -> Result[Decimal, LedgerError]:
        async with self._lock:
            total = sum(
                (i.amount for i in self._intents.values() if predicate(i.status)),
                Decimal(0),
            )
            return Ok(total)

    async def settled_total(self) -> Result[Decimal, LedgerError]:
        async with self._lock:
            return Ok(self._settled)

    async def purge_older_than(
        self,
        retention: timedelta,
        statuses: Iterable[IntentStatus] = TERMINAL,
    ) -> Result[int, LedgerError]:
        allowed = purgeable(statuses)
        async with self._lock:
            cutoff = self._clock() - retention
            expired = [
                i for i in self._intents.values()
                if i.status in allowed and i.updated_at < cutoff
            ]
            for intent in expired:
                del self._intents[intent.id]
                del self._by_session[intent.session_id]
            return Ok(len(expired))

    async def list_all(self) -> Result[list[DepositIntent], LedgerError]:
        async with self._lock:
            return Ok(sorted(self._intents.values(), key=lambda i: i.created_at))


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "StatusPredicate",
    "Clock",
    "Ledger",
    "purgeable",
    "MemoryLedger",
)
