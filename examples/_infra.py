"""Shared infrastructure for examples."""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from decimal import Decimal

from kungfu import Result, Ok, Error

from onramp.payments import PaymentCompleted, RefundError, RefundErrorKind
from onramp.venue import TransferError, TransferErrorKind, VenueError

WALLET = "0x" + "ab" * 20
REJECTING_WALLET = "0x" + "de" * 20


# Fake venue
@dataclass(slots=True)
class FakeVenue:
    """Operator account that rejects transfers to REJECTING_WALLET."""

    balance: Decimal = Decimal("100")
    transfer_count: int = 0
    _refs: itertools.count[int] = field(default_factory=lambda: itertools.count(1))

    async def withdrawable(self) -> Result[Decimal, VenueError]:
        await asyncio.sleep(0.01)
        return Ok(self.balance)

    async def transfer(self, destination: str, amount: Decimal) -> Result[str, TransferError]:
        await asyncio.sleep(0.05)
        self.transfer_count += 1
        if destination == REJECTING_WALLET:
            return Error(TransferError(TransferErrorKind.UPSTREAM_REJECTED, "Destination rejected"))
        self.balance -= amount
        return Ok(f"tx_{next(self._refs):03d}")


# Fake card processor
@dataclass(slots=True)
class FakeRefunds:
    refunded: list[str] = field(default_factory=list)
    fail: bool = False

    async def refund(self, capture_ref: str) -> Result[str, RefundError]:
        await asyncio.sleep(0.01)
        if self.fail:
            return Error(RefundError(RefundErrorKind.UPSTREAM_REJECTED, "Charge disputed"))
        self.refunded.append(capture_ref)
        return Ok(f"re_{capture_ref}")


def paid(session_id: str, amount: str, destination: str = WALLET) -> PaymentCompleted:
    return PaymentCompleted(
        session_id=session_id,
        destination=destination,
        amount=Decimal(amount),
        capture_ref=f"pi_{session_id}",
    )


# Helpers
def banner(title: str) -> None:
    print(f"\n{'─' * 50}\n{title}\n{'─' * 50}")


def run(main: Callable[[], Coroutine[object, object, None]]) -> None:
    asyncio.run(main())
