"""Shared fakes and fixtures."""

import asyncio
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from kungfu import Result, Ok, Error

from onramp.balance import BalanceOracle
from onramp.ledger import MemoryLedger
from onramp.payments import PaymentCompleted, RefundError, RefundErrorKind
from onramp.settlement import DepositOrchestrator
from onramp.venue import TransferError, TransferErrorKind, VenueError

DEST = "0x" + "ab" * 20
OTHER_DEST = "0x" + "cd" * 20


# ═══════════════════════════════════════════════════════════════════════════════
# Clocks
# ═══════════════════════════════════════════════════════════════════════════════


class ManualClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, tzinfo=UTC)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class MonotonicClock:
    def __init__(self) -> None:
        self.t = 0.0

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


# ═══════════════════════════════════════════════════════════════════════════════
# Fakes
# ═══════════════════════════════════════════════════════════════════════════════


class FakeVenue:
    """
    Balance source + transfer client.

    Successful transfers debit the balance, like the real venue.
    """

    def __init__(self, balance: Decimal = Decimal("1000")) -> None:
        self.balance = balance
        self.balance_error: str | None = None
        self.transfer_error: TransferError | None = None
        self.transfer_delay = 0.0
        self.transfer_raises: Exception | None = None
        self.balance_calls = 0
        self.transfers: list[tuple[str, Decimal]] = []
        self.refs: list[str] = []

    async def withdrawable(self) -> Result[Decimal, VenueError]:
        self.balance_calls += 1
        if self.balance_error is not None:
            return Error(VenueError(self.balance_error))
        return Ok(self.balance)

    async def transfer(self, destination: str, amount: Decimal) -> Result[str, TransferError]:
        self.transfers.append((destination, amount))
        if self.transfer_delay:
            await asyncio.sleep(self.transfer_delay)
        if self.transfer_raises is not None:
            raise self.transfer_raises
        if self.transfer_error is not None:
            return Error(self.transfer_error)
        self.balance -= amount
        return Ok(self.refs.pop(0) if self.refs else f"tx_{len(self.transfers)}")


class FakeRefunds:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.error: RefundError | None = None

    async def refund(self, capture_ref: str) -> Result[str, RefundError]:
        self.calls.append(capture_ref)
        if self.error is not None:
            return Error(self.error)
        return Ok(f"re_{capture_ref}")


def rejected(message: str = "Destination rejected") -> TransferError:
    return TransferError(TransferErrorKind.UPSTREAM_REJECTED, message)


def refund_rejected(message: str = "Charge already refunded") -> RefundError:
    return RefundError(RefundErrorKind.UPSTREAM_REJECTED, message)


def paid(
    session_id: str = "sess_1",
    amount: Decimal | str = "50",
    destination: str = DEST,
    capture_ref: str | None = None,
) -> PaymentCompleted:
    return PaymentCompleted(
        session_id=session_id,
        destination=destination,
        amount=Decimal(amount),
        capture_ref=capture_ref or f"pi_{session_id}",
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def ledger(clock: ManualClock) -> MemoryLedger:
    return MemoryLedger(clock=clock)


@pytest.fixture
def venue() -> FakeVenue:
    return FakeVenue()


@pytest.fixture
def refunds() -> FakeRefunds:
    return FakeRefunds()


@pytest.fixture
def oracle(venue: FakeVenue, ledger: MemoryLedger) -> BalanceOracle:
    return BalanceOracle(venue, ledger, ttl=timedelta(seconds=30))


@pytest.fixture
def orchestrator(
    ledger: MemoryLedger,
    oracle: BalanceOracle,
    venue: FakeVenue,
    refunds: FakeRefunds,
) -> DepositOrchestrator:
    return DepositOrchestrator(
        ledger, oracle, venue, refunds, call_timeout=timedelta(seconds=1)
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Result helpers
# ═══════════════════════════════════════════════════════════════════════════════


def ok[T](result: Result[T, object]) -> T:
    match result:
        case Ok(value):
            return value
        case Error(e):
            raise AssertionError(f"expected Ok, got Error({e!r})")


def err[E](result: Result[object, E]) -> E:
    match result:
        case Error(e):
            return e
        case Ok(value):
            raise AssertionError(f"expected Error, got Ok({value!r})")
