import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from kungfu import Error

from onramp.balance import (
    BalanceErrorKind,
    BalanceOracle,
    BalanceSnapshot,
    Capacity,
    TtlTier,
)
from onramp.ledger import IntentStatus, LedgerError, LedgerErrorKind, MemoryLedger

from tests.conftest import DEST, FakeVenue, MonotonicClock, err, ok


def cached_oracle(venue, ledger, ticks: MonotonicClock) -> BalanceOracle:
    tier = TtlTier[BalanceSnapshot](timedelta(seconds=30), clock=ticks)
    return BalanceOracle(venue, ledger, tier=tier)


# ═══════════════════════════════════════════════════════════════════════════════
# TtlTier
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_tier_entries_expire_at_ttl():
    ticks = MonotonicClock()
    tier = TtlTier[str](timedelta(seconds=10), clock=ticks)
    await tier.set("k", "v")

    ticks.advance(9.9)
    assert await tier.get("k") == "v"

    ticks.advance(0.1)
    assert await tier.get("k") is None


@pytest.mark.asyncio
async def test_tier_delete():
    tier = TtlTier[str](timedelta(seconds=10))
    await tier.set("k", "v")

    assert await tier.delete("k")
    assert not await tier.delete("k")
    assert await tier.get("k") is None


# ═══════════════════════════════════════════════════════════════════════════════
# Oracle caching
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_balance_cached_within_ttl(venue, ledger):
    ticks = MonotonicClock()
    oracle = cached_oracle(venue, ledger, ticks)

    await oracle.get_available()
    ticks.advance(29)
    venue.balance = Decimal("1")
    cap = ok(await oracle.get_available())

    assert venue.balance_calls == 1
    assert cap.balance == Decimal("1000")


@pytest.mark.asyncio
async def test_balance_refetched_after_ttl(venue, ledger):
    ticks = MonotonicClock()
    oracle = cached_oracle(venue, ledger, ticks)

    await oracle.get_available()
    ticks.advance(30)
    venue.balance = Decimal("7")
    cap = ok(await oracle.get_available())

    assert venue.balance_calls == 2
    assert cap.balance == Decimal("7")


@pytest.mark.asyncio
async def test_errors_are_not_cached(venue, ledger):
    oracle = BalanceOracle(venue, ledger)
    venue.balance_error = "503"

    error = err(await oracle.get_available())
    assert error.kind == BalanceErrorKind.UPSTREAM_UNAVAILABLE

    venue.balance_error = None
    assert ok(await oracle.get_available()).balance == Decimal("1000")
    assert venue.balance_calls == 2


@pytest.mark.asyncio
async def test_source_exception_is_unavailable(ledger):
    class Raising(FakeVenue):
        async def withdrawable(self):
            raise ConnectionError("reset")

    error = err(await BalanceOracle(Raising(), ledger).get_available())

    assert error.kind == BalanceErrorKind.UPSTREAM_UNAVAILABLE


@pytest.mark.asyncio
async def test_invalidate_forces_refetch(oracle, venue):
    await oracle.get_available()

    assert await oracle.invalidate()
    assert not await oracle.invalidate()

    await oracle.get_available()
    assert venue.balance_calls == 2


@pytest.mark.asyncio
async def test_concurrent_misses_share_one_fetch(ledger):
    class Slow(FakeVenue):
        async def withdrawable(self):
            await asyncio.sleep(0.01)
            return await super().withdrawable()

    venue = Slow()
    oracle = BalanceOracle(venue, ledger)

    results = await asyncio.gather(*(oracle.get_available() for _ in range(5)))

    assert venue.balance_calls == 1
    assert all(ok(r).balance == Decimal("1000") for r in results)


# ═══════════════════════════════════════════════════════════════════════════════
# Exposure
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_available_subtracts_in_flight_intents(oracle, ledger, venue):
    venue.balance = Decimal("100")
    await asyncio.gather(
        ledger.create("sess_a", DEST, Decimal("20")),
        ledger.create("sess_b", DEST, Decimal("30")),
    )
    done = ok(await ledger.create("sess_c", DEST, Decimal("40")))
    await ledger.transition(done.id, IntentStatus.PROCESSING)
    await ledger.transition(done.id, IntentStatus.COMPLETED, settlement_ref="tx_c")

    cap = ok(await oracle.get_available())

    assert cap.pending_exposure == Decimal("50")
    assert cap.available_for_onramp == Decimal("50")


@pytest.mark.asyncio
async def test_available_clamped_at_zero(oracle, ledger, venue):
    venue.balance = Decimal("10")
    await ledger.create("sess_a", DEST, Decimal("25"))

    cap = ok(await oracle.get_available())

    assert cap.available_for_onramp == Decimal(0)
    assert cap.headroom_for(Decimal("25")) == Decimal("10")


@pytest.mark.asyncio
async def test_exposure_failure_is_reported(venue):
    class Broken(MemoryLedger):
        async def sum_exposure(self, predicate):
            return Error(LedgerError(LedgerErrorKind.STORE_ERROR, "locked"))

    error = err(await BalanceOracle(venue, Broken()).get_available())

    assert error.kind == BalanceErrorKind.EXPOSURE_UNAVAILABLE


def test_capacity_formats_balance():
    cap = Capacity.of(
        BalanceSnapshot(balance=Decimal("1234.5"), fetched_at=None),  # type: ignore[arg-type]
        Decimal("0"),
    )

    assert cap.formatted_balance == "1234.50"
