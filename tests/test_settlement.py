import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from kungfu import Ok, Error

from onramp.balance import BalanceOracle
from onramp.ledger import IntentStatus, LedgerError, LedgerErrorKind, MemoryLedger, purge_expired
from onramp.settlement import (
    DepositOrchestrator,
    SessionLocks,
    SettlementErrorKind,
)
from onramp.venue import TransferError, TransferErrorKind

from tests.conftest import DEST, err, ok, paid, refund_rejected, rejected


async def intent_for(ledger: MemoryLedger, session_id: str):
    match await ledger.find_by_session(session_id):
        case Ok(intent):
            return intent
        case Error(e):
            raise AssertionError(e)


# ═══════════════════════════════════════════════════════════════════════════════
# Happy path & idempotency
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_settle_credits_once_and_completes(orchestrator, ledger, venue, refunds):
    match await orchestrator.settle(paid("sess_1", "50")):
        case Ok(settled):
            assert settled.settlement_ref == "tx_1"
            assert settled.amount == Decimal("50")
            assert settled.destination == DEST
            assert not settled.replayed
        case Error(failure):
            pytest.fail(failure.message)

    intent = await intent_for(ledger, "sess_1")
    assert intent.status == IntentStatus.COMPLETED
    assert intent.settlement_ref == "tx_1"
    assert venue.transfers == [(DEST, Decimal("50"))]
    assert refunds.calls == []


@pytest.mark.asyncio
async def test_duplicate_completion_returns_stored_reference(orchestrator, venue):
    venue.refs = ["tx_abc"]

    first = await orchestrator.settle(paid("sess_1"))
    second = await orchestrator.settle(paid("sess_1"))

    assert ok(first).settlement_ref == "tx_abc"
    match second:
        case Ok(settled):
            assert settled.settlement_ref == "tx_abc"
            assert settled.replayed
        case Error(failure):
            pytest.fail(failure.message)
    assert len(venue.transfers) == 1


@pytest.mark.asyncio
async def test_concurrent_redelivery_sends_one_transfer(orchestrator, ledger, venue):
    venue.transfer_delay = 0.01

    results = await asyncio.gather(*(orchestrator.settle(paid("sess_1")) for _ in range(5)))

    assert len(venue.transfers) == 1
    refs = {ok(r).settlement_ref for r in results}
    assert refs == {"tx_1"}
    assert sum(1 for r in results if not ok(r).replayed) == 1
    assert len(ok(await ledger.list_all())) == 1


@pytest.mark.asyncio
async def test_distinct_sessions_settle_independently(orchestrator, venue):
    results = await asyncio.gather(
        orchestrator.settle(paid("sess_a", "10")),
        orchestrator.settle(paid("sess_b", "20")),
    )

    assert all(isinstance(r, Ok) for r in results)
    assert sorted(amount for _, amount in venue.transfers) == [Decimal("10"), Decimal("20")]


@pytest.mark.asyncio
async def test_session_locks_are_released():
    locks = SessionLocks()
    async with locks.hold("sess_1"):
        assert len(locks) == 1
    assert len(locks) == 0


# ═══════════════════════════════════════════════════════════════════════════════
# Headroom — fail closed
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_insufficient_headroom_fails_without_transfer(orchestrator, ledger, venue, refunds):
    venue.balance = Decimal("100")
    other = ok(await ledger.create("sess_a", DEST, Decimal("80")))
    await ledger.transition(other.id, IntentStatus.PROCESSING)

    match await orchestrator.settle(paid("sess_b", "30")):
        case Error(failure):
            assert failure.kind == SettlementErrorKind.INSUFFICIENT_BALANCE
            assert failure.message == (
                "Insufficient balance for onramp. Required: 30.00 USDC, Available: 20.00 USDC"
            )
            assert failure.refund is None
        case Ok(_):
            pytest.fail("expected a decline")

    assert venue.transfers == []
    assert refunds.calls == []
    assert (await intent_for(ledger, "sess_a")).status == IntentStatus.PROCESSING
    declined = await intent_for(ledger, "sess_b")
    assert declined.status == IntentStatus.FAILED
    assert declined.failure_reason.startswith("Insufficient balance for onramp")


@pytest.mark.asyncio
async def test_exact_headroom_is_enough(orchestrator, venue):
    venue.balance = Decimal("30")

    assert isinstance(await orchestrator.settle(paid("sess_1", "30")), Ok)


@pytest.mark.asyncio
async def test_unknown_balance_fails_closed(orchestrator, ledger, venue, refunds):
    venue.balance_error = "connection refused"

    match await orchestrator.settle(paid("sess_1")):
        case Error(failure):
            assert failure.kind == SettlementErrorKind.UPSTREAM_UNAVAILABLE
            assert failure.message.startswith("Cannot verify headroom")
        case Ok(_):
            pytest.fail("must not settle without a balance")

    assert venue.transfers == []
    assert refunds.calls == []
    assert (await intent_for(ledger, "sess_1")).status == IntentStatus.FAILED


@pytest.mark.asyncio
async def test_balance_refetched_after_transfer(orchestrator, venue):
    await orchestrator.settle(paid("sess_1", "10"))
    await orchestrator.settle(paid("sess_2", "10"))

    assert venue.balance_calls == 2


# ═══════════════════════════════════════════════════════════════════════════════
# Transfer failure — compensating refund
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_rejected_transfer_refunds_capture_once(orchestrator, ledger, venue, refunds):
    venue.transfer_error = rejected()

    match await orchestrator.settle(paid("sess_2", capture_ref="pi_123")):
        case Error(failure):
            assert failure.kind == SettlementErrorKind.TRANSFER_FAILED
            assert failure.message == "Transfer failed: Destination rejected"
            assert failure.refund is not None
            assert failure.refund.succeeded
            assert failure.refund.refund_ref == "re_pi_123"
            assert not failure.stuck_funds
        case Ok(_):
            pytest.fail("expected a transfer failure")

    assert refunds.calls == ["pi_123"]
    intent = await intent_for(ledger, "sess_2")
    assert intent.status == IntentStatus.FAILED
    assert intent.failure_reason == "Transfer failed: Destination rejected"


@pytest.mark.asyncio
async def test_failed_replay_does_not_refund_again(orchestrator, venue, refunds):
    venue.transfer_error = rejected()
    await orchestrator.settle(paid("sess_2"))
    venue.transfer_error = None

    match await orchestrator.settle(paid("sess_2")):
        case Error(failure):
            assert failure.replayed
            assert failure.kind == SettlementErrorKind.TRANSFER_FAILED
            assert failure.refund is None
        case Ok(_):
            pytest.fail("a failed intent is never retried")

    assert len(venue.transfers) == 1
    assert refunds.calls == ["pi_sess_2"]


@pytest.mark.asyncio
async def test_declined_replay_keeps_its_kind(orchestrator, venue):
    venue.balance = Decimal("1")
    await orchestrator.settle(paid("sess_1", "50"))
    venue.balance = Decimal("1000")

    failure = err(await orchestrator.settle(paid("sess_1", "50")))

    assert failure.replayed
    assert failure.kind == SettlementErrorKind.INSUFFICIENT_BALANCE
    assert venue.transfers == []


@pytest.mark.asyncio
async def test_refund_failure_is_reported_as_stuck_funds(orchestrator, venue, refunds):
    venue.transfer_error = TransferError(
        TransferErrorKind.INSUFFICIENT_UPSTREAM_BALANCE, "Insufficient balance"
    )
    refunds.error = refund_rejected()

    failure = err(await orchestrator.settle(paid("sess_1")))

    assert failure.kind == SettlementErrorKind.TRANSFER_FAILED
    assert failure.stuck_funds
    assert failure.refund.error == refund_rejected()
    assert refunds.calls == ["pi_sess_1"]


@pytest.mark.asyncio
async def test_transfer_timeout_is_a_failure(ledger, oracle, venue, refunds):
    orchestrator = DepositOrchestrator(
        ledger, oracle, venue, refunds, call_timeout=timedelta(milliseconds=50)
    )
    venue.transfer_delay = 1.0

    failure = err(await orchestrator.settle(paid("sess_1")))

    assert failure.kind == SettlementErrorKind.TRANSFER_FAILED
    assert failure.message == "Transfer failed: Transfer timed out"
    assert refunds.calls == ["pi_sess_1"]
    assert (await intent_for(ledger, "sess_1")).status == IntentStatus.FAILED


@pytest.mark.asyncio
async def test_transfer_raising_is_compensated(orchestrator, venue, refunds):
    venue.transfer_raises = RuntimeError("socket closed")

    failure = err(await orchestrator.settle(paid("sess_1")))

    assert failure.kind == SettlementErrorKind.TRANSFER_FAILED
    assert "socket closed" in failure.message
    assert refunds.calls == ["pi_sess_1"]


# ═══════════════════════════════════════════════════════════════════════════════
# Resume & ledger errors
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_processing_intent_is_resumed(orchestrator, ledger, venue):
    intent = ok(await ledger.create("sess_1", DEST, Decimal("50")))
    await ledger.transition(intent.id, IntentStatus.PROCESSING)

    settled = ok(await orchestrator.settle(paid("sess_1", "50")))

    assert settled.intent_id == intent.id
    assert len(venue.transfers) == 1


@pytest.mark.asyncio
async def test_stored_intent_wins_over_redelivered_payload(orchestrator, ledger, venue):
    await ledger.create("sess_1", DEST, Decimal("50"))

    await orchestrator.settle(paid("sess_1", "75"))

    assert venue.transfers == [(DEST, Decimal("50"))]


class BrokenLedger(MemoryLedger):
    async def transition(self, intent_id, status, **kwargs):
        return Error(LedgerError(LedgerErrorKind.STORE_ERROR, "disk full"))


class ExplodingLedger(MemoryLedger):
    async def find_by_session(self, session_id):
        raise RuntimeError("boom")


class FlakyCompletionLedger(MemoryLedger):
    """Fails the first COMPLETED write, then behaves."""

    def __init__(self) -> None:
        super().__init__()
        self.failures = 1

    async def transition(self, intent_id, status, **kwargs):
        if status == IntentStatus.COMPLETED and self.failures:
            self.failures -= 1
            return Error(LedgerError(LedgerErrorKind.STORE_ERROR, "connection reset"))
        return await super().transition(intent_id, status, **kwargs)


@pytest.mark.asyncio
async def test_unrecorded_transfer_is_not_sent_again(venue, refunds):
    ledger = FlakyCompletionLedger()
    orchestrator = DepositOrchestrator(ledger, BalanceOracle(venue, ledger), venue, refunds)

    failure = err(await orchestrator.settle(paid("sess_1", "50")))
    assert failure.kind == SettlementErrorKind.LEDGER_ERROR
    assert (await intent_for(ledger, "sess_1")).status == IntentStatus.PROCESSING

    settled = ok(await orchestrator.settle(paid("sess_1", "50")))

    assert settled.settlement_ref == "tx_1"
    assert venue.transfers == [(DEST, Decimal("50"))]
    assert refunds.calls == []
    intent = await intent_for(ledger, "sess_1")
    assert intent.status == IntentStatus.COMPLETED
    assert intent.settlement_ref == "tx_1"
    assert ok(await ledger.settled_total()) == Decimal("50")


@pytest.mark.asyncio
async def test_ledger_error_stops_before_transfer(venue, refunds):
    ledger = BrokenLedger()

    orchestrator = DepositOrchestrator(ledger, BalanceOracle(venue, ledger), venue, refunds)

    failure = err(await orchestrator.settle(paid("sess_1")))

    assert failure.kind == SettlementErrorKind.LEDGER_ERROR
    assert failure.message == "disk full"
    assert venue.transfers == []


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_ledger_error(venue, refunds):
    ledger = ExplodingLedger()

    orchestrator = DepositOrchestrator(ledger, BalanceOracle(venue, ledger), venue, refunds)

    failure = err(await orchestrator.settle(paid("sess_1")))

    assert failure.kind == SettlementErrorKind.LEDGER_ERROR
    assert venue.transfers == []


# ═══════════════════════════════════════════════════════════════════════════════
# Queries
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_status_queries(orchestrator):
    await orchestrator.settle(paid("sess_1", "10"))
    await orchestrator.settle(paid("sess_2", "15"))

    status = ok(await orchestrator.get_transaction_status("sess_1"))
    assert status.status == IntentStatus.COMPLETED
    assert status.settlement_ref == "tx_1"

    assert ok(await orchestrator.get_transaction_status("missing")) is None

    listed = ok(await orchestrator.get_all_transaction_statuses())
    assert [s.session_id for s in listed] == ["sess_1", "sess_2"]

    assert ok(await orchestrator.get_total_settled()) == Decimal("25")


@pytest.mark.asyncio
async def test_capacity_reflects_settled_transfers(orchestrator, venue):
    venue.balance = Decimal("100")
    await orchestrator.settle(paid("sess_1", "40"))

    capacity = ok(await orchestrator.get_capacity())

    assert capacity.balance == Decimal("60")
    assert capacity.pending_exposure == Decimal("0")
    assert capacity.available_for_onramp == Decimal("60")


@pytest.mark.asyncio
async def test_total_settled_survives_retention_purge(orchestrator, ledger, clock):
    await orchestrator.settle(paid("sess_1", "10"))
    declined = err(await orchestrator.settle(paid("sess_2", "5000")))
    assert declined.kind == SettlementErrorKind.INSUFFICIENT_BALANCE

    clock.advance(timedelta(hours=25))
    assert ok(await purge_expired(ledger, timedelta(hours=24))) == 2

    assert ok(await ledger.list_all()) == []
    assert ok(await orchestrator.get_total_settled()) == Decimal("10")
