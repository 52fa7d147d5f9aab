import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio

from onramp.ledger import (
    IN_FLIGHT,
    IntentStatus,
    LedgerErrorKind,
    MemoryLedger,
    SQLAlchemyLedger,
    create_database,
    in_flight,
)

from tests.conftest import DEST, ManualClock, err, ok


@pytest_asyncio.fixture(params=["memory", "sqlalchemy"])
async def store(request, clock: ManualClock, tmp_path):
    if request.param == "memory":
        yield MemoryLedger(clock=clock)
        return

    session_factory, engine = await create_database(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}"
    )
    try:
        yield SQLAlchemyLedger(session_factory, clock=clock)
    finally:
        await engine.dispose()


# ═══════════════════════════════════════════════════════════════════════════════
# Create & lookup
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_create_then_find(store, clock):
    created = ok(await store.create("sess_1", DEST, Decimal("12.50")))

    assert created.status == IntentStatus.PENDING
    assert created.amount == Decimal("12.50")
    assert created.created_at == clock.now
    assert created.settlement_ref is None

    found = ok(await store.find_by_session("sess_1"))
    assert found == created


@pytest.mark.asyncio
async def test_find_missing_session_is_none(store):
    assert ok(await store.find_by_session("nope")) is None


@pytest.mark.asyncio
async def test_session_lookup_is_exact(store):
    await store.create("sess_1", DEST, Decimal("1"))

    assert ok(await store.find_by_session("sess_10")) is None
    assert ok(await store.find_by_session("SESS_1")) is None


@pytest.mark.asyncio
async def test_duplicate_session_rejected(store):
    await store.create("sess_1", DEST, Decimal("1"))

    error = err(await store.create("sess_1", DEST, Decimal("2")))

    assert error.kind == LedgerErrorKind.DUPLICATE_SESSION


@pytest.mark.asyncio
async def test_find_or_create_returns_existing(store):
    first, created = ok(await store.find_or_create("sess_1", DEST, Decimal("5")))
    again, created_again = ok(await store.find_or_create("sess_1", DEST, Decimal("9")))

    assert created and not created_again
    assert again.id == first.id
    assert again.amount == Decimal("5")


@pytest.mark.asyncio
async def test_concurrent_find_or_create_creates_once(ledger):
    results = await asyncio.gather(
        *(ledger.find_or_create("sess_1", DEST, Decimal("5")) for _ in range(10))
    )

    pairs = [ok(r) for r in results]
    assert len({intent.id for intent, _ in pairs}) == 1
    assert sum(created for _, created in pairs) == 1


# ═══════════════════════════════════════════════════════════════════════════════
# Transitions
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_happy_transitions_refresh_updated_at(store, clock):
    intent = ok(await store.create("sess_1", DEST, Decimal("5")))
    clock.advance(timedelta(seconds=3))

    processing = ok(await store.transition(intent.id, IntentStatus.PROCESSING))
    assert processing.updated_at == clock.now
    assert processing.created_at == intent.created_at

    done = ok(await store.transition(
        intent.id, IntentStatus.COMPLETED, settlement_ref="tx_1"
    ))
    assert done.status == IntentStatus.COMPLETED
    assert done.settlement_ref == "tx_1"
    assert done.failure_reason is None


@pytest.mark.asyncio
async def test_pending_may_fail_directly(store):
    intent = ok(await store.create("sess_1", DEST, Decimal("5")))

    failed = ok(await store.transition(
        intent.id, IntentStatus.FAILED, failure_reason="declined"
    ))

    assert failed.failure_reason == "declined"
    assert failed.settlement_ref is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("path", "target"),
    [
        ([], IntentStatus.COMPLETED),
        ([IntentStatus.PROCESSING, IntentStatus.COMPLETED], IntentStatus.PROCESSING),
        ([IntentStatus.PROCESSING, IntentStatus.COMPLETED], IntentStatus.FAILED),
        ([IntentStatus.FAILED], IntentStatus.PROCESSING),
        ([IntentStatus.FAILED], IntentStatus.COMPLETED),
    ],
)
async def test_invalid_transitions_rejected(store, path, target):
    intent = ok(await store.create("sess_1", DEST, Decimal("5")))
    for status in path:
        ok(await store.transition(
            intent.id, status, settlement_ref="tx_1", failure_reason="reason"
        ))

    error = err(await store.transition(
        intent.id, target, settlement_ref="tx_2", failure_reason="again"
    ))

    assert error.kind == LedgerErrorKind.INVALID_TRANSITION


@pytest.mark.asyncio
async def test_completed_requires_reference(store):
    intent = ok(await store.create("sess_1", DEST, Decimal("5")))
    await store.transition(intent.id, IntentStatus.PROCESSING)

    error = err(await store.transition(intent.id, IntentStatus.COMPLETED))

    assert error.kind == LedgerErrorKind.INVALID_TRANSITION
    assert ok(await store.find_by_session("sess_1")).status == IntentStatus.PROCESSING


@pytest.mark.asyncio
async def test_failed_requires_reason(store):
    intent = ok(await store.create("sess_1", DEST, Decimal("5")))

    error = err(await store.transition(intent.id, IntentStatus.FAILED))

    assert error.kind == LedgerErrorKind.INVALID_TRANSITION


@pytest.mark.asyncio
async def test_transition_unknown_intent(store):
    error = err(await store.transition("dep_missing", IntentStatus.PROCESSING))

    assert error.kind == LedgerErrorKind.NOT_FOUND


# ═══════════════════════════════════════════════════════════════════════════════
# Exposure, listing, purge
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_sum_exposure_counts_in_flight_only(store):
    a = ok(await store.create("sess_a", DEST, Decimal("10.25")))
    b = ok(await store.create("sess_b", DEST, Decimal("20")))
    c = ok(await store.create("sess_c", DEST, Decimal("30")))
    d = ok(await store.create("sess_d", DEST, Decimal("40")))
    await store.transition(b.id, IntentStatus.PROCESSING)
    await store.transition(c.id, IntentStatus.PROCESSING)
    await store.transition(c.id, IntentStatus.COMPLETED, settlement_ref="tx_c")
    await store.transition(d.id, IntentStatus.FAILED, failure_reason="declined")

    assert ok(await store.sum_exposure(in_flight)) == a.amount + b.amount
    assert ok(await store.sum_exposure(lambda s: s == IntentStatus.COMPLETED)) == Decimal("30")
    assert ok(await store.sum_exposure(lambda s: False)) == Decimal(0)


@pytest.mark.asyncio
async def test_settled_total_counts_completions_and_outlives_purge(store, clock):
    assert ok(await store.settled_total()) == Decimal(0)

    for session_id, amount in (("sess_a", "10.25"), ("sess_b", "4.75")):
        intent = ok(await store.create(session_id, DEST, Decimal(amount)))
        await store.transition(intent.id, IntentStatus.PROCESSING)
        await store.transition(intent.id, IntentStatus.COMPLETED, settlement_ref=f"tx_{session_id}")
    failed = ok(await store.create("sess_c", DEST, Decimal("99")))
    await store.transition(failed.id, IntentStatus.FAILED, failure_reason="declined")

    assert ok(await store.settled_total()) == Decimal("15.00")

    clock.advance(timedelta(days=2))
    assert ok(await store.purge_older_than(timedelta(hours=24))) == 3

    assert ok(await store.settled_total()) == Decimal("15.00")


@pytest.mark.asyncio
async def test_list_all_oldest_first(store, clock):
    for session_id in ("sess_c", "sess_a", "sess_b"):
        await store.create(session_id, DEST, Decimal("1"))
        clock.advance(timedelta(seconds=1))

    listed = ok(await store.list_all())

    assert [i.session_id for i in listed] == ["sess_c", "sess_a", "sess_b"]


@pytest.mark.asyncio
async def test_purge_measures_age_from_last_transition(store, clock):
    old = ok(await store.create("sess_old", DEST, Decimal("1")))
    await store.transition(old.id, IntentStatus.FAILED, failure_reason="declined")
    late = ok(await store.create("sess_late", DEST, Decimal("1")))
    stuck = ok(await store.create("sess_stuck", DEST, Decimal("1")))
    await store.transition(stuck.id, IntentStatus.PROCESSING)

    clock.advance(timedelta(hours=20))
    await store.transition(late.id, IntentStatus.FAILED, failure_reason="declined")
    clock.advance(timedelta(hours=5))

    purged = ok(await store.purge_older_than(timedelta(hours=24)))

    assert purged == 1
    remaining = {i.session_id for i in ok(await store.list_all())}
    assert remaining == {"sess_late", "sess_stuck"}


@pytest.mark.asyncio
async def test_purge_never_touches_in_flight(store, clock):
    await store.create("sess_1", DEST, Decimal("1"))
    clock.advance(timedelta(days=30))

    assert ok(await store.purge_older_than(timedelta(hours=1), IN_FLIGHT)) == 0
    assert ok(await store.find_by_session("sess_1")) is not None
