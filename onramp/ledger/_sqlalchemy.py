"""
SQLAlchemy integration — durable ledger backend.

Usage:
    session_factory, engine = await create_database("sqlite+aiosqlite:///onramp.db")
    ledger = SQLAlchemyLedger(session_factory)

    orchestrator = DepositOrchestrator(ledger=ledger, ...)

Note: The unique constraint on session_id is what makes find_or_create
atomic across processes: the losing insert re-reads the winner's row.
"""

from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any, cast

from sqlalchemy import String, DateTime, Text, select, delete
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

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
from onramp.ledger._store import Clock, StatusPredicate, purgeable


# ═══════════════════════════════════════════════════════════════════════════════
# Table
# ═══════════════════════════════════════════════════════════════════════════════

class Base(DeclarativeBase):
    pass


class DepositIntentTable(Base):
    """
    deposit_intents — one row per paid checkout session.

    Note: amount is stored as its exact decimal string; the ledger never
    does arithmetic in SQL.
    """
    __tablename__ = "deposit_intents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    session_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
    )
    destination: Mapped[str] = mapped_column(String(128), nullable=False)
    amount: Mapped[str] = mapped_column(String(40), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    settlement_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class LedgerTotalTable(Base):
    """
    ledger_totals: running aggregates that outlive purged intents.

    Note: one row per counter, updated in the same transaction as the
    intent row it accounts for.
    """
    __tablename__ = "ledger_totals"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    amount: Mapped[str] = mapped_column(String(40), nullable=False)


SETTLED_TOTAL = "settled"


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back; everything is written in UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _to_intent(row: DepositIntentTable) -> DepositIntent:
    return DepositIntent(
        id=row.id,
        session_id=row.session_id,
        destination=row.destination,
        amount=Decimal(row.amount),
        status=IntentStatus(row.status),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
        settlement_ref=row.settlement_ref,
        failure_reason=row.failure_reason,
    )


def _store_error(action: str, e: Exception) -> LedgerError:
    return LedgerError(LedgerErrorKind.STORE_ERROR, f"Failed to {action}: {e}", e)


# ═══════════════════════════════════════════════════════════════════════════════
# SQLAlchemy Ledger
# ═══════════════════════════════════════════════════════════════════════════════

class SQLAlchemyLedger:
    """Ledger over the deposit_intents table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def _select_session(
        self, session: AsyncSession, session_id: str
    ) -> DepositIntentTable | None:
        stmt = select(DepositIntentTable).where(
            DepositIntentTable.session_id == session_id
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def _insert(
        self, session_id: str, destination: str, amount: Decimal
    ) -> DepositIntent:
        now = self._clock()
        row = DepositIntentTable(
            id=new_intent_id(),
            session_id=session_id,
            destination=destination,
            amount=str(amount),
            status=IntentStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            return _to_intent(row)

    async def _add_settled(self, session: AsyncSession, amount: Decimal) -> None:
        stmt = (
            select(LedgerTotalTable)
            .where(LedgerTotalTable.name == SETTLED_TOTAL)
            .with_for_update()
        )
        total = (await session.execute(stmt)).scalar_one_or_none()
        if total is None:
            session.add(LedgerTotalTable(name=SETTLED_TOTAL, amount=str(amount)))
        else:
            total.amount = str(Decimal(total.amount) + amount)

    async def find_by_session(
        self, session_id: str
    ) -> Result[DepositIntent | None, LedgerError]:
        try:
            async with self._session_factory() as session:
                row = await self._select_session(session, session_id)
                return Ok(_to_intent(row) if row is not None else None)
        except SQLAlchemyError as e:
            return Error(_store_error("find", e))

    async def create(
        self, session_id: str, destination: str, amount: Decimal
    ) -> Result[DepositIntent, LedgerError]:
        try:
            return Ok(await self._insert(session_id, destination, amount))
        except IntegrityError:
            return Error(LedgerError(
                LedgerErrorKind.DUPLICATE_SESSION,
                f"Intent already exists for session: {session_id}",
            ))
        except SQLAlchemyError as e:
            return Error(_store_error("create", e))

    async def find_or_create(
        self, session_id: str, destination: str, amount: Decimal
    ) -> Result[tuple[DepositIntent, bool], LedgerError]:
        match await self.find_by_session(session_id):
            case Error(err):
                return Error(err)
            case Ok(existing) if existing is not None:
                return Ok((existing, False))
            case _:
                pass

        try:
            return Ok((await self._insert(session_id, destination, amount), True))
        except IntegrityError:
            pass
        except SQLAlchemyError as e:
            return Error(_store_error("create", e))

        # Lost the insert race; the winner's row is the intent.
        match await self.find_by_session(session_id):
            case Ok(winner) if winner is not None:
                return Ok((winner, False))
            case Ok(_):
                return Error(LedgerError(
                    LedgerErrorKind.STORE_ERROR,
                    f"Intent vanished after conflict: {session_id}",
                ))
            case Error(err):
                return Error(err)

    async def transition(
        self,
        intent_id: str,
        status: IntentStatus,
        *,
        settlement_ref: str | None = None,
        failure_reason: str | None = None,
    ) -> Result[DepositIntent, LedgerError]:
        try:
            async with self._session_factory() as session:
                stmt = (
                    select(DepositIntentTable)
                    .where(DepositIntentTable.id == intent_id)
                    .with_for_update()
                )
                row = (await session.execute(stmt)).scalar_one_or_none()
                if row is None:
                    return Error(LedgerError(
                        LedgerErrorKind.NOT_FOUND, f"No intent: {intent_id}"
                    ))

                rejected = check_transition(
                    _to_intent(row), status, settlement_ref, failure_reason
                )
                if rejected is not None:
                    await session.rollback()
                    return Error(rejected)

                row.status = status.value
                row.settlement_ref = (
                    settlement_ref if status == IntentStatus.COMPLETED else None
                )
                row.failure_reason = (
                    failure_reason if status == IntentStatus.FAILED else None
                )
                row.updated_at = self._clock()
                if status == IntentStatus.COMPLETED:
                    await self._add_settled(session, Decimal(row.amount))
                await session.commit()
                return Ok(_to_intent(row))
        except SQLAlchemyError as e:
            return Error(_store_error("transition", e))

    async def sum_exposure(
        self, predicate: StatusPredicate
    ) -> Result[Decimal, LedgerError]:
        statuses = [s.value for s in IntentStatus if predicate(s)]
        if not statuses:
            return Ok(Decimal(0))
        try:
            async with self._session_factory() as session:
                stmt = select(DepositIntentTable.amount).where(
                    DepositIntentTable.status.in_(statuses)
                )
                amounts = (await session.execute(stmt)).scalars().all()
                return Ok(sum((Decimal(a) for a in amounts), Decimal(0)))
        except SQLAlchemyError as e:
            return Error(_store_error("sum exposure", e))

    async def settled_total(self) -> Result[Decimal, LedgerError]:
        try:
            async with self._session_factory() as session:
                stmt = select(LedgerTotalTable.amount).where(
                    LedgerTotalTable.name == SETTLED_TOTAL
                )
                amount = (await session.execute(stmt)).scalar_one_or_none()
                return Ok(Decimal(amount) if amount is not None else Decimal(0))
        except SQLAlchemyError as e:
            return Error(_store_error("read settled total", e))

    async def purge_older_than(
        self,
        retention: timedelta,
        statuses: Iterable[IntentStatus] = TERMINAL,
    ) -> Result[int, LedgerError]:
        allowed = [s.value for s in purgeable(statuses)]
        if not allowed:
            return Ok(0)
        try:
            async with self._session_factory() as session:
                stmt = delete(DepositIntentTable).where(
                    DepositIntentTable.status.in_(allowed),
                    DepositIntentTable.updated_at < self._clock() - retention,
                )
                cursor = cast(CursorResult[Any], await session.execute(stmt))
                await session.commit()
                return Ok(cursor.rowcount)
        except SQLAlchemyError as e:
            return Error(_store_error("purge", e))

    async def list_all(self) -> Result[list[DepositIntent], LedgerError]:
        try:
            async with self._session_factory() as session:
                stmt = select(DepositIntentTable).order_by(DepositIntentTable.created_at)
                rows = (await session.execute(stmt)).scalars().all()
                return Ok([_to_intent(r) for r in rows])
        except SQLAlchemyError as e:
            return Error(_store_error("list", e))


# ═══════════════════════════════════════════════════════════════════════════════
# Database Setup
# ═══════════════════════════════════════════════════════════════════════════════

def open_database(
    url: str = "sqlite+aiosqlite:///:memory:",
) -> tuple[async_sessionmaker[AsyncSession], AsyncEngine]:
    """Engine + session factory, no I/O yet."""
    engine = create_async_engine(url, echo=False)
    return async_sessionmaker(engine, expire_on_commit=False), engine


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def create_database(
    url: str = "sqlite+aiosqlite:///:memory:",
) -> tuple[async_sessionmaker[AsyncSession], AsyncEngine]:
    """Create tables and return (session_factory, engine)."""
    session_factory, engine = open_database(url)
    await create_tables(engine)
    return session_factory, engine


__all__ = (
    "Base",
    "DepositIntentTable",
    "LedgerTotalTable",
    "SQLAlchemyLedger",
    "open_database",
    "create_tables",
    "create_database",
)
