"""
Deposit orchestrator — turns a paid checkout into exactly one credit.

    orchestrator = DepositOrchestrator(ledger, oracle, venue, stripe)

    match await orchestrator.settle(event):
        case Ok(settled):
            settled.settlement_ref
        case Error(failure):
            failure.kind, failure.refund

Flow for an in-flight intent:

    PENDING ─► PROCESSING ─► headroom check ─┬─ unknown ───► FAILED (no transfer, no refund)
                                             ├─ short ─────► FAILED (no transfer, no refund)
                                             └─ ok ─► saga: capture ─► transfer
                                                           │            ├─ ok ──► COMPLETED
                                                           └─ refund ◄──┴─ err ─► FAILED

A transfer that went out but whose COMPLETED write failed is remembered by
reference; a redelivery retries the write instead of sending again.
"""

from __future__ import annotations

import dataclasses
from datetime import timedelta
from decimal import Decimal

from kungfu import Result, Ok, Error
from loguru import logger

from onramp._types import format_amount
from onramp.balance import BalanceOracle, BalanceError, BalanceErrorKind, Capacity
from onramp.ledger import (
    DepositIntent,
    IntentStatus,
    Ledger,
    LedgerError,
    TransactionStatus,
)
from onramp.lift import bounded, from_result
from onramp.payments import PaymentCompleted, RefundClient, RefundError, RefundErrorKind
from onramp.settlement._graph import SettlementSpec, run_settlement
from onramp.settlement._locks import SessionLocks
from onramp.settlement._saga import SagaError, run_chain, step
from onramp.settlement._types import (
    HEADROOM_UNKNOWN_REASON,
    INSUFFICIENT_BALANCE_REASON,
    TRANSFER_FAILED_REASON,
    RefundAttempt,
    RefundFailed,
    Settled,
    SettlementErrorKind,
    SettlementFailure,
)
from onramp.venue import TransferClient, TransferError, TransferErrorKind


class DepositOrchestrator:
    """
    Idempotent settlement of PaymentCompleted events.

    Redeliveries of the same session are serialized by a per-session lock
    held for the whole settlement; the ledger's own lock is only held
    inside ledger calls, never across an outbound call. Every outbound
    call is bounded by ``call_timeout`` and never retried.
    """

    def __init__(
        self,
        ledger: Ledger,
        oracle: BalanceOracle,
        transfers: TransferClient,
        refunds: RefundClient,
        *,
        call_timeout: timedelta = timedelta(seconds=20),
    ) -> None:
        self._ledger = ledger
        self._oracle = oracle
        self._transfers = transfers
        self._refunds = refunds
        self._timeout = call_timeout.total_seconds()
        self._locks = SessionLocks()
        # intent id -> ref of a transfer that went out but was never recorded
        self._unrecorded: dict[str, str] = {}

    # ───────────────────────────────────────────────────────────────────────────
    # settle
    # ───────────────────────────────────────────────────────────────────────────

    async def settle(self, event: PaymentCompleted) -> Result[Settled, SettlementFailure]:
        """
        Settle one paid checkout. Safe to call any number of times per session.

        Never raises: unexpected errors come back as LEDGER_ERROR and leave
        the intent where the ledger last recorded it.
        """
        logger.info(
            f"SETTLEMENT: session {event.session_id}, {event.amount} USDC to {event.destination}"
        )
        try:
            async with self._locks.hold(event.session_id):
                result = await run_settlement(SettlementSpec(
                    event=event, ledger=self._ledger, attempt=self._attempt
                ))
        except Exception as e:
            logger.exception(f"SETTLEMENT: session {event.session_id} crashed")
            return Error(SettlementFailure(
                kind=SettlementErrorKind.LEDGER_ERROR,
                message=f"Unexpected settlement error: {type(e).__name__}",
                session_id=event.session_id,
            ))

        match result:
            case Ok(settled) if settled.replayed:
                logger.info(f"SETTLEMENT: session {event.session_id} already completed")
            case Error(failure) if failure.replayed:
                logger.info(f"SETTLEMENT: session {event.session_id} already failed")
            case _:
                pass
        return result

    async def _attempt(
        self, event: PaymentCompleted, intent: DepositIntent
    ) -> Result[Settled, SettlementFailure]:
        if intent.status == IntentStatus.PROCESSING:
            known_ref = self._unrecorded.get(intent.id)
            if known_ref is not None:
                logger.warning(
                    f"SETTLEMENT: intent {intent.id} already transferred as {known_ref}, "
                    f"retrying the completion write"
                )
                return await self._complete(intent, known_ref)
            logger.warning(f"SETTLEMENT: resuming intent {intent.id} found in processing")

        match await self._ledger.transition(intent.id, IntentStatus.PROCESSING):
            case Error(err):
                return Error(self._ledger_failure(intent, err))
            case Ok(processing):
                pass

        match await self._check_headroom(processing):
            case Error(failure):
                return Error(failure)
            case Ok(_):
                pass

        return await self._transfer(processing, event.capture_ref)

    # ───────────────────────────────────────────────────────────────────────────
    # Headroom
    # ───────────────────────────────────────────────────────────────────────────

    async def _check_headroom(self, intent: DepositIntent) -> Result[Capacity, SettlementFailure]:
        capacity = await bounded(
            lambda: self._oracle.get_available(),
            seconds=self._timeout,
            on_timeout=lambda: BalanceError(
                BalanceErrorKind.UPSTREAM_UNAVAILABLE, "Balance query timed out"
            ),
            on_error=lambda e: BalanceError(BalanceErrorKind.UPSTREAM_UNAVAILABLE, str(e)),
        )

        match capacity:
            case Error(err):
                reason = f"{HEADROOM_UNKNOWN_REASON}: {err.message}"
                logger.error(
                    f"SETTLEMENT: intent {intent.id} failed closed, headroom unknown "
                    f"({err.kind.name}); card was charged, needs manual follow-up"
                )
                return Error(await self._fail(
                    intent, SettlementErrorKind.UPSTREAM_UNAVAILABLE, reason
                ))
            case Ok(cap):
                pass

        # The intent is already PROCESSING and so part of pending_exposure
        headroom = cap.headroom_for(intent.amount)
        if headroom < intent.amount:
            reason = (
                f"{INSUFFICIENT_BALANCE_REASON}. Required: {format_amount(intent.amount)} USDC, "
                f"Available: {format_amount(max(Decimal(0), headroom))} USDC"
            )
            logger.warning(f"SETTLEMENT: intent {intent.id} declined: {reason}")
            return Error(await self._fail(
                intent, SettlementErrorKind.INSUFFICIENT_BALANCE, reason
            ))
        return Ok(cap)

    # ───────────────────────────────────────────────────────────────────────────
    # Transfer with compensating refund
    # ───────────────────────────────────────────────────────────────────────────

    async def _refund(self, capture_ref: str) -> str:
        result = await bounded(
            lambda: self._refunds.refund(capture_ref),
            seconds=self._timeout,
            on_timeout=lambda: RefundError(RefundErrorKind.TIMEOUT, "Refund timed out"),
            on_error=lambda e: RefundError(RefundErrorKind.UPSTREAM_REJECTED, str(e)),
        )
        match result:
            case Ok(refund_ref):
                return refund_ref
            case Error(err):
                raise RefundFailed(err)

    async def _transfer(
        self, intent: DepositIntent, capture_ref: str
    ) -> Result[Settled, SettlementFailure]:
        saga = step(
            from_result(Ok(capture_ref)),
            compensate=self._refund,
        ).then(lambda _: step(bounded(
            lambda: self._transfers.transfer(intent.destination, intent.amount),
            seconds=self._timeout,
            on_timeout=lambda: TransferError(TransferErrorKind.TIMEOUT, "Transfer timed out"),
            on_error=lambda e: TransferError(TransferErrorKind.UPSTREAM_REJECTED, str(e)),
        )))

        match await run_chain(saga):
            case Ok(done):
                return await self._complete(intent, done.value)
            case Error(saga_error):
                return Error(await self._transfer_failed(intent, capture_ref, saga_error))

    async def _complete(self, intent: DepositIntent, ref: str) -> Result[Settled, SettlementFailure]:
        await self._oracle.invalidate()

        match await self._ledger.transition(intent.id, IntentStatus.COMPLETED, settlement_ref=ref):
            case Ok(done):
                self._unrecorded.pop(done.id, None)
                logger.info(
                    f"SETTLEMENT: intent {done.id} completed, {done.amount} USDC "
                    f"to {done.destination}, ref {ref}"
                )
                return Ok(Settled(
                    session_id=done.session_id,
                    intent_id=done.id,
                    destination=done.destination,
                    amount=done.amount,
                    settlement_ref=ref,
                ))
            case Error(err):
                self._unrecorded[intent.id] = ref
                logger.critical(
                    f"SETTLEMENT: intent {intent.id} transferred as {ref} but could not "
                    f"be marked completed: {err.message}"
                )
                return Error(self._ledger_failure(intent, err))

    async def _transfer_failed(
        self, intent: DepositIntent, capture_ref: str, saga_error: SagaError[TransferError]
    ) -> SettlementFailure:
        transfer_error = saga_error.error
        logger.error(
            f"SETTLEMENT: transfer for intent {intent.id} failed "
            f"({transfer_error.kind.name}): {transfer_error.message}"
        )

        refund = refund_attempt(capture_ref, saga_error)
        if refund.succeeded:
            logger.info(f"SETTLEMENT: intent {intent.id} refunded as {refund.refund_ref}")
        else:
            logger.critical(
                f"SETTLEMENT: STUCK FUNDS, intent {intent.id} (session {intent.session_id}) "
                f"charged {intent.amount} USDC, transfer failed and refund failed: "
                f"{refund.error.message if refund.error else 'not attempted'}"
            )

        reason = f"{TRANSFER_FAILED_REASON}: {transfer_error.message}"
        failure = await self._fail(intent, SettlementErrorKind.TRANSFER_FAILED, reason)
        return dataclasses.replace(failure, refund=refund)

    # ───────────────────────────────────────────────────────────────────────────
    # Helpers
    # ───────────────────────────────────────────────────────────────────────────

    async def _fail(
        self, intent: DepositIntent, kind: SettlementErrorKind, reason: str
    ) -> SettlementFailure:
        match await self._ledger.transition(intent.id, IntentStatus.FAILED, failure_reason=reason):
            case Error(err):
                logger.critical(
                    f"SETTLEMENT: intent {intent.id} could not be marked failed: {err.message}"
                )
            case Ok(_):
                pass
        return SettlementFailure(
            kind=kind, message=reason, session_id=intent.session_id, intent_id=intent.id
        )

    def _ledger_failure(self, intent: DepositIntent, err: LedgerError) -> SettlementFailure:
        logger.error(f"SETTLEMENT: ledger error on intent {intent.id}: {err.message}")
        return SettlementFailure(
            kind=SettlementErrorKind.LEDGER_ERROR,
            message=err.message,
            session_id=intent.session_id,
            intent_id=intent.id,
        )

    # ───────────────────────────────────────────────────────────────────────────
    # Queries
    # ───────────────────────────────────────────────────────────────────────────

    async def get_transaction_status(
        self, session_id: str
    ) -> Result[TransactionStatus | None, LedgerError]:
        match await self._ledger.find_by_session(session_id):
            case Ok(intent):
                return Ok(TransactionStatus.from_intent(intent) if intent is not None else None)
            case Error(err):
                return Error(err)

    async def get_all_transaction_statuses(self) -> Result[list[TransactionStatus], LedgerError]:
        match await self._ledger.list_all():
            case Ok(intents):
                return Ok([TransactionStatus.from_intent(i) for i in intents])
            case Error(err):
                return Error(err)

    async def get_total_settled(self) -> Result[Decimal, LedgerError]:
        """Lifetime sum of completed deposits, unaffected by retention purges."""
        return await self._ledger.settled_total()

    async def get_capacity(self) -> Result[Capacity, BalanceError]:
        return await self._oracle.get_available()


def refund_attempt(capture_ref: str, saga_error: SagaError[TransferError]) -> RefundAttempt:
    """Summarize the refund compensation of a failed saga."""
    if not saga_error.compensations:
        return RefundAttempt(
            capture_ref=capture_ref,
            error=RefundError(RefundErrorKind.NO_CAPTURE_FOUND, "Refund was not attempted"),
        )
    comp = saga_error.compensations[0]
    if comp.succeeded:
        return RefundAttempt(capture_ref=capture_ref, refund_ref=str(comp.outcome))
    match comp.error:
        case RefundFailed(error=err):
            return RefundAttempt(capture_ref=capture_ref, error=err)
        case other:
            return RefundAttempt(
                capture_ref=capture_ref,
                error=RefundError(RefundErrorKind.UPSTREAM_REJECTED, str(other)),
            )


__all__ = (
    "DepositOrchestrator",
    "refund_attempt",
)
