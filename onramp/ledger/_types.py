"""
Ledger types — deposit intents and their lifecycle.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum, auto

# ═══════════════════════════════════════════════════════════════════════════════
# Intent Status — Settlement Lifecycle
# ═══════════════════════════════════════════════════════════════════════════════


class IntentStatus(Enum):
    """
    Status of a deposit intent.

    Lifecycle:
        PENDING → PROCESSING → COMPLETED (transfer sent)
                             → FAILED    (declined or transfer failed)

    COMPLETED and FAILED are terminal: the settlement path never moves an
    intent out of them. A retry after FAILED is a new intent.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL


IN_FLIGHT: frozenset[IntentStatus] = frozenset(
    {IntentStatus.PENDING, IntentStatus.PROCESSING}
)
TERMINAL: frozenset[IntentStatus] = frozenset(
    {IntentStatus.COMPLETED, IntentStatus.FAILED}
)

# PROCESSING → PROCESSING resumes an attempt that never reached a terminal state.
TRANSITIONS: dict[IntentStatus, frozenset[IntentStatus]] = {
    IntentStatus.PENDING: frozenset({IntentStatus.PROCESSING, IntentStatus.FAILED}),
    IntentStatus.PROCESSING: frozenset(
        {IntentStatus.PROCESSING, IntentStatus.COMPLETED, IntentStatus.FAILED}
    ),
    IntentStatus.COMPLETED: frozenset(),
    IntentStatus.FAILED: frozenset(),
}


def in_flight(status: IntentStatus) -> bool:
    """Exposure predicate: the intent still holds operator balance."""
    return status in IN_FLIGHT


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_intent_id() -> str:
    return f"dep_{uuid.uuid4().hex}"


# ═══════════════════════════════════════════════════════════════════════════════
# Deposit Intent — Stored Record
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class DepositIntent:
    """
    One deposit per paid payment session.

    Note: Frozen. The ledger hands out snapshots, callers never mutate.
    ``destination`` and ``amount`` are fixed at creation; ``settlement_ref``
    is only set on COMPLETED, ``failure_reason`` only on FAILED.
    """

    id: str
    session_id: str
    destination: str
    amount: Decimal
    status: IntentStatus
    created_at: datetime
    updated_at: datetime
    settlement_ref: str | None = None
    failure_reason: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def idle_for(self, now: datetime) -> float:
        """Seconds since the last transition."""
        return (now - self.updated_at).total_seconds()


# ═══════════════════════════════════════════════════════════════════════════════
# Transaction Status — Public View
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class TransactionStatus:
    """What status queries expose: no internal ids, no upstream bodies."""

    session_id: str
    status: IntentStatus
    destination: str
    amount: Decimal
    settlement_ref: str | None
    failure_reason: str | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_intent(cls, intent: DepositIntent) -> TransactionStatus:
        return cls(
            session_id=intent.session_id,
            status=intent.status,
            destination=intent.destination,
            amount=intent.amount,
            settlement_ref=intent.settlement_ref,
            failure_reason=intent.failure_reason,
            created_at=intent.created_at,
            updated_at=intent.updated_at,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Ledger Error
# ═══════════════════════════════════════════════════════════════════════════════


class LedgerErrorKind(Enum):
    """Kinds of ledger errors."""

    NOT_FOUND = auto()  # Unknown intent id
    DUPLICATE_SESSION = auto()  # create() for a session that already has an intent
    INVALID_TRANSITION = auto()  # Violates the state machine
    STORE_ERROR = auto()  # Backend failure


@dataclass(frozen=True, slots=True)
class LedgerError:
    """Ledger operation error."""

    kind: LedgerErrorKind
    message: str
    cause: Exception | None = None


def check_transition(
    intent: DepositIntent,
    status: IntentStatus,
    settlement_ref: str | None,
    failure_reason: str | None,
) -> LedgerError | None:
    """Validate a transition against the state machine. Returns None if allowed."""
    if status not in TRANSITIONS[intent.status]:
        return LedgerError(
            LedgerErrorKind.INVALID_TRANSITION,
            f"{intent.id}: {intent.status.value} -> {status.value} not allowed",
        )
    if status == IntentStatus.COMPLETED and not settlement_ref:
        return LedgerError(
            LedgerErrorKind.INVALID_TRANSITION,
            f"{intent.id}: completed requires a settlement reference",
        )
    if status == IntentStatus.FAILED and not failure_reason:
        return LedgerError(
            LedgerErrorKind.INVALID_TRANSITION,
            f"{intent.id}: failed requires a failure reason",
        )
    return None


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "IntentStatus",
    "IN_FLIGHT",
    "TERMINAL",
    "TRANSITIONS",
    "in_flight",
    "utcnow",
    "new_intent_id",
    "DepositIntent",
    "TransactionStatus",
    "LedgerErrorKind",
    "LedgerError",
    "check_transition",
)
