"""
Settlement types — outcomes of settling one paid checkout.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum, auto

from onramp.payments import RefundError

# ═══════════════════════════════════════════════════════════════════════════════
# Success
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Settled:
    """
    Deposit credited.

    replayed is True when the intent was already Completed and nothing was
    sent this time.
    """

    session_id: str
    intent_id: str
    destination: str
    amount: Decimal
    settlement_ref: str
    replayed: bool = False


# ═══════════════════════════════════════════════════════════════════════════════
# Failure
# ═══════════════════════════════════════════════════════════════════════════════


class SettlementErrorKind(Enum):
    """Why a deposit was not credited."""
    INSUFFICIENT_BALANCE = auto()
    TRANSFER_FAILED = auto()
    UPSTREAM_UNAVAILABLE = auto()
    LEDGER_ERROR = auto()


@dataclass(frozen=True, slots=True)
class RefundAttempt:
    """Result of the compensating refund after a failed transfer."""

    capture_ref: str
    refund_ref: str | None = None
    error: RefundError | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.refund_ref is not None


@dataclass(frozen=True, slots=True)
class SettlementFailure:
    """
    Deposit not credited.

    refund is set only for TRANSFER_FAILED. A refund that did not go through
    (refund.succeeded is False) means the user was charged and not credited;
    it needs manual follow-up.
    """

    kind: SettlementErrorKind
    message: str
    session_id: str
    intent_id: str | None = None
    replayed: bool = False
    refund: RefundAttempt | None = None

    @property
    def stuck_funds(self) -> bool:
        return self.refund is not None and not self.refund.succeeded


# Stored failure reasons start with one of these; replays recover the kind from it.
INSUFFICIENT_BALANCE_REASON = "Insufficient balance for onramp"
HEADROOM_UNKNOWN_REASON = "Cannot verify headroom"
TRANSFER_FAILED_REASON = "Transfer failed"


def failure_kind(reason: str | None) -> SettlementErrorKind:
    reason = reason or ""
    if reason.startswith(INSUFFICIENT_BALANCE_REASON):
        return SettlementErrorKind.INSUFFICIENT_BALANCE
    if reason.startswith(HEADROOM_UNKNOWN_REASON):
        return SettlementErrorKind.UPSTREAM_UNAVAILABLE
    return SettlementErrorKind.TRANSFER_FAILED


class RefundFailed(Exception):
    """Raised by the refund compensator when the refund was not issued."""

    def __init__(self, error: RefundError) -> None:
        super().__init__(error.message)
        self.error = error


__all__ = (
    "Settled",
    "SettlementErrorKind",
    "RefundAttempt",
    "SettlementFailure",
    "INSUFFICIENT_BALANCE_REASON",
    "HEADROOM_UNKNOWN_REASON",
    "TRANSFER_FAILED_REASON",
    "failure_kind",
    "RefundFailed",
)
