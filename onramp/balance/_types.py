"""
Balance types.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum, auto

from onramp._types import format_amount

# ═══════════════════════════════════════════════════════════════════════════════
# Snapshot & Capacity
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class BalanceSnapshot:
    """Operator balance as last read from the venue."""

    balance: Decimal
    fetched_at: datetime


@dataclass(frozen=True, slots=True)
class Capacity:
    """
    What can still be promised to new deposits.

    available_for_onramp = max(0, balance - pending_exposure)
    """

    balance: Decimal
    pending_exposure: Decimal
    available_for_onramp: Decimal
    fetched_at: datetime

    @classmethod
    def of(cls, snapshot: BalanceSnapshot, pending_exposure: Decimal) -> Capacity:
        available = snapshot.balance - pending_exposure
        return cls(
            balance=snapshot.balance,
            pending_exposure=pending_exposure,
            available_for_onramp=max(Decimal(0), available),
            fetched_at=snapshot.fetched_at,
        )

    @property
    def formatted_balance(self) -> str:
        return format_amount(self.balance)

    def headroom_for(self, amount: Decimal) -> Decimal:
        """
        Headroom seen by an intent that is itself counted in pending_exposure.

        Not clamped at zero: a negative headroom still means "no".
        """
        return self.balance - (self.pending_exposure - amount)


# ═══════════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════════


class BalanceErrorKind(Enum):
    """Balance error kinds."""
    UPSTREAM_UNAVAILABLE = auto()
    EXPOSURE_UNAVAILABLE = auto()


@dataclass(frozen=True, slots=True)
class BalanceError:
    """Capacity could not be determined. Callers must fail closed."""
    kind: BalanceErrorKind
    message: str


__all__ = (
    "BalanceSnapshot",
    "Capacity",
    "BalanceErrorKind",
    "BalanceError",
)
