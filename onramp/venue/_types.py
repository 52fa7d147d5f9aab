"""
Venue types — the settlement venue's contract as seen by settlement.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum, auto
from typing import Protocol

from kungfu import Result

# ═══════════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════════


class TransferErrorKind(Enum):
    """Why a transfer did not happen."""

    INVALID_DESTINATION = auto()
    INSUFFICIENT_UPSTREAM_BALANCE = auto()
    UPSTREAM_REJECTED = auto()
    TIMEOUT = auto()


@dataclass(frozen=True, slots=True)
class TransferError:
    """
    Transfer failure.

    Note: message is a short human-readable detail, safe to show in a
    status query. Raw upstream bodies stay in the logs.
    """

    kind: TransferErrorKind
    message: str


@dataclass(frozen=True, slots=True)
class VenueError:
    """Read-side venue failure (balance query)."""

    message: str
    cause: Exception | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# Protocols — Users Implement These
# ═══════════════════════════════════════════════════════════════════════════════


class BalanceSource(Protocol):
    """Where the operator's withdrawable balance comes from."""

    async def withdrawable(self) -> Result[Decimal, VenueError]:
        """Operator balance available for transfers."""
        ...


class TransferClient(Protocol):
    """
    Single signed transfer to the venue.

    Note: Not idempotent. Callers must not retry on their own: a retried
    transfer can credit twice.
    """

    async def transfer(
        self, destination: str, amount: Decimal
    ) -> Result[str, TransferError]:
        """Send amount to destination. Returns the transfer reference."""
        ...


__all__ = (
    "TransferErrorKind",
    "TransferError",
    "VenueError",
    "BalanceSource",
    "TransferClient",
)
