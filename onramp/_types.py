"""
Core types for onramp.

Re-exports from kungfu + money helpers.
"""

from __future__ import annotations

from decimal import Decimal

# Re-export from kungfu
from kungfu import Result, Ok, Error, LazyCoroResult

# ═══════════════════════════════════════════════════════════════════════════════
# Money
# ═══════════════════════════════════════════════════════════════════════════════

type Amount = Decimal
"""Quantity of stablecoin units (USDC). Always a Decimal, never a float."""

CENT = Decimal("0.01")


def format_amount(value: Amount) -> str:
    """Two-decimal display form, e.g. ``Decimal("39") -> "39.00"``."""
    return str(value.quantize(CENT))


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    # Re-exports from kungfu
    "Result",
    "Ok",
    "Error",
    "LazyCoroResult",
    # Type aliases
    "Amount",
    # Money helpers
    "CENT",
    "format_amount",
)
