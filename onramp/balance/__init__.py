"""
Balance — operator capacity for new deposits.

    from onramp import balance as B

    oracle = B.BalanceOracle(venue, ledger)
    await oracle.get_available()   # Result[Capacity, BalanceError]
    await oracle.invalidate()      # after a successful transfer
"""

from onramp.balance._types import (
    BalanceSnapshot,
    Capacity,
    BalanceErrorKind,
    BalanceError,
)
from onramp.balance._tier import TtlTier
from onramp.balance._oracle import BalanceOracle

__all__ = (
    "BalanceSnapshot",
    "Capacity",
    "BalanceErrorKind",
    "BalanceError",
    "TtlTier",
    "BalanceOracle",
)
