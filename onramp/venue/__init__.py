"""
Venue — the off-chain settlement venue holding the operator's USDC.

    from onramp import venue as V

    client = V.HyperliquidClient(private_key)
    await client.withdrawable()          # Result[Decimal, VenueError]
    await client.transfer(dest, amount)  # Result[str, TransferError]
"""

from onramp.venue._types import (
    TransferErrorKind,
    TransferError,
    VenueError,
    BalanceSource,
    TransferClient,
)
from onramp.venue._hyperliquid import (
    MAINNET_API_URL,
    TESTNET_API_URL,
    HyperliquidClient,
    wire_amount,
)

__all__ = (
    "TransferErrorKind",
    "TransferError",
    "VenueError",
    "BalanceSource",
    "TransferClient",
    "MAINNET_API_URL",
    "TESTNET_API_URL",
    "HyperliquidClient",
    "wire_amount",
)
