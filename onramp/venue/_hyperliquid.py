"""
Hyperliquid venue client — balance query and signed usdSend transfers.

    client = HyperliquidClient(private_key, chain="Mainnet")
    match await client.transfer("0xabc...", Decimal("50")):
        case Ok(ref):
            ...
        case Error(e):
            ...
"""

from __future__ import annotations

import time
from collections.abc import Callable
from decimal import Decimal, InvalidOperation
from typing import Any, Literal

import httpx
from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import is_address, keccak, to_hex
from kungfu import Result, Ok, Error
from loguru import logger

from onramp.venue._types import TransferError, TransferErrorKind, VenueError

MAINNET_API_URL = "https://api.hyperliquid.xyz"
TESTNET_API_URL = "https://api.hyperliquid-testnet.xyz"

type Chain = Literal["Mainnet", "Testnet"]

# EIP-712 user-signed action: HyperliquidTransaction:UsdSend
USD_SEND_TYPE = "HyperliquidTransaction:UsdSend"
USD_SEND_FIELDS = [
    {"name": "hyperliquidChain", "type": "string"},
    {"name": "destination", "type": "string"},
    {"name": "amount", "type": "string"},
    {"name": "time", "type": "uint64"},
]
EIP712_DOMAIN_FIELDS = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

MAX_DETAIL = 200


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def wire_amount(amount: Decimal) -> str:
    """Plain decimal string, no exponent: Decimal("50.00") -> "50"."""
    return format(amount.normalize(), "f")


# ═══════════════════════════════════════════════════════════════════════════════
# Client
# ═══════════════════════════════════════════════════════════════════════════════


class HyperliquidClient:
    """
    Operator account on Hyperliquid.

    Implements BalanceSource and TransferClient. The httpx client carries the
    per-call timeout; pass your own ``http`` to share a pool or to test.
    """

    def __init__(
        self,
        private_key: str,
        *,
        api_url: str = MAINNET_API_URL,
        chain: Chain = "Mainnet",
        signature_chain_id: str = "0xa4b1",
        timeout: float = 10.0,
        http: httpx.AsyncClient | None = None,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self._account = Account.from_key(private_key)
        self._chain = chain
        self._signature_chain_id = signature_chain_id
        self._http = http if http is not None else httpx.AsyncClient(
            base_url=api_url, timeout=timeout
        )
        self._clock_ms = clock_ms

    @property
    def address(self) -> str:
        return self._account.address

    async def aclose(self) -> None:
        await self._http.aclose()

    # ───────────────────────────────────────────────────────────────────────────
    # Balance
    # ───────────────────────────────────────────────────────────────────────────

    async def withdrawable(self) -> Result[Decimal, VenueError]:
        try:
            response = await self._http.post(
                "/info", json={"type": "clearinghouseState", "user": self.address}
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"VENUE: balance query failed: {e!r}")
            return Error(VenueError(f"Balance query failed: {type(e).__name__}", e))
        except ValueError as e:
            return Error(VenueError("Balance response is not JSON", e))

        if not isinstance(data, dict) or "withdrawable" not in data:
            logger.error(f"VENUE: unexpected clearinghouseState payload: {data!r}")
            return Error(VenueError("Failed to get balance from venue"))

        try:
            return Ok(Decimal(str(data["withdrawable"])))
        except InvalidOperation as e:
            return Error(VenueError(f"Unparseable withdrawable: {data['withdrawable']!r}", e))

    # ───────────────────────────────────────────────────────────────────────────
    # Transfer
    # ───────────────────────────────────────────────────────────────────────────

    def _sign_usd_send(self, destination: str, amount: str, time_ms: int) -> dict[str, Any]:
        typed = {
            "domain": {
                "name": "HyperliquidSignTransaction",
                "version": "1",
                "chainId": int(self._signature_chain_id, 16),
                "verifyingContract": ZERO_ADDRESS,
            },
            "types": {
                USD_SEND_TYPE: USD_SEND_FIELDS,
                "EIP712Domain": EIP712_DOMAIN_FIELDS,
            },
            "primaryType": USD_SEND_TYPE,
            "message": {
                "hyperliquidChain": self._chain,
                "destination": destination,
                "amount": amount,
                "time": time_ms,
            },
        }
        signed = self._account.sign_message(encode_typed_data(full_message=typed))
        return {"r": to_hex(signed.r), "s": to_hex(signed.s), "v": signed.v}

    def _reference(self, destination: str, amount: str, time_ms: int) -> str:
        return to_hex(keccak(text=f"{self.address}-{destination}-{amount}-{time_ms}"))

    async def transfer(
        self, destination: str, amount: Decimal
    ) -> Result[str, TransferError]:
        if not is_address(destination):
            return Error(TransferError(
                TransferErrorKind.INVALID_DESTINATION,
                f"Invalid destination address: {destination}",
            ))

        wire = wire_amount(amount)
        time_ms = self._clock_ms()
        payload = {
            "action": {
                "type": "usdSend",
                "hyperliquidChain": self._chain,
                "signatureChainId": self._signature_chain_id,
                "destination": destination,
                "amount": wire,
                "time": time_ms,
            },
            "nonce": time_ms,
            "signature": self._sign_usd_send(destination, wire, time_ms),
        }

        logger.info(f"VENUE: sending {wire} USDC to {destination}")
        try:
            response = await self._http.post("/exchange", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            # Outcome unknown on the venue side; treated as failed.
            logger.error(f"VENUE: usdSend to {destination} timed out: {e!r}")
            return Error(TransferError(TransferErrorKind.TIMEOUT, "Transfer timed out"))
        except httpx.HTTPStatusError as e:
            logger.error(f"VENUE: usdSend rejected: {e.response.status_code} {e.response.text!r}")
            return Error(TransferError(
                TransferErrorKind.UPSTREAM_REJECTED,
                f"Venue returned HTTP {e.response.status_code}",
            ))
        except httpx.HTTPError as e:
            logger.error(f"VENUE: usdSend transport error: {e!r}")
            return Error(TransferError(
                TransferErrorKind.UPSTREAM_REJECTED, f"Transport error: {type(e).__name__}"
            ))
        except ValueError:
            return Error(TransferError(
                TransferErrorKind.UPSTREAM_REJECTED, "Venue response is not JSON"
            ))

        if isinstance(data, dict) and data.get("status") == "ok":
            ref = self._reference(destination, wire, time_ms)
            logger.info(f"VENUE: usdSend ok, ref {ref}")
            return Ok(ref)

        logger.error(f"VENUE: usdSend not ok: {data!r}")
        detail = str(data.get("response", data) if isinstance(data, dict) else data)
        kind = (
            TransferErrorKind.INSUFFICIENT_UPSTREAM_BALANCE
            if "insufficient" in detail.lower()
            else TransferErrorKind.UPSTREAM_REJECTED
        )
        return Error(TransferError(kind, detail[:MAX_DETAIL]))


__all__ = (
    "MAINNET_API_URL",
    "TESTNET_API_URL",
    "Chain",
    "wire_amount",
    "HyperliquidClient",
)
