"""
Checkout — quote, capacity check, hosted session.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from eth_utils import is_address
from kungfu import Result, Ok, Error
from loguru import logger

from onramp.balance import BalanceOracle
from onramp.payments._fees import FeeBreakdown, FeePolicy, quote
from onramp.payments._types import CheckoutError, CheckoutErrorKind, CheckoutSession


class CheckoutProvider(Protocol):
    """Creates the hosted payment page."""

    async def create_checkout(
        self,
        breakdown: FeeBreakdown,
        destination: str,
        success_url: str,
        cancel_url: str,
    ) -> Result[CheckoutSession, CheckoutError]:
        ...


@dataclass(frozen=True, slots=True)
class OpenedCheckout:
    session: CheckoutSession
    breakdown: FeeBreakdown


class CheckoutService:
    """
    Opens a checkout only when the operator can cover it.

    Fails closed: if capacity cannot be determined no session is created.
    Capacity is re-checked at settlement time; this check only keeps users
    from paying for deposits that would obviously be declined.
    """

    def __init__(
        self,
        payments: CheckoutProvider,
        oracle: BalanceOracle,
        policy: FeePolicy = FeePolicy(),
    ) -> None:
        self._payments = payments
        self._oracle = oracle
        self._policy = policy

    async def open(
        self,
        amount: Decimal | int | str,
        destination: str,
        origin: str,
    ) -> Result[OpenedCheckout, CheckoutError]:
        if not destination or not is_address(destination):
            return Error(CheckoutError(
                CheckoutErrorKind.VALIDATION, "Valid wallet address is required"
            ))

        match quote(amount, self._policy):
            case Error(e):
                return Error(e)
            case Ok(breakdown):
                pass

        match await self._oracle.get_available():
            case Error(e):
                logger.error(f"CHECKOUT: capacity unknown, refusing checkout: {e.message}")
                return Error(CheckoutError(
                    CheckoutErrorKind.CAPACITY_UNAVAILABLE, "Onramp capacity is unavailable"
                ))
            case Ok(cap) if cap.available_for_onramp < breakdown.base_amount:
                logger.warning(
                    f"CHECKOUT: {breakdown.base_amount} USDC requested, "
                    f"only {cap.available_for_onramp} available"
                )
                return Error(CheckoutError(
                    CheckoutErrorKind.INSUFFICIENT_CAPACITY,
                    f"Insufficient onramp capacity. Available: {cap.available_for_onramp} USDC",
                ))
            case Ok(_):
                pass

        base = origin.rstrip("/")
        created = await self._payments.create_checkout(
            breakdown,
            destination,
            success_url=f"{base}/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base}/?canceled=true",
        )
        match created:
            case Ok(session):
                return Ok(OpenedCheckout(session=session, breakdown=breakdown))
            case Error(e):
                return Error(e)


__all__ = (
    "CheckoutProvider",
    "OpenedCheckout",
    "CheckoutService",
)
