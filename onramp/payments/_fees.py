"""
Fees — what the card is charged for a given USDC amount.

All arithmetic is in integer cents. The user receives exactly the base
amount; the service fee is added on top, and the processor fee is charged
on the subtotal:

    base       = amount × 100
    service    = round(base × service%)
    subtotal   = base + service
    processor  = round(subtotal × processor%) + fixed
    total      = subtotal + processor

Rounding is half-up to the cent.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from kungfu import Result, Ok, Error

from onramp.payments._types import CheckoutErrorKind, QuoteError

HUNDRED = Decimal(100)


def round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


@dataclass(frozen=True, slots=True)
class FeePolicy:
    """Fee rates and checkout limits (amounts in USDC)."""

    service_fee_percent: Decimal = Decimal("0.5")
    processor_fee_percent: Decimal = Decimal("2.9")
    processor_fee_fixed_cents: int = 30
    min_amount: Decimal = Decimal(10)
    max_amount: Decimal = Decimal(2500)
    capacity_min_amount: Decimal = Decimal(5)


@dataclass(frozen=True, slots=True)
class FeeBreakdown:
    """Quoted checkout, in cents."""

    base_cents: int
    service_fee_cents: int
    processor_fee_cents: int
    total_cents: int

    @property
    def subtotal_cents(self) -> int:
        return self.base_cents + self.service_fee_cents

    @property
    def base_amount(self) -> Decimal:
        """USDC the user receives."""
        return Decimal(self.base_cents) / HUNDRED

    @property
    def service_fee(self) -> Decimal:
        return Decimal(self.service_fee_cents) / HUNDRED

    @property
    def processor_fee(self) -> Decimal:
        return Decimal(self.processor_fee_cents) / HUNDRED

    @property
    def total(self) -> Decimal:
        return Decimal(self.total_cents) / HUNDRED


def quote(amount: Decimal | int | str, policy: FeePolicy = FeePolicy()) -> Result[FeeBreakdown, QuoteError]:
    """
    Quote the card charge for ``amount`` USDC.

    Example:
        match quote(Decimal("100")):
            case Ok(b):
                b.total_cents   # 10371
    """
    if isinstance(amount, float) or isinstance(amount, bool):
        return Error(QuoteError(CheckoutErrorKind.VALIDATION, "Valid amount is required"))
    try:
        value = Decimal(amount)
    except (InvalidOperation, TypeError, ValueError):
        return Error(QuoteError(CheckoutErrorKind.VALIDATION, "Valid amount is required"))
    if not value.is_finite() or value <= 0:
        return Error(QuoteError(CheckoutErrorKind.VALIDATION, "Valid amount is required"))

    base = round_cents(value * HUNDRED)
    if base > round_cents(policy.max_amount * HUNDRED):
        return Error(QuoteError(
            CheckoutErrorKind.VALIDATION, f"Amount cannot exceed ${policy.max_amount}"
        ))
    if base < round_cents(policy.min_amount * HUNDRED):
        return Error(QuoteError(
            CheckoutErrorKind.VALIDATION, f"Amount must be at least ${policy.min_amount}"
        ))

    service = round_cents(base * policy.service_fee_percent / HUNDRED)
    subtotal = base + service
    processor = (
        round_cents(subtotal * policy.processor_fee_percent / HUNDRED)
        + policy.processor_fee_fixed_cents
    )
    return Ok(FeeBreakdown(
        base_cents=base,
        service_fee_cents=service,
        processor_fee_cents=processor,
        total_cents=subtotal + processor,
    ))


__all__ = (
    "FeePolicy",
    "FeeBreakdown",
    "quote",
    "round_cents",
)
