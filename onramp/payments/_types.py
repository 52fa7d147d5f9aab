"""
Payment types — inbound events, refunds, checkout, session checks.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum, auto
from typing import Protocol

from kungfu import Result

# ═══════════════════════════════════════════════════════════════════════════════
# Inbound Event
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class PaymentCompleted:
    """
    A card payment the processor confirmed as captured.

    capture_ref identifies the captured charge (a PaymentIntent id) and is
    what a refund is issued against.
    """

    session_id: str
    destination: str
    amount: Decimal
    capture_ref: str


# ═══════════════════════════════════════════════════════════════════════════════
# Refunds
# ═══════════════════════════════════════════════════════════════════════════════


class RefundErrorKind(Enum):
    """Refund error kinds."""
    NO_CAPTURE_FOUND = auto()
    UPSTREAM_REJECTED = auto()
    TIMEOUT = auto()


@dataclass(frozen=True, slots=True)
class RefundError:
    """Refund was not issued."""
    kind: RefundErrorKind
    message: str


class RefundClient(Protocol):
    """
    Reverses a captured card payment in full.

    Note: Called at most once per failed settlement. Implementations should
    still pass an idempotency key upstream.
    """

    async def refund(self, capture_ref: str) -> Result[str, RefundError]:
        """Refund the capture. Returns the refund reference."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Checkout
# ═══════════════════════════════════════════════════════════════════════════════


class CheckoutErrorKind(Enum):
    """Checkout / quote error kinds."""
    VALIDATION = auto()
    CAPACITY_UNAVAILABLE = auto()
    INSUFFICIENT_CAPACITY = auto()
    UPSTREAM_REJECTED = auto()


@dataclass(frozen=True, slots=True)
class CheckoutError:
    """Checkout session was not opened."""
    kind: CheckoutErrorKind
    message: str


QuoteError = CheckoutError


@dataclass(frozen=True, slots=True)
class CheckoutSession:
    """Hosted checkout page the user is redirected to."""
    id: str
    url: str


# ═══════════════════════════════════════════════════════════════════════════════
# Webhooks
# ═══════════════════════════════════════════════════════════════════════════════


class WebhookErrorKind(Enum):
    """Webhook error kinds."""
    INVALID_SIGNATURE = auto()
    MALFORMED = auto()


@dataclass(frozen=True, slots=True)
class WebhookError:
    """Webhook payload rejected before any settlement."""
    kind: WebhookErrorKind
    message: str


__all__ = (
    "PaymentCompleted",
    "RefundErrorKind",
    "RefundError",
    "RefundClient",
    "CheckoutErrorKind",
    "CheckoutError",
    "QuoteError",
    "CheckoutSession",
    "SessionErrorKind",
    "SessionError",
    "VerifiedSession",
    "WebhookErrorKind",
    "WebhookError",
)
