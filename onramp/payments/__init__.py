"""
Payments — card side of the onramp.

    from onramp import payments as P

    P.quote(Decimal("100"))                       # Result[FeeBreakdown, QuoteError]
    stripe = P.StripePayments(secret, webhook_secret)
    stripe.parse_event(body, signature)           # Result[PaymentCompleted | None, WebhookError]
    await stripe.refund("pi_123")                 # Result[str, RefundError]
    await stripe.retrieve_session("cs_123")        # Result[VerifiedSession, SessionError]
"""

from onramp.payments._types import (
    PaymentCompleted,
    RefundErrorKind,
    RefundError,
    RefundClient,
    CheckoutErrorKind,
    CheckoutError,
    QuoteError,
    CheckoutSession,
    SessionErrorKind,
    SessionError,
    VerifiedSession,
    WebhookErrorKind,
    WebhookError,
)
from onramp.payments._fees import (
    FeePolicy,
    FeeBreakdown,
    quote,
)
from onramp.payments._stripe import (
    StripePayments,
    completed_payment,
    verified_session,
    refund_idempotency_key,
)
from onramp.payments._checkout import (
    CheckoutProvider,
    OpenedCheckout,
    CheckoutService,
)

__all__ = (
    # Types
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
    # Fees
    "FeePolicy",
    "FeeBreakdown",
    "quote",
    # Stripe
    "StripePayments",
    "completed_payment",
    "verified_session",
    "refund_idempotency_key",
    # Checkout
    "CheckoutProvider",
    "OpenedCheckout",
    "CheckoutService",
)
