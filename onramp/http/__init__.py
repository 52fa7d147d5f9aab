"""
HTTP — FastAPI surface over settlement and checkout.

    app = create_app(orchestrator, checkout, stripe, policy, sweeper)
"""

from onramp.http._app import (
    create_app,
    WebhookParser,
    SessionVerifier,
    PaymentGateway,
    CHECKOUT_STATUS,
    SESSION_STATUS,
)
from onramp.http._schemas import (
    CapacityOut,
    TransactionOut,
    TransactionListOut,
    TotalOut,
    CheckoutIn,
    CheckoutOut,
    BreakdownOut,
    VerifiedSessionOut,
    WebhookOut,
)

__all__ = (
    "create_app",
    "WebhookParser",
    "SessionVerifier",
    "PaymentGateway",
    "CHECKOUT_STATUS",
    "SESSION_STATUS",
    "CapacityOut",
    "TransactionOut",
    "TransactionListOut",
    "TotalOut",
    "CheckoutIn",
    "CheckoutOut",
    "BreakdownOut",
    "VerifiedSessionOut",
    "WebhookOut",
)
