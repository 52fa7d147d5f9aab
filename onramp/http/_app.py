"""
FastAPI application — capacity, transaction queries, checkout, session checks, webhook.
"""

from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from typing import Protocol

import fastapi
from fastapi.middleware.cors import CORSMiddleware
from kungfu import Ok, Error, Result
from loguru import logger

from onramp.http._schemas import (
    CapacityOut,
    CheckoutIn,
    CheckoutOut,
    TotalOut,
    TransactionListOut,
    TransactionOut,
    VerifiedSessionOut,
    WebhookOut,
)
from onramp.ledger import LedgerSweeper
from onramp.payments import (
    CheckoutErrorKind,
    CheckoutService,
    FeePolicy,
    PaymentCompleted,
    SessionError,
    SessionErrorKind,
    VerifiedSession,
    WebhookError,
)
from onramp.settlement import DepositOrchestrator

CHECKOUT_STATUS = {
    CheckoutErrorKind.VALIDATION: 400,
    CheckoutErrorKind.CAPACITY_UNAVAILABLE: 503,
    CheckoutErrorKind.INSUFFICIENT_CAPACITY: 409,
    CheckoutErrorKind.UPSTREAM_REJECTED: 502,
}

SESSION_STATUS = {
    SessionErrorKind.NOT_FOUND: 404,
    SessionErrorKind.NOT_PAID: 400,
    SessionErrorKind.UPSTREAM_REJECTED: 502,
}


class WebhookParser(Protocol):
    def parse_event(
        self, payload: bytes, signature: str | None
    ) -> Result[PaymentCompleted | None, WebhookError]:
        ...


class SessionVerifier(Protocol):
    async def retrieve_session(self, session_id: str) -> Result[VerifiedSession, SessionError]:
        ...


class PaymentGateway(WebhookParser, SessionVerifier, Protocol):
    """Card processor surface the HTTP layer talks to (StripePayments)."""


def create_app(
    orchestrator: DepositOrchestrator,
    checkout: CheckoutService,
    payments: PaymentGateway,
    policy: FeePolicy = FeePolicy(),
    sweeper: LedgerSweeper | None = None,
    cors_origins: Sequence[str] = (),
    on_startup: Sequence[Callable[[], Awaitable[None]]] = (),
    on_shutdown: Sequence[Callable[[], Awaitable[None]]] = (),
) -> fastapi.FastAPI:
    """
    Build the HTTP surface.

    The sweeper, when given, runs for the lifetime of the app. on_startup
    hooks run before it starts, on_shutdown hooks after it stops.
    """

    @asynccontextmanager
    async def lifespan(_: fastapi.FastAPI) -> AsyncIterator[None]:
        for hook in on_startup:
            await hook()
        if sweeper is not None:
            sweeper.start()
        try:
            yield
        finally:
            if sweeper is not None:
                await sweeper.stop()
            for hook in on_shutdown:
                await hook()

    app = fastapi.FastAPI(title="onramp", lifespan=lifespan)
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(cors_origins),
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    # ───────────────────────────────────────────────────────────────────────────
    # Queries
    # ───────────────────────────────────────────────────────────────────────────

    @app.get("/onramp/capacity", response_model=CapacityOut)
    async def capacity() -> CapacityOut:
        match await orchestrator.get_capacity():
            case Ok(cap):
                return CapacityOut.from_domain(cap, policy)
            case Error(e):
                raise fastapi.HTTPException(503, detail=f"Failed to get onramp capacity: {e.message}")

    @app.get("/onramp/transactions", response_model=TransactionListOut)
    async def transactions() -> TransactionListOut:
        match await orchestrator.get_all_transaction_statuses():
            case Ok(items):
                out = [TransactionOut.from_domain(tx) for tx in items]
                return TransactionListOut(transactions=out, count=len(out))
            case Error(e):
                raise fastapi.HTTPException(500, detail=e.message)

    @app.get("/onramp/transactions/{session_id}", response_model=TransactionOut)
    async def transaction(session_id: str) -> TransactionOut:
        match await orchestrator.get_transaction_status(session_id):
            case Ok(None):
                raise fastapi.HTTPException(404, detail="Transaction not found")
            case Ok(tx):
                return TransactionOut.from_domain(tx)
            case Error(e):
                raise fastapi.HTTPException(500, detail=e.message)

    @app.get("/onramp/total", response_model=TotalOut)
    async def total() -> TotalOut:
        match await orchestrator.get_total_settled():
            case Ok(amount):
                return TotalOut(total_settled=amount)
            case Error(e):
                raise fastapi.HTTPException(500, detail=e.message)

    # ───────────────────────────────────────────────────────────────────────────
    # Stripe
    # ───────────────────────────────────────────────────────────────────────────

    @app.post("/stripe/checkout", response_model=CheckoutOut)
    async def create_checkout(body: CheckoutIn, request: fastapi.Request) -> CheckoutOut:
        origin = request.headers.get("origin") or str(request.base_url)
        match await checkout.open(body.amount, body.wallet_address, origin):
            case Ok(opened):
                return CheckoutOut.from_domain(opened)
            case Error(e):
                raise fastapi.HTTPException(CHECKOUT_STATUS[e.kind], detail=e.message)

    @app.get("/stripe/sessions/{session_id}", response_model=VerifiedSessionOut)
    async def verify_session(session_id: str) -> VerifiedSessionOut:
        match await payments.retrieve_session(session_id):
            case Ok(session):
                return VerifiedSessionOut.from_domain(session)
            case Error(e):
                raise fastapi.HTTPException(SESSION_STATUS[e.kind], detail=e.message)

    @app.post("/stripe/webhook", response_model=WebhookOut)
    async def webhook(request: fastapi.Request) -> WebhookOut:
        payload = await request.body()
        match payments.parse_event(payload, request.headers.get("stripe-signature")):
            case Error(e):
                raise fastapi.HTTPException(400, detail=e.message)
            case Ok(None):
                return WebhookOut()
            case Ok(event):
                pass

        # Outcome is recorded in the ledger; Stripe only needs the ack
        match await orchestrator.settle(event):
            case Ok(settled):
                logger.info(f"WEBHOOK: session {settled.session_id} settled as {settled.settlement_ref}")
            case Error(failure):
                logger.warning(f"WEBHOOK: session {failure.session_id} not settled: {failure.message}")
        return WebhookOut()

    return app


__all__ = (
    "create_app",
    "WebhookParser",
    "SessionVerifier",
    "PaymentGateway",
    "CHECKOUT_STATUS",
    "SESSION_STATUS",
)
