"""
Stripe — checkout sessions, session verification, webhook intake, refunds.

The stripe SDK is blocking; every call runs in a worker thread under a
deadline so it never stalls the event loop.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable, Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

import stripe
from kungfu import Result, Ok, Error
from loguru import logger

from onramp.payments._fees import FeeBreakdown, FeePolicy
from onramp.payments._types import (
    PaymentCompleted,
    RefundError,
    RefundErrorKind,
    CheckoutError,
    CheckoutErrorKind,
    CheckoutSession,
    SessionError,
    SessionErrorKind,
    VerifiedSession,
    WebhookError,
    WebhookErrorKind,
)

COMPLETED_EVENT = "checkout.session.completed"


def refund_idempotency_key(capture_ref: str) -> str:
    return f"refund:{capture_ref}"


class StripePayments:
    """
    Card processor adapter. Implements RefundClient.

    Example:
        payments = StripePayments(secret_key, webhook_secret)
        match payments.parse_event(body, request.headers["stripe-signature"]):
            case Ok(PaymentCompleted() as event):
                await orchestrator.settle(event)
            case Ok(None):
                ...  # not a paid completion
            case Error(e):
                ...  # 400
    """

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        *,
        timeout: float = 15.0,
        policy: FeePolicy = FeePolicy(),
        product_name: str = "USDC Deposit",
    ) -> None:
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self._timeout = timeout
        self._policy = policy
        self._product_name = product_name

    async def _call[T](self, fn: Callable[[], T]) -> T:
        return await asyncio.wait_for(asyncio.to_thread(fn), self._timeout)

    # ───────────────────────────────────────────────────────────────────────────
    # Refunds
    # ───────────────────────────────────────────────────────────────────────────

    async def refund(self, capture_ref: str) -> Result[str, RefundError]:
        if not capture_ref:
            return Error(RefundError(RefundErrorKind.NO_CAPTURE_FOUND, "No capture reference"))

        try:
            refund = await self._call(lambda: stripe.Refund.create(
                payment_intent=capture_ref,
                api_key=self._secret_key,
                idempotency_key=refund_idempotency_key(capture_ref),
            ))
        except TimeoutError:
            logger.error(f"STRIPE: refund of {capture_ref} timed out")
            return Error(RefundError(RefundErrorKind.TIMEOUT, "Refund timed out"))
        except stripe.InvalidRequestError as e:
            if e.code == "resource_missing":
                return Error(RefundError(
                    RefundErrorKind.NO_CAPTURE_FOUND, f"No capture found: {capture_ref}"
                ))
            logger.error(f"STRIPE: refund of {capture_ref} rejected: {e.user_message or e}")
            return Error(RefundError(RefundErrorKind.UPSTREAM_REJECTED, str(e.user_message or e)))
        except stripe.StripeError as e:
            logger.error(f"STRIPE: refund of {capture_ref} failed: {e!r}")
            return Error(RefundError(RefundErrorKind.UPSTREAM_REJECTED, str(e.user_message or e)))

        logger.info(f"STRIPE: refunded {capture_ref} as {refund.id}")
        return Ok(refund.id)

    # ───────────────────────────────────────────────────────────────────────────
    # Checkout
    # ───────────────────────────────────────────────────────────────────────────

    def _line_items(self, breakdown: FeeBreakdown) -> list[dict[str, Any]]:
        policy = self._policy
        fixed = Decimal(policy.processor_fee_fixed_cents) / 100

        def item(name: str, description: str, cents: int) -> dict[str, Any]:
            return {
                "price_data": {
                    "currency": "usd",
                    "product_data": {"name": name, "description": description},
                    "unit_amount": cents,
                },
                "quantity": 1,
            }

        return [
            item(
                self._product_name,
                f"{breakdown.base_amount:.2f} USDC to your wallet",
                breakdown.base_cents,
            ),
            item(
                "Service Fee",
                f"{policy.service_fee_percent}% service fee",
                breakdown.service_fee_cents,
            ),
            item(
                "Processing Fee",
                f"Card processing fee ({policy.processor_fee_percent}% + ${fixed:.2f})",
                breakdown.processor_fee_cents,
            ),
        ]

    async def create_checkout(
        self,
        breakdown: FeeBreakdown,
        destination: str,
        success_url: str,
        cancel_url: str,
    ) -> Result[CheckoutSession, CheckoutError]:
        metadata = {
            "baseAmount": str(breakdown.base_amount),
            "walletAddress": destination,
            "serviceFeePercent": str(self._policy.service_fee_percent),
            "serviceFeeCents": str(breakdown.service_fee_cents),
            "stripeFeeCents": str(breakdown.processor_fee_cents),
            "totalAmountCents": str(breakdown.total_cents),
        }
        try:
            session = await self._call(lambda: stripe.checkout.Session.create(
                api_key=self._secret_key,
                mode="payment",
                payment_method_types=["card"],
                billing_address_collection="required",
                line_items=self._line_items(breakdown),
                custom_text={"submit": {"message": (
                    f"You will receive exactly {breakdown.base_amount:.2f} USDC. "
                    "Service and processing fees are added to your total."
                )}},
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
            ))
        except TimeoutError:
            logger.error("STRIPE: checkout session creation timed out")
            return Error(CheckoutError(
                CheckoutErrorKind.UPSTREAM_REJECTED, "Checkout creation timed out"
            ))
        except stripe.StripeError as e:
            logger.error(f"STRIPE: checkout session creation failed: {e!r}")
            return Error(CheckoutError(
                CheckoutErrorKind.UPSTREAM_REJECTED, str(e.user_message or "Failed to create checkout session")
            ))

        logger.info(f"STRIPE: checkout {session.id} opened for {breakdown.base_amount} USDC to {destination}")
        return Ok(CheckoutSession(id=session.id, url=session.url))

    # ───────────────────────────────────────────────────────────────────────────
    # Session verification
    # ───────────────────────────────────────────────────────────────────────────

    async def retrieve_session(self, session_id: str) -> Result[VerifiedSession, SessionError]:
        """Fetch a checkout session and confirm it was paid."""
        try:
            session = await self._call(lambda: stripe.checkout.Session.retrieve(
                session_id,
                api_key=self._secret_key,
                expand=["line_items", "payment_intent"],
            ))
        except TimeoutError:
            logger.error(f"STRIPE: retrieving session {session_id} timed out")
            return Error(SessionError(SessionErrorKind.UPSTREAM_REJECTED, "Session lookup timed out"))
        except stripe.InvalidRequestError as e:
            if e.code == "resource_missing":
                return Error(SessionError(SessionErrorKind.NOT_FOUND, "Session not found"))
            logger.error(f"STRIPE: retrieving session {session_id} rejected: {e.user_message or e}")
            return Error(SessionError(SessionErrorKind.UPSTREAM_REJECTED, str(e.user_message or e)))
        except stripe.StripeError as e:
            logger.error(f"STRIPE: retrieving session {session_id} failed: {e!r}")
            return Error(SessionError(SessionErrorKind.UPSTREAM_REJECTED, str(e.user_message or e)))

        status = session.get("payment_status")
        if status != "paid":
            return Error(SessionError(SessionErrorKind.NOT_PAID, f"Payment status is {status}"))
        return Ok(verified_session(session))

    # ───────────────────────────────────────────────────────────────────────────
    # Webhooks
    # ───────────────────────────────────────────────────────────────────────────

    def parse_event(
        self, payload: bytes, signature: str | None
    ) -> Result[PaymentCompleted | None, WebhookError]:
        """
        Verify and decode a webhook delivery.

        Ok(None) for anything that is not a paid checkout completion with
        usable metadata; such deliveries are acknowledged and ignored.
        """
        if not signature:
            return Error(WebhookError(WebhookErrorKind.INVALID_SIGNATURE, "Missing signature"))
        try:
            stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"STRIPE: webhook signature verification failed: {e}")
            return Error(WebhookError(
                WebhookErrorKind.INVALID_SIGNATURE, "Webhook signature verification failed"
            ))
        except ValueError as e:
            return Error(WebhookError(WebhookErrorKind.MALFORMED, f"Malformed payload: {e}"))

        try:
            event = json.loads(payload)
            event_type = event["type"]
            session = event["data"]["object"]
        except (ValueError, KeyError, TypeError) as e:
            return Error(WebhookError(WebhookErrorKind.MALFORMED, f"Malformed event: {e}"))

        if event_type != COMPLETED_EVENT:
            logger.info(f"STRIPE: ignoring event type {event_type}")
            return Ok(None)
        return Ok(completed_payment(session))


def completed_payment(session: dict[str, Any]) -> PaymentCompleted | None:
    """PaymentCompleted from a checkout session object, or None if unusable."""
    session_id = session.get("id")
    if session.get("payment_status") != "paid":
        logger.info(f"STRIPE: session {session_id} not paid ({session.get('payment_status')})")
        return None

    metadata = session.get("metadata") or {}
    destination = metadata.get("walletAddress")
    capture_ref = session.get("payment_intent")
    if isinstance(capture_ref, dict):
        capture_ref = capture_ref.get("id")
    try:
        amount = Decimal(str(metadata.get("baseAmount", "")))
    except InvalidOperation:
        amount = Decimal(0)

    if not session_id or not destination or not capture_ref or not amount.is_finite() or amount <= 0:
        logger.error(f"STRIPE: session {session_id} paid but metadata unusable: {metadata!r}")
        return None

    return PaymentCompleted(
        session_id=session_id,
        destination=destination,
        amount=amount,
        capture_ref=capture_ref,
    )


def _cents(value: Any) -> Decimal:
    try:
        return Decimal(str(value)) / 100
    except InvalidOperation:
        return Decimal(0)


def verified_session(session: Mapping[str, Any]) -> VerifiedSession:
    """VerifiedSession from a paid checkout session; missing metadata reads as zero."""
    metadata = session.get("metadata") or {}
    details = session.get("customer_details") or {}
    try:
        base_amount = Decimal(str(metadata.get("baseAmount", "0")))
    except InvalidOperation:
        base_amount = Decimal(0)
    return VerifiedSession(
        session_id=session["id"],
        base_amount=base_amount,
        service_fee=_cents(metadata.get("serviceFeeCents", "0")),
        processor_fee=_cents(metadata.get("stripeFeeCents", "0")),
        total_paid=_cents(metadata.get("totalAmountCents", "0")),
        destination=metadata.get("walletAddress", ""),
        payment_status=session["payment_status"],
        customer_email=details.get("email"),
    )


__all__ = (
    "COMPLETED_EVENT",
    "StripePayments",
    "completed_payment",
    "verified_session",
    "refund_idempotency_key",
)
