"""
HTTP schemas — pydantic models with domain converters.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from onramp.balance import Capacity
from onramp.ledger import TransactionStatus
from onramp.payments import FeeBreakdown, FeePolicy, OpenedCheckout, VerifiedSession


class CapacityOut(BaseModel):
    success: bool = True
    balance: Decimal
    formatted_balance: str
    pending_exposure: Decimal
    available_for_onramp: Decimal
    max_amount: Decimal
    min_amount: Decimal

    @classmethod
    def from_domain(cls, cap: Capacity, policy: FeePolicy) -> "CapacityOut":
        return cls(
            balance=cap.balance,
            formatted_balance=cap.formatted_balance,
            pending_exposure=cap.pending_exposure,
            available_for_onramp=cap.available_for_onramp,
            max_amount=min(cap.available_for_onramp, policy.max_amount),
            min_amount=policy.capacity_min_amount,
        )


class TransactionOut(BaseModel):
    session_id: str
    status: str
    destination: str
    amount: Decimal
    settlement_ref: str | None
    failure_reason: str | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, tx: TransactionStatus) -> "TransactionOut":
        return cls(
            session_id=tx.session_id,
            status=tx.status.value,
            destination=tx.destination,
            amount=tx.amount,
            settlement_ref=tx.settlement_ref,
            failure_reason=tx.failure_reason,
            created_at=tx.created_at,
            updated_at=tx.updated_at,
        )


class TransactionListOut(BaseModel):
    transactions: list[TransactionOut]
    count: int


class TotalOut(BaseModel):
    total_settled: Decimal


class CheckoutIn(BaseModel):
    amount: Decimal
    wallet_address: str


class BreakdownOut(BaseModel):
    base_amount: Decimal
    service_fee: Decimal
    processor_fee: Decimal
    total_amount: Decimal

    @classmethod
    def from_domain(cls, b: FeeBreakdown) -> "BreakdownOut":
        return cls(
            base_amount=b.base_amount,
            service_fee=b.service_fee,
            processor_fee=b.processor_fee,
            total_amount=b.total,
        )


class CheckoutOut(BaseModel):
    session_id: str
    url: str
    breakdown: BreakdownOut

    @classmethod
    def from_domain(cls, opened: OpenedCheckout) -> "CheckoutOut":
        return cls(
            session_id=opened.session.id,
            url=opened.session.url,
            breakdown=BreakdownOut.from_domain(opened.breakdown),
        )


class VerifiedSessionOut(BaseModel):
    success: bool = True
    session_id: str
    base_amount: Decimal
    service_fee: Decimal
    processor_fee: Decimal
    total_paid: Decimal
    wallet_address: str
    payment_status: str
    customer_email: str | None

    @classmethod
    def from_domain(cls, s: VerifiedSession) -> "VerifiedSessionOut":
        return cls(
            session_id=s.session_id,
            base_amount=s.base_amount,
            service_fee=s.service_fee,
            processor_fee=s.processor_fee,
            total_paid=s.total_paid,
            wallet_address=s.destination,
            payment_status=s.payment_status,
            customer_email=s.customer_email,
        )


class WebhookOut(BaseModel):
    received: bool = True
