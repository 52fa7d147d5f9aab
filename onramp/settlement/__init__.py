"""
Settlement — paid checkout in, one stablecoin credit out.

    from onramp import settlement as St

    orchestrator = St.DepositOrchestrator(ledger, oracle, venue, stripe)
    await orchestrator.settle(event)   # Result[Settled, SettlementFailure]

Guarantees:
    - at most one transfer per checkout session, however often the event
      is delivered
    - no transfer when headroom cannot be verified
    - a failed transfer after a capture triggers exactly one refund;
      a failed refund is reported, never hidden
"""

from onramp.settlement._types import (
    Settled,
    SettlementErrorKind,
    SettlementFailure,
    RefundAttempt,
    RefundFailed,
    failure_kind,
)
from onramp.settlement._locks import SessionLocks
from onramp.settlement._saga import (
    Compensation,
    SagaError,
    SagaResult,
    SagaStep,
    run_chain,
    step,
)
from onramp.settlement._graph import (
    SettlementSpec,
    SettlementRoute,
    run_settlement,
)
from onramp.settlement._orchestrator import (
    DepositOrchestrator,
    refund_attempt,
)

__all__ = (
    # Types
    "Settled",
    "SettlementErrorKind",
    "SettlementFailure",
    "RefundAttempt",
    "RefundFailed",
    "failure_kind",
    # Locks
    "SessionLocks",
    # Saga
    "Compensation",
    "SagaError",
    "SagaResult",
    "SagaStep",
    "run_chain",
    "step",
    # Graph
    "SettlementSpec",
    "SettlementRoute",
    "run_settlement",
    # Orchestrator
    "DepositOrchestrator",
    "refund_attempt",
)
