"""
Settlement graph — routes a paid event by the state of its intent.

Architecture:
    SettlementSpec (injected)
         │
         ▼
    SpecNode
         │
         ▼
    LookupNode (find_by_session, else find_or_create)
         │
         ├── CompletedIntentNode ──┐
         ├── FailedIntentNode ─────┤
         ├── ActiveIntentNode ─────┼── SettlementRoute (@polymorphic)
         └── LedgerErrorNode ──────┘            │
                                                ▼
                                         FinalOutcomeNode

Note: no 'from __future__ import annotations' here: nodnod resolves
dependencies from runtime type hints.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from kungfu import Result, Ok, Error
from nodnod import NodeError, polymorphic, case

from onramp import graph as G
from onramp.ledger import DepositIntent, IntentStatus, Ledger, LedgerError
from onramp.payments import PaymentCompleted
from onramp.settlement._types import (
    Settled,
    SettlementFailure,
    SettlementErrorKind,
    failure_kind,
)

type Attempt = Callable[[PaymentCompleted, DepositIntent], Awaitable[Result[Settled, SettlementFailure]]]


# ═══════════════════════════════════════════════════════════════════════════════
# Input — Spec (injected)
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class SettlementSpec:
    """
    One settlement run.

    attempt carries the intent from PENDING/PROCESSING to a terminal state;
    it is only reached when the intent is still in flight.
    """

    event: PaymentCompleted
    ledger: Ledger
    attempt: Attempt


@dataclass(frozen=True)
class SettlementOutcome:
    result: Result[Settled, SettlementFailure]


# ═══════════════════════════════════════════════════════════════════════════════
# Entry & Lookup
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class SpecNode:
    def __init__(self, spec: SettlementSpec) -> None:
        self.spec = spec

    @classmethod
    def __compose__(cls, spec: SettlementSpec) -> "SpecNode":
        return cls(spec)


@G.node
class LookupNode:
    """Existing intent for the session, or a freshly created PENDING one."""

    def __init__(
        self,
        intent: DepositIntent | None,
        spec: SettlementSpec,
        ledger_error: LedgerError | None = None,
    ) -> None:
        self.intent = intent
        self.spec = spec
        self.ledger_error = ledger_error

    @classmethod
    async def __compose__(cls, spec_node: SpecNode) -> "LookupNode":
        spec = spec_node.spec
        event = spec.event

        match await spec.ledger.find_by_session(event.session_id):
            case Error(err):
                return cls(None, spec, ledger_error=err)
            case Ok(existing) if existing is not None:
                return cls(existing, spec)
            case Ok(_):
                pass

        # A concurrent creator may win here; its intent is routed like any other
        created = await spec.ledger.find_or_create(
            event.session_id, event.destination, event.amount
        )
        match created:
            case Ok((intent, _)):
                return cls(intent, spec)
            case Error(err):
                return cls(None, spec, ledger_error=err)


# ═══════════════════════════════════════════════════════════════════════════════
# State Nodes — Each validates a specific intent state
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class CompletedIntentNode:
    """Validates: intent exists and is COMPLETED."""

    def __init__(self, intent: DepositIntent, spec: SettlementSpec) -> None:
        self.intent = intent
        self.spec = spec

    @classmethod
    def __compose__(cls, lookup: LookupNode) -> "CompletedIntentNode":
        if lookup.intent is None:
            raise NodeError("No intent")
        if lookup.intent.status != IntentStatus.COMPLETED:
            raise NodeError("Not completed")
        return cls(lookup.intent, lookup.spec)


@G.node
class FailedIntentNode:
    """Validates: intent exists and is FAILED."""

    def __init__(self, intent: DepositIntent, spec: SettlementSpec) -> None:
        self.intent = intent
        self.spec = spec

    @classmethod
    def __compose__(cls, lookup: LookupNode) -> "FailedIntentNode":
        if lookup.intent is None:
            raise NodeError("No intent")
        if lookup.intent.status != IntentStatus.FAILED:
            raise NodeError("Not failed")
        return cls(lookup.intent, lookup.spec)


@G.node
class ActiveIntentNode:
    """Validates: intent exists and is PENDING or PROCESSING."""

    def __init__(self, intent: DepositIntent, spec: SettlementSpec) -> None:
        self.intent = intent
        self.spec = spec

    @classmethod
    def __compose__(cls, lookup: LookupNode) -> "ActiveIntentNode":
        if lookup.intent is None:
            raise NodeError("No intent")
        if lookup.intent.is_terminal:
            raise NodeError("Terminal")
        return cls(lookup.intent, lookup.spec)


@G.node
class LedgerErrorNode:
    """Validates: the ledger failed during lookup."""

    def __init__(self, error: LedgerError, spec: SettlementSpec) -> None:
        self.error = error
        self.spec = spec

    @classmethod
    def __compose__(cls, lookup: LookupNode) -> "LedgerErrorNode":
        if lookup.ledger_error is None:
            raise NodeError("No ledger error")
        return cls(lookup.ledger_error, lookup.spec)


# ═══════════════════════════════════════════════════════════════════════════════
# Polymorphic Route
# ═══════════════════════════════════════════════════════════════════════════════


@polymorphic[SettlementOutcome]
class SettlementRoute:
    """Exactly one case applies; state checks live in the state nodes."""

    @case
    def replay_completed(cls, node: CompletedIntentNode) -> SettlementOutcome:
        """Already credited: return the stored reference, send nothing."""
        intent = node.intent
        return SettlementOutcome(Ok(Settled(
            session_id=intent.session_id,
            intent_id=intent.id,
            destination=intent.destination,
            amount=intent.amount,
            settlement_ref=intent.settlement_ref or "",
            replayed=True,
        )))

    @case
    def replay_failed(cls, node: FailedIntentNode) -> SettlementOutcome:
        """Already failed: return the stored reason, no transfer, no refund."""
        intent = node.intent
        return SettlementOutcome(Error(SettlementFailure(
            kind=failure_kind(intent.failure_reason),
            message=intent.failure_reason or "",
            session_id=intent.session_id,
            intent_id=intent.id,
            replayed=True,
        )))

    @case
    def ledger_error(cls, node: LedgerErrorNode) -> SettlementOutcome:
        return SettlementOutcome(Error(SettlementFailure(
            kind=SettlementErrorKind.LEDGER_ERROR,
            message=node.error.message,
            session_id=node.spec.event.session_id,
        )))

    @case
    async def settle_active(cls, node: ActiveIntentNode) -> SettlementOutcome:
        return SettlementOutcome(await node.spec.attempt(node.spec.event, node.intent))


# ═══════════════════════════════════════════════════════════════════════════════
# Final Node
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class FinalOutcomeNode:
    def __init__(self, outcome: SettlementOutcome) -> None:
        self.outcome = outcome

    @classmethod
    def __compose__(cls, outcome: SettlementRoute) -> "FinalOutcomeNode":
        return cls(outcome.value)


async def run_settlement(spec: SettlementSpec) -> Result[Settled, SettlementFailure]:
    """Route one paid event through the graph."""
    final = await G.compose(FinalOutcomeNode, spec)
    return final.outcome.result


__all__ = (
    "SettlementSpec",
    "SettlementOutcome",
    "SpecNode",
    "LookupNode",
    "CompletedIntentNode",
    "FailedIntentNode",
    "ActiveIntentNode",
    "LedgerErrorNode",
    "SettlementRoute",
    "FinalOutcomeNode",
    "run_settlement",
)
