"""
onramp — card checkout in, stablecoin credit out.

    from onramp import ledger as Lg, balance as B, settlement as St

    ledger = Lg.MemoryLedger()
    oracle = B.BalanceOracle(venue, ledger)
    orchestrator = St.DepositOrchestrator(ledger, oracle, venue, refunds)

    match await orchestrator.settle(event):
        case Ok(settled):
            ...
        case Error(failure):
            ...

Submodules:
    ledger      — deposit intents, state machine, retention sweeps
    venue       — operator balance and signed transfers (Hyperliquid)
    balance     — cached balance minus in-flight exposure
    payments    — fees, Stripe checkout, webhooks, refunds
    settlement  — idempotent settlement with compensating refund
    http        — FastAPI surface
"""

from onramp._types import (
    Result,
    Ok,
    Error,
    LazyCoroResult,
    Amount,
    format_amount,
)
from onramp import lift
from onramp import graph
from onramp import ledger
from onramp import venue
from onramp import balance
from onramp import payments
from onramp import settlement

__all__ = (
    # Types
    "Result",
    "Ok",
    "Error",
    "LazyCoroResult",
    "Amount",
    "format_amount",
    # Modules
    "lift",
    "graph",
    "ledger",
    "venue",
    "balance",
    "payments",
    "settlement",
)
