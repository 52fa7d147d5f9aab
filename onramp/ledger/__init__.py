"""
Ledger — the registry of deposit intents.

    from onramp import ledger as Lg

    ledger = Lg.MemoryLedger()
    match await ledger.find_or_create("cs_123", "0xabc...", Decimal("50")):
        case Ok((intent, created)):
            ...

Lifecycle:

    PENDING ──► PROCESSING ──┬──► COMPLETED   (settlement_ref set)
        │                    └──► FAILED      (failure_reason set)
        └───────────────────────► FAILED

Terminal intents are purged after a retention window by LedgerSweeper;
in-flight intents are never purged. The settled total is a separate
running sum that purges never lower.
"""

from onramp.ledger._types import (
    IntentStatus,
    IN_FLIGHT,
    TERMINAL,
    TRANSITIONS,
    in_flight,
    DepositIntent,
    TransactionStatus,
    LedgerError,
    LedgerErrorKind,
)
from onramp.ledger._store import (
    Ledger,
    MemoryLedger,
    StatusPredicate,
)
from onramp.ledger._sqlalchemy import (
    DepositIntentTable,
    LedgerTotalTable,
    SQLAlchemyLedger,
    open_database,
    create_tables,
    create_database,
)
from onramp.ledger._sweep import (
    purge_expired,
    find_stuck,
    SweepReport,
    LedgerSweeper,
)

__all__ = (
    # Types
    "IntentStatus",
    "IN_FLIGHT",
    "TERMINAL",
    "TRANSITIONS",
    "in_flight",
    "DepositIntent",
    "TransactionStatus",
    "LedgerError",
    "LedgerErrorKind",
    # Store
    "Ledger",
    "MemoryLedger",
    "StatusPredicate",
    # SQLAlchemy
    "DepositIntentTable",
    "LedgerTotalTable",
    "SQLAlchemyLedger",
    "open_database",
    "create_tables",
    "create_database",
    # Sweeps
    "purge_expired",
    "find_stuck",
    "SweepReport",
    "LedgerSweeper",
)
