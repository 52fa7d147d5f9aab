"""
Application wiring.

Run: uvicorn onramp.main:app
"""

from collections.abc import Awaitable, Callable
from datetime import timedelta
from functools import lru_cache

import fastapi
from loguru import logger

from onramp.balance import BalanceOracle
from onramp.config import Settings, get_settings
from onramp.http import create_app
from onramp.ledger import (
    Ledger,
    LedgerSweeper,
    MemoryLedger,
    SQLAlchemyLedger,
    create_tables,
    open_database,
)
from onramp.log import setup_logging
from onramp.payments import CheckoutService, FeePolicy, StripePayments
from onramp.settlement import DepositOrchestrator
from onramp.venue import HyperliquidClient

type Hook = Callable[[], Awaitable[None]]


def fee_policy(settings: Settings) -> FeePolicy:
    c = settings.checkout
    return FeePolicy(
        service_fee_percent=c.service_fee_percent,
        processor_fee_percent=c.processor_fee_percent,
        processor_fee_fixed_cents=c.processor_fee_fixed_cents,
        min_amount=c.min_amount,
        max_amount=c.max_amount,
        capacity_min_amount=c.capacity_min_amount,
    )


def build_ledger(settings: Settings) -> tuple[Ledger, list[Hook], list[Hook]]:
    """Ledger plus its startup/shutdown hooks."""
    if not settings.database_url:
        logger.warning("ONRAMP: using in-memory ledger, intents are lost on restart")
        return MemoryLedger(), [], []

    session_factory, engine = open_database(settings.database_url)
    logger.info("ONRAMP: using SQLAlchemy ledger")

    async def startup() -> None:
        await create_tables(engine)

    return SQLAlchemyLedger(session_factory), [startup], [engine.dispose]


def build_app(settings: Settings) -> fastapi.FastAPI:
    """Wire every component from settings into a FastAPI app."""
    setup_logging(settings.log_level, json=settings.log_json)

    if not settings.venue.private_key:
        raise ValueError("ONRAMP_VENUE__PRIVATE_KEY is required")

    ledger, on_startup, on_shutdown = build_ledger(settings)
    s = settings.settlement

    venue = HyperliquidClient(
        settings.venue.private_key,
        api_url=settings.venue.api_url,
        chain=settings.venue.chain,
        signature_chain_id=settings.venue.signature_chain_id,
        timeout=settings.venue.timeout_seconds,
    )
    logger.info(f"ONRAMP: operator account {venue.address} on {settings.venue.chain}")

    policy = fee_policy(settings)
    stripe = StripePayments(
        settings.stripe.secret_key,
        settings.stripe.webhook_secret,
        timeout=settings.stripe.timeout_seconds,
        policy=policy,
        product_name=settings.checkout.product_name,
    )
    oracle = BalanceOracle(venue, ledger, ttl=timedelta(seconds=s.balance_ttl_seconds))
    orchestrator = DepositOrchestrator(
        ledger,
        oracle,
        venue,
        stripe,
        call_timeout=timedelta(seconds=s.call_timeout_seconds),
    )
    sweeper = LedgerSweeper(
        ledger,
        retention=timedelta(hours=s.retention_hours),
        stuck_after=timedelta(minutes=s.stuck_after_minutes),
        interval=timedelta(seconds=s.sweep_interval_seconds),
    )

    return create_app(
        orchestrator,
        CheckoutService(stripe, oracle, policy),
        stripe,
        policy,
        sweeper=sweeper,
        cors_origins=settings.cors_origins,
        on_startup=on_startup,
        on_shutdown=[venue.aclose, *on_shutdown],
    )


@lru_cache()
def default_app() -> fastapi.FastAPI:
    return build_app(get_settings())


def __getattr__(name: str) -> fastapi.FastAPI:
    # Built on first access so importing this module does not read the environment
    if name == "app":
        return default_app()
    raise AttributeError(name)
