"""Service configuration using pydantic settings with structured sections.

Every field can be set from the environment, e.g. ``ONRAMP_VENUE__PRIVATE_KEY``
or ``ONRAMP_SETTLEMENT__BALANCE_TTL_SECONDS``.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class VenueSettings(BaseModel):
    api_url: str = "https://api.hyperliquid.xyz"
    chain: Literal["Mainnet", "Testnet"] = "Mainnet"
    signature_chain_id: str = "0xa4b1"
    private_key: str = ""
    timeout_seconds: float = Field(default=10.0, gt=0)


class StripeSettings(BaseModel):
    secret_key: str = ""
    webhook_secret: str = ""
    timeout_seconds: float = Field(default=15.0, gt=0)


class SettlementSettings(BaseModel):
    balance_ttl_seconds: float = Field(default=30.0, gt=0)
    retention_hours: float = Field(default=24.0, gt=0)
    stuck_after_minutes: float = Field(default=15.0, gt=0)
    sweep_interval_seconds: float = Field(default=300.0, gt=0)
    call_timeout_seconds: float = Field(default=20.0, gt=0)


class CheckoutSettings(BaseModel):
    service_fee_percent: Decimal = Decimal("0.5")
    processor_fee_percent: Decimal = Decimal("2.9")
    processor_fee_fixed_cents: int = 30
    min_amount: Decimal = Decimal(10)
    max_amount: Decimal = Decimal(2500)
    capacity_min_amount: Decimal = Decimal(5)
    product_name: str = "USDC Deposit"


class Settings(BaseSettings):
    """Top-level onramp settings with nested sections."""

    model_config = SettingsConfigDict(
        env_prefix="ONRAMP_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    venue: VenueSettings = VenueSettings()
    stripe: StripeSettings = StripeSettings()
    settlement: SettlementSettings = SettlementSettings()
    checkout: CheckoutSettings = CheckoutSettings()

    # Unset: in-memory ledger, lost on restart
    database_url: str | None = None

    cors_origins: list[str] = []
    log_level: str = "INFO"
    log_json: bool = False


@lru_cache()
def get_settings() -> Settings:
    return Settings()
