"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup — if a setting is malformed, the app fails fast with a
clear error message.

Usage:
    from order_settlement.config import get_settings
    settings = get_settings()
    print(settings.database_url)
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from order_settlement.domain.commission import AgentFeeSchedule
from order_settlement.domain.enums import AgentType, MarketplaceVariant
from order_settlement.domain.variants import VariantPolicy


class Settings(BaseSettings):
    """Central configuration for the order settlement engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database ---
    database_url: str = (
        "postgresql+asyncpg://settlement:settlement_dev"
        "@localhost:5432/order_settlement"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis (event fan-out) ---
    redis_url: str = "redis://localhost:6379/0"
    events_channel: str = "order-settlement.events"

    # --- Settlement ---
    default_currency: str = Field(default="RWF", min_length=3, max_length=3)
    grace_period_seconds: int = Field(default=300, ge=0)  # 5 minutes
    platform_commission_rate: Decimal = Field(default=Decimal("0.21"), ge=0, le=1)
    agent_max_active_orders: int = Field(default=5, ge=1)

    # --- Agent fee schedules ---
    fast_delivery_rate: Decimal = Field(default=Decimal("0.15"), ge=0, le=1)
    fast_delivery_minimum_fee: Decimal = Decimal("100")
    fast_delivery_maximum_fee: Decimal = Decimal("5000")
    pickup_delivery_rate: Decimal = Field(default=Decimal("0.10"), ge=0, le=1)
    pickup_delivery_minimum_fee: Decimal = Decimal("200")
    pickup_delivery_maximum_fee: Decimal = Decimal("8000")

    # --- Variant rules ---
    standard_agent_type: AgentType = AgentType.PICKUP_DELIVERY
    local_market_agent_type: AgentType = AgentType.FAST_DELIVERY
    grocery_agent_type: AgentType = AgentType.PICKUP_DELIVERY
    standard_agent_collects_delivery_fee: bool = False
    local_market_agent_collects_delivery_fee: bool = True
    grocery_agent_collects_delivery_fee: bool = False

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def grace_period(self) -> timedelta:
        return timedelta(seconds=self.grace_period_seconds)

    def agent_fee_schedules(self) -> dict[AgentType, AgentFeeSchedule]:
        """Fee schedule per agent type."""
        return {
            AgentType.FAST_DELIVERY: AgentFeeSchedule(
                rate=self.fast_delivery_rate,
                minimum_fee=self.fast_delivery_minimum_fee,
                maximum_fee=self.fast_delivery_maximum_fee,
            ),
            AgentType.PICKUP_DELIVERY: AgentFeeSchedule(
                rate=self.pickup_delivery_rate,
                minimum_fee=self.pickup_delivery_minimum_fee,
                maximum_fee=self.pickup_delivery_maximum_fee,
            ),
        }

    def variant_policies(self) -> dict[MarketplaceVariant, VariantPolicy]:
        """Build the per-variant policy table consumed by the engine."""
        return {
            MarketplaceVariant.STANDARD: VariantPolicy(
                variant=MarketplaceVariant.STANDARD,
                agent_type=self.standard_agent_type,
                grace_period=self.grace_period,
                agent_collects_delivery_fee=self.standard_agent_collects_delivery_fee,
            ),
            MarketplaceVariant.LOCAL_MARKET: VariantPolicy(
                variant=MarketplaceVariant.LOCAL_MARKET,
                agent_type=self.local_market_agent_type,
                grace_period=self.grace_period,
                agent_collects_delivery_fee=self.local_market_agent_collects_delivery_fee,
            ),
            MarketplaceVariant.GROCERY: VariantPolicy(
                variant=MarketplaceVariant.GROCERY,
                agent_type=self.grocery_agent_type,
                grace_period=self.grace_period,
                agent_collects_delivery_fee=self.grocery_agent_collects_delivery_fee,
            ),
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
