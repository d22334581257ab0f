"""Commission settings: the admin-managed platform rates read at checkout."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from order_settlement.domain.commission import validate_rate
from order_settlement.domain.exceptions import UnauthorizedError, ValidationError
from order_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from order_settlement.domain.actor import Actor
    from order_settlement.domain.enums import MarketplaceVariant
    from order_settlement.infrastructure.database.orm_models import CommissionSetting
    from order_settlement.infrastructure.database.unit_of_work import UnitOfWork

logger = get_logger(__name__)

PLATFORM_COMMISSION_KEY = "platform_commission"


def platform_key(variant: MarketplaceVariant) -> str:
    return f"{PLATFORM_COMMISSION_KEY}:{variant.value}"


class CommissionSettingsService:
    def __init__(self, uow: UnitOfWork, default_platform_rate: Decimal) -> None:
        self._uow = uow
        self._default_platform_rate = default_platform_rate

    async def platform_rate(self, variant: MarketplaceVariant) -> Decimal:
        """Rate to capture on new order lines: variant key, then global key, then config."""
        for key in (platform_key(variant), PLATFORM_COMMISSION_KEY):
            rate = await self._uow.commission_settings.get_rate(key)
            if rate is not None:
                return rate
        return Decimal(str(self._default_platform_rate))

    async def set_rate(self, key: str, rate: Decimal, actor: Actor) -> CommissionSetting:
        """Create or replace a rate. Orders already priced keep their captured rate."""
        if not actor.is_admin:
            raise UnauthorizedError(actor.role.value, "change commission settings")
        key = (key or "").strip()
        if not key or len(key) > 64:
            raise ValidationError("Commission setting key must be 1-64 characters", field="key")
        rate = validate_rate(rate)

        setting = await self._uow.commission_settings.upsert(key, rate, actor.id)
        logger.info("commission.rate_set", key=key, rate=str(rate), admin=actor.id)
        return setting
