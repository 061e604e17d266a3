"""
services/admin/platform.py
Access to the single PlatformSettings row, shared by the admin router and
the sevak completion flow.
"""

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.models.models import PlatformSettings

logger = logging.getLogger(__name__)


async def load_platform_settings(db: AsyncSession) -> PlatformSettings:
    """Return the settings row, inserting one with defaults on first use."""
    row = await db.scalar(select(PlatformSettings).order_by(PlatformSettings.id).limit(1))
    if row is None:
        row = PlatformSettings(
            platform_name=settings.APP_NAME,
            commission_rate=Decimal(str(settings.PLATFORM_COMMISSION_PERCENT)),
            features={},
        )
        db.add(row)
        await db.flush()
        logger.info("Created default platform settings")
    return row


async def commission_percent(db: AsyncSession) -> float:
    """Commission rate for new earnings. Falls back to config until an admin saves settings."""
    rate = await db.scalar(select(PlatformSettings.commission_rate).order_by(PlatformSettings.id).limit(1))
    if rate is None:
        return settings.PLATFORM_COMMISSION_PERCENT
    return float(rate)
