"""Background jobs: daily referral expiry."""
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.config import settings
from services.referral import ReferralService

logger = logging.getLogger(__name__)


async def expire_referrals_job(session_maker: async_sessionmaker[AsyncSession]) -> int:
    """Expire pending referrals that did not convert in time."""
    try:
        async with session_maker() as session:
            count = await ReferralService(session).expire_stale_referrals(settings.referral_expiration_days)
            logger.info(f"Referral expiry run: {count} expired")
            return count
    except Exception as e:
        logger.error(f"Referral expiry job failed: {e}", exc_info=True)
        return 0


def create_scheduler(
    session_maker: async_sessionmaker[AsyncSession],
    scheduler: Optional[AsyncIOScheduler] = None,
) -> AsyncIOScheduler:
    """Build the scheduler with its jobs registered (not started)."""
    scheduler = scheduler or AsyncIOScheduler(timezone="UTC")

    # Daily at 03:00 UTC
    scheduler.add_job(
        expire_referrals_job,
        'cron',
        hour=3,
        minute=0,
        args=[session_maker],
        id='referral_expiry',
        replace_existing=True,
    )
    return scheduler
