# rentmap/service_layer/maintenance.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import settings
from ..models import utcnow
from .jobruns import finish_job_fail, finish_job_success, start_job
from .unit_of_work import SqlAlchemyUnitOfWork

log = logging.getLogger(__name__)


async def run_maintenance(
    session_maker: async_sessionmaker[AsyncSession],
    *,
    now: datetime | None = None,
    geocode_cache_max_age_days: int | None = None,
    listing_inactive_days: int | None = None,
    processed_post_retention_days: int | None = None,
) -> dict[str, Any]:
    """
    Housekeeping sweep, recorded as a JobRun:
      - geocode cache entries unused for N days
      - expired extraction cache rows
      - ACTIVE listings not updated for N days -> EXPIRED
      - processed posts older than N days that never became a listing
    """
    now = now or utcnow()
    geo_days = settings.GEOCODE_CACHE_MAX_AGE_DAYS if geocode_cache_max_age_days is None else geocode_cache_max_age_days
    listing_days = settings.LISTING_INACTIVE_DAYS if listing_inactive_days is None else listing_inactive_days
    post_days = (
        settings.PROCESSED_POST_RETENTION_DAYS if processed_post_retention_days is None else processed_post_retention_days
    )

    meta = {
        "geocode_cache_max_age_days": geo_days,
        "listing_inactive_days": listing_days,
        "processed_post_retention_days": post_days,
    }
    try:
        async with SqlAlchemyUnitOfWork(session_maker) as uow:
            jr = await start_job(uow.session, "maintenance", meta)
            summary = {
                "geocode_cache_purged": await uow.repos.geocode_cache.purge_unused_since(now - timedelta(days=geo_days)),
                "extraction_cache_purged": await uow.repos.extraction_cache.purge_expired(now),
                "listings_expired": await uow.repos.listings.expire_not_updated_since(now - timedelta(days=listing_days)),
                "posts_deleted": await uow.repos.posts.delete_processed_before(now - timedelta(days=post_days)),
            }
            await finish_job_success(uow.session, jr, summary)
    except Exception as e:
        log.exception("maintenance sweep failed")
        async with SqlAlchemyUnitOfWork(session_maker) as uow:
            jr = await start_job(uow.session, "maintenance", meta)
            await finish_job_fail(uow.session, jr, e)
        raise

    log.info("maintenance: %s", summary)
    return summary
