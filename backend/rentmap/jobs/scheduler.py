# rentmap/jobs/scheduler.py
from __future__ import annotations

import asyncio
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..config import settings
from ..container import Services
from ..service_layer.maintenance import run_maintenance

log = logging.getLogger(__name__)


def scheduled_channels() -> list[str]:
    return [c.strip() for c in settings.SCHED_CHANNELS.split(",") if c.strip()]


async def _run_channel_parse(services: Services) -> None:
    """
    Pull the latest posts of every configured channel into the pipeline.
    Quiet when no channels are configured.
    """
    channels = scheduled_channels()
    if not channels:
        return

    total = 0
    for channel in channels:
        try:
            posts = await services.channel_source.fetch(channel)
        except Exception:
            log.exception("fetch failed for channel %s", channel)
            continue
        total += services.pipeline.submit_posts(posts)
    log.info("scheduled parse queued %s posts from %s channels", total, len(channels))


async def _run_maintenance(services: Services) -> None:
    try:
        await run_maintenance(services.session_maker)
    except Exception:
        # already recorded as a failed JobRun
        return


def build_scheduler(services: Services) -> AsyncIOScheduler:
    sched = AsyncIOScheduler()

    # channel parse cadence
    sched.add_job(
        lambda: asyncio.create_task(_run_channel_parse(services)),
        "interval",
        minutes=settings.SCHED_PARSE_INTERVAL_MINUTES,
        id="channel_parse",
    )

    # housekeeping cadence (daily by default)
    sched.add_job(
        lambda: asyncio.create_task(_run_maintenance(services)),
        "interval",
        minutes=settings.SCHED_MAINTENANCE_INTERVAL_MINUTES,
        id="maintenance",
    )

    return sched
