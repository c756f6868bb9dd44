from __future__ import annotations

import asyncio
import logging

from rentmap.config import settings
from rentmap.container import build_services
from rentmap.db import engine
from rentmap.jobs.scheduler import build_scheduler
from rentmap.logging_config import configure_logging
from rentmap.models import Base


async def main() -> None:
    configure_logging(settings.LOG_LEVEL)
    log = logging.getLogger(__name__)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    services = build_services()
    services.pipeline.start()

    scheduler = build_scheduler(services)
    scheduler.start()
    log.info("Scheduler started")

    try:
        while True:
            await asyncio.sleep(3600)
    except (KeyboardInterrupt, asyncio.CancelledError):
        scheduler.shutdown()
        await services.pipeline.stop()
        log.info("Scheduler stopped")


if __name__ == "__main__":
    asyncio.run(main())
