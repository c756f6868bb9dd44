# scripts/smoke_pipeline.py
"""
Push the fixture channel through the whole pipeline against the local DB.

    CHANNELS=tbilisi_rentals python scripts/smoke_pipeline.py   (from backend/)
"""
import asyncio
import os

from rentmap.container import build_services
from rentmap.db import engine
from rentmap.logging_config import configure_logging
from rentmap.models import Base


async def main() -> None:
    configure_logging()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    services = build_services()

    async def _print(listing: dict) -> None:
        print("NEW LISTING:", listing["id"], listing["district"], listing["price"], listing["currency"])

    services.pipeline.add_listing_listener(_print)
    services.pipeline.start()

    for channel in os.environ.get("CHANNELS", "tbilisi_rentals").split(","):
        posts = await services.channel_source.fetch(channel.strip())
        print(f"{channel}: {services.pipeline.submit_posts(posts)} posts queued")

    await services.pipeline.drain()
    print(services.pipeline.stats())
    print(await services.governor.current_month_spending())
    await services.pipeline.stop()


if __name__ == "__main__":
    asyncio.run(main())
