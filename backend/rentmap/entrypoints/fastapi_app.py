# rentmap/entrypoints/fastapi_app.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine

from ..config import settings
from ..container import Services, build_services
from ..jobs.scheduler import build_scheduler
from ..logging_config import configure_logging
from ..models import Base
from .api.routers import extraction, geocoding, health, ingest, listings, realtime

log = logging.getLogger(__name__)


def create_app(
    services: Services | None = None,
    *,
    engine: AsyncEngine | None = None,
    start_pipeline: bool = True,
) -> FastAPI:
    """
    App factory. Tests hand in their own Services (in-memory DB, fake providers).
    """
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        nonlocal engine
        if services is None and engine is None:
            from ..db import engine as default_engine

            engine = default_engine
        if engine is not None:
            # Single place where DB tables are created in dev.
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        app.state.services = services or build_services()
        pipeline = app.state.services.pipeline
        if start_pipeline:
            pipeline.start()

        scheduler = None
        if settings.SCHED_ENABLED:
            scheduler = build_scheduler(app.state.services)
            scheduler.start()
            log.info("Scheduler started")

        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.shutdown(wait=False)
            if pipeline.running:
                await pipeline.stop()

    app = FastAPI(title="rentmap - Tbilisi rental aggregator", lifespan=lifespan)

    # Routers
    app.include_router(health.router)
    app.include_router(ingest.router)
    app.include_router(extraction.router)
    app.include_router(geocoding.router)
    app.include_router(listings.router)
    app.include_router(realtime.router)

    return app
