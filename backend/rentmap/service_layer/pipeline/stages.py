# rentmap/service_layer/pipeline/stages.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...adapters.repos.listings import listing_to_dict
from ...adapters.repos.posts import media_urls
from ...domain.policies import STAGE_GEOCODE, STAGE_PERSIST, passes_length_filter, route_extraction
from ...domain.types import ExtractionResult, RawPostIn
from ..extraction import ExtractionService
from ..geocoding import GeocodeResolver
from ..unit_of_work import SqlAlchemyUnitOfWork
from .queue import Job

log = logging.getLogger(__name__)

STAGE_SCRAPE = "scrape"
STAGE_EXTRACT = "extract"
STAGES = (STAGE_SCRAPE, STAGE_EXTRACT, STAGE_GEOCODE, STAGE_PERSIST)


@dataclass(frozen=True)
class ScrapePayload:
    post: RawPostIn


@dataclass(frozen=True)
class ExtractPayload:
    raw_post_id: int
    text: str
    media: tuple[str, ...] = ()


@dataclass(frozen=True)
class GeocodePayload:
    raw_post_id: int
    address: str


@dataclass(frozen=True)
class PersistPayload:
    raw_post_id: int
    result: ExtractionResult
    description: str | None = None
    media: tuple[str, ...] = ()


@dataclass(frozen=True)
class NextJob:
    stage: str
    payload: Any


ListingListener = Callable[[dict[str, Any]], Awaitable[Any]]


class PipelineStages:
    """
    The four stage handlers. Each returns the follow-up jobs it wants enqueued;
    the coordinator owns the queues.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        extraction: ExtractionService,
        geocoder: GeocodeResolver,
        *,
        min_text_length: int = 20,
        publish_threshold: float = 0.6,
    ) -> None:
        self.session_maker = session_maker
        self.extraction = extraction
        self.geocoder = geocoder
        self.min_text_length = int(min_text_length)
        self.publish_threshold = float(publish_threshold)
        self.listing_listeners: list[ListingListener] = []

    async def mark_processed(self, raw_post_id: int) -> None:
        async with SqlAlchemyUnitOfWork(self.session_maker) as uow:
            await uow.repos.posts.mark_processed(raw_post_id)

    # -------------------------
    # Stage 1: scrape
    # -------------------------

    async def scrape(self, job: Job) -> list[NextJob]:
        post: RawPostIn = job.payload.post
        async with SqlAlchemyUnitOfWork(self.session_maker) as uow:
            row, created = await uow.repos.posts.upsert(post)
            raw_post_id, text, processed = row.id, row.text, row.processed
            media = tuple(media_urls(row))
        job.report(50)

        if not created and processed:
            log.debug("post %s/%s already processed", post.channel, post.external_id)
            return []
        if not passes_length_filter(text, self.min_text_length):
            log.debug("post %s/%s too short, skipping extraction", post.channel, post.external_id)
            return []

        job.report(100)
        return [NextJob(STAGE_EXTRACT, ExtractPayload(raw_post_id=raw_post_id, text=text, media=media))]

    # -------------------------
    # Stage 2: extract + route
    # -------------------------

    async def extract(self, job: Job) -> list[NextJob]:
        p: ExtractPayload = job.payload
        job.report(10)
        result = await self.extraction.analyze(p.text)
        job.report(70)

        stages = route_extraction(result, self.publish_threshold)
        out: list[NextJob] = []
        if STAGE_PERSIST in stages:
            out.append(
                NextJob(
                    STAGE_PERSIST,
                    PersistPayload(raw_post_id=p.raw_post_id, result=result, description=p.text, media=p.media),
                )
            )
        if STAGE_GEOCODE in stages:
            out.append(NextJob(STAGE_GEOCODE, GeocodePayload(raw_post_id=p.raw_post_id, address=result.fields.address or "")))

        if not out:
            log.info(
                "post %s not published (rental=%s confidence=%.2f)",
                p.raw_post_id,
                result.is_rental,
                result.confidence,
            )
            await self.mark_processed(p.raw_post_id)

        job.report(100)
        return out

    async def extract_dropped(self, job: Job, exc: Exception) -> None:
        await self.mark_processed(job.payload.raw_post_id)

    # -------------------------
    # Stage 3a: geocode
    # -------------------------

    async def geocode(self, job: Job) -> list[NextJob]:
        p: GeocodePayload = job.payload
        geo = await self.geocoder.resolve(p.address)
        if geo is None:
            return []
        if not geo.in_bounds:
            log.warning("geocode for post %s outside city bounds: %r -> %.5f,%.5f", p.raw_post_id, p.address, geo.latitude, geo.longitude)
            return []

        async with SqlAlchemyUnitOfWork(self.session_maker) as uow:
            listing = await uow.repos.listings.patch_location(p.raw_post_id, geo)
        if listing is None:
            # persist hasn't created it yet; enrichment is lost for this run
            log.debug("no listing for post %s yet, skipping location patch", p.raw_post_id)
        job.report(100)
        return []

    # -------------------------
    # Stage 3b: persist
    # -------------------------

    async def persist(self, job: Job) -> list[NextJob]:
        p: PersistPayload = job.payload
        async with SqlAlchemyUnitOfWork(self.session_maker) as uow:
            listing, created = await uow.repos.listings.upsert_from_extraction(
                p.raw_post_id,
                p.result,
                description=p.description,
                image_urls=list(p.media),
            )
            await uow.repos.posts.mark_processed(p.raw_post_id)
            payload = listing_to_dict(listing)
        job.report(80)

        if created:
            log.info("listing %s created from post %s", payload["id"], p.raw_post_id)
            await self._notify(payload)
        job.report(100)
        return []

    async def _notify(self, listing: dict[str, Any]) -> None:
        for cb in self.listing_listeners:
            try:
                await cb(listing)
            except Exception:
                log.exception("listing listener failed for listing %s", listing.get("id"))
