# rentmap/service_layer/pipeline/coordinator.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Sequence

from ...adapters.repos.posts import media_urls
from ...config import settings
from ...domain.policies import STAGE_GEOCODE, STAGE_PERSIST, passes_length_filter
from ...domain.types import RawPostIn
from ...models import JobRun
from ..jobruns import finish_job_fail, finish_job_success, start_job
from ..unit_of_work import SqlAlchemyUnitOfWork
from .queue import Job, JobQueue, RetryPolicy, StageWorkerPool
from .stages import (
    STAGE_EXTRACT,
    STAGE_SCRAPE,
    STAGES,
    ExtractPayload,
    ListingListener,
    NextJob,
    PipelineStages,
    ScrapePayload,
)

log = logging.getLogger(__name__)


def retry_policies_from_settings() -> dict[str, RetryPolicy]:
    return {
        STAGE_SCRAPE: RetryPolicy(settings.SCRAPE_MAX_ATTEMPTS, settings.SCRAPE_BACKOFF_BASE_S),
        STAGE_EXTRACT: RetryPolicy(settings.EXTRACT_MAX_ATTEMPTS, settings.EXTRACT_BACKOFF_BASE_S),
        STAGE_GEOCODE: RetryPolicy(settings.GEOCODE_MAX_ATTEMPTS, settings.GEOCODE_BACKOFF_BASE_S),
        STAGE_PERSIST: RetryPolicy(settings.PERSIST_MAX_ATTEMPTS, settings.PERSIST_BACKOFF_BASE_S, exponential=False),
    }


def concurrency_from_settings() -> dict[str, int]:
    return {
        STAGE_SCRAPE: settings.SCRAPE_CONCURRENCY,
        STAGE_EXTRACT: settings.EXTRACT_CONCURRENCY,
        STAGE_GEOCODE: settings.GEOCODE_CONCURRENCY,
        STAGE_PERSIST: settings.PERSIST_CONCURRENCY,
    }


class PipelineCoordinator:
    """
    scrape -> extract -> {geocode, persist}

    One queue and worker pool per stage. Geocode and persist for the same post
    run independently; a geocode that lands before the listing exists is a no-op.
    """

    def __init__(
        self,
        stages: PipelineStages,
        *,
        policies: dict[str, RetryPolicy] | None = None,
        concurrency: dict[str, int] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.stages = stages
        policies = policies or retry_policies_from_settings()
        concurrency = concurrency or concurrency_from_settings()

        handlers = {
            STAGE_SCRAPE: stages.scrape,
            STAGE_EXTRACT: stages.extract,
            STAGE_GEOCODE: stages.geocode,
            STAGE_PERSIST: stages.persist,
        }
        drop_hooks = {STAGE_EXTRACT: stages.extract_dropped}

        self.queues: dict[str, JobQueue] = {name: JobQueue(name) for name in STAGES}
        self.pools: dict[str, StageWorkerPool] = {
            name: StageWorkerPool(
                name,
                self.queues[name],
                self._chain(handlers[name]),
                policies[name],
                concurrency=concurrency.get(name, 1),
                on_dropped=drop_hooks.get(name),
                sleep=sleep,
            )
            for name in STAGES
        }

    def _chain(self, handler: Callable[[Job], Awaitable[list[NextJob]]]) -> Callable[[Job], Awaitable[None]]:
        async def run(job: Job) -> None:
            for nxt in await handler(job):
                self.enqueue(nxt.stage, nxt.payload, priority=job.priority)

        return run

    # -------------------------
    # Lifecycle
    # -------------------------

    def start(self) -> None:
        for pool in self.pools.values():
            pool.start()
        log.info("pipeline started (%s)", ", ".join(f"{n}x{p.concurrency}" for n, p in self.pools.items()))

    async def stop(self) -> None:
        await asyncio.gather(*(p.stop() for p in self.pools.values()))
        log.info("pipeline stopped")

    @property
    def running(self) -> bool:
        return any(p.running for p in self.pools.values())

    async def drain(self) -> None:
        """Wait until every queue is empty and no job is in flight."""
        while True:
            for q in self.queues.values():
                await q.join()
            if all(q.idle() for q in self.queues.values()):
                return

    def add_listing_listener(self, cb: ListingListener) -> None:
        self.stages.listing_listeners.append(cb)

    def stats(self) -> dict[str, Any]:
        return {name: pool.snapshot() for name, pool in self.pools.items()}

    # -------------------------
    # Submission
    # -------------------------

    def enqueue(self, stage: str, payload: Any, *, priority: int = 0) -> Job:
        job = Job(stage=stage, payload=payload, priority=priority)
        self.queues[stage].put(job)
        return job

    def submit_posts(self, posts: Iterable[RawPostIn], *, priority: int = 0) -> int:
        n = 0
        for post in posts:
            self.enqueue(STAGE_SCRAPE, ScrapePayload(post=post), priority=priority)
            n += 1
        return n

    def submit_extraction(self, raw_post_id: int, text: str, media: Sequence[str] = (), *, priority: int = 0) -> Job:
        return self.enqueue(
            STAGE_EXTRACT,
            ExtractPayload(raw_post_id=raw_post_id, text=text, media=tuple(media)),
            priority=priority,
        )

    async def reparse_unprocessed(self, channels: Sequence[str], limit: int = 100) -> dict[str, Any]:
        """
        Re-enqueue extraction for unprocessed posts, per channel. One channel
        failing is reported in its result entry and doesn't stop the others.
        """
        results: list[dict[str, Any]] = []
        total = 0

        async with SqlAlchemyUnitOfWork(self.stages.session_maker) as uow:
            jr = await start_job(uow.session, "reparse", {"channels": list(channels), "limit": limit})
            jr_id = jr.id

        for channel in channels:
            try:
                async with SqlAlchemyUnitOfWork(self.stages.session_maker) as uow:
                    posts = await uow.repos.posts.list_unprocessed(channel, limit)
                    pending = [(p.id, p.text, media_urls(p)) for p in posts]
                queued = 0
                for post_id, text, media in pending:
                    if passes_length_filter(text, self.stages.min_text_length):
                        self.submit_extraction(post_id, text, media)
                        queued += 1
                total += queued
                results.append({"channel": channel, "queued": queued})
            except Exception as e:
                log.exception("reparse failed for channel %s", channel)
                results.append({"channel": channel, "error": str(e)})

        summary = {"queued": total, "results": results}
        async with SqlAlchemyUnitOfWork(self.stages.session_maker) as uow:
            jr = await uow.session.get(JobRun, jr_id)
            failed = [r for r in results if "error" in r]
            if failed and len(failed) == len(results):
                await finish_job_fail(uow.session, jr, RuntimeError(f"all {len(failed)} channels failed"))
            else:
                await finish_job_success(uow.session, jr, summary)
        return summary
