# rentmap/service_layer/extraction.py
from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import replace
from datetime import timedelta
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..adapters.clients.inference import SYSTEM_PROMPT, InferenceProvider, build_user_prompt
from ..adapters.repos.caches import cached_extraction
from ..config import settings
from ..domain.errors import ProviderError, ResponseParseError
from ..domain.heuristics import heuristic_extract
from ..domain.parsing import parse_extraction_response
from ..domain.types import ExtractionResult
from ..models import utcnow
from .cost_governor import CostGovernor, count_tokens
from .unit_of_work import SqlAlchemyUnitOfWork

log = logging.getLogger(__name__)


def text_hash(text: str) -> str:
    return hashlib.sha256(text.strip().lower().encode("utf-8")).hexdigest()


class ExtractionService:
    """
    Text -> ExtractionResult via cache, paid providers (in order) and keyword heuristics.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        governor: CostGovernor,
        providers: Sequence[InferenceProvider] = (),
        *,
        cache_ttl_days: int = 30,
    ) -> None:
        self.session_maker = session_maker
        self.governor = governor
        self.providers = list(providers)
        self.cache_ttl = timedelta(days=int(cache_ttl_days))

    @classmethod
    def from_settings(
        cls,
        session_maker: async_sessionmaker[AsyncSession],
        governor: CostGovernor,
        providers: Sequence[InferenceProvider],
    ) -> "ExtractionService":
        return cls(session_maker, governor, providers, cache_ttl_days=settings.EXTRACTION_CACHE_TTL_DAYS)

    async def _cache_get(self, key: str) -> ExtractionResult | None:
        try:
            async with SqlAlchemyUnitOfWork(self.session_maker) as uow:
                entry = await uow.repos.extraction_cache.get_valid(key)
                if entry is None:
                    return None
                await uow.repos.extraction_cache.touch(entry)
                return cached_extraction(entry)
        except Exception:
            log.exception("Extraction cache read failed; treating as miss")
            return None

    async def _cache_put(self, key: str, result: ExtractionResult) -> None:
        try:
            async with SqlAlchemyUnitOfWork(self.session_maker) as uow:
                await uow.repos.extraction_cache.put(key, result, utcnow() + self.cache_ttl)
        except Exception:
            log.exception("Extraction cache write failed")

    async def _call_provider(self, provider: InferenceProvider, text: str) -> ExtractionResult:
        """
        One paid call. Usage is tracked whether or not the reply parses; a
        parse failure degrades to heuristics but keeps the cost on the result.
        """
        user_prompt = build_user_prompt(text)
        completion = await provider.complete(SYSTEM_PROMPT, user_prompt)

        input_tokens = completion.input_tokens
        if input_tokens is None:
            input_tokens = self.governor.count_messages_tokens(
                [{"role": "system", "content": SYSTEM_PROMPT}, {"role": "user", "content": user_prompt}]
            )
        output_tokens = completion.output_tokens
        if output_tokens is None:
            output_tokens = count_tokens(completion.content)

        cost = await self.governor.track_usage(
            provider.name,
            provider.model,
            input_tokens,
            output_tokens,
            request_id=completion.request_id,
            purpose="extraction",
        )

        try:
            parsed = parse_extraction_response(completion.content)
        except ResponseParseError as e:
            log.warning("Unparseable %s response, falling back to heuristics: %s", provider.name, e)
            return replace(heuristic_extract(text), cost=cost)

        return replace(parsed, cost=cost, provider=provider.name, model=provider.model)

    async def _run_providers(self, text: str) -> ExtractionResult | None:
        for provider in self.providers:
            status = await self.governor.check_spending_limits()
            if status.is_over_limit:
                log.warning("Skipping paid extraction: %s", status.message)
                return None
            if status.is_near_limit:
                log.warning("%s", status.message)

            try:
                return await self._call_provider(provider, text)
            except ProviderError as e:
                log.warning("Inference provider %s failed: %s", provider.name, e)
                continue
        return None

    async def analyze(self, text: str) -> ExtractionResult:
        if not text or not text.strip():
            return ExtractionResult.empty()

        key = text_hash(text)
        cached = await self._cache_get(key)
        if cached is not None:
            log.debug("Extraction cache hit %s", key[:12])
            return cached

        result = await self._run_providers(text)
        if result is None:
            result = heuristic_extract(text)

        await self._cache_put(key, result)
        return result

    async def batch_analyze(self, texts: Sequence[str]) -> list[ExtractionResult]:
        outcomes = await asyncio.gather(*(self.analyze(t) for t in texts), return_exceptions=True)
        out: list[ExtractionResult] = []
        for t, r in zip(texts, outcomes):
            if isinstance(r, BaseException):
                log.error("batch extraction failed for %r: %s", (t or "")[:40], r)
                out.append(ExtractionResult.empty(reasoning=f"Extraction failed: {r}"))
            else:
                out.append(r)
        return out
