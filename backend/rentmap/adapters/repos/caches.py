# rentmap/adapters/repos/caches.py
from __future__ import annotations

import json
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ...domain.types import ExtractedFields, ExtractionResult, GeocodeResult
from ...models import ExtractionCacheEntry, GeocodeCacheEntry, utcnow


class ExtractionCacheRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_valid(self, text_hash: str, now: datetime | None = None) -> ExtractionCacheEntry | None:
        now = now or utcnow()
        q = select(ExtractionCacheEntry).where(
            ExtractionCacheEntry.text_hash == text_hash,
            ExtractionCacheEntry.expires_at > now,
        )
        return (await self.session.execute(q)).scalars().first()

    async def touch(self, entry: ExtractionCacheEntry) -> None:
        entry.last_used_at = utcnow()
        await self.session.flush()

    async def put(self, text_hash: str, result: ExtractionResult, expires_at: datetime) -> ExtractionCacheEntry:
        """Upsert; last write wins."""
        q = select(ExtractionCacheEntry).where(ExtractionCacheEntry.text_hash == text_hash)
        entry = (await self.session.execute(q)).scalars().first()
        if entry is None:
            entry = ExtractionCacheEntry(text_hash=text_hash)
            self.session.add(entry)

        now = utcnow()
        entry.is_rental = result.is_rental
        entry.confidence = result.confidence
        entry.language = result.language
        entry.reasoning = result.reasoning
        entry.fields_json = json.dumps(result.fields.to_dict(), ensure_ascii=False)
        entry.provider = result.provider
        entry.model = result.model
        entry.cost = result.cost
        entry.created_at = now
        entry.last_used_at = now
        entry.expires_at = expires_at
        await self.session.flush()
        return entry

    async def purge_expired(self, now: datetime | None = None) -> int:
        res = await self.session.execute(delete(ExtractionCacheEntry).where(ExtractionCacheEntry.expires_at <= (now or utcnow())))
        return int(res.rowcount or 0)


def cached_extraction(entry: ExtractionCacheEntry) -> ExtractionResult:
    fields = ExtractedFields.from_dict(json.loads(entry.fields_json) if entry.fields_json else None)
    return ExtractionResult(
        is_rental=entry.is_rental,
        confidence=entry.confidence,
        fields=fields,
        language=entry.language,
        reasoning=entry.reasoning,
        cost=entry.cost,
        provider=entry.provider,
        model=entry.model,
    )


class GeocodeCacheRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, address: str) -> GeocodeCacheEntry | None:
        q = select(GeocodeCacheEntry).where(GeocodeCacheEntry.address == address)
        return (await self.session.execute(q)).scalars().first()

    async def touch(self, entry: GeocodeCacheEntry) -> None:
        entry.last_used_at = utcnow()
        await self.session.flush()

    async def put(self, address: str, result: GeocodeResult) -> GeocodeCacheEntry:
        entry = await self.get(address)
        if entry is None:
            entry = GeocodeCacheEntry(address=address)
            self.session.add(entry)

        now = utcnow()
        entry.latitude = result.latitude
        entry.longitude = result.longitude
        entry.formatted_address = result.formatted_address
        entry.district = result.district
        entry.confidence = result.confidence
        entry.provider = result.provider
        entry.created_at = now
        entry.last_used_at = now
        await self.session.flush()
        return entry

    async def purge_unused_since(self, cutoff: datetime) -> int:
        res = await self.session.execute(delete(GeocodeCacheEntry).where(GeocodeCacheEntry.last_used_at < cutoff))
        return int(res.rowcount or 0)
