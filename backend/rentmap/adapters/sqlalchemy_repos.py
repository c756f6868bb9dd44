# rentmap/adapters/sqlalchemy_repos.py
from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from .repos.caches import ExtractionCacheRepository, GeocodeCacheRepository
from .repos.listings import ListingRepository
from .repos.posts import RawPostRepository
from .repos.usage import UsageRepository


class SqlAlchemyRepos:
    """All repositories bound to one session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.posts = RawPostRepository(session)
        self.listings = ListingRepository(session)
        self.extraction_cache = ExtractionCacheRepository(session)
        self.geocode_cache = GeocodeCacheRepository(session)
        self.usage = UsageRepository(session)
