# rentmap/service_layer/geocoding.py
from __future__ import annotations

import logging
import math
from typing import Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..adapters.clients.geocoders import GeocodeProvider
from ..config import settings
from ..domain.errors import ProviderError
from ..domain.geo import (
    OTHER_DISTRICT,
    blend_confidence,
    build_query,
    district_for_point,
    district_from_components,
    in_city_bounds,
    mock_address,
    mock_resolve,
    normalize_address,
)
from ..domain.types import Bounds, GeocodeResult, ProviderHit
from ..models import GeocodeCacheEntry
from .unit_of_work import SqlAlchemyUnitOfWork

log = logging.getLogger(__name__)

CACHE_HIT_DEFAULT_CONFIDENCE = 0.9


class GeocodeResolver:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        providers: Sequence[GeocodeProvider] = (),
        *,
        bounds: Bounds,
    ) -> None:
        self.session_maker = session_maker
        self.providers = list(providers)
        self.bounds = bounds

    @classmethod
    def from_settings(
        cls,
        session_maker: async_sessionmaker[AsyncSession],
        providers: Sequence[GeocodeProvider],
    ) -> "GeocodeResolver":
        bounds = Bounds(
            north=settings.CITY_NORTH,
            south=settings.CITY_SOUTH,
            east=settings.CITY_EAST,
            west=settings.CITY_WEST,
        )
        return cls(session_maker, providers, bounds=bounds)

    def _from_cache(self, entry: GeocodeCacheEntry) -> GeocodeResult:
        district = district_for_point(entry.latitude, entry.longitude)
        if district == OTHER_DISTRICT and entry.district:
            district = entry.district
        return GeocodeResult(
            latitude=entry.latitude,
            longitude=entry.longitude,
            formatted_address=entry.formatted_address,
            district=district,
            confidence=entry.confidence if entry.confidence is not None else CACHE_HIT_DEFAULT_CONFIDENCE,
            in_bounds=in_city_bounds(entry.latitude, entry.longitude, self.bounds),
            provider="cache",
        )

    def _from_hit(self, provider: str, hit: ProviderHit, query: str) -> GeocodeResult:
        district = district_from_components(hit.components) or district_for_point(hit.latitude, hit.longitude)
        return GeocodeResult(
            latitude=hit.latitude,
            longitude=hit.longitude,
            formatted_address=hit.formatted_address,
            district=district,
            confidence=blend_confidence(
                hit.confidence,
                formatted_address=hit.formatted_address,
                location_type=hit.location_type,
                query=query,
            ),
            in_bounds=in_city_bounds(hit.latitude, hit.longitude, self.bounds),
            provider=provider,
        )

    async def _lookup_cache(self, key: str) -> GeocodeResult | None:
        try:
            async with SqlAlchemyUnitOfWork(self.session_maker) as uow:
                entry = await uow.repos.geocode_cache.get(key)
                if entry is None:
                    return None
                await uow.repos.geocode_cache.touch(entry)
                return self._from_cache(entry)
        except Exception:
            log.exception("Geocode cache read failed; treating as miss")
            return None

    async def _cache_put(self, key: str, result: GeocodeResult) -> None:
        # a concurrent miss may insert first; the retry then updates (last write wins)
        for attempt in (1, 2):
            try:
                async with SqlAlchemyUnitOfWork(self.session_maker) as uow:
                    await uow.repos.geocode_cache.put(key, result)
                return
            except IntegrityError:
                if attempt == 2:
                    log.exception("Geocode cache write for %r lost twice", key)
            except Exception:
                log.exception("Geocode cache write failed")
                return

    async def _try_providers(self, query: str) -> GeocodeResult | None:
        for provider in self.providers:
            await provider.cooldown.wait()
            try:
                hit = await provider.geocode(query, self.bounds)
            except ProviderError as e:
                log.warning("Geocoder %s failed for %r: %s", provider.name, query, e)
                continue
            if hit is None:
                log.info("Geocoder %s returned no result for %r", provider.name, query)
                continue
            return self._from_hit(provider.name, hit, query)
        return None

    async def resolve(self, address: str | None) -> GeocodeResult | None:
        if not address or not address.strip():
            return None

        key = normalize_address(address)
        cached = await self._lookup_cache(key)
        if cached is not None:
            return cached

        query = build_query(address)
        result = await self._try_providers(query)
        if result is None:
            # offline stand-in; never cached so real providers get another chance
            return mock_resolve(address, self.bounds)

        await self._cache_put(key, result)
        return result

    async def reverse(self, latitude: float, longitude: float) -> str | None:
        """
        Coordinates -> formatted address through the same provider chain.

        None when providers answered but none had an address; the offline
        stand-in is used only when every provider failed or none is configured.
        """
        if not (math.isfinite(latitude) and math.isfinite(longitude)):
            raise ValueError("coordinates must be finite")
        if not (-90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0):
            raise ValueError("coordinates out of range")

        answered = False
        for provider in self.providers:
            await provider.cooldown.wait()
            try:
                address = await provider.reverse(latitude, longitude)
            except ProviderError as e:
                log.warning("Reverse geocode via %s failed for %s,%s: %s", provider.name, latitude, longitude, e)
                continue
            answered = True
            if address:
                return address
        if answered:
            return None
        return mock_address(latitude, longitude)

    async def batch_resolve(self, addresses: Sequence[str]) -> list[GeocodeResult | None]:
        out: list[GeocodeResult | None] = []
        for a in addresses:
            try:
                out.append(await self.resolve(a))
            except Exception as e:
                log.error("batch geocode failed for %r: %s", a, e)
                out.append(None)
        return out
