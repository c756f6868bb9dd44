# rentmap/adapters/repos/listings.py
from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ...domain.types import Bounds, ExtractionResult, GeocodeResult, Price, PriceRange
from ...models import Listing, ListingStatus, utcnow


def _is_empty(v: Any) -> bool:
    if v is None:
        return True
    if isinstance(v, str) and not v.strip():
        return True
    if isinstance(v, (list, tuple)) and not v:
        return True
    return False


def _extracted_columns(result: ExtractionResult, description: str | None, image_urls: list[str]) -> dict[str, Any]:
    f = result.fields
    cols: dict[str, Any] = {
        "district": f.district,
        "address": f.address,
        "bedrooms": f.rooms,
        "area_sqm": f.area,
        "pets_allowed": f.pets_allowed,
        "furnished": f.furnished,
        "contact_info": f.contact_info,
        "description": description,
        "amenities_json": json.dumps(list(f.amenities)) if f.amenities else None,
        "image_urls_json": json.dumps(image_urls) if image_urls else None,
    }
    if isinstance(f.price, Price):
        cols["price"] = f.price.amount
        cols["currency"] = f.price.currency
    elif isinstance(f.price, PriceRange):
        cols["price_min"] = f.price.min
        cols["price_max"] = f.price.max
        cols["currency"] = f.price.currency
    return cols


class ListingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, listing_id: int) -> Listing | None:
        return await self.session.get(Listing, listing_id)

    async def get_by_post(self, raw_post_id: int) -> Listing | None:
        q = select(Listing).where(Listing.raw_post_id == raw_post_id)
        return (await self.session.execute(q)).scalars().first()

    def _merge(self, listing: Listing, cols: dict[str, Any], confidence: float) -> None:
        # only non-empty extracted values overwrite what we already have
        for k, v in cols.items():
            if not _is_empty(v):
                setattr(listing, k, v)
        listing.confidence = confidence
        listing.updated_at = utcnow()

    async def upsert_from_extraction(
        self,
        raw_post_id: int,
        result: ExtractionResult,
        *,
        description: str | None = None,
        image_urls: list[str] | None = None,
    ) -> tuple[Listing, bool]:
        """
        At most one Listing per RawPost. Returns (listing, created).
        """
        cols = _extracted_columns(result, description, image_urls or [])

        existing = await self.get_by_post(raw_post_id)
        if existing is not None:
            self._merge(existing, cols, result.confidence)
            await self.session.flush()
            return existing, False

        listing = Listing(
            raw_post_id=raw_post_id,
            status=ListingStatus.ACTIVE,
            currency="GEL",
            confidence=result.confidence,
        )
        for k, v in cols.items():
            if not _is_empty(v):
                setattr(listing, k, v)
        self.session.add(listing)
        try:
            await self.session.flush()
        except IntegrityError:
            # another worker created it first: resolve as update
            await self.session.rollback()
            existing = await self.get_by_post(raw_post_id)
            if existing is None:
                raise
            self._merge(existing, cols, result.confidence)
            await self.session.flush()
            return existing, False
        return listing, True

    async def patch_location(self, raw_post_id: int, geo: GeocodeResult) -> Listing | None:
        """No-op (returns None) when the listing doesn't exist yet."""
        listing = await self.get_by_post(raw_post_id)
        if listing is None:
            return None
        listing.latitude = geo.latitude
        listing.longitude = geo.longitude
        if geo.formatted_address:
            listing.address = geo.formatted_address
        if geo.district:
            listing.district = geo.district
        listing.updated_at = utcnow()
        await self.session.flush()
        return listing

    async def list_with_coordinates(self, bounds: Bounds | None = None, *, active_only: bool = True) -> list[Listing]:
        q = select(Listing).where(Listing.latitude.is_not(None), Listing.longitude.is_not(None))
        if active_only:
            q = q.where(Listing.status == ListingStatus.ACTIVE)
        if bounds is not None:
            q = q.where(
                Listing.latitude >= bounds.south,
                Listing.latitude <= bounds.north,
                Listing.longitude >= bounds.west,
                Listing.longitude <= bounds.east,
            )
        return list((await self.session.execute(q.order_by(Listing.id.asc()))).scalars().all())

    async def expire_not_updated_since(self, cutoff: datetime) -> int:
        stmt = (
            update(Listing)
            .where(Listing.status == ListingStatus.ACTIVE, Listing.updated_at < cutoff)
            .values(status=ListingStatus.EXPIRED, updated_at=utcnow())
        )
        res = await self.session.execute(stmt)
        return int(res.rowcount or 0)


def _loads_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        v = json.loads(raw)
    except ValueError:
        return []
    return [str(x) for x in v] if isinstance(v, list) else []


def listing_to_dict(listing: Listing) -> dict[str, Any]:
    """Wire shape used by the push channel and the API."""
    return {
        "id": listing.id,
        "rawPostId": listing.raw_post_id,
        "district": listing.district,
        "address": listing.address,
        "latitude": listing.latitude,
        "longitude": listing.longitude,
        "price": listing.price,
        "priceMin": listing.price_min,
        "priceMax": listing.price_max,
        "currency": listing.currency,
        "bedrooms": listing.bedrooms,
        "areaSqm": listing.area_sqm,
        "amenities": _loads_list(listing.amenities_json),
        "petsAllowed": listing.pets_allowed,
        "furnished": listing.furnished,
        "description": listing.description,
        "contactInfo": listing.contact_info,
        "imageUrls": _loads_list(listing.image_urls_json),
        "status": listing.status.value if listing.status else None,
        "confidence": listing.confidence,
        "createdAt": listing.created_at.isoformat() if listing.created_at else None,
        "updatedAt": listing.updated_at.isoformat() if listing.updated_at else None,
    }
