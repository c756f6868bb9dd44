# rentmap/service_layer/clustering.py
from __future__ import annotations

import logging
import math
import statistics
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence, Union

from ..config import settings
from ..domain.types import Bounds
from ..models import Listing

log = logging.getLogger(__name__)

POINT_ZOOM = 15
DENSE_ZOOM = 12
MERGE_ZOOM = 10
MAX_CLUSTER_DISTRICTS = 5


@dataclass(frozen=True)
class MapListing:
    """The slice of a Listing the map needs."""
    id: int
    latitude: float | None
    longitude: float | None
    price: float | None = None
    price_min: float | None = None
    price_max: float | None = None
    currency: str = "GEL"
    bedrooms: int | None = None
    district: str | None = None

    @classmethod
    def from_model(cls, listing: Listing) -> "MapListing":
        return cls(
            id=listing.id,
            latitude=listing.latitude,
            longitude=listing.longitude,
            price=listing.price,
            price_min=listing.price_min,
            price_max=listing.price_max,
            currency=listing.currency or "GEL",
            bedrooms=listing.bedrooms,
            district=listing.district,
        )

    def resolved_price(self) -> float | None:
        if self.price is not None:
            return self.price
        if self.price_min is not None and self.price_max is not None:
            return (self.price_min + self.price_max) / 2.0
        return self.price_min if self.price_min is not None else self.price_max


@dataclass(frozen=True)
class MapPoint:
    listing: MapListing

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "point",
            "id": self.listing.id,
            "latitude": self.listing.latitude,
            "longitude": self.listing.longitude,
            "price": self.listing.resolved_price(),
            "currency": self.listing.currency,
            "bedrooms": self.listing.bedrooms,
            "district": self.listing.district,
        }


@dataclass
class MapCluster:
    id: str
    latitude: float
    longitude: float
    count: int
    bounds: Bounds
    avg_price: float | None
    median_price: float | None
    price_range: tuple[float, float] | None
    districts: list[str]
    bedrooms: dict[str, int]
    members: list[MapListing] = field(default_factory=list, repr=False)

    @property
    def listing_ids(self) -> list[int]:
        return [m.id for m in self.members]

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "cluster",
            "id": self.id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "count": self.count,
            "bounds": {
                "north": self.bounds.north,
                "south": self.bounds.south,
                "east": self.bounds.east,
                "west": self.bounds.west,
            },
            "avgPrice": self.avg_price,
            "medianPrice": self.median_price,
            "priceRange": {"min": self.price_range[0], "max": self.price_range[1]} if self.price_range else None,
            "districts": self.districts,
            "bedrooms": self.bedrooms,
            "listingIds": self.listing_ids,
        }


ClusterResult = Union[MapPoint, MapCluster]


def _build_cluster(cluster_id: str, members: Sequence[MapListing]) -> MapCluster:
    lats = [m.latitude for m in members]
    lngs = [m.longitude for m in members]

    prices = [p for p in (m.resolved_price() for m in members) if p is not None]

    districts: list[str] = []
    for m in members:
        if m.district and m.district not in districts:
            districts.append(m.district)
            if len(districts) >= MAX_CLUSTER_DISTRICTS:
                break

    bedrooms: dict[str, int] = {}
    for m in members:
        if m.bedrooms is not None:
            key = f"{m.bedrooms}br"
            bedrooms[key] = bedrooms.get(key, 0) + 1

    return MapCluster(
        id=cluster_id,
        latitude=sum(lats) / len(lats),
        longitude=sum(lngs) / len(lngs),
        count=len(members),
        bounds=Bounds(north=max(lats), south=min(lats), east=max(lngs), west=min(lngs)),
        avg_price=(sum(prices) / len(prices)) if prices else None,
        median_price=statistics.median(prices) if prices else None,
        price_range=(min(prices), max(prices)) if prices else None,
        districts=districts,
        bedrooms=bedrooms,
        members=list(members),
    )


def _merge_clusters(group: Sequence[MapCluster]) -> MapCluster:
    total = sum(c.count for c in group)
    members = [m for c in group for m in c.members]
    merged = _build_cluster(group[0].id, members)
    # count-weighted centroid of the parts
    merged.latitude = sum(c.latitude * c.count for c in group) / total
    merged.longitude = sum(c.longitude * c.count for c in group) / total
    return merged


class ClusteringEngine:
    def __init__(
        self,
        *,
        base_grid_size: float = 0.5,
        merge_multiplier: float = 1.5,
        cache_ttl_s: float = 60.0,
        cache_max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.base_grid_size = float(base_grid_size)
        self.merge_multiplier = float(merge_multiplier)
        self.cache_ttl_s = float(cache_ttl_s)
        self.cache_max_entries = int(cache_max_entries)
        self._clock = clock
        self._lock = threading.Lock()
        # insertion-ordered: first key is the oldest
        self._cache: dict[tuple, tuple[float, list[ClusterResult]]] = {}

    @classmethod
    def from_settings(cls) -> "ClusteringEngine":
        return cls(
            base_grid_size=settings.CLUSTER_BASE_GRID_SIZE,
            merge_multiplier=settings.CLUSTER_MERGE_MULTIPLIER,
            cache_ttl_s=settings.CLUSTER_CACHE_TTL_S,
            cache_max_entries=settings.CLUSTER_CACHE_MAX_ENTRIES,
        )

    def grid_size(self, zoom: int) -> float:
        return self.base_grid_size / (2**zoom)

    @staticmethod
    def min_cluster_size(zoom: int) -> int:
        return 2 if zoom < DENSE_ZOOM else 4

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def cache_size(self) -> int:
        with self._lock:
            return len(self._cache)

    def _cache_get(self, key: tuple) -> list[ClusterResult] | None:
        with self._lock:
            hit = self._cache.get(key)
            if hit is None:
                return None
            stored_at, value = hit
            if self._clock() - stored_at > self.cache_ttl_s:
                del self._cache[key]
                return None
            return value

    def _cache_put(self, key: tuple, value: list[ClusterResult]) -> None:
        with self._lock:
            self._cache.pop(key, None)
            while len(self._cache) >= self.cache_max_entries:
                self._cache.pop(next(iter(self._cache)))
            self._cache[key] = (self._clock(), value)

    def cluster(self, listings: Sequence[MapListing], zoom: int, bounds: Bounds) -> list[ClusterResult]:
        key = (len(listings), int(zoom), bounds.key())
        cached = self._cache_get(key)
        if cached is not None:
            return cached

        result = self._compute(listings, int(zoom), bounds)
        self._cache_put(key, result)
        return result

    def _compute(self, listings: Sequence[MapListing], zoom: int, bounds: Bounds) -> list[ClusterResult]:
        visible = [
            m
            for m in listings
            if m.latitude is not None and m.longitude is not None and bounds.contains(m.latitude, m.longitude)
        ]

        if zoom >= POINT_ZOOM:
            return [MapPoint(m) for m in visible]

        size = self.grid_size(zoom)
        cells: dict[tuple[int, int], list[MapListing]] = {}
        for m in visible:
            cell = (math.floor(m.longitude / size), math.floor(m.latitude / size))
            cells.setdefault(cell, []).append(m)

        min_size = self.min_cluster_size(zoom)
        clusters: list[MapCluster] = []
        points: list[MapPoint] = []
        for (cx, cy), members in cells.items():
            if len(members) >= min_size:
                clusters.append(_build_cluster(f"cluster_{zoom}_{cx}_{cy}", members))
            else:
                points.extend(MapPoint(m) for m in members)

        if zoom < MERGE_ZOOM:
            clusters = self._merge_nearby(clusters, size * self.merge_multiplier)

        log.debug("zoom=%s: %s clusters, %s points from %s listings", zoom, len(clusters), len(points), len(visible))
        return [*clusters, *points]

    @staticmethod
    def _merge_nearby(clusters: list[MapCluster], threshold: float) -> list[MapCluster]:
        """Single sweep; a cluster absorbed into another is not examined again."""
        consumed: set[int] = set()
        out: list[MapCluster] = []
        for i, c in enumerate(clusters):
            if i in consumed:
                continue
            group = [c]
            for j in range(i + 1, len(clusters)):
                if j in consumed:
                    continue
                other = clusters[j]
                if math.hypot(c.latitude - other.latitude, c.longitude - other.longitude) < threshold:
                    group.append(other)
                    consumed.add(j)
            out.append(_merge_clusters(group) if len(group) > 1 else c)
        return out
