# rentmap/service_layer/subscriptions.py
from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..config import settings
from ..domain.geo import haversine_km
from ..domain.parsing import to_bool, to_float, to_int, to_str
from ..models import utcnow

MIN_RADIUS_KM = 0.1
MAX_RADIUS_KM = 50.0


@dataclass(frozen=True)
class GeoRadius:
    latitude: float
    longitude: float
    radius_km: float


@dataclass(frozen=True)
class SubscriptionFilter:
    district: str | None = None
    price_min: float | None = None
    price_max: float | None = None
    currency: str | None = None
    bedrooms_min: int | None = None
    bedrooms_max: int | None = None
    location: GeoRadius | None = None
    furnished: bool | None = None
    pets_allowed: bool | None = None
    amenities: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> "SubscriptionFilter":
        """
        Build from the client's camelCase payload. Raises ValueError on bad input.
        """
        d = d or {}
        location = None
        loc = d.get("location")
        if loc is not None:
            if not isinstance(loc, dict):
                raise ValueError("location must be an object")
            lat = to_float(loc.get("latitude"))
            lng = to_float(loc.get("longitude"))
            radius = to_float(loc.get("radiusKm"))
            if lat is None or lng is None or radius is None:
                raise ValueError("location requires latitude, longitude and radiusKm")
            if not (-90 <= lat <= 90 and -180 <= lng <= 180):
                raise ValueError("location coordinates out of range")
            if not (MIN_RADIUS_KM <= radius <= MAX_RADIUS_KM):
                raise ValueError(f"radiusKm must be between {MIN_RADIUS_KM} and {MAX_RADIUS_KM}")
            location = GeoRadius(latitude=lat, longitude=lng, radius_km=radius)

        price_min = to_float(d.get("priceMin"))
        price_max = to_float(d.get("priceMax"))
        if price_min is not None and price_max is not None and price_min > price_max:
            raise ValueError("priceMin must not exceed priceMax")

        amenities = d.get("amenities") or []
        if not isinstance(amenities, list):
            raise ValueError("amenities must be a list")

        currency = to_str(d.get("currency"))
        return cls(
            district=to_str(d.get("district")),
            price_min=price_min,
            price_max=price_max,
            currency=currency.upper() if currency else None,
            bedrooms_min=to_int(d.get("bedroomsMin")),
            bedrooms_max=to_int(d.get("bedroomsMax")),
            location=location,
            furnished=to_bool(d.get("furnished")),
            pets_allowed=to_bool(d.get("petsAllowed")),
            amenities=tuple(a for a in (to_str(x) for x in amenities) if a),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "district": self.district,
            "priceMin": self.price_min,
            "priceMax": self.price_max,
            "currency": self.currency,
            "bedroomsMin": self.bedrooms_min,
            "bedroomsMax": self.bedrooms_max,
            "furnished": self.furnished,
            "petsAllowed": self.pets_allowed,
            "amenities": list(self.amenities) or None,
            "location": (
                {
                    "latitude": self.location.latitude,
                    "longitude": self.location.longitude,
                    "radiusKm": self.location.radius_km,
                }
                if self.location
                else None
            ),
        }
        return {k: v for k, v in out.items() if v is not None}


@dataclass(frozen=True)
class Subscription:
    subscription_id: str
    connection_id: str
    filters: SubscriptionFilter
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "subscriptionId": self.subscription_id,
            "filters": self.filters.to_dict(),
            "createdAt": self.created_at.isoformat(),
        }


def _listing_price(listing: dict[str, Any]) -> float | None:
    for key in ("price", "priceMin", "priceMax"):
        v = to_float(listing.get(key))
        if v is not None:
            return v
    return None


def matches(listing: dict[str, Any], f: SubscriptionFilter) -> bool:
    """
    True when every clause the filter specifies passes. A clause whose listing
    field is missing fails. `listing` is the listing_to_dict() wire shape.
    """
    if f.district is not None:
        d = listing.get("district")
        if not d or d.casefold() != f.district.casefold():
            return False

    if f.price_min is not None or f.price_max is not None:
        price = _listing_price(listing)
        if price is None:
            return False
        if f.price_min is not None and price < f.price_min:
            return False
        if f.price_max is not None and price > f.price_max:
            return False

    if f.currency is not None:
        c = listing.get("currency")
        if not c or c.upper() != f.currency:
            return False

    if f.bedrooms_min is not None or f.bedrooms_max is not None:
        bedrooms = to_int(listing.get("bedrooms"))
        if bedrooms is None:
            return False
        if f.bedrooms_min is not None and bedrooms < f.bedrooms_min:
            return False
        if f.bedrooms_max is not None and bedrooms > f.bedrooms_max:
            return False

    if f.location is not None:
        lat = to_float(listing.get("latitude"))
        lng = to_float(listing.get("longitude"))
        if lat is None or lng is None:
            return False
        if haversine_km(f.location.latitude, f.location.longitude, lat, lng) > f.location.radius_km:
            return False

    if f.furnished is not None and listing.get("furnished") is not f.furnished:
        return False

    if f.pets_allowed is not None and listing.get("petsAllowed") is not f.pets_allowed:
        return False

    if f.amenities:
        have = {str(a).casefold() for a in (listing.get("amenities") or [])}
        if not all(a.casefold() in have for a in f.amenities):
            return False

    return True


class SubscriptionRegistry:
    """
    connection id -> {subscription id -> Subscription}, behind one coarse lock.
    Matching evaluates a snapshot taken under the lock.
    """

    def __init__(self, max_per_connection: int = 10) -> None:
        self.max_per_connection = int(max_per_connection)
        self._lock = threading.Lock()
        self._by_conn: dict[str, dict[str, Subscription]] = {}

    @classmethod
    def from_settings(cls) -> "SubscriptionRegistry":
        return cls(max_per_connection=settings.SUBSCRIPTION_MAX_PER_CONNECTION)

    def _id_taken(self, subscription_id: str) -> bool:
        return any(subscription_id in subs for subs in self._by_conn.values())

    def subscribe(
        self,
        connection_id: str,
        filters: SubscriptionFilter,
        subscription_id: str | None = None,
    ) -> str | None:
        """Returns the subscription id, or None when the connection is at its cap."""
        with self._lock:
            subs = self._by_conn.setdefault(connection_id, {})
            if len(subs) >= self.max_per_connection:
                return None
            if not subscription_id or self._id_taken(subscription_id):
                subscription_id = f"sub_{uuid.uuid4().hex[:12]}"
            subs[subscription_id] = Subscription(
                subscription_id=subscription_id,
                connection_id=connection_id,
                filters=filters,
            )
            return subscription_id

    def unsubscribe(self, connection_id: str, subscription_id: str) -> bool:
        with self._lock:
            subs = self._by_conn.get(connection_id)
            if not subs or subscription_id not in subs:
                return False
            del subs[subscription_id]
            if not subs:
                del self._by_conn[connection_id]
            return True

    def unsubscribe_all(self, connection_id: str) -> int:
        with self._lock:
            subs = self._by_conn.pop(connection_id, None)
            return len(subs) if subs else 0

    def get_subscriptions(self, connection_id: str) -> list[Subscription]:
        with self._lock:
            return list(self._by_conn.get(connection_id, {}).values())

    def _snapshot(self) -> list[tuple[str, list[Subscription]]]:
        with self._lock:
            return [(conn, list(subs.values())) for conn, subs in self._by_conn.items()]

    def matching(self, listing: dict[str, Any]) -> dict[str, list[str]]:
        out: dict[str, list[str]] = {}
        for conn, subs in self._snapshot():
            hits = [s.subscription_id for s in subs if matches(listing, s.filters)]
            if hits:
                out[conn] = hits
        return out

    def match(self, listing: dict[str, Any]) -> set[str]:
        return set(self.matching(listing))

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "connections": len(self._by_conn),
                "subscriptions": sum(len(s) for s in self._by_conn.values()),
            }
