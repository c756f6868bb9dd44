# rentmap/adapters/clients/geocoders.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from ...config import settings
from ...domain.errors import ProviderError
from ...domain.parsing import to_float
from ...domain.types import Bounds, ProviderHit
from .http_resilience import ProviderCooldown, resilient_request


class GeocodeProvider(Protocol):
    name: str
    cooldown: ProviderCooldown

    async def geocode(self, query: str, bounds: Bounds) -> ProviderHit | None: ...

    async def reverse(self, latitude: float, longitude: float) -> str | None: ...


# Google address_components "types" -> our component keys
_GOOGLE_COMPONENT_TYPES = {
    "sublocality_level_1": "sublocality",
    "sublocality": "sublocality",
    "neighborhood": "neighbourhood",
    "administrative_area_level_2": "district",
}


@dataclass
class GoogleGeocoder:
    api_key: str
    cooldown: ProviderCooldown
    url: str = "https://maps.googleapis.com/maps/api/geocode/json"
    region: str = "ge"
    timeout_s: float = 10.0
    client: httpx.AsyncClient | None = None
    name: str = "google"

    async def _results(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        try:
            resp = await resilient_request("GET", self.url, params=params, timeout_s=self.timeout_s, client=self.client)
            data: dict[str, Any] = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderError(self.name, str(e) or type(e).__name__) from e

        status = data.get("status")
        if status == "ZERO_RESULTS":
            return []
        if status != "OK":
            raise ProviderError(self.name, f"status={status} {data.get('error_message') or ''}".strip())
        return data.get("results") or []

    async def geocode(self, query: str, bounds: Bounds) -> ProviderHit | None:
        results = await self._results(
            {
                "address": query,
                "key": self.api_key,
                "region": self.region,
                "bounds": f"{bounds.south},{bounds.west}|{bounds.north},{bounds.east}",
            }
        )
        if not results:
            return None
        r = results[0]
        geometry = r.get("geometry") or {}
        loc = geometry.get("location") or {}
        lat = to_float(loc.get("lat"))
        lng = to_float(loc.get("lng"))
        if lat is None or lng is None:
            return None

        components: dict[str, str] = {}
        for comp in r.get("address_components") or []:
            for t in comp.get("types") or []:
                key = _GOOGLE_COMPONENT_TYPES.get(t)
                if key and key not in components and comp.get("long_name"):
                    components[key] = comp["long_name"]

        return ProviderHit(
            latitude=lat,
            longitude=lng,
            formatted_address=r.get("formatted_address"),
            confidence=None,
            location_type=geometry.get("location_type"),
            components=components,
        )

    async def reverse(self, latitude: float, longitude: float) -> str | None:
        results = await self._results({"latlng": f"{latitude},{longitude}", "key": self.api_key, "region": self.region})
        if not results:
            return None
        return results[0].get("formatted_address")


@dataclass
class OpenCageGeocoder:
    api_key: str
    cooldown: ProviderCooldown
    url: str = "https://api.opencagedata.com/geocode/v1/json"
    country_code: str = "ge"
    timeout_s: float = 10.0
    client: httpx.AsyncClient | None = None
    name: str = "opencage"

    async def _results(self, q: str, **extra: Any) -> list[dict[str, Any]]:
        params = {"q": q, "key": self.api_key, "limit": 1, "language": "en", "no_annotations": 1, **extra}
        try:
            resp = await resilient_request("GET", self.url, params=params, timeout_s=self.timeout_s, client=self.client)
            data: dict[str, Any] = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderError(self.name, str(e) or type(e).__name__) from e
        return data.get("results") or []

    async def geocode(self, query: str, bounds: Bounds) -> ProviderHit | None:
        results = await self._results(
            query,
            countrycode=self.country_code,
            bounds=f"{bounds.west},{bounds.south},{bounds.east},{bounds.north}",
        )
        if not results:
            return None
        r = results[0]
        geometry = r.get("geometry") or {}
        lat = to_float(geometry.get("lat"))
        lng = to_float(geometry.get("lng"))
        if lat is None or lng is None:
            return None

        # OpenCage confidence is 0..10 (10 = smallest bounding box)
        raw_conf = to_float(r.get("confidence"))
        conf = max(0.0, min(1.0, raw_conf / 10.0)) if raw_conf is not None else None

        components = {
            k: str(v)
            for k, v in (r.get("components") or {}).items()
            if isinstance(v, (str, int, float)) and not k.startswith("_")
        }

        return ProviderHit(
            latitude=lat,
            longitude=lng,
            formatted_address=r.get("formatted"),
            confidence=conf,
            location_type=None,
            components=components,
        )

    async def reverse(self, latitude: float, longitude: float) -> str | None:
        results = await self._results(f"{latitude},{longitude}")
        if not results:
            return None
        return results[0].get("formatted")


def build_geocoders_from_settings() -> list[GeocodeProvider]:
    out: list[GeocodeProvider] = []
    if settings.GOOGLE_MAPS_API_KEY:
        out.append(
            GoogleGeocoder(
                api_key=settings.GOOGLE_MAPS_API_KEY,
                url=settings.GOOGLE_GEOCODE_URL,
                cooldown=ProviderCooldown(settings.GOOGLE_MIN_INTERVAL_MS / 1000.0),
                timeout_s=settings.GEOCODE_HTTP_TIMEOUT_S,
            )
        )
    if settings.OPENCAGE_API_KEY:
        out.append(
            OpenCageGeocoder(
                api_key=settings.OPENCAGE_API_KEY,
                url=settings.OPENCAGE_GEOCODE_URL,
                cooldown=ProviderCooldown(settings.OPENCAGE_MIN_INTERVAL_MS / 1000.0),
                timeout_s=settings.GEOCODE_HTTP_TIMEOUT_S,
            )
        )
    return out
