# rentmap/domain/geo.py
from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass

from .types import Bounds, GeocodeResult

EARTH_RADIUS_KM = 6371.0

TBILISI_BOUNDS = Bounds(north=41.8, south=41.6, east=44.9, west=44.7)
TBILISI_CENTER = (41.7151, 44.8271)

OTHER_DISTRICT = "Other"


@dataclass(frozen=True)
class District:
    name: str
    lat: float
    lng: float
    radius: float  # degrees
    aliases: tuple[str, ...]


DISTRICTS: tuple[District, ...] = (
    District("Vake", 41.724, 44.768, 0.02, ("vake", "ვაკე", "ваке")),
    District("Saburtalo", 41.715, 44.795, 0.025, ("saburtalo", "საბურთალო", "сабуртало")),
    District("Old Tbilisi", 41.695, 44.808, 0.015, ("old tbilisi", "ძველი თბილისი", "старый тбилиси")),
    District("Gldani", 41.715, 44.835, 0.03, ("gldani", "გლდანი", "глдани")),
    District("Isani", 41.675, 44.825, 0.025, ("isani", "ისანი", "исани")),
    District("Didube", 41.735, 44.785, 0.02, ("didube", "დიდუბე", "дидубе")),
    District("Nadzaladevi", 41.735, 44.765, 0.02, ("nadzaladevi", "ნაძალადევი", "надзаладеви")),
    District("Mtatsminda", 41.685, 44.795, 0.015, ("mtatsminda", "მთაწმინდა", "мтацминда")),
    District("Krtsanisi", 41.655, 44.815, 0.02, ("krtsanisi", "კრწანისი", "крцаниси")),
    District("Samgori", 41.695, 44.845, 0.025, ("samgori", "სამგორი", "самгори")),
)

# Geocoders answer in Georgian for a lot of Tbilisi components.
GEORGIAN_TO_ENGLISH = {
    "ვაკე": "Vake",
    "საბურთალო": "Saburtalo",
    "ძველი თბილისი": "Old Tbilisi",
    "გლდანი": "Gldani",
    "ისანი": "Isani",
    "დიდუბე": "Didube",
    "ნაძალადევი": "Nadzaladevi",
    "მთაწმინდა": "Mtatsminda",
    "კრწანისი": "Krtsanisi",
    "სამგორი": "Samgori",
}

DISTRICT_COMPONENT_KEYS = ("suburb", "neighbourhood", "district", "quarter", "sublocality")

_CITY_NAMES = ("tbilisi", "თბილისი", "тбилиси")


def normalize_address(address: str) -> str:
    return " ".join(address.strip().lower().split())


def build_query(address: str) -> str:
    """Append the city when the caller didn't name it; geocoders resolve far better that way."""
    a = address.strip()
    if any(c in a.lower() for c in _CITY_NAMES):
        return a
    return f"{a}, Tbilisi, Georgia"


def in_city_bounds(lat: float, lng: float, bounds: Bounds = TBILISI_BOUNDS) -> bool:
    return bounds.contains(lat, lng)


def find_district_in_text(text: str) -> str | None:
    t = text.lower()
    for d in DISTRICTS:
        if any(a in t for a in d.aliases):
            return d.name
    return None


def translate_district(name: str | None) -> str | None:
    if not name:
        return None
    s = name.strip()
    if s in GEORGIAN_TO_ENGLISH:
        return GEORGIAN_TO_ENGLISH[s]
    return find_district_in_text(s) or s


def district_for_point(lat: float, lng: float) -> str:
    best: tuple[float, str] | None = None
    for d in DISTRICTS:
        dist = math.hypot(lat - d.lat, lng - d.lng)
        if dist <= d.radius and (best is None or dist < best[0]):
            best = (dist, d.name)
    return best[1] if best else OTHER_DISTRICT


def district_from_components(components: dict[str, str]) -> str | None:
    for key in DISTRICT_COMPONENT_KEYS:
        v = components.get(key)
        if v:
            return translate_district(v)
    return None


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    p1 = math.radians(lat1)
    p2 = math.radians(lat2)
    dp = math.radians(lat2 - lat1)
    dl = math.radians(lng2 - lng1)
    a = math.sin(dp / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def blend_confidence(
    provider_confidence: float | None,
    *,
    formatted_address: str | None,
    location_type: str | None,
    query: str,
) -> float:
    score = provider_confidence if provider_confidence is not None else 0.5

    formatted = formatted_address or ""
    if any(ch.isdigit() for ch in formatted):
        score += 0.3  # street number resolved

    if location_type == "ROOFTOP":
        score += 0.2
    elif location_type == "RANGE_INTERPOLATED":
        score += 0.1

    haystack = f"{formatted} {query}".lower()
    if any(c in haystack for c in _CITY_NAMES):
        score += 0.2

    return max(0.0, min(1.0, score))


def mock_resolve(address: str, bounds: Bounds = TBILISI_BOUNDS) -> GeocodeResult:
    """
    Offline stand-in: known district -> its centre, otherwise the city centre.

    A small jitter derived from the address hash keeps distinct addresses from
    stacking on one point while staying deterministic.
    """
    district = find_district_in_text(address)
    if district:
        d = next(x for x in DISTRICTS if x.name == district)
        lat, lng = d.lat, d.lng
    else:
        lat, lng = TBILISI_CENTER

    digest = hashlib.sha256(normalize_address(address).encode("utf-8")).digest()
    lat += ((digest[0] / 255.0) - 0.5) * 0.008
    lng += ((digest[1] / 255.0) - 0.5) * 0.008

    return GeocodeResult(
        latitude=lat,
        longitude=lng,
        formatted_address=build_query(address),
        district=district or district_for_point(lat, lng),
        confidence=0.7,
        in_bounds=in_city_bounds(lat, lng, bounds),
        provider="mock",
    )


def mock_address(lat: float, lng: float) -> str:
    """Offline reverse lookup: a stable made-up street in the nearest district."""
    digest = hashlib.sha256(f"{lat:.5f},{lng:.5f}".encode("utf-8")).digest()
    number = digest[0] % 100 + 1
    return f"{number} {district_for_point(lat, lng)} Street, Tbilisi, Georgia"
