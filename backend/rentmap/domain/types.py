# rentmap/domain/types.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


LANGUAGES = ("ka", "ru", "en")
CURRENCIES = ("GEL", "USD", "EUR")


@dataclass(frozen=True)
class Price:
    amount: float
    currency: str = "GEL"


@dataclass(frozen=True)
class PriceRange:
    min: float
    max: float
    currency: str = "GEL"


@dataclass(frozen=True)
class ExtractedFields:
    price: Price | PriceRange | None = None
    rooms: int | None = None
    area: float | None = None
    district: str | None = None
    address: str | None = None
    contact_info: str | None = None
    amenities: tuple[str, ...] = ()
    pets_allowed: bool | None = None
    furnished: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        price: dict[str, Any] | None = None
        if isinstance(self.price, Price):
            price = {"amount": self.price.amount, "currency": self.price.currency}
        elif isinstance(self.price, PriceRange):
            price = {"min": self.price.min, "max": self.price.max, "currency": self.price.currency}
        return {
            "price": price,
            "rooms": self.rooms,
            "area": self.area,
            "district": self.district,
            "address": self.address,
            "contactInfo": self.contact_info,
            "amenities": list(self.amenities),
            "petsAllowed": self.pets_allowed,
            "furnished": self.furnished,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> "ExtractedFields":
        if not d:
            return cls()
        price: Price | PriceRange | None = None
        p = d.get("price")
        if isinstance(p, dict):
            currency = p.get("currency") or "GEL"
            if p.get("amount") is not None:
                price = Price(amount=float(p["amount"]), currency=currency)
            elif p.get("min") is not None and p.get("max") is not None:
                price = PriceRange(min=float(p["min"]), max=float(p["max"]), currency=currency)
        return cls(
            price=price,
            rooms=d.get("rooms"),
            area=d.get("area"),
            district=d.get("district"),
            address=d.get("address"),
            contact_info=d.get("contactInfo"),
            amenities=tuple(d.get("amenities") or ()),
            pets_allowed=d.get("petsAllowed"),
            furnished=d.get("furnished"),
        )


@dataclass(frozen=True)
class ExtractionResult:
    is_rental: bool
    confidence: float
    fields: ExtractedFields
    language: str = "en"
    reasoning: str | None = None
    cost: float = 0.0
    provider: str | None = None
    model: str | None = None

    @classmethod
    def empty(cls, reasoning: str = "Empty or invalid text") -> "ExtractionResult":
        return cls(is_rental=False, confidence=0.0, fields=ExtractedFields(), language="en", reasoning=reasoning)

    def to_dict(self) -> dict[str, Any]:
        return {
            "isRental": self.is_rental,
            "confidence": self.confidence,
            "extractedData": self.fields.to_dict(),
            "language": self.language,
            "reasoning": self.reasoning,
            "cost": self.cost,
            "provider": self.provider,
            "model": self.model,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "ExtractionResult":
        return cls(
            is_rental=bool(d.get("isRental")),
            confidence=float(d.get("confidence") or 0.0),
            fields=ExtractedFields.from_dict(d.get("extractedData")),
            language=d.get("language") or "en",
            reasoning=d.get("reasoning"),
            cost=float(d.get("cost") or 0.0),
            provider=d.get("provider"),
            model=d.get("model"),
        )


@dataclass(frozen=True)
class Bounds:
    north: float
    south: float
    east: float
    west: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lng <= self.east

    def key(self) -> tuple[float, float, float, float]:
        return (self.north, self.south, self.east, self.west)


@dataclass(frozen=True)
class GeocodeResult:
    latitude: float
    longitude: float
    formatted_address: str | None
    district: str | None
    confidence: float
    in_bounds: bool
    provider: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "formattedAddress": self.formatted_address,
            "district": self.district,
            "confidence": self.confidence,
            "inBounds": self.in_bounds,
            "provider": self.provider,
        }


@dataclass(frozen=True)
class ProviderHit:
    """Raw geocoder answer before blending/district resolution."""
    latitude: float
    longitude: float
    formatted_address: str | None = None
    confidence: float | None = None  # already scaled to 0..1
    location_type: str | None = None  # ROOFTOP | RANGE_INTERPOLATED | ...
    components: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SpendingStatus:
    is_near_limit: bool
    is_over_limit: bool
    message: str | None = None
    spent: float = 0.0
    limit: float = 0.0


@dataclass(frozen=True)
class CostCalculation:
    cost: float
    input_cost: float
    output_cost: float


@dataclass(frozen=True)
class Completion:
    """What an inference provider returns for one chat call."""
    content: str
    input_tokens: int | None = None
    output_tokens: int | None = None
    request_id: str | None = None


@dataclass(frozen=True)
class RawPostIn:
    channel: str
    external_id: str
    text: str
    media: tuple[str, ...] = ()
    captured_at: datetime | None = None
