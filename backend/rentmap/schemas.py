from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

Language = Literal["ka", "ru", "en"]
Currency = Literal["GEL", "USD", "EUR"]


class RawPostIn(BaseModel):
    channel: str = Field(..., min_length=1, max_length=120)
    external_id: str = Field(..., min_length=1, max_length=120)
    text: str = ""
    media: list[str] = Field(default_factory=list)
    captured_at: datetime | None = None


class SubmitPostsIn(BaseModel):
    posts: list[RawPostIn] = Field(..., min_length=1, max_length=500)
    priority: int = 0


class SubmitPostsOut(BaseModel):
    queued: int = Field(..., ge=0)


class ReparseIn(BaseModel):
    channels: list[str] = Field(..., min_length=1)
    limit: int = Field(100, ge=1, le=1000)


class ReparseOut(BaseModel):
    queued: int = Field(..., ge=0)
    # each entry is {"channel", "queued"} or {"channel", "error"}
    results: list[dict[str, Any]]


class ExtractIn(BaseModel):
    text: str


class ExtractBatchIn(BaseModel):
    texts: list[str] = Field(..., min_length=1, max_length=50)


class ExtractionOut(BaseModel):
    isRental: bool
    confidence: float = Field(..., ge=0.0, le=1.0)
    extractedData: dict[str, Any]
    language: Language
    reasoning: str | None = None
    cost: float = 0.0
    provider: str | None = None
    model: str | None = None


class GeocodeIn(BaseModel):
    address: str


class GeocodeBatchIn(BaseModel):
    addresses: list[str] = Field(..., min_length=1, max_length=50)


class ReverseGeocodeIn(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class ReverseGeocodeOut(BaseModel):
    address: str | None = None


class GeocodeOut(BaseModel):
    latitude: float
    longitude: float
    formattedAddress: str | None = None
    district: str | None = None
    confidence: float
    inBounds: bool
    provider: str | None = None


class SpendingOut(BaseModel):
    isNearLimit: bool
    isOverLimit: bool
    message: str | None = None
    spent: float
    limit: float
    percentage: float
    remaining: float
    daysRemaining: int


class MaintenanceOut(BaseModel):
    geocode_cache_purged: int
    extraction_cache_purged: int
    listings_expired: int
    posts_deleted: int


class ClustersOut(BaseModel):
    zoom: int
    total: int
    items: list[dict[str, Any]]
