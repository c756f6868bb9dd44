# rentmap/domain/policies.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from .types import ExtractionResult

PUBLISH_CONFIDENCE_THRESHOLD = 0.6

STAGE_PERSIST = "persist"
STAGE_GEOCODE = "geocode"


@dataclass(frozen=True)
class Route:
    name: str
    stage: str
    when: Callable[[ExtractionResult, float], bool]


def _publishable(r: ExtractionResult, threshold: float) -> bool:
    return r.is_rental and r.confidence > threshold


def _has_address(r: ExtractionResult) -> bool:
    return bool(r.fields.address and r.fields.address.strip())


# Rows are evaluated independently; every row that fires contributes its stage.
EXTRACTION_ROUTES: tuple[Route, ...] = (
    Route("publish", STAGE_PERSIST, lambda r, t: _publishable(r, t)),
    Route("locate", STAGE_GEOCODE, lambda r, t: _publishable(r, t) and _has_address(r)),
)


def route_extraction(
    result: ExtractionResult,
    threshold: float = PUBLISH_CONFIDENCE_THRESHOLD,
) -> list[str]:
    """
    Returns the downstream stages for one extraction; [] means the post is done.
    """
    return [row.stage for row in EXTRACTION_ROUTES if row.when(result, threshold)]


def passes_length_filter(text: str | None, min_length: int) -> bool:
    return bool(text) and len(text.strip()) > min_length
