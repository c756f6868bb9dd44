# rentmap/domain/parsing.py
from __future__ import annotations

import json
import math
from typing import Any

from .errors import ResponseParseError
from .types import CURRENCIES, LANGUAGES, ExtractedFields, ExtractionResult, Price, PriceRange


def to_int(x: Any) -> int | None:
    if x is None or x == "" or isinstance(x, bool):
        return None
    try:
        return int(float(x))
    except Exception:
        return None


def to_float(x: Any) -> float | None:
    if x is None or x == "" or isinstance(x, bool):
        return None
    try:
        return float(x)
    except Exception:
        return None


def to_bool(x: Any) -> bool | None:
    if isinstance(x, bool):
        return x
    if isinstance(x, str):
        s = x.strip().lower()
        if s in ("true", "yes", "1"):
            return True
        if s in ("false", "no", "0"):
            return False
    return None


def to_str(x: Any) -> str | None:
    if x is None:
        return None
    s = str(x).strip()
    return s or None


def get_first(payload: dict[str, Any], *keys: str) -> Any:
    """Return first non-empty key from payload."""
    for k in keys:
        v = payload.get(k)
        if v is None:
            continue
        if isinstance(v, str) and not v.strip():
            continue
        return v
    return None


def clamp01(x: float) -> float:
    return max(0.0, min(1.0, x))


def extract_json_object(content: str) -> dict[str, Any]:
    """
    Pull the first balanced {...} block out of a model reply.

    Models like to wrap JSON in prose or ``` fences; braces inside string
    literals are skipped so descriptions containing "{" don't break the scan.
    """
    start = content.find("{")
    if start < 0:
        raise ResponseParseError("no JSON object in response")

    depth = 0
    in_str = False
    escaped = False
    for i in range(start, len(content)):
        ch = content[i]
        if in_str:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                try:
                    obj = json.loads(content[start : i + 1])
                except ValueError as e:
                    raise ResponseParseError(f"invalid JSON: {e}") from e
                if not isinstance(obj, dict):
                    raise ResponseParseError("JSON root is not an object")
                return obj

    raise ResponseParseError("unbalanced JSON object in response")


def _parse_price(raw: Any) -> Price | PriceRange | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        amount = to_float(raw)
        return Price(amount=amount) if amount is not None else None

    currency = str(raw.get("currency") or "GEL").strip().upper()
    if currency not in CURRENCIES:
        currency = "GEL"

    amount = to_float(raw.get("amount"))
    if amount is not None:
        return Price(amount=amount, currency=currency)

    lo = to_float(raw.get("min"))
    hi = to_float(raw.get("max"))
    if lo is not None and hi is not None:
        if lo > hi:
            lo, hi = hi, lo
        return PriceRange(min=lo, max=hi, currency=currency)
    if lo is not None or hi is not None:
        return Price(amount=lo if lo is not None else hi, currency=currency)
    return None


def parse_extracted_fields(raw: Any) -> ExtractedFields:
    if raw is None:
        return ExtractedFields()
    if not isinstance(raw, dict):
        raise ResponseParseError("extractedData is not an object")

    amenities_raw = raw.get("amenities") or []
    if not isinstance(amenities_raw, list):
        raise ResponseParseError("amenities is not a list")

    return ExtractedFields(
        price=_parse_price(raw.get("price")),
        rooms=to_int(get_first(raw, "rooms", "bedrooms")),
        area=to_float(raw.get("area")),
        district=to_str(raw.get("district")),
        address=to_str(raw.get("address")),
        contact_info=to_str(get_first(raw, "contactInfo", "contact_info", "phone")),
        amenities=tuple(s for s in (to_str(a) for a in amenities_raw) if s),
        pets_allowed=to_bool(get_first(raw, "petsAllowed", "pets_allowed")),
        furnished=to_bool(raw.get("furnished")),
    )


def parse_extraction_response(content: str) -> ExtractionResult:
    """
    Validate a provider reply into an ExtractionResult (cost/provenance left at defaults).

    Raises ResponseParseError on anything the pipeline can't trust.
    """
    obj = extract_json_object(content)

    is_rental = to_bool(obj.get("isRental"))
    if is_rental is None:
        raise ResponseParseError("isRental missing or not a boolean")

    confidence = to_float(obj.get("confidence"))
    if confidence is None or not math.isfinite(confidence):
        raise ResponseParseError("confidence missing or not a finite number")

    language = str(obj.get("language") or "en").strip().lower()
    if language not in LANGUAGES:
        language = "en"

    return ExtractionResult(
        is_rental=is_rental,
        confidence=clamp01(confidence),
        fields=parse_extracted_fields(obj.get("extractedData")),
        language=language,
        reasoning=to_str(obj.get("reasoning")),
    )
