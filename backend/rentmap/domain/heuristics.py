# rentmap/domain/heuristics.py
"""
Deterministic extractor used when no paid provider is available or usable.

Same input always yields the same ExtractionResult, so the pipeline keeps
producing (low-confidence) records with no network or budget.
"""
from __future__ import annotations

import re

from .geo import find_district_in_text
from .types import ExtractedFields, ExtractionResult, Price

_GEORGIAN_RE = re.compile(r"[Ⴀ-ჿ]")
_CYRILLIC_RE = re.compile(r"[Ѐ-ӿ]")

RENTAL_KEYWORDS = (
    # ru
    "сдается",
    "сдаётся",
    "сдаю",
    "сдам",
    "аренда",
    # en
    "for rent",
    "rent",
    "rental",
    # ka
    "გასაქირავებელია",
    "ქირავდება",
    "ქირით",
)

_CURRENCY_BY_TOKEN = {
    "лари": "GEL",
    "лар": "GEL",
    "ლარი": "GEL",
    "gel": "GEL",
    "₾": "GEL",
    "dollar": "USD",
    "dollars": "USD",
    "usd": "USD",
    "$": "USD",
    "долл": "USD",
    "eur": "EUR",
    "euro": "EUR",
    "евро": "EUR",
    "€": "EUR",
}

_PRICE_AFTER_RE = re.compile(
    r"(?<![\d.,])(\d{1,3}(?:[ ,]\d{3})+|\d+)\s*(лари|лар|ლარი|gel|₾|dollars?|usd|\$|долл|euro|eur|евро|€)",
    re.IGNORECASE,
)
_PRICE_BEFORE_RE = re.compile(r"(\$|€|₾)\s*(\d{1,3}(?:[ ,]\d{3})+(?!\d)|\d+)")
_ROOMS_RE = re.compile(r"(\d+)[\s-]*(комн|ком|bedroom|room|br\b|ოთახ)", re.IGNORECASE)
_AREA_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*(кв\.?\s*м|кв|sqm|sq\.?\s*m|м2|м²|m2|m²|კვ)", re.IGNORECASE)
_PHONE_RE = re.compile(r"\+?995[\s-]?\d{3}[\s-]?\d{3}[\s-]?\d{3}|\b5\d{2}[\s-]?\d{3}[\s-]?\d{3}\b")
_ADDRESS_RES = (
    re.compile(r"((?:ул\.|улица|пр\.|проспект)\s*[А-ЯЁа-яё][\w\-]*(?:\s+\d+[а-я]?)?)", re.IGNORECASE),
    re.compile(r"([A-Z][a-z]+(?:\s[A-Z][a-z]+)?\s(?:Street|Avenue|Ave|St)\b\.?(?:\s*\d+)?)"),
    re.compile(r"([ა-ჰ]+\s(?:ქ\.|ქუჩა)\s*\d*)"),
)

_FURNISHED_NEG = ("без мебел", "unfurnished", "ავეჯის გარეშე")
_FURNISHED_POS = ("мебел", "furnished", "ავეჯ")
_PETS_NEG = ("без животных", "no pets", "ცხოველების გარეშე")
_PETS_POS = ("животн", "pets", "ცხოველ")

AMENITY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "parking": ("парковк", "parking", "პარკინგ"),
    "balcony": ("балкон", "balcony", "აივან"),
    "wifi": ("wi-fi", "wifi", "интернет", "internet", "ინტერნეტ"),
    "air_conditioning": ("кондиционер", "air condition", "კონდიციონერ"),
    "elevator": ("лифт", "elevator", "ლიფტ"),
    "washing_machine": ("стиральн", "washing machine", "სარეცხი მანქანა"),
}


def detect_language(text: str) -> str:
    if _GEORGIAN_RE.search(text):
        return "ka"
    if _CYRILLIC_RE.search(text):
        return "ru"
    return "en"


def looks_like_rental(text: str) -> bool:
    t = text.lower()
    return any(k in t for k in RENTAL_KEYWORDS)


def _to_amount(raw: str) -> float:
    return float(raw.replace(" ", "").replace(",", ""))


def extract_price(text: str) -> Price | None:
    # phone digits must not run into a following amount
    text = _PHONE_RE.sub(lambda m: " " * len(m.group(0)), text)
    m = _PRICE_AFTER_RE.search(text)
    if m:
        currency = _CURRENCY_BY_TOKEN.get(m.group(2).lower(), "GEL")
        return Price(amount=_to_amount(m.group(1)), currency=currency)
    m = _PRICE_BEFORE_RE.search(text)
    if m:
        return Price(amount=_to_amount(m.group(2)), currency=_CURRENCY_BY_TOKEN[m.group(1)])
    return None


def _flag(text_l: str, negative: tuple[str, ...], positive: tuple[str, ...]) -> bool | None:
    if any(k in text_l for k in negative):
        return False
    if any(k in text_l for k in positive):
        return True
    return None


def heuristic_extract(text: str) -> ExtractionResult:
    if not text or not text.strip():
        return ExtractionResult.empty()

    t = text.strip()
    t_l = t.lower()
    is_rental = looks_like_rental(t)

    rooms = None
    m = _ROOMS_RE.search(t)
    if m:
        rooms = int(m.group(1))

    area = None
    m = _AREA_RE.search(t)
    if m:
        area = float(m.group(1).replace(",", "."))

    contact = None
    m = _PHONE_RE.search(t)
    if m:
        contact = m.group(0).strip()

    address = None
    for rx in _ADDRESS_RES:
        m = rx.search(t)
        if m:
            address = m.group(1).strip()
            break

    amenities = tuple(name for name, keys in AMENITY_KEYWORDS.items() if any(k in t_l for k in keys))

    fields = ExtractedFields(
        price=extract_price(t),
        rooms=rooms,
        area=area,
        district=find_district_in_text(t),
        address=address,
        contact_info=contact,
        amenities=amenities,
        pets_allowed=_flag(t_l, _PETS_NEG, _PETS_POS),
        furnished=_flag(t_l, _FURNISHED_NEG, _FURNISHED_POS),
    )

    return ExtractionResult(
        is_rental=is_rental,
        confidence=0.7 if is_rental else 0.3,
        fields=fields,
        language=detect_language(t),
        reasoning="Keyword heuristics (no AI provider available)",
        cost=0.0,
        provider="heuristic",
        model=None,
    )
