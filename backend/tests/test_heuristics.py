# tests/test_heuristics.py
from rentmap.domain.heuristics import detect_language, extract_price, heuristic_extract
from rentmap.domain.types import Price


RU_POST = "Сдается 2-комнатная квартира в Сабуртало, 800 лари в месяц. Есть мебель, балкон. Тел: +995 555 123 456"
EN_POST = "For rent: 3 bedroom apartment in Vake, 1200$ per month, 95 sqm, furnished, pets allowed. Chavchavadze Avenue 37"
KA_POST = "ქირავდება 1 ოთახიანი ბინა ვაკეში, 600 ლარი, 45 კვ.მ, ავეჯით"


def test_russian_rental_post():
    r = heuristic_extract(RU_POST)
    assert r.is_rental is True
    assert r.confidence == 0.7
    assert r.language == "ru"
    assert r.fields.price == Price(amount=800.0, currency="GEL")
    assert r.fields.rooms == 2
    assert r.fields.district == "Saburtalo"
    assert r.fields.furnished is True
    assert r.fields.contact_info == "+995 555 123 456"
    assert "balcony" in r.fields.amenities
    assert r.cost == 0.0


def test_english_post_usd_and_area():
    r = heuristic_extract(EN_POST)
    assert r.is_rental is True
    assert r.language == "en"
    assert r.fields.price == Price(amount=1200.0, currency="USD")
    assert r.fields.rooms == 3
    assert r.fields.area == 95.0
    assert r.fields.district == "Vake"
    assert r.fields.pets_allowed is True
    assert r.fields.address == "Chavchavadze Avenue 37"


def test_georgian_post():
    r = heuristic_extract(KA_POST)
    assert r.is_rental is True
    assert r.language == "ka"
    assert r.fields.price == Price(amount=600.0, currency="GEL")
    assert r.fields.rooms == 1
    assert r.fields.district == "Vake"


def test_non_rental_gets_low_confidence():
    r = heuristic_extract("Продается гараж в Глдани, недорого, звоните в любое время")
    assert r.is_rental is False
    assert r.confidence == 0.3


def test_negated_flags():
    r = heuristic_extract("Сдается квартира без мебели, без животных, 500 лари")
    assert r.fields.furnished is False
    assert r.fields.pets_allowed is False


def test_empty_text():
    r = heuristic_extract("   ")
    assert r.is_rental is False
    assert r.confidence == 0.0
    assert r.language == "en"


def test_deterministic():
    assert heuristic_extract(RU_POST) == heuristic_extract(RU_POST)


def test_detect_language_prefers_georgian():
    assert detect_language("ვაკე Vake Ваке") == "ka"
    assert detect_language("Ваке, Tbilisi") == "ru"
    assert detect_language("Vake") == "en"


def test_price_prefix_symbol():
    assert extract_price("apartment $950 monthly") == Price(amount=950.0, currency="USD")
    assert extract_price("1,200 EUR") == Price(amount=1200.0, currency="EUR")
    assert extract_price("no price here") is None


def test_phone_number_does_not_bleed_into_price():
    r = heuristic_extract("Сдается квартира, звоните 599 123 456 800 лари")
    assert r.fields.price == Price(amount=800.0, currency="GEL")
    assert r.fields.contact_info == "599 123 456"
    assert extract_price("+995 555 123 456 1 200 лари") == Price(amount=1200.0, currency="GEL")
