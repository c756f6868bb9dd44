# tests/test_parsing.py
import pytest

from rentmap.domain.errors import ResponseParseError
from rentmap.domain.parsing import extract_json_object, parse_extraction_response
from rentmap.domain.types import Price, PriceRange


def test_extract_json_from_fenced_prose():
    content = 'Sure!\n```json\n{"isRental": true, "confidence": 0.8}\n```\nAnything else?'
    assert extract_json_object(content) == {"isRental": True, "confidence": 0.8}


def test_extract_json_ignores_braces_inside_strings():
    content = 'x {"reasoning": "has a } brace and {", "n": {"a": 1}} trailing {"b": 2}'
    obj = extract_json_object(content)
    assert obj["reasoning"] == "has a } brace and {"
    assert obj["n"] == {"a": 1}
    assert "b" not in obj


@pytest.mark.parametrize("content", ["no json here", '{"unbalanced": 1', "{not: valid}"])
def test_extract_json_failures(content):
    with pytest.raises(ResponseParseError):
        extract_json_object(content)


def test_parse_clamps_confidence_and_defaults_language():
    r = parse_extraction_response('{"isRental": true, "confidence": 1.7, "language": "de"}')
    assert r.confidence == 1.0
    assert r.language == "en"
    assert r.fields.price is None


def test_parse_price_shapes():
    r = parse_extraction_response(
        '{"isRental": true, "confidence": 0.9, "extractedData": {"price": {"amount": "800", "currency": "usd"}}}'
    )
    assert r.fields.price == Price(amount=800.0, currency="USD")

    r = parse_extraction_response(
        '{"isRental": true, "confidence": 0.9, "extractedData": {"price": {"min": 900, "max": 700, "currency": "GEL"}}}'
    )
    assert r.fields.price == PriceRange(min=700.0, max=900.0, currency="GEL")


def test_parse_rejects_missing_is_rental():
    with pytest.raises(ResponseParseError):
        parse_extraction_response('{"confidence": 0.5}')


def test_parse_rejects_bad_amenities():
    with pytest.raises(ResponseParseError):
        parse_extraction_response('{"isRental": true, "confidence": 0.5, "extractedData": {"amenities": "wifi"}}')


@pytest.mark.parametrize("confidence", ["NaN", '"nan"', "Infinity", '"-inf"'])
def test_parse_rejects_non_finite_confidence(confidence):
    with pytest.raises(ResponseParseError):
        parse_extraction_response('{"isRental": true, "confidence": %s}' % confidence)
