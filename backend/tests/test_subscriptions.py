# tests/test_subscriptions.py
import copy

import pytest

from rentmap.service_layer.subscriptions import SubscriptionFilter, SubscriptionRegistry, matches


def listing(**overrides):
    base = {
        "id": 1,
        "district": "Vake",
        "latitude": 41.7225,
        "longitude": 44.7701,
        "price": 800.0,
        "priceMin": None,
        "priceMax": None,
        "currency": "GEL",
        "bedrooms": 2,
        "amenities": ["balcony", "wifi"],
        "petsAllowed": None,
        "furnished": True,
    }
    base.update(overrides)
    return base


def F(**d):
    return SubscriptionFilter.from_dict(d)


def test_empty_filter_matches_everything():
    assert matches(listing(), F())
    assert matches({}, F())


def test_price_ceiling():
    assert not matches(listing(), F(district="Vake", priceMax=700))
    assert matches(listing(), F(district="vake", priceMax=800))


def test_price_falls_back_to_range_bounds():
    ranged = listing(price=None, priceMin=600, priceMax=900)
    assert matches(ranged, F(priceMax=700))
    assert not matches(ranged, F(priceMin=700))
    only_max = listing(price=None, priceMax=900)
    assert matches(only_max, F(priceMin=850))


def test_missing_field_fails_clause():
    assert not matches(listing(price=None), F(priceMin=100))
    assert not matches(listing(bedrooms=None), F(bedroomsMin=1))
    assert not matches(listing(latitude=None), F(location={"latitude": 41.72, "longitude": 44.77, "radiusKm": 5}))
    assert not matches(listing(petsAllowed=None), F(petsAllowed=True))
    assert not matches(listing(district=None), F(district="Vake"))


def test_bedrooms_currency_and_flags():
    assert matches(listing(), F(bedroomsMin=2, bedroomsMax=3, currency="gel", furnished=True))
    assert not matches(listing(), F(bedroomsMin=3))
    assert not matches(listing(), F(currency="USD"))
    assert not matches(listing(), F(furnished=False))


def test_amenities_must_all_be_present():
    assert matches(listing(), F(amenities=["WiFi"]))
    assert not matches(listing(), F(amenities=["wifi", "parking"]))


def test_radius():
    near = F(location={"latitude": 41.7225, "longitude": 44.7801, "radiusKm": 1})
    far = F(location={"latitude": 41.6900, "longitude": 44.8000, "radiusKm": 1})
    assert matches(listing(), near)
    assert not matches(listing(), far)


def test_matching_does_not_mutate_listing():
    lst = listing()
    before = copy.deepcopy(lst)
    matches(lst, F(district="Vake", priceMin=100, amenities=["wifi"]))
    assert lst == before


@pytest.mark.parametrize(
    "payload",
    [
        {"priceMin": 900, "priceMax": 100},
        {"location": {"latitude": 41.7, "longitude": 44.8, "radiusKm": 0.05}},
        {"location": {"latitude": 41.7, "longitude": 44.8, "radiusKm": 51}},
        {"location": {"latitude": 41.7}},
        {"location": "Vake"},
        {"amenities": "wifi"},
    ],
)
def test_invalid_filters_raise(payload):
    with pytest.raises(ValueError):
        SubscriptionFilter.from_dict(payload)


def test_filter_to_dict_drops_unset():
    f = F(district="Vake", priceMax=700, location={"latitude": 41.7, "longitude": 44.8, "radiusKm": 2})
    assert f.to_dict() == {
        "district": "Vake",
        "priceMax": 700.0,
        "location": {"latitude": 41.7, "longitude": 44.8, "radiusKm": 2.0},
    }


def test_registry_caps_subscriptions_per_connection():
    reg = SubscriptionRegistry(max_per_connection=10)
    ids = [reg.subscribe("c1", F()) for _ in range(10)]
    assert all(ids)
    assert len(set(ids)) == 10
    assert reg.subscribe("c1", F()) is None
    # other connections have their own allowance
    assert reg.subscribe("c2", F()) is not None


def test_registry_honours_unique_client_ids():
    reg = SubscriptionRegistry()
    assert reg.subscribe("c1", F(), subscription_id="mine") == "mine"
    other = reg.subscribe("c2", F(), subscription_id="mine")
    assert other != "mine"
    assert other.startswith("sub_")


def test_registry_matching_and_cleanup():
    reg = SubscriptionRegistry()
    vake = reg.subscribe("c1", F(district="Vake"))
    reg.subscribe("c1", F(district="Saburtalo"))
    cheap = reg.subscribe("c2", F(priceMax=500))

    assert reg.matching(listing()) == {"c1": [vake]}
    assert reg.match(listing(price=400.0)) == {"c1", "c2"}

    assert reg.unsubscribe("c2", cheap) is True
    assert reg.unsubscribe("c2", cheap) is False
    assert reg.stats() == {"connections": 1, "subscriptions": 2}

    assert reg.unsubscribe_all("c1") == 2
    assert reg.stats() == {"connections": 0, "subscriptions": 0}
    assert reg.get_subscriptions("c1") == []
