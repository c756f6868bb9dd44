# tests/test_clustering.py
import pytest

from rentmap.domain.geo import TBILISI_BOUNDS
from rentmap.domain.types import Bounds
from rentmap.service_layer.clustering import ClusteringEngine, MapCluster, MapListing, MapPoint, _build_cluster


def L(id, lat, lng, **kw):
    return MapListing(id=id, latitude=lat, longitude=lng, **kw)


def _engine_with_cell(zoom, cell_deg, **kw):
    """Engine whose grid at `zoom` is exactly `cell_deg` degrees."""
    return ClusteringEngine(base_grid_size=cell_deg * (2**zoom), **kw)


def test_grid_shrinks_with_zoom():
    e = ClusteringEngine(base_grid_size=0.5)
    assert e.grid_size(0) == 0.5
    assert e.grid_size(1) == 0.25
    assert e.min_cluster_size(11) == 2
    assert e.min_cluster_size(12) == 4


def test_high_zoom_returns_points_inside_bounds():
    listings = [
        L(1, 41.72, 44.77),
        L(2, 41.70, 44.80),
        L(3, 42.50, 44.80),  # north of the city
        L(4, None, None),
    ]
    out = ClusteringEngine().cluster(listings, 15, TBILISI_BOUNDS)
    assert all(isinstance(r, MapPoint) for r in out)
    assert sorted(r.listing.id for r in out) == [1, 2]


def test_dense_zoom_needs_four_per_cell():
    e = _engine_with_cell(12, 0.01)
    three = [L(i, 41.7225 + i * 0.001, 44.7751) for i in range(3)]
    out = e.cluster(three, 12, TBILISI_BOUNDS)
    assert len(out) == 3
    assert all(isinstance(r, MapPoint) for r in out)

    four = three + [L(9, 41.7255, 44.7755)]
    out = e.cluster(four, 12, TBILISI_BOUNDS)
    assert len(out) == 1
    c = out[0]
    assert isinstance(c, MapCluster)
    assert c.count == 4
    assert c.id == "cluster_12_4477_4172"
    assert sorted(c.listing_ids) == [0, 1, 2, 9]


def test_cluster_summary():
    e = _engine_with_cell(11, 0.01)
    members = [
        L(1, 41.7215, 44.7751, price=800, bedrooms=2, district="Vake"),
        L(2, 41.7235, 44.7761, price=1000, bedrooms=2, district="Vake"),
        L(3, 41.7225, 44.7741, price_min=600, price_max=1000, bedrooms=1, district="Saburtalo"),
        L(4, 41.7225, 44.7751),
    ]
    (c,) = e.cluster(members, 11, TBILISI_BOUNDS)

    assert c.count == 4
    assert c.latitude == pytest.approx(41.7225)
    assert c.avg_price == pytest.approx((800 + 1000 + 800) / 3)
    assert c.median_price == 800
    assert c.price_range == (800, 1000)
    assert c.districts == ["Vake", "Saburtalo"]
    assert c.bedrooms == {"2br": 2, "1br": 1}
    assert c.bounds.north == pytest.approx(41.7235)
    assert c.bounds.west == pytest.approx(44.7741)

    d = c.to_dict()
    assert d["type"] == "cluster"
    assert d["priceRange"] == {"min": 800, "max": 1000}
    assert sorted(d["listingIds"]) == [1, 2, 3, 4]


def test_low_zoom_merges_neighbouring_cells():
    e = _engine_with_cell(5, 0.01, merge_multiplier=1.5)
    listings = [
        L(1, 41.7225, 44.7751),
        L(2, 41.7225, 44.7751),
        L(3, 41.7325, 44.7751),
        L(4, 41.7325, 44.7751),
        L(5, 41.7325, 44.7751),
        L(6, 41.7725, 44.7751),
        L(7, 41.7725, 44.7751),
    ]
    out = e.cluster(listings, 5, TBILISI_BOUNDS)
    clusters = [r for r in out if isinstance(r, MapCluster)]
    assert len(clusters) == 2

    merged = next(c for c in clusters if c.count == 5)
    assert merged.id == "cluster_5_4477_4172"
    # count-weighted centroid
    assert merged.latitude == pytest.approx((41.7225 * 2 + 41.7325 * 3) / 5)
    assert sorted(merged.listing_ids) == [1, 2, 3, 4, 5]


def test_mid_zoom_does_not_merge():
    e = _engine_with_cell(10, 0.01)
    listings = [L(i, 41.7225, 44.7751) for i in range(2)] + [L(i, 41.7325, 44.7751) for i in range(2, 4)]
    out = e.cluster(listings, 10, TBILISI_BOUNDS)
    assert len(out) == 2
    assert {c.count for c in out} == {2}


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_results_are_memoized_until_ttl():
    clock = FakeClock()
    e = ClusteringEngine(cache_ttl_s=60, clock=clock)
    first = e.cluster([L(1, 41.72, 44.77)], 15, TBILISI_BOUNDS)

    # same count, zoom and bounds: served from cache even though the listing moved
    again = e.cluster([L(2, 41.73, 44.78)], 15, TBILISI_BOUNDS)
    assert again is first

    clock.now = 61
    fresh = e.cluster([L(2, 41.73, 44.78)], 15, TBILISI_BOUNDS)
    assert fresh[0].listing.id == 2


def test_cache_evicts_oldest_entry():
    e = ClusteringEngine(cache_max_entries=2)
    for zoom in (13, 14, 15):
        e.cluster([], zoom, TBILISI_BOUNDS)
    assert e.cache_size() == 2

    e.clear_cache()
    assert e.cache_size() == 0


def test_bounds_key_distinguishes_viewports():
    e = ClusteringEngine()
    listings = [L(1, 41.72, 44.77)]
    wide = e.cluster(listings, 15, TBILISI_BOUNDS)
    narrow = e.cluster(listings, 15, Bounds(north=41.71, south=41.70, east=44.80, west=44.79))
    assert len(wide) == 1
    assert narrow == []


def _pair(id, lat, lng):
    return _build_cluster(id, [L(1, lat, lng), L(2, lat, lng)])


def test_merge_distance_is_exclusive():
    at_edge = [_pair("a", 41.5, 44.5), _pair("b", 42.0, 44.5)]
    assert [c.id for c in ClusteringEngine._merge_nearby(at_edge, 0.5)] == ["a", "b"]

    inside = [_pair("a", 41.5, 44.5), _pair("b", 41.75, 44.5)]
    (merged,) = ClusteringEngine._merge_nearby(inside, 0.5)
    assert merged.count == 4
