"""Tests for grid clustering."""

import random

import pytest

from app.core.cluster_service import ClusterService
from app.core.search_filters import MapBounds
from app.core.search_service import PropertyResult

BOUNDS = MapBounds(north=14.20, south=14.00, east=-87.10, west=-87.30)


def make_property(pid, lat, lng, price):
    return PropertyResult(id=pid, title=pid, property_type="apartment", lat=lat, lng=lng, price_amount=price)


@pytest.fixture
def clusters(config) -> ClusterService:
    return ClusterService(config)


@pytest.fixture
def scattered():
    rng = random.Random(42)
    return [
        make_property(
            f"p-{i:03d}",
            round(rng.uniform(14.01, 14.19), 6),
            round(rng.uniform(-87.29, -87.11), 6),
            float(rng.randrange(4000, 40000, 500)),
        )
        for i in range(60)
    ]


def test_empty_input(clusters):
    assert clusters.cluster([], BOUNDS, 12) == []


@pytest.mark.parametrize("zoom", [1, 8, 14, 20, 22])
def test_single_property_is_a_singleton_cluster(clusters, zoom):
    result = clusters.cluster([make_property("p-1", 14.07, -87.19, 12500.0)], BOUNDS, zoom)
    assert len(result) == 1
    cluster = result[0]
    assert cluster.count == 1
    assert cluster.min_price == cluster.avg_price == cluster.max_price == 12500.0
    assert (cluster.lat, cluster.lng) == (14.07, -87.19)
    assert cluster.property_ids == ["p-1"]


def test_identical_input_gives_identical_output(clusters, scattered):
    shuffled = list(scattered)
    random.Random(7).shuffle(shuffled)
    assert clusters.cluster(scattered, BOUNDS, 11) == clusters.cluster(shuffled, BOUNDS, 11)


def test_higher_zoom_never_gives_fewer_clusters(clusters, scattered):
    counts = [len(clusters.cluster(scattered, BOUNDS, zoom)) for zoom in range(1, 21)]
    assert counts == sorted(counts)
    assert counts[0] == 1
    assert counts[-1] == len(scattered)


def test_cell_size_shrinks_with_zoom(clusters):
    sizes = [clusters.cell_size(zoom) for zoom in range(1, 20)]
    assert all(a > b for a, b in zip(sizes, sizes[1:]))
    assert clusters.cell_size(20) is None


def test_aggregates(clusters):
    members = [
        make_property("p-b", 14.05, -87.20, 10000.0),
        make_property("p-a", 14.07, -87.22, 20000.0),
        make_property("p-c", 14.06, -87.21, 15001.0),
    ]
    (cluster,) = clusters.cluster(members, BOUNDS, 1)
    assert cluster.count == 3
    assert cluster.min_price == 10000.0
    assert cluster.max_price == 20000.0
    assert cluster.avg_price == 15000.33
    assert cluster.lat == pytest.approx(14.06)
    assert cluster.lng == pytest.approx(-87.21)
    assert cluster.property_ids == ["p-a", "p-b", "p-c"]


def test_sample_is_bounded_and_sorted(config, scattered):
    config.CLUSTER_SAMPLE_SIZE = 5
    (cluster,) = ClusterService(config).cluster(scattered, BOUNDS, 1)
    assert cluster.count == 60
    assert cluster.property_ids == sorted(p.id for p in scattered)[:5]


def test_points_outside_viewport_dropped(clusters):
    inside = make_property("p-in", 14.10, -87.20, 9000.0)
    outside = make_property("p-out", 15.50, -88.02, 9000.0)
    result = clusters.cluster([inside, outside], BOUNDS, 5)
    assert [c.property_ids for c in result] == [["p-in"]]
