"""Tests for filter compilation and pagination cursors."""

from datetime import datetime, timezone

import pytest

from app.core.cursor import decode_cursor, encode_cursor
from app.core.exceptions import ValidationError
from app.core.search_filters import (
    SearchFilters, MapBounds, GeoPoint, QueryMode, SortMode, SortPosition,
    compile_filters, encode_position, filters_cache_key, build_predicate,
)


BOUNDS = MapBounds(north=14.12, south=14.04, east=-87.15, west=-87.25)


class TestCacheKey:
    def test_construction_order_does_not_change_key(self, config):
        first = SearchFilters(
            bedrooms=[3, 2], amenities=["wifi", "Parking"], property_types=["house", "apartment"],
            price_min=5000, price_max=20000,
        )
        second = SearchFilters(
            property_types=["apartment", "house"], amenities=["parking", "wifi", "wifi"],
            price_max=20000, price_min=5000, bedrooms=[2, 3],
        )
        assert compile_filters(first, config).cache_key == compile_filters(second, config).cache_key

    def test_different_filters_different_key(self, config):
        a = compile_filters(SearchFilters(bedrooms=[2]), config)
        b = compile_filters(SearchFilters(bedrooms=[3]), config)
        assert a.cache_key != b.cache_key

    def test_key_is_prefixed_by_mode(self, config):
        assert compile_filters(SearchFilters(), config).cache_key.startswith("listing:")
        assert compile_filters(SearchFilters(bounds=BOUNDS), config).cache_key.startswith("bounded:")

    def test_secondary_key_ignores_keyword_order(self):
        predicate = build_predicate(SearchFilters(amenities=["pool"]))
        assert filters_cache_key("bounds", bounds=BOUNDS, predicate=predicate, limit=10) == \
            filters_cache_key("bounds", limit=10, predicate=predicate, bounds=BOUNDS)


class TestNormalization:
    def test_negative_price_floor_clamped_to_zero(self, config):
        query = compile_filters(SearchFilters(price_min=-100), config)
        assert query.predicate.price_min == 0.0

    def test_ceiling_below_floor_raised_to_floor(self, config):
        query = compile_filters(SearchFilters(price_min=15000, price_max=8000), config)
        assert query.predicate.price_min == 15000.0
        assert query.predicate.price_max == 15000.0

    @pytest.mark.parametrize("limit,expected", [(None, 24), (0, 1), (-5, 1), (10, 10), (500, 100)])
    def test_limit_clamped(self, config, limit, expected):
        assert compile_filters(SearchFilters(limit=limit), config).limit == expected

    @pytest.mark.parametrize("radius,expected", [(None, 5.0), (0.0, 0.1), (12.5, 12.5), (400, 50.0)])
    def test_radius_clamped(self, config, radius, expected):
        query = compile_filters(SearchFilters(center=GeoPoint(14.07, -87.19), radius_km=radius), config)
        assert query.radius_km == expected

    def test_text_trimmed_and_lowercased(self, config):
        query = compile_filters(SearchFilters(location="  Palmira "), config)
        assert query.predicate.text == "palmira"


class TestRouting:
    def test_listing_without_geo(self, config):
        assert compile_filters(SearchFilters(), config).mode == QueryMode.LISTING

    def test_bounds_route_to_bounded(self, config):
        query = compile_filters(SearchFilters(bounds=BOUNDS), config)
        assert query.mode == QueryMode.BOUNDED
        assert query.bounds == BOUNDS

    def test_center_routes_to_radius_sorted_by_distance(self, config):
        query = compile_filters(SearchFilters(center=GeoPoint(14.07, -87.19)), config)
        assert query.mode == QueryMode.RADIUS
        assert query.sort == SortMode.DISTANCE

    def test_explicit_sort_kept_in_radius_mode(self, config):
        query = compile_filters(SearchFilters(center=GeoPoint(14.07, -87.19), sort_by="price_asc"), config)
        assert query.sort == SortMode.PRICE_ASC

    def test_distance_sort_outside_radius_falls_back(self, config):
        assert compile_filters(SearchFilters(sort_by="distance"), config).sort == SortMode.RELEVANCE

    @pytest.mark.parametrize("token,expected", [
        ("precio_asc", SortMode.PRICE_ASC),
        ("precio_desc", SortMode.PRICE_DESC),
        ("reciente", SortMode.RECENCY),
        ("RELEVANCIA", SortMode.RELEVANCE),
    ])
    def test_spanish_sort_aliases(self, config, token, expected):
        assert compile_filters(SearchFilters(sort_by=token), config).sort == expected


class TestValidation:
    def test_unknown_sort(self, config):
        with pytest.raises(ValidationError):
            compile_filters(SearchFilters(sort_by="cheapest"), config)

    def test_inverted_bounds(self, config):
        bounds = MapBounds(north=14.0, south=14.1, east=-87.1, west=-87.2)
        with pytest.raises(ValidationError):
            compile_filters(SearchFilters(bounds=bounds), config)

    def test_oversized_viewport(self, config):
        wide = MapBounds(north=14.2, south=14.0, east=-80.0, west=-92.0)
        with pytest.raises(ValidationError):
            compile_filters(SearchFilters(bounds=wide), config)
        tall = MapBounds(north=20.0, south=9.0, east=-87.1, west=-87.3)
        with pytest.raises(ValidationError):
            compile_filters(SearchFilters(bounds=tall), config)

    def test_bounds_and_center_are_exclusive(self, config):
        with pytest.raises(ValidationError):
            compile_filters(SearchFilters(bounds=BOUNDS, center=GeoPoint(14.07, -87.19)), config)

    def test_unknown_property_type(self, config):
        with pytest.raises(ValidationError):
            compile_filters(SearchFilters(property_types=["castle"]), config)


class TestCursor:
    def test_valid_cursor_decodes_to_position(self, config):
        first = compile_filters(SearchFilters(sort_by="price_asc", bedrooms=[2]), config)
        position = SortPosition(values=(15000.0, datetime(2026, 1, 3, tzinfo=timezone.utc)), id="p-15000")
        token = encode_position(position, first.sort, first.fingerprint, config)
        second = compile_filters(SearchFilters(sort_by="price_asc", bedrooms=[2], cursor=token), config)
        assert second.after is not None
        assert second.after.id == "p-15000"
        assert second.after.values[0] == 15000.0
        assert second.cache_key != first.cache_key

    def test_garbage_cursor_restarts(self, config):
        query = compile_filters(SearchFilters(cursor="not-a-cursor"), config)
        assert query.after is None

    def test_cursor_signed_with_other_secret_restarts(self, config):
        query = compile_filters(SearchFilters(), config)
        token = encode_cursor("relevance", query.fingerprint, [False, "2026-01-01T00:00:00+00:00"], "p-1", "other")
        assert compile_filters(SearchFilters(cursor=token), config).after is None

    def test_cursor_from_other_search_restarts(self, config):
        other = compile_filters(SearchFilters(bedrooms=[3]), config)
        token = encode_cursor(
            "relevance", other.fingerprint, [False, "2026-01-01T00:00:00+00:00"], "p-1", config.SECRET_KEY,
        )
        assert compile_filters(SearchFilters(bedrooms=[2], cursor=token), config).after is None

    def test_decode_checks_sort_mode(self):
        token = encode_cursor("price_asc", "abc", [1.0, "2026-01-01T00:00:00+00:00"], "p-1", "secret")
        assert decode_cursor(token, "price_asc", "abc", "secret") == ([1.0, "2026-01-01T00:00:00+00:00"], "p-1")
        assert decode_cursor(token, "recency", "abc", "secret") is None
