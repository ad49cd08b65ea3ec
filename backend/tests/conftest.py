"""Pytest configuration and fixtures."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from app.core.config import Settings
from app.core.exceptions import StoreError
from app.core.memory_store import InMemoryPropertyStore
from app.core.result_cache import ResultCache

BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)

# Tegucigalpa
CENTER_LAT = 14.0723
CENTER_LNG = -87.1921


class FailingStore(InMemoryPropertyStore):
    """Every read fails the way an unreachable database does."""

    async def list_properties(self, *args, **kwargs):
        raise StoreError("connection refused")

    async def find_in_bounds(self, *args, **kwargs):
        raise StoreError("connection refused")

    async def find_within_radius(self, *args, **kwargs):
        raise StoreError("connection refused")

    async def get_property(self, *args, **kwargs):
        raise StoreError("connection refused")

    async def facet_counts(self, *args, **kwargs):
        raise StoreError("connection refused")

    async def match_neighborhoods(self, *args, **kwargs):
        raise StoreError("connection refused")

    async def record_view(self, *args, **kwargs):
        raise StoreError("connection refused")

    async def increment_counter(self, *args, **kwargs):
        raise StoreError("connection refused")


class SlowStore(InMemoryPropertyStore):
    """Listing queries never come back within the store timeout."""

    async def list_properties(self, *args, **kwargs):
        await asyncio.sleep(5)
        return await super().list_properties(*args, **kwargs)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def config() -> Settings:
    """Settings for tests: fixed cursor secret, in-memory store."""
    return Settings(
        SECRET_KEY="test-secret",
        ENVIRONMENT="test",
        PROPERTY_STORE="memory",
        STORE_TIMEOUT_SECONDS=0.2,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(config: Settings, clock: FakeClock) -> ResultCache:
    return ResultCache(
        {
            "search": config.CACHE_TTL_SEARCH_SECONDS,
            "detail": config.CACHE_TTL_DETAIL_SECONDS,
            "bounds": config.CACHE_TTL_BOUNDS_SECONDS,
            "clusters": config.CACHE_TTL_CLUSTERS_SECONDS,
            "autocomplete": config.CACHE_TTL_AUTOCOMPLETE_SECONDS,
            "facets": config.CACHE_TTL_FACETS_SECONDS,
        },
        max_entries=100,
        clock=clock,
    )


def seed_catalog(store: InMemoryPropertyStore) -> InMemoryPropertyStore:
    """Three 2-bedroom apartments priced 12000/15000/18000 plus decoys."""
    store.add_property(
        id="p-12000", title="Apartamento Lomas", type="apartment", bedrooms=2, bathrooms=1,
        price_amount=12000.0, neighborhood="Lomas del Guijarro",
        latitude=14.0800, longitude=-87.1850, amenities=["parking", "wifi"],
        created_at=BASE_TIME + timedelta(days=1),
        images=[
            {"id": "img-b", "url": "https://cdn.example/b.jpg", "order": 2, "is_primary": True},
            {"id": "img-a", "url": "https://cdn.example/a.jpg", "order": 1, "is_primary": True},
        ],
    )
    store.add_property(
        id="p-15000", title="Apartamento Palmira", type="apartment", bedrooms=2, bathrooms=2,
        price_amount=15000.0, neighborhood="Colonia Palmira",
        latitude=14.0900, longitude=-87.1950, amenities=["wifi"],
        created_at=BASE_TIME + timedelta(days=2),
    )
    store.add_property(
        id="p-18000", title="Apartamento Tepeyac", type="apartment", bedrooms=2, bathrooms=2,
        price_amount=18000.0, neighborhood="Tepeyac", featured=True,
        latitude=14.0850, longitude=-87.2000, amenities=["parking", "pool"],
        created_at=BASE_TIME + timedelta(days=3),
    )
    # Decoys: wrong bedrooms, too expensive, not active, far away
    store.add_property(
        id="p-house", title="Casa en Los Proceres", type="house", bedrooms=4, bathrooms=3,
        price_amount=35000.0, neighborhood="Los Proceres",
        latitude=14.0950, longitude=-87.1800, created_at=BASE_TIME + timedelta(days=4),
    )
    store.add_property(
        id="p-room", title="Habitacion amueblada", type="room", bedrooms=1, bathrooms=1,
        price_amount=4500.0, neighborhood="Colonia Palmira",
        latitude=14.0905, longitude=-87.1955, created_at=BASE_TIME + timedelta(days=5),
    )
    store.add_property(
        id="p-rented", title="Apartamento rentado", type="apartment", bedrooms=2,
        price_amount=14000.0, status="rented",
        latitude=14.0810, longitude=-87.1860, created_at=BASE_TIME + timedelta(days=6),
    )
    store.add_property(
        id="p-sps", title="Apartamento San Pedro Sula", type="apartment", bedrooms=2,
        price_amount=22000.0, neighborhood="Rio de Piedras", city="San Pedro Sula",
        latitude=15.5040, longitude=-88.0250, created_at=BASE_TIME + timedelta(days=7),
    )

    store.add_neighborhood("Colonia Palmira", properties_count=42, city="Tegucigalpa")
    store.add_neighborhood("Colonia Kennedy", properties_count=87, city="Tegucigalpa")
    store.add_neighborhood("Lomas del Guijarro", properties_count=31, city="Tegucigalpa")
    return store


@pytest.fixture
def store() -> InMemoryPropertyStore:
    return seed_catalog(InMemoryPropertyStore())


@pytest.fixture
def failing_store() -> FailingStore:
    return seed_catalog(FailingStore())


@pytest.fixture
def slow_store() -> SlowStore:
    return seed_catalog(SlowStore())
