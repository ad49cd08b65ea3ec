"""Tests for engagement counters and favorites."""

import asyncio

import pytest

from app.core.engagement_service import EngagementService
from app.core.exceptions import Conflict, NotFound, SearchUnavailable, ValidationError
from app.core.memory_store import InMemoryPropertyStore
from app.core.property_store import PropertyViewEvent, PropertyContactEvent, ContactMethod, Counter

from conftest import seed_catalog

USER = "user-1"


class CountingStore(InMemoryPropertyStore):
    def __init__(self):
        super().__init__()
        self.contacted_lookups = 0

    async def contacted_property_ids(self, user_id, property_ids):
        self.contacted_lookups += 1
        return await super().contacted_property_ids(user_id, property_ids)


class SlowLookups(InMemoryPropertyStore):
    async def favorite_exists(self, user_id, property_id):
        found = await super().favorite_exists(user_id, property_id)
        await asyncio.sleep(0.01)
        return found


class BrokenCounters(InMemoryPropertyStore):
    async def increment_counter(self, property_id, counter, delta):
        raise RuntimeError("deadlock detected")


@pytest.fixture
def engagement(store, config) -> EngagementService:
    return EngagementService(store, config)


class TestViews:
    async def test_view_increments_counter(self, engagement, store):
        await engagement.track_view(PropertyViewEvent(property_id="p-12000", source="mapa"))
        assert store.counters("p-12000")[Counter.VIEWS.value] == 1
        assert store.views[0].source == "mapa"

    async def test_view_failures_are_swallowed(self, failing_store, config):
        service = EngagementService(failing_store, config)
        await service.track_view(PropertyViewEvent(property_id="p-12000"))

    async def test_view_of_unknown_property_is_harmless(self, engagement):
        await engagement.track_view(PropertyViewEvent(property_id="missing"))


class TestContacts:
    async def test_successful_contact_increments_by_one(self, engagement, store):
        await engagement.track_contact(PropertyContactEvent(property_id="p-12000", success=True))
        assert store.counters("p-12000")[Counter.CONTACTS.value] == 1

    async def test_failed_contact_never_counts(self, engagement, store):
        await engagement.track_contact(PropertyContactEvent(
            property_id="p-12000", success=False, error_message="WhatsApp not installed",
        ))
        assert store.counters("p-12000")[Counter.CONTACTS.value] == 0
        assert len(store.contacts) == 1

    async def test_contact_failures_are_swallowed(self, config):
        store = seed_catalog(BrokenCounters())
        await EngagementService(store, config).track_contact(PropertyContactEvent(property_id="p-12000"))


class TestToggle:
    async def test_toggle_twice_is_net_zero(self, engagement, store):
        before = store.counters("p-15000")[Counter.FAVORITES.value]
        assert await engagement.toggle_favorite(USER, "p-15000") is True
        assert store.counters("p-15000")[Counter.FAVORITES.value] == before + 1
        assert await engagement.toggle_favorite(USER, "p-15000") is False
        assert store.counters("p-15000")[Counter.FAVORITES.value] == before
        assert await engagement.is_favorite(USER, "p-15000") is False

    async def test_toggle_unknown_property(self, engagement):
        with pytest.raises(NotFound):
            await engagement.toggle_favorite(USER, "missing")

    async def test_counter_failure_keeps_favorite(self, config):
        store = seed_catalog(BrokenCounters())
        service = EngagementService(store, config)
        assert await service.toggle_favorite(USER, "p-12000") is True
        assert await service.is_favorite(USER, "p-12000") is True

    async def test_store_failure_surfaces(self, config):
        class DownFavorites(InMemoryPropertyStore):
            async def favorite_exists(self, user_id, property_id):
                raise ConnectionError("store unreachable")

        with pytest.raises(SearchUnavailable):
            await EngagementService(DownFavorites(), config).toggle_favorite(USER, "p-12000")

    async def test_concurrent_toggles_keep_one_favorite(self, config):
        store = seed_catalog(SlowLookups())
        service = EngagementService(store, config)

        outcomes = await asyncio.gather(
            service.toggle_favorite(USER, "p-12000"),
            service.toggle_favorite(USER, "p-12000"),
            return_exceptions=True,
        )

        assert True in outcomes
        assert any(isinstance(o, Conflict) for o in outcomes)
        assert len(await store.list_favorites(USER)) == 1
        assert store.counters("p-12000")[Counter.FAVORITES.value] == 1

    async def test_counter_never_negative(self, engagement, store):
        await store.increment_counter("p-12000", Counter.FAVORITES, -5)
        assert store.counters("p-12000")[Counter.FAVORITES.value] == 0


class TestFavorites:
    async def test_malformed_ids_are_a_bad_request(self, config):
        class StrictIds(InMemoryPropertyStore):
            async def insert_favorite(self, user_id, property_id):
                raise ValidationError(f"Invalid favorite ids: {user_id}/{property_id}")

        service = EngagementService(seed_catalog(StrictIds()), config)
        with pytest.raises(ValidationError):
            await service.add_favorite("not-a-uuid", "p-12000")

    async def test_duplicate_add_is_conflict(self, engagement, store):
        await engagement.add_favorite(USER, "p-12000")
        with pytest.raises(Conflict):
            await engagement.add_favorite(USER, "p-12000")
        assert store.counters("p-12000")[Counter.FAVORITES.value] == 1

    async def test_remove_absent_is_not_found(self, engagement):
        with pytest.raises(NotFound):
            await engagement.remove_favorite(USER, "p-12000")

    async def test_remove_decrements(self, engagement, store):
        await engagement.add_favorite(USER, "p-12000")
        await engagement.remove_favorite(USER, "p-12000")
        assert store.counters("p-12000")[Counter.FAVORITES.value] == 0

    async def test_favorites_deleted_with_property(self, engagement, store):
        await engagement.add_favorite(USER, "p-12000")
        store.delete_property("p-12000")
        assert await engagement.list_favorites(USER) == []

    async def test_contacted_flag_uses_one_lookup(self, config):
        store = seed_catalog(CountingStore())
        service = EngagementService(store, config)
        for pid in ("p-12000", "p-15000", "p-18000"):
            await service.add_favorite(USER, pid)

        await service.track_contact(PropertyContactEvent(
            property_id="p-15000", user_id=USER, contact_method=ContactMethod.PHONE,
        ))
        await service.track_contact(PropertyContactEvent(property_id="p-18000", user_id=USER, success=False))
        await service.track_contact(PropertyContactEvent(property_id="p-12000", user_id="someone-else"))

        favorites = await service.list_favorites(USER)
        assert store.contacted_lookups == 1
        contacted = {f.property_id: f.contacted for f in favorites}
        assert contacted == {"p-12000": False, "p-15000": True, "p-18000": False}
        assert next(f for f in favorites if f.property_id == "p-15000").contacted_at is not None

    async def test_summary(self, config):
        store = seed_catalog(CountingStore())
        service = EngagementService(store, config)
        await service.add_favorite(USER, "p-12000")
        await service.add_favorite(USER, "p-house")
        await service.track_contact(PropertyContactEvent(property_id="p-house", user_id=USER))

        summary = await service.favorites_summary(USER)
        assert (summary.total_favorites, summary.contacted_count, summary.not_contacted_count) == (2, 1, 1)

    async def test_empty_favorites_skip_contacted_lookup(self, config):
        store = CountingStore()
        assert await EngagementService(store, config).list_favorites(USER) == []
        assert store.contacted_lookups == 0
