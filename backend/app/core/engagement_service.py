"""
Engagement Counter Service

Tracks how tenants interact with listings and keeps the denormalized
counters on the property row in step:

- View: every detail open bumps view_count
- Contact: only successful contact attempts bump contact_count
- Favorite: toggle flips NOT_FAVORITED <-> FAVORITED and moves
  favorite_count by +1 / -1

Counter changes are atomic deltas applied by the store. View and contact
tracking never raise: analytics must not break the page they belong to.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List

from app.core.config import Settings
from app.core.exceptions import Conflict, DuplicateFavorite, NotFound, SearchUnavailable, ValidationError
from app.core.property_store import (
    PropertyStore, Counter, PropertyViewEvent, PropertyContactEvent, FavoriteLink,
)

logger = logging.getLogger(__name__)


@dataclass
class FavoriteProperty:
    id: str
    user_id: str
    property_id: str
    created_at: datetime
    property: Optional[dict]
    contacted: bool
    contacted_at: Optional[datetime]


@dataclass
class FavoriteSummary:
    total_favorites: int
    contacted_count: int
    not_contacted_count: int


class EngagementService:
    def __init__(self, store: PropertyStore, config: Settings):
        self.store = store
        self.timeout = config.STORE_TIMEOUT_SECONDS

    async def _call(self, operation: str, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except (DuplicateFavorite, NotFound, Conflict, ValidationError):
            raise
        except asyncio.TimeoutError:
            logger.error(f"Store timeout after {self.timeout}s: {operation}")
            raise SearchUnavailable(f"{operation} timed out")
        except Exception as e:
            logger.error(f"Store error during {operation}: {e}")
            raise SearchUnavailable(f"{operation} failed") from e

    async def _apply_delta(self, property_id: str, counter: Counter, delta: int) -> None:
        """Counter drift is tolerated; a failed delta is logged, never raised."""
        try:
            applied = await self._call(
                f"{counter.value} delta",
                self.store.increment_counter(property_id, counter, delta),
            )
            if not applied:
                logger.warning(f"[Engagement] {counter.value} delta skipped, unknown property {property_id}")
        except SearchUnavailable as e:
            logger.warning(f"[Engagement] Failed to apply {counter.value} {delta:+d} for {property_id}: {e}")

    # ============================================================
    # Events
    # ============================================================

    async def track_view(self, event: PropertyViewEvent) -> None:
        try:
            await self._call("record view", self.store.record_view(event))
            await self._call(
                "view_count delta",
                self.store.increment_counter(event.property_id, Counter.VIEWS, 1),
            )
            logger.info(f"[Engagement] view property={event.property_id} source={event.source}")
        except Exception as e:
            logger.error(f"Error tracking property view: {e}")

    async def track_contact(self, event: PropertyContactEvent) -> None:
        try:
            await self._call("record contact", self.store.record_contact(event))
            if event.success:
                await self._call(
                    "contact_count delta",
                    self.store.increment_counter(event.property_id, Counter.CONTACTS, 1),
                )
            logger.info(
                f"[Engagement] contact property={event.property_id} "
                f"method={event.contact_method.value} success={event.success}"
            )
        except Exception as e:
            logger.error(f"Error tracking property contact: {e}")

    # ============================================================
    # Favorites
    # ============================================================

    async def toggle_favorite(self, user_id: str, property_id: str) -> bool:
        """
        Flip the favorite state for (user, property) and return the new state.

        Check-then-act is not atomic: a concurrent duplicate toggle can see the
        same state. The unique (user, property) link makes the second insert
        fail as Conflict instead of creating a duplicate.
        """
        exists = await self._call(
            "favorite lookup", self.store.favorite_exists(user_id, property_id)
        )

        if exists:
            removed = await self._call(
                "favorite delete", self.store.delete_favorite(user_id, property_id)
            )
            if removed:
                await self._apply_delta(property_id, Counter.FAVORITES, -1)
            return False

        await self.add_favorite(user_id, property_id)
        return True

    async def add_favorite(self, user_id: str, property_id: str) -> FavoriteLink:
        if not await self._call("property lookup", self.store.property_exists(property_id)):
            raise NotFound(f"Property not found: {property_id}")

        try:
            link = await self._call(
                "favorite insert", self.store.insert_favorite(user_id, property_id)
            )
        except DuplicateFavorite:
            raise Conflict(f"Property {property_id} is already a favorite")

        await self._apply_delta(property_id, Counter.FAVORITES, 1)
        logger.info(f"[Engagement] favorite added user={user_id} property={property_id}")
        return link

    async def remove_favorite(self, user_id: str, property_id: str) -> None:
        removed = await self._call(
            "favorite delete", self.store.delete_favorite(user_id, property_id)
        )
        if not removed:
            raise NotFound(f"Property {property_id} is not a favorite")
        await self._apply_delta(property_id, Counter.FAVORITES, -1)
        logger.info(f"[Engagement] favorite removed user={user_id} property={property_id}")

    async def is_favorite(self, user_id: str, property_id: str) -> bool:
        return await self._call(
            "favorite lookup", self.store.favorite_exists(user_id, property_id)
        )

    async def list_favorites(self, user_id: str) -> List[FavoriteProperty]:
        links = await self._call("favorites list", self.store.list_favorites(user_id))
        if not links:
            return []

        # One lookup for the whole id set, not one per favorite
        contacted = await self._call(
            "contacted lookup",
            self.store.contacted_property_ids(user_id, [link.property_id for link in links]),
        )

        return [
            FavoriteProperty(
                id=link.id,
                user_id=link.user_id,
                property_id=link.property_id,
                created_at=link.created_at,
                property=link.property,
                contacted=link.property_id in contacted,
                contacted_at=contacted.get(link.property_id),
            )
            for link in links
        ]

    async def favorites_summary(self, user_id: str) -> FavoriteSummary:
        favorites = await self.list_favorites(user_id)
        contacted_count = sum(1 for f in favorites if f.contacted)
        return FavoriteSummary(
            total_favorites=len(favorites),
            contacted_count=contacted_count,
            not_contacted_count=len(favorites) - contacted_count,
        )
