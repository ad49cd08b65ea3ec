"""
Property Discovery Facade

One entry point per discovery read path, each sitting behind its own cache
namespace:

    search            -> SEARCH  (+ FACETS for the facet summary)
    property detail   -> DETAIL
    bounds query      -> BOUNDS
    clusters          -> CLUSTERS
    autocomplete      -> AUTOCOMPLETE

Pipeline: SearchFilters -> compile -> cache lookup by canonical key -> on miss
the dispatcher runs one store query -> (map mode) clustering -> cached.

Components are built once per process by build_services() and handed to the
API layer through app.state; nothing here is a module-level singleton.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, List

from app.core.autocomplete_service import AutocompleteService, AutocompleteSuggestion
from app.core.cluster_service import ClusterService, PropertyCluster
from app.core.config import Settings
from app.core.engagement_service import EngagementService
from app.core.exceptions import NotFound
from app.core.property_store import PropertyStore
from app.core.result_cache import ResultCache, SEARCH, DETAIL, BOUNDS, CLUSTERS, FACETS
from app.core.search_filters import (
    SearchFilters, MapBounds, CompiledQuery, compile_filters, build_predicate,
    validate_bounds, filters_cache_key,
)
from app.core.search_service import (
    SearchService, SearchResults, FacetSummary, PropertyResult,
)

logger = logging.getLogger(__name__)


class PropertyDiscoveryService:
    """
    Cached discovery read paths.

    Primary reads (search, detail, bounds, clusters) surface SearchUnavailable.
    Facets and autocomplete degrade to empty results.
    """

    def __init__(self, store: PropertyStore, cache: ResultCache, config: Settings):
        self.config = config
        self.cache = cache
        self.search_service = SearchService(store, config)
        self.cluster_service = ClusterService(config)
        self.autocomplete_service = AutocompleteService(store, config, cache=cache)

    # ============================================================
    # Search
    # ============================================================

    async def search(self, filters: SearchFilters) -> SearchResults:
        query = compile_filters(filters, self.config)

        async def load() -> SearchResults:
            page = await self.search_service.execute(query)
            return SearchResults(
                properties=page.properties,
                total=page.total,
                facets=FacetSummary(),
                next_cursor=page.next_cursor,
                mode=page.mode,
            )

        results = await self.cache.get_or_load(SEARCH, query.cache_key, load)
        results.facets = await self.get_facets(query)
        return results

    async def get_facets(self, query: CompiledQuery) -> FacetSummary:
        """Facet counts for a compiled search. Failures degrade to empty facets."""
        key = filters_cache_key(
            FACETS, predicate=query.predicate, bounds=query.bounds,
            center=query.center, radius_km=query.radius_km,
        )
        try:
            return await self.cache.get_or_load(
                FACETS, key, lambda: self.search_service.get_facets(query)
            )
        except Exception as e:
            logger.warning(f"Facets unavailable, returning empty summary: {e}")
            return FacetSummary()

    # ============================================================
    # Detail
    # ============================================================

    async def get_property(self, property_id: str) -> Optional[PropertyResult]:
        """None when absent. Absence is not cached, so a new listing shows up at once."""
        cached = self.cache.get(DETAIL, property_id)
        if cached is not None:
            return cached

        result = await self.search_service.get_property(property_id)
        if result is not None:
            self.cache.set(DETAIL, property_id, result)
        return result

    async def get_similar(self, property_id: str, limit: int = 6) -> List[PropertyResult]:
        base = await self.get_property(property_id)
        if base is None:
            raise NotFound(f"Property not found: {property_id}")
        return await self.search_service.get_similar_properties(base, limit)

    # ============================================================
    # Map
    # ============================================================

    async def get_properties_in_bounds(
        self,
        bounds: MapBounds,
        filters: Optional[SearchFilters] = None,
        limit: int = 500,
    ) -> List[PropertyResult]:
        validate_bounds(bounds)
        predicate = build_predicate(filters or SearchFilters())
        limit = min(max(int(limit), 1), self.config.BOUNDS_MAX_LIMIT)

        key = filters_cache_key(BOUNDS, bounds=bounds, predicate=predicate, limit=limit)
        return await self.cache.get_or_load(
            BOUNDS, key,
            lambda: self.search_service.get_properties_in_bounds(bounds, predicate, limit),
        )

    async def cluster_properties(
        self,
        bounds: MapBounds,
        zoom: float,
        filters: Optional[SearchFilters] = None,
    ) -> List[PropertyCluster]:
        validate_bounds(bounds)
        predicate = build_predicate(filters or SearchFilters())
        zoom_level = int(math.floor(zoom))

        async def load() -> List[PropertyCluster]:
            properties = await self.search_service.get_properties_in_bounds(
                bounds, predicate, self.config.CLUSTER_FETCH_LIMIT,
            )
            return self.cluster_service.cluster(properties, bounds, zoom_level)

        key = filters_cache_key(CLUSTERS, bounds=bounds, predicate=predicate, zoom=zoom_level)
        return await self.cache.get_or_load(CLUSTERS, key, load)

    # ============================================================
    # Autocomplete
    # ============================================================

    async def get_autocomplete_suggestions(self, text: str) -> List[AutocompleteSuggestion]:
        return await self.autocomplete_service.suggest(text)


@dataclass
class ServiceContainer:
    store: PropertyStore
    cache: ResultCache
    discovery: PropertyDiscoveryService
    engagement: EngagementService


def create_store(config: Settings) -> PropertyStore:
    backend = config.PROPERTY_STORE.lower()
    if backend == "memory":
        from app.core.memory_store import InMemoryPropertyStore
        return InMemoryPropertyStore()
    if backend == "sql":
        from app.core.sql_property_store import SqlPropertyStore
        from app.db.base import SessionLocal
        return SqlPropertyStore(SessionLocal)
    raise ValueError(f"Unknown PROPERTY_STORE: {config.PROPERTY_STORE}")


def build_services(config: Settings, store: Optional[PropertyStore] = None) -> ServiceContainer:
    """Wire store, cache and services for one process."""
    store = store or create_store(config)
    cache = ResultCache.from_settings(config)
    logger.info(f"✅ Discovery services ready (store={type(store).__name__})")
    return ServiceContainer(
        store=store,
        cache=cache,
        discovery=PropertyDiscoveryService(store, cache, config),
        engagement=EngagementService(store, config),
    )
