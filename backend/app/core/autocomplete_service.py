"""
Search box autocomplete.

Neighborhood names first (most listings first), then - for longer queries,
which usually describe what the tenant wants rather than where - shortcuts
that jump straight to a property-type filter.

Autocomplete must never get in the way of typing: any failure returns [].
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Any, Optional

from app.core.config import Settings
from app.core.property_store import PropertyStore
from app.core.result_cache import ResultCache, AUTOCOMPLETE
from app.core.search_filters import fold_text

logger = logging.getLogger(__name__)


class SuggestionType(str, Enum):
    LOCATION = "location"
    PROPERTY = "property"
    FILTER = "filter"


@dataclass
class AutocompleteSuggestion:
    id: str
    text: str
    type: SuggestionType
    icon: str
    subtitle: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


PROPERTY_TYPE_SHORTCUTS = [
    {
        "key": "apartment",
        "label": "Apartamentos",
        "keywords": ["apartamento", "apartment", "apto", "depa"],
    },
    {
        "key": "house",
        "label": "Casas",
        "keywords": ["casa", "house", "home"],
    },
    {
        "key": "room",
        "label": "Habitaciones",
        "keywords": ["habitacion", "cuarto", "room"],
    },
    {
        "key": "office",
        "label": "Oficinas",
        "keywords": ["oficina", "office", "local"],
    },
]


class AutocompleteService:
    def __init__(self, store: PropertyStore, config: Settings, cache: Optional[ResultCache] = None):
        self.store = store
        self.cache = cache
        self.min_length = config.AUTOCOMPLETE_MIN_LENGTH
        self.filter_min_length = config.AUTOCOMPLETE_FILTER_MIN_LENGTH
        self.max_suggestions = config.AUTOCOMPLETE_MAX_SUGGESTIONS
        self.timeout = config.STORE_TIMEOUT_SECONDS

    async def suggest(self, text: str) -> List[AutocompleteSuggestion]:
        """Ranked suggestions for partial input. Never raises."""
        query = " ".join((text or "").split())
        if len(query) < self.min_length:
            return []

        # The folded text is both the cache key and what the store matches on
        folded = fold_text(query)
        try:
            if self.cache is None:
                return await self._rank(folded)
            return await self.cache.get_or_load(AUTOCOMPLETE, folded, lambda: self._rank(folded))
        except Exception as e:
            logger.warning(f"Autocomplete unavailable for '{query}': {e}")
            return []

    async def _rank(self, query: str) -> List[AutocompleteSuggestion]:
        neighborhoods = await asyncio.wait_for(
            self.store.match_neighborhoods(query, self.max_suggestions),
            timeout=self.timeout,
        )

        neighborhoods = sorted(neighborhoods, key=lambda n: (-n.properties_count, n.name))
        suggestions = [
            AutocompleteSuggestion(
                id=f"neighborhood-{n.id}",
                text=n.name,
                type=SuggestionType.LOCATION,
                icon="map-pin",
                subtitle=f"{n.properties_count} propiedades",
                metadata={"propertyCount": n.properties_count, "type": "neighborhood"},
            )
            for n in neighborhoods
        ]

        if len(query) >= self.filter_min_length:
            suggestions.extend(self._filter_shortcuts(query))

        return suggestions[:self.max_suggestions]

    def _filter_shortcuts(self, query: str) -> List[AutocompleteSuggestion]:
        shortcuts = []
        for shortcut in PROPERTY_TYPE_SHORTCUTS:
            if not any(keyword in query for keyword in shortcut["keywords"]):
                continue
            shortcuts.append(AutocompleteSuggestion(
                id=f"type-{shortcut['key']}",
                text=shortcut["label"],
                type=SuggestionType.FILTER,
                icon="home",
                subtitle=f"Buscar {shortcut['label'].lower()}",
                metadata={"filterType": "propertyType", "filterValue": shortcut["key"]},
            ))
        return shortcuts
