"""
Search filter compilation.

Turns a raw SearchFilters value (as sent by the listing page, the map view or
the nearby search) into a CompiledQuery:

1. Routing mode - bounded viewport, radius around a point, or plain listing
2. Normalized predicate - clamped price range, de-duplicated sets
3. Sort mode + keyset position decoded from the pagination cursor
4. Canonical cache key - identical filters always produce the same key,
   whatever order the client built them in

Compilation is pure: no store access, no clock.
"""

import hashlib
import json
import logging
import unicodedata
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any, Tuple

from shapely.geometry import Point, Polygon, box

from app.core.config import Settings, settings as default_settings
from app.core.cursor import decode_cursor, encode_cursor
from app.core.exceptions import ValidationError

logger = logging.getLogger(__name__)


class PropertyType(str, Enum):
    APARTMENT = "apartment"
    HOUSE = "house"
    ROOM = "room"
    OFFICE = "office"


PROPERTY_TYPE_VALUES = {t.value for t in PropertyType}

# Widest viewport accepted, per axis
MAX_BOUNDS_SPAN_DEGREES = 10.0


class SortMode(str, Enum):
    RELEVANCE = "relevance"
    PRICE_ASC = "price_asc"
    PRICE_DESC = "price_desc"
    RECENCY = "recency"
    DISTANCE = "distance"


class QueryMode(str, Enum):
    BOUNDED = "bounded"
    RADIUS = "radius"
    LISTING = "listing"


# The web client still sends the Spanish sort tokens
SORT_ALIASES = {
    "relevance": SortMode.RELEVANCE,
    "relevancia": SortMode.RELEVANCE,
    "price_asc": SortMode.PRICE_ASC,
    "price-asc": SortMode.PRICE_ASC,
    "precio_asc": SortMode.PRICE_ASC,
    "price_desc": SortMode.PRICE_DESC,
    "price-desc": SortMode.PRICE_DESC,
    "precio_desc": SortMode.PRICE_DESC,
    "recency": SortMode.RECENCY,
    "reciente": SortMode.RECENCY,
    "distance": SortMode.DISTANCE,
    "distancia": SortMode.DISTANCE,
}

# (row field, descending). Every ordering ends with id ascending as tiebreaker.
SORT_KEYS: Dict[SortMode, Tuple[Tuple[str, bool], ...]] = {
    SortMode.RELEVANCE: (("featured", True), ("created_at", True)),
    SortMode.PRICE_ASC: (("price_amount", False), ("created_at", True)),
    SortMode.PRICE_DESC: (("price_amount", True), ("created_at", True)),
    SortMode.RECENCY: (("created_at", True),),
    SortMode.DISTANCE: (("distance_km", False),),
}


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float

    def to_point(self) -> Point:
        return Point(self.lng, self.lat)  # shapely is (x, y) = (lng, lat)


@dataclass(frozen=True)
class MapBounds:
    """Rectangular viewport. East/west are treated as plain numbers."""
    north: float
    south: float
    east: float
    west: float

    def to_polygon(self) -> Polygon:
        return box(self.west, self.south, self.east, self.north)

    def contains(self, lat: float, lng: float) -> bool:
        return self.to_polygon().covers(Point(lng, lat))


@dataclass
class SearchFilters:
    """Raw search intent from a client. Nothing here is trusted yet."""
    location: Optional[str] = None
    bounds: Optional[MapBounds] = None
    center: Optional[GeoPoint] = None
    radius_km: Optional[float] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    bedrooms: List[int] = field(default_factory=list)
    property_types: List[str] = field(default_factory=list)
    amenities: List[str] = field(default_factory=list)
    sort_by: str = SortMode.RELEVANCE.value
    cursor: Optional[str] = None
    limit: Optional[int] = None


@dataclass(frozen=True)
class PropertyPredicate:
    """Storage-agnostic, non-geo restrictions."""
    text: Optional[str] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    bedrooms: Tuple[int, ...] = ()
    property_types: Tuple[str, ...] = ()
    amenities: Tuple[str, ...] = ()
    exclude_ids: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "price_min": self.price_min,
            "price_max": self.price_max,
            "bedrooms": list(self.bedrooms),
            "property_types": list(self.property_types),
            "amenities": list(self.amenities),
            "exclude_ids": list(self.exclude_ids),
        }


@dataclass(frozen=True)
class SortPosition:
    """Last-seen sort values (in SORT_KEYS order) plus the id tiebreaker."""
    values: Tuple[Any, ...]
    id: str


@dataclass(frozen=True)
class CompiledQuery:
    mode: QueryMode
    predicate: PropertyPredicate
    sort: SortMode
    limit: int
    cache_key: str
    fingerprint: str
    bounds: Optional[MapBounds] = None
    center: Optional[GeoPoint] = None
    radius_km: Optional[float] = None
    after: Optional[SortPosition] = None


def parse_sort_mode(value: Optional[str]) -> SortMode:
    if value is None or value == "":
        return SortMode.RELEVANCE
    if isinstance(value, SortMode):
        return value
    mode = SORT_ALIASES.get(str(value).strip().lower())
    if mode is None:
        raise ValidationError(f"Unknown sort mode: {value}")
    return mode


def ordering_key(values: Tuple[Any, ...], row_id: str, sort: SortMode) -> Tuple:
    """
    Map sort values onto a tuple that orders ascending in result order.

    Descending components are inverted so one plain tuple comparison decides
    whether a row comes before or after a cursor position.
    """
    key: List[Any] = []
    for (_, descending), value in zip(SORT_KEYS[sort], values):
        if isinstance(value, datetime):
            value = value.timestamp()
        elif isinstance(value, bool):
            value = int(value)
        elif value is None:
            value = 0.0
        key.append(-value if descending else value)
    key.append(str(row_id))
    return tuple(key)


def serialize_sort_values(values: Tuple[Any, ...]) -> List[Any]:
    return [v.isoformat() if isinstance(v, datetime) else v for v in values]


def deserialize_sort_values(sort: SortMode, raw: List[Any]) -> Tuple[Any, ...]:
    fields = SORT_KEYS[sort]
    if len(raw) != len(fields):
        raise ValueError("sort value count mismatch")
    values = []
    for (name, _), value in zip(fields, raw):
        if name == "created_at":
            value = datetime.fromisoformat(value)
        elif name == "featured":
            value = bool(value)
        elif value is not None:
            value = float(value)
        values.append(value)
    return tuple(values)


def encode_position(
    position: SortPosition, sort: SortMode, fingerprint: str, config: Settings = default_settings
) -> str:
    return encode_cursor(
        sort=sort.value,
        fingerprint=fingerprint,
        values=serialize_sort_values(position.values),
        row_id=position.id,
        secret=config.SECRET_KEY,
        algorithm=config.ALGORITHM,
    )


def decode_position(
    token: str, sort: SortMode, fingerprint: str, config: Settings = default_settings
) -> Optional[SortPosition]:
    decoded = decode_cursor(
        token,
        sort=sort.value,
        fingerprint=fingerprint,
        secret=config.SECRET_KEY,
        algorithm=config.ALGORITHM,
    )
    if decoded is None:
        return None
    raw_values, row_id = decoded
    try:
        values = deserialize_sort_values(sort, raw_values)
    except (TypeError, ValueError):
        logger.info("Ignoring cursor with malformed sort values")
        return None
    return SortPosition(values=values, id=row_id)


def fold_text(text: str) -> str:
    """Lowercase and strip accents so 'Habitación' matches 'habitacion'."""
    decomposed = unicodedata.normalize("NFKD", (text or "").lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def _stable_hash(document: Dict[str, Any]) -> str:
    payload = json.dumps(document, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _unique_sorted(items, cast) -> Tuple:
    cleaned = set()
    for item in items or []:
        if item is None:
            continue
        value = cast(item)
        if isinstance(value, str):
            value = value.strip().lower()
            if not value:
                continue
        cleaned.add(value)
    return tuple(sorted(cleaned))


def _normalize_prices(
    price_min: Optional[float], price_max: Optional[float]
) -> Tuple[Optional[float], Optional[float]]:
    low = max(0.0, float(price_min)) if price_min is not None else None
    high = max(0.0, float(price_max)) if price_max is not None else None
    if low is not None and high is not None and high < low:
        high = low
    return low, high


def build_predicate(filters: SearchFilters, exclude_ids: Tuple[str, ...] = ()) -> PropertyPredicate:
    price_min, price_max = _normalize_prices(filters.price_min, filters.price_max)

    property_types = _unique_sorted(filters.property_types, str)
    for property_type in property_types:
        if property_type not in PROPERTY_TYPE_VALUES:
            raise ValidationError(f"Unknown property type: {property_type}")

    text = (filters.location or "").strip().lower() or None

    return PropertyPredicate(
        text=text,
        price_min=price_min,
        price_max=price_max,
        bedrooms=_unique_sorted(filters.bedrooms, int),
        property_types=property_types,
        amenities=_unique_sorted(filters.amenities, str),
        exclude_ids=tuple(sorted(set(exclude_ids))),
    )


def validate_bounds(bounds: MapBounds) -> MapBounds:
    if bounds.north <= bounds.south:
        raise ValidationError("Invalid map bounds: north must be greater than south")
    if bounds.north - bounds.south > MAX_BOUNDS_SPAN_DEGREES or bounds.east - bounds.west > MAX_BOUNDS_SPAN_DEGREES:
        raise ValidationError(
            f"Map bounds too large: maximum range is {MAX_BOUNDS_SPAN_DEGREES:g} degrees in any direction"
        )
    return bounds


def compile_filters(
    filters: SearchFilters,
    config: Settings = default_settings,
) -> CompiledQuery:
    """Validate, normalize and route a SearchFilters value."""
    if filters.bounds is not None and filters.center is not None:
        raise ValidationError("Map bounds and radius search cannot be combined")

    bounds = validate_bounds(filters.bounds) if filters.bounds is not None else None

    sort = parse_sort_mode(filters.sort_by)
    predicate = build_predicate(filters)

    center = None
    radius_km = None
    if filters.center is not None:
        mode = QueryMode.RADIUS
        center = filters.center
        radius_km = filters.radius_km if filters.radius_km is not None else config.DEFAULT_RADIUS_KM
        radius_km = min(max(float(radius_km), config.MIN_RADIUS_KM), config.MAX_RADIUS_KM)
        if sort == SortMode.RELEVANCE:
            sort = SortMode.DISTANCE
    elif bounds is not None:
        mode = QueryMode.BOUNDED
    else:
        mode = QueryMode.LISTING

    if sort == SortMode.DISTANCE and mode != QueryMode.RADIUS:
        sort = SortMode.RELEVANCE

    limit = filters.limit if filters.limit is not None else config.SEARCH_DEFAULT_LIMIT
    limit = min(max(int(limit), 1), config.SEARCH_MAX_LIMIT)

    shape_document = {
        "mode": mode.value,
        "predicate": predicate.to_dict(),
        "sort": sort.value,
        "bounds": [bounds.north, bounds.south, bounds.east, bounds.west] if bounds else None,
        "center": [center.lat, center.lng] if center else None,
        "radius_km": radius_km,
    }
    fingerprint = _stable_hash(shape_document)[:16]

    after = None
    if filters.cursor:
        after = decode_position(filters.cursor, sort, fingerprint, config)

    cache_key = f"{mode.value}:" + _stable_hash({
        **shape_document,
        "limit": limit,
        "after": serialize_sort_values(after.values) + [after.id] if after else None,
    })

    return CompiledQuery(
        mode=mode,
        predicate=predicate,
        sort=sort,
        limit=limit,
        cache_key=cache_key,
        fingerprint=fingerprint,
        bounds=bounds,
        center=center,
        radius_km=radius_km,
        after=after,
    )


def filters_cache_key(prefix: str, **parts: Any) -> str:
    """Canonical key for the secondary read paths (bounds, clusters, facets)."""
    normalized = {}
    for name, value in parts.items():
        if isinstance(value, (MapBounds, GeoPoint)):
            value = asdict(value)
        elif isinstance(value, PropertyPredicate):
            value = value.to_dict()
        normalized[name] = value
    return f"{prefix}:" + _stable_hash(normalized)
