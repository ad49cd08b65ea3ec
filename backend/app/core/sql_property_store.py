"""
PostgreSQL + PostGIS PropertyStore.

Blocking SQLAlchemy sessions run in worker threads (asyncio.to_thread), one
session per store call. Geo predicates are pushed down to PostGIS:

- Viewport: ST_Covers(<viewport polygon>, location)
- Radius: ST_DWithin(location, <center>, meters), distance via ST_Distance

Both use the GiST index on properties.location. Keyset pagination is the
usual OR-expansion over the sort columns with id as the final tiebreaker.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Optional, List, Dict, Any, Iterable, Callable, Tuple

from sqlalchemy import select, update, delete, func, and_, or_, case, exists, literal
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.core.exceptions import DuplicateFavorite, StoreError, ValidationError
from app.core.property_store import (
    PropertyStore, StorePage, FacetCounts, NeighborhoodMatch, Counter,
    PropertyViewEvent, PropertyContactEvent, FavoriteLink,
    to_bounds_row, to_radius_row,
)
from app.core.search_filters import (
    PropertyPredicate, MapBounds, SortMode, SortPosition, SORT_KEYS, fold_text,
)
from app.models.engagement import PropertyView as PropertyViewRow
from app.models.engagement import PropertyContactEvent as PropertyContactRow
from app.models.favorite import PropertyFavorite
from app.models.neighborhood import Neighborhood
from app.models.property import Property

logger = logging.getLogger(__name__)


def _uuid(value: Any) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def _geog(wkt: str):
    return func.ST_GeogFromText(f"SRID=4326;{wkt}")


def property_to_row(prop: Property) -> Dict[str, Any]:
    """Flatten a Property (with images and landlord loaded) to a store row."""
    return {
        "id": str(prop.id),
        "title": prop.title,
        "description": prop.description or "",
        "type": prop.type,
        "status": prop.status,
        "featured": bool(prop.featured),
        "address": prop.address,
        "neighborhood": prop.neighborhood,
        "city": prop.city,
        "latitude": prop.latitude,
        "longitude": prop.longitude,
        "price_amount": float(prop.price_amount) if prop.price_amount is not None else 0.0,
        "currency": prop.currency,
        "price_period": prop.price_period,
        "bedrooms": prop.bedrooms,
        "bathrooms": prop.bathrooms,
        "area_sqm": float(prop.area_sqm) if prop.area_sqm is not None else None,
        "amenities": list(prop.amenities or []),
        "images": [
            {
                "id": str(img.id),
                "image_url": img.image_url,
                "alt_text": img.alt_text,
                "is_primary": img.is_primary,
                "display_order": img.display_order,
            }
            for img in prop.images
        ],
        "landlord_id": str(prop.landlord_id) if prop.landlord_id else None,
        "landlord_name": prop.landlord.full_name if prop.landlord is not None else None,
        "view_count": prop.view_count,
        "favorite_count": prop.favorite_count,
        "contact_count": prop.contact_count,
        "created_at": prop.created_at,
        "updated_at": prop.updated_at,
    }


class SqlPropertyStore(PropertyStore):
    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    async def _run(self, operation: str, fn: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.to_thread(self._in_session, operation, fn, *args)

    def _in_session(self, operation: str, fn: Callable[..., Any], *args: Any) -> Any:
        db = self.session_factory()
        try:
            return fn(db, *args)
        except StoreError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"❌ {operation} failed: {e}")
            raise StoreError(f"{operation} failed") from e
        finally:
            db.close()

    # ============================================================
    # Query building
    # ============================================================

    def _filtered(self, predicate: PropertyPredicate) -> List[Any]:
        conditions = [Property.status == 'active']

        excluded = [u for u in (_uuid(i) for i in predicate.exclude_ids) if u is not None]
        if excluded:
            conditions.append(Property.id.notin_(excluded))
        if predicate.price_min is not None:
            conditions.append(Property.price_amount >= predicate.price_min)
        if predicate.price_max is not None:
            conditions.append(Property.price_amount <= predicate.price_max)
        if predicate.bedrooms:
            conditions.append(Property.bedrooms.in_(predicate.bedrooms))
        if predicate.property_types:
            conditions.append(Property.type.in_(predicate.property_types))
        if predicate.amenities:
            conditions.append(Property.amenities.contains(list(predicate.amenities)))
        if predicate.text:
            conditions.append(or_(
                Property.title.icontains(predicate.text, autoescape=True),
                Property.description.icontains(predicate.text, autoescape=True),
                Property.neighborhood.icontains(predicate.text, autoescape=True),
            ))
        return conditions

    def _bounds_condition(self, bounds: MapBounds):
        return func.ST_Covers(_geog(bounds.to_polygon().wkt), Property.location)

    def _sort_columns(self, sort: SortMode, distance=None) -> List[Tuple[Any, bool]]:
        columns = {
            "featured": Property.featured,
            "created_at": Property.created_at,
            "price_amount": Property.price_amount,
            "distance_km": distance,
        }
        return [(columns[name], descending) for name, descending in SORT_KEYS[sort]]

    def _keyset(self, columns: List[Tuple[Any, bool]], after: SortPosition):
        """Rows strictly after `after` in result order."""
        after_id = _uuid(after.id)
        keys = columns + [(Property.id, False)]
        values = list(after.values) + [after_id]

        branches = []
        for i, (column, descending) in enumerate(keys):
            equal = [keys[j][0] == values[j] for j in range(i)]
            beyond = column < values[i] if descending else column > values[i]
            branches.append(and_(*equal, beyond))
        return or_(*branches)

    def _order_by(self, columns: List[Tuple[Any, bool]]) -> List[Any]:
        return [c.desc() if descending else c.asc() for c, descending in columns] + [Property.id.asc()]

    def _page(
        self,
        db: Session,
        conditions: List[Any],
        sort: SortMode,
        after: Optional[SortPosition],
        limit: int,
        distance=None,
    ) -> Tuple[List[Tuple[Property, Optional[float]]], int]:
        total = db.execute(select(func.count(Property.id)).where(*conditions)).scalar_one()

        columns = self._sort_columns(sort, distance)
        paged = list(conditions)
        if after is not None and _uuid(after.id) is not None:
            paged.append(self._keyset(columns, after))

        selected = [Property] if distance is None else [Property, distance.label("distance_km")]
        stmt = (
            select(*selected)
            .options(selectinload(Property.images), selectinload(Property.landlord))
            .where(*paged)
            .order_by(*self._order_by(columns))
            .limit(limit)
        )
        result = db.execute(stmt).all()
        rows = [(r[0], float(r[1]) if distance is not None else None) for r in result]
        return rows, total

    # ============================================================
    # Search
    # ============================================================

    async def list_properties(self, predicate, sort, after, limit) -> StorePage:
        def query(db: Session) -> StorePage:
            rows, total = self._page(db, self._filtered(predicate), sort, after, limit)
            return StorePage(rows=[property_to_row(p) for p, _ in rows], total=total)

        return await self._run("listing query", query)

    async def find_in_bounds(self, bounds, predicate, sort, after, limit) -> StorePage:
        def query(db: Session) -> StorePage:
            conditions = self._filtered(predicate) + [self._bounds_condition(bounds)]
            rows, total = self._page(db, conditions, sort, after, limit)
            return StorePage(rows=[to_bounds_row(property_to_row(p)) for p, _ in rows], total=total)

        return await self._run("bounds query", query)

    async def find_within_radius(self, center, radius_km, predicate, sort, after, limit) -> StorePage:
        def query(db: Session) -> StorePage:
            origin = _geog(center.to_point().wkt)
            distance = func.ST_Distance(Property.location, origin) / 1000.0
            conditions = self._filtered(predicate) + [
                func.ST_DWithin(Property.location, origin, radius_km * 1000.0)
            ]
            rows, total = self._page(db, conditions, sort, after, limit, distance=distance)
            return StorePage(
                rows=[to_radius_row(property_to_row(p), d) for p, d in rows],
                total=total,
            )

        return await self._run("radius query", query)

    async def get_property(self, property_id: str) -> Optional[Dict[str, Any]]:
        pid = _uuid(property_id)
        if pid is None:
            return None

        def query(db: Session) -> Optional[Dict[str, Any]]:
            prop = db.execute(
                select(Property)
                .options(selectinload(Property.images), selectinload(Property.landlord))
                .where(Property.id == pid, Property.status == 'active')
            ).scalar_one_or_none()
            return property_to_row(prop) if prop is not None else None

        return await self._run("property detail", query)

    async def property_exists(self, property_id: str) -> bool:
        pid = _uuid(property_id)
        if pid is None:
            return False

        def query(db: Session) -> bool:
            return db.execute(select(exists().where(Property.id == pid))).scalar()

        return await self._run("property lookup", query)

    async def facet_counts(self, predicate, bounds, price_edges, center=None, radius_km=None) -> FacetCounts:
        def query(db: Session) -> FacetCounts:
            conditions = self._filtered(predicate)
            if bounds is not None:
                conditions.append(self._bounds_condition(bounds))
            if center is not None:
                origin = _geog(center.to_point().wkt)
                conditions.append(func.ST_DWithin(Property.location, origin, radius_km * 1000.0))

            facets = FacetCounts()
            for name, count in db.execute(
                select(Property.neighborhood, func.count())
                .where(*conditions, Property.neighborhood.isnot(None))
                .group_by(Property.neighborhood)
            ):
                facets.neighborhoods[name] = count
            for name, count in db.execute(
                select(Property.type, func.count()).where(*conditions).group_by(Property.type)
            ):
                facets.property_types[name] = count

            amenity = func.unnest(Property.amenities).label("amenity")
            inner = select(amenity).where(*conditions).subquery()
            for name, count in db.execute(
                select(inner.c.amenity, func.count()).group_by(inner.c.amenity)
            ):
                facets.amenities[name] = count

            bracket = self._price_bracket(price_edges)
            for label, count in db.execute(
                select(bracket, func.count()).where(*conditions).group_by(bracket)
            ):
                facets.price_brackets[label] = count
            return facets

        return await self._run("facet counts", query)

    def _price_bracket(self, edges: List[int]):
        ordered = sorted(edges)
        if not ordered:
            return literal("all").label("bracket")
        whens = [(Property.price_amount < ordered[0], f"<{ordered[0]}")]
        for low, high in zip(ordered, ordered[1:]):
            whens.append((Property.price_amount < high, f"{low}-{high}"))
        return case(*whens, else_=f"{ordered[-1]}+").label("bracket")

    async def match_neighborhoods(self, text: str, limit: int) -> List[NeighborhoodMatch]:
        def query(db: Session) -> List[NeighborhoodMatch]:
            found = db.execute(
                select(Neighborhood)
                .where(func.unaccent(func.lower(Neighborhood.name)).contains(fold_text(text), autoescape=True))
                .order_by(Neighborhood.properties_count.desc(), Neighborhood.name.asc())
                .limit(limit)
            ).scalars().all()
            return [
                NeighborhoodMatch(id=str(n.id), name=n.name, properties_count=n.properties_count, city=n.city)
                for n in found
            ]

        return await self._run("neighborhood match", query)

    # ============================================================
    # Engagement
    # ============================================================

    async def increment_counter(self, property_id: str, counter: Counter, delta: int) -> bool:
        pid = _uuid(property_id)
        if pid is None:
            return False

        def query(db: Session) -> bool:
            column = getattr(Property, counter.value)
            result = db.execute(
                update(Property)
                .where(Property.id == pid)
                .values({column: case((column + delta < 0, 0), else_=column + delta)})
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount > 0

        return await self._run(f"{counter.value} delta", query)

    async def record_view(self, event: PropertyViewEvent) -> None:
        def query(db: Session) -> None:
            db.add(PropertyViewRow(
                property_id=_uuid(event.property_id),
                user_id=_uuid(event.user_id) if event.user_id else None,
                session_id=event.session_id,
                source=event.source,
            ))
            db.commit()

        await self._run("record view", query)

    async def record_contact(self, event: PropertyContactEvent) -> None:
        def query(db: Session) -> None:
            db.add(PropertyContactRow(
                property_id=_uuid(event.property_id),
                user_id=_uuid(event.user_id) if event.user_id else None,
                session_id=event.session_id,
                contact_method=event.contact_method.value,
                phone_number=event.phone_number,
                success=event.success,
                error_message=event.error_message,
                source=event.source,
            ))
            db.commit()

        await self._run("record contact", query)

    # ============================================================
    # Favorites
    # ============================================================

    async def favorite_exists(self, user_id: str, property_id: str) -> bool:
        uid, pid = _uuid(user_id), _uuid(property_id)
        if uid is None or pid is None:
            return False

        def query(db: Session) -> bool:
            return db.execute(select(exists().where(
                PropertyFavorite.user_id == uid, PropertyFavorite.property_id == pid,
            ))).scalar()

        return await self._run("favorite lookup", query)

    async def insert_favorite(self, user_id: str, property_id: str) -> FavoriteLink:
        uid, pid = _uuid(user_id), _uuid(property_id)
        if uid is None or pid is None:
            raise ValidationError(f"Invalid favorite ids: {user_id}/{property_id}")

        def query(db: Session) -> FavoriteLink:
            favorite = PropertyFavorite(user_id=uid, property_id=pid)
            db.add(favorite)
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                if "uq_property_favorite" in str(e.orig):
                    raise DuplicateFavorite(f"Favorite already exists: {user_id}/{property_id}") from e
                raise StoreError(f"Favorite insert rejected: {e.orig}") from e
            db.refresh(favorite)
            return FavoriteLink(
                id=str(favorite.id),
                user_id=str(favorite.user_id),
                property_id=str(favorite.property_id),
                created_at=favorite.created_at,
            )

        return await self._run("favorite insert", query)

    async def delete_favorite(self, user_id: str, property_id: str) -> bool:
        uid, pid = _uuid(user_id), _uuid(property_id)
        if uid is None or pid is None:
            return False

        def query(db: Session) -> bool:
            result = db.execute(
                delete(PropertyFavorite).where(
                    PropertyFavorite.user_id == uid, PropertyFavorite.property_id == pid,
                )
            )
            db.commit()
            return result.rowcount > 0

        return await self._run("favorite delete", query)

    async def list_favorites(self, user_id: str) -> List[FavoriteLink]:
        uid = _uuid(user_id)
        if uid is None:
            return []

        def query(db: Session) -> List[FavoriteLink]:
            favorites = db.execute(
                select(PropertyFavorite)
                .options(
                    selectinload(PropertyFavorite.property).selectinload(Property.images),
                    selectinload(PropertyFavorite.property).selectinload(Property.landlord),
                )
                .where(PropertyFavorite.user_id == uid)
                .order_by(PropertyFavorite.created_at.desc())
            ).scalars().all()
            return [
                FavoriteLink(
                    id=str(f.id),
                    user_id=str(f.user_id),
                    property_id=str(f.property_id),
                    created_at=f.created_at,
                    property=property_to_row(f.property) if f.property is not None else None,
                )
                for f in favorites
            ]

        return await self._run("favorites list", query)

    async def contacted_property_ids(
        self, user_id: str, property_ids: Iterable[str]
    ) -> Dict[str, datetime]:
        uid = _uuid(user_id)
        pids = [u for u in (_uuid(p) for p in property_ids) if u is not None]
        if uid is None or not pids:
            return {}

        def query(db: Session) -> Dict[str, datetime]:
            result = db.execute(
                select(PropertyContactRow.property_id, func.min(PropertyContactRow.created_at))
                .where(
                    PropertyContactRow.user_id == uid,
                    PropertyContactRow.success.is_(True),
                    PropertyContactRow.property_id.in_(pids),
                )
                .group_by(PropertyContactRow.property_id)
            )
            return {str(pid): first_at for pid, first_at in result}

        return await self._run("contacted lookup", query)
