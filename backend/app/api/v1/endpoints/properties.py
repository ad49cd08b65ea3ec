"""
Properties API - discovery read paths and engagement tracking.

Search, map and detail reads return 503 when the store is unavailable, never
an empty result. Autocomplete and tracking never fail the request.
"""
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from typing import List, Optional
import logging

from app.api.deps import get_discovery, get_engagement, http_error
from app.core.discovery_service import PropertyDiscoveryService
from app.core.engagement_service import EngagementService
from app.core.exceptions import DiscoveryError
from app.core.property_store import PropertyViewEvent, PropertyContactEvent
from app.core.search_service import SearchResults
from app.schemas.property import (
    SearchRequest, NearbySearchRequest, BoundsRequest, ClusterRequest,
    SearchResponse, PropertyResponse, FacetSummaryResponse, ClusterResponse,
    AutocompleteResponse, AutocompleteSuggestionResponse,
    ViewEventRequest, ContactEventRequest, TrackingAccepted,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def search_to_response(results: SearchResults) -> SearchResponse:
    return SearchResponse(
        properties=[PropertyResponse.model_validate(p) for p in results.properties],
        total=results.total,
        facets=FacetSummaryResponse.model_validate(results.facets),
        next_cursor=results.next_cursor,
        has_more=results.next_cursor is not None,
        mode=results.mode.value,
    )


# ============================================================
# Search
# ============================================================

@router.post("/search", response_model=SearchResponse)
async def search_properties(
    request: SearchRequest,
    discovery: PropertyDiscoveryService = Depends(get_discovery),
):
    """
    Search listings.

    - bounds: everything inside the map viewport
    - center (+ radius_km): everything within the radius, nearest first
    - neither: filtered listing
    """
    try:
        results = await discovery.search(request.to_search_filters())
    except DiscoveryError as e:
        raise http_error(e)
    return search_to_response(results)


@router.post("/nearby", response_model=SearchResponse)
async def search_nearby(
    request: NearbySearchRequest,
    discovery: PropertyDiscoveryService = Depends(get_discovery),
):
    """Radius search around a point. Distances are in km, one decimal."""
    try:
        results = await discovery.search(request.to_search_filters())
    except DiscoveryError as e:
        raise http_error(e)
    return search_to_response(results)


@router.post("/bounds", response_model=List[PropertyResponse])
async def get_properties_in_bounds(
    request: BoundsRequest,
    discovery: PropertyDiscoveryService = Depends(get_discovery),
):
    try:
        properties = await discovery.get_properties_in_bounds(
            request.bounds.to_bounds(),
            request.filters.to_filters() if request.filters else None,
            request.limit,
        )
    except DiscoveryError as e:
        raise http_error(e)
    return [PropertyResponse.model_validate(p) for p in properties]


@router.post("/clusters", response_model=List[ClusterResponse])
async def get_clusters(
    request: ClusterRequest,
    discovery: PropertyDiscoveryService = Depends(get_discovery),
):
    """Map pins for the viewport. Single properties come back as count-1 clusters."""
    try:
        clusters = await discovery.cluster_properties(
            request.bounds.to_bounds(),
            request.zoom,
            request.filters.to_filters() if request.filters else None,
        )
    except DiscoveryError as e:
        raise http_error(e)
    return [ClusterResponse.model_validate(c) for c in clusters]


@router.get("/autocomplete", response_model=AutocompleteResponse)
async def autocomplete(
    q: str = Query("", max_length=100),
    discovery: PropertyDiscoveryService = Depends(get_discovery),
):
    suggestions = await discovery.get_autocomplete_suggestions(q)
    return AutocompleteResponse(
        suggestions=[AutocompleteSuggestionResponse.model_validate(s) for s in suggestions]
    )


# ============================================================
# Detail
# ============================================================

@router.get("/{property_id}", response_model=PropertyResponse)
async def get_property(
    property_id: str,
    background_tasks: BackgroundTasks,
    user_id: Optional[str] = Query(None),
    session_id: Optional[str] = Query(None),
    source: str = Query("lista"),
    discovery: PropertyDiscoveryService = Depends(get_discovery),
    engagement: EngagementService = Depends(get_engagement),
):
    """Property detail. Opening a detail counts as a view."""
    try:
        prop = await discovery.get_property(property_id)
    except DiscoveryError as e:
        raise http_error(e)

    if prop is None:
        logger.info(f"Property not found: {property_id}")
        raise HTTPException(status_code=404, detail="Property not found")

    background_tasks.add_task(
        engagement.track_view,
        PropertyViewEvent(property_id=prop.id, user_id=user_id, session_id=session_id, source=source),
    )
    return PropertyResponse.model_validate(prop)


@router.get("/{property_id}/similar", response_model=List[PropertyResponse])
async def get_similar_properties(
    property_id: str,
    limit: int = Query(6, ge=1, le=20),
    discovery: PropertyDiscoveryService = Depends(get_discovery),
):
    """Same type, bedrooms within one, price within 30%."""
    try:
        similar = await discovery.get_similar(property_id, limit)
    except DiscoveryError as e:
        raise http_error(e)
    return [PropertyResponse.model_validate(p) for p in similar]


# ============================================================
# Engagement (fire-and-forget)
# ============================================================

@router.post("/{property_id}/views", response_model=TrackingAccepted, status_code=202)
async def track_view(
    property_id: str,
    request: ViewEventRequest,
    background_tasks: BackgroundTasks,
    engagement: EngagementService = Depends(get_engagement),
):
    background_tasks.add_task(
        engagement.track_view,
        PropertyViewEvent(
            property_id=property_id,
            user_id=request.user_id,
            session_id=request.session_id,
            source=request.source,
        ),
    )
    return TrackingAccepted()


@router.post("/{property_id}/contacts", response_model=TrackingAccepted, status_code=202)
async def track_contact(
    property_id: str,
    request: ContactEventRequest,
    background_tasks: BackgroundTasks,
    engagement: EngagementService = Depends(get_engagement),
):
    """Only successful contacts move the contact counter."""
    background_tasks.add_task(
        engagement.track_contact,
        PropertyContactEvent(
            property_id=property_id,
            contact_method=request.contact_method,
            success=request.success,
            user_id=request.user_id,
            session_id=request.session_id,
            phone_number=request.phone_number,
            error_message=request.error_message,
            source=request.source,
        ),
    )
    return TrackingAccepted()
