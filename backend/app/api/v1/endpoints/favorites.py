"""
Favorites API.

The caller's user id comes from the session layer in front of this service
and is passed through as-is.
"""
from fastapi import APIRouter, Depends, Query

from app.api.deps import get_engagement, http_error
from app.core.engagement_service import EngagementService
from app.core.exceptions import DiscoveryError
from app.schemas.favorite import (
    FavoriteRequest, ToggleFavoriteResponse, FavoriteLinkResponse, FavoriteResponse,
    FavoritesListResponse, FavoriteSummaryResponse,
)

router = APIRouter()


@router.post("/toggle", response_model=ToggleFavoriteResponse)
async def toggle_favorite(
    request: FavoriteRequest,
    engagement: EngagementService = Depends(get_engagement),
):
    try:
        is_favorited = await engagement.toggle_favorite(request.user_id, request.property_id)
    except DiscoveryError as e:
        raise http_error(e)
    return ToggleFavoriteResponse(property_id=request.property_id, is_favorited=is_favorited)


@router.post("", response_model=FavoriteLinkResponse, status_code=201)
async def add_favorite(
    request: FavoriteRequest,
    engagement: EngagementService = Depends(get_engagement),
):
    try:
        link = await engagement.add_favorite(request.user_id, request.property_id)
    except DiscoveryError as e:
        raise http_error(e)
    return FavoriteLinkResponse.model_validate(link)


@router.delete("/{property_id}", status_code=204)
async def remove_favorite(
    property_id: str,
    user_id: str = Query(...),
    engagement: EngagementService = Depends(get_engagement),
):
    try:
        await engagement.remove_favorite(user_id, property_id)
    except DiscoveryError as e:
        raise http_error(e)


@router.get("", response_model=FavoritesListResponse)
async def list_favorites(
    user_id: str = Query(...),
    engagement: EngagementService = Depends(get_engagement),
):
    """Saved listings, newest first, each flagged if the user already contacted it."""
    try:
        favorites = await engagement.list_favorites(user_id)
    except DiscoveryError as e:
        raise http_error(e)
    return FavoritesListResponse(
        favorites=[FavoriteResponse.model_validate(f) for f in favorites],
        total=len(favorites),
    )


@router.get("/summary", response_model=FavoriteSummaryResponse)
async def favorites_summary(
    user_id: str = Query(...),
    engagement: EngagementService = Depends(get_engagement),
):
    try:
        summary = await engagement.favorites_summary(user_id)
    except DiscoveryError as e:
        raise http_error(e)
    return FavoriteSummaryResponse.model_validate(summary)
