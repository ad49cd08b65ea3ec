from pydantic import BaseModel
from typing import Optional, List, Dict, Any
from datetime import datetime


class FavoriteRequest(BaseModel):
    user_id: str
    property_id: str


class ToggleFavoriteResponse(BaseModel):
    property_id: str
    is_favorited: bool


class FavoriteLinkResponse(BaseModel):
    id: str
    user_id: str
    property_id: str
    created_at: datetime

    class Config:
        from_attributes = True


class FavoriteResponse(FavoriteLinkResponse):
    property: Optional[Dict[str, Any]] = None
    contacted: bool
    contacted_at: Optional[datetime] = None


class FavoritesListResponse(BaseModel):
    favorites: List[FavoriteResponse]
    total: int


class FavoriteSummaryResponse(BaseModel):
    total_favorites: int
    contacted_count: int
    not_contacted_count: int

    class Config:
        from_attributes = True
