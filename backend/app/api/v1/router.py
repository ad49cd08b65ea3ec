from fastapi import APIRouter
from app.api.v1.endpoints import properties, favorites

api_router = APIRouter()

api_router.include_router(properties.router, prefix="/properties", tags=["properties"])
api_router.include_router(favorites.router, prefix="/favorites", tags=["favorites"])
