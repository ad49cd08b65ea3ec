# Core models
from app.models.user import User
from app.models.property import Property, PropertyImage
from app.models.favorite import PropertyFavorite
from app.models.engagement import PropertyView, PropertyContactEvent
from app.models.neighborhood import Neighborhood

__all__ = [
    "User",
    "Property",
    "PropertyImage",
    "PropertyFavorite",
    "PropertyView",
    "PropertyContactEvent",
    "Neighborhood",
]
