"""Request-scoped access to the services built in the app lifespan."""

from fastapi import HTTPException, Request

from app.core.discovery_service import PropertyDiscoveryService, ServiceContainer
from app.core.engagement_service import EngagementService
from app.core.exceptions import (
    DiscoveryError, ValidationError, SearchUnavailable, NotFound, Conflict,
)


ERROR_STATUS = {
    ValidationError: 400,
    NotFound: 404,
    Conflict: 409,
    SearchUnavailable: 503,
}


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_discovery(request: Request) -> PropertyDiscoveryService:
    return get_services(request).discovery


def get_engagement(request: Request) -> EngagementService:
    return get_services(request).engagement


def http_error(error: DiscoveryError) -> HTTPException:
    """Map a discovery error onto the HTTP status the client acts on."""
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(error, error_type)),
        500,
    )
    if status_code == 503:
        return HTTPException(
            status_code=503,
            detail="Search is temporarily unavailable, please retry",
            headers={"Retry-After": "5"},
        )
    return HTTPException(status_code=status_code, detail=str(error))
