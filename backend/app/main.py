import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.core.config import Settings, settings
from app.core.discovery_service import build_services
from app.core.property_store import PropertyStore
from app.api.v1.router import api_router

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_tables() -> None:
    from sqlalchemy import text
    from app.db.base import Base, engine
    from app import models  # noqa: F401  registers every table on Base.metadata

    with engine.begin() as conn:
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS postgis"))
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS unaccent"))
    Base.metadata.create_all(bind=engine)
    logger.info("✅ Database tables ready")


def create_app(config: Settings = settings, store: Optional[PropertyStore] = None) -> FastAPI:
    """
    Build the API. Services are wired once in the lifespan and shared through
    app.state; pass `store` to run against a different query interface.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if store is None and config.PROPERTY_STORE == "sql" and config.AUTO_CREATE_TABLES:
            create_tables()
        app.state.services = build_services(config, store=store)
        yield
        app.state.services.cache.clear()

    app = FastAPI(
        title="Heurekka Discovery API",
        description="Rental property search, map clustering and engagement tracking",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
        max_age=3600,
    )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"detail": str(exc) if config.ENVIRONMENT == "development" else "Internal server error"},
            headers={"Access-Control-Allow-Origin": "*"},
        )

    @app.get("/")
    def root():
        return {"message": "Heurekka Discovery API", "version": "1.0.0"}

    @app.get("/health")
    def health_check(request: Request):
        return {
            "status": "healthy",
            "store": type(request.app.state.services.store).__name__,
            "cache": request.app.state.services.cache.stats(),
        }

    app.include_router(api_router, prefix=config.API_V1_PREFIX)
    return app


app = create_app()
