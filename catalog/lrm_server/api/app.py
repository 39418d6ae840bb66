"""
FastAPI application factory for the LRM catalog.

This module creates the FastAPI app with:
- Catalog store lifecycle (database, entity store, graph, query facade)
- Mapping of catalog error codes to HTTP statuses
- CORS configuration
- The /api/v1 routes

Request bodies are decoded into layer-attribute sets here and in routes.py;
the stores never see HTTP types.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .._version import __version__
from ..config import ServerConfig
from ..errors import CatalogError
from ..schema import TypeRegistry, get_registry
from ..store import Database, EntityStore, QueryFacade, RelationshipGraph
from .config import ApiSettings
from .routes import router

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    "UNKNOWN_KIND": 400,
    "VALIDATION_ERROR": 400,
    "NOT_FOUND": 404,
    "ENDPOINT_NOT_FOUND": 404,
    "TYPE_MISMATCH": 422,
    "CORRUPT_ENTITY": 500,
    "STORAGE_UNAVAILABLE": 503,
}


async def catalog_error_handler(request: Request, exc: CatalogError) -> JSONResponse:
    """Translate a catalog error into a JSON error response."""
    status_code = STATUS_BY_CODE.get(exc.code, 500)
    if status_code >= 500:
        logger.warning(
            f"{request.method} {request.url.path} failed: {exc.message}",
            extra={"code": exc.code},
        )
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": exc.code, "message": exc.message, "details": exc.details}},
        headers=headers,
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed request bodies use the same envelope as store validation errors."""
    return JSONResponse(
        status_code=400,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Malformed request",
                "details": {"errors": [str(e.get("msg")) for e in exc.errors()]},
            }
        },
    )


def create_app(
    config: ServerConfig | None = None,
    settings: ApiSettings | None = None,
    registry: TypeRegistry | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Server configuration (loaded from env if not provided)
        settings: HTTP settings (loaded from env if not provided)
        registry: Frozen type registry (the global LRM registry by default)
    """
    config = config or ServerConfig.from_env()
    settings = settings or ApiSettings()
    registry = registry or get_registry()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Open the catalog database and wire the stores."""
        db = Database(
            config.storage.database_path,
            registry,
            wal_mode=config.storage.wal_mode,
            busy_timeout_ms=config.storage.busy_timeout_ms,
            cache_size_pages=config.storage.cache_size_pages,
        )
        await db.initialize()

        entities = EntityStore(db, registry)
        graph = RelationshipGraph(
            db, entities, registry, batch_size=config.storage.traverse_batch_size
        )

        app.state.settings = settings
        app.state.registry = registry
        app.state.db = db
        app.state.entities = entities
        app.state.graph = graph
        app.state.queries = QueryFacade(entities, graph)

        logger.info(f"Catalog API ready on database {config.storage.database_path}")

        yield

    app = FastAPI(
        title="LRM Catalog",
        description="Bibliographic resources and their typed relationships.",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    app.add_exception_handler(CatalogError, catalog_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(router, prefix="/api/v1")

    return app
