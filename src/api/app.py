"""
FastAPI application for hybrid FAQ search.

Wraps the synchronous FAQSearchEngine with an async HTTP API.
The engine does blocking work (provider calls, FAISS, sqlite3), so
handlers use run_in_executor to avoid blocking the event loop.

Usage:
    from src.api.app import create_app
    app = create_app(Settings.from_env(db_path="data/faq.db"))

    # Or run directly:
    # uvicorn src.api.app:app --reload
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from functools import partial
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .middleware import RateLimitMiddleware, RequestLoggingMiddleware
from .models import (
    AnalyticsResponse,
    ClickRequest,
    ClickResponse,
    ErrorResponse,
    FAQListResponse,
    HealthResponse,
    SearchRequest,
    SearchResponse,
    StatsResponse,
)
from ..faqsearch import __version__
from ..faqsearch.components import Components, build_components
from ..faqsearch.config import Settings
from ..faqsearch.embeddings import FAQSearchEngine

logger = logging.getLogger(__name__)

# Global components (set during lifespan)
_components: Optional[Components] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build clients and load the vector index on startup."""
    global _components

    settings: Settings = app.state.settings
    logger.info(
        f"Loading FAQ search (db={settings.db_path}, index_dir={settings.index_dir})..."
    )

    # Load in a thread to avoid blocking the event loop during startup
    loop = asyncio.get_running_loop()
    _components = await loop.run_in_executor(None, build_components, settings)

    if _components.engine.health_check()["message"] == "ok":
        logger.info("FAQ search ready")
    else:
        logger.warning("FAQ search running in degraded mode (keyword-only)")

    yield

    logger.info("Shutting down FAQ search")
    _components.close()
    _components = None


def get_engine() -> FAQSearchEngine:
    """FastAPI dependency that returns the loaded search engine."""
    if _components is None:
        raise HTTPException(status_code=503, detail="Search engine not initialized")
    return _components.engine


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory.

    Args:
        settings: Runtime settings. Falls back to Settings.from_env(), which
            reads FAQ_DB_PATH, FAQ_INDEX_DIR, FAQ_CORS_ORIGINS,
            FAQ_RATE_LIMIT_RPM and the embedding variables. A
            rate_limit_rpm of 0 disables rate limiting.
    """
    settings = settings or Settings.from_env()

    app = FastAPI(
        title="FAQ Search API",
        description="Hybrid semantic + keyword search over the FAQ knowledge base",
        version=__version__,
        lifespan=lifespan,
        responses={
            400: {"model": ErrorResponse},
            404: {"model": ErrorResponse},
            429: {"model": ErrorResponse},
            500: {"model": ErrorResponse},
            503: {"model": ErrorResponse},
        },
    )

    # Store config on app state so lifespan can access it
    app.state.settings = settings

    # Middleware execution order (outermost first):
    #   Logging → CORS → RateLimit → App
    # add_middleware prepends, so we add in reverse order.
    if settings.rate_limit_rpm > 0:
        app.add_middleware(
            RateLimitMiddleware,
            requests_per_minute=settings.rate_limit_rpm,
            trusted_proxies=settings.trusted_proxies,
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(RequestLoggingMiddleware, trusted_proxies=settings.trusted_proxies)

    _register_routes(app)
    _register_exception_handlers(app)

    return app


# =========================================================================
# Route registration
# =========================================================================


def _register_routes(app: FastAPI) -> None:
    """Attach all route handlers to the app."""

    # -- Search endpoints -----------------------------------------------------

    @app.post("/api/search", response_model=SearchResponse)
    async def search(
        request: SearchRequest,
        engine: FAQSearchEngine = Depends(get_engine),
    ) -> SearchResponse:
        """
        Hybrid FAQ search.

        Semantic similarity blended with helpfulness, views and pinning,
        falling back to keyword matching when semantic search is
        unavailable or empty.
        """
        loop = asyncio.get_running_loop()
        try:
            internal = await loop.run_in_executor(
                None, partial(engine.search, **request.to_engine_kwargs())
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return SearchResponse.from_internal(internal)

    @app.post("/api/search/click", response_model=ClickResponse)
    async def record_click(
        request: ClickRequest,
        engine: FAQSearchEngine = Depends(get_engine),
    ) -> ClickResponse:
        """Record a click on a search result."""
        loop = asyncio.get_running_loop()
        found = await loop.run_in_executor(
            None,
            partial(engine.record_click, request.entry_id, request.position, query=request.query),
        )
        if not found:
            raise HTTPException(status_code=404, detail=f"FAQ entry {request.entry_id} not found")
        return ClickResponse(success=True)

    @app.get("/api/search/analytics", response_model=AnalyticsResponse)
    async def search_analytics(
        days: int = Query(7, ge=1, le=365),
        engine: FAQSearchEngine = Depends(get_engine),
    ) -> AnalyticsResponse:
        """Query volume, click-through and fallback rates over the last N days."""
        loop = asyncio.get_running_loop()
        raw = await loop.run_in_executor(None, engine.get_search_analytics, days)
        return AnalyticsResponse(**raw)

    @app.get("/api/search/suggested", response_model=FAQListResponse)
    async def suggested(
        category: Optional[str] = None,
        limit: int = Query(5, ge=1, le=100),
        engine: FAQSearchEngine = Depends(get_engine),
    ) -> FAQListResponse:
        """Pinned, then most clicked, then most viewed entries."""
        loop = asyncio.get_running_loop()
        results = await loop.run_in_executor(
            None, partial(engine.get_suggested, category=category, limit=limit)
        )
        return FAQListResponse.from_internal(results)

    @app.get("/api/search/trending", response_model=FAQListResponse)
    async def trending(
        days: int = Query(7, ge=1, le=90),
        limit: int = Query(10, ge=1, le=100),
        engine: FAQSearchEngine = Depends(get_engine),
    ) -> FAQListResponse:
        """Most viewed and most helpful entries changed in the last N days."""
        loop = asyncio.get_running_loop()
        results = await loop.run_in_executor(
            None, partial(engine.get_trending, days=days, limit=limit)
        )
        return FAQListResponse.from_internal(results)

    # -- Utility endpoints ----------------------------------------------------

    @app.get("/api/stats", response_model=StatsResponse)
    async def get_stats(
        engine: FAQSearchEngine = Depends(get_engine),
    ) -> StatsResponse:
        """Corpus coverage, vector index size and model."""
        loop = asyncio.get_running_loop()
        raw = await loop.run_in_executor(None, engine.get_stats)
        return StatsResponse.from_internal(raw)

    @app.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        if _components is None:
            return HealthResponse(
                status="unhealthy",
                message="Search engine not initialized",
                vector_index_loaded=False,
                provider_healthy=False,
            )

        loop = asyncio.get_running_loop()
        health = await loop.run_in_executor(None, _components.engine.health_check)

        if not health["healthy"]:
            status = "unhealthy"
        elif health["message"] != "ok":
            status = "degraded"
        else:
            status = "healthy"

        return HealthResponse(
            status=status,
            message=health["message"],
            vector_index_loaded=bool(health["vector_index"].get("vector_count")),
            provider_healthy=bool(health["provider"].get("healthy")),
        )


# =========================================================================
# Exception handlers
# =========================================================================

_STATUS_CODES = {
    400: "VALIDATION_ERROR",
    404: "NOT_FOUND",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "code": _STATUS_CODES.get(exc.status_code, "UNKNOWN_ERROR"),
                    "message": exc.detail,
                }
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={
                "error": {
                    "code": "VALIDATION_ERROR",
                    "message": "Invalid request",
                    "details": {"errors": jsonable_errors(exc)},
                }
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                }
            },
        )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Validation errors reduced to location and message."""
    return [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": str(err.get("msg", ""))}
        for err in exc.errors()
    ]


# =========================================================================
# Default app instance (for `uvicorn src.api.app:app`)
# =========================================================================

app = create_app()
