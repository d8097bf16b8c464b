"""FastAPI application entry point.

PlayRank API - personal game rankings built from pairwise choices.
"""

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from playrank.routes import api_router
from playrank.schemas import error_content
from playrank.services.errors import (
    CancelUnsafe,
    HandleNotFound,
    InvalidSessionState,
    InvariantViolation,
    NothingToUndo,
    RankingError,
    StoreUnavailable,
    WorkflowLevelUndoRequired,
)
from playrank.settings import get_settings
from playrank.stores.postgres import init_db, close_db, ping_db
from playrank.stores.redis import init_redis, close_redis

logger = logging.getLogger("uvicorn.error")

# First match wins (subclasses before their bases)
ERROR_STATUS: list[tuple[type[RankingError], int]] = [
    (HandleNotFound, 404),
    (StoreUnavailable, 503),
    (InvariantViolation, 500),
    (WorkflowLevelUndoRequired, 409),
    (NothingToUndo, 409),
    (InvalidSessionState, 409),
    (CancelUnsafe, 409),
]


def status_for(exc: RankingError) -> int:
    for cls, status in ERROR_STATUS:
        if isinstance(exc, cls):
            return status
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Handles startup and shutdown events.
    """
    settings = get_settings()

    # Initialize database (the memory backend needs none)
    if settings.store_backend == "postgres":
        try:
            await init_db()
            await ping_db()
            logger.info("Postgres connected")
        except Exception:
            logger.exception("Postgres init failed")

    # Initialize Redis (without it writes run without the per-user lock)
    try:
        await init_redis()
    except Exception:
        logger.exception("Redis init failed")

    yield

    # Shutdown
    await close_redis()
    await close_db()


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Personal game rankings built from pairwise choices",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RankingError)
    async def ranking_exception_handler(request: Request, exc: RankingError) -> JSONResponse:
        """Ranking errors in the structured error format.

        Store failures never expose backend detail; only the handle to retry.
        """
        status = status_for(exc)
        if isinstance(exc, StoreUnavailable):
            detail = {k: v for k, v in (exc.detail or {}).items() if k == "handle"} or None
            message = exc.user_message
        else:
            detail = exc.detail
            message = str(exc)
        if status >= 500:
            logger.error(f"[api] {request.method} {request.url.path} -> {status} code={exc.code}")
        return JSONResponse(status_code=status, content=error_content(exc.code, message, detail))

    # Exception handler for structured error format
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler returning structured error format."""
        logger.exception(f"[api] unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content=error_content(
                "INTERNAL_ERROR",
                str(exc) if settings.debug else "Internal server error",
            ),
        )

    # Health check endpoint
    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, bool]:
        """Health check endpoint."""
        return {"ok": True}

    # Include API routes
    app.include_router(api_router)

    return app


# Application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "playrank.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
