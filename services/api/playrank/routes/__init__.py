"""API routes."""

from fastapi import APIRouter

from playrank.routes import batches, rankings, rebuilds, sessions

api_router = APIRouter()

# Ranked lists (read, remove, verify)
api_router.include_router(rankings.router, prefix="/v1/rankings", tags=["rankings"])

# Single insertion
api_router.include_router(sessions.router, prefix="/v1/sessions", tags=["sessions"])

# Workflows
api_router.include_router(batches.router, prefix="/v1/batches", tags=["batches"])
api_router.include_router(rebuilds.router, prefix="/v1/rebuilds", tags=["rebuilds"])
