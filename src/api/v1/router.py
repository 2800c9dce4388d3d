"""API v1 router configuration."""

from fastapi import APIRouter

from src.api.v1.endpoints import cache, companion

router = APIRouter(prefix="/api/v1")

router.include_router(companion.router, prefix="/companion", tags=["companion"])
router.include_router(cache.router, prefix="/cache", tags=["cache"])
