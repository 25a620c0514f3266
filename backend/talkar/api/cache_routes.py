"""
Cache API routes.

Provides endpoints for:
- GET /api/cache - Sizes and hit/miss statistics per namespace
- POST /api/cache/clear - Drop entries of one or all namespaces
- POST /api/cache/sweep - Remove expired entries now
"""

import logging

from fastapi import APIRouter, Depends

from talkar.api.routes import get_orchestrator
from talkar.models.cache import CacheInfo, CacheNamespace
from talkar.services.pipeline import PipelineOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/cache", tags=["cache"])


@router.get("", response_model=CacheInfo)
async def get_cache_info(
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> CacheInfo:
    """Cache statistics per namespace."""
    return orchestrator.cache.info()


@router.post("/clear")
async def clear_cache(
    namespace: CacheNamespace | None = None,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> dict:
    """
    Clear cached entries.

    Args:
        namespace: Namespace to clear (query param; all if omitted)

    Returns:
        Number of removed entries
    """
    removed = orchestrator.cache.clear(namespace)
    return {
        "namespace": namespace.value if namespace else "all",
        "removed": removed,
    }


@router.post("/sweep")
async def sweep_cache(
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Remove expired entries immediately."""
    return {"removed": orchestrator.cache.sweep()}
