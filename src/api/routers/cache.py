"""/cache -- result cache statistics and flush."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.api.deps import get_cache
from src.metrics.cache import QueryCache

router = APIRouter()


class CacheStatsResponse(BaseModel):
    size: int
    max_size: int
    ttl_seconds: float
    hits: int
    misses: int
    evictions: int
    hit_rate: float


@router.get("/stats", response_model=CacheStatsResponse)
def cache_stats_endpoint(cache: QueryCache = Depends(get_cache)):
    """Return result cache statistics."""
    return CacheStatsResponse(**cache.stats())


@router.post("/clear")
def cache_clear_endpoint(cache: QueryCache = Depends(get_cache)):
    """Flush the result cache."""
    removed = cache.invalidate()
    return {"cleared": removed}
