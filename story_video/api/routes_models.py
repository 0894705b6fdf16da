"""FastAPI routes for model and voice catalogs."""

from functools import lru_cache
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from story_video.api.errors import http_error
from story_video.core.config import settings
from story_video.core.errors import StoryVideoError
from story_video.core.logging_config import get_logger
from story_video.models.schemas import CatalogListing
from story_video.services.catalog_cache import TTLCache
from story_video.services.catalog_service import CatalogService

router = APIRouter(prefix="/models", tags=["models"])


@lru_cache
def get_catalog_service() -> CatalogService:
    """One catalog service per process so the cache outlives a request."""
    return CatalogService(settings, get_logger(__name__), cache=TTLCache(default_ttl=settings.replicate_catalog_ttl))


@router.get("/replicate", response_model=CatalogListing)
def replicate_models(
    category: Optional[str] = Query(default=None, pattern="^(image|video)$"),
    refresh: bool = False,
    catalog: CatalogService = Depends(get_catalog_service),
) -> CatalogListing:
    """Image and video models from Replicate, cached."""
    try:
        return catalog.list_replicate_models(category=category, refresh=refresh)
    except StoryVideoError as e:
        raise http_error(e)


@router.get("/openrouter", response_model=CatalogListing)
def openrouter_models(
    refresh: bool = False,
    catalog: CatalogService = Depends(get_catalog_service),
) -> CatalogListing:
    """Paid OpenRouter text models grouped by quality, value and speed."""
    try:
        return catalog.list_openrouter_models(refresh=refresh)
    except StoryVideoError as e:
        raise http_error(e)


@router.get("/voices", response_model=CatalogListing)
def voices(
    provider: str = "openai",
    refresh: bool = False,
    catalog: CatalogService = Depends(get_catalog_service),
) -> CatalogListing:
    try:
        return catalog.list_voices(provider=provider, refresh=refresh)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoryVideoError as e:
        raise http_error(e)


@router.get("/cache")
def cache_stats(catalog: CatalogService = Depends(get_catalog_service)) -> dict[str, Any]:
    return catalog.cache_stats()


@router.delete("/cache")
def clear_cache(
    key: Optional[str] = None,
    catalog: CatalogService = Depends(get_catalog_service),
) -> dict[str, Any]:
    """Invalidate one cache key, or all keys when none is given."""
    catalog.invalidate(key)
    return {"cleared": key or "all"}
