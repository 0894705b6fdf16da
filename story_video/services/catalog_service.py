"""Catalog Services - model and voice lists, served through the TTL cache."""

import time
from typing import Any, Callable, Optional, Protocol
from urllib.parse import parse_qs, urlparse

import requests

from story_video.core.config import Settings
from story_video.core.errors import MalformedResponseError, ProviderError, StoryVideoError
from story_video.models.schemas import CatalogListing, CatalogPage
from story_video.services.backend_profiles import OPENAI_VOICES
from story_video.services.catalog_cache import TTLCache

REPLICATE_KEY = "replicate_models_all"
OPENROUTER_KEY = "openrouter_models"
VOICES_KEY_PREFIX = "voices"
PAGE_DELAY_SECONDS = 0.1

# Official image-to-video models (replicate.com/collections/image-to-video)
OFFICIAL_I2V_MODELS = [
    "google/veo-3.1-fast", "google/veo-3.1", "google/veo-3",
    "wan-video/wan-2.5-i2v-fast", "wan-video/wan-2.5-i2v",
    "wavespeedai/wan-2.1-i2v-480p", "wavespeedai/wan-2.1-i2v-720p",
    "minimax/hailuo-2.3", "minimax/hailuo-2.3-fast", "minimax/hailuo-02", "minimax/video-01",
    "bytedance/seedance-1-pro-fast", "bytedance/seedance-1-pro", "bytedance/seedance-1-lite",
    "kwaivgi/kling-v2.5-turbo-pro", "kwaivgi/kling-v2.1",
    "luma/modify-video", "luma/ray-2-720p", "luma/ray",
    "lightricks/ltx-video",
    "stability-ai/stable-video-diffusion",
    "fofr/tooncrafter",
    "open-mmlab/pia",
]

VIDEO_TERMS = ("video", "image-to-video", "img2vid", "i2v", "animate", "animation", "motion", "movie", "luma", "pika")
VIDEO_NAME_TERMS = ("vid", "svd", "mochi", "ltx", "hunyuan", "kling", "runway")
AUDIO_TERMS = ("audio", "speech", "voice", "music", "sound", "tts", "whisper", "elevenlabs")
TEXT_TERMS = ("llm", "gpt", "llama", "mistral", "gemma", "qwen", "language model")
IMAGE_TERMS = (
    "text-to-image", "txt2img", "flux", "sdxl", "stable-diffusion", "dalle",
    "midjourney", "recraft", "ideogram", "imagen", "firefly",
)
IMAGE_NAME_TERMS = ("img", "image", "picture", "photo")


class CatalogClient(Protocol):
    def list(self, category: str, cursor: Optional[str] = None) -> CatalogPage: ...


# ============================================================================
# Processing
# ============================================================================


def categorize_replicate_model(model: dict[str, Any]) -> str:
    """Classify a Replicate model as video, audio, text, image or other."""
    name = (model.get("name") or "").lower()
    combined = f"{name} {(model.get('description') or '').lower()}"

    if any(t in combined for t in VIDEO_TERMS) or any(t in name for t in VIDEO_NAME_TERMS):
        return "video"
    if any(t in combined for t in AUDIO_TERMS):
        return "audio"
    if any(t in combined for t in TEXT_TERMS) or ("text" in combined and "text-to-image" not in combined):
        return "text"
    if any(t in combined for t in IMAGE_TERMS) or any(t in name for t in IMAGE_NAME_TERMS):
        return "image"
    return "other"


def process_replicate_models(models: list[dict[str, Any]]) -> dict[str, list[dict[str, Any]]]:
    """
    Reduce raw Replicate models to image and video lists.

    Image models: top 50 by run count. Video models: official image-to-video
    models only, top 30 by run count.
    """
    processed = [
        {
            "id": f"{m.get('owner')}/{m.get('name')}",
            "owner": m.get("owner"),
            "name": m.get("name"),
            "description": m.get("description") or "No description",
            "category": categorize_replicate_model(m),
            "runs": m.get("run_count") or 0,
            "url": m.get("url"),
        }
        for m in models
    ]
    by_runs = sorted(processed, key=lambda m: m["runs"], reverse=True)
    image = [m for m in by_runs if m["category"] == "image"][:50]
    video = [m for m in by_runs if any(official in m["id"] for official in OFFICIAL_I2V_MODELS)][:30]
    return {"image": image, "video": video}


def process_openrouter_models(models: list[dict[str, Any]]) -> dict[str, list[dict[str, Any]]]:
    """Filter priced OpenRouter models and group them by quality, value and speed."""
    processed = []
    for model in models:
        model_id = (model.get("id") or "").lower()
        pricing = model.get("pricing") or {}
        try:
            prompt_price = float(pricing.get("prompt", 0))
            completion_price = float(pricing.get("completion", 0))
        except (TypeError, ValueError):
            continue
        if not model_id or any(t in model_id for t in ("free", "preview", "extended")) or prompt_price <= 0:
            continue
        processed.append(
            {
                "id": model.get("id"),
                "name": model.get("name"),
                "provider": model_id.split("/")[0],
                "context_length": model.get("context_length") or 0,
                "pricing_prompt": prompt_price,
                "pricing_completion": completion_price,
                "modality": (model.get("architecture") or {}).get("modality") or "text",
                "max_tokens": (model.get("top_provider") or {}).get("max_completion_tokens"),
            }
        )

    def value_score(m: dict[str, Any]) -> float:
        context = m["context_length"] or 1
        return m["pricing_prompt"] * 1_000_000 + 100_000 / context

    ranked = sorted(processed, key=value_score)
    return {
        "top_quality": [
            m
            for m in ranked
            if "claude-3" in m["id"]
            or "gpt-4" in m["id"]
            or (m["provider"] == "google" and ("gemini-exp" in m["id"] or "gemini-2.0-flash-exp" in m["id"]))
        ][:8],
        "best_value": [m for m in ranked if m["pricing_prompt"] < 0.000001 and m["context_length"] >= 32000][:8],
        "fastest": [m for m in ranked if m["pricing_prompt"] < 0.0000005][:8],
        "all": ranked[:100],
    }


# ============================================================================
# HTTP clients
# ============================================================================


class _JSONClient:
    def __init__(self, settings: Settings, logger: Any, session: Optional[requests.Session] = None):
        self.settings = settings
        self.logger = logger
        self.session = session or requests.Session()

    def _get_json(
        self,
        url: str,
        service: str,
        headers: Optional[dict[str, str]] = None,
        params: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        try:
            response = self.session.get(
                url, headers=headers or {}, params=params, timeout=self.settings.http_timeout_seconds
            )
        except requests.exceptions.RequestException as e:
            raise ProviderError(f"Network error calling {service}: {e}") from e
        if response.status_code >= 400:
            raise ProviderError(
                f"{service} returned status {response.status_code}", status_code=response.status_code
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise MalformedResponseError(f"{service} returned a non-JSON response", payload=response.text) from e
        if not isinstance(payload, dict):
            raise MalformedResponseError(f"{service} returned an unexpected payload", payload=payload)
        return payload


class ReplicateCatalogClient(_JSONClient):
    """Pages through the Replicate model listing."""

    def list(self, category: str, cursor: Optional[str] = None) -> CatalogPage:
        if not self.settings.replicate_api_token:
            raise ProviderError("Replicate API token not configured")
        url = f"{self.settings.replicate_api_url.rstrip('/')}/models"
        # requests encodes the cursor; parse_qs already decoded it
        payload = self._get_json(
            url,
            "Replicate",
            {"Authorization": f"Bearer {self.settings.replicate_api_token}"},
            params={"cursor": cursor} if cursor else None,
        )
        results = payload.get("results")
        if not isinstance(results, list):
            raise MalformedResponseError("Replicate model page has no results list", payload=payload)

        next_cursor = None
        if payload.get("next"):
            next_cursor = parse_qs(urlparse(payload["next"]).query).get("cursor", [None])[0]
        return CatalogPage(items=results, next_cursor=next_cursor)


class OpenRouterCatalogClient(_JSONClient):
    """Fetches the OpenRouter model list (single page)."""

    def list(self, category: str, cursor: Optional[str] = None) -> CatalogPage:
        payload = self._get_json(f"{self.settings.openrouter_api_url.rstrip('/')}/models", "OpenRouter")
        data = payload.get("data")
        if not isinstance(data, list):
            raise MalformedResponseError("OpenRouter model list has no data list", payload=payload)
        return CatalogPage(items=data)


class ElevenLabsVoiceClient(_JSONClient):
    """Fetches the ElevenLabs voice library for the configured account."""

    def list(self, category: str, cursor: Optional[str] = None) -> CatalogPage:
        if not self.settings.elevenlabs_api_key:
            raise ProviderError("ElevenLabs API key not configured")
        payload = self._get_json(
            f"{self.settings.elevenlabs_api_url.rstrip('/')}/voices",
            "ElevenLabs",
            {"xi-api-key": self.settings.elevenlabs_api_key},
        )
        voices = payload.get("voices")
        if not isinstance(voices, list):
            raise MalformedResponseError("ElevenLabs voice list has no voices list", payload=payload)
        items = [
            {
                "id": v.get("voice_id"),
                "name": v.get("name"),
                "provider": "elevenlabs",
                "category": v.get("category"),
                "preview_url": v.get("preview_url"),
            }
            for v in voices
        ]
        return CatalogPage(items=items)


# ============================================================================
# Service
# ============================================================================


class CatalogService:
    """Serves catalog data from the cache, refreshing and falling back to stale data."""

    def __init__(
        self,
        settings: Settings,
        logger: Any,
        cache: Optional[TTLCache] = None,
        replicate_client: Optional[CatalogClient] = None,
        openrouter_client: Optional[CatalogClient] = None,
        voice_client: Optional[CatalogClient] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the catalog service.

        Args:
            settings: Application settings (TTLs, page limit, credentials)
            logger: Logger instance
            cache: TTL cache (a private one is created when omitted)
            replicate_client: Replicate model catalog client
            openrouter_client: OpenRouter model catalog client
            voice_client: ElevenLabs voice catalog client
            sleep: Sleep function used between catalog pages
        """
        self.settings = settings
        self.logger = logger
        self.cache = cache or TTLCache()
        self.replicate_client = replicate_client or ReplicateCatalogClient(settings, logger)
        self.openrouter_client = openrouter_client or OpenRouterCatalogClient(settings, logger)
        self.voice_client = voice_client or ElevenLabsVoiceClient(settings, logger)
        self._sleep = sleep
        # Last successfully fetched payload per key, kept past expiry for stale serving
        self._last_good: dict[str, Any] = {}

    def _serve(self, key: str, ttl: float, loader: Callable[[], Any], refresh: bool) -> CatalogListing:
        if not refresh:
            cached = self.cache.get(key)
            if cached is not None:
                return CatalogListing(key=key, models=cached, cached=True, cache_age_seconds=self.cache.age(key))

        try:
            data = loader()
        except StoryVideoError as e:
            stale = self.cache.get(key)
            age = self.cache.age(key)
            if stale is None:
                stale = self._last_good.get(key)
            if stale is None:
                raise
            self.logger.warning(f"Catalog refresh failed for {key}, serving cached data: {e}")
            return CatalogListing(
                key=key,
                models=stale,
                cached=True,
                stale=True,
                cache_age_seconds=age,
                warning=f"Using cached data due to error: {e}",
            )

        self.cache.set(key, data, ttl)
        self._last_good[key] = data
        return CatalogListing(key=key, models=data, cached=False, cache_age_seconds=0.0)

    def _fetch_all_replicate(self) -> dict[str, list[dict[str, Any]]]:
        models: list[dict[str, Any]] = []
        cursor: Optional[str] = None
        for page_number in range(1, self.settings.catalog_max_pages + 1):
            try:
                page = self.replicate_client.list("models", cursor)
            except StoryVideoError as e:
                if page_number == 1:
                    raise
                self.logger.warning(f"Replicate catalog stopped at page {page_number}: {e}")
                break
            models.extend(page.items)
            cursor = page.next_cursor
            if not cursor:
                break
            if page_number < self.settings.catalog_max_pages:
                self._sleep(PAGE_DELAY_SECONDS)

        if not models:
            raise ProviderError("No models fetched from Replicate")
        self.logger.info(f"Fetched {len(models)} models from Replicate")
        return process_replicate_models(models)

    def list_replicate_models(self, category: Optional[str] = None, refresh: bool = False) -> CatalogListing:
        """
        Image and video models from Replicate.

        Args:
            category: "image" or "video" to return one list, None for both
            refresh: Bypass the cache
        """
        listing = self._serve(REPLICATE_KEY, self.settings.replicate_catalog_ttl, self._fetch_all_replicate, refresh)
        if category in ("image", "video"):
            listing = listing.model_copy(update={"models": listing.models.get(category, [])})
        return listing

    def list_openrouter_models(self, refresh: bool = False) -> CatalogListing:
        def load() -> dict[str, list[dict[str, Any]]]:
            return process_openrouter_models(self.openrouter_client.list("models").items)

        return self._serve(OPENROUTER_KEY, self.settings.openrouter_catalog_ttl, load, refresh)

    def list_voices(self, provider: str = "openai", refresh: bool = False) -> CatalogListing:
        """Voices for a speech provider ("openai" is a fixed list)."""
        if provider == "openai":
            voices = [{"id": v, "name": v.title(), "provider": "openai"} for v in OPENAI_VOICES]
            return CatalogListing(key=f"{VOICES_KEY_PREFIX}_openai", models=voices)
        if provider != "elevenlabs":
            raise ValueError(f"Unsupported voice provider: {provider}")

        def load() -> list[dict[str, Any]]:
            return self.voice_client.list("voices").items

        return self._serve(f"{VOICES_KEY_PREFIX}_elevenlabs", self.settings.voice_catalog_ttl, load, refresh)

    def cache_stats(self) -> dict[str, Any]:
        stats = self.cache.stats()
        stats["ages"] = {key: self.cache.age(key) for key in stats["keys"]}
        return stats

    def invalidate(self, key: Optional[str] = None) -> None:
        self.cache.invalidate(key)
        self.logger.info(f"Catalog cache cleared: {key or 'all keys'}")
