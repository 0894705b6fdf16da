"""Tests for catalog services."""

from unittest.mock import MagicMock

import pytest

from story_video.core.errors import MalformedResponseError, ProviderError
from story_video.models.schemas import CatalogPage
from story_video.services.catalog_cache import TTLCache
from story_video.services.catalog_service import (
    REPLICATE_KEY,
    CatalogService,
    ReplicateCatalogClient,
    categorize_replicate_model,
    process_openrouter_models,
    process_replicate_models,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def replicate_model(owner, name, runs, description=""):
    return {"owner": owner, "name": name, "run_count": runs, "description": description, "url": f"https://r/{owner}/{name}"}


PAGE_ONE = [
    replicate_model("black-forest-labs", "flux-schnell", 500, "text-to-image model"),
    replicate_model("bytedance", "seedance-1-lite", 300, "image-to-video"),
]
PAGE_TWO = [
    replicate_model("stability-ai", "sdxl", 900, "text-to-image"),
    replicate_model("someone", "cool-video-thing", 10_000, "video generation"),
]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def replicate_client():
    client = MagicMock()
    client.list.side_effect = [
        CatalogPage(items=PAGE_ONE, next_cursor="abc"),
        CatalogPage(items=PAGE_TWO),
    ]
    return client


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def service(settings, logger, clock, replicate_client, sleeps):
    return CatalogService(
        settings,
        logger,
        cache=TTLCache(clock=clock),
        replicate_client=replicate_client,
        openrouter_client=MagicMock(),
        voice_client=MagicMock(),
        sleep=sleeps.append,
    )


def test_categorize_replicate_model():
    assert categorize_replicate_model({"name": "flux-dev", "description": ""}) == "image"
    assert categorize_replicate_model({"name": "kling-v2.1", "description": ""}) == "video"
    assert categorize_replicate_model({"name": "xtts", "description": "text to speech voice"}) == "audio"
    assert categorize_replicate_model({"name": "llama-3", "description": ""}) == "text"


def test_process_replicate_models_filters_video_to_official_list():
    result = process_replicate_models(PAGE_ONE + PAGE_TWO)

    assert [m["id"] for m in result["image"]] == ["stability-ai/sdxl", "black-forest-labs/flux-schnell"]
    assert [m["id"] for m in result["video"]] == ["bytedance/seedance-1-lite"]


def test_process_openrouter_models_drops_free_and_ranks_by_value():
    models = [
        {"id": "meta/llama:free", "pricing": {"prompt": "0", "completion": "0"}, "context_length": 8000},
        {"id": "openai/gpt-4o", "pricing": {"prompt": "0.0000025", "completion": "0.00001"}, "context_length": 128000},
        {"id": "mistral/small", "pricing": {"prompt": "0.0000002", "completion": "0.0000006"}, "context_length": 64000},
        {"id": "google/gemini-preview", "pricing": {"prompt": "0.000001", "completion": "0"}, "context_length": 1000},
        {"id": "broken/pricing", "pricing": {"prompt": "n/a"}},
    ]

    result = process_openrouter_models(models)

    assert [m["id"] for m in result["all"]] == ["mistral/small", "openai/gpt-4o"]
    assert [m["id"] for m in result["top_quality"]] == ["openai/gpt-4o"]
    assert [m["id"] for m in result["best_value"]] == ["mistral/small"]
    assert [m["id"] for m in result["fastest"]] == ["mistral/small"]


def test_replicate_pagination_and_caching(service, replicate_client, sleeps):
    listing = service.list_replicate_models()

    assert listing.cached is False
    assert replicate_client.list.call_args_list[1].args == ("models", "abc")
    assert sleeps == [0.1]
    assert len(listing.models["image"]) == 2

    again = service.list_replicate_models(category="video")
    assert again.cached is True
    assert [m["id"] for m in again.models] == ["bytedance/seedance-1-lite"]
    assert replicate_client.list.call_count == 2


def test_later_page_failure_keeps_partial_results(service, replicate_client):
    replicate_client.list.side_effect = [CatalogPage(items=PAGE_ONE, next_cursor="abc"), ProviderError("boom")]

    listing = service.list_replicate_models()

    assert [m["id"] for m in listing.models["image"]] == ["black-forest-labs/flux-schnell"]


def test_first_page_failure_without_cache_raises(service, replicate_client):
    replicate_client.list.side_effect = ProviderError("down")

    with pytest.raises(ProviderError):
        service.list_replicate_models()


def test_stale_data_served_when_refresh_fails_after_expiry(service, replicate_client, clock, settings):
    service.list_replicate_models()
    clock.now += settings.replicate_catalog_ttl + 1
    replicate_client.list.side_effect = MalformedResponseError("bad page")

    listing = service.list_replicate_models()

    assert listing.stale is True
    assert listing.cached is True
    assert "bad page" in listing.warning
    assert len(listing.models["image"]) == 2


def test_forced_refresh_failure_serves_live_cache(service, replicate_client):
    service.list_replicate_models()
    replicate_client.list.side_effect = ProviderError("down")

    listing = service.list_replicate_models(refresh=True)

    assert listing.stale is True
    assert listing.cache_age_seconds == 0


def test_openai_voices_are_static(service):
    listing = service.list_voices("openai")

    assert [v["id"] for v in listing.models][:2] == ["alloy", "echo"]


def test_elevenlabs_voices_cached(service):
    service.voice_client.list.return_value = CatalogPage(items=[{"id": "v1", "name": "Rachel"}])

    service.list_voices("elevenlabs")
    listing = service.list_voices("elevenlabs")

    assert listing.cached is True
    assert service.voice_client.list.call_count == 1


def test_unknown_voice_provider(service):
    with pytest.raises(ValueError):
        service.list_voices("acme")


def test_cache_stats_and_invalidate(service):
    service.list_replicate_models()

    stats = service.cache_stats()
    assert stats["keys"] == [REPLICATE_KEY]
    assert stats["ages"][REPLICATE_KEY] == 0

    service.invalidate()
    assert service.cache_stats()["size"] == 0


def test_replicate_client_parses_cursor(settings, logger):
    settings.replicate_api_token = "r8_test"
    session = MagicMock()
    session.get.return_value = MagicMock(
        status_code=200,
        json=MagicMock(return_value={"results": PAGE_ONE, "next": "https://api.replicate.com/v1/models?cursor=xyz"}),
    )

    page = ReplicateCatalogClient(settings, logger, session=session).list("models")

    assert page.next_cursor == "xyz"
    assert session.get.call_args.kwargs["headers"] == {"Authorization": "Bearer r8_test"}


def test_replicate_client_sends_cursor_as_query_param(settings, logger):
    settings.replicate_api_token = "r8_test"
    session = MagicMock()
    session.get.return_value = MagicMock(
        status_code=200,
        json=MagicMock(return_value={"results": PAGE_ONE, "next": "https://api.replicate.com/v1/models?cursor=cD0y%2BLTA%3D"}),
    )
    client = ReplicateCatalogClient(settings, logger, session=session)

    page = client.list("models")
    assert page.next_cursor == "cD0y+LTA="

    client.list("models", cursor=page.next_cursor)
    args, kwargs = session.get.call_args
    assert args[0] == "https://api.replicate.com/v1/models"
    assert kwargs["params"] == {"cursor": "cD0y+LTA="}
