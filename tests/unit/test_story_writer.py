"""Tests for LLM story writing."""

import json
from unittest.mock import MagicMock

import pytest
from openai import OpenAIError

from story_video.core.errors import MalformedResponseError, ProviderError
from story_video.services.story_writer import StoryWriter, extract_story_json

STORY = {
    "title": "The Lighthouse",
    "synopsis": "A girl climbs a lighthouse before the storm.",
    "characters": [{"name": "Mira", "description": "Keeper's daughter", "prompt": "girl in a yellow raincoat"}],
    "scenes": [
        {
            "title": "Ascent",
            "description": "Mira climbs",
            "shots": [
                {"subtitle": "Mira climbs the stairs.", "location": "Lighthouse", "content": "@Mira on spiral stairs"},
                {"subtitle": "The lamp flickers.", "location": "Lamp room", "content": "Old lamp"},
            ],
        }
    ],
}


def completion(content):
    message = MagicMock(content=content)
    return MagicMock(choices=[MagicMock(message=message)])


@pytest.fixture
def client():
    client = MagicMock()
    client.chat.completions.create.return_value = completion(json.dumps(STORY))
    return client


@pytest.fixture
def writer(settings, logger, client):
    return StoryWriter(settings, logger, client=client)


def test_write_story_builds_story(writer, client):
    story = writer.write_story("A lighthouse at the edge of a storm", style="Watercolor", aspect_ratio="9:16")

    assert story.title == "The Lighthouse"
    assert story.style == "Watercolor"
    assert story.aspect_ratio == "9:16"
    assert story.characters[0].prompt == "girl in a yellow raincoat"
    assert [shot.narration for shot in story.scenes[0].shots] == ["Mira climbs the stairs.", "The lamp flickers."]
    assert story.scenes[0].shots[0].image_ref is None

    request = client.chat.completions.create.call_args.kwargs
    assert request["model"] == "meta-llama/llama-3.1-405b-instruct"
    assert request["temperature"] == 0.7
    assert request["max_tokens"] == 4000
    assert "Match the style: Watercolor" in request["messages"][0]["content"]
    assert request["messages"][1] == {"role": "user", "content": "A lighthouse at the edge of a storm"}
    assert "response_format" not in request


def test_json_mode_for_capable_models(writer, client):
    writer.write_story("A storm", model="openai/gpt-4o-mini")

    assert client.chat.completions.create.call_args.kwargs["response_format"] == {"type": "json_object"}


def test_extract_story_json_from_fenced_reply():
    reply = "Here is your story:\n```json\n" + json.dumps(STORY) + "\n```\nEnjoy!"

    assert extract_story_json(reply)["title"] == "The Lighthouse"


def test_extract_story_json_repairs_trailing_commas_and_chatter():
    reply = '\ufeffSure! {"title": "T", "scenes": [{"shots": [],},],}'

    assert extract_story_json(reply) == {"title": "T", "scenes": [{"shots": []}]}


def test_unparsable_reply_is_malformed():
    with pytest.raises(MalformedResponseError) as excinfo:
        extract_story_json('{"title": "The Lighthouse", "synopsis": ')

    assert "Failed to parse story JSON" in str(excinfo.value)
    assert excinfo.value.payload_excerpt.startswith('{"title": "The Lighthouse"')


def test_missing_keys_are_malformed(writer, client):
    client.chat.completions.create.return_value = completion(json.dumps({"title": "Only a title"}))

    with pytest.raises(MalformedResponseError) as excinfo:
        writer.write_story("A storm")

    assert "synopsis" in str(excinfo.value)
    assert "Only a title" in excinfo.value.payload_excerpt


def test_api_error_is_provider_error(writer, client):
    client.chat.completions.create.side_effect = OpenAIError("rate limited")

    with pytest.raises(ProviderError) as excinfo:
        writer.write_story("A storm")

    assert excinfo.value.context["backend"] == "openrouter"


def test_empty_prompt_raises(writer):
    with pytest.raises(ValueError):
        writer.write_story("   ")


def test_missing_key_raises(settings, logger):
    settings.openrouter_api_key = None

    with pytest.raises(ProviderError, match="OpenRouter API key not configured"):
        StoryWriter(settings, logger).write_story("A storm")
