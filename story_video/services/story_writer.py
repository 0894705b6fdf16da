"""Story Writer - turns a one-line prompt into a full story via an OpenRouter LLM."""

import json
import re
from typing import Any, Optional

from openai import OpenAI, OpenAIError
from pydantic import ValidationError

from story_video.core.config import Settings
from story_video.core.errors import MalformedResponseError, ProviderError
from story_video.models.schemas import Story

# Model families that accept response_format={"type": "json_object"}
JSON_MODE_MARKERS = ("gpt-4", "gpt-3.5", "claude-3", "claude-sonnet", "gemini")
REQUIRED_KEYS = ("title", "synopsis", "characters", "scenes")

SYSTEM_PROMPT = """You are a professional storytelling assistant. Generate a complete story structure in JSON format based on the user's prompt.

The story should include:
1. A compelling title
2. A brief synopsis (2-3 sentences)
3. 2-4 main characters with detailed descriptions
4. 2-4 scenes, each with 2-4 shots

Each shot should have:
- A subtitle (narration or dialogue)
- A detailed location description
- A detailed visual content description for image generation

CRITICAL: Return ONLY valid JSON. Do NOT include any explanatory text, markdown formatting, or comments. Start directly with {{ and end with }}.

Return in this exact format:
{{
  "title": "Story Title",
  "synopsis": "Brief story description...",
  "characters": [
    {{
      "name": "Character Name",
      "description": "Brief description",
      "prompt": "Detailed visual description for image generation (appearance, clothing, style, etc.)"
    }}
  ],
  "scenes": [
    {{
      "title": "Scene Title",
      "description": "Scene description",
      "shots": [
        {{
          "subtitle": "Narration or dialogue",
          "location": "Detailed location description",
          "content": "Detailed visual content (what happens, camera angle, lighting, mood, characters present, actions, etc.)"
        }}
      ]
    }}
  ]
}}

Important:
- Make descriptions vivid and visual
- Include character names using @CharacterName format in content
- Ensure continuity between shots
- Match the style: {style}
- Keep it concise but complete (aim for 8-12 total shots)"""


def extract_story_json(text: str) -> dict[str, Any]:
    """
    Pull the story object out of raw LLM output.

    Handles markdown code fences, leading chatter before the object,
    trailing commas and a byte-order mark.

    Raises:
        MalformedResponseError: No JSON object could be parsed
    """
    json_text = (text or "").strip().lstrip("\ufeff")

    if "```json" in json_text:
        json_text = json_text.split("```json", 1)[1].split("```", 1)[0].strip()
    elif "```" in json_text:
        json_text = json_text.split("```", 2)[1].strip()

    if not json_text.startswith("{"):
        match = re.search(r"\{[\s\S]*\}", json_text)
        if match:
            json_text = match.group(0)

    json_text = re.sub(r",(\s*[}\]])", r"\1", json_text)

    try:
        data = json.loads(json_text)
    except json.JSONDecodeError as e:
        start = max(0, e.pos - 50)
        raise MalformedResponseError(
            f"Failed to parse story JSON: {e.msg} at position {e.pos}",
            payload=json_text,
            context={"near": json_text[start:e.pos + 50]},
        ) from e

    if not isinstance(data, dict):
        raise MalformedResponseError("Story JSON is not an object", payload=json_text)
    return data


class StoryWriter:
    """Writes story scripts with a chat-completions model served by OpenRouter."""

    def __init__(self, settings: Settings, logger: Any, client: Any = None):
        """
        Initialize the writer.

        Args:
            settings: Application settings
            logger: Logger instance
            client: OpenAI-compatible client (defaults to one pointed at OpenRouter)
        """
        self.settings = settings
        self.logger = logger
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            if not self.settings.openrouter_api_key:
                raise ProviderError("OpenRouter API key not configured", {"backend": "openrouter"})
            self._client = OpenAI(api_key=self.settings.openrouter_api_key, base_url=self.settings.openrouter_api_url)
        return self._client

    def write_story(
        self,
        prompt: str,
        style: str = "3D Cartoon",
        aspect_ratio: str = "16:9",
        model: Optional[str] = None,
    ) -> Story:
        """
        Generate a complete story from a prompt.

        Args:
            prompt: What the story is about
            style: Visual style tag stored on the story
            aspect_ratio: Aspect ratio tag stored on the story
            model: OpenRouter model id (defaults to settings.story_model)

        Returns:
            Story with characters, scenes and shots (no assets yet)

        Raises:
            ValueError: Empty prompt
            ProviderError: Missing key or the API call failed
            MalformedResponseError: The model did not return a usable story
        """
        if not prompt or not prompt.strip():
            raise ValueError("Prompt is required")

        model_id = model or self.settings.story_model
        request: dict[str, Any] = {
            "model": model_id,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT.format(style=style)},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.settings.story_temperature,
            "max_tokens": self.settings.story_max_tokens,
        }
        if any(marker in model_id for marker in JSON_MODE_MARKERS):
            request["response_format"] = {"type": "json_object"}

        self.logger.info(f"Generating story with {model_id}...")
        client = self._get_client()
        try:
            response = client.chat.completions.create(**request)
        except OpenAIError as e:
            raise ProviderError(f"OpenRouter API error: {e}", {"backend": "openrouter", "model": model_id}) from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            raise MalformedResponseError("Story response has no message content", payload=response) from e
        self.logger.debug(f"Raw story response (first 200 chars): {(content or '')[:200]}")

        data = extract_story_json(content)
        missing = [key for key in REQUIRED_KEYS if not data.get(key)]
        if missing:
            raise MalformedResponseError(
                f"Invalid story structure generated (missing: {', '.join(missing)})", payload=content
            )

        data["style"] = style
        data["aspect_ratio"] = aspect_ratio
        try:
            story = Story.model_validate(data)
        except ValidationError as e:
            raise MalformedResponseError(f"Story JSON does not match the story shape: {e}", payload=content) from e

        shot_count = sum(len(scene.shots) for scene in story.scenes)
        self.logger.info(
            f"Story generated: {story.title} ({len(story.characters)} characters, "
            f"{len(story.scenes)} scenes, {shot_count} shots)"
        )
        return story
