"""Storage repository for story projects."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from story_video.core.config import Settings
from story_video.models.schemas import Story

PROJECT_FORMAT_VERSION = "1.0.0"
# Credentials never belong in a project file
SECRET_KEYS = ("apiKey", "api_key", "apiToken", "api_token")


def _strip_secrets(data: Any) -> Any:
    if isinstance(data, dict):
        return {k: _strip_secrets(v) for k, v in data.items() if k not in SECRET_KEYS}
    if isinstance(data, list):
        return [_strip_secrets(v) for v in data]
    return data


def story_from_project(data: dict[str, Any]) -> Story:
    """
    Build a Story from a project document.

    Accepts a bare story object or a ``{"story": {...}}`` envelope, using
    either this package's field names or the original project keys.

    Raises:
        ValueError: The document does not describe a story
    """
    payload = data.get("story", data) if isinstance(data, dict) else None
    if not isinstance(payload, dict):
        raise ValueError("Project file does not contain a story object")
    try:
        return Story.model_validate(_strip_secrets(payload))
    except ValidationError as e:
        raise ValueError(f"Invalid story project: {e}") from e


class StoryRepository:
    """Repository for saving and loading story projects as JSON."""

    def __init__(self, settings: Settings, logger: Any):
        """
        Initialize the repository.

        Args:
            settings: Application settings
            logger: Logger instance
        """
        self.settings = settings
        self.logger = logger
        self.storage_path = Path(settings.storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)

    def save_story(self, story: Story) -> Path:
        """
        Save a story to storage.

        Args:
            story: Story to save

        Returns:
            Path of the written project file
        """
        file_path = self.storage_path / f"{story.id}.json"
        self.export_project(story, file_path)
        return file_path

    def load_story(self, story_id: str) -> Optional[Story]:
        """
        Load a story from storage.

        Args:
            story_id: Story identifier

        Returns:
            Story if found, None otherwise
        """
        file_path = self.storage_path / f"{story_id}.json"
        if not file_path.exists():
            self.logger.warning(f"Story not found: {story_id}")
            return None
        return self.import_project(file_path)

    def list_stories(self) -> list[str]:
        """List all stored story IDs."""
        story_ids = sorted(f.stem for f in self.storage_path.glob("*.json"))
        self.logger.info(f"Found {len(story_ids)} stories")
        return story_ids

    def export_project(self, story: Story, file_path: Path) -> None:
        """Write a story as a versioned project document."""
        file_path = Path(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        document = {
            "version": PROJECT_FORMAT_VERSION,
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "story": story.model_dump(mode="json"),
        }
        with open(file_path, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, ensure_ascii=False)
        self.logger.info(f"Story saved to: {file_path}")

    def import_project(self, file_path: Path) -> Story:
        """
        Read a project document from disk.

        Raises:
            FileNotFoundError: The file does not exist
            ValueError: The file is not valid JSON or not a story project
        """
        with open(file_path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ValueError(f"Project file is not valid JSON: {e}") from e
        story = story_from_project(data)
        self.logger.info(f"Story loaded: {story.id} ({len(story.scenes)} scenes)")
        return story
