"""Shared pytest fixtures and configuration."""

import pytest

from story_video.core.config import Settings
from story_video.core.errors import EncodingError
from story_video.core.logging_config import get_logger
from story_video.models.schemas import Character, Scene, Shot, Story


class FakeSession:
    """
    In-memory encoding session.

    ``exec`` records the argv and writes ``output_bytes`` to the file named
    by the last argument, the way ffmpeg writes its output.
    """

    def __init__(self, output_bytes=b"encoded", fail_on=None, stderr="boom"):
        self.files = {}
        self.commands = []
        self.output_bytes = output_bytes
        self.fail_on = fail_on
        self.stderr = stderr
        self.closed = False

    def write(self, name, data):
        self.files[name] = bytes(data)

    def read(self, name):
        if name not in self.files:
            raise FileNotFoundError(name)
        return self.files[name]

    def exists(self, name):
        return name in self.files

    def size(self, name):
        return len(self.files.get(name, b""))

    def delete(self, name):
        self.files.pop(name, None)

    def exec(self, argv):
        self.commands.append(list(argv))
        if self.fail_on is not None and self.fail_on(argv):
            raise EncodingError("ffmpeg exited with status 1", stderr=self.stderr)
        self.files[argv[-1]] = self.output_bytes
        return 0

    def close(self):
        self.closed = True


@pytest.fixture
def settings():
    """Create test settings instance."""
    return Settings()


@pytest.fixture
def logger():
    """Create test logger instance."""
    return get_logger(__name__)


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def story():
    """Two scenes, three shots, one character."""
    return Story(
        id="story_test",
        title="The Lighthouse",
        style="Watercolor",
        aspect_ratio="16:9",
        characters=[Character(name="Mira", description="A young keeper", prompt="girl in a yellow raincoat")],
        scenes=[
            Scene(
                id="scene_1",
                title="Arrival",
                shots=[
                    Shot(id="shot_1", narration="Mira climbs the stairs.", location="Lighthouse", content="Spiral stairs"),
                    Shot(id="shot_2", narration="", location="Lighthouse", content="The lamp room"),
                ],
            ),
            Scene(
                id="scene_2",
                title="Storm",
                shots=[Shot(id="shot_3", narration="The storm arrives.", location="Cliff", content="Waves crash")],
            ),
        ],
    )


@pytest.fixture
def make_session():
    """Factory for FakeSession instances with custom output or failures."""
    return FakeSession
