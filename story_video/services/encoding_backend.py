"""Encoding Backend - an ffmpeg session over a private scratch directory."""

import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Optional, Protocol

import imageio_ffmpeg

from story_video.core.config import Settings
from story_video.core.errors import EncodingError


class EncodingSession(Protocol):
    """Stateful encoder session: named scratch files plus command execution."""

    def write(self, name: str, data: bytes) -> None: ...

    def read(self, name: str) -> bytes: ...

    def exists(self, name: str) -> bool: ...

    def size(self, name: str) -> int: ...

    def delete(self, name: str) -> None: ...

    def exec(self, argv: list[str]) -> int: ...


def resolve_ffmpeg_binary(settings: Settings) -> str:
    """Configured ffmpeg path, else the binary bundled with imageio-ffmpeg."""
    if settings.ffmpeg_binary:
        return settings.ffmpeg_binary
    return imageio_ffmpeg.get_ffmpeg_exe()


class FFmpegSession:
    """
    ffmpeg runner whose file names resolve inside one scratch directory.

    The session is not re-entrant: use one session per export and run its
    segments serially.
    """

    def __init__(self, settings: Settings, logger: Any, binary: Optional[str] = None):
        """
        Initialize the session.

        Args:
            settings: Application settings (ffmpeg path, scratch parent dir)
            logger: Logger instance
            binary: Explicit ffmpeg path (overrides settings)
        """
        self.settings = settings
        self.logger = logger
        self.binary = binary or resolve_ffmpeg_binary(settings)
        parent = settings.export_work_dir
        if parent:
            Path(parent).mkdir(parents=True, exist_ok=True)
        self.workdir = Path(tempfile.mkdtemp(prefix="story_video_", dir=parent))

    def _path(self, name: str) -> Path:
        if not name or Path(name).name != name:
            raise ValueError(f"Invalid scratch file name: {name!r}")
        return self.workdir / name

    def write(self, name: str, data: bytes) -> None:
        self._path(name).write_bytes(data)

    def read(self, name: str) -> bytes:
        path = self._path(name)
        if not path.exists():
            raise FileNotFoundError(f"Scratch file was never written or already deleted: {name}")
        return path.read_bytes()

    def exists(self, name: str) -> bool:
        return self._path(name).exists()

    def size(self, name: str) -> int:
        path = self._path(name)
        return path.stat().st_size if path.exists() else 0

    def delete(self, name: str) -> None:
        self._path(name).unlink(missing_ok=True)

    def exec(self, argv: list[str]) -> int:
        """
        Run ffmpeg with ``argv`` inside the scratch directory.

        Raises:
            EncodingError: ffmpeg could not be started or exited non-zero
        """
        command = [self.binary, "-hide_banner", "-loglevel", "error", *argv]
        self.logger.debug(f"ffmpeg {' '.join(argv)}")
        try:
            proc = subprocess.run(command, cwd=self.workdir, capture_output=True, text=True)
        except OSError as e:
            raise EncodingError(f"Could not start ffmpeg: {e}", {"binary": self.binary}) from e
        if proc.returncode != 0:
            raise EncodingError(
                f"ffmpeg exited with status {proc.returncode}",
                {"argv": " ".join(argv)},
                stderr=proc.stderr or "",
            )
        return proc.returncode

    def close(self) -> None:
        shutil.rmtree(self.workdir, ignore_errors=True)

    def __enter__(self) -> "FFmpegSession":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
