"""Concatenation Engine - joins processed clips with the concat demuxer."""

from typing import Any

from story_video.core.config import Settings
from story_video.core.errors import ConcatenationError, EncodingError
from story_video.services.encoding_backend import EncodingSession

LIST_FILE = "concat.txt"
OUTPUT_FILE = "output.mp4"


def concat_list(names: list[str]) -> str:
    """Concat demuxer list file body, one ``file '<name>'`` line per clip."""
    lines = []
    for name in names:
        escaped = name.replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    return "\n".join(lines) + "\n"


class Concatenator:
    """Joins clips in the given order without re-encoding."""

    def __init__(self, settings: Settings, logger: Any, session: EncodingSession):
        self.settings = settings
        self.logger = logger
        self.session = session

    def concatenate(self, names: list[str]) -> str:
        """
        Join session clips in order.

        Args:
            names: Session file names, in output order

        Returns:
            Session file name of the joined clip (the input itself for one clip)

        Raises:
            ValueError: No clips were given
            ConcatenationError: A listed clip is missing or empty
            EncodingError: The encoder failed or produced an empty output
        """
        if not names:
            raise ValueError("Nothing to concatenate")

        for position, name in enumerate(names):
            if not self.session.exists(name) or self.session.size(name) == 0:
                raise ConcatenationError(
                    f"Clip missing at concatenation time: {name}", {"position": position, "clip": name}
                )

        if len(names) == 1:
            self.logger.debug("Single clip, skipping concatenation")
            return names[0]

        self.session.write(LIST_FILE, concat_list(names).encode("utf-8"))
        try:
            self.session.exec(
                ["-f", "concat", "-safe", "0", "-i", LIST_FILE, "-c", "copy", "-movflags", "+faststart", "-y", OUTPUT_FILE]
            )
        finally:
            self.session.delete(LIST_FILE)

        if not self.session.exists(OUTPUT_FILE) or self.session.size(OUTPUT_FILE) == 0:
            raise EncodingError("Concatenated output is empty", {"clips": len(names)})

        self.logger.info(f"Concatenated {len(names)} clips ({self.session.size(OUTPUT_FILE)} bytes)")
        return OUTPUT_FILE
