"""Error taxonomy shared by providers, the encoder and the export path."""

from typing import Any, Optional

from story_video.models.schemas import ErrorKind

EXCERPT_LIMIT = 500
STDERR_TAIL_LINES = 3
STDERR_TAIL_CHARS = 300


class StoryVideoError(Exception):
    """Base error carrying a classification tag and unit context."""

    error_kind: ErrorKind = ErrorKind.PROVIDER_GENERIC

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})


class AssetExpiredError(StoryVideoError):
    """Upstream input asset is no longer resolvable; regenerate it."""

    error_kind = ErrorKind.ASSET_EXPIRED


class ProviderError(StoryVideoError):
    """Transient or parameter-shape failure reported by a provider."""

    error_kind = ErrorKind.PROVIDER_GENERIC

    def __init__(
        self,
        message: str,
        context: Optional[dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, context)
        self.status_code = status_code


class MalformedResponseError(StoryVideoError):
    """Provider returned data that cannot be parsed."""

    error_kind = ErrorKind.MALFORMED_RESPONSE

    def __init__(self, message: str, payload: Any = None, context: Optional[dict[str, Any]] = None):
        super().__init__(message, context)
        self.payload_excerpt = excerpt(payload)


class EncodingError(StoryVideoError):
    """Encoder exited non-zero or produced an empty output."""

    error_kind = ErrorKind.ENCODING_FAILURE

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None, stderr: str = ""):
        super().__init__(message, context)
        self.stderr = stderr[-2000:] if stderr else ""

    @property
    def stderr_tail(self) -> str:
        """Last few encoder diagnostic lines, on one line."""
        lines = [line.strip() for line in self.stderr.splitlines() if line.strip()]
        return " | ".join(lines[-STDERR_TAIL_LINES:])[-STDERR_TAIL_CHARS:]

    def __str__(self) -> str:
        tail = self.stderr_tail
        return f"{self.message}: {tail}" if tail else self.message


class ConcatenationError(StoryVideoError):
    """An intermediate clip is missing at concatenation time."""

    error_kind = ErrorKind.CONCATENATION_FAILURE


def excerpt(payload: Any, limit: int = EXCERPT_LIMIT) -> Optional[str]:
    """Truncated string form of a raw payload, for diagnostics."""
    if payload is None:
        return None
    if isinstance(payload, bytes):
        text = payload[:limit].decode("utf-8", errors="replace")
    else:
        text = str(payload)
    return text[:limit]
