"""Map pipeline errors to HTTP responses."""

from fastapi import HTTPException

from story_video.core.errors import StoryVideoError
from story_video.models.schemas import ErrorKind
from story_video.utils.error_handler import get_recovery_suggestion

ERROR_STATUS = {
    ErrorKind.ASSET_EXPIRED: 400,
    ErrorKind.PROVIDER_GENERIC: 502,
    ErrorKind.MALFORMED_RESPONSE: 502,
    ErrorKind.ENCODING_FAILURE: 500,
    ErrorKind.CONCATENATION_FAILURE: 500,
}


def http_error(error: StoryVideoError) -> HTTPException:
    """HTTPException carrying the error kind, message, context and a suggestion."""
    detail = {
        "error_kind": error.error_kind.value,
        "message": str(error),
        "context": {k: str(v) for k, v in error.context.items()},
        "suggestion": get_recovery_suggestion(error.error_kind, str(error)),
    }
    # Encoder and provider diagnostics
    for attribute in ("stderr", "payload_excerpt"):
        value = getattr(error, attribute, None)
        if value:
            detail[attribute] = value
    return HTTPException(status_code=ERROR_STATUS.get(error.error_kind, 500), detail=detail)
