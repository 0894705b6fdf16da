"""Error Handler - user-facing messages for classified pipeline failures."""

from typing import Optional

from story_video.models.schemas import ErrorKind


def format_error_message(
    operation: str,
    error: Exception,
    context: Optional[dict] = None,
    suggestion: Optional[str] = None,
) -> str:
    """
    Format a user-friendly error message.

    Args:
        operation: What was being done (e.g., "Generating video for shot")
        error: The exception that occurred
        context: Unit context (e.g., {"shot_id": "shot_1", "segment": 2})
        suggestion: Optional next step for the caller

    Returns:
        Formatted error message
    """
    context = dict(context or {})
    context.update(getattr(error, "context", None) or {})
    context_str = ""
    if context:
        context_str = " (" + ", ".join(f"{k}={v}" for k, v in context.items()) + ")"

    message = f"❌ {operation} failed{context_str}\n"
    message += f"   Error: {type(error).__name__}: {error}"
    if suggestion:
        message += f"\n   💡 Suggestion: {suggestion}"
    return message


def get_recovery_suggestion(error_kind: Optional[ErrorKind], message: str = "") -> Optional[str]:
    """
    Suggest how the caller can recover from a classified failure.

    Args:
        error_kind: Classified failure
        message: Raw error text, used to refine provider suggestions

    Returns:
        Suggestion string or None
    """
    lowered = message.lower()

    if error_kind == ErrorKind.ASSET_EXPIRED:
        return "The input image has expired. Regenerate the image for this shot, then retry the video."
    if error_kind == ErrorKind.PROVIDER_GENERIC:
        if "api token" in lowered or "api key" in lowered or "401" in lowered or "unauthorized" in lowered:
            return "Check the provider API token in your .env file."
        if "rate limit" in lowered or "429" in lowered:
            return "Rate limit exceeded. Wait a few minutes and retry the failed shots."
        if "timeout" in lowered or "timed out" in lowered:
            return "The provider took too long. Retry this shot or choose a faster backend."
        return "Retry this shot, or select a different backend for this job kind."
    if error_kind == ErrorKind.MALFORMED_RESPONSE:
        return "The provider returned an unexpected payload. Retry, or switch to the default backend."
    if error_kind == ErrorKind.ENCODING_FAILURE:
        return "Retry the export. If it keeps failing, regenerate the clip for this segment."
    if error_kind == ErrorKind.CONCATENATION_FAILURE:
        return "An intermediate clip went missing. Re-run the export."
    return None
