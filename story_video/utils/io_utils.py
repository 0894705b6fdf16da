"""I/O utility functions for export naming and data URLs."""

import base64
import re
from datetime import datetime
from typing import Optional


def slugify(text: str) -> str:
    """
    Convert text to a filesystem-safe slug.

    Args:
        text: Input text to slugify.

    Returns:
        Filesystem-safe slug string.
    """
    text = text.lower()
    text = re.sub(r"[^\w\s-]", "", text)
    text = re.sub(r"[-_\s]+", "-", text)
    text = text.strip("-")
    if len(text) > 100:
        text = text[:100].rstrip("-")
    return text


def export_filename(title: str, now: Optional[datetime] = None) -> str:
    """Download filename for an exported story video."""
    slug = slugify(title) or "story"
    stamp = (now or datetime.now()).strftime("%Y-%m-%d_%H%M%S")
    return f"{slug}_{stamp}.mp4"


def to_data_url(payload: bytes, mime_type: str) -> str:
    """Encode bytes as a base64 ``data:`` URL."""
    return f"data:{mime_type};base64,{base64.b64encode(payload).decode('ascii')}"


def parse_data_url(ref: str) -> tuple[str, bytes]:
    """
    Decode a base64 ``data:`` URL.

    Returns:
        (mime_type, payload)

    Raises:
        ValueError: If ``ref`` is not a base64 data URL
    """
    match = re.match(r"^data:([^;,]*)(;[^,]*)?,(.*)$", ref, re.DOTALL)
    if not match or not match.group(2) or "base64" not in match.group(2):
        raise ValueError("Not a base64 data URL")
    return match.group(1) or "application/octet-stream", base64.b64decode(match.group(3))
