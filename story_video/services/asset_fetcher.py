"""Asset references - resolve, probe and proxy the refs stored on shots."""

from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

import requests

from story_video.core.config import Settings
from story_video.core.errors import AssetExpiredError, ProviderError
from story_video.utils.io_utils import parse_data_url

REPLICATE_DELIVERY_DOMAIN = "replicate.delivery"
EXPIRED_STATUS_CODES = (404, 410)


def proxy_url(url: Optional[str], cdn_domain: Optional[str]) -> Optional[str]:
    """
    Rewrite a provider delivery URL to go through a CDN proxy.

    Args:
        url: Asset URL (may be None)
        cdn_domain: Proxy domain, or None to leave URLs unchanged

    Returns:
        Proxied URL, or the original when it is not a delivery URL
    """
    if not url or not cdn_domain or REPLICATE_DELIVERY_DOMAIN not in url:
        return url
    return url.replace(REPLICATE_DELIVERY_DOMAIN, cdn_domain, 1)


def is_remote(ref: str) -> bool:
    return urlparse(ref).scheme in ("http", "https")


class AssetFetcher:
    """Loads asset bytes from data URLs, remote URLs or local files."""

    def __init__(self, settings: Settings, logger: Any, session: Optional[requests.Session] = None):
        """
        Initialize the fetcher.

        Args:
            settings: Application settings
            logger: Logger instance
            session: Optional requests session (shared connection pool)
        """
        self.settings = settings
        self.logger = logger
        self.session = session or requests.Session()

    def fetch(self, ref: str) -> bytes:
        """
        Load the bytes behind an asset reference.

        Raises:
            AssetExpiredError: Remote asset answered 404/410
            ProviderError: Network failure or other HTTP error
            FileNotFoundError: Local file does not exist
        """
        if ref.startswith("data:"):
            return parse_data_url(ref)[1]

        if is_remote(ref):
            try:
                response = self.session.get(ref, timeout=self.settings.http_timeout_seconds)
            except requests.exceptions.RequestException as e:
                raise ProviderError(f"Network error fetching asset: {e}", {"ref": ref[:100]}) from e
            if response.status_code in EXPIRED_STATUS_CODES:
                raise AssetExpiredError(
                    f"Asset not found ({response.status_code}); it has expired", {"ref": ref[:100]}
                )
            if response.status_code >= 400:
                raise ProviderError(
                    f"Fetching asset returned status {response.status_code}",
                    {"ref": ref[:100]},
                    status_code=response.status_code,
                )
            return response.content

        path = Path(ref[len("file://"):] if ref.startswith("file://") else ref)
        return path.read_bytes()

    def ensure_available(self, ref: str) -> None:
        """
        Probe a remote input asset before handing it to a provider.

        Non-remote refs are always considered available. Network errors are
        logged and ignored; the provider reports them on submission.

        Raises:
            AssetExpiredError: The asset answered 404/410
        """
        if not is_remote(ref):
            return
        try:
            response = self.session.head(ref, allow_redirects=True, timeout=self.settings.http_timeout_seconds)
        except requests.exceptions.RequestException as e:
            self.logger.debug(f"Asset probe failed, continuing: {e}")
            return
        if response.status_code in EXPIRED_STATUS_CODES:
            self.logger.warning(f"Input asset expired ({response.status_code}): {ref[:80]}...")
            raise AssetExpiredError(
                "Image URL has expired. Regenerate the image for this shot, then try again.",
                {"ref": ref[:100], "status": response.status_code},
            )
