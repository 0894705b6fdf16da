"""Generation Provider - Replicate predictions and speech synthesis behind one submit()."""

import time
from typing import Any, Callable, Optional

import requests
from openai import OpenAI, OpenAIError

from story_video.core.config import Settings
from story_video.core.errors import (
    AssetExpiredError,
    MalformedResponseError,
    ProviderError,
)
from story_video.models.schemas import JobKind
from story_video.services.asset_fetcher import AssetFetcher, proxy_url
from story_video.utils.io_utils import to_data_url
from story_video.utils.rate_limiter import RateLimiter, get_replicate_limiter, get_speech_limiter

TERMINAL_STATUSES = ("succeeded", "failed", "canceled")


def mentions_missing_asset(message: str) -> bool:
    """True when provider error text reports a 404 / not-found input."""
    lowered = message.lower()
    return "404" in lowered or "not found" in lowered


class ReplicateProvider:
    """Runs image, character and video jobs as Replicate predictions."""

    def __init__(
        self,
        settings: Settings,
        logger: Any,
        session: Optional[requests.Session] = None,
        fetcher: Optional[AssetFetcher] = None,
        rate_limiter: Optional[RateLimiter] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the Replicate client.

        Args:
            settings: Application settings
            logger: Logger instance
            session: Optional requests session
            fetcher: Asset fetcher used to probe input images
            rate_limiter: Optional limiter (defaults to the shared Replicate limiter)
            sleep: Sleep function used while polling
            clock: Monotonic time source for the prediction timeout
        """
        self.settings = settings
        self.logger = logger
        self.session = session or requests.Session()
        self.fetcher = fetcher or AssetFetcher(settings, logger, session=self.session)
        if rate_limiter is None and settings.enable_rate_limiting:
            rate_limiter = get_replicate_limiter(max_calls=settings.replicate_rate_limit)
        self.rate_limiter = rate_limiter
        self._sleep = sleep
        self._clock = clock

    def submit(self, kind: JobKind, input_refs: dict[str, str], parameters: dict[str, Any], backend_id: str) -> str:
        """
        Create a prediction and wait for its output URL.

        Args:
            kind: Job kind
            input_refs: Input asset references (probed before submission)
            parameters: Backend-shaped request input
            backend_id: ``owner/name`` or ``owner/name:version``

        Returns:
            Output asset URL (CDN-proxied when configured)

        Raises:
            AssetExpiredError: An input asset is gone
            ProviderError: HTTP failure, failed/canceled prediction, timeout
            MalformedResponseError: Unparsable response or output
        """
        if not self.settings.replicate_api_token:
            raise ProviderError("Replicate API token not configured", {"backend": backend_id})

        for ref in input_refs.values():
            self.fetcher.ensure_available(ref)

        prediction = self._create_prediction(backend_id, parameters)
        self.logger.debug(f"Prediction {prediction.get('id')} created on {backend_id} for {kind.value}")
        prediction = self._wait(prediction, backend_id)

        status = prediction.get("status")
        if status != "succeeded":
            error_text = str(prediction.get("error") or f"Prediction {status}")
            context = {"backend": backend_id, "prediction": prediction.get("id")}
            if input_refs and mentions_missing_asset(error_text):
                raise AssetExpiredError(
                    f"Input asset not found: {error_text}. Regenerate the input image, then try again.", context
                )
            raise ProviderError(error_text, context)

        output_url = self._parse_output(prediction.get("output"), backend_id)
        return proxy_url(output_url, self.settings.cdn_proxy_domain)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.replicate_api_token}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, url: str, backend_id: str, **kwargs: Any) -> dict[str, Any]:
        if self.rate_limiter is not None:
            self.rate_limiter.acquire("replicate")
        try:
            response = self.session.request(
                method, url, headers=self._headers(), timeout=self.settings.http_timeout_seconds, **kwargs
            )
        except requests.exceptions.RequestException as e:
            raise ProviderError(f"Network error calling Replicate: {e}", {"backend": backend_id}) from e

        if response.status_code >= 400:
            raise ProviderError(
                f"Replicate API returned status {response.status_code}: {response.text[:300]}",
                {"backend": backend_id},
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise MalformedResponseError(
                "Replicate returned a non-JSON response", payload=response.text, context={"backend": backend_id}
            ) from e
        if not isinstance(payload, dict):
            raise MalformedResponseError(
                "Replicate returned an unexpected payload", payload=payload, context={"backend": backend_id}
            )
        return payload

    def _create_prediction(self, backend_id: str, parameters: dict[str, Any]) -> dict[str, Any]:
        base = self.settings.replicate_api_url.rstrip("/")
        if ":" in backend_id:
            version = backend_id.split(":", 1)[1]
            return self._request("POST", f"{base}/predictions", backend_id, json={"version": version, "input": parameters})
        return self._request("POST", f"{base}/models/{backend_id}/predictions", backend_id, json={"input": parameters})

    def _wait(self, prediction: dict[str, Any], backend_id: str) -> dict[str, Any]:
        deadline = self._clock() + self.settings.provider_timeout_seconds
        while prediction.get("status") not in TERMINAL_STATUSES:
            if self._clock() >= deadline:
                raise ProviderError(
                    f"Prediction timed out after {self.settings.provider_timeout_seconds:.0f}s",
                    {"backend": backend_id, "prediction": prediction.get("id")},
                )
            self._sleep(self.settings.provider_poll_interval)
            poll_url = (prediction.get("urls") or {}).get("get")
            if not poll_url:
                if not prediction.get("id"):
                    raise MalformedResponseError(
                        "Prediction has no id or poll URL", payload=prediction, context={"backend": backend_id}
                    )
                poll_url = f"{self.settings.replicate_api_url.rstrip('/')}/predictions/{prediction['id']}"
            prediction = self._request("GET", poll_url, backend_id)
        return prediction

    def _parse_output(self, output: Any, backend_id: str) -> str:
        if isinstance(output, list) and output:
            output = output[0]
        if isinstance(output, str) and output:
            return output
        raise MalformedResponseError(
            "Prediction output is not an asset URL", payload=output, context={"backend": backend_id}
        )


class SpeechProvider:
    """Synthesizes narration with OpenAI or ElevenLabs, returning a data URL."""

    def __init__(
        self,
        settings: Settings,
        logger: Any,
        session: Optional[requests.Session] = None,
        openai_client: Any = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.settings = settings
        self.logger = logger
        self.session = session or requests.Session()
        self._openai_client = openai_client
        if rate_limiter is None and settings.enable_rate_limiting:
            rate_limiter = get_speech_limiter()
        self.rate_limiter = rate_limiter

    def submit(self, kind: JobKind, input_refs: dict[str, str], parameters: dict[str, Any], backend_id: str) -> str:
        if kind != JobKind.AUDIO:
            raise ProviderError(f"Speech provider cannot run {kind.value} jobs", {"backend": backend_id})
        if self.rate_limiter is not None:
            self.rate_limiter.acquire(backend_id)

        if backend_id == "elevenlabs":
            audio = self._elevenlabs(parameters)
        elif backend_id == "openai":
            audio = self._openai(parameters)
        else:
            raise ProviderError(f"Unsupported voice provider: {backend_id}", {"backend": backend_id})

        if not audio:
            raise MalformedResponseError("Speech provider returned no audio", context={"backend": backend_id})
        self.logger.debug(f"Synthesized {len(audio)} bytes of speech with {backend_id}")
        return to_data_url(audio, "audio/mpeg")

    def _get_openai_client(self) -> Any:
        if self._openai_client is None:
            if not self.settings.openai_api_key:
                raise ProviderError("OpenAI API key not configured", {"backend": "openai"})
            self._openai_client = OpenAI(api_key=self.settings.openai_api_key)
        return self._openai_client

    def _openai(self, parameters: dict[str, Any]) -> bytes:
        client = self._get_openai_client()
        try:
            response = client.audio.speech.create(**parameters)
        except OpenAIError as e:
            raise ProviderError(f"OpenAI TTS API error: {e}", {"backend": "openai"}) from e
        return response.content

    def _elevenlabs(self, parameters: dict[str, Any]) -> bytes:
        if not self.settings.elevenlabs_api_key:
            raise ProviderError("ElevenLabs API key not configured", {"backend": "elevenlabs"})
        body = dict(parameters)
        voice_id = body.pop("voice_id")
        url = f"{self.settings.elevenlabs_api_url.rstrip('/')}/text-to-speech/{voice_id}"
        headers = {
            "Accept": "audio/mpeg",
            "Content-Type": "application/json",
            "xi-api-key": self.settings.elevenlabs_api_key,
        }
        try:
            response = self.session.post(url, json=body, headers=headers, timeout=self.settings.http_timeout_seconds)
        except requests.exceptions.RequestException as e:
            raise ProviderError(f"Network error calling ElevenLabs API: {e}", {"backend": "elevenlabs"}) from e
        if response.status_code != 200:
            raise ProviderError(
                f"ElevenLabs API returned status {response.status_code}: {response.text[:300]}",
                {"backend": "elevenlabs", "voice_id": voice_id},
                status_code=response.status_code,
            )
        return response.content


class GenerationProvider:
    """Routes a submission to the speech or Replicate provider by job kind."""

    def __init__(
        self,
        settings: Settings,
        logger: Any,
        replicate: Optional[ReplicateProvider] = None,
        speech: Optional[SpeechProvider] = None,
    ):
        self.settings = settings
        self.logger = logger
        self.replicate = replicate or ReplicateProvider(settings, logger)
        self.speech = speech or SpeechProvider(settings, logger)

    def submit(self, kind: JobKind, input_refs: dict[str, str], parameters: dict[str, Any], backend_id: str) -> str:
        if kind == JobKind.AUDIO:
            return self.speech.submit(kind, input_refs, parameters, backend_id)
        return self.replicate.submit(kind, input_refs, parameters, backend_id)
