"""Provider Fallback Resolver - one attempt, plus one retry on the known-good backend."""

from enum import Enum
from typing import Any, Optional, Protocol

from pydantic import BaseModel

from story_video.core.config import Settings
from story_video.core.errors import AssetExpiredError, MalformedResponseError, StoryVideoError
from story_video.models.schemas import ErrorKind, GenerationJob, JobKind, JobResult
from story_video.services.backend_profiles import build_request
from story_video.services.generation_provider import mentions_missing_asset
from story_video.utils.error_handler import format_error_message, get_recovery_suggestion


class Provider(Protocol):
    def submit(
        self, kind: JobKind, input_refs: dict[str, str], parameters: dict[str, Any], backend_id: str
    ) -> str: ...


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    ASSET_EXPIRED = "asset_expired"
    GENERIC = "generic"


class AttemptOutcome(BaseModel):
    """Tagged result of one provider attempt."""

    status: OutcomeStatus
    backend_id: str
    asset_ref: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None
    raw_excerpt: Optional[str] = None


def classify_exception(error: Exception, backend_id: str) -> AttemptOutcome:
    """
    Turn a provider exception into an AttemptOutcome.

    Typed errors carry their own classification. Untyped errors whose text
    reports a 404 / not-found are treated as an expired input asset.
    """
    if isinstance(error, AssetExpiredError):
        status = OutcomeStatus.ASSET_EXPIRED
    elif isinstance(error, StoryVideoError):
        status = OutcomeStatus.GENERIC
    elif mentions_missing_asset(str(error)):
        status = OutcomeStatus.ASSET_EXPIRED
    else:
        status = OutcomeStatus.GENERIC

    if status == OutcomeStatus.ASSET_EXPIRED:
        error_kind = ErrorKind.ASSET_EXPIRED
    else:
        error_kind = getattr(error, "error_kind", ErrorKind.PROVIDER_GENERIC)

    return AttemptOutcome(
        status=status,
        backend_id=backend_id,
        error_kind=error_kind,
        message=str(error) or type(error).__name__,
        raw_excerpt=error.payload_excerpt if isinstance(error, MalformedResponseError) else None,
    )


class FallbackResolver:
    """Executes one GenerationJob with at most one fallback to the default backend."""

    def __init__(self, settings: Settings, logger: Any, provider: Provider):
        """
        Initialize the resolver.

        Args:
            settings: Application settings (known-good backend per job kind)
            logger: Logger instance
            provider: Generation provider collaborator
        """
        self.settings = settings
        self.logger = logger
        self.provider = provider

    def default_backend(self, kind: JobKind) -> str:
        return {
            JobKind.IMAGE: self.settings.default_image_backend,
            JobKind.CHARACTER_IMAGE: self.settings.default_character_image_backend,
            JobKind.VIDEO: self.settings.default_video_backend,
            JobKind.AUDIO: self.settings.default_audio_backend,
        }[kind]

    def attempt(self, job: GenerationJob, backend_id: str) -> AttemptOutcome:
        """Run the job once against ``backend_id`` and classify the outcome."""
        try:
            request = build_request(job.kind, backend_id, job.input_refs, job.parameters)
            asset_ref = self.provider.submit(job.kind, job.input_refs, request, backend_id)
        except Exception as e:
            outcome = classify_exception(e, backend_id)
            self.logger.warning(
                f"{job.kind.value} job for {job.target_id} failed on {backend_id} "
                f"({outcome.status.value}): {outcome.message}"
            )
            return outcome
        return AttemptOutcome(status=OutcomeStatus.SUCCESS, backend_id=backend_id, asset_ref=asset_ref)

    def execute(self, job: GenerationJob) -> JobResult:
        """
        Execute a job with the compatibility fallback.

        Asset-expired outcomes are returned at once. A generic failure on a
        non-default backend is retried exactly once on the default backend,
        with the default backend's parameter shape.

        Args:
            job: Generation job

        Returns:
            JobResult for the job
        """
        outcome = self.attempt(job, job.backend_id)
        attempts = 1
        fallback_attempted = False

        default_backend = self.default_backend(job.kind)
        if outcome.status == OutcomeStatus.GENERIC and default_backend and job.backend_id != default_backend:
            self.logger.info(f"Retrying {job.kind.value} job for {job.target_id} with default backend: {default_backend}")
            outcome = self.attempt(job, default_backend)
            attempts = 2
            fallback_attempted = True

        return self._to_result(job, outcome, attempts, fallback_attempted)

    def _to_result(
        self, job: GenerationJob, outcome: AttemptOutcome, attempts: int, fallback_attempted: bool
    ) -> JobResult:
        if outcome.status == OutcomeStatus.SUCCESS:
            warning = None
            if fallback_attempted:
                warning = f"Original backend {job.backend_id} failed, used fallback: {outcome.backend_id}"
            return JobResult(
                job_id=job.job_id,
                kind=job.kind,
                target_id=job.target_id,
                success=True,
                asset_ref=outcome.asset_ref,
                backend_used=outcome.backend_id,
                fallback_attempted=fallback_attempted,
                attempts=attempts,
                warning=warning,
            )

        message = outcome.message or "Generation failed"
        if outcome.status == OutcomeStatus.ASSET_EXPIRED and "expired" not in message.lower():
            message = f"Input asset has expired: {message}"
        suggestion = get_recovery_suggestion(outcome.error_kind, message)
        self.logger.error(
            format_error_message(
                f"Generating {job.kind.value}",
                RuntimeError(message),
                context={"target": job.target_id, "backend": outcome.backend_id, "attempts": attempts},
                suggestion=suggestion,
            )
        )
        return JobResult(
            job_id=job.job_id,
            kind=job.kind,
            target_id=job.target_id,
            success=False,
            error_kind=outcome.error_kind,
            error_message=message,
            raw_excerpt=outcome.raw_excerpt,
            backend_used=outcome.backend_id,
            fallback_attempted=fallback_attempted,
            attempts=attempts,
        )
