"""Generation Scheduler - runs generation jobs in bounded concurrent waves."""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from threading import Lock
from typing import Any, Callable, Optional

from story_video.core.config import Settings
from story_video.core.logging_config import log_stage
from story_video.models.schemas import ErrorKind, GenerationJob, JobKind, JobResult, ProgressEvent
from story_video.services.duration_normalizer import DurationNormalizer
from story_video.services.fallback_resolver import FallbackResolver
from story_video.services.story_store import StoryStore


class BatchProgress:
    """Pollable batch progress plus the ordered list of progress events."""

    def __init__(self, total: int = 0):
        self._lock = Lock()
        self.total = total
        self.completed = 0
        self.events: list[ProgressEvent] = []

    @property
    def percent(self) -> int:
        with self._lock:
            return self._percent()

    def _percent(self) -> int:
        return 100 if self.total == 0 else int(self.completed * 100 / self.total)

    def record(self, result: JobResult) -> ProgressEvent:
        with self._lock:
            self.completed += 1
            event = ProgressEvent(
                job_id=result.job_id,
                target_id=result.target_id,
                kind=result.kind,
                success=result.success,
                completed=self.completed,
                total=self.total,
                percent=self._percent(),
            )
            self.events.append(event)
            return event

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {"completed": self.completed, "total": self.total, "percent": self._percent()}


class GenerationScheduler:
    """
    Runs independent jobs in waves bounded by a concurrency ceiling.

    A job failure never cancels its siblings; every submitted job yields
    exactly one JobResult. Entity state is updated on the calling thread
    as each job completes, before its progress is reported.
    """

    def __init__(
        self,
        settings: Settings,
        logger: Any,
        resolver: FallbackResolver,
        store: StoryStore,
        normalizer: Optional[DurationNormalizer] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the scheduler.

        Args:
            settings: Application settings (ceilings, wave delays, retries)
            logger: Logger instance
            resolver: Executes a single job with backend fallback
            store: Story store receiving job side effects
            normalizer: Pads generated speech (when enabled in settings)
            sleep: Sleep function for inter-wave delays
        """
        self.settings = settings
        self.logger = logger
        self.resolver = resolver
        self.store = store
        self.normalizer = normalizer or DurationNormalizer(settings, logger)
        self._sleep = sleep

    def concurrency_limit(self, kind: JobKind) -> int:
        return {
            JobKind.IMAGE: self.settings.image_concurrency,
            JobKind.VIDEO: self.settings.video_concurrency,
            JobKind.AUDIO: self.settings.audio_concurrency,
            JobKind.CHARACTER_IMAGE: self.settings.character_concurrency,
        }[kind]

    def wave_delay(self, kind: JobKind) -> float:
        return {
            JobKind.IMAGE: self.settings.image_wave_delay,
            JobKind.VIDEO: self.settings.video_wave_delay,
            JobKind.AUDIO: self.settings.audio_wave_delay,
            JobKind.CHARACTER_IMAGE: self.settings.character_wave_delay,
        }[kind]

    def run_batch(
        self,
        jobs: list[GenerationJob],
        concurrency_limit: Optional[int] = None,
        progress: Optional[BatchProgress] = None,
    ) -> list[JobResult]:
        """
        Run a batch of jobs.

        Args:
            jobs: Independent jobs (at most one per kind and target)
            concurrency_limit: Wave size (defaults to the strictest ceiling of the kinds present)
            progress: Optional progress object updated as jobs complete

        Returns:
            One JobResult per job, in submission order

        Raises:
            ValueError: Two jobs share a kind and target, or the limit is < 1
        """
        if concurrency_limit is not None and concurrency_limit < 1:
            raise ValueError("Concurrency limit must be at least 1")

        seen: set[tuple[JobKind, str]] = set()
        for job in jobs:
            key = (job.kind, job.target_id)
            if key in seen:
                raise ValueError(f"Batch has more than one {job.kind.value} job for {job.target_id}")
            seen.add(key)

        progress = progress or BatchProgress()
        progress.total = len(jobs)
        if not jobs:
            return []

        kinds = {job.kind for job in jobs}
        if concurrency_limit is None:
            limit = min(self.concurrency_limit(k) for k in kinds)
        else:
            limit = concurrency_limit
        if limit < 1:
            raise ValueError("Concurrency limit must be at least 1")
        delay = max(self.wave_delay(k) for k in kinds)

        self.store.reset_stale_flags()

        waves = [jobs[i : i + limit] for i in range(0, len(jobs), limit)]
        log_stage(
            self.logger,
            f"Generation batch: {', '.join(sorted(k.value for k in kinds))}",
            jobs=len(jobs),
            concurrency=limit,
            waves=len(waves),
        )

        start_time = time.time()
        results: dict[str, JobResult] = {}
        for wave_number, wave in enumerate(waves, start=1):
            self.logger.info(f"Wave {wave_number}/{len(waves)}: {len(wave)} job(s)")
            for result in self._run_wave(wave, progress):
                results[result.job_id] = result
            if wave_number < len(waves) and delay > 0:
                self._sleep(delay)

        ordered = [results[job.job_id] for job in jobs]
        succeeded = sum(1 for r in ordered if r.success)
        self.logger.info(
            f"Batch complete: {succeeded}/{len(ordered)} successful in {time.time() - start_time:.2f}s "
            f"(parallelism: {limit} workers)"
        )
        return ordered

    def _run_wave(self, wave: list[GenerationJob], progress: BatchProgress) -> list[JobResult]:
        for job in wave:
            self._begin(job)

        results: list[JobResult] = []
        with ThreadPoolExecutor(max_workers=len(wave)) as executor:
            future_to_job = {executor.submit(self._run_job, job): job for job in wave}
            for future in as_completed(future_to_job):
                job = future_to_job[future]
                try:
                    result = future.result()
                except Exception as e:
                    result = self._failed(job, e)
                self._complete(job, result, progress)
                results.append(result)
        return results

    def _run_job(self, job: GenerationJob) -> JobResult:
        started = time.time()
        try:
            result = self.resolver.execute(job)
            retries = 0
            while (
                not result.success
                and result.error_kind == ErrorKind.PROVIDER_GENERIC
                and retries < self.settings.retry_attempts
            ):
                retries += 1
                self.logger.info(f"Retrying {job.kind.value} job for {job.target_id} ({retries}/{self.settings.retry_attempts})")
                previous_attempts = result.attempts
                result = self.resolver.execute(job)
                result.attempts += previous_attempts

            if result.success and job.kind == JobKind.AUDIO and self.settings.pad_speech_on_generation:
                result.asset_ref = self.normalizer.normalize_ref(result.asset_ref)
        except Exception as e:
            result = self._failed(job, e)

        elapsed = time.time() - started
        if result.success:
            self.logger.info(f"✅ {job.kind.value} {job.target_id} completed in {elapsed:.2f}s")
        else:
            self.logger.error(f"❌ {job.kind.value} {job.target_id} failed after {elapsed:.2f}s: {result.error_message}")
        return result

    def _failed(self, job: GenerationJob, error: Exception) -> JobResult:
        return JobResult(
            job_id=job.job_id,
            kind=job.kind,
            target_id=job.target_id,
            success=False,
            error_kind=getattr(error, "error_kind", ErrorKind.PROVIDER_GENERIC),
            error_message=f"{type(error).__name__}: {error}",
            backend_used=job.backend_id,
        )

    def _begin(self, job: GenerationJob) -> None:
        try:
            self.store.begin_job(job.kind, job.target_id)
        except KeyError:
            self.logger.warning(f"{job.kind.value} target {job.target_id} no longer exists")

    def _complete(self, job: GenerationJob, result: JobResult, progress: BatchProgress) -> None:
        try:
            self.store.complete_job(job.kind, job.target_id, result.asset_ref if result.success else None)
        except KeyError:
            self.logger.warning(f"Discarding {job.kind.value} result: {job.target_id} was removed")
        progress.record(result)
