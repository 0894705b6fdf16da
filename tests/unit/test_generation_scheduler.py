"""Tests for the generation scheduler."""

import time
from threading import Lock
from unittest.mock import MagicMock

import pytest

from story_video.core.errors import ProviderError
from story_video.models.schemas import GenerationJob, JobKind, JobResult, Scene, Shot, Story
from story_video.services.fallback_resolver import FallbackResolver
from story_video.services.generation_scheduler import BatchProgress, GenerationScheduler
from story_video.services.story_store import StoryStore


class CountingProvider:
    """Provider that tracks peak concurrency and fails selected targets."""

    def __init__(self, fail_targets=(), delay=0.02):
        self.fail_targets = set(fail_targets)
        self.delay = delay
        self.active = 0
        self.peak = 0
        self.calls = []
        self._lock = Lock()

    def submit(self, kind, input_refs, parameters, backend_id):
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
            self.calls.append(backend_id)
        try:
            time.sleep(self.delay)
            target = parameters.get("prompt", "")
            if any(t in target for t in self.fail_targets):
                raise ProviderError(f"failed {target}")
            return f"https://cdn/{kind.value}/{len(self.calls)}.png"
        finally:
            with self._lock:
                self.active -= 1


def make_story(count):
    return Story(id="s", scenes=[Scene(id="sc", shots=[Shot(id=f"shot_{i}", content=f"c{i}") for i in range(count)])])


def image_jobs(story, backend_id):
    return [
        GenerationJob(
            kind=JobKind.IMAGE,
            target_id=shot.id,
            scene_id="sc",
            backend_id=backend_id,
            parameters={"prompt": f"target-{shot.id}", "style": "Flat"},
        )
        for shot in story.scenes[0].shots
    ]


@pytest.fixture
def sleeps():
    return []


def make_scheduler(settings, logger, story, provider, sleeps):
    store = StoryStore(story, logger)
    resolver = FallbackResolver(settings, logger, provider)
    return GenerationScheduler(settings, logger, resolver, store, sleep=sleeps.append), store


def test_seven_jobs_limit_five_two_waves_one_failure(settings, logger, sleeps):
    story = make_story(7)
    provider = CountingProvider(fail_targets=["target-shot_3"])
    scheduler, store = make_scheduler(settings, logger, story, provider, sleeps)
    jobs = image_jobs(story, settings.default_image_backend)
    progress = BatchProgress()

    results = scheduler.run_batch(jobs, concurrency_limit=5, progress=progress)

    assert [r.target_id for r in results] == [f"shot_{i}" for i in range(7)]
    assert sum(r.success for r in results) == 6
    assert results[3].success is False
    assert provider.peak <= 5
    # One inter-wave delay, none after the last wave
    assert sleeps == [settings.image_wave_delay]
    assert progress.completed == 7
    assert progress.percent == 100
    assert store.get_shot("shot_0").image_ref is not None
    assert store.get_shot("shot_3").image_ref is None
    assert all(not shot.image_in_progress for shot in story.scenes[0].shots)


def test_concurrency_never_exceeds_default_limit(settings, logger, sleeps):
    story = make_story(8)
    provider = CountingProvider()
    scheduler, _ = make_scheduler(settings, logger, story, provider, sleeps)
    settings.image_concurrency = 3

    results = scheduler.run_batch(image_jobs(story, settings.default_image_backend))

    assert len(results) == 8
    assert provider.peak <= 3
    assert len(sleeps) == 2


def test_single_wave_has_no_delay(settings, logger, sleeps):
    story = make_story(2)
    scheduler, _ = make_scheduler(settings, logger, story, CountingProvider(), sleeps)

    scheduler.run_batch(image_jobs(story, settings.default_image_backend))

    assert sleeps == []


def test_empty_batch(settings, logger, sleeps):
    scheduler, _ = make_scheduler(settings, logger, make_story(0), CountingProvider(), sleeps)

    assert scheduler.run_batch([]) == []


def test_duplicate_target_rejected(settings, logger, sleeps):
    story = make_story(1)
    scheduler, _ = make_scheduler(settings, logger, story, CountingProvider(), sleeps)
    jobs = image_jobs(story, "a") + image_jobs(story, "b")

    with pytest.raises(ValueError):
        scheduler.run_batch(jobs)


def test_invalid_limit_rejected(settings, logger, sleeps):
    story = make_story(1)
    scheduler, _ = make_scheduler(settings, logger, story, CountingProvider(), sleeps)

    with pytest.raises(ValueError):
        scheduler.run_batch(image_jobs(story, "a"), concurrency_limit=-1)


def test_zero_limit_rejected_before_progress(settings, logger, sleeps):
    story = make_story(2)
    scheduler, _ = make_scheduler(settings, logger, story, CountingProvider(), sleeps)
    progress = BatchProgress()

    with pytest.raises(ValueError):
        scheduler.run_batch(image_jobs(story, "a"), concurrency_limit=0, progress=progress)
    with pytest.raises(ValueError):
        scheduler.run_batch([], concurrency_limit=0, progress=progress)

    assert progress.total == 0
    assert progress.events == []


def test_duplicate_rejected_before_progress(settings, logger, sleeps):
    story = make_story(1)
    scheduler, _ = make_scheduler(settings, logger, story, CountingProvider(), sleeps)
    progress = BatchProgress()

    with pytest.raises(ValueError):
        scheduler.run_batch(image_jobs(story, "a") + image_jobs(story, "b"), progress=progress)

    assert progress.total == 0


def test_stale_flags_cleared_before_batch(settings, logger, sleeps):
    story = make_story(2)
    story.scenes[0].shots[1].video_in_progress = True
    scheduler, store = make_scheduler(settings, logger, story, CountingProvider(), sleeps)

    scheduler.run_batch(image_jobs(story, settings.default_image_backend)[:1])

    assert store.get_shot("shot_1").video_in_progress is False


def test_resolver_crash_becomes_failed_result(settings, logger, sleeps):
    story = make_story(2)
    store = StoryStore(story, logger)
    resolver = MagicMock()
    resolver.execute.side_effect = RuntimeError("unexpected")
    scheduler = GenerationScheduler(settings, logger, resolver, store, sleep=sleeps.append)

    results = scheduler.run_batch(image_jobs(story, "a"))

    assert [r.success for r in results] == [False, False]
    assert "RuntimeError" in results[0].error_message
    assert not story.scenes[0].shots[0].image_in_progress


def test_retry_attempts_repeat_generic_failures(settings, logger, sleeps):
    story = make_story(1)
    provider = CountingProvider(fail_targets=["target-shot_0"])
    settings.retry_attempts = 2
    scheduler, _ = make_scheduler(settings, logger, story, provider, sleeps)

    results = scheduler.run_batch(image_jobs(story, settings.default_image_backend))

    assert results[0].success is False
    assert results[0].attempts == 3
    assert len(provider.calls) == 3


def test_progress_reported_after_entity_update(settings, logger, sleeps):
    story = make_story(3)
    scheduler, store = make_scheduler(settings, logger, story, CountingProvider(), sleeps)
    observed = []

    class CheckingProgress(BatchProgress):
        def record(self, result):
            observed.append(store.get_shot(result.target_id).image_ref is not None)
            return super().record(result)

    progress = CheckingProgress()
    scheduler.run_batch(image_jobs(story, settings.default_image_backend), progress=progress)

    assert observed == [True, True, True]
    assert [e.completed for e in progress.events] == [1, 2, 3]


def test_generated_speech_is_padded(settings, logger, sleeps):
    story = make_story(1)
    store = StoryStore(story, logger)
    job = GenerationJob(kind=JobKind.AUDIO, target_id="shot_0", backend_id="openai", parameters={"text": "hi"})
    resolver = MagicMock()
    resolver.execute.return_value = JobResult(
        job_id=job.job_id,
        kind=JobKind.AUDIO,
        target_id="shot_0",
        success=True,
        asset_ref="data:audio/mpeg;base64,BBBB",
    )
    normalizer = MagicMock()
    normalizer.normalize_ref.return_value = "data:audio/wav;base64,AAAA"
    scheduler = GenerationScheduler(settings, logger, resolver, store, normalizer=normalizer, sleep=sleeps.append)

    scheduler.run_batch([job])

    normalizer.normalize_ref.assert_called_once_with("data:audio/mpeg;base64,BBBB")
    assert store.get_shot("shot_0").speech_ref == "data:audio/wav;base64,AAAA"
