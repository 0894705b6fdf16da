"""Tests for utility helpers."""

from datetime import datetime

import pytest

from story_video.core.errors import EncodingError, MalformedResponseError, ProviderError
from story_video.models.schemas import ErrorKind
from story_video.utils.error_handler import format_error_message, get_recovery_suggestion
from story_video.utils.io_utils import export_filename, parse_data_url, slugify, to_data_url
from story_video.utils.rate_limiter import RateLimiter


def test_slugify():
    assert slugify("The Lighthouse: Part 2!") == "the-lighthouse-part-2"
    assert slugify("   ") == ""


def test_export_filename():
    now = datetime(2024, 3, 9, 14, 5, 7)

    assert export_filename("The Lighthouse", now) == "the-lighthouse_2024-03-09_140507.mp4"
    assert export_filename("???", now) == "story_2024-03-09_140507.mp4"


def test_data_url_round_trip_and_rejection():
    ref = to_data_url(b"\x00\x01", "audio/wav")

    assert parse_data_url(ref) == ("audio/wav", b"\x00\x01")
    with pytest.raises(ValueError):
        parse_data_url("data:text/plain,hello")
    with pytest.raises(ValueError):
        parse_data_url("https://cdn/a.mp3")


def test_format_error_message_merges_error_context():
    error = EncodingError("ffmpeg exited with status 1", {"branch": "mux"})

    message = format_error_message("Processing segment", error, context={"segment": 2}, suggestion="Retry")

    assert "segment=2" in message
    assert "branch=mux" in message
    assert "EncodingError: ffmpeg exited with status 1" in message
    assert "Suggestion: Retry" in message


def test_encoding_error_message_includes_stderr_tail():
    stderr = "Input #0, mov,mp4 from 'input_0.mp4'\n\n[AVFilterGraph] No such filter: 'drawtext'\nError opening filters!\n"
    error = EncodingError("ffmpeg exited with status 8", {"branch": "mux_caption"}, stderr=stderr)

    assert str(error) == (
        "ffmpeg exited with status 8: Input #0, mov,mp4 from 'input_0.mp4' | "
        "[AVFilterGraph] No such filter: 'drawtext' | Error opening filters!"
    )
    assert "No such filter: 'drawtext'" in format_error_message("Processing segment", error)
    assert str(EncodingError("Segment output is empty")) == "Segment output is empty"


@pytest.mark.parametrize(
    "kind, message, expected",
    [
        (ErrorKind.ASSET_EXPIRED, "", "Regenerate the image"),
        (ErrorKind.PROVIDER_GENERIC, "401 Unauthorized", "API token"),
        (ErrorKind.PROVIDER_GENERIC, "429 rate limit", "Rate limit"),
        (ErrorKind.PROVIDER_GENERIC, "Prediction timed out", "too long"),
        (ErrorKind.CONCATENATION_FAILURE, "", "Re-run the export"),
    ],
)
def test_recovery_suggestions(kind, message, expected):
    assert expected in get_recovery_suggestion(kind, message)


def test_no_suggestion_without_kind():
    assert get_recovery_suggestion(None) is None


def test_error_payload_excerpt_is_truncated():
    error = MalformedResponseError("bad", payload="x" * 2000)

    assert len(error.payload_excerpt) == 500
    assert error.error_kind == ErrorKind.MALFORMED_RESPONSE


def test_provider_error_status_code():
    assert ProviderError("down", status_code=503).status_code == 503


class FakeTime:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def test_rate_limiter_waits_for_window():
    fake = FakeTime()
    limiter = RateLimiter(max_calls=2, time_window=10.0, clock=fake.clock, sleep=fake.sleep)

    assert limiter.acquire("replicate") == 0.0
    fake.now = 4.0
    assert limiter.acquire("replicate") == 0.0
    assert limiter.can_proceed("replicate") is False

    waited = limiter.acquire("replicate")

    assert waited == pytest.approx(6.0)
    assert fake.sleeps == [pytest.approx(6.0)]


def test_rate_limiter_endpoints_are_independent():
    fake = FakeTime()
    limiter = RateLimiter(max_calls=1, time_window=60.0, clock=fake.clock, sleep=fake.sleep)

    limiter.acquire("openai")

    assert limiter.can_proceed("elevenlabs") is True
    limiter.reset("openai")
    assert limiter.can_proceed("openai") is True
