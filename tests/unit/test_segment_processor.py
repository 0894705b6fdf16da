"""Tests for per-shot segment processing."""

import numpy as np
import pytest

from story_video.core.errors import EncodingError
from story_video.models.schemas import QualityPreset
from story_video.services.duration_normalizer import encode_wav
from story_video.services.segment_processor import (
    CAPTION_STYLE,
    SegmentBranch,
    SegmentProcessor,
    caption_srt,
    select_branch,
)

VIDEO = b"\x00\x00\x00\x18ftypmp42 raw clip"
SPEECH = b"ID3 mp3 speech"


@pytest.fixture
def processor(settings, logger, fake_session):
    return SegmentProcessor(settings, logger, fake_session)


@pytest.mark.parametrize(
    "has_speech, caption, burn, expected",
    [
        (False, None, False, SegmentBranch.PASSTHROUGH),
        (False, "   ", True, SegmentBranch.PASSTHROUGH),
        (False, "Hello", False, SegmentBranch.CAPTION_IGNORED),
        (False, "Hello", True, SegmentBranch.CAPTION_BURN),
        (True, None, True, SegmentBranch.MUX),
        (True, "Hello", False, SegmentBranch.MUX_CAPTION),
    ],
)
def test_select_branch(has_speech, caption, burn, expected):
    assert select_branch(has_speech, caption, burn) == expected


def test_passthrough_is_byte_identical(processor, fake_session):
    name = processor.process(0, VIDEO)

    assert name == "processed_0.mp4"
    assert fake_session.read(name) == VIDEO
    assert fake_session.commands == []


def test_caption_without_burn_is_passthrough(processor, fake_session):
    name = processor.process(1, VIDEO, caption="Hello there")

    assert fake_session.read(name) == VIDEO
    assert fake_session.commands == []


def test_mux_copies_video_and_encodes_audio(processor, fake_session):
    name = processor.process(2, VIDEO, speech=SPEECH)

    argv = fake_session.commands[0]
    assert argv[:4] == ["-i", "input_2.mp4", "-i", "temp_audio_2.mp3"]
    assert argv[argv.index("-c:v") + 1] == "copy"
    assert argv[argv.index("-c:a") + 1] == "aac"
    assert "-shortest" in argv
    assert "-vf" not in argv
    assert argv[-1] == name == "processed_2.mp4"
    # Only the output remains in the session
    assert set(fake_session.files) == {"processed_2.mp4"}


def test_wav_speech_gets_wav_suffix(processor, fake_session):
    speech = encode_wav(np.zeros((10, 1), dtype="<i2"), 8000)
    processor.process(3, VIDEO, speech=speech)

    assert "temp_audio_3.wav" in fake_session.commands[0]


def test_caption_burn_reencodes_with_preset(processor, fake_session):
    written = {}
    original_write = fake_session.write

    def record(name, data):
        written[name] = data
        original_write(name, data)

    fake_session.write = record
    processor.process(4, VIDEO, caption="It's a storm:\n\nrun!", burn_captions=True, quality=QualityPreset.LOW)

    argv = fake_session.commands[0]
    assert argv[argv.index("-vf") + 1] == f"subtitles=caption_4.srt:force_style='{CAPTION_STYLE}'"
    assert written["caption_4.srt"] == b"1\n00:00:00,000 --> 99:59:59,999\nIt's a storm: run!\n"
    assert argv[argv.index("-preset") + 1] == "ultrafast"
    assert argv[argv.index("-crf") + 1] == "30"
    assert argv[argv.index("-c:a") + 1] == "copy"
    assert "-shortest" not in argv
    assert "caption_4.srt" not in fake_session.files


def test_caption_srt_is_a_single_cue():
    assert caption_srt("  Mira climbs\nthe stairs.  ") == "1\n00:00:00,000 --> 99:59:59,999\nMira climbs the stairs.\n"


def test_mux_caption_combines_audio_and_text(processor, fake_session):
    processor.process(5, VIDEO, speech=SPEECH, caption="Narration", quality=QualityPreset.ULTRA)

    argv = fake_session.commands[0]
    assert "1:a:0" in argv
    assert argv[argv.index("-c:v") + 1] == "libx264"
    assert argv[argv.index("-crf") + 1] == "20"
    assert argv[argv.index("-vf") + 1].startswith("subtitles=caption_5.srt:force_style=")
    assert "-shortest" in argv


def test_empty_output_raises(settings, logger, make_session):
    session = make_session(output_bytes=b"")
    processor = SegmentProcessor(settings, logger, session)

    with pytest.raises(EncodingError) as excinfo:
        processor.process(6, VIDEO, speech=SPEECH)

    assert excinfo.value.context["segment"] == 6
    assert session.files == {}


def test_encoder_failure_cleans_up(settings, logger, make_session):
    session = make_session(fail_on=lambda argv: True)
    processor = SegmentProcessor(settings, logger, session)

    with pytest.raises(EncodingError) as excinfo:
        processor.process(7, VIDEO, speech=SPEECH, caption="x")

    assert excinfo.value.context["branch"] == SegmentBranch.MUX_CAPTION.value
    assert excinfo.value.stderr == "boom"
    assert session.files == {}
