"""Encoding tests against the real ffmpeg binary bundled with imageio-ffmpeg."""

from unittest.mock import MagicMock

import imageio_ffmpeg
import numpy as np
import pytest

from story_video.pipelines.run_pipeline import default_export_request
from story_video.services.concatenation import Concatenator
from story_video.services.duration_normalizer import encode_wav
from story_video.services.encoding_backend import FFmpegSession
from story_video.services.segment_processor import SegmentProcessor
from story_video.services.video_exporter import VideoExporter

SAMPLE_RATE = 22050


@pytest.fixture(scope="module")
def ffmpeg_binary():
    try:
        return imageio_ffmpeg.get_ffmpeg_exe()
    except RuntimeError as e:
        pytest.skip(f"ffmpeg binary not available: {e}")


@pytest.fixture
def session(settings, logger, tmp_path, ffmpeg_binary):
    settings.export_work_dir = str(tmp_path)
    session = FFmpegSession(settings, logger, binary=ffmpeg_binary)
    yield session
    session.close()


@pytest.fixture
def processor(settings, logger, session):
    return SegmentProcessor(settings, logger, session)


def make_clip(session, seconds, colour="blue"):
    name = f"source_{colour}_{seconds}.mp4"
    session.exec(
        [
            "-f", "lavfi", "-i", f"color=c={colour}:size=160x120:rate=25:duration={seconds}",
            "-c:v", "libx264", "-preset", "ultrafast", "-pix_fmt", "yuv420p",
            "-y", name,
        ]
    )
    data = session.read(name)
    session.delete(name)
    return data


def make_speech(seconds):
    t = np.arange(int(seconds * SAMPLE_RATE)) / SAMPLE_RATE
    return encode_wav(0.3 * np.sin(2 * np.pi * 440 * t), SAMPLE_RATE)


def duration_of(path):
    _, seconds = imageio_ffmpeg.count_frames_and_secs(str(path))
    return seconds


def dominant_colours(path):
    reader = imageio_ffmpeg.read_frames(str(path))
    width, height = next(reader)["size"]
    centre = ((height // 2) * width + width // 2) * 3
    colours = []
    for frame in reader:
        r, g, b = frame[centre:centre + 3]
        colour = max((("red", r), ("green", g), ("blue", b)), key=lambda pair: pair[1])[0]
        if not colours or colours[-1] != colour:
            colours.append(colour)
    return colours


def test_passthrough_is_byte_identical(processor, session):
    video = make_clip(session, 1)

    name = processor.process(0, video)

    assert session.read(name) == video


def test_mux_duration_is_shorter_stream(processor, session):
    name = processor.process(1, make_clip(session, 3), speech=make_speech(5))
    assert duration_of(session.workdir / name) == pytest.approx(3.0, abs=0.15)

    name = processor.process(2, make_clip(session, 3), speech=make_speech(1.5))
    assert duration_of(session.workdir / name) == pytest.approx(1.5, abs=0.3)


def test_mux_with_caption_burns_subtitles(processor, session):
    name = processor.process(3, make_clip(session, 2), speech=make_speech(4), caption="Mira climbs the stairs.")

    assert duration_of(session.workdir / name) == pytest.approx(2.0, abs=0.15)
    assert sorted(p.name for p in session.workdir.iterdir()) == [name]


def test_caption_burn_without_speech(processor, session):
    name = processor.process(4, make_clip(session, 2), caption="The storm arrives.", burn_captions=True)

    assert duration_of(session.workdir / name) == pytest.approx(2.0, abs=0.15)


def test_concatenation_keeps_order_and_total_duration(settings, logger, session):
    names = []
    for index, colour in enumerate(["red", "green", "blue"]):
        name = f"processed_{index}.mp4"
        session.write(name, make_clip(session, 1, colour))
        names.append(name)

    output = Concatenator(settings, logger, session).concatenate(names)

    assert duration_of(session.workdir / output) == pytest.approx(3.0, abs=0.15)
    assert dominant_colours(session.workdir / output) == ["red", "green", "blue"]


def test_default_export_of_narrated_story(settings, logger, session, story, tmp_path, ffmpeg_binary):
    assets = {}
    for index, shot in enumerate((s for scene in story.scenes for s in scene.shots), start=1):
        shot.video_ref = f"https://cdn/{index}.mp4"
        shot.speech_ref = f"https://cdn/{index}.wav"
        assets[shot.video_ref] = make_clip(session, 1)
        assets[shot.speech_ref] = make_speech(2)
    fetcher = MagicMock()
    fetcher.fetch.side_effect = lambda ref: assets[ref]
    exporter = VideoExporter(
        settings,
        logger,
        fetcher=fetcher,
        normalizer=MagicMock(),
        session_factory=lambda: FFmpegSession(settings, logger, binary=ffmpeg_binary),
    )

    result = exporter.export(story, default_export_request(story))

    assert result.failures == []
    assert result.segment_count == 3
    output = tmp_path / result.filename
    output.write_bytes(result.video)
    assert duration_of(output) == pytest.approx(3.0, abs=0.3)
