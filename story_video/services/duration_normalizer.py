"""Duration Normalizer - pads synthesized speech with trailing silence."""

import io
import math
import os
import tempfile
import wave
from typing import Any, Optional

import numpy as np
from moviepy import AudioFileClip

from story_video.core.config import Settings
from story_video.utils.io_utils import parse_data_url, to_data_url

PCM_MAX = 0x7FFF


def pad_samples(samples: np.ndarray, sample_rate: int, target_duration: float) -> np.ndarray:
    """
    Append silence so ``samples`` last ``target_duration`` seconds.

    Args:
        samples: Array shaped (frames, channels)
        sample_rate: Frames per second
        target_duration: Target duration in seconds

    Returns:
        The input array when it already meets the target, otherwise a new
        array of ``ceil(target_duration * sample_rate)`` frames whose head is
        the original samples and whose tail is zeros
    """
    target_frames = math.ceil(target_duration * sample_rate)
    if samples.shape[0] >= target_frames:
        return samples
    padded = np.zeros((target_frames,) + samples.shape[1:], dtype=samples.dtype)
    padded[: samples.shape[0]] = samples
    return padded


def to_pcm16(samples: np.ndarray) -> np.ndarray:
    """Float samples in [-1, 1] to 16-bit PCM (clamped)."""
    if samples.dtype == np.int16:
        return samples
    return (np.clip(samples, -1.0, 1.0) * PCM_MAX).astype("<i2")


def encode_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    """
    Encode samples as a RIFF/WAVE file with 16-bit little-endian PCM.

    Args:
        samples: Array shaped (frames, channels); float or int16
        sample_rate: Frames per second

    Returns:
        WAV bytes (44-byte header followed by interleaved samples)
    """
    if samples.ndim == 1:
        samples = samples.reshape(-1, 1)
    pcm = to_pcm16(samples)
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(pcm.shape[1])
        wav.setsampwidth(2)
        wav.setframerate(int(sample_rate))
        wav.writeframes(pcm.astype("<i2").tobytes())
    return buffer.getvalue()


def decode_wav(audio: bytes) -> tuple[np.ndarray, int]:
    """Decode WAV bytes to (frames, channels) samples and the sample rate."""
    with wave.open(io.BytesIO(audio), "rb") as wav:
        channels = wav.getnchannels()
        width = wav.getsampwidth()
        rate = wav.getframerate()
        frames = wav.readframes(wav.getnframes())

    if width == 2:
        samples = np.frombuffer(frames, dtype="<i2")
    elif width == 1:
        samples = (np.frombuffer(frames, dtype=np.uint8).astype(np.float32) - 128.0) / 128.0
    elif width == 4:
        samples = np.frombuffer(frames, dtype="<i4").astype(np.float32) / float(2**31)
    else:
        raise ValueError(f"Unsupported WAV sample width: {width}")
    return samples.reshape(-1, channels), rate


class DurationNormalizer:
    """Pads speech clips shorter than the target duration; never truncates."""

    def __init__(self, settings: Settings, logger: Any):
        self.settings = settings
        self.logger = logger

    def decode(self, audio: bytes, suffix: str = ".mp3") -> tuple[np.ndarray, int]:
        """
        Decode audio bytes to samples.

        WAV is read directly so PCM samples stay bit-exact; compressed
        formats are decoded with MoviePy's ffmpeg reader.
        """
        if audio[:4] == b"RIFF" and audio[8:12] == b"WAVE":
            return decode_wav(audio)

        fd, path = tempfile.mkstemp(suffix=suffix)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(audio)
            clip = AudioFileClip(path)
            try:
                rate = int(clip.fps)
                samples = clip.to_soundarray(fps=rate)
            finally:
                clip.close()
        finally:
            os.unlink(path)

        samples = np.asarray(samples, dtype=np.float32)
        if samples.ndim == 1:
            samples = samples.reshape(-1, 1)
        return samples, rate

    def normalize(self, audio: bytes, target_duration: Optional[float] = None, suffix: str = ".mp3") -> bytes:
        """
        Pad a speech clip to the target duration.

        Args:
            audio: Encoded speech clip
            target_duration: Seconds (defaults to ``speech_target_duration``)
            suffix: File extension hint for compressed input

        Returns:
            WAV bytes padded to the target, or ``audio`` unchanged when it is
            already long enough or cannot be decoded
        """
        target = self.settings.speech_target_duration if target_duration is None else target_duration
        try:
            samples, rate = self.decode(audio, suffix=suffix)
        except Exception as e:
            self.logger.warning(f"Could not decode speech for padding, keeping original: {e}")
            return audio

        original_duration = samples.shape[0] / rate if rate else 0.0
        if original_duration >= target:
            self.logger.debug(f"Speech already {original_duration:.2f}s (target {target}s)")
            return audio

        padded = pad_samples(samples, rate, target)
        self.logger.debug(f"Padded speech from {original_duration:.2f}s to {target}s")
        return encode_wav(padded, rate)

    def normalize_ref(self, ref: str, target_duration: Optional[float] = None) -> str:
        """
        Pad a speech ``data:`` URL; other references are returned unchanged.

        The result is a ``data:audio/wav`` URL when padding happened, else
        the original reference.
        """
        if not ref.startswith("data:"):
            return ref
        try:
            mime_type, audio = parse_data_url(ref)
        except ValueError as e:
            self.logger.warning(f"Speech reference is not decodable, keeping original: {e}")
            return ref

        suffix = ".wav" if "wav" in mime_type else ".mp3"
        normalized = self.normalize(audio, target_duration, suffix=suffix)
        if normalized is audio:
            return ref
        return to_data_url(normalized, "audio/wav")
