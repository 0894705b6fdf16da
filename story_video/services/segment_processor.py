"""Segment Processor - turns one shot's clip, speech and caption into one clip."""

from enum import Enum
from typing import Any, Optional

from story_video.core.config import Settings
from story_video.core.errors import EncodingError
from story_video.models.schemas import QualityPreset
from story_video.services.encoding_backend import EncodingSession

# Preset -> (x264 preset, CRF); used whenever the video stream is re-encoded
QUALITY_PRESETS: dict[QualityPreset, tuple[str, int]] = {
    QualityPreset.LOW: ("ultrafast", 30),
    QualityPreset.MEDIUM: ("ultrafast", 26),
    QualityPreset.HIGH: ("veryfast", 23),
    QualityPreset.ULTRA: ("fast", 20),
}

AUDIO_CODEC_ARGS = ["-c:a", "aac", "-b:a", "128k"]
# libass style for burned captions: white text in a dark box, bottom centre
CAPTION_STYLE = (
    "FontSize=24,PrimaryColour=&HFFFFFF,OutlineColour=&H000000,"
    "BorderStyle=3,Outline=2,Shadow=1,MarginV=30,Alignment=2"
)
# One cue spanning any clip length
CAPTION_END = "99:59:59,999"


def caption_srt(caption: str) -> str:
    """Single-cue SRT body for a caption; blank lines would end the cue early."""
    text = " ".join(caption.split())
    return f"1\n00:00:00,000 --> {CAPTION_END}\n{text}\n"


class SegmentBranch(str, Enum):
    PASSTHROUGH = "passthrough"
    CAPTION_IGNORED = "caption_ignored"
    CAPTION_BURN = "caption_burn"
    MUX = "mux"
    MUX_CAPTION = "mux_caption"


def select_branch(has_speech: bool, caption: Optional[str], burn_captions: bool) -> SegmentBranch:
    """Pick the processing branch, in priority order."""
    has_caption = bool(caption and caption.strip())
    if not has_speech and not has_caption:
        return SegmentBranch.PASSTHROUGH
    if not has_speech:
        return SegmentBranch.CAPTION_BURN if burn_captions else SegmentBranch.CAPTION_IGNORED
    if not has_caption:
        return SegmentBranch.MUX
    return SegmentBranch.MUX_CAPTION


def audio_suffix(audio: bytes) -> str:
    if audio[:4] == b"RIFF":
        return ".wav"
    return ".mp3"


class SegmentProcessor:
    """Produces exactly one verified, non-empty clip per exported shot."""

    def __init__(self, settings: Settings, logger: Any, session: EncodingSession):
        """
        Initialize the processor.

        Args:
            settings: Application settings
            logger: Logger instance
            session: Encoding session shared with the concatenation step
        """
        self.settings = settings
        self.logger = logger
        self.session = session

    def process(
        self,
        index: int,
        video: bytes,
        speech: Optional[bytes] = None,
        caption: Optional[str] = None,
        burn_captions: bool = False,
        quality: QualityPreset = QualityPreset.HIGH,
    ) -> str:
        """
        Process one segment.

        Args:
            index: Segment position (names the scratch files)
            video: Raw video clip bytes
            speech: Optional speech clip bytes
            caption: Optional caption text
            burn_captions: Burn the caption on clips without speech
            quality: Preset used when the video stream is re-encoded

        Returns:
            Session file name of the processed clip

        Raises:
            EncodingError: The encoder failed or produced an empty output
        """
        branch = select_branch(bool(speech), caption, burn_captions)
        input_name = f"input_{index}.mp4"
        output_name = f"processed_{index}.mp4"
        scratch = [input_name]
        context = {"segment": index, "branch": branch.value}

        try:
            if branch in (SegmentBranch.PASSTHROUGH, SegmentBranch.CAPTION_IGNORED):
                if branch == SegmentBranch.CAPTION_IGNORED:
                    self.logger.warning(f"Segment {index}: caption not burned (preview-only): {caption[:60]!r}")
                self.session.write(output_name, video)
            else:
                self.session.write(input_name, video)
                argv = ["-i", input_name]

                if speech:
                    audio_name = f"temp_audio_{index}{audio_suffix(speech)}"
                    scratch.append(audio_name)
                    self.session.write(audio_name, speech)
                    argv += ["-i", audio_name, "-map", "0:v:0", "-map", "1:a:0"]

                if branch == SegmentBranch.MUX:
                    argv += ["-c:v", "copy"]
                else:
                    caption_name = f"caption_{index}.srt"
                    scratch.append(caption_name)
                    self.session.write(caption_name, caption_srt(caption).encode("utf-8"))
                    preset, crf = QUALITY_PRESETS[quality]
                    argv += [
                        "-vf", f"subtitles={caption_name}:force_style='{CAPTION_STYLE}'",
                        "-c:v", "libx264", "-preset", preset, "-crf", str(crf),
                    ]

                if speech:
                    argv += AUDIO_CODEC_ARGS + ["-shortest"]
                else:
                    argv += ["-c:a", "copy"]
                argv += ["-movflags", "+faststart", "-y", output_name]

                self.session.exec(argv)

            if not self.session.exists(output_name) or self.session.size(output_name) == 0:
                raise EncodingError("Segment output is empty", context)
        except EncodingError as e:
            e.context = {**context, **e.context}
            self.session.delete(output_name)
            raise
        finally:
            for name in scratch:
                self.session.delete(name)

        self.logger.debug(f"Segment {index} processed ({branch.value}): {self.session.size(output_name)} bytes")
        return output_name
