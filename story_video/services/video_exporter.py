"""Video Exporter - collects finished shots and composes one output video."""

from threading import Lock
from typing import Any, Callable, Optional

from story_video.core.config import Settings
from story_video.core.errors import EncodingError, StoryVideoError
from story_video.core.logging_config import log_stage
from story_video.models.schemas import (
    ErrorKind,
    ExportRequest,
    ExportResult,
    QualityPreset,
    ResolutionOverride,
    Segment,
    SegmentFailure,
    Story,
)
from story_video.services.asset_fetcher import AssetFetcher
from story_video.services.concatenation import Concatenator
from story_video.services.duration_normalizer import DurationNormalizer
from story_video.services.encoding_backend import EncodingSession, FFmpegSession
from story_video.services.segment_processor import QUALITY_PRESETS, SegmentProcessor
from story_video.utils.error_handler import format_error_message, get_recovery_suggestion
from story_video.utils.io_utils import export_filename

RESOLUTION_HEIGHTS = {
    ResolutionOverride.P480: 480,
    ResolutionOverride.P720: 720,
    ResolutionOverride.P1080: 1080,
}
SCALED_OUTPUT = "final_scaled.mp4"


class ExportProgress:
    """Pollable export progress; the percentage never decreases."""

    def __init__(self) -> None:
        self._lock = Lock()
        self.percent = 0
        self.stage = "pending"

    def update(self, percent: int, stage: str) -> None:
        with self._lock:
            self.percent = max(self.percent, min(100, int(percent)))
            self.stage = stage

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {"percent": self.percent, "stage": self.stage}


class VideoExporter:
    """Export trigger surface: ordered shots in, one MP4 payload out."""

    def __init__(
        self,
        settings: Settings,
        logger: Any,
        fetcher: Optional[AssetFetcher] = None,
        normalizer: Optional[DurationNormalizer] = None,
        session_factory: Optional[Callable[[], EncodingSession]] = None,
    ):
        """
        Initialize the exporter.

        Args:
            settings: Application settings
            logger: Logger instance
            fetcher: Loads clip and speech bytes from their references
            normalizer: Pads speech when an export asks for it
            session_factory: Creates one encoding session per export
        """
        self.settings = settings
        self.logger = logger
        self.fetcher = fetcher or AssetFetcher(settings, logger)
        self.normalizer = normalizer or DurationNormalizer(settings, logger)
        self.session_factory = session_factory or (lambda: FFmpegSession(settings, logger))

    def collect_segments(self, story: Story, request: ExportRequest) -> list[Segment]:
        """
        Build segments for the requested shots, in request order.

        Shots without a finished video clip are skipped.

        Raises:
            ValueError: A requested shot id does not exist
        """
        shots = {shot.id: shot for scene in story.scenes for shot in scene.shots}
        segments: list[Segment] = []
        for selection in request.shots:
            shot = shots.get(selection.shot_id)
            if shot is None:
                raise ValueError(f"Unknown shot: {selection.shot_id}")
            if not shot.video_ref:
                self.logger.info(f"Skipping shot {shot.id}: no video clip yet")
                continue
            caption = shot.narration if selection.include_caption and shot.narration.strip() else None
            segments.append(
                Segment(shot_id=shot.id, video_ref=shot.video_ref, speech_ref=shot.speech_ref, caption=caption)
            )
        return segments

    def export(
        self, story: Story, request: ExportRequest, progress: Optional[ExportProgress] = None
    ) -> ExportResult:
        """
        Compose the requested shots into one video.

        Segments run one at a time against a single encoding session.
        A failed segment is reported and skipped; the export aborts only
        when every segment fails or concatenation fails.

        Args:
            story: Story holding the shots
            request: Ordered shots plus quality/resolution/caption options
            progress: Optional progress object updated during the export

        Returns:
            ExportResult with the MP4 payload

        Raises:
            ValueError: Unknown shot, or no shot has a finished clip
            EncodingError: Every segment failed, or the final encode failed
            ConcatenationError: A processed clip went missing
        """
        progress = progress or ExportProgress()
        segments = self.collect_segments(story, request)
        if not segments:
            raise ValueError("No shots with a finished video clip to export")

        burn = self.settings.burn_captions_by_default if request.burn_captions is None else request.burn_captions
        log_stage(
            self.logger,
            f"Exporting story: {story.title or story.id}",
            segments=len(segments),
            quality=request.quality.value,
            resolution=(request.resolution or ResolutionOverride.ORIGINAL).value,
            burn_captions=burn,
        )

        failures: list[SegmentFailure] = []
        processed: list[str] = []
        session = self.session_factory()
        try:
            processor = SegmentProcessor(self.settings, self.logger, session)
            for index, segment in enumerate(segments):
                progress.update(int(index / len(segments) * 80), f"segment {index + 1}/{len(segments)}")
                try:
                    processed.append(self._process_segment(processor, index, segment, request, burn))
                    self.logger.info(f"✅ Segment {index + 1}/{len(segments)} ready ({segment.shot_id})")
                except (StoryVideoError, OSError, ValueError) as e:
                    error_kind = getattr(e, "error_kind", ErrorKind.ENCODING_FAILURE)
                    self.logger.error(
                        format_error_message(
                            "Processing segment",
                            e,
                            context={"shot_id": segment.shot_id, "segment": index},
                            suggestion=get_recovery_suggestion(error_kind, str(e)),
                        )
                    )
                    failures.append(
                        SegmentFailure(
                            shot_id=segment.shot_id,
                            index=index,
                            error_kind=error_kind,
                            message=str(e),
                            stderr=getattr(e, "stderr", None) or None,
                        )
                    )
            progress.update(80, "segments processed")

            if not processed:
                raise EncodingError(
                    "Every segment failed; nothing to export", {"failed_shots": [f.shot_id for f in failures]}
                )

            final_name = Concatenator(self.settings, self.logger, session).concatenate(processed)
            progress.update(90, "concatenated")

            if request.resolution and request.resolution != ResolutionOverride.ORIGINAL:
                final_name = self._rescale(session, final_name, request.resolution, request.quality)

            video = session.read(final_name)
        finally:
            close = getattr(session, "close", None)
            if close is not None:
                close()

        progress.update(100, "done")
        self.logger.info(
            f"Export complete: {len(processed)} segment(s), {len(failures)} skipped, {len(video)} bytes"
        )
        return ExportResult(
            video=video,
            filename=export_filename(story.title or story.id),
            segment_count=len(processed),
            failures=failures,
        )

    def _process_segment(
        self,
        processor: SegmentProcessor,
        index: int,
        segment: Segment,
        request: ExportRequest,
        burn: bool,
    ) -> str:
        video = self.fetcher.fetch(segment.video_ref)
        speech = self._load_speech(segment)
        if speech and request.normalize_speech:
            speech = self.normalizer.normalize(speech)
        return processor.process(
            index,
            video,
            speech=speech,
            caption=segment.caption,
            burn_captions=burn,
            quality=request.quality,
        )

    def _load_speech(self, segment: Segment) -> Optional[bytes]:
        if not segment.speech_ref:
            return None
        try:
            speech = self.fetcher.fetch(segment.speech_ref)
        except (StoryVideoError, OSError, ValueError) as e:
            self.logger.warning(f"Could not load speech for {segment.shot_id}, exporting clip without audio: {e}")
            return None
        if not speech:
            self.logger.warning(f"Speech for {segment.shot_id} is empty, exporting clip without audio")
            return None
        return speech

    def _rescale(
        self, session: EncodingSession, name: str, resolution: ResolutionOverride, quality: QualityPreset
    ) -> str:
        preset, crf = QUALITY_PRESETS[quality]
        height = RESOLUTION_HEIGHTS[resolution]
        session.exec(
            [
                "-i", name,
                "-vf", f"scale=-2:{height}",
                "-c:v", "libx264", "-preset", preset, "-crf", str(crf),
                "-c:a", "copy",
                "-movflags", "+faststart",
                "-y", SCALED_OUTPUT,
            ]
        )
        if not session.exists(SCALED_OUTPUT) or session.size(SCALED_OUTPUT) == 0:
            raise EncodingError("Rescaled output is empty", {"resolution": resolution.value})
        self.logger.info(f"Rescaled output to {resolution.value}")
        return SCALED_OUTPUT
