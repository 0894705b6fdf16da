"""Pydantic models and schemas for the story video pipeline."""

import uuid
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# ============================================================================
# Enums
# ============================================================================


class JobKind(str, Enum):
    """Kind of generation request issued to a provider."""

    IMAGE = "image"
    VIDEO = "video"
    CHARACTER_IMAGE = "character_image"
    AUDIO = "audio"


class ErrorKind(str, Enum):
    """Classified failure reported for a job, segment or export."""

    ASSET_EXPIRED = "asset_expired"
    PROVIDER_GENERIC = "provider_generic"
    MALFORMED_RESPONSE = "malformed_response"
    ENCODING_FAILURE = "encoding_failure"
    CONCATENATION_FAILURE = "concatenation_failure"


class QualityPreset(str, Enum):
    """Export quality presets trading encode speed for bitrate."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    ULTRA = "ultra"


class ResolutionOverride(str, Enum):
    """Optional output resolution for an export."""

    P480 = "480p"
    P720 = "720p"
    P1080 = "1080p"
    ORIGINAL = "original"


# ============================================================================
# Story Tree
# ============================================================================


class Shot(BaseModel):
    """A single shot: one image, one clip, one optional speech track."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: f"shot_{uuid.uuid4().hex[:12]}", description="Unique shot identifier")
    narration: str = Field(
        default="",
        validation_alias=AliasChoices("narration", "subtitle"),
        description="Narration text (spoken and used as caption)",
    )
    location: str = Field(default="", description="Where the shot takes place")
    content: str = Field(default="", description="Visual description of the shot")
    image_ref: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("image_ref", "imageUrl"),
        description="Reference to the generated still image",
    )
    video_ref: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("video_ref", "animationUrl"),
        description="Reference to the generated video clip",
    )
    speech_ref: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("speech_ref", "audioUrl"),
        description="Reference to the synthesized speech clip",
    )
    image_in_progress: bool = Field(
        default=False,
        validation_alias=AliasChoices("image_in_progress", "isGenerating"),
        description="Image generation running",
    )
    video_in_progress: bool = Field(
        default=False,
        validation_alias=AliasChoices("video_in_progress", "isAnimating"),
        description="Video generation running",
    )
    audio_in_progress: bool = Field(
        default=False,
        validation_alias=AliasChoices("audio_in_progress", "isGeneratingAudio"),
        description="Speech generation running",
    )


class Scene(BaseModel):
    """A scene: an ordered run of shots."""

    id: str = Field(default_factory=lambda: f"scene_{uuid.uuid4().hex[:12]}", description="Unique scene identifier")
    title: str = Field(default="", description="Scene title")
    description: str = Field(default="", description="Scene description")
    shots: list[Shot] = Field(default_factory=list, description="Shots in screen-time order")


class Character(BaseModel):
    """A character referenced by name from shot generation requests."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., description="Character name (unique within a story)")
    description: str = Field(default="", description="Character description")
    prompt: Optional[str] = Field(default=None, description="Visual prompt for the character reference image")
    reference_image_ref: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("reference_image_ref", "referenceImageUrl"),
        description="Reference to the generated character image",
    )
    in_progress: bool = Field(
        default=False,
        validation_alias=AliasChoices("in_progress", "isGenerating"),
        description="Character image generation running",
    )


class Story(BaseModel):
    """Root aggregate: the whole story script."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: f"story_{uuid.uuid4().hex[:12]}", description="Unique story identifier")
    title: str = Field(default="", description="Story title")
    synopsis: str = Field(default="", description="Story synopsis")
    style: str = Field(default="3D Cartoon", description="Visual style tag")
    aspect_ratio: str = Field(
        default="16:9",
        validation_alias=AliasChoices("aspect_ratio", "aspectRatio"),
        description="Aspect ratio tag",
    )
    scenes: list[Scene] = Field(default_factory=list, description="Scenes in screen-time order")
    characters: list[Character] = Field(default_factory=list, description="Characters (unordered)")


# ============================================================================
# Generation Jobs
# ============================================================================


class GenerationJob(BaseModel):
    """One independent generation request targeting one shot or character."""

    job_id: str = Field(default_factory=lambda: f"job_{uuid.uuid4().hex[:12]}", description="Unique job identifier")
    kind: JobKind = Field(..., description="Job kind")
    target_id: str = Field(..., description="Shot id, or character name for character-image jobs")
    scene_id: Optional[str] = Field(default=None, description="Owning scene id for shot jobs")
    backend_id: str = Field(..., description="Configured backend identifier")
    input_refs: dict[str, str] = Field(default_factory=dict, description="Input asset references (e.g. image)")
    parameters: dict[str, Any] = Field(default_factory=dict, description="Semantic request parameters")


class JobResult(BaseModel):
    """Outcome of one generation job."""

    job_id: str = Field(..., description="Job identifier")
    kind: JobKind = Field(..., description="Job kind")
    target_id: str = Field(..., description="Shot id or character name")
    success: bool = Field(..., description="Whether an asset was produced")
    asset_ref: Optional[str] = Field(default=None, description="Produced asset reference")
    error_kind: Optional[ErrorKind] = Field(default=None, description="Classified failure")
    error_message: Optional[str] = Field(default=None, description="Failure detail")
    raw_excerpt: Optional[str] = Field(default=None, description="Excerpt of an unparsable provider payload")
    backend_used: Optional[str] = Field(default=None, description="Backend that produced the final outcome")
    fallback_attempted: bool = Field(default=False, description="Whether the default backend was also tried")
    attempts: int = Field(default=1, description="Provider calls made for this job")
    warning: Optional[str] = Field(default=None, description="Non-fatal note (e.g. fallback used)")


class BatchSummary(BaseModel):
    """Aggregated per-batch outcome."""

    total: int = Field(..., description="Jobs submitted")
    succeeded: int = Field(..., description="Jobs that produced an asset")
    failed: int = Field(..., description="Jobs that failed")
    failures: list[JobResult] = Field(default_factory=list, description="Failed results, retryable individually")

    @classmethod
    def from_results(cls, results: list[JobResult]) -> "BatchSummary":
        failures = [r for r in results if not r.success]
        return cls(
            total=len(results),
            succeeded=len(results) - len(failures),
            failed=len(failures),
            failures=failures,
        )


class StoryEvent(BaseModel):
    """Entry in the story store's event log."""

    sequence: int = Field(..., description="Monotonic event number")
    event: str = Field(..., description="Event name (shot_updated, character_updated, stale_flag_cleared)")
    target_id: str = Field(..., description="Shot id or character name")
    changes: dict[str, Any] = Field(default_factory=dict, description="Fields that changed")


class ProgressEvent(BaseModel):
    """Progress snapshot emitted after a job's entity state was updated."""

    job_id: str
    target_id: str
    kind: JobKind
    success: bool
    completed: int
    total: int
    percent: int


# ============================================================================
# Export
# ============================================================================


class Segment(BaseModel):
    """Per-shot input to the segment processor (exists only during one export)."""

    shot_id: str = Field(..., description="Source shot id")
    video_ref: str = Field(..., description="Video clip reference")
    speech_ref: Optional[str] = Field(default=None, description="Speech clip reference")
    caption: Optional[str] = Field(default=None, description="Caption text (when included)")


class ExportShotSelection(BaseModel):
    """A shot to export and whether its caption is included."""

    shot_id: str = Field(..., description="Shot id")
    include_caption: bool = Field(default=True, description="Include narration as caption")


class ExportRequest(BaseModel):
    """Export trigger: ordered shots plus encode options."""

    shots: list[ExportShotSelection] = Field(..., description="Shots in output order")
    quality: QualityPreset = Field(default=QualityPreset.HIGH, description="Quality preset")
    resolution: Optional[ResolutionOverride] = Field(default=None, description="Optional resolution override")
    burn_captions: Optional[bool] = Field(
        default=None, description="Burn captions on clips without speech (None uses the configured default)"
    )
    normalize_speech: bool = Field(
        default=False, description="Pad speech to the target duration before muxing"
    )


class SegmentFailure(BaseModel):
    """A segment that could not be processed during export."""

    shot_id: str
    index: int
    error_kind: ErrorKind
    message: str
    stderr: Optional[str] = Field(default=None, description="Encoder diagnostics (last lines of stderr)")


class ExportResult(BaseModel):
    """Output of one export."""

    video: bytes = Field(..., description="Final MP4 payload")
    filename: str = Field(..., description="Suggested download filename")
    segment_count: int = Field(..., description="Segments included in the output")
    failures: list[SegmentFailure] = Field(default_factory=list, description="Segments that were skipped")


# ============================================================================
# Catalog
# ============================================================================


class CatalogPage(BaseModel):
    """One page from a catalog service."""

    items: list[dict[str, Any]] = Field(default_factory=list)
    next_cursor: Optional[str] = Field(default=None)


class CatalogListing(BaseModel):
    """Catalog data served to callers, with cache provenance."""

    key: str = Field(..., description="Cache key")
    models: Any = Field(..., description="Catalog payload")
    cached: bool = Field(default=False, description="Served from cache")
    stale: bool = Field(default=False, description="Served from last known data after an upstream failure")
    cache_age_seconds: Optional[float] = Field(default=None, description="Age of the cached payload")
    warning: Optional[str] = Field(default=None, description="Upstream failure detail when stale")


# ============================================================================
# API Request/Response Models
# ============================================================================


class WriteStoryRequest(BaseModel):
    """Request to write a new story from a prompt."""

    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(..., min_length=1, description="What the story is about")
    style: str = Field(default="3D Cartoon", description="Visual style tag")
    aspect_ratio: str = Field(
        default="16:9",
        validation_alias=AliasChoices("aspect_ratio", "aspectRatio"),
        description="Aspect ratio tag",
    )
    model: Optional[str] = Field(default=None, description="OpenRouter model id (defaults to settings)")


class GenerateRequest(BaseModel):
    """Request to run a generation batch for one job kind."""

    kind: JobKind = Field(..., description="Job kind to generate")
    shot_ids: Optional[list[str]] = Field(default=None, description="Restrict the worklist to these shots")
    concurrency: Optional[int] = Field(default=None, ge=1, description="Override the concurrency ceiling")


class GenerateResponse(BaseModel):
    """Response from a generation batch."""

    story_id: str
    kind: JobKind
    summary: BatchSummary
    results: list[JobResult]
