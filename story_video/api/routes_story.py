"""FastAPI routes for story projects, generation batches and export."""

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Response

from story_video.api.errors import http_error
from story_video.core.config import settings
from story_video.core.errors import StoryVideoError
from story_video.core.logging_config import get_logger
from story_video.models.schemas import ExportRequest, GenerateRequest, GenerateResponse, Story, WriteStoryRequest
from story_video.pipelines.run_pipeline import default_export_request, run_export, run_generation
from story_video.services.generation_provider import GenerationProvider
from story_video.services.story_writer import StoryWriter
from story_video.services.video_exporter import VideoExporter
from story_video.storage.repository import StoryRepository, story_from_project

router = APIRouter(prefix="/stories", tags=["stories"])


def get_repository() -> StoryRepository:
    return StoryRepository(settings, get_logger(__name__))


def get_provider() -> GenerationProvider:
    return GenerationProvider(settings, get_logger(__name__))


def get_exporter() -> VideoExporter:
    return VideoExporter(settings, get_logger(__name__))


def get_writer() -> StoryWriter:
    return StoryWriter(settings, get_logger(__name__))


def _load(repository: StoryRepository, story_id: str) -> Story:
    story = repository.load_story(story_id)
    if story is None:
        raise HTTPException(status_code=404, detail=f"Story {story_id} not found")
    return story


@router.get("", response_model=list[str])
def list_stories(repository: StoryRepository = Depends(get_repository)) -> list[str]:
    """List stored story IDs."""
    return repository.list_stories()


@router.post("", response_model=Story, status_code=201)
def import_story(
    project: dict[str, Any] = Body(...),
    repository: StoryRepository = Depends(get_repository),
) -> Story:
    """Import a story project (story object or ``{"story": ...}`` envelope)."""
    try:
        story = story_from_project(project)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    repository.save_story(story)
    return story


@router.post("/write", response_model=Story, status_code=201)
def write_story(
    request: WriteStoryRequest,
    repository: StoryRepository = Depends(get_repository),
    writer: StoryWriter = Depends(get_writer),
) -> Story:
    """Write a new story from a prompt with an OpenRouter model and store it."""
    try:
        story = writer.write_story(
            request.prompt, style=request.style, aspect_ratio=request.aspect_ratio, model=request.model
        )
    except StoryVideoError as e:
        raise http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    repository.save_story(story)
    return story


@router.get("/{story_id}", response_model=Story)
def get_story(story_id: str, repository: StoryRepository = Depends(get_repository)) -> Story:
    """Get a full story."""
    return _load(repository, story_id)


@router.post("/{story_id}/generate", response_model=GenerateResponse)
def generate_assets(
    story_id: str,
    request: GenerateRequest,
    repository: StoryRepository = Depends(get_repository),
    provider: GenerationProvider = Depends(get_provider),
) -> GenerateResponse:
    """
    Run one generation batch and persist the updated story.

    Failed jobs are reported in the response; the batch itself succeeds.
    """
    logger = get_logger(__name__, story_id=story_id, job_kind=request.kind.value)
    story = _load(repository, story_id)
    try:
        results, summary = run_generation(
            story,
            request.kind,
            settings,
            logger,
            shot_ids=request.shot_ids,
            concurrency=request.concurrency,
            provider=provider,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    repository.save_story(story)
    return GenerateResponse(story_id=story_id, kind=request.kind, summary=summary, results=results)


@router.post("/{story_id}/export")
def export_story(
    story_id: str,
    request: ExportRequest,
    repository: StoryRepository = Depends(get_repository),
    exporter: VideoExporter = Depends(get_exporter),
) -> Response:
    """Export shots as one MP4 (an empty shot list exports every shot in order)."""
    logger = get_logger(__name__, story_id=story_id)
    story = _load(repository, story_id)
    if not request.shots:
        request.shots = default_export_request(story).shots

    try:
        result = run_export(story, request, settings, logger, exporter=exporter)
    except StoryVideoError as e:
        raise http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return Response(
        content=result.video,
        media_type="video/mp4",
        headers={
            "Content-Disposition": f'attachment; filename="{result.filename}"',
            "X-Segment-Count": str(result.segment_count),
            "X-Skipped-Shots": ",".join(f.shot_id for f in result.failures),
        },
    )
