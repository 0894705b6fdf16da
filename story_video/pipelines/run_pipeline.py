"""Pipeline orchestrator - project file → generated assets → exported video."""

import argparse
import sys
from pathlib import Path
from typing import Any, Optional

from story_video.core.config import Settings, settings
from story_video.core.logging_config import configure_from_settings, get_logger, log_stage
from story_video.models.schemas import (
    BatchSummary,
    ExportRequest,
    ExportResult,
    ExportShotSelection,
    JobKind,
    JobResult,
    QualityPreset,
    ResolutionOverride,
    Story,
)
from story_video.services.fallback_resolver import FallbackResolver, Provider
from story_video.services.generation_provider import GenerationProvider
from story_video.services.generation_scheduler import BatchProgress, GenerationScheduler
from story_video.services.job_planner import JobPlanner
from story_video.services.story_store import StoryStore
from story_video.services.story_writer import StoryWriter
from story_video.services.video_exporter import ExportProgress, VideoExporter
from story_video.storage.repository import StoryRepository

# Order used by "--kind all": references before the images that use them,
# images before the clips animated from them
GENERATION_ORDER = [JobKind.CHARACTER_IMAGE, JobKind.IMAGE, JobKind.VIDEO, JobKind.AUDIO]


def run_generation(
    story: Story,
    kind: JobKind,
    settings: Settings,
    logger: Any,
    shot_ids: Optional[list[str]] = None,
    concurrency: Optional[int] = None,
    provider: Optional[Provider] = None,
    progress: Optional[BatchProgress] = None,
) -> tuple[list[JobResult], BatchSummary]:
    """
    Plan and run one generation batch, writing results onto ``story``.

    Args:
        story: Story to update in place
        kind: Job kind to generate
        settings: Application settings
        logger: Logger instance
        shot_ids: Optional restriction to these shots
        concurrency: Optional override of the concurrency ceiling
        provider: Generation provider (defaults to the HTTP providers)
        progress: Optional progress object

    Returns:
        (results, summary)
    """
    store = StoryStore(story, logger)
    # Clear stale flags before planning so interrupted entities are selectable again
    store.reset_stale_flags()
    jobs = JobPlanner(settings, logger).plan(store, kind, shot_ids)
    resolver = FallbackResolver(settings, logger, provider or GenerationProvider(settings, logger))
    scheduler = GenerationScheduler(settings, logger, resolver, store)
    results = scheduler.run_batch(jobs, concurrency_limit=concurrency, progress=progress)
    summary = BatchSummary.from_results(results)

    for failure in summary.failures:
        logger.warning(f"  {failure.target_id}: {failure.error_kind.value if failure.error_kind else 'error'} - {failure.error_message}")
    return results, summary


def run_export(
    story: Story,
    request: ExportRequest,
    settings: Settings,
    logger: Any,
    exporter: Optional[VideoExporter] = None,
    progress: Optional[ExportProgress] = None,
) -> ExportResult:
    """Export the requested shots of ``story`` as one video."""
    exporter = exporter or VideoExporter(settings, logger)
    return exporter.export(story, request, progress=progress)


def default_export_request(story: Story, include_captions: bool = True) -> ExportRequest:
    """Every shot in screen-time order."""
    return ExportRequest(
        shots=[
            ExportShotSelection(shot_id=shot.id, include_caption=include_captions)
            for scene in story.scenes
            for shot in scene.shots
        ]
    )


def _write_command(args: argparse.Namespace, repository: StoryRepository, logger: Any) -> int:
    story = StoryWriter(settings, logger).write_story(
        args.prompt, style=args.style, aspect_ratio=args.aspect_ratio, model=args.model
    )
    if args.output:
        output = Path(args.output)
        repository.export_project(story, output)
    else:
        output = repository.save_story(story)
    logger.info(f"Story '{story.title}' written to: {output}")
    return 0


def _generate_command(args: argparse.Namespace, repository: StoryRepository, logger: Any) -> int:
    story = repository.import_project(Path(args.project))
    kinds = GENERATION_ORDER if args.kind == "all" else [JobKind(args.kind)]

    failed = 0
    for kind in kinds:
        _, summary = run_generation(story, kind, settings, logger, shot_ids=args.shots, concurrency=args.concurrency)
        failed += summary.failed
        logger.info(f"{kind.value}: {summary.succeeded}/{summary.total} succeeded")

    repository.export_project(story, Path(args.output or args.project))
    if failed:
        logger.warning(f"{failed} job(s) failed; re-run to retry only the missing assets")
    return 0


def _export_command(args: argparse.Namespace, repository: StoryRepository, logger: Any) -> int:
    story = repository.import_project(Path(args.project))
    request = default_export_request(story, include_captions=not args.no_captions)
    if args.shots:
        request.shots = [ExportShotSelection(shot_id=s, include_caption=not args.no_captions) for s in args.shots]
    request.quality = QualityPreset(args.quality or settings.export_quality)
    resolution = args.resolution or settings.export_resolution
    request.resolution = ResolutionOverride(resolution)
    request.burn_captions = args.burn_captions
    request.normalize_speech = args.normalize_speech

    result = run_export(story, request, settings, logger)
    output = Path(args.output) if args.output else Path("outputs") / result.filename
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(result.video)

    logger.info(f"Video written to: {output} ({len(result.video)} bytes, {result.segment_count} segments)")
    for failure in result.failures:
        logger.warning(f"  Skipped segment {failure.index + 1} ({failure.shot_id}): {failure.message}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Story Video Pipeline - write a story, generate shot assets and export the story video",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    write = subparsers.add_parser("write", help="Write a new story project from a prompt")
    write.add_argument("--prompt", required=True, help="What the story is about")
    write.add_argument("--style", default="3D Cartoon", help="Visual style tag (default: 3D Cartoon)")
    write.add_argument("--aspect-ratio", default="16:9", help="Aspect ratio tag (default: 16:9)")
    write.add_argument("--model", default=None, help="OpenRouter model id (default: from settings)")
    write.add_argument("--output", default=None, help="Project JSON to write (default: story storage)")

    generate = subparsers.add_parser("generate", help="Generate missing assets for a project")
    generate.add_argument("--project", required=True, help="Project JSON file")
    generate.add_argument(
        "--kind",
        default="all",
        choices=["all"] + [k.value for k in GENERATION_ORDER],
        help="Asset kind to generate (default: all, in dependency order)",
    )
    generate.add_argument("--shots", nargs="+", default=None, help="Restrict generation to these shot ids")
    generate.add_argument("--concurrency", type=int, default=None, help="Override the concurrency ceiling")
    generate.add_argument("--output", default=None, help="Write the updated project here (default: overwrite)")

    export = subparsers.add_parser("export", help="Export finished shots as one MP4")
    export.add_argument("--project", required=True, help="Project JSON file")
    export.add_argument("--output", default=None, help="Output MP4 path (default: outputs/<title>_<timestamp>.mp4)")
    export.add_argument("--shots", nargs="+", default=None, help="Shots to export, in order (default: all)")
    export.add_argument("--quality", default=None, choices=[q.value for q in QualityPreset])
    export.add_argument("--resolution", default=None, choices=[r.value for r in ResolutionOverride])
    export.add_argument("--no-captions", action="store_true", help="Do not include narration captions")
    export.add_argument(
        "--burn-captions",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Burn captions into clips without speech (default: from settings)",
    )
    export.add_argument("--normalize-speech", action="store_true", help="Pad speech to the target duration first")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entrypoint for the pipeline CLI."""
    args = build_parser().parse_args(argv)

    configure_from_settings(settings)
    logger = get_logger(__name__, command=args.command)
    log_stage(logger, "Story Video Pipeline", command=args.command, project=getattr(args, "project", None))

    try:
        repository = StoryRepository(settings, logger)
        if args.command == "write":
            return _write_command(args, repository, logger)
        if args.command == "generate":
            return _generate_command(args, repository, logger)
        return _export_command(args, repository, logger)
    except KeyboardInterrupt:
        logger.warning("Pipeline interrupted by user")
        return 1
    except Exception as e:
        logger.exception(f"Pipeline failed: {e}")
        logger.error(f"\n❌ Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
