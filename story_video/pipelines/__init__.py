"""Pipeline orchestrators for the story video pipeline."""

from story_video.pipelines.run_pipeline import main, run_export, run_generation

__all__ = ["main", "run_export", "run_generation"]
