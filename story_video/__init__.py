"""Story video pipeline: generate per-shot assets and compose them into one video."""

__version__ = "1.0.0"
