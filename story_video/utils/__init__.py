"""Utility functions for the story video pipeline."""

from story_video.utils.io_utils import export_filename, parse_data_url, slugify, to_data_url

__all__ = [
    "export_filename",
    "parse_data_url",
    "slugify",
    "to_data_url",
]
