#!/usr/bin/env python3
"""
Main CLI entrypoint for the Story Video Pipeline.

This is a convenience wrapper that imports and runs the pipeline orchestrator.
"""

import sys

from story_video.pipelines.run_pipeline import main

if __name__ == "__main__":
    sys.exit(main())
