"""
FastAPI entrypoint for the Story Video API.

The CLI (run_pipeline.py) and this API drive the same services:
* /stories - write or import projects, run generation batches, export the video
* /models  - cached model and voice catalogs
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from story_video.api.routes_models import router as models_router
from story_video.api.routes_story import router as stories_router
from story_video.core.config import settings
from story_video.core.logging_config import configure_from_settings, get_logger

configure_from_settings(settings)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Debug mode: {settings.debug}")
    logger.info(f"Storage: {settings.storage_path}")
    logger.info("=" * 60)
    yield
    logger.info("Shutting down application")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Story Video Pipeline - generate shot assets and export story videos",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Segment-Count", "X-Skipped-Shots"],
)

app.include_router(stories_router)
app.include_router(models_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "status": "running",
        "endpoints": {
            "import_story": "/stories",
            "write_story": "/stories/write",
            "get_story": "/stories/{story_id}",
            "generate": "/stories/{story_id}/generate",
            "export": "/stories/{story_id}/export",
            "models": "/models/replicate",
            "voices": "/models/voices",
            "docs": "/docs",
        },
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "story_video.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
