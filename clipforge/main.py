"""
FastAPI application entry point for clipforge.

clipforge assembles Franken-Clips: it cuts labeled segments out of one
source video, stitches them with hard cuts or crossfades, and publishes the
rendered clips to blob storage.
"""

import logging
import os
import shutil
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clipforge.config import get_settings
from clipforge.routers import clip_assembly, health, maintenance

# Configure logging
logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for startup and shutdown events.
    """
    settings = get_settings()
    logger.info("Starting clipforge...")

    # Create temp directory
    os.makedirs(settings.temp_directory, exist_ok=True)
    logger.info(f"Temp directory: {settings.temp_directory}")
    logger.info(f"Storage backend: {settings.storage_backend}")
    logger.info(f"Max segment duration: {settings.max_segment_duration_seconds}s")

    # Verify external tools
    app.state.engine_ready = _verify_external_tools()

    logger.info("clipforge ready to accept requests.")

    yield

    logger.info("Shutting down clipforge...")
    logger.info("Shutdown complete")


def _verify_external_tools() -> bool:
    """Verify that required external tools are available."""
    settings = get_settings()
    tools = {
        settings.ffmpeg_path: "FFmpeg for video rendering",
        settings.ffprobe_path: "FFprobe for duration probing",
    }

    all_found = True
    for tool, description in tools.items():
        if shutil.which(tool):
            logger.info(f"{description} available")
        else:
            logger.warning(f"{description} NOT FOUND - renders will fail")
            all_found = False
    return all_found


# Create FastAPI application
app = FastAPI(
    title="clipforge",
    description="""
clipforge - Franken-Clip assembly engine.

## Features

### Clip Assembly API (`/clip-assembly`)
- Batch rendering of multi-segment clips from one source video
- Hard-cut concatenation or crossfade transitions
- Quality presets (low / medium / high) and mp4 / mov / avi output
- Validation of AI segment proposals
- Upload of rendered clips to S3 (or local storage)

## Usage

1. Submit a batch: `POST /clip-assembly/batches`
2. Poll status: `GET /clip-assembly/batches/{batch_id}`
3. Retrieve clips from the artifact URLs in the response
    """,
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, restrict to specific origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(clip_assembly.router)
app.include_router(maintenance.router)


@app.get("/")
async def root():
    """Root endpoint with basic info."""
    return {
        "service": "clipforge",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }
