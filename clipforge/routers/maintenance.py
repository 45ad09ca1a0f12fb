"""
Maintenance endpoints - housekeeping triggered by an external scheduler.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends

from clipforge.auth import verify_api_key
from clipforge.config import get_settings
from clipforge.routers.clip_assembly import active_batch_ids
from clipforge.schemas.requests import ReapRequest
from clipforge.schemas.responses import ReapResponse
from clipforge.services.temp_reaper import reap_stale_files

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/maintenance", tags=["Maintenance"])


@router.post("/reap", response_model=ReapResponse)
async def reap_temp_files(
    request: Optional[ReapRequest] = None,
    _: None = Depends(verify_api_key),
) -> ReapResponse:
    """
    Delete temp files older than the TTL from the work directory.

    Work directories of batches still running are skipped. Meant to be
    called periodically (e.g. every 30 minutes) by cron or a platform
    scheduler.
    """
    settings = get_settings()
    ttl = settings.temp_file_ttl_seconds
    if request is not None and request.ttl_seconds is not None:
        ttl = request.ttl_seconds

    directory = settings.temp_directory
    # Batches still running keep their sources and partial outputs
    active = active_batch_ids()

    # Filesystem walk is blocking; run it in the thread pool
    loop = asyncio.get_event_loop()
    result = await loop.run_in_executor(
        None,
        lambda: reap_stale_files(directory, ttl, exclude=active),
    )

    return ReapResponse(
        directory=directory,
        removed_count=len(result.removed),
        removed=result.removed,
        errors=[str(error) for error in result.errors],
    )
