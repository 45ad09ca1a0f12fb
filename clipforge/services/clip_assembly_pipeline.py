"""
Clip Assembly Pipeline - Batch orchestrator for Franken-Clip rendering.

One batch = one source video + an ordered list of clip requests:
1. Source acquisition (once per batch, failure is batch-fatal)
2. Per clip: segment filtering -> filter graph -> FFmpeg render -> publish
3. Cleanup of the downloaded source and work directory

A failing clip never aborts the batch; it is recorded with the stage that
failed and the loop moves on.
"""

import asyncio
import logging
import os
import re
import shutil
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from clipforge.config import Settings, get_settings
from clipforge.services.artifact_publisher import (
    ArtifactPublisher,
    BlobStore,
    PublishError,
    create_blob_store,
)
from clipforge.services.filter_graph import RenderOptions, build_filter_graph
from clipforge.services.rendering_service import (
    EncodeError,
    EngineConfig,
    RenderProgress,
    RenderingService,
)
from clipforge.services.s3_upload_service import build_clip_key
from clipforge.services.segment_filter import (
    DroppedSegment,
    SegmentSpec,
    SegmentValidationError,
    filter_segments,
)
from clipforge.services.timestamps import FormatError
from clipforge.services.video_downloader import (
    AcquiredSource,
    SourceAcquirer,
    SourceAcquisitionError,
)

logger = logging.getLogger(__name__)


# Batch, clip and project ids become path components and object keys
SAFE_ID_PATTERN = r"^[A-Za-z0-9_-]{1,64}$"
_SAFE_ID_RE = re.compile(SAFE_ID_PATTERN)


def is_safe_id(value: Optional[str]) -> bool:
    """Check that an id can be used as a single path component."""
    return isinstance(value, str) and _SAFE_ID_RE.fullmatch(value) is not None


class BatchState(str, Enum):
    """Lifecycle of a batch."""

    PENDING = "pending"
    ACQUIRING_SOURCE = "acquiring_source"
    RENDERING = "rendering"
    DONE = "done"


class ClipStatus(str, Enum):
    """Final status of one clip."""

    COMPLETED = "completed"
    FAILED = "failed"


class FailureStage(str, Enum):
    """Pipeline step a clip failed in."""

    ACQUIRE = "acquire"
    VALIDATE = "validate"
    BUILD = "build"
    RENDER = "render"
    PUBLISH = "publish"
    CANCELLED = "cancelled"


@dataclass
class OwnerContext:
    """Who the batch renders for; scopes artifact keys."""

    project_id: str
    user_id: Optional[str] = None


@dataclass
class ClipRenderRequest:
    """Request to render one Franken-Clip."""

    id: str
    segments: list[SegmentSpec]
    options: RenderOptions = field(default_factory=RenderOptions)
    title: Optional[str] = None


@dataclass
class ClipRenderResult:
    """Outcome of one clip request."""

    id: str
    status: ClipStatus
    artifact_ref: Optional[str] = None
    artifact_key: Optional[str] = None
    file_size_bytes: Optional[int] = None
    duration_seconds: Optional[float] = None
    error: Optional[str] = None
    stage: Optional[FailureStage] = None
    dropped_segments: list[DroppedSegment] = field(default_factory=list)


@dataclass
class BatchRenderRequest:
    """A source video plus the clips to cut from it."""

    source_ref: str
    clip_requests: list[ClipRenderRequest]
    owner_context: OwnerContext
    batch_id: Optional[str] = None
    max_segment_duration: Optional[float] = None  # Overrides the configured limit

    def __post_init__(self):
        if self.batch_id is None:
            self.batch_id = str(uuid.uuid4())


@dataclass
class BatchRenderResult:
    """Complete, internally consistent outcome of a batch."""

    batch_id: str
    results: list[ClipRenderResult]
    warnings: list[str] = field(default_factory=list)
    cancelled: bool = False
    processing_time_seconds: float = 0

    @property
    def total_requested(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.status == ClipStatus.COMPLETED)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if r.status == ClipStatus.FAILED)


@dataclass
class BatchProgress:
    """Progress update for a batch."""

    batch_id: str
    state: BatchState
    clips_completed: int
    total_clips: int
    current_clip_id: Optional[str] = None
    percent: float = 0


class ClipAssemblyPipeline:
    """
    Renders batches of clips from a single source video.

    Collaborators are injectable so the media engine and blob store can be
    swapped out in tests.
    """

    def __init__(
        self,
        blob_store: Optional[BlobStore] = None,
        renderer: Optional[RenderingService] = None,
        acquirer: Optional[SourceAcquirer] = None,
        settings: Optional[Settings] = None,
        progress_callback: Optional[Callable[[BatchProgress], None]] = None,
    ):
        self.settings = settings or get_settings()
        self.progress_callback = progress_callback

        blob_store = blob_store or create_blob_store(self.settings)
        self.publisher = ArtifactPublisher(blob_store)
        self.renderer = renderer or RenderingService(EngineConfig.from_settings(self.settings))
        self.acquirer = acquirer or SourceAcquirer(blob_store=blob_store, settings=self.settings)

    async def render_batch(
        self,
        request: BatchRenderRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchRenderResult:
        """
        Render every clip in a batch.

        Args:
            request: BatchRenderRequest with source and clip requests
            cancel_event: When set, no further clips are started; clips not
                yet attempted are recorded as cancelled

        Cancelling the task running this coroutine stops in-flight renders
        and still returns a result: finished clips are kept and the rest are
        recorded as cancelled.

        Returns:
            BatchRenderResult with one result per request, in request order
        """
        start_time = time.time()
        batch_id = request.batch_id
        total = len(request.clip_requests)
        work_dir = self._work_dir_for(batch_id)
        max_duration = (
            request.max_segment_duration
            if request.max_segment_duration is not None
            else self.settings.max_segment_duration_seconds
        )

        results: list[Optional[ClipRenderResult]] = [None] * total
        warnings: list[str] = []
        source: Optional[AcquiredSource] = None

        logger.info(f"Starting batch {batch_id}: {total} clip(s) from {request.source_ref[:100]}")

        try:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Batch {batch_id} cancelled before source acquisition")
            else:
                source = await self._acquire_source(request, work_dir, results)
                if source is not None:
                    await self._render_all(
                        request, source, work_dir, max_duration, results, cancel_event
                    )
        except asyncio.CancelledError:
            logger.warning(
                f"Batch {batch_id} task cancelled; keeping "
                f"{sum(1 for r in results if r is not None)} finished result(s)"
            )
        finally:
            if source is not None:
                warning = self.acquirer.release(source)
                if warning is not None:
                    warnings.append(str(warning))
            warnings.extend(self._remove_work_dir(work_dir))

        cancelled = any(result is None for result in results)
        for index, clip_request in enumerate(request.clip_requests):
            if results[index] is None:
                results[index] = _failed(
                    clip_request.id, FailureStage.CANCELLED, "Batch cancelled before this clip finished"
                )

        batch_result = BatchRenderResult(
            batch_id=batch_id,
            results=results,
            warnings=warnings,
            cancelled=cancelled,
            processing_time_seconds=time.time() - start_time,
        )

        self._update_progress(batch_id, BatchState.DONE, total, total)
        logger.info(
            f"Batch {batch_id} done in {batch_result.processing_time_seconds:.1f}s: "
            f"{batch_result.success_count} succeeded, {batch_result.failure_count} failed"
            f"{' (cancelled)' if cancelled else ''}"
        )
        return batch_result

    async def _acquire_source(
        self,
        request: BatchRenderRequest,
        work_dir: str,
        results: list[Optional[ClipRenderResult]],
    ) -> Optional[AcquiredSource]:
        """Acquire the batch source; on failure every clip fails with the same error."""
        batch_id = request.batch_id
        self._update_progress(
            batch_id, BatchState.ACQUIRING_SOURCE, 0, len(request.clip_requests)
        )
        try:
            return await self.acquirer.acquire(request.source_ref, work_dir)
        except SourceAcquisitionError as e:
            logger.error(f"Batch {batch_id}: source acquisition failed: {e}")
            error = e
        except Exception as e:
            logger.exception(f"Batch {batch_id}: source acquisition failed unexpectedly")
            error = e

        for index, clip_request in enumerate(request.clip_requests):
            results[index] = _failed(
                clip_request.id, FailureStage.ACQUIRE, f"Source acquisition failed: {error}"
            )
        return None

    async def _render_all(
        self,
        request: BatchRenderRequest,
        source: AcquiredSource,
        work_dir: str,
        max_duration: float,
        results: list[Optional[ClipRenderResult]],
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        batch_id = request.batch_id
        total = len(request.clip_requests)
        completed = 0

        # Limit concurrent FFmpeg processes to avoid memory exhaustion
        render_semaphore = asyncio.Semaphore(max(1, self.settings.max_render_workers))

        async def render_one(index: int, clip_request: ClipRenderRequest) -> None:
            nonlocal completed
            async with render_semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return

                self._update_progress(
                    batch_id, BatchState.RENDERING, completed, total,
                    current_clip_id=clip_request.id,
                )
                results[index] = await self.render_clip(
                    clip_request,
                    source.local_path,
                    work_dir,
                    request.owner_context,
                    max_duration,
                    batch_id=batch_id,
                )
                completed += 1
                self._update_progress(
                    batch_id, BatchState.RENDERING, completed, total,
                    current_clip_id=clip_request.id,
                )

        tasks = [
            asyncio.ensure_future(render_one(i, clip_request))
            for i, clip_request in enumerate(request.clip_requests)
        ]
        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            logger.warning(f"Batch {batch_id} cancelled; stopping in-flight renders")
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def render_clip(
        self,
        clip_request: ClipRenderRequest,
        source_path: str,
        work_dir: str,
        owner: OwnerContext,
        max_segment_duration: float,
        batch_id: str = "-",
    ) -> ClipRenderResult:
        """
        Filter, build, render and publish a single clip.

        Never raises for item-level failures; they come back as a failed
        ClipRenderResult tagged with the stage.
        """
        clip_id = clip_request.id
        stage = FailureStage.VALIDATE
        dropped: list[DroppedSegment] = []

        try:
            for name, value in (("Clip id", clip_id), ("Project id", owner.project_id)):
                if not is_safe_id(value):
                    raise SegmentValidationError(
                        f"{name} {value!r} must be 1-64 letters, digits, '_' or '-'"
                    )

            filtered = filter_segments(clip_request.segments, max_segment_duration)
            dropped = filtered.dropped

            if not filtered.kept:
                message = f"Clip {clip_id} has no usable segments: {filtered.describe_drops()}"
                logger.warning(f"Batch {batch_id}: {message}")
                return ClipRenderResult(
                    id=clip_id,
                    status=ClipStatus.FAILED,
                    duration_seconds=0,
                    error=message,
                    stage=FailureStage.VALIDATE,
                    dropped_segments=dropped,
                )

            stage = FailureStage.BUILD
            graph = build_filter_graph(filtered.kept, clip_request.options)

            stage = FailureStage.RENDER
            fmt = clip_request.options.format
            output_path = os.path.join(work_dir, f"{clip_id}_{uuid.uuid4().hex[:8]}.{fmt}")
            logger.info(
                f"Batch {batch_id}: rendering clip {clip_id} "
                f"({len(filtered.kept)} segments, {graph.expected_duration_seconds:.2f}s)"
            )
            render_result = await self.renderer.render(
                source_path,
                graph,
                output_path,
                progress_callback=self._render_progress_logger(batch_id, clip_id),
            )

            stage = FailureStage.PUBLISH
            key = build_clip_key(owner.project_id, clip_id, fmt)
            artifact = await self.publisher.publish(render_result.output_path, key)

            logger.info(f"Batch {batch_id}: clip {clip_id} published to {artifact.url}")
            return ClipRenderResult(
                id=clip_id,
                status=ClipStatus.COMPLETED,
                artifact_ref=artifact.url,
                artifact_key=artifact.key,
                file_size_bytes=artifact.file_size_bytes,
                duration_seconds=render_result.duration_seconds,
                dropped_segments=dropped,
            )

        except (FormatError, SegmentValidationError, EncodeError, PublishError) as e:
            logger.error(f"Batch {batch_id}: clip {clip_id} failed at {stage.value}: {e}")
            return _failed(clip_id, stage, f"Clip {clip_id} failed at {stage.value}: {e}", dropped)
        except Exception as e:
            logger.exception(f"Batch {batch_id}: clip {clip_id} failed unexpectedly at {stage.value}")
            return _failed(clip_id, stage, f"Clip {clip_id} failed at {stage.value}: {e}", dropped)

    def _render_progress_logger(
        self,
        batch_id: str,
        clip_id: str,
    ) -> Callable[[RenderProgress], None]:
        def on_progress(progress: RenderProgress) -> None:
            logger.debug(
                f"Batch {batch_id}: clip {clip_id} at {progress.percent:.0f}% "
                f"({progress.out_time_seconds:.1f}s)"
            )
        return on_progress

    def _work_dir_for(self, batch_id: str) -> str:
        """Exclusive scratch directory for a batch, always one level below the temp root."""
        name = batch_id
        if not is_safe_id(batch_id):
            name = f"batch-{uuid.uuid4().hex}"
            logger.warning(f"Batch id {batch_id!r} is not path-safe; using work dir {name}")
        return os.path.join(os.path.abspath(self.settings.temp_directory), name)

    def _remove_work_dir(self, work_dir: str) -> list[str]:
        root = os.path.abspath(self.settings.temp_directory)
        if os.path.dirname(os.path.abspath(work_dir)) != root:
            logger.error(f"Refusing to remove {work_dir}: not a batch directory under {root}")
            return [f"Skipped removal of {work_dir}: outside {root}"]
        if not os.path.isdir(work_dir):
            return []
        try:
            shutil.rmtree(work_dir)
        except OSError as e:
            logger.warning(f"Failed to cleanup work dir {work_dir}: {e}")
            return [f"Failed to remove {work_dir}: {e}"]
        return []

    def _update_progress(
        self,
        batch_id: str,
        state: BatchState,
        clips_completed: int,
        total_clips: int,
        current_clip_id: Optional[str] = None,
    ) -> None:
        """Report batch progress via callback."""
        if not self.progress_callback:
            return

        percent = 100.0 if total_clips == 0 else clips_completed / total_clips * 100
        if state == BatchState.DONE:
            percent = 100.0
        try:
            self.progress_callback(BatchProgress(
                batch_id=batch_id,
                state=state,
                clips_completed=clips_completed,
                total_clips=total_clips,
                current_clip_id=current_clip_id,
                percent=percent,
            ))
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")


def _failed(
    clip_id: str,
    stage: FailureStage,
    message: str,
    dropped: Optional[list[DroppedSegment]] = None,
) -> ClipRenderResult:
    return ClipRenderResult(
        id=clip_id,
        status=ClipStatus.FAILED,
        error=message,
        stage=stage,
        dropped_segments=dropped or [],
    )
