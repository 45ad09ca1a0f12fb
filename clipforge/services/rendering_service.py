"""
Rendering Service - Executes a filter graph against one source with FFmpeg.
"""

import asyncio
import logging
import os
import re
import shutil
import subprocess
from dataclasses import dataclass
from typing import Callable, Optional

from clipforge.config import Settings, get_settings
from clipforge.services.filter_graph import GraphDescription

logger = logging.getLogger(__name__)


# Input pad references such as [0:v:0] or [1:a]
_INPUT_REF_RE = re.compile(r"\[(\d+):[va]")

# Characters of FFmpeg stderr kept in error messages
STDERR_TAIL_CHARS = 1000


@dataclass
class EngineConfig:
    """Media engine executables and limits."""

    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    preset: str = "fast"
    timeout_seconds: Optional[float] = 1800

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "EngineConfig":
        settings = settings or get_settings()
        return cls(
            ffmpeg_path=settings.ffmpeg_path,
            ffprobe_path=settings.ffprobe_path,
            preset=settings.ffmpeg_preset,
            timeout_seconds=settings.render_timeout_seconds,
        )


@dataclass
class RenderProgress:
    """Advisory progress update parsed from FFmpeg's -progress output."""

    percent: float
    out_time_seconds: float


@dataclass
class RenderResult:
    """Result of rendering operation."""

    output_path: str
    file_size_bytes: int
    duration_seconds: float


class RenderingService:
    """
    Service for rendering clips using FFmpeg.

    Features:
    - Single invocation per clip driven by a -filter_complex graph
    - Progress reporting from -progress pipe:1
    - Partial output removed on failure, timeout or cancellation
    - Output duration probed with ffprobe
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig.from_settings()

    def verify_engine(self) -> bool:
        """Check that ffmpeg and ffprobe are resolvable."""
        missing = [
            path for path in (self.config.ffmpeg_path, self.config.ffprobe_path)
            if not shutil.which(path)
        ]
        if missing:
            logger.warning(f"Media engine executables not found: {missing}")
            return False
        logger.info("FFmpeg available")
        return True

    def build_command(
        self,
        source_path: str,
        graph: GraphDescription,
        output_path: str,
    ) -> list[str]:
        """Assemble the full FFmpeg command line for a graph."""
        return [
            self.config.ffmpeg_path,
            "-hide_banner",
            "-y",
            "-i", source_path,
            "-filter_complex", graph.filter_complex,
            "-map", graph.video_label,
            "-map", graph.audio_label,
            *graph.output_args,
            "-preset", self.config.preset,
            "-avoid_negative_ts", "make_zero",
            "-progress", "pipe:1",
            "-nostats",
            output_path,
        ]

    async def render(
        self,
        source_path: str,
        graph: GraphDescription,
        output_path: str,
        progress_callback: Optional[Callable[[RenderProgress], None]] = None,
    ) -> RenderResult:
        """
        Render one clip.

        Args:
            source_path: Local path of the acquired source video
            graph: Filter graph built for the clip
            output_path: Where the encoded clip is written
            progress_callback: Optional callback receiving RenderProgress

        Returns:
            RenderResult with output path, size and duration

        Raises:
            EncodeError: If the graph is inconsistent, FFmpeg fails or times
                out, or no output is produced
        """
        self._check_input_references(graph)

        if not os.path.isfile(source_path):
            raise EncodeError(f"Source file not found: {source_path}")

        os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
        cmd = self.build_command(source_path, graph, output_path)
        logger.debug(f"Running: {' '.join(cmd[:6])}...")

        try:
            returncode, stderr = await asyncio.wait_for(
                self._run_with_progress(cmd, graph.expected_duration_seconds, progress_callback),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            self._remove_partial(output_path)
            raise EncodeError(
                f"FFmpeg timed out after {self.config.timeout_seconds}s"
            ) from e
        except asyncio.CancelledError:
            self._remove_partial(output_path)
            raise
        except OSError as e:
            self._remove_partial(output_path)
            raise EncodeError(f"Failed to start FFmpeg: {e}") from e

        if returncode != 0:
            self._remove_partial(output_path)
            error_msg = stderr[-STDERR_TAIL_CHARS:] if stderr else "Unknown error"
            raise EncodeError(f"FFmpeg failed with exit code {returncode}: {error_msg}")

        if not os.path.exists(output_path):
            raise EncodeError(f"FFmpeg exited cleanly but produced no output at {output_path}")

        duration = await self.probe_duration(output_path)
        if duration is None:
            duration = graph.expected_duration_seconds

        file_size = os.path.getsize(output_path)
        logger.info(
            f"Rendered {os.path.basename(output_path)}: "
            f"{duration:.2f}s, {file_size / 1024 / 1024:.2f} MB"
        )

        return RenderResult(
            output_path=output_path,
            file_size_bytes=file_size,
            duration_seconds=duration,
        )

    async def probe_duration(self, video_path: str) -> Optional[float]:
        """Get container duration in seconds using ffprobe, or None if unknown."""
        cmd = [
            self.config.ffprobe_path,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            video_path,
        ]
        try:
            loop = asyncio.get_event_loop()
            result = await loop.run_in_executor(
                None,
                lambda: subprocess.run(cmd, capture_output=True)
            )
            if result.returncode != 0:
                logger.warning(f"ffprobe failed for {video_path}")
                return None
            return float(result.stdout.decode().strip())
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to probe duration: {e}")
            return None

    async def _run_with_progress(
        self,
        cmd: list[str],
        expected_duration: float,
        progress_callback: Optional[Callable[[RenderProgress], None]],
    ) -> tuple[int, str]:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        # Drain stderr concurrently so a chatty encoder cannot fill the pipe
        stderr_task = asyncio.create_task(proc.stderr.read())

        try:
            async for raw_line in proc.stdout:
                line = raw_line.decode("utf-8", errors="replace").strip()
                progress = _parse_progress_line(line, expected_duration)
                if progress is not None:
                    self._report(progress_callback, progress)

            await proc.wait()
            stderr = await stderr_task
        finally:
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()
            if not stderr_task.done():
                stderr_task.cancel()

        return proc.returncode, stderr.decode("utf-8", errors="replace")

    def _report(
        self,
        progress_callback: Optional[Callable[[RenderProgress], None]],
        progress: RenderProgress,
    ) -> None:
        if not progress_callback:
            return
        try:
            progress_callback(progress)
        except Exception as e:
            logger.warning(f"Render progress callback failed: {e}")

    def _check_input_references(self, graph: GraphDescription) -> None:
        for match in _INPUT_REF_RE.finditer(graph.filter_complex):
            index = int(match.group(1))
            if index >= graph.input_count:
                raise EncodeError(
                    f"Filter graph references input {index} but only "
                    f"{graph.input_count} input(s) are declared"
                )

    def _remove_partial(self, output_path: str) -> None:
        if os.path.exists(output_path):
            try:
                os.remove(output_path)
                logger.debug(f"Removed partial output: {output_path}")
            except OSError as e:
                logger.warning(f"Failed to remove partial output {output_path}: {e}")


def _parse_progress_line(line: str, expected_duration: float) -> Optional[RenderProgress]:
    """Turn one key=value line of -progress output into a RenderProgress."""
    if line == "progress=end":
        return RenderProgress(percent=100.0, out_time_seconds=expected_duration)

    if not line.startswith("out_time_us="):
        return None

    try:
        out_time = int(line.split("=", 1)[1]) / 1_000_000
    except ValueError:
        # FFmpeg reports N/A before the first frame is written
        return None

    if expected_duration <= 0:
        return None
    percent = max(0.0, min(99.0, out_time / expected_duration * 100))
    return RenderProgress(percent=percent, out_time_seconds=out_time)


class EncodeError(Exception):
    """Exception raised when rendering fails."""
    pass
