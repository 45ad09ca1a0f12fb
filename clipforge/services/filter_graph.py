"""
Filter Graph Builder - Turns an ordered segment list into an FFmpeg filter_complex.

Every segment is trimmed out of the single source input (``0:v:0`` / ``0:a:0``),
reset to start at zero, and normalized to a common canvas with scale-to-fit
plus letterbox padding. The normalized pairs are then either concatenated or
chained through pairwise crossfades, with optional fades at the outer edges.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from clipforge.config import OUTPUT_FORMATS, QualityPreset, get_quality_preset
from clipforge.services.segment_filter import SegmentSpec, SegmentValidationError

logger = logging.getLogger(__name__)


# Longest fade-in / fade-out applied at the clip edges
MAX_EDGE_FADE_SECONDS = 1.0


@dataclass
class RenderOptions:
    """Per-clip rendering options."""

    quality: str = "medium"  # low, medium, high
    format: str = "mp4"  # mp4, mov, avi
    width: Optional[int] = None  # Defaults to the quality preset's target width
    height: Optional[int] = None  # Defaults to 16:9 for the resolved width
    fps: int = 30
    crossfade: bool = False
    crossfade_duration: float = 0.3
    include_fades: bool = False

    @property
    def preset(self) -> QualityPreset:
        return get_quality_preset(self.quality)

    def resolved_size(self) -> tuple[int, int]:
        """Output canvas size, filling gaps from the quality preset."""
        width = self.width or self.preset.target_width
        height = self.height or _even(width * 9 / 16)
        return width, height


@dataclass
class GraphDescription:
    """A built filter graph plus everything needed to run it."""

    filter_complex: str
    video_label: str  # e.g. "[vout]"
    audio_label: str
    input_count: int
    output_args: list[str]
    expected_duration_seconds: float
    segment_durations: list[float] = field(default_factory=list)
    transition_offsets: list[float] = field(default_factory=list)
    crossfade_duration: Optional[float] = None  # Effective value after clamping
    fade_duration: Optional[float] = None


class FilterGraphBuilder:
    """
    Builds a single-pass filter_complex graph for one clip.

    Features:
    - Independent video/audio trims per segment with unique labels
    - Letterboxed normalization to a common resolution and frame rate
    - Straight concatenation or left-to-right pairwise crossfades
    - Optional fade-in / fade-out at the clip's outer edges
    """

    def __init__(self, segments: list[SegmentSpec], options: RenderOptions):
        self.segments = segments
        self.options = options

        self._lines: list[str] = []

    def build(self) -> GraphDescription:
        self._lines = []
        self._validate()

        durations = [segment.duration_seconds for segment in self.segments]
        width, height = self.options.resolved_size()

        for index, segment in enumerate(self.segments):
            self._trim_segment(index, segment, width, height)

        crossfade_duration = self._effective_crossfade(durations)
        if crossfade_duration is not None:
            video_label, audio_label, offsets, total = self._chain_crossfades(
                durations, crossfade_duration
            )
        else:
            video_label, audio_label, total = self._concat_segments(len(durations))
            offsets = []

        fade_duration = None
        if self.options.include_fades:
            fade_duration = min(MAX_EDGE_FADE_SECONDS, total / 4)
            video_label, audio_label = self._apply_edge_fades(
                video_label, audio_label, total, fade_duration
            )

        logger.debug(
            f"Built graph: {len(self.segments)} segments, "
            f"mode={'crossfade' if crossfade_duration is not None else 'concat'}, "
            f"expected duration={total:.3f}s, canvas={width}x{height}"
        )

        return GraphDescription(
            filter_complex=";".join(self._lines),
            video_label=f"[{video_label}]",
            audio_label=f"[{audio_label}]",
            input_count=1,
            output_args=self._build_output_args(),
            expected_duration_seconds=total,
            segment_durations=durations,
            transition_offsets=offsets,
            crossfade_duration=crossfade_duration,
            fade_duration=fade_duration,
        )

    def _validate(self) -> None:
        if not self.segments:
            raise SegmentValidationError("Cannot build a filter graph without segments")

        try:
            self.options.preset
        except ValueError as e:
            raise SegmentValidationError(str(e)) from e

        if self.options.format not in OUTPUT_FORMATS:
            raise SegmentValidationError(
                f"Unknown format: {self.options.format}. "
                f"Valid formats: {list(OUTPUT_FORMATS.keys())}"
            )
        if self.options.fps <= 0:
            raise SegmentValidationError(f"fps must be positive, got {self.options.fps}")

        width, height = self.options.resolved_size()
        if width <= 0 or height <= 0 or width % 2 or height % 2:
            raise SegmentValidationError(
                f"Output size must be positive and even, got {width}x{height}"
            )

        if self.options.crossfade and self.options.crossfade_duration < 0:
            raise SegmentValidationError(
                f"crossfade_duration must be >= 0, got {self.options.crossfade_duration}"
            )

        for segment in self.segments:
            if segment.duration_seconds <= 0:
                raise SegmentValidationError(
                    f"Segment '{segment.label}' has non-positive duration"
                )

    def _trim_segment(self, index: int, segment: SegmentSpec, width: int, height: int) -> None:
        start = segment.start_seconds
        end = segment.end_seconds
        fit = (
            f"scale=w={width}:h={height}:force_original_aspect_ratio=decrease,"
            f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2:color=black,"
            f"setsar=1,fps={self.options.fps},format=yuv420p"
        )

        self._lines.append(
            f"[0:v:0]trim=start={start:.3f}:end={end:.3f},setpts=PTS-STARTPTS,{fit}[v{index}]"
        )
        self._lines.append(
            f"[0:a:0]atrim=start={start:.3f}:end={end:.3f},asetpts=PTS-STARTPTS,"
            f"aformat=sample_rates=48000:channel_layouts=stereo,"
            f"aresample=async=1:first_pts=0[a{index}]"
        )

    def _effective_crossfade(self, durations: list[float]) -> Optional[float]:
        """Crossfade duration to use, or None for straight concatenation."""
        if not self.options.crossfade or len(durations) < 2:
            return None

        requested = self.options.crossfade_duration
        if requested == 0:
            return None

        # Each segment must be able to host a transition at both ends
        limit = min(durations) / 2
        if requested > limit:
            logger.warning(
                f"Crossfade {requested:.3f}s exceeds half the shortest segment "
                f"({min(durations):.3f}s); clamping to {limit:.3f}s"
            )
            return limit
        return requested

    def _concat_segments(self, count: int) -> tuple[str, str, float]:
        total = sum(segment.duration_seconds for segment in self.segments)
        if count == 1:
            return "v0", "a0", total

        pairs = "".join(f"[v{i}][a{i}]" for i in range(count))
        self._lines.append(f"{pairs}concat=n={count}:v=1:a=1[vcat][acat]")
        return "vcat", "acat", total

    def _chain_crossfades(
        self,
        durations: list[float],
        crossfade_duration: float,
    ) -> tuple[str, str, list[float], float]:
        """
        Successively blend v0 with v1 => vx1, then vx1 with v2 => vx2, ...

        The offset for segment i is measured into the accumulated stream, not
        into the previous segment alone.
        """
        current_v = "v0"
        current_a = "a0"
        accumulated = durations[0]
        offsets = []

        for i in range(1, len(durations)):
            offset = max(0.0, accumulated - crossfade_duration)
            offsets.append(offset)

            self._lines.append(
                f"[{current_v}][v{i}]xfade=transition=fade:"
                f"duration={crossfade_duration:.3f}:offset={offset:.3f}[vx{i}]"
            )
            self._lines.append(
                f"[{current_a}][a{i}]acrossfade=d={crossfade_duration:.3f}[ax{i}]"
            )

            current_v = f"vx{i}"
            current_a = f"ax{i}"
            accumulated = offset + durations[i]

        return current_v, current_a, offsets, accumulated

    def _apply_edge_fades(
        self,
        video_label: str,
        audio_label: str,
        total: float,
        fade_duration: float,
    ) -> tuple[str, str]:
        fade_out_start = max(0.0, total - fade_duration)
        self._lines.append(
            f"[{video_label}]fade=t=in:st=0:d={fade_duration:.3f},"
            f"fade=t=out:st={fade_out_start:.3f}:d={fade_duration:.3f}[vout]"
        )
        self._lines.append(
            f"[{audio_label}]afade=t=in:st=0:d={fade_duration:.3f},"
            f"afade=t=out:st={fade_out_start:.3f}:d={fade_duration:.3f}[aout]"
        )
        return "vout", "aout"

    def _build_output_args(self) -> list[str]:
        preset = self.options.preset
        args = [
            "-c:v", "libx264",
            "-b:v", preset.video_bitrate,
            "-pix_fmt", "yuv420p",
            "-r", str(self.options.fps),
            "-c:a", "aac",
            "-b:a", preset.audio_bitrate,
            "-f", OUTPUT_FORMATS[self.options.format],
        ]
        if self.options.format in ("mp4", "mov"):
            args.extend(["-movflags", "+faststart"])  # Optimize for web streaming
        return args


def build_filter_graph(segments: list[SegmentSpec], options: RenderOptions) -> GraphDescription:
    """Build the filter graph for one clip."""
    return FilterGraphBuilder(segments, options).build()


def _even(value: float) -> int:
    rounded = int(round(value))
    return rounded - (rounded % 2)
