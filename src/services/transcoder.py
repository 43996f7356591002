"""Transcoder: re-encodes a source video to one resolution/bitrate with ffmpeg.

Instances hold configuration only, so a single Transcoder can run one
encode per resolution concurrently.
"""

import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from models.video import EncodedVariant, ResolutionPreset, SourceVideo, VideoMetadata
from services.errors import TranscodeError
from services.resolution_ladder import compute_target_dimensions
from utils.ffmpeg import FFmpegNotFoundError, parse_progress_seconds, run_process

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

# Floor for the heuristic single-quality bitrate
MIN_SINGLE_QUALITY_BITRATE_KBPS = 300


@dataclass(frozen=True)
class EncodeSettings:
    """Encoder parameters for one output.

    Quality drives a CRF encode; ``video_bitrate_kbps`` is the VBV ceiling
    (maxrate/bufsize), not an average bitrate target.
    """

    width: int
    height: int
    video_bitrate_kbps: int
    audio_bitrate_kbps: int
    quality_factor: float
    keyframe_interval_seconds: Optional[float] = None


def quality_to_crf(quality_factor: float) -> int:
    """Map a 0.0-1.0 quality factor to a libx264 CRF (higher quality, lower CRF).

    The preset bitrate still bounds the stream through maxrate/bufsize.
    """
    quality_factor = min(max(quality_factor, 0.0), 1.0)
    return int(round(35 - 17 * quality_factor))


def settings_for_preset(
    metadata: VideoMetadata,
    preset: ResolutionPreset,
    keyframe_interval_seconds: Optional[float] = None,
) -> EncodeSettings:
    """Encode settings for a ladder preset, never upscaling the source."""
    width, height = compute_target_dimensions(
        metadata.width, metadata.height, preset.target_width, preset.target_height
    )
    return EncodeSettings(
        width=width,
        height=height,
        video_bitrate_kbps=preset.video_bitrate_kbps,
        audio_bitrate_kbps=preset.audio_bitrate_kbps,
        quality_factor=preset.quality_factor,
        keyframe_interval_seconds=keyframe_interval_seconds,
    )


def single_quality_settings(
    metadata: VideoMetadata,
    quality: float,
    bitrate_factor: float,
    max_width: int = 1920,
    max_height: int = 1080,
    audio_bitrate_kbps: int = 128,
) -> EncodeSettings:
    """Encode settings for the single-quality compression tier.

    The bitrate heuristic is ``width * height * quality * bitrate_factor``
    bits per second; ``bitrate_factor`` is a tuning knob, not a constant
    with physical meaning.
    """
    width, height = compute_target_dimensions(
        metadata.width, metadata.height, max_width, max_height
    )
    bitrate_kbps = int(round(width * height * quality * bitrate_factor / 1000))
    return EncodeSettings(
        width=width,
        height=height,
        video_bitrate_kbps=max(bitrate_kbps, MIN_SINGLE_QUALITY_BITRATE_KBPS),
        audio_bitrate_kbps=audio_bitrate_kbps,
        quality_factor=quality,
    )


def build_encode_command(
    ffmpeg_binary: str,
    input_path: Path,
    output_path: Path,
    settings: EncodeSettings,
) -> list[str]:
    """Assemble the ffmpeg command line for one H.264/AAC MP4 output."""
    # libx264 with yuv420p rejects odd dimensions
    width = settings.width - settings.width % 2
    height = settings.height - settings.height % 2
    bitrate = settings.video_bitrate_kbps

    cmd = [
        ffmpeg_binary, "-y",
        "-hide_banner",
        "-nostats",
        "-progress", "pipe:1",
        "-i", str(input_path),
        "-map", "0:v:0",
        "-map", "0:a:0?",
        "-vf", f"scale={width}:{height}",
        "-c:v", "libx264",
        "-preset", "veryfast",
        "-profile:v", "main",
        "-pix_fmt", "yuv420p",
        "-crf", str(quality_to_crf(settings.quality_factor)),
        "-maxrate", f"{bitrate}k",
        "-bufsize", f"{bitrate * 2}k",
        "-c:a", "aac",
        "-b:a", f"{settings.audio_bitrate_kbps}k",
    ]

    if settings.keyframe_interval_seconds:
        # Keyframes on segment boundaries so segments cut cleanly later
        interval = settings.keyframe_interval_seconds
        cmd += [
            "-force_key_frames", f"expr:gte(t,n_forced*{interval:g})",
            "-sc_threshold", "0",
        ]

    cmd += ["-movflags", "+faststart", str(output_path)]
    return cmd


class Transcoder:
    """ffmpeg-backed encoder for ladder presets and the single-quality tier."""

    def __init__(
        self,
        ffmpeg_binary: str = "ffmpeg",
        segment_seconds: Optional[float] = None,
    ):
        """Initialize the transcoder.

        Args:
            ffmpeg_binary: ffmpeg executable name or path
            segment_seconds: Segment duration used downstream; keyframes are
                forced on these boundaries when set
        """
        self.ffmpeg_binary = ffmpeg_binary
        self.segment_seconds = segment_seconds

    async def transcode(
        self,
        source: SourceVideo,
        metadata: VideoMetadata,
        preset: ResolutionPreset,
        on_progress: Optional[ProgressCallback] = None,
    ) -> EncodedVariant:
        """Encode ``source`` for one preset.

        Args:
            source: Source video
            metadata: Probed source metadata
            preset: Target ladder preset
            on_progress: Called with a percentage in [0, 100]

        Returns:
            EncodedVariant without segments

        Raises:
            TranscodeError: Encoder missing or encode failed
        """
        settings = settings_for_preset(metadata, preset, self.segment_seconds)
        data = await self.encode(source, metadata, settings, preset.label, on_progress)

        logger.info(
            f"Transcoded {preset.label}: {settings.width}x{settings.height}, "
            f"{len(data)} bytes"
        )
        return EncodedVariant(
            label=preset.label,
            preset=preset,
            data=data,
            width=settings.width,
            height=settings.height,
            duration_seconds=metadata.duration_seconds,
        )

    async def encode(
        self,
        source: SourceVideo,
        metadata: VideoMetadata,
        settings: EncodeSettings,
        label: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> bytes:
        """Run one encode and return the MP4 bytes.

        Partial output is discarded on failure or cancellation.
        """
        last_percent = -1.0

        def handle_line(line: str) -> None:
            nonlocal last_percent
            seconds = parse_progress_seconds(line)
            if seconds is None or not on_progress:
                return
            percent = min(seconds / metadata.duration_seconds * 100, 100.0)
            if percent > last_percent:
                last_percent = percent
                on_progress(percent)

        with tempfile.TemporaryDirectory(prefix=f"clipflow_{label}_") as tmp:
            output_path = Path(tmp) / f"{label}.mp4"

            with source.open_local() as input_path:
                cmd = build_encode_command(self.ffmpeg_binary, input_path, output_path, settings)
                try:
                    result = await run_process(cmd, on_stdout_line=handle_line)
                except FFmpegNotFoundError as e:
                    raise TranscodeError(f"Encoder unavailable: {e}", label=label) from e

            if not result.ok:
                raise TranscodeError(
                    f"ffmpeg failed for {label} (exit {result.returncode}): "
                    f"{result.stderr_tail()}",
                    label=label,
                )

            if not output_path.exists() or output_path.stat().st_size == 0:
                raise TranscodeError(f"ffmpeg produced no output for {label}", label=label)

            data = output_path.read_bytes()

        if on_progress:
            on_progress(100.0)
        return data
