"""Segmenter/packager: slices encoded variants into HLS segments and playlists.

Segments are MPEG-TS files named ``segment_{label}_{index:03d}.ts`` listed in
playback order by a per-variant VOD playlist. The master manifest lists one
stream-info entry per variant in ladder order.
"""

import csv
import io
import logging
import math
import tempfile
from dataclasses import replace
from pathlib import Path
from typing import Sequence

from models.video import EncodedVariant, SegmentFile
from services.errors import SegmentError
from utils.ffmpeg import FFmpegNotFoundError, run_process

logger = logging.getLogger(__name__)

HLS_VERSION = 3
MASTER_MANIFEST_NAME = "master.m3u8"


def plan_segments(duration_seconds: float, segment_seconds: float) -> list[float]:
    """Expected segment durations for a stream.

    ``ceil(D / S)`` segments; every segment is ``S`` long except the last,
    which holds the remainder. A stream shorter than ``S`` is one segment.

    Raises:
        SegmentError: If either duration is not positive
    """
    if segment_seconds <= 0:
        raise SegmentError(f"Segment duration must be positive (got {segment_seconds})")
    if duration_seconds <= 0:
        raise SegmentError(f"Stream duration must be positive (got {duration_seconds})")

    # Round first so 60.0 / 4.0 stays 15 segments despite float noise
    count = max(1, math.ceil(round(duration_seconds / segment_seconds, 6)))
    durations = [segment_seconds] * (count - 1)
    durations.append(duration_seconds - segment_seconds * (count - 1))
    return durations


def segment_name(label: str, index: int) -> str:
    return f"segment_{label}_{index:03d}.ts"


def build_variant_playlist(segments: Sequence[SegmentFile]) -> str:
    """Render a VOD media playlist referencing ``segments`` in order."""
    if not segments:
        raise SegmentError("Cannot build a playlist without segments")

    target_duration = max(1, math.ceil(max(s.duration_seconds for s in segments)))
    lines = [
        "#EXTM3U",
        f"#EXT-X-VERSION:{HLS_VERSION}",
        f"#EXT-X-TARGETDURATION:{target_duration}",
        "#EXT-X-MEDIA-SEQUENCE:0",
        "#EXT-X-PLAYLIST-TYPE:VOD",
        "#EXT-X-INDEPENDENT-SEGMENTS",
    ]
    for segment in segments:
        lines.append(f"#EXTINF:{segment.duration_seconds:.6f},")
        lines.append(segment.name)
    lines.append("#EXT-X-ENDLIST")
    return "\n".join(lines) + "\n"


def build_master_manifest(variants: Sequence[EncodedVariant]) -> str:
    """Render the master manifest, one stream-info entry per variant.

    Bandwidth comes from the preset bitrate and resolution from the preset
    box, in the order given (the ladder order, highest first).
    """
    lines = ["#EXTM3U", f"#EXT-X-VERSION:{HLS_VERSION}", ""]
    for variant in variants:
        preset = variant.preset
        lines.append(
            f"#EXT-X-STREAM-INF:BANDWIDTH={preset.bandwidth},"
            f"RESOLUTION={preset.target_width}x{preset.target_height}"
        )
        lines.append(variant.playlist_name)
        lines.append("")
    return "\n".join(lines)


def parse_segment_list(raw: str) -> list[tuple[str, float]]:
    """Parse ffmpeg's CSV segment list into (filename, duration) pairs."""
    entries = []
    for row in csv.reader(io.StringIO(raw)):
        if len(row) < 3:
            continue
        name, start, end = row[0], float(row[1]), float(row[2])
        entries.append((name, max(end - start, 0.0)))
    return entries


class Segmenter:
    """Splits an encoded MP4 into fixed-duration MPEG-TS segments."""

    def __init__(self, segment_seconds: float = 4.0, ffmpeg_binary: str = "ffmpeg"):
        """Initialize the segmenter.

        Args:
            segment_seconds: Target segment duration in seconds
            ffmpeg_binary: ffmpeg executable name or path
        """
        if segment_seconds <= 0:
            raise ValueError("segment_seconds must be positive")
        self.segment_seconds = segment_seconds
        self.ffmpeg_binary = ffmpeg_binary

    async def segment(self, variant: EncodedVariant) -> EncodedVariant:
        """Segment one variant and attach its segments and playlist.

        Raises:
            SegmentError: ffmpeg failure, zero duration or no segments produced
        """
        expected = plan_segments(variant.duration_seconds, self.segment_seconds)

        with tempfile.TemporaryDirectory(prefix=f"clipflow_seg_{variant.label}_") as tmp:
            tmp_dir = Path(tmp)
            input_path = tmp_dir / f"{variant.label}.mp4"
            input_path.write_bytes(variant.data)
            list_path = tmp_dir / "segments.csv"

            cmd = [
                self.ffmpeg_binary, "-y",
                "-hide_banner",
                "-i", str(input_path),
                "-map", "0",
                "-c", "copy",
                "-bsf:v", "h264_mp4toannexb",
                "-f", "segment",
                "-segment_time", f"{self.segment_seconds:g}",
                "-segment_format", "mpegts",
                "-segment_list", str(list_path),
                "-segment_list_type", "csv",
                str(tmp_dir / f"segment_{variant.label}_%03d.ts"),
            ]
            try:
                result = await run_process(cmd)
            except FFmpegNotFoundError as e:
                raise SegmentError(f"Segmenter unavailable: {e}", label=variant.label) from e

            if not result.ok:
                raise SegmentError(
                    f"ffmpeg segmenting failed for {variant.label}: {result.stderr_tail()}",
                    label=variant.label,
                )

            entries = parse_segment_list(list_path.read_text()) if list_path.exists() else []
            if not entries:
                raise SegmentError(
                    f"No segments produced for {variant.label}", label=variant.label
                )

            if len(entries) != len(expected):
                logger.warning(
                    f"{variant.label}: expected {len(expected)} segments, "
                    f"ffmpeg produced {len(entries)} (keyframe placement)"
                )

            segments = [
                SegmentFile(
                    name=segment_name(variant.label, index),
                    data=(tmp_dir / name).read_bytes(),
                    duration_seconds=duration,
                )
                for index, (name, duration) in enumerate(entries)
            ]

        logger.info(f"Segmented {variant.label} into {len(segments)} segments")
        return replace(
            variant,
            segments=segments,
            playlist_text=build_variant_playlist(segments),
        )
