"""Metadata prober: width, height and duration of a source video via ffprobe."""

import json
import logging

from models.video import SourceVideo, VideoMetadata
from services.errors import MetadataError
from utils.ffmpeg import FFmpegNotFoundError, run_process

logger = logging.getLogger(__name__)


class MetadataProber:
    """Reads container/stream metadata before any encoding decision is made."""

    def __init__(self, ffprobe_binary: str = "ffprobe"):
        self.ffprobe_binary = ffprobe_binary

    async def probe(self, source: SourceVideo) -> VideoMetadata:
        """Probe a source video without modifying it.

        Args:
            source: Uploaded video (in memory or spooled to disk)

        Returns:
            VideoMetadata for the first video stream

        Raises:
            MetadataError: If the container cannot be parsed
        """
        # open_local scopes the temporary decodable copy for in-memory sources
        with source.open_local() as local_path:
            cmd = [
                self.ffprobe_binary,
                "-v", "error",
                "-select_streams", "v:0",
                "-show_entries",
                "stream=width,height,duration:stream_side_data=rotation"
                ":stream_tags=rotate:format=duration",
                "-of", "json",
                str(local_path),
            ]
            try:
                result = await run_process(cmd)
            except FFmpegNotFoundError as e:
                raise MetadataError(str(e)) from e

        if not result.ok:
            raise MetadataError(
                f"ffprobe could not read {source.filename}: {result.stderr_tail(5)}"
            )

        metadata = parse_ffprobe_output(result.stdout, source.size_bytes)
        logger.info(
            f"Probed {source.filename}: {metadata.width}x{metadata.height}, "
            f"{metadata.duration_seconds:.1f}s, {metadata.original_size_bytes} bytes"
        )
        return metadata


def parse_ffprobe_output(raw: str, original_size_bytes: int) -> VideoMetadata:
    """Build VideoMetadata from ``ffprobe -of json`` output.

    Raises:
        MetadataError: If no video stream or no usable duration is present
    """
    try:
        data = json.loads(raw or "{}")
    except json.JSONDecodeError as e:
        raise MetadataError(f"Unparseable ffprobe output: {e}") from e

    streams = data.get("streams") or []
    if not streams:
        raise MetadataError("No video stream found")

    stream = streams[0]
    width = int(stream.get("width") or 0)
    height = int(stream.get("height") or 0)
    if width <= 0 or height <= 0:
        raise MetadataError(f"Invalid video dimensions {width}x{height}")

    # Container duration is more reliable than the stream's for most muxers
    duration_raw = (data.get("format") or {}).get("duration") or stream.get("duration")
    try:
        duration = float(duration_raw)
    except (TypeError, ValueError):
        raise MetadataError(f"Missing or invalid duration: {duration_raw!r}")

    if duration <= 0:
        raise MetadataError(f"Non-positive duration: {duration}")

    rotation = stream_rotation(stream)
    if rotation in (90, 270):
        # ffmpeg autorotates before filters run, so report displayed dimensions
        width, height = height, width

    return VideoMetadata(
        width=width,
        height=height,
        duration_seconds=duration,
        original_size_bytes=original_size_bytes,
    )


def stream_rotation(stream: dict) -> int:
    """Display rotation of a stream in degrees, normalized to 0/90/180/270.

    Newer ffprobe reports a display matrix in ``side_data_list``; older
    muxers only set a ``rotate`` tag.
    """
    raw = None
    for side_data in stream.get("side_data_list") or []:
        if "rotation" in side_data:
            raw = side_data["rotation"]
            break
    if raw is None:
        raw = (stream.get("tags") or {}).get("rotate")
    if raw is None:
        return 0

    try:
        degrees = int(round(float(raw)))
    except (TypeError, ValueError):
        logger.warning(f"Ignoring unparseable rotation {raw!r}")
        return 0
    return degrees % 360
