"""Resolution ladder selection.

The preset table is ordered from highest to lowest quality and the ladder
for a given source is always emitted in that order, which keeps master
manifests deterministic.
"""

import logging
from typing import Callable

from models.video import ResolutionPreset, VideoMetadata

logger = logging.getLogger(__name__)

MB = 1024 * 1024

RESOLUTION_PRESETS: list[ResolutionPreset] = [
    ResolutionPreset("1080p", 1920, 1080, video_bitrate_kbps=5000, audio_bitrate_kbps=192, quality_factor=0.8),
    ResolutionPreset("720p", 1280, 720, video_bitrate_kbps=2500, audio_bitrate_kbps=128, quality_factor=0.7),
    ResolutionPreset("480p", 854, 480, video_bitrate_kbps=1000, audio_bitrate_kbps=96, quality_factor=0.6),
    ResolutionPreset("360p", 640, 360, video_bitrate_kbps=600, audio_bitrate_kbps=64, quality_factor=0.5),
    ResolutionPreset("240p", 426, 240, video_bitrate_kbps=300, audio_bitrate_kbps=48, quality_factor=0.4),
]

FALLBACK_LABEL = "360p"


def get_preset(label: str) -> ResolutionPreset:
    """Look up a preset by label (e.g., "720p")."""
    for preset in RESOLUTION_PRESETS:
        if preset.label == label:
            return preset
    raise KeyError(f"Unknown resolution preset: {label}")


def select_qualities(file_size_bytes: int) -> list[str]:
    """Pick requested labels from the file size.

    Bigger inputs get a cheaper ladder to bound total transcode time.
    """
    if file_size_bytes > 500 * MB:
        return ["480p", "360p"]
    elif file_size_bytes > 100 * MB:
        return ["720p", "480p"]
    else:
        return ["1080p", "720p", "480p"]


def build_ladder(
    metadata: VideoMetadata,
    size_hint: Callable[[int], list[str]] = select_qualities,
) -> list[ResolutionPreset]:
    """Choose the presets to encode for one source.

    Requested labels come from ``size_hint``; presets taller than the source
    are dropped. If nothing survives, the 360p preset is used on its own.
    """
    requested = set(size_hint(metadata.original_size_bytes))
    ladder = [
        preset
        for preset in RESOLUTION_PRESETS
        if preset.label in requested and preset.target_height <= metadata.height
    ]

    if not ladder:
        logger.info(
            f"No requested preset fits {metadata.height}p source, "
            f"falling back to {FALLBACK_LABEL}"
        )
        ladder = [get_preset(FALLBACK_LABEL)]

    logger.info(f"Resolution ladder: {[p.label for p in ladder]}")
    return ladder


def _even(value: float) -> int:
    """Round to the nearest even integer (H.264 needs even dimensions)."""
    return max(2, int(round(value / 2)) * 2)


def compute_target_dimensions(
    source_width: int,
    source_height: int,
    max_width: int,
    max_height: int,
) -> tuple[int, int]:
    """Fit the source inside a target box without upscaling.

    A source that already fits keeps its native dimensions. Otherwise it is
    scaled by the limiting dimension, preserving aspect ratio.
    """
    if source_width <= max_width and source_height <= max_height:
        return source_width, source_height

    scale = min(max_width / source_width, max_height / source_height)
    return _even(source_width * scale), _even(source_height * scale)
