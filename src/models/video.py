"""Video-related data models."""

import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional


@dataclass
class SourceVideo:
    """Raw uploaded video owned by one upload call.

    Either ``data`` (bytes received from the client) or ``path`` (a file
    already spooled to disk) must be set. ``path`` wins when both are.
    """

    filename: str
    content_type: str = "video/mp4"
    data: Optional[bytes] = None
    path: Optional[Path] = None

    def __post_init__(self):
        if self.data is None and self.path is None:
            raise ValueError("SourceVideo requires either data or path")
        if self.path is not None:
            self.path = Path(self.path)

    @property
    def size_bytes(self) -> int:
        if self.path is not None:
            return self.path.stat().st_size
        return len(self.data)

    @property
    def extension(self) -> str:
        """File extension without the dot, defaulting to mp4."""
        suffix = Path(self.filename).suffix.lstrip(".").lower()
        return suffix or "mp4"

    def read_bytes(self) -> bytes:
        if self.path is not None:
            return self.path.read_bytes()
        return self.data

    @contextmanager
    def open_local(self) -> Iterator[Path]:
        """Yield a local file path for decoders that need one.

        In-memory sources are written to a temporary directory that is
        removed when the context exits.
        """
        if self.path is not None:
            yield self.path
            return

        tmp_dir = Path(tempfile.mkdtemp(prefix="clipflow_src_"))
        try:
            local_path = tmp_dir / f"source.{self.extension}"
            local_path.write_bytes(self.data)
            yield local_path
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)


@dataclass(frozen=True)
class VideoMetadata:
    """Probed properties of a source video."""

    width: int
    height: int
    duration_seconds: float
    original_size_bytes: int


@dataclass(frozen=True)
class ResolutionPreset:
    """One rung of the resolution/bitrate ladder."""

    label: str
    target_width: int
    target_height: int
    video_bitrate_kbps: int
    audio_bitrate_kbps: int
    quality_factor: float  # 0.0 to 1.0

    @property
    def bandwidth(self) -> int:
        """Bandwidth in bits per second as advertised in the master manifest."""
        return self.video_bitrate_kbps * 1000


@dataclass
class SegmentFile:
    """One fixed-duration chunk of an encoded stream."""

    name: str
    data: bytes
    duration_seconds: float

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass
class EncodedVariant:
    """Transcoder output for one preset, later filled in by the segmenter."""

    label: str
    preset: ResolutionPreset
    data: bytes
    width: int
    height: int
    duration_seconds: float
    segments: list[SegmentFile] = field(default_factory=list)
    playlist_text: str = ""

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def playlist_name(self) -> str:
        return f"{self.label}.m3u8"


class VideoStatus(str, Enum):
    """Lifecycle of a stored video record."""

    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


@dataclass
class VideoRecord:
    """Row of the external ``videos`` table."""

    id: str
    user_id: str
    title: str
    description: Optional[str]
    original_filename: str
    file_url: str
    original_size: int
    file_size: int
    compression_ratio: Optional[float]
    status: VideoStatus = VideoStatus.PROCESSING
    view_count: int = 0
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "original_filename": self.original_filename,
            "file_url": self.file_url,
            "original_size": self.original_size,
            "file_size": self.file_size,
            "compression_ratio": self.compression_ratio,
            "status": self.status.value,
            "view_count": self.view_count,
            "created_at": self.created_at,
        }
