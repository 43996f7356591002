"""Shared pytest fixtures for clipflow tests."""

import asyncio
import sys
import tempfile
from dataclasses import replace
from pathlib import Path
from typing import Dict, Generator, Optional
from unittest.mock import Mock

import pytest

# Add src directory to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from models.video import (  # noqa: E402
    EncodedVariant,
    SegmentFile,
    SourceVideo,
    VideoMetadata,
    VideoRecord,
    VideoStatus,
)
from services.auth import TokenAuthenticator  # noqa: E402
from services.errors import PersistenceError, StorageNotFoundError, TranscodeError  # noqa: E402
from services.segmenter import build_variant_playlist, plan_segments, segment_name  # noqa: E402
from services.storage_client import ObjectStorageClient  # noqa: E402
from services.upload_strategies import PipelineServices, PipelineSettings  # noqa: E402

MB = 1024 * 1024
TEST_TOKEN = "test-token"
TEST_USER = "user-1"


class FakeProber:
    """Returns fixed metadata, or raises ``error``."""

    def __init__(self, metadata: Optional[VideoMetadata] = None, error: Optional[Exception] = None):
        self.metadata = metadata
        self.error = error
        self.calls = 0

    async def probe(self, source: SourceVideo) -> VideoMetadata:
        self.calls += 1
        if self.error:
            raise self.error
        return self.metadata or VideoMetadata(1920, 1080, 60.0, source.size_bytes)


class FakeTranscoder:
    """Produces placeholder bytes; labels in ``fail_labels`` raise TranscodeError."""

    def __init__(
        self,
        fail_labels=(),
        fail_all: bool = False,
        fail_encode: bool = False,
        variant_size: int = 1000,
        delay: float = 0.0,
    ):
        self.fail_labels = set(fail_labels)
        self.fail_all = fail_all
        self.fail_encode = fail_encode
        self.variant_size = variant_size
        self.delay = delay
        self.transcoded: list[str] = []
        self.encoded: list = []
        self.cancelled = False

    async def transcode(self, source, metadata, preset, on_progress=None):
        self.transcoded.append(preset.label)
        if on_progress:
            on_progress(50.0)
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.fail_all or preset.label in self.fail_labels:
            raise TranscodeError(f"encoder crashed on {preset.label}", label=preset.label)
        if on_progress:
            on_progress(100.0)
        return EncodedVariant(
            label=preset.label,
            preset=preset,
            data=b"v" * self.variant_size,
            width=min(preset.target_width, metadata.width),
            height=min(preset.target_height, metadata.height),
            duration_seconds=metadata.duration_seconds,
        )

    async def encode(self, source, metadata, settings, label, on_progress=None):
        self.encoded.append(settings)
        if self.fail_encode:
            raise TranscodeError("compression failed", label=label)
        if on_progress:
            on_progress(100.0)
        return b"c" * self.variant_size


class FakeSegmenter:
    """Splits a variant into planned segments of placeholder bytes."""

    def __init__(self, segment_seconds: float = 4.0, segment_size: int = 100):
        self.segment_seconds = segment_seconds
        self.segment_size = segment_size

    async def segment(self, variant: EncodedVariant) -> EncodedVariant:
        durations = plan_segments(variant.duration_seconds, self.segment_seconds)
        segments = [
            SegmentFile(segment_name(variant.label, i), b"s" * self.segment_size, d)
            for i, d in enumerate(durations)
        ]
        return replace(variant, segments=segments, playlist_text=build_variant_playlist(segments))


class InMemoryStorage(ObjectStorageClient):
    """Object storage backed by a dict.

    ``failures`` maps a key suffix to exceptions raised by successive puts of
    matching keys before they succeed.
    """

    def __init__(self, failures: Optional[dict] = None):
        super().__init__(
            endpoint_url="https://s3.test",
            access_key_id="key",
            secret_access_key="secret",
            bucket_name="clipflow-test",
            client=Mock(),
        )
        self.objects: dict[str, dict] = {}
        self.put_order: list[str] = []
        self.attempts: dict[str, int] = {}
        self.failures = {k: list(v) for k, v in (failures or {}).items()}

    async def put(self, key, data, content_type, on_progress=None, cache_control=None, inline=False):
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.attempts[key] = self.attempts.get(key, 0) + 1

        for suffix, errors in self.failures.items():
            if key.endswith(suffix) and errors:
                raise errors.pop(0)

        if on_progress:
            half = len(data) // 2
            on_progress(half)
            on_progress(len(data) - half)

        self.objects[key] = {
            "data": data,
            "content_type": content_type,
            "cache_control": cache_control,
            "inline": inline,
        }
        self.put_order.append(key)
        return self.object_url(key)

    async def get_text(self, key):
        if key not in self.objects:
            raise StorageNotFoundError(f"NoSuchKey: {key}", key=key)
        return self.objects[key]["data"].decode("utf-8")

    def keys_ending(self, suffix: str) -> list[str]:
        return [k for k in self.put_order if k.endswith(suffix)]


class FakeVideoStore:
    """In-memory stand-in for VideoStore."""

    def __init__(self, fail_create: bool = False, fail_update: bool = False):
        self.videos: dict[str, VideoRecord] = {}
        self.fail_create = fail_create
        self.fail_update = fail_update
        self.status_history: list[tuple[str, VideoStatus]] = []

    async def connect(self):
        pass

    async def close(self):
        pass

    async def create_video(self, **fields) -> VideoRecord:
        if self.fail_create:
            raise PersistenceError("database is locked")
        record = VideoRecord(id=f"video-{len(self.videos) + 1}", **fields)
        self.videos[record.id] = record
        return record

    async def get_video(self, video_id):
        return self.videos.get(video_id)

    async def update_status(self, video_id, status):
        self.status_history.append((video_id, status))
        if self.fail_update:
            raise PersistenceError("database is locked")
        record = self.videos[video_id]
        record.status = status
        return record


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config(tmp_path) -> Dict:
    """Sample configuration for testing."""
    return {
        "storage_endpoint": "https://s3.test",
        "storage_region": "us-central-1",
        "storage_access_key_id": "key",
        "storage_secret_access_key": "secret",
        "storage_bucket": "clipflow-test",
        "database_path": str(tmp_path / "videos.db"),
        "api_tokens": {TEST_TOKEN: TEST_USER},
        "hls_segment_seconds": 4.0,
        "max_parallel_transcodes": 3,
        "max_parallel_uploads": 3,
        "upload_max_attempts": 3,
        "upload_retry_base_delay": 0.0,
        "upload_job_retention_seconds": 3600,
        "presign_expiry_seconds": 28800,
        "presign_safety_margin_seconds": 1800,
        "single_quality_factor": 0.6,
        "single_quality_bitrate_factor": 2.0,
        "single_quality_max_width": 1920,
        "single_quality_max_height": 1080,
        "ffmpeg_binary": "ffmpeg",
        "ffprobe_binary": "ffprobe",
        "log_level": "INFO",
        "log_json": False,
        "cors_origins": ["http://localhost:5173"],
    }


@pytest.fixture
def pipeline_settings() -> PipelineSettings:
    """Settings with no retry backoff so tests run fast."""
    return PipelineSettings(upload_retry_base_delay=0.0)


@pytest.fixture
def sample_source() -> SourceVideo:
    return SourceVideo(filename="holiday.mp4", content_type="video/mp4", data=b"x" * 4096)


@pytest.fixture
def make_services(pipeline_settings):
    """Factory for PipelineServices wired with in-memory fakes."""

    def _make(
        prober=None,
        transcoder=None,
        segmenter=None,
        storage=None,
        store=None,
        settings=None,
    ) -> PipelineServices:
        return PipelineServices(
            authenticator=TokenAuthenticator({TEST_TOKEN: TEST_USER}),
            prober=prober or FakeProber(),
            transcoder=transcoder or FakeTranscoder(),
            segmenter=segmenter or FakeSegmenter(),
            storage=storage or InMemoryStorage(),
            store=store or FakeVideoStore(),
            settings=settings or pipeline_settings,
        )

    return _make
