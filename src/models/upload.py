"""Upload progress and result models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from models.video import SourceVideo, VideoRecord


class UploadStage(str, Enum):
    """Stages of one upload attempt."""

    PREPARING = "preparing"
    TRANSCODING = "transcoding"
    UPLOADING = "uploading"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadStage.COMPLETED, UploadStage.FAILED)


# Overall-progress band (start, end) allotted to each stage
STAGE_BANDS: dict[UploadStage, tuple[float, float]] = {
    UploadStage.PREPARING: (0.0, 10.0),
    UploadStage.TRANSCODING: (10.0, 50.0),
    UploadStage.UPLOADING: (50.0, 90.0),
    UploadStage.FINALIZING: (90.0, 100.0),
    UploadStage.COMPLETED: (100.0, 100.0),
}


def scale_into_band(stage: UploadStage, percent: float) -> float:
    """Map a 0-100 stage-local percentage into the stage's overall band."""
    start, end = STAGE_BANDS[stage]
    percent = min(max(percent, 0.0), 100.0)
    return start + (end - start) * percent / 100.0


class StrategyName(str, Enum):
    """Upload strategies, in fallback order."""

    MULTI_RESOLUTION = "multi_resolution"
    SINGLE_QUALITY = "single_quality"
    RAW_PASSTHROUGH = "raw_passthrough"


@dataclass
class ResolutionProgress:
    """Progress of one resolution through transcode and segmenting."""

    status: str = "pending"  # pending, processing, completed, error
    percent: float = 0.0
    size_bytes: Optional[int] = None
    error: Optional[str] = None


@dataclass
class UploadSpeedInfo:
    """Smoothed transfer speed derived by the upload speed monitor."""

    bytes_uploaded: int
    total_bytes: int
    speed: float  # bytes per second, smoothed
    time_elapsed: float  # seconds
    time_remaining: float  # seconds, 0 while calculating
    percentage: float

    @property
    def is_calculating(self) -> bool:
        """True until a non-zero smoothed speed is available."""
        return self.speed <= 0


@dataclass
class UploadProgressState:
    """Snapshot pushed to the progress channel on every change."""

    stage: UploadStage
    overall_progress: float
    message: str = ""
    strategy: Optional[StrategyName] = None
    per_resolution: dict[str, ResolutionProgress] = field(default_factory=dict)
    speed_info: Optional[UploadSpeedInfo] = None
    record: Optional[VideoRecord] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        speed = None
        if self.speed_info is not None:
            speed = {
                "bytes_uploaded": self.speed_info.bytes_uploaded,
                "total_bytes": self.speed_info.total_bytes,
                "speed": round(self.speed_info.speed, 2),
                "time_remaining": round(self.speed_info.time_remaining, 2),
                "percentage": round(self.speed_info.percentage, 2),
            }
        return {
            "stage": self.stage.value,
            "overall_progress": round(self.overall_progress, 2),
            "message": self.message,
            "strategy": self.strategy.value if self.strategy else None,
            "per_resolution": {
                label: {
                    "status": p.status,
                    "percent": round(p.percent, 2),
                    "size_bytes": p.size_bytes,
                    "error": p.error,
                }
                for label, p in self.per_resolution.items()
            },
            "speed_info": speed,
            "record": self.record.to_dict() if self.record else None,
            "error": self.error,
        }


@dataclass
class UploadRequest:
    """Everything the caller hands to the upload entry point."""

    source: SourceVideo
    title: str
    description: Optional[str] = None
    access_token: Optional[str] = None


@dataclass
class ResolutionOutput:
    """A stored variant: playlist URL, encoded size and advertised bitrate."""

    url: str
    size: int
    bitrate: int  # kbps


@dataclass
class StrategyOutcome:
    """What a successful strategy hands back to the orchestrator."""

    record: VideoRecord
    resolutions: dict[str, ResolutionOutput] = field(default_factory=dict)
    master_playlist_url: Optional[str] = None
    compression_ratio: Optional[float] = None
    segment_count: int = 0
    failed_resolutions: list[str] = field(default_factory=list)


@dataclass
class TierFailure:
    """Why one strategy of the fallback chain did not succeed."""

    strategy: StrategyName
    error_type: str
    message: str


@dataclass
class UploadResult:
    """Result of the upload entry point."""

    success: bool
    strategy: Optional[StrategyName] = None
    video_id: Optional[str] = None
    record: Optional[VideoRecord] = None
    resolutions: dict[str, ResolutionOutput] = field(default_factory=dict)
    master_playlist_url: Optional[str] = None
    compression_ratio: Optional[float] = None
    segment_count: int = 0
    degraded: bool = False
    failed_resolutions: list[str] = field(default_factory=list)
    attempts: list[TierFailure] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "strategy": self.strategy.value if self.strategy else None,
            "video_id": self.video_id,
            "resolutions": {
                label: {"url": r.url, "size": r.size, "bitrate": r.bitrate}
                for label, r in self.resolutions.items()
            },
            "master_playlist_url": self.master_playlist_url,
            "compression_ratio": self.compression_ratio,
            "segment_count": self.segment_count,
            "degraded": self.degraded,
            "failed_resolutions": list(self.failed_resolutions),
            "attempts": [
                {"strategy": a.strategy.value, "error_type": a.error_type, "message": a.message}
                for a in self.attempts
            ],
            "error": self.error,
        }
