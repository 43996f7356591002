# Data models for clipflow
from .video import (
    SourceVideo,
    VideoMetadata,
    ResolutionPreset,
    SegmentFile,
    EncodedVariant,
    VideoStatus,
    VideoRecord,
)
from .upload import (
    UploadStage,
    StrategyName,
    ResolutionProgress,
    UploadSpeedInfo,
    UploadProgressState,
    UploadRequest,
    ResolutionOutput,
    StrategyOutcome,
    TierFailure,
    UploadResult,
)

__all__ = [
    "SourceVideo",
    "VideoMetadata",
    "ResolutionPreset",
    "SegmentFile",
    "EncodedVariant",
    "VideoStatus",
    "VideoRecord",
    # Upload pipeline
    "UploadStage",
    "StrategyName",
    "ResolutionProgress",
    "UploadSpeedInfo",
    "UploadProgressState",
    "UploadRequest",
    "ResolutionOutput",
    "StrategyOutcome",
    "TierFailure",
    "UploadResult",
]
