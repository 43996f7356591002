"""Pydantic request/response models for the clipflow API."""

from typing import Optional

from pydantic import BaseModel, Field

# =============================================================================
# Response Models
# =============================================================================


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str

    model_config = {"json_schema_extra": {"examples": [{"message": "Cancellation requested"}]}}


class RootResponse(BaseModel):
    """Root endpoint response."""

    message: str
    version: str

    model_config = {"json_schema_extra": {"examples": [{"message": "clipflow API", "version": "1.0.0"}]}}


class HealthResponse(BaseModel):
    """Health check response."""

    status: str

    model_config = {"json_schema_extra": {"examples": [{"status": "healthy"}]}}


class UploadAcceptedResponse(BaseModel):
    """Returned when an upload has been queued."""

    upload_id: str
    message: str

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "upload_id": "550e8400-e29b-41d4-a716-446655440000",
                    "message": "Upload accepted, processing started",
                }
            ]
        }
    }


class ResolutionProgressResponse(BaseModel):
    status: str
    percent: float = Field(ge=0, le=100)
    size_bytes: Optional[int] = None
    error: Optional[str] = None


class SpeedInfoResponse(BaseModel):
    bytes_uploaded: int
    total_bytes: int
    speed: float
    time_remaining: float
    percentage: float


class VideoResponse(BaseModel):
    """Stored video record."""

    id: str
    user_id: str
    title: str
    description: Optional[str] = None
    original_filename: str
    file_url: str
    original_size: int
    file_size: int
    compression_ratio: Optional[float] = None
    status: str
    view_count: int
    created_at: str


class UploadProgressResponse(BaseModel):
    """Latest progress snapshot of an upload."""

    stage: str
    overall_progress: float = Field(ge=0, le=100)
    message: str
    strategy: Optional[str] = None
    per_resolution: dict[str, ResolutionProgressResponse] = Field(default_factory=dict)
    speed_info: Optional[SpeedInfoResponse] = None
    record: Optional[VideoResponse] = None
    error: Optional[str] = None


class ResolutionOutputResponse(BaseModel):
    url: str
    size: int
    bitrate: int


class TierFailureResponse(BaseModel):
    strategy: str
    error_type: str
    message: str


class UploadResultResponse(BaseModel):
    """Outcome of an upload once it has finished."""

    success: bool
    strategy: Optional[str] = None
    video_id: Optional[str] = None
    resolutions: dict[str, ResolutionOutputResponse] = Field(default_factory=dict)
    master_playlist_url: Optional[str] = None
    compression_ratio: Optional[float] = None
    segment_count: int = 0
    degraded: bool = False
    failed_resolutions: list[str] = Field(default_factory=list)
    attempts: list[TierFailureResponse] = Field(default_factory=list)
    error: Optional[str] = None


class UploadStatusResponse(BaseModel):
    """Upload job status."""

    upload_id: str
    filename: str
    created_at: str
    done: bool
    progress: Optional[UploadProgressResponse] = None
    result: Optional[UploadResultResponse] = None


class PlaybackUrlResponse(BaseModel):
    """Short-lived signed URL for a stored object."""

    url: str
    expires_in: int
    playlist_url: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "url": "https://s3.us-central-1.wasabisys.com/clipflow-videos/user-1/1700000000000-a1b2c3d4-hls/master.m3u8?X-Amz-Signature=...",
                    "expires_in": 28800,
                    "playlist_url": "/api/videos/3f2a/hls/master.m3u8",
                }
            ]
        }
    }


# =============================================================================
# Request Models
# =============================================================================


class PlaybackRefreshRequest(BaseModel):
    """Request a fresh signed URL for a stored video, e.g. after a player saw a 403."""

    video_id: str = Field(min_length=1)
    force: bool = False
