"""Configuration loading and validation for clipflow."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Get the project root directory (parent of src)
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Load environment variables from .env file in project root
load_dotenv(PROJECT_ROOT / ".env")

# Wasabi caps presigned URL validity at 8 hours
MAX_PRESIGN_EXPIRY_SECONDS = 8 * 60 * 60


def _parse_api_tokens(raw: str | None) -> dict[str, str]:
    """Parse ``token:user_id`` pairs separated by commas."""
    tokens: dict[str, str] = {}
    if not raw:
        return tokens
    for pair in raw.split(","):
        pair = pair.strip()
        if not pair or ":" not in pair:
            continue
        token, user_id = pair.split(":", 1)
        tokens[token.strip()] = user_id.strip()
    return tokens


def load_config() -> dict:
    """Load configuration from environment variables."""

    # Helper function to resolve paths relative to project root
    def resolve_path(path: str | None, default_relative: str) -> str:
        if not path:
            return str(PROJECT_ROOT / default_relative)
        if Path(path).is_absolute():
            return path
        return str(PROJECT_ROOT / path)

    config = {
        # S3-compatible object storage (Wasabi by default)
        "storage_endpoint": os.getenv(
            "STORAGE_ENDPOINT", "https://s3.us-central-1.wasabisys.com"
        ),
        "storage_region": os.getenv("STORAGE_REGION", "us-central-1"),
        "storage_access_key_id": os.getenv("STORAGE_ACCESS_KEY_ID"),
        "storage_secret_access_key": os.getenv("STORAGE_SECRET_ACCESS_KEY"),
        "storage_bucket": os.getenv("STORAGE_BUCKET", "clipflow-videos"),
        # Video metadata store
        "database_path": resolve_path(os.getenv("DATABASE_PATH"), ".clipflow/videos.db"),
        # Session tokens accepted by the upload entry point
        "api_tokens": _parse_api_tokens(os.getenv("API_TOKENS")),
        # Packaging
        "hls_segment_seconds": float(os.getenv("HLS_SEGMENT_SECONDS", "4")),
        "max_parallel_transcodes": int(os.getenv("MAX_PARALLEL_TRANSCODES", "3")),
        "max_parallel_uploads": int(os.getenv("MAX_PARALLEL_UPLOADS", "3")),
        # Per-artifact retry on transient storage faults
        "upload_max_attempts": int(os.getenv("UPLOAD_MAX_ATTEMPTS", "3")),
        "upload_retry_base_delay": float(os.getenv("UPLOAD_RETRY_BASE_DELAY", "1.0")),
        # Finished upload jobs stay queryable this long
        "upload_job_retention_seconds": int(
            os.getenv("UPLOAD_JOB_RETENTION_SECONDS", "3600")
        ),
        # Presigned playback URLs
        "presign_expiry_seconds": min(
            int(os.getenv("PRESIGN_EXPIRY_SECONDS", str(MAX_PRESIGN_EXPIRY_SECONDS))),
            MAX_PRESIGN_EXPIRY_SECONDS,
        ),
        "presign_safety_margin_seconds": int(
            os.getenv("PRESIGN_SAFETY_MARGIN_SECONDS", "1800")
        ),
        # Single-quality fallback tier (bitrate factor is a tuning knob)
        "single_quality_factor": float(os.getenv("SINGLE_QUALITY_FACTOR", "0.6")),
        "single_quality_bitrate_factor": float(
            os.getenv("SINGLE_QUALITY_BITRATE_FACTOR", "2.0")
        ),
        "single_quality_max_width": int(os.getenv("SINGLE_QUALITY_MAX_WIDTH", "1920")),
        "single_quality_max_height": int(os.getenv("SINGLE_QUALITY_MAX_HEIGHT", "1080")),
        # External binaries
        "ffmpeg_binary": os.getenv("FFMPEG_BINARY", "ffmpeg"),
        "ffprobe_binary": os.getenv("FFPROBE_BINARY", "ffprobe"),
        # Logging / API
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
        "log_json": os.getenv("LOG_JSON", "false").lower() == "true",
        "cors_origins": [
            origin.strip()
            for origin in os.getenv(
                "CORS_ORIGINS", "http://localhost:5173,http://localhost:3000"
            ).split(",")
            if origin.strip()
        ],
    }

    return config


def validate_config(config: dict) -> list[str]:
    """Validate configuration and return list of errors."""
    errors = []

    if not config.get("storage_access_key_id") or not config.get("storage_secret_access_key"):
        errors.append(
            "STORAGE_ACCESS_KEY_ID and STORAGE_SECRET_ACCESS_KEY are required"
        )

    if not config.get("storage_bucket"):
        errors.append("STORAGE_BUCKET is required")

    segment_seconds = config.get("hls_segment_seconds", 0)
    if not 4 <= segment_seconds <= 6:
        errors.append(
            f"HLS_SEGMENT_SECONDS must be between 4 and 6 (got {segment_seconds})"
        )

    if config.get("upload_max_attempts", 0) < 1:
        errors.append("UPLOAD_MAX_ATTEMPTS must be at least 1")

    if config.get("max_parallel_transcodes", 0) < 1:
        errors.append("MAX_PARALLEL_TRANSCODES must be at least 1")

    if config.get("presign_safety_margin_seconds", 0) >= config.get(
        "presign_expiry_seconds", 0
    ):
        errors.append(
            "PRESIGN_SAFETY_MARGIN_SECONDS must be shorter than PRESIGN_EXPIRY_SECONDS"
        )

    quality = config.get("single_quality_factor", 0)
    if not 0 < quality <= 1:
        errors.append(f"SINGLE_QUALITY_FACTOR must be in (0, 1] (got {quality})")

    # Validate the database directory can be created
    db_path = config.get("database_path")
    if db_path:
        try:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        except Exception as e:
            errors.append(f"Cannot create database directory: {e}")

    return errors


def get_supported_video_formats() -> list[str]:
    """Return list of supported video file extensions."""
    return [".mp4", ".avi", ".mov", ".mkv", ".wmv", ".flv", ".webm", ".m4v"]
