"""SQLite-backed video metadata store.

Implements the create/read/update contract the upload pipeline depends on
for the ``videos`` table. Uses aiosqlite for async database operations.
"""

import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import aiosqlite

from models.video import VideoRecord, VideoStatus
from services.errors import PersistenceError

logger = logging.getLogger(__name__)

# Default database path
DEFAULT_DB_PATH = ".clipflow/videos.db"


class VideoStore:
    """Async SQLite storage for VideoRecord rows."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the store with a database path.

        Args:
            db_path: Path to SQLite database file, or ":memory:". Parent
                     directory will be created if it doesn't exist.
        """
        self.db_path = db_path
        self.db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open the connection and create the schema."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self.db = await aiosqlite.connect(str(self.db_path))
        self.db.row_factory = aiosqlite.Row

        if self.db_path != ":memory:":
            # Enable WAL mode for better concurrent read performance
            await self.db.execute("PRAGMA journal_mode=WAL")

        await self.db.execute("""
            CREATE TABLE IF NOT EXISTS videos (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT,
                original_filename TEXT NOT NULL,
                file_url TEXT NOT NULL,
                original_size INTEGER NOT NULL,
                file_size INTEGER NOT NULL,
                compression_ratio REAL NOT NULL DEFAULT 0,
                status TEXT NOT NULL DEFAULT 'processing',
                view_count INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            )
        """)

        await self.db.execute("""
            CREATE INDEX IF NOT EXISTS idx_videos_user_created
            ON videos (user_id, created_at DESC)
        """)

        await self.db.commit()
        logger.info(f"Video store connected: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self.db:
            await self.db.close()
            self.db = None
            logger.info("Video store connection closed")

    def _require_db(self) -> aiosqlite.Connection:
        if self.db is None:
            raise PersistenceError("Database not connected. Call connect() first.")
        return self.db

    async def create_video(
        self,
        user_id: str,
        title: str,
        original_filename: str,
        file_url: str,
        original_size: int,
        file_size: int,
        compression_ratio: float,
        description: Optional[str] = None,
        status: VideoStatus = VideoStatus.PROCESSING,
    ) -> VideoRecord:
        """Insert a new video row.

        Raises:
            PersistenceError: If the insert fails
        """
        db = self._require_db()
        record = VideoRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            description=description,
            original_filename=original_filename,
            file_url=file_url,
            original_size=original_size,
            file_size=file_size,
            compression_ratio=compression_ratio,
            status=status,
            view_count=0,
            created_at=datetime.now().isoformat(),
        )

        try:
            await db.execute(
                "INSERT INTO videos (id, user_id, title, description, original_filename, "
                "file_url, original_size, file_size, compression_ratio, status, "
                "view_count, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.user_id,
                    record.title,
                    record.description,
                    record.original_filename,
                    record.file_url,
                    record.original_size,
                    record.file_size,
                    record.compression_ratio,
                    record.status.value,
                    record.view_count,
                    record.created_at,
                ),
            )
            await db.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to create video record: {e}") from e

        logger.info(f"Created video {record.id} for user {user_id}")
        return record

    async def get_video(self, video_id: str) -> Optional[VideoRecord]:
        """Get a video by ID, or None if not found."""
        db = self._require_db()
        try:
            async with db.execute("SELECT * FROM videos WHERE id = ?", (video_id,)) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to read video {video_id}: {e}") from e

        return self._row_to_record(row) if row is not None else None

    async def update_status(self, video_id: str, status: VideoStatus) -> VideoRecord:
        """Transition a video's status.

        Raises:
            PersistenceError: If the row is missing or the update fails
        """
        db = self._require_db()
        try:
            cursor = await db.execute(
                "UPDATE videos SET status = ? WHERE id = ?", (status.value, video_id)
            )
            await db.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to update video {video_id}: {e}") from e

        if cursor.rowcount == 0:
            raise PersistenceError(f"Video {video_id} not found")

        logger.debug(f"Updated video {video_id}: status={status.value}")
        record = await self.get_video(video_id)
        if record is None:
            raise PersistenceError(f"Video {video_id} disappeared during update")
        return record

    async def list_videos(self, user_id: str, limit: int = 100) -> list[VideoRecord]:
        """List a user's videos, newest first."""
        db = self._require_db()
        async with db.execute(
            "SELECT * FROM videos WHERE user_id = ? ORDER BY created_at DESC LIMIT ?",
            (user_id, limit),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    def _row_to_record(self, row: aiosqlite.Row) -> VideoRecord:
        values: dict[str, Any] = dict(row)
        values["status"] = VideoStatus(values["status"])
        return VideoRecord(**values)
