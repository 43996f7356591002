"""Progress channel and human-readable formatting helpers for uploads."""

import asyncio
import copy
import logging
import math
from typing import AsyncIterator, Optional

from models.upload import UploadProgressState

logger = logging.getLogger(__name__)

_CLOSED = object()


class ProgressChannel:
    """Queue of progress snapshots written by the orchestrator, drained by the caller.

    Every published state is deep-copied, so the consumer never observes a
    snapshot mutating under it. When ``maxsize`` is reached the oldest queued
    snapshot is dropped: snapshots are complete states, so only the newest
    one matters to a slow consumer.

    Example usage:
        channel = ProgressChannel()
        task = asyncio.create_task(orchestrator.upload(request, channel))

        async for state in channel:
            print(f"{state.stage.value}: {state.overall_progress:.1f}%")

        result = await task
    """

    def __init__(self, maxsize: int = 0):
        """Initialize the channel.

        Args:
            maxsize: Maximum queued snapshots, 0 for unbounded
        """
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.latest: Optional[UploadProgressState] = None
        self.dropped = 0
        self.closed = False

    def publish(self, state: UploadProgressState) -> None:
        """Queue a snapshot of ``state``. Ignored after close()."""
        if self.closed:
            logger.debug("Progress published after channel close, ignoring")
            return

        snapshot = copy.deepcopy(state)
        self.latest = snapshot

        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(snapshot)

    def close(self) -> None:
        """Signal the consumer that no more snapshots will follow."""
        if self.closed:
            return
        self.closed = True
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(_CLOSED)

    async def get(self) -> Optional[UploadProgressState]:
        """Wait for the next snapshot, or None once the channel is closed."""
        item = await self._queue.get()
        if item is _CLOSED:
            # Keep the sentinel for any other waiting reader
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def __aiter__(self) -> AsyncIterator[UploadProgressState]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[UploadProgressState]:
        while True:
            state = await self.get()
            if state is None:
                return
            yield state


def format_speed(bytes_per_second: float) -> str:
    """Format a transfer speed (e.g., "512 B/s", "1.5 KB/s", "2.3 MB/s")."""
    if bytes_per_second < 1024:
        return f"{bytes_per_second:.0f} B/s"
    if bytes_per_second < 1024 * 1024:
        return f"{bytes_per_second / 1024:.1f} KB/s"
    return f"{bytes_per_second / (1024 * 1024):.1f} MB/s"


def format_eta(seconds: Optional[float]) -> str:
    """Format ETA in human-readable format.

    Args:
        seconds: ETA in seconds, None while unknown

    Returns:
        Formatted string (e.g., "2m 30s", "45s", "1h 5m")
    """
    if seconds is None:
        return "calculating..."

    if seconds < 60:
        return f"{int(seconds)}s"
    elif seconds < 3600:
        minutes = int(seconds / 60)
        secs = int(seconds % 60)
        return f"{minutes}m {secs}s"
    else:
        hours = int(seconds / 3600)
        minutes = int((seconds % 3600) / 60)
        return f"{hours}h {minutes}m"


def format_file_size(size_bytes: int) -> str:
    """Format a byte count (e.g., "0 Bytes", "1.5 KB", "2.25 MB")."""
    if size_bytes <= 0:
        return "0 Bytes"

    units = ["Bytes", "KB", "MB", "GB", "TB"]
    exponent = min(int(math.floor(math.log(size_bytes, 1024))), len(units) - 1)
    value = round(size_bytes / (1024 ** exponent), 2)
    return f"{value:g} {units[exponent]}"


def format_compression_ratio(ratio: float) -> str:
    """Format a compression ratio percentage (negative when output grew)."""
    return f"{ratio:.1f}%"
