"""Upload speed monitor: smoothed throughput and time-to-completion."""

import time
from collections import deque
from typing import Callable

from models.upload import UploadSpeedInfo

DEFAULT_HISTORY_SIZE = 10


class UploadSpeedMonitor:
    """Tracks bytes transferred over time.

    Each ``update`` turns the byte delta since the previous call into an
    instantaneous speed, keeps the last ``history_size`` of them and reports
    their mean. Byte counts that go backwards (a retried chunk) count as a
    zero-speed sample.
    """

    def __init__(
        self,
        history_size: int = DEFAULT_HISTORY_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self.start_time = clock()
        self.last_update_time = self.start_time
        self.last_bytes_uploaded = 0
        self.speed_history: deque[float] = deque(maxlen=history_size)

    def update(self, bytes_uploaded: int, total_bytes: int) -> UploadSpeedInfo:
        now = self._clock()
        time_elapsed = now - self.start_time
        time_since_last = now - self.last_update_time

        delta = max(bytes_uploaded - self.last_bytes_uploaded, 0)
        instant_speed = delta / time_since_last if time_since_last > 0 else 0.0
        self.speed_history.append(instant_speed)

        average_speed = sum(self.speed_history) / len(self.speed_history)

        remaining_bytes = max(total_bytes - bytes_uploaded, 0)
        time_remaining = remaining_bytes / average_speed if average_speed > 0 else 0.0

        self.last_update_time = now
        self.last_bytes_uploaded = bytes_uploaded

        percentage = (bytes_uploaded / total_bytes * 100) if total_bytes > 0 else 0.0

        return UploadSpeedInfo(
            bytes_uploaded=bytes_uploaded,
            total_bytes=total_bytes,
            speed=average_speed,
            time_elapsed=time_elapsed,
            time_remaining=time_remaining,
            percentage=percentage,
        )
