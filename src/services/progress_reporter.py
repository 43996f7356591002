"""Aggregates stage and per-resolution progress into UploadProgressState snapshots."""

import logging
from typing import Optional

from models.upload import (
    ResolutionProgress,
    StrategyName,
    UploadProgressState,
    UploadSpeedInfo,
    UploadStage,
    scale_into_band,
)
from models.video import VideoRecord
from utils.progress import ProgressChannel

logger = logging.getLogger(__name__)


class ProgressReporter:
    """Owns the progress state of one strategy attempt and publishes every change.

    Each resolution task writes only its own entry of ``per_resolution``; the
    transcoding aggregate is the mean across entries once every resolution
    has reported at least once (errored resolutions count as finished).
    """

    def __init__(self, channel: ProgressChannel, strategy: Optional[StrategyName] = None):
        self.channel = channel
        self.state = UploadProgressState(
            stage=UploadStage.PREPARING,
            overall_progress=0.0,
            strategy=strategy,
        )

    def _publish(self) -> None:
        self.channel.publish(self.state)

    def enter_stage(self, stage: UploadStage, message: str = "") -> None:
        """Move to ``stage`` at the start of its band."""
        if stage != self.state.stage:
            logger.info(f"Stage {self.state.stage.value} -> {stage.value}")
        self.state.stage = stage
        self.state.message = message
        if stage != UploadStage.FAILED:
            self.state.overall_progress = max(
                self.state.overall_progress, scale_into_band(stage, 0.0)
            )
        self._publish()

    def stage_progress(self, percent: float, message: Optional[str] = None) -> None:
        """Report stage-local progress in [0, 100]; overall progress never goes back."""
        overall = scale_into_band(self.state.stage, percent)
        self.state.overall_progress = max(self.state.overall_progress, overall)
        if message is not None:
            self.state.message = message
        self._publish()

    def init_resolutions(self, labels: list[str]) -> None:
        self.state.per_resolution = {label: ResolutionProgress() for label in labels}
        self._publish()

    def resolution_progress(self, label: str, percent: float) -> None:
        entry = self.state.per_resolution[label]
        entry.status = "processing"
        entry.percent = min(max(percent, entry.percent), 100.0)
        self._refresh_transcoding_aggregate()

    def resolution_completed(self, label: str, size_bytes: int) -> None:
        entry = self.state.per_resolution[label]
        entry.status = "completed"
        entry.percent = 100.0
        entry.size_bytes = size_bytes
        self._refresh_transcoding_aggregate()

    def resolution_failed(self, label: str, error: str) -> None:
        entry = self.state.per_resolution[label]
        entry.status = "error"
        entry.error = error
        self._refresh_transcoding_aggregate()

    def transcoding_percent(self) -> float:
        """Mean per-resolution progress, 0 until every resolution has reported."""
        entries = list(self.state.per_resolution.values())
        if not entries or any(e.status == "pending" for e in entries):
            return 0.0
        total = sum(100.0 if e.status == "error" else e.percent for e in entries)
        return total / len(entries)

    def _refresh_transcoding_aggregate(self) -> None:
        self.stage_progress(self.transcoding_percent())

    def speed(self, info: UploadSpeedInfo) -> None:
        self.state.speed_info = info
        self.stage_progress(info.percentage)

    def completed(self, record: VideoRecord, message: str = "Upload complete") -> None:
        self.state.stage = UploadStage.COMPLETED
        self.state.overall_progress = 100.0
        self.state.message = message
        self.state.record = record
        self._publish()

    def failed(self, error: str) -> None:
        self.state.stage = UploadStage.FAILED
        self.state.message = error
        self.state.error = error
        self._publish()
