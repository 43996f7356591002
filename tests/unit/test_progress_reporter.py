"""Tests for progress aggregation across stages and resolutions."""

import pytest

from models.upload import UploadSpeedInfo, UploadStage
from services.progress_reporter import ProgressReporter
from utils.progress import ProgressChannel


@pytest.fixture
def channel():
    return ProgressChannel()


@pytest.fixture
def reporter(channel):
    return ProgressReporter(channel)


def drain(channel: ProgressChannel) -> list:
    states = []
    while not channel._queue.empty():
        item = channel._queue.get_nowait()
        if item is not None:
            states.append(item)
    return states


class TestProgressReporter:
    """Tests for ProgressReporter."""

    def test_stage_entry_sets_band_start(self, reporter):
        reporter.enter_stage(UploadStage.TRANSCODING, "Transcoding")
        assert reporter.state.overall_progress == 10.0

        reporter.enter_stage(UploadStage.UPLOADING)
        assert reporter.state.overall_progress == 50.0

    def test_stage_progress_scaled_into_band(self, reporter):
        reporter.enter_stage(UploadStage.UPLOADING)
        reporter.stage_progress(50)
        assert reporter.state.overall_progress == pytest.approx(70.0)

    def test_overall_progress_never_decreases(self, reporter):
        reporter.enter_stage(UploadStage.UPLOADING)
        reporter.stage_progress(80)
        reporter.stage_progress(20)
        assert reporter.state.overall_progress == pytest.approx(82.0)

    def test_transcoding_aggregate_waits_for_all_resolutions(self, reporter):
        reporter.enter_stage(UploadStage.TRANSCODING)
        reporter.init_resolutions(["1080p", "720p", "480p"])

        reporter.resolution_progress("1080p", 90)
        reporter.resolution_progress("720p", 90)
        assert reporter.transcoding_percent() == 0.0
        assert reporter.state.overall_progress == 10.0

        reporter.resolution_progress("480p", 30)
        assert reporter.transcoding_percent() == pytest.approx(70.0)
        assert reporter.state.overall_progress == pytest.approx(10.0 + 40.0 * 0.7)

    def test_failed_resolution_counts_as_finished(self, reporter):
        reporter.enter_stage(UploadStage.TRANSCODING)
        reporter.init_resolutions(["1080p", "720p"])

        reporter.resolution_failed("1080p", "encoder crashed")
        reporter.resolution_completed("720p", 1234)

        assert reporter.transcoding_percent() == 100.0
        assert reporter.state.per_resolution["1080p"].status == "error"
        assert reporter.state.per_resolution["1080p"].error == "encoder crashed"
        assert reporter.state.per_resolution["720p"].size_bytes == 1234

    def test_resolution_percent_is_monotonic(self, reporter):
        reporter.init_resolutions(["720p"])
        reporter.resolution_progress("720p", 60)
        reporter.resolution_progress("720p", 40)
        assert reporter.state.per_resolution["720p"].percent == 60

    def test_speed_drives_upload_band(self, reporter):
        reporter.enter_stage(UploadStage.UPLOADING)
        info = UploadSpeedInfo(
            bytes_uploaded=500, total_bytes=1000, speed=100.0,
            time_elapsed=5.0, time_remaining=5.0, percentage=50.0,
        )
        reporter.speed(info)

        assert reporter.state.speed_info is info
        assert reporter.state.overall_progress == pytest.approx(70.0)

    def test_every_change_is_published(self, reporter, channel):
        reporter.enter_stage(UploadStage.TRANSCODING)
        reporter.stage_progress(50)
        reporter.failed("boom")

        states = drain(channel)
        assert [s.stage for s in states] == [
            UploadStage.TRANSCODING,
            UploadStage.TRANSCODING,
            UploadStage.FAILED,
        ]
        assert states[-1].error == "boom"
        assert channel.latest.stage.is_terminal
