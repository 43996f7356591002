"""Unit tests for data models."""

import pytest

from models.upload import (
    ResolutionOutput,
    StrategyName,
    TierFailure,
    UploadProgressState,
    UploadResult,
    UploadStage,
    scale_into_band,
)
from models.video import ResolutionPreset, SourceVideo, VideoRecord, VideoStatus


class TestSourceVideo:
    """Tests for SourceVideo."""

    def test_requires_data_or_path(self):
        with pytest.raises(ValueError):
            SourceVideo(filename="a.mp4")

    def test_in_memory_source(self):
        source = SourceVideo(filename="Clip.MOV", content_type="video/quicktime", data=b"abc")
        assert source.size_bytes == 3
        assert source.extension == "mov"
        assert source.read_bytes() == b"abc"

    def test_extension_defaults_to_mp4(self):
        assert SourceVideo(filename="noext", data=b"x").extension == "mp4"

    def test_open_local_writes_temp_file_and_cleans_up(self):
        source = SourceVideo(filename="clip.webm", data=b"payload")
        with source.open_local() as path:
            assert path.read_bytes() == b"payload"
            assert path.suffix == ".webm"
        assert not path.exists()
        assert not path.parent.exists()

    def test_path_source(self, temp_dir):
        file_path = temp_dir / "video.mp4"
        file_path.write_bytes(b"0123456789")
        source = SourceVideo(filename="video.mp4", path=str(file_path))

        assert source.size_bytes == 10
        with source.open_local() as path:
            assert path == file_path
        assert file_path.exists()


class TestResolutionPreset:
    def test_bandwidth_in_bits_per_second(self):
        preset = ResolutionPreset("720p", 1280, 720, 2500, 128, 0.8)
        assert preset.bandwidth == 2_500_000


class TestStageBands:
    """Tests for stage band mapping."""

    @pytest.mark.parametrize(
        "stage,percent,expected",
        [
            (UploadStage.PREPARING, 50, 5.0),
            (UploadStage.TRANSCODING, 0, 10.0),
            (UploadStage.TRANSCODING, 100, 50.0),
            (UploadStage.UPLOADING, 25, 60.0),
            (UploadStage.FINALIZING, 100, 100.0),
            (UploadStage.UPLOADING, 150, 90.0),
            (UploadStage.UPLOADING, -10, 50.0),
        ],
    )
    def test_scale_into_band(self, stage, percent, expected):
        assert scale_into_band(stage, percent) == pytest.approx(expected)

    def test_terminal_stages(self):
        assert UploadStage.COMPLETED.is_terminal
        assert UploadStage.FAILED.is_terminal
        assert not UploadStage.UPLOADING.is_terminal


class TestSerialization:
    """Tests for to_dict helpers."""

    def test_record_to_dict(self):
        record = VideoRecord(
            id="v1", user_id="u1", title="t", description=None,
            original_filename="a.mp4", file_url="https://x/a.mp4",
            original_size=100, file_size=40, compression_ratio=60.0,
            status=VideoStatus.PROCESSED,
        )
        data = record.to_dict()
        assert data["status"] == "processed"
        assert data["compression_ratio"] == 60.0
        assert data["view_count"] == 0

    def test_progress_state_to_dict(self):
        state = UploadProgressState(
            stage=UploadStage.UPLOADING,
            overall_progress=61.234,
            strategy=StrategyName.SINGLE_QUALITY,
        )
        data = state.to_dict()
        assert data["stage"] == "uploading"
        assert data["overall_progress"] == 61.23
        assert data["strategy"] == "single_quality"
        assert data["speed_info"] is None

    def test_result_to_dict(self):
        result = UploadResult(
            success=True,
            strategy=StrategyName.MULTI_RESOLUTION,
            video_id="v1",
            resolutions={"720p": ResolutionOutput("https://x/720p.m3u8", 1000, 2500)},
            degraded=True,
            failed_resolutions=["1080p"],
            attempts=[TierFailure(StrategyName.MULTI_RESOLUTION, "TranscodeError", "boom")],
        )
        data = result.to_dict()
        assert data["strategy"] == "multi_resolution"
        assert data["resolutions"]["720p"] == {"url": "https://x/720p.m3u8", "size": 1000, "bitrate": 2500}
        assert data["failed_resolutions"] == ["1080p"]
        assert data["attempts"][0]["error_type"] == "TranscodeError"
