"""Tests for ffprobe-based metadata probing."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from models.video import SourceVideo
from services.errors import MetadataError
from services.metadata_prober import MetadataProber, parse_ffprobe_output
from services.resolution_ladder import build_ladder
from services.transcoder import build_encode_command, settings_for_preset
from utils.ffmpeg import FFmpegNotFoundError, ProcessResult


def ffprobe_json(
    width=1920, height=1080, stream_duration="59.9", format_duration="60.0", side_data=None, tags=None
):
    stream = {"width": width, "height": height}
    if side_data is not None:
        stream["side_data_list"] = side_data
    if tags is not None:
        stream["tags"] = tags
    if stream_duration is not None:
        stream["duration"] = stream_duration
    data = {"streams": [stream]}
    if format_duration is not None:
        data["format"] = {"duration": format_duration}
    return json.dumps(data)


class TestParseFfprobeOutput:
    """Tests for parse_ffprobe_output."""

    def test_parses_dimensions_and_container_duration(self):
        metadata = parse_ffprobe_output(ffprobe_json(), original_size_bytes=1234)
        assert metadata.width == 1920
        assert metadata.height == 1080
        assert metadata.duration_seconds == 60.0
        assert metadata.original_size_bytes == 1234

    def test_falls_back_to_stream_duration(self):
        metadata = parse_ffprobe_output(ffprobe_json(format_duration=None), 1)
        assert metadata.duration_seconds == pytest.approx(59.9)

    def test_no_video_stream(self):
        with pytest.raises(MetadataError, match="No video stream"):
            parse_ffprobe_output(json.dumps({"streams": []}), 1)

    def test_invalid_dimensions(self):
        with pytest.raises(MetadataError):
            parse_ffprobe_output(ffprobe_json(width=0), 1)

    def test_missing_duration(self):
        with pytest.raises(MetadataError):
            parse_ffprobe_output(ffprobe_json(stream_duration=None, format_duration=None), 1)

    def test_non_positive_duration(self):
        with pytest.raises(MetadataError):
            parse_ffprobe_output(ffprobe_json(format_duration="0.0"), 1)

    def test_garbage_output(self):
        with pytest.raises(MetadataError):
            parse_ffprobe_output("not json", 1)

    @pytest.mark.parametrize("rotation", [-90, 90, 270, -270])
    def test_display_matrix_rotation_swaps_dimensions(self, rotation):
        raw = ffprobe_json(1920, 1080, side_data=[{"side_data_type": "Display Matrix", "rotation": rotation}])
        metadata = parse_ffprobe_output(raw, 1)
        assert (metadata.width, metadata.height) == (1080, 1920)

    def test_rotate_tag_swaps_dimensions(self):
        metadata = parse_ffprobe_output(ffprobe_json(1920, 1080, tags={"rotate": "90"}), 1)
        assert (metadata.width, metadata.height) == (1080, 1920)

    def test_upside_down_keeps_dimensions(self):
        metadata = parse_ffprobe_output(ffprobe_json(1920, 1080, side_data=[{"rotation": 180}]), 1)
        assert (metadata.width, metadata.height) == (1920, 1080)

    def test_rotated_portrait_keeps_aspect_when_encoded(self):
        raw = ffprobe_json(1920, 1080, side_data=[{"rotation": -90}])
        metadata = parse_ffprobe_output(raw, 50 * 1024 * 1024)

        ladder = build_ladder(metadata)
        settings = settings_for_preset(metadata, ladder[0])
        cmd = build_encode_command("ffmpeg", Path("in.mp4"), Path("out.mp4"), settings)

        assert [p.label for p in ladder] == ["1080p", "720p", "480p"]
        assert (settings.width, settings.height) == (608, 1080)
        assert cmd[cmd.index("-vf") + 1] == "scale=608:1080"


class TestMetadataProber:
    """Tests for MetadataProber.probe with ffprobe mocked out."""

    @pytest.mark.asyncio
    async def test_probe_in_memory_source(self):
        source = SourceVideo(filename="clip.mov", data=b"0123456789")
        prober = MetadataProber()
        seen_paths = []

        async def run(cmd, on_stdout_line=None):
            path = cmd[-1]
            seen_paths.append(path)
            with open(path, "rb") as f:
                assert f.read() == b"0123456789"
            return ProcessResult(returncode=0, stdout=ffprobe_json(640, 360), stderr="")

        with patch("services.metadata_prober.run_process", side_effect=run):
            metadata = await prober.probe(source)

        assert (metadata.width, metadata.height) == (640, 360)
        assert metadata.original_size_bytes == 10
        assert seen_paths[0].endswith(".mov")
        # Temporary copy is released after probing
        assert not os.path.exists(seen_paths[0])
        # Source is not mutated
        assert source.data == b"0123456789"

    @pytest.mark.asyncio
    async def test_probe_failure_raises_metadata_error(self):
        source = SourceVideo(filename="broken.mp4", data=b"junk")
        failed = ProcessResult(returncode=1, stdout="", stderr="moov atom not found")

        with patch("services.metadata_prober.run_process", return_value=failed):
            with pytest.raises(MetadataError, match="moov atom not found"):
                await MetadataProber().probe(source)

    @pytest.mark.asyncio
    async def test_missing_ffprobe_raises_metadata_error(self):
        source = SourceVideo(filename="clip.mp4", data=b"junk")

        with patch("services.metadata_prober.run_process", side_effect=FFmpegNotFoundError("ffprobe not found")):
            with pytest.raises(MetadataError):
                await MetadataProber().probe(source)

    @pytest.mark.asyncio
    async def test_probe_requests_rotation_metadata(self):
        source = SourceVideo(filename="phone.mp4", data=b"junk")
        rotated = ffprobe_json(1920, 1080, side_data=[{"rotation": -90}])
        ok = ProcessResult(returncode=0, stdout=rotated, stderr="")

        with patch("services.metadata_prober.run_process", return_value=ok) as run:
            metadata = await MetadataProber().probe(source)

        cmd = run.call_args.args[0]
        entries = cmd[cmd.index("-show_entries") + 1]
        assert "stream_side_data=rotation" in entries
        assert "stream_tags=rotate" in entries
        assert (metadata.width, metadata.height) == (1080, 1920)
