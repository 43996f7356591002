"""Command line entry point for clipflow."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Dict, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from tqdm import tqdm

from api.dependencies import build_pipeline
from models.upload import UploadProgressState, UploadRequest, UploadResult
from models.video import SourceVideo
from services.errors import StorageError
from services.presigned_url import PresignedUrlResolver
from services.storage_client import ObjectStorageClient
from services.video_store import VideoStore
from utils.config import get_supported_video_formats, load_config, validate_config
from utils.logging import setup_logging
from utils.progress import (
    ProgressChannel,
    format_compression_ratio,
    format_eta,
    format_file_size,
    format_speed,
)

logger = logging.getLogger(__name__)

console = Console()

CONTENT_TYPES = {
    ".mp4": "video/mp4",
    ".m4v": "video/mp4",
    ".mov": "video/quicktime",
    ".webm": "video/webm",
    ".mkv": "video/x-matroska",
    ".avi": "video/x-msvideo",
}


class UploadProgressBars:
    """tqdm bars for one upload: overall plus one per resolution."""

    def __init__(self):
        self.overall_bar: Optional[tqdm] = None
        self.resolution_bars: Dict[str, tqdm] = {}

    def __call__(self, state: UploadProgressState):
        if self.overall_bar is None:
            self.overall_bar = tqdm(
                total=100,
                desc="Overall",
                unit="%",
                position=0,
                leave=True,
                bar_format="{l_bar}{bar}| {n:.1f}/{total:.1f}% [{elapsed}]",
            )

        self.overall_bar.n = state.overall_progress
        description = state.stage.value.title()
        if state.speed_info is not None:
            eta = None if state.speed_info.is_calculating else state.speed_info.time_remaining
            description += (
                f" {format_speed(state.speed_info.speed)}, ETA {format_eta(eta)}"
            )
        self.overall_bar.set_description(description)
        self.overall_bar.refresh()

        for label, progress in state.per_resolution.items():
            if label not in self.resolution_bars:
                self.resolution_bars[label] = tqdm(
                    total=100,
                    desc=f"  {label}",
                    unit="%",
                    position=len(self.resolution_bars) + 1,
                    leave=False,
                    bar_format="{l_bar}{bar}| {n:.0f}%",
                )

            bar = self.resolution_bars[label]
            bar.n = progress.percent
            if progress.status == "completed":
                bar.set_description(f"  {label} ✓")
            elif progress.status == "error":
                bar.set_description(f"  {label} ✗")
            bar.refresh()

    def close(self):
        """Close all progress bars."""
        for bar in self.resolution_bars.values():
            bar.close()
        if self.overall_bar:
            self.overall_bar.close()


def print_result(result: UploadResult) -> None:
    if not result.success:
        console.print(Panel(result.error or "Upload failed", title="Upload failed", style="red"))
        return

    record = result.record
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_row("Video ID", result.video_id)
    table.add_row("Strategy", result.strategy.value)
    table.add_row("URL", record.file_url)
    table.add_row("Original size", format_file_size(record.original_size))
    table.add_row("Stored size", format_file_size(record.file_size))
    if result.compression_ratio is not None:
        table.add_row("Compression", format_compression_ratio(result.compression_ratio))
    if result.segment_count:
        table.add_row("Segments", str(result.segment_count))
    for label, output in result.resolutions.items():
        table.add_row(f"  {label}", f"{format_file_size(output.size)} @ {output.bitrate} kbps")
    if result.degraded:
        table.add_row("Failed resolutions", ", ".join(result.failed_resolutions))

    console.print(Panel(table, title="Upload complete", style="green"))


async def run_upload(config: dict, args: argparse.Namespace) -> int:
    video_path = Path(args.video_file)
    if not video_path.exists():
        console.print(f"[red]Video file not found: {video_path}[/red]")
        return 1
    if video_path.suffix.lower() not in get_supported_video_formats():
        console.print(f"[red]Unsupported video format: {video_path.suffix}[/red]")
        return 1

    store = VideoStore(config["database_path"])
    await store.connect()
    try:
        storage = ObjectStorageClient.from_config(config)
        orchestrator = build_pipeline(config, store, storage)

        request = UploadRequest(
            source=SourceVideo(
                filename=video_path.name,
                content_type=CONTENT_TYPES.get(video_path.suffix.lower(), "video/mp4"),
                path=video_path,
            ),
            title=args.title,
            description=args.description,
            access_token=args.token,
        )

        channel = ProgressChannel()
        cancel_event = asyncio.Event()
        task = asyncio.create_task(orchestrator.upload(request, channel, cancel_event))

        progress_bars = UploadProgressBars()
        try:
            async for state in channel:
                progress_bars(state)
            result = await task
        except asyncio.CancelledError:
            cancel_event.set()
            result = await task
        finally:
            progress_bars.close()
    finally:
        await store.close()

    print_result(result)
    return 0 if result.success else 1


async def run_presign(config: dict, args: argparse.Namespace) -> int:
    storage = ObjectStorageClient.from_config(config)
    resolver = PresignedUrlResolver(
        storage,
        expiry_seconds=config["presign_expiry_seconds"],
        safety_margin_seconds=config["presign_safety_margin_seconds"],
    )
    try:
        url = await resolver.resolve(args.url)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        return 1
    print(url)
    return 0


async def run_check_storage(config: dict, args: argparse.Namespace) -> int:
    storage = ObjectStorageClient.from_config(config)
    try:
        await storage.check_bucket()
    except StorageError as e:
        console.print(f"[red]✗ Bucket {storage.bucket_name} not reachable ({e.kind}): {e}[/red]")
        return 1
    console.print(f"[green]✓ Bucket {storage.bucket_name} reachable at {storage.endpoint_url}[/green]")
    return 0


COMMANDS = {
    "upload": run_upload,
    "presign": run_presign,
    "check-storage": run_check_storage,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clipflow",
        description="clipflow video upload pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  clipflow upload video.mp4 --title "My trip" --token $CLIPFLOW_TOKEN
  clipflow presign https://s3.us-central-1.wasabisys.com/clipflow-videos/u1/1700000000000-ab12cd34.mp4
  clipflow check-storage
        """,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    upload = subparsers.add_parser("upload", help="Transcode and upload a video")
    upload.add_argument("video_file", help="Video file to upload")
    upload.add_argument("--title", required=True, help="Video title")
    upload.add_argument("--description", default=None, help="Video description")
    upload.add_argument("--token", required=True, help="Session token (see API_TOKENS)")

    presign = subparsers.add_parser("presign", help="Print a signed URL for a stored object URL")
    presign.add_argument("url", help="Stored object URL")

    subparsers.add_parser("check-storage", help="Verify bucket access")

    return parser


def main():
    """Main entry point."""
    args = build_parser().parse_args()

    config = load_config()
    setup_logging(config["log_level"], config["log_json"])

    errors = validate_config(config)
    if errors:
        for error in errors:
            console.print(f"[red]Configuration error: {error}[/red]")
        sys.exit(1)

    try:
        exit_code = asyncio.run(COMMANDS[args.command](config, args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        exit_code = 130
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
