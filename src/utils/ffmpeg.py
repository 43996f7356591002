"""Async subprocess helpers for ffmpeg and ffprobe."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

logger = logging.getLogger(__name__)


class FFmpegNotFoundError(RuntimeError):
    """The ffmpeg/ffprobe binary is not installed or not on PATH."""


@dataclass
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def stderr_tail(self, lines: int = 15) -> str:
        """Last lines of stderr, where ffmpeg puts the actual error."""
        return "\n".join(self.stderr.strip().splitlines()[-lines:])


async def run_process(
    cmd: Sequence[str],
    on_stdout_line: Optional[Callable[[str], None]] = None,
) -> ProcessResult:
    """Run a command, streaming stdout lines to ``on_stdout_line``.

    The child process is killed if the awaiting task is cancelled.

    Raises:
        FFmpegNotFoundError: If the executable does not exist
    """
    logger.debug(f"Running: {' '.join(cmd)}")

    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise FFmpegNotFoundError(f"{cmd[0]} not found: {e}") from e

    stdout_lines: list[str] = []

    async def read_stdout() -> None:
        while True:
            raw = await proc.stdout.readline()
            if not raw:
                break
            line = raw.decode(errors="replace").rstrip()
            stdout_lines.append(line)
            if on_stdout_line:
                on_stdout_line(line)

    try:
        _, stderr = await asyncio.gather(read_stdout(), proc.stderr.read())
        await proc.wait()
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        logger.info(f"Terminated {cmd[0]} after cancellation")
        raise

    return ProcessResult(
        returncode=proc.returncode,
        stdout="\n".join(stdout_lines),
        stderr=stderr.decode(errors="replace"),
    )


def parse_progress_seconds(line: str) -> Optional[float]:
    """Extract encoded media time from one ``-progress`` output line.

    ffmpeg reports ``out_time_us`` (and, despite the name, microseconds in
    ``out_time_ms``); both are accepted.
    """
    key, sep, value = line.partition("=")
    if not sep or key not in ("out_time_us", "out_time_ms"):
        return None
    try:
        return max(int(value), 0) / 1_000_000
    except ValueError:
        # "N/A" before the first frame is muxed
        return None
