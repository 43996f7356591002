"""In-memory registry of running and finished upload jobs.

Progress snapshots are not persisted; a finished job stays queryable for a
retention window and is then evicted. The video record written at the end of
an upload is the durable outcome.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from api.progress_hub import ProgressHub
from models.upload import UploadRequest, UploadResult
from services.upload_orchestrator import UploadOrchestrator
from utils.progress import ProgressChannel

logger = logging.getLogger(__name__)


@dataclass
class UploadJob:
    id: str
    filename: str
    channel: ProgressChannel
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    task: Optional[asyncio.Task] = None
    result: Optional[UploadResult] = None
    finished_at: Optional[float] = None

    @property
    def done(self) -> bool:
        return self.result is not None

    def to_dict(self) -> dict:
        latest = self.channel.latest
        return {
            "upload_id": self.id,
            "filename": self.filename,
            "created_at": self.created_at,
            "done": self.done,
            "progress": latest.to_dict() if latest else None,
            "result": self.result.to_dict() if self.result else None,
        }


class UploadJobRegistry:
    """Starts uploads as background tasks and relays their progress to the hub."""

    def __init__(
        self,
        orchestrator: UploadOrchestrator,
        hub: ProgressHub,
        retention_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.orchestrator = orchestrator
        self.hub = hub
        self.retention_seconds = retention_seconds
        self._clock = clock
        self.jobs: dict[str, UploadJob] = {}

    def get(self, upload_id: str) -> Optional[UploadJob]:
        return self.jobs.get(upload_id)

    def evict_finished(self) -> int:
        """Drop finished jobs older than the retention window."""
        cutoff = self._clock() - self.retention_seconds
        expired = [
            job_id
            for job_id, job in self.jobs.items()
            if job.finished_at is not None and job.finished_at <= cutoff
        ]
        for job_id in expired:
            del self.jobs[job_id]
        if expired:
            logger.debug(f"Evicted {len(expired)} finished upload jobs")
        return len(expired)

    def start(self, request: UploadRequest) -> UploadJob:
        """Register a job and start it in the background."""
        self.evict_finished()
        job = UploadJob(
            id=str(uuid.uuid4()),
            filename=request.source.filename,
            channel=ProgressChannel(),
        )
        self.jobs[job.id] = job
        job.task = asyncio.create_task(self._run(job, request))
        logger.info(f"Queued upload {job.id} for {job.filename}")
        return job

    def cancel(self, upload_id: str) -> bool:
        """Fire the cancellation signal of a running job.

        Returns:
            False if the job is unknown or already finished
        """
        job = self.jobs.get(upload_id)
        if job is None or job.done:
            return False
        job.cancel_event.set()
        logger.info(f"Cancellation requested for upload {upload_id}")
        return True

    async def _relay(self, job: UploadJob) -> None:
        async for state in job.channel:
            await self.hub.publish(job.id, {"type": "progress", **state.to_dict()})

    async def _run(self, job: UploadJob, request: UploadRequest) -> None:
        relay = asyncio.create_task(self._relay(job))
        try:
            job.result = await self.orchestrator.upload(
                request, job.channel, cancel_event=job.cancel_event, upload_id=job.id
            )
        except Exception as e:
            logger.exception(f"Upload {job.id} crashed: {e}")
            job.channel.close()
            job.result = UploadResult(success=False, error=str(e))
        finally:
            await relay

        job.finished_at = self._clock()
        await self.hub.publish(job.id, {"type": "result", **job.result.to_dict()})

    async def shutdown(self) -> None:
        """Cancel every unfinished job (server shutdown)."""
        pending = [job.task for job in self.jobs.values() if job.task and not job.task.done()]
        for job in self.jobs.values():
            job.cancel_event.set()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
