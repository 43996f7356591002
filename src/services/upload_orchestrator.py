"""Upload orchestrator: runs the strategy fallback chain for one upload.

Example usage:
    orchestrator = UploadOrchestrator(build_default_strategies(services))
    channel = ProgressChannel()
    task = asyncio.create_task(orchestrator.upload(request, channel))

    async for state in channel:
        print(state.stage.value, state.overall_progress)

    result = await task
"""

import asyncio
import logging
import uuid
from typing import Optional, Sequence

from models.upload import TierFailure, UploadRequest, UploadResult
from services.errors import AuthError, UploadCancelledError
from services.progress_reporter import ProgressReporter
from services.upload_strategies import UploadStrategy
from utils.logging import clear_upload_context, set_upload_context
from utils.progress import ProgressChannel

logger = logging.getLogger(__name__)

STRATEGY_DESCRIPTIONS = {
    "multi_resolution": "multi-resolution transcode",
    "single_quality": "single-quality compression",
    "raw_passthrough": "direct upload",
}


class UploadOrchestrator:
    """Tries each strategy in order until one succeeds.

    Every failure is logged with its cause and recorded in the result.
    Authentication failures and cancellation end the whole call without
    trying further strategies.
    """

    def __init__(self, strategies: Sequence[UploadStrategy]):
        if not strategies:
            raise ValueError("At least one upload strategy is required")
        self.strategies = list(strategies)

    async def upload(
        self,
        request: UploadRequest,
        channel: ProgressChannel,
        cancel_event: Optional[asyncio.Event] = None,
        upload_id: Optional[str] = None,
    ) -> UploadResult:
        """Upload one video, publishing progress to ``channel``.

        The channel always receives a terminal ``completed`` or ``failed``
        snapshot and is closed before this returns.

        Args:
            request: Source video, title, description and session token
            channel: Progress channel drained by the caller
            cancel_event: Set by the caller to cancel the upload
            upload_id: Correlation ID for logs (generated if omitted)

        Returns:
            UploadResult naming the strategy that succeeded, or the failures
        """
        upload_id = upload_id or str(uuid.uuid4())
        set_upload_context(upload_id)
        attempts: list[TierFailure] = []
        reporter = ProgressReporter(channel)

        logger.info(
            f"Starting upload of {request.source.filename} "
            f"({request.source.size_bytes} bytes)"
        )

        try:
            for index, strategy in enumerate(self.strategies):
                reporter = ProgressReporter(channel, strategy.name)
                if index > 0:
                    logger.info(f"Falling back to {strategy.name.value}")

                try:
                    outcome = await self._run_cancellable(
                        strategy.execute(request, reporter), cancel_event
                    )
                except (AuthError, UploadCancelledError) as e:
                    attempts.append(self._failure(strategy, e))
                    logger.warning(f"Upload stopped during {strategy.name.value}: {e}")
                    return self._fail(reporter, attempts, str(e))
                except Exception as e:
                    attempts.append(self._failure(strategy, e))
                    logger.warning(
                        f"Strategy {strategy.name.value} failed "
                        f"({type(e).__name__}): {e}"
                    )
                    continue

                reporter.completed(outcome.record)
                logger.info(
                    f"Upload completed with {strategy.name.value}: "
                    f"video {outcome.record.id}"
                )
                return UploadResult(
                    success=True,
                    strategy=strategy.name,
                    video_id=outcome.record.id,
                    record=outcome.record,
                    resolutions=outcome.resolutions,
                    master_playlist_url=outcome.master_playlist_url,
                    compression_ratio=outcome.compression_ratio,
                    segment_count=outcome.segment_count,
                    degraded=bool(outcome.failed_resolutions),
                    failed_resolutions=outcome.failed_resolutions,
                    attempts=attempts,
                )

            return self._fail(reporter, attempts, self._describe_failures(attempts))
        finally:
            channel.close()
            clear_upload_context()

    async def _run_cancellable(self, coro, cancel_event: Optional[asyncio.Event]):
        """Await ``coro`` unless ``cancel_event`` fires first.

        In-flight work is cancelled (which kills running encoders); objects
        already stored are left in place.
        """
        if cancel_event is None:
            return await coro

        if cancel_event.is_set():
            coro.close()
            raise UploadCancelledError("Upload cancelled")

        job = asyncio.ensure_future(coro)
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({job, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            job.cancel()
            raise
        finally:
            waiter.cancel()

        if not job.done():
            job.cancel()
            await asyncio.gather(job, return_exceptions=True)
            raise UploadCancelledError("Upload cancelled")

        return job.result()

    @staticmethod
    def _failure(strategy: UploadStrategy, error: Exception) -> TierFailure:
        return TierFailure(
            strategy=strategy.name,
            error_type=type(error).__name__,
            message=str(error),
        )

    @staticmethod
    def _describe_failures(attempts: list[TierFailure]) -> str:
        parts = [
            f"{STRATEGY_DESCRIPTIONS.get(a.strategy.value, a.strategy.value)} "
            f"failed ({a.error_type}: {a.message})"
            for a in attempts
        ]
        return "Upload failed: " + "; ".join(parts)

    @staticmethod
    def _fail(reporter: ProgressReporter, attempts: list[TierFailure], message: str) -> UploadResult:
        logger.error(message)
        reporter.failed(message)
        return UploadResult(success=False, attempts=attempts, error=message)
