"""The three upload strategies tried in order by the upload orchestrator.

Every strategy runs the same stage machine
(preparing -> transcoding -> uploading -> finalizing) against shared,
stateless collaborators, and shares no per-attempt state with the others:

- MultiResolutionStrategy: resolution ladder, HLS segments + master manifest
- SingleQualityStrategy: one compressed MP4
- RawPassthroughStrategy: the untouched original file
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Iterable, Optional, Protocol, TypeVar

from models.upload import (
    ResolutionOutput,
    StrategyName,
    StrategyOutcome,
    UploadRequest,
    UploadStage,
)
from models.video import (
    EncodedVariant,
    ResolutionPreset,
    SourceVideo,
    VideoMetadata,
    VideoRecord,
    VideoStatus,
)
from services.auth import TokenAuthenticator
from services.errors import (
    AllVariantsFailedError,
    PersistenceError,
    SegmentError,
    StorageNetworkError,
    TranscodeError,
    UploadError,
)
from services.metadata_prober import MetadataProber
from services.progress_reporter import ProgressReporter
from services.resolution_ladder import build_ladder
from services.segmenter import MASTER_MANIFEST_NAME, Segmenter, build_master_manifest
from services.storage_client import (
    HLS_PLAYLIST_CONTENT_TYPE,
    HLS_SEGMENT_CONTENT_TYPE,
    ObjectStorageClient,
    generate_object_key,
    generate_object_prefix,
)
from services.transcoder import Transcoder, single_quality_settings
from services.upload_speed_monitor import UploadSpeedMonitor
from services.video_store import VideoStore
from utils.retry import RetryExhaustedError, retry_async

logger = logging.getLogger(__name__)

T = TypeVar("T")

RAW_CACHE_CONTROL = "max-age=31536000"
# Share of a resolution's progress spent encoding; segmenting covers the rest
TRANSCODE_PROGRESS_SHARE = 90.0


@dataclass(frozen=True)
class PipelineSettings:
    """Tunables shared by all strategies."""

    max_parallel_transcodes: int = 3
    max_parallel_uploads: int = 3
    upload_max_attempts: int = 3
    upload_retry_base_delay: float = 1.0
    single_quality_factor: float = 0.6
    single_quality_bitrate_factor: float = 2.0
    single_quality_max_width: int = 1920
    single_quality_max_height: int = 1080

    @classmethod
    def from_config(cls, config: dict) -> "PipelineSettings":
        return cls(
            max_parallel_transcodes=config["max_parallel_transcodes"],
            max_parallel_uploads=config["max_parallel_uploads"],
            upload_max_attempts=config["upload_max_attempts"],
            upload_retry_base_delay=config["upload_retry_base_delay"],
            single_quality_factor=config["single_quality_factor"],
            single_quality_bitrate_factor=config["single_quality_bitrate_factor"],
            single_quality_max_width=config["single_quality_max_width"],
            single_quality_max_height=config["single_quality_max_height"],
        )


@dataclass
class PipelineServices:
    """Collaborators handed to every strategy."""

    authenticator: TokenAuthenticator
    prober: MetadataProber
    transcoder: Transcoder
    segmenter: Segmenter
    storage: ObjectStorageClient
    store: VideoStore
    settings: PipelineSettings


class UploadStrategy(Protocol):
    name: StrategyName

    async def execute(
        self, request: UploadRequest, reporter: ProgressReporter
    ) -> StrategyOutcome: ...


def compression_ratio(original_size: int, output_size: int) -> float:
    """Percentage saved; negative when the output is larger than the original."""
    if original_size <= 0:
        return 0.0
    return round((original_size - output_size) / original_size * 100, 2)


async def gather_or_cancel(aws: Iterable[Awaitable[T]]) -> list[T]:
    """Run awaitables concurrently; on the first failure cancel the rest and re-raise."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class ArtifactUploader:
    """Puts artifacts to storage for one strategy attempt.

    Tracks bytes across all artifacts for the speed monitor and retries a
    single artifact on transient network faults.
    """

    def __init__(
        self,
        storage: ObjectStorageClient,
        settings: PipelineSettings,
        reporter: ProgressReporter,
        total_bytes: int,
    ):
        self.storage = storage
        self.settings = settings
        self.reporter = reporter
        self.total_bytes = total_bytes
        self.bytes_uploaded = 0
        self.monitor = UploadSpeedMonitor()
        self.semaphore = asyncio.Semaphore(settings.max_parallel_uploads)

    def _on_bytes(self, count: int) -> None:
        self.bytes_uploaded += count
        self.reporter.speed(self.monitor.update(self.bytes_uploaded, self.total_bytes))

    async def upload(
        self,
        key: str,
        data: bytes,
        content_type: str,
        cache_control: Optional[str] = None,
        inline: bool = False,
    ) -> str:
        """Store one artifact and return its URL.

        Raises:
            UploadError: Transient faults persisted past the retry bound
            StorageError: Access denied / not found, surfaced immediately
        """
        sent_this_attempt = 0

        def on_progress(count: int) -> None:
            nonlocal sent_this_attempt
            sent_this_attempt += count
            self._on_bytes(count)

        def rewind(attempt: int, exc: Exception) -> None:
            nonlocal sent_this_attempt
            # Bytes of the failed attempt are sent again
            self.bytes_uploaded -= sent_this_attempt
            sent_this_attempt = 0

        async def put() -> str:
            return await self.storage.put(
                key,
                data,
                content_type,
                on_progress=on_progress,
                cache_control=cache_control,
                inline=inline,
            )

        async with self.semaphore:
            try:
                return await retry_async(
                    put,
                    operation=f"Upload {key}",
                    retry_on=(StorageNetworkError,),
                    max_attempts=self.settings.upload_max_attempts,
                    base_delay=self.settings.upload_retry_base_delay,
                    on_retry=rewind,
                )
            except RetryExhaustedError as e:
                raise UploadError(
                    f"Failed to upload {key} after {e.attempts} attempts: {e.last_exception}",
                    key=key,
                ) from e


async def authenticate(services: PipelineServices, request: UploadRequest, reporter: ProgressReporter) -> str:
    reporter.enter_stage(UploadStage.PREPARING, "Checking session")
    user_id = await services.authenticator.authenticate(request.access_token)
    reporter.stage_progress(100, "Session verified")
    return user_id


async def finalize_record(
    services: PipelineServices,
    reporter: ProgressReporter,
    request: UploadRequest,
    user_id: str,
    file_url: str,
    file_size: int,
    ratio: float,
) -> VideoRecord:
    """Write the video record (processing -> processed).

    Uploaded objects stay in place if this fails.

    Raises:
        PersistenceError: If the record cannot be written
    """
    reporter.enter_stage(UploadStage.FINALIZING, "Saving video details")
    store = services.store
    record = await store.create_video(
        user_id=user_id,
        title=request.title,
        description=request.description,
        original_filename=request.source.filename,
        file_url=file_url,
        original_size=request.source.size_bytes,
        file_size=file_size,
        compression_ratio=ratio,
        status=VideoStatus.PROCESSING,
    )
    reporter.stage_progress(50)

    try:
        record = await store.update_status(record.id, VideoStatus.PROCESSED)
    except PersistenceError:
        try:
            await store.update_status(record.id, VideoStatus.FAILED)
        except PersistenceError as e:
            logger.error(f"Could not mark video {record.id} as failed: {e}")
        raise

    reporter.stage_progress(100, "Video saved")
    return record


class MultiResolutionStrategy:
    """Adaptive-bitrate tier: one HLS variant per ladder rung plus a master manifest."""

    name = StrategyName.MULTI_RESOLUTION

    def __init__(self, services: PipelineServices):
        self.services = services

    async def execute(self, request: UploadRequest, reporter: ProgressReporter) -> StrategyOutcome:
        services = self.services
        source = request.source

        user_id = await authenticate(services, request, reporter)

        reporter.enter_stage(UploadStage.TRANSCODING, "Reading video metadata")
        metadata = await services.prober.probe(source)
        ladder = build_ladder(metadata)
        reporter.init_resolutions([preset.label for preset in ladder])
        reporter.state.message = f"Transcoding {len(ladder)} resolutions"

        variants, failures = await self._produce_variants(source, metadata, ladder, reporter)
        if not variants:
            raise AllVariantsFailedError(failures)
        if failures:
            logger.warning(
                f"Continuing with degraded ladder {[v.label for v in variants]}, "
                f"failed: {sorted(failures)}"
            )

        reporter.enter_stage(UploadStage.UPLOADING, "Uploading segments")
        prefix = generate_object_prefix(user_id, "hls")
        master_text = build_master_manifest(variants)
        master_bytes = master_text.encode("utf-8")
        total_bytes = len(master_bytes) + sum(
            sum(s.size_bytes for s in v.segments) + len(v.playlist_text.encode("utf-8"))
            for v in variants
        )
        uploader = ArtifactUploader(services.storage, services.settings, reporter, total_bytes)

        playlist_urls = await gather_or_cancel(
            self._upload_variant(uploader, prefix, variant) for variant in variants
        )

        # Master manifest only after every variant is fully stored
        master_url = await uploader.upload(
            f"{prefix}/{MASTER_MANIFEST_NAME}",
            master_bytes,
            HLS_PLAYLIST_CONTENT_TYPE,
            inline=True,
        )

        total_size = sum(v.size_bytes for v in variants)
        ratio = compression_ratio(metadata.original_size_bytes, total_size)
        record = await finalize_record(
            services, reporter, request, user_id, master_url, total_size, ratio
        )

        return StrategyOutcome(
            record=record,
            resolutions={
                variant.label: ResolutionOutput(
                    url=url,
                    size=variant.size_bytes,
                    bitrate=variant.preset.video_bitrate_kbps,
                )
                for variant, url in zip(variants, playlist_urls)
            },
            master_playlist_url=master_url,
            compression_ratio=ratio,
            segment_count=sum(len(v.segments) for v in variants),
            failed_resolutions=[p.label for p in ladder if p.label in failures],
        )

    async def _produce_variants(
        self,
        source: SourceVideo,
        metadata: VideoMetadata,
        ladder: list[ResolutionPreset],
        reporter: ProgressReporter,
    ) -> tuple[list[EncodedVariant], dict[str, str]]:
        """Transcode and segment every rung concurrently, in ladder order."""
        semaphore = asyncio.Semaphore(self.services.settings.max_parallel_transcodes)
        failures: dict[str, str] = {}

        async def produce(preset: ResolutionPreset) -> Optional[EncodedVariant]:
            label = preset.label
            async with semaphore:
                try:
                    variant = await self.services.transcoder.transcode(
                        source,
                        metadata,
                        preset,
                        on_progress=lambda p: reporter.resolution_progress(
                            label, p * TRANSCODE_PROGRESS_SHARE / 100
                        ),
                    )
                    variant = await self.services.segmenter.segment(variant)
                except (TranscodeError, SegmentError) as e:
                    logger.warning(f"Resolution {label} failed: {e}")
                    failures[label] = str(e)
                    reporter.resolution_failed(label, str(e))
                    return None

            reporter.resolution_completed(label, variant.size_bytes)
            return variant

        results = await gather_or_cancel(produce(preset) for preset in ladder)
        return [v for v in results if v is not None], failures

    async def _upload_variant(
        self, uploader: ArtifactUploader, prefix: str, variant: EncodedVariant
    ) -> str:
        """Segments in playback order, then the variant playlist."""
        for segment in variant.segments:
            await uploader.upload(
                f"{prefix}/{segment.name}", segment.data, HLS_SEGMENT_CONTENT_TYPE
            )
        return await uploader.upload(
            f"{prefix}/{variant.playlist_name}",
            variant.playlist_text.encode("utf-8"),
            HLS_PLAYLIST_CONTENT_TYPE,
            inline=True,
        )


class SingleQualityStrategy:
    """Compression tier: one MP4 fitted inside a max box with a heuristic bitrate."""

    name = StrategyName.SINGLE_QUALITY

    def __init__(self, services: PipelineServices):
        self.services = services

    async def execute(self, request: UploadRequest, reporter: ProgressReporter) -> StrategyOutcome:
        services = self.services
        settings = services.settings

        user_id = await authenticate(services, request, reporter)

        reporter.enter_stage(UploadStage.TRANSCODING, "Compressing video")
        metadata = await services.prober.probe(request.source)
        encode_settings = single_quality_settings(
            metadata,
            quality=settings.single_quality_factor,
            bitrate_factor=settings.single_quality_bitrate_factor,
            max_width=settings.single_quality_max_width,
            max_height=settings.single_quality_max_height,
        )
        data = await services.transcoder.encode(
            request.source,
            metadata,
            encode_settings,
            "compressed",
            on_progress=reporter.stage_progress,
        )

        reporter.enter_stage(UploadStage.UPLOADING, "Uploading compressed video")
        uploader = ArtifactUploader(services.storage, settings, reporter, len(data))
        url = await uploader.upload(
            generate_object_key(user_id, "mp4", "compressed"), data, "video/mp4"
        )

        ratio = compression_ratio(metadata.original_size_bytes, len(data))
        record = await finalize_record(services, reporter, request, user_id, url, len(data), ratio)
        return StrategyOutcome(record=record, compression_ratio=ratio)


class RawPassthroughStrategy:
    """Last resort: store the original bytes untouched."""

    name = StrategyName.RAW_PASSTHROUGH

    def __init__(self, services: PipelineServices):
        self.services = services

    async def execute(self, request: UploadRequest, reporter: ProgressReporter) -> StrategyOutcome:
        services = self.services
        source = request.source

        user_id = await authenticate(services, request, reporter)

        reporter.enter_stage(UploadStage.UPLOADING, "Uploading original video")
        data = source.read_bytes()
        uploader = ArtifactUploader(services.storage, services.settings, reporter, len(data))
        url = await uploader.upload(
            generate_object_key(user_id, source.extension),
            data,
            source.content_type or "video/mp4",
            cache_control=RAW_CACHE_CONTROL,
        )

        record = await finalize_record(
            services, reporter, request, user_id, url, len(data), 0.0
        )
        return StrategyOutcome(record=record, compression_ratio=0.0)


def build_default_strategies(services: PipelineServices) -> list[UploadStrategy]:
    """The fallback chain, best tier first."""
    return [
        MultiResolutionStrategy(services),
        SingleQualityStrategy(services),
        RawPassthroughStrategy(services),
    ]
