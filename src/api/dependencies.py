"""Service construction and dependency injection for the clipflow API.

Every collaborator is built once per application in the lifespan and kept
on ``app.state.services``; route handlers receive them through ``Depends``.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, Request

from api.progress_hub import ProgressHub
from api.upload_jobs import UploadJobRegistry
from services.auth import TokenAuthenticator
from services.metadata_prober import MetadataProber
from services.presigned_url import PresignedUrlResolver
from services.segmenter import Segmenter
from services.storage_client import ObjectStorageClient
from services.transcoder import Transcoder
from services.upload_orchestrator import UploadOrchestrator
from services.upload_strategies import (
    PipelineServices,
    PipelineSettings,
    build_default_strategies,
)
from services.video_store import VideoStore


@dataclass
class AppServices:
    store: VideoStore
    storage: ObjectStorageClient
    resolver: PresignedUrlResolver
    uploads: UploadJobRegistry
    hub: ProgressHub


def build_pipeline(config: dict, store: VideoStore, storage: ObjectStorageClient) -> UploadOrchestrator:
    """Wire the upload orchestrator and its fallback chain from configuration."""
    services = PipelineServices(
        authenticator=TokenAuthenticator(config["api_tokens"]),
        prober=MetadataProber(config["ffprobe_binary"]),
        transcoder=Transcoder(
            config["ffmpeg_binary"], segment_seconds=config["hls_segment_seconds"]
        ),
        segmenter=Segmenter(config["hls_segment_seconds"], config["ffmpeg_binary"]),
        storage=storage,
        store=store,
        settings=PipelineSettings.from_config(config),
    )
    return UploadOrchestrator(build_default_strategies(services))


def build_services(config: dict) -> AppServices:
    """Construct every collaborator. The store still needs ``connect()``."""
    store = VideoStore(config["database_path"])
    storage = ObjectStorageClient.from_config(config)
    resolver = PresignedUrlResolver(
        storage,
        expiry_seconds=config["presign_expiry_seconds"],
        safety_margin_seconds=config["presign_safety_margin_seconds"],
    )
    hub = ProgressHub()
    uploads = UploadJobRegistry(
        build_pipeline(config, store, storage),
        hub,
        retention_seconds=config["upload_job_retention_seconds"],
    )
    return AppServices(store=store, storage=storage, resolver=resolver, uploads=uploads, hub=hub)


def get_services(request: Request) -> AppServices:
    return request.app.state.services


def get_store(request: Request) -> VideoStore:
    return request.app.state.services.store


def get_resolver(request: Request) -> PresignedUrlResolver:
    return request.app.state.services.resolver


def get_uploads(request: Request) -> UploadJobRegistry:
    return request.app.state.services.uploads


def bearer_token(authorization: Optional[str] = Header(default=None)) -> Optional[str]:
    """Extract the session token from an ``Authorization: Bearer`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
