"""Video and playback URL routes for the clipflow API."""

import logging
from urllib.parse import urljoin, urlparse

from api.dependencies import get_resolver, get_store
from api.schemas import PlaybackRefreshRequest, PlaybackUrlResponse, VideoResponse
from fastapi import APIRouter, Depends, HTTPException, Response
from services.errors import PersistenceError, StorageError, StorageNotFoundError
from services.presigned_url import PresignedUrlResolver
from services.segmenter import MASTER_MANIFEST_NAME
from services.storage_client import HLS_PLAYLIST_CONTENT_TYPE
from services.video_store import VideoStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Videos"])


async def _load_video(video_id: str, store: VideoStore):
    try:
        record = await store.get_video(video_id)
    except PersistenceError as e:
        logger.error(f"Failed to load video {video_id}: {e}")
        raise HTTPException(status_code=503, detail="Video store unavailable")
    if record is None:
        raise HTTPException(status_code=404, detail="Video not found")
    return record


def _is_hls(file_url: str) -> bool:
    return urlparse(file_url).path.endswith(f"/{MASTER_MANIFEST_NAME}")


@router.get(
    "/api/videos/{video_id}",
    response_model=VideoResponse,
    summary="Get video",
    responses={404: {"description": "Video not found"}},
)
async def get_video(video_id: str, store: VideoStore = Depends(get_store)) -> dict:
    record = await _load_video(video_id, store)
    return record.to_dict()


@router.get(
    "/api/videos/{video_id}/playback-url",
    response_model=PlaybackUrlResponse,
    summary="Get playback URL",
    description=(
        "Short-lived signed URL for the video's master playlist or file. "
        "HLS videos also get a playlist_url that serves playlists with signed segment URIs."
    ),
    responses={404: {"description": "Video not found"}},
)
async def get_playback_url(
    video_id: str,
    store: VideoStore = Depends(get_store),
    resolver: PresignedUrlResolver = Depends(get_resolver),
) -> dict:
    record = await _load_video(video_id, store)
    try:
        url = await resolver.resolve(record.file_url)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    response = {"url": url, "expires_in": resolver.expiry_seconds}
    if _is_hls(record.file_url):
        response["playlist_url"] = f"/api/videos/{video_id}/hls/{MASTER_MANIFEST_NAME}"
    return response


@router.get(
    "/api/videos/{video_id}/hls/{name}",
    summary="Get HLS playlist",
    description=(
        "Master or variant playlist of an HLS video with every segment URI signed, "
        "so players can stream from a private bucket."
    ),
    response_class=Response,
    responses={404: {"description": "Video or playlist not found"}},
)
async def get_hls_playlist(
    video_id: str,
    name: str,
    store: VideoStore = Depends(get_store),
    resolver: PresignedUrlResolver = Depends(get_resolver),
) -> Response:
    record = await _load_video(video_id, store)
    if not _is_hls(record.file_url) or not name.endswith(".m3u8"):
        raise HTTPException(status_code=404, detail="Playlist not found")

    playlist_url = urljoin(record.file_url, name)
    try:
        key = resolver.storage.key_from_url(playlist_url)
        text = await resolver.storage.get_text(key)
        body = await resolver.sign_playlist(playlist_url, text)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except StorageNotFoundError:
        raise HTTPException(status_code=404, detail="Playlist not found")
    except StorageError as e:
        logger.error(f"Failed to load playlist {name} of {video_id}: {e}")
        raise HTTPException(status_code=503, detail="Storage unavailable")

    return Response(content=body, media_type=HLS_PLAYLIST_CONTENT_TYPE)


@router.post(
    "/api/playback/refresh",
    response_model=PlaybackUrlResponse,
    summary="Refresh playback URL",
    description=(
        "Regenerate the signed URL of a stored video when it is near expiry, "
        "or always when force is set (after a 403)."
    ),
    responses={404: {"description": "Video not found"}},
)
async def refresh_playback_url(
    body: PlaybackRefreshRequest,
    store: VideoStore = Depends(get_store),
    resolver: PresignedUrlResolver = Depends(get_resolver),
) -> dict:
    record = await _load_video(body.video_id, store)
    try:
        url = await resolver.refresh_if_needed(record.file_url, force=body.force)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"url": url, "expires_in": resolver.expiry_seconds}
