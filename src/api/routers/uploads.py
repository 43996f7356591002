"""Upload routes for the clipflow API."""

import logging
from typing import Optional

from api.dependencies import bearer_token, get_uploads
from api.schemas import MessageResponse, UploadAcceptedResponse, UploadStatusResponse
from api.upload_jobs import UploadJobRegistry
from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.responses import JSONResponse
from models.upload import UploadRequest
from models.video import SourceVideo

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Uploads"])


@router.post(
    "/api/uploads",
    status_code=202,
    response_model=UploadAcceptedResponse,
    summary="Upload a video",
    description=(
        "Upload a video file. It is transcoded into an adaptive-bitrate ladder, "
        "falling back to single-quality compression and then to the original file. "
        "Returns an upload ID for tracking via WebSocket."
    ),
    responses={400: {"description": "Missing file or title"}, 202: {"description": "Upload started"}},
)
async def create_upload(
    file: Optional[UploadFile] = File(default=None),
    title: str = Form(default=""),
    description: Optional[str] = Form(default=None),
    token: Optional[str] = Depends(bearer_token),
    uploads: UploadJobRegistry = Depends(get_uploads),
) -> JSONResponse:
    """Accept an upload and start processing it in the background."""
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")
    if not title.strip():
        raise HTTPException(status_code=400, detail="Title is required")

    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    request = UploadRequest(
        source=SourceVideo(
            filename=file.filename,
            content_type=file.content_type or "video/mp4",
            data=data,
        ),
        title=title.strip(),
        description=description.strip() if description else None,
        access_token=token,
    )
    job = uploads.start(request)

    return JSONResponse(
        status_code=202,
        content={
            "upload_id": job.id,
            "message": "Upload accepted, processing started",
        },
    )


@router.get(
    "/api/uploads/{upload_id}",
    response_model=UploadStatusResponse,
    summary="Get upload status",
    description="Latest progress snapshot and, once finished, the upload result.",
    responses={404: {"description": "Upload not found"}},
)
async def get_upload(
    upload_id: str,
    uploads: UploadJobRegistry = Depends(get_uploads),
) -> dict:
    job = uploads.get(upload_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Upload not found")
    return job.to_dict()


@router.delete(
    "/api/uploads/{upload_id}",
    response_model=MessageResponse,
    summary="Cancel upload",
    description="Cancel a running upload. Objects already stored are kept.",
    responses={404: {"description": "Upload not found"}, 409: {"description": "Upload already finished"}},
)
async def cancel_upload(
    upload_id: str,
    uploads: UploadJobRegistry = Depends(get_uploads),
) -> dict[str, str]:
    job = uploads.get(upload_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Upload not found")
    if not uploads.cancel(upload_id):
        raise HTTPException(status_code=409, detail="Upload already finished")
    return {"message": "Cancellation requested"}


@router.websocket("/ws/uploads/{upload_id}")
async def upload_progress_ws(websocket: WebSocket, upload_id: str) -> None:
    """WebSocket endpoint streaming upload progress.

    Sends the latest snapshot on connect, then every subsequent snapshot,
    then the result. Replies "pong" to "ping".
    """
    services = websocket.app.state.services
    uploads: UploadJobRegistry = services.uploads
    hub = services.hub

    job = uploads.get(upload_id)
    if job is None:
        await websocket.accept()
        await websocket.send_json({"type": "error", "error": "Upload not found"})
        await websocket.close()
        return

    await hub.subscribe(upload_id, websocket)

    try:
        # Send current status immediately
        if job.channel.latest is not None:
            await websocket.send_json({"type": "progress", **job.channel.latest.to_dict()})
        if job.result is not None:
            await websocket.send_json({"type": "result", **job.result.to_dict()})

        # Keep connection alive and handle incoming messages
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        logger.debug(f"WebSocket for upload {upload_id} disconnected")
    finally:
        hub.unsubscribe(upload_id, websocket)
