"""Fan-out of upload progress snapshots to WebSocket subscribers."""

import logging

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ProgressHub:
    """WebSocket subscribers grouped by upload ID.

    The upload runner is the only publisher for a given upload; sockets that
    fail to receive are dropped.
    """

    def __init__(self):
        self.subscribers: dict[str, list[WebSocket]] = {}

    async def subscribe(self, upload_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.subscribers.setdefault(upload_id, []).append(websocket)

    def unsubscribe(self, upload_id: str, websocket: WebSocket) -> None:
        sockets = self.subscribers.get(upload_id, [])
        if websocket in sockets:
            sockets.remove(websocket)
        if not sockets:
            self.subscribers.pop(upload_id, None)

    async def publish(self, upload_id: str, message: dict) -> None:
        """Send ``message`` to every subscriber of ``upload_id``."""
        for websocket in list(self.subscribers.get(upload_id, [])):
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.debug(f"Dropping subscriber of {upload_id}: {e}")
                self.unsubscribe(upload_id, websocket)

