import logging
from typing import Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)
router = APIRouter()


class ConnectionManager:
    """Pushes job:updated / job:log events to every listening client."""

    def __init__(self):
        self.clients: Set[WebSocket] = set()

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.clients.add(websocket)
        logger.debug(f"Event client connected ({len(self.clients)} listening)")

    def disconnect(self, websocket: WebSocket):
        self.clients.discard(websocket)

    async def broadcast(self, event: dict):
        dead = []
        for client in list(self.clients):
            try:
                await client.send_json(event)
            except Exception as e:
                logger.warning(f"Dropping event client: {e}")
                dead.append(client)
        for client in dead:
            self.disconnect(client)


ws_manager = ConnectionManager()


@router.websocket("/ws/events")
async def websocket_events(websocket: WebSocket):
    await ws_manager.connect(websocket)
    try:
        while True:
            # Clients only listen; receiving is how a disconnect is noticed
            await websocket.receive_text()
    except WebSocketDisconnect:
        ws_manager.disconnect(websocket)
