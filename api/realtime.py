"""
Realtime API Router
WebSocket rooms through which engine events reach apps and pill boxes.

Clients subscribe to /ws/patient/<id> or /ws/device/<box_code>; the
ConnectionManager is installed as the engine's notification sink at startup.
"""

import logging
from collections import defaultdict
from typing import Any, Dict, Set, Union
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from tools.notification_service import (
    NotificationEvent,
    NotificationSink,
    NotificationTarget,
    room_key,
)


logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


class ConnectionManager(NotificationSink):
    """Tracks open sockets per room and broadcasts engine events to them"""

    def __init__(self):
        self.rooms: Dict[str, Set[WebSocket]] = defaultdict(set)

    async def connect(self, room: str, websocket: WebSocket):
        await websocket.accept()
        self.rooms[room].add(websocket)
        logger.info(f"Subscriber joined {room} ({len(self.rooms[room])} connected)")

    def disconnect(self, room: str, websocket: WebSocket):
        sockets = self.rooms.get(room)
        if not sockets:
            return
        sockets.discard(websocket)
        if not sockets:
            del self.rooms[room]
        logger.info(f"Subscriber left {room}")

    def connection_count(self, room: str) -> int:
        return len(self.rooms.get(room, ()))

    async def notify(
        self,
        target_kind: NotificationTarget,
        target_id: Union[int, str],
        event_type: NotificationEvent,
        payload: Dict[str, Any]
    ) -> None:
        room = room_key(target_kind, target_id)
        message = {"event": event_type.value, "data": payload}

        for websocket in list(self.rooms.get(room, ())):
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.warning(f"Dropping dead subscriber in {room}: {e}")
                self.disconnect(room, websocket)


# Singleton instance
connection_manager = ConnectionManager()


@router.websocket("/ws/{target_kind}/{target_id}")
async def subscribe(websocket: WebSocket, target_kind: str, target_id: str):
    """
    Subscribe to a patient or device room. Incoming messages are ignored;
    the socket only receives events.
    """
    try:
        kind = NotificationTarget(target_kind)
    except ValueError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    room = room_key(kind, target_id)
    await connection_manager.connect(room, websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        connection_manager.disconnect(room, websocket)
