"""
Canal WebSocket pour le suivi des présences en direct
"""
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from inclass.models.user import UserRole
from inclass.services.auth_service import decode_access_token
from inclass.services.notification_service import (
    NotificationHub, class_room, get_notification_hub, session_room
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Temps réel"])

_ROOMS = {
    "joinSession": ("sessionId", session_room, True),
    "leaveSession": ("sessionId", session_room, False),
    "joinClass": ("classId", class_room, True),
    "leaveClass": ("classId", class_room, False),
}


@router.websocket("/ws/attendance")
async def attendance_feed(
    websocket: WebSocket,
    token: str,
    hub: NotificationHub = Depends(get_notification_hub),
):
    """
    Abonnement aux événements attendanceMarked (enseignants)
    Messages acceptés: {"action": "joinSession", "sessionId": 7}, joinClass, leaveSession, leaveClass
    """
    token_data = decode_access_token(token)
    if token_data is None or token_data.role not in (UserRole.FACULTY.value, UserRole.ADMIN.value):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                await websocket.send_json({"event": "error", "data": {"message": "JSON invalide"}})
                continue
            action = _ROOMS.get(message.get("action")) if isinstance(message, dict) else None
            if action is None:
                await websocket.send_json({"event": "error", "data": {"message": "Action inconnue"}})
                continue
            key, room_of, joining = action
            try:
                room = room_of(int(message.get(key)))
            except (TypeError, ValueError):
                await websocket.send_json({"event": "error", "data": {"message": f"{key} invalide"}})
                continue
            if joining:
                hub.join(websocket, room)
            else:
                hub.leave(websocket, room)
            await websocket.send_json({"event": "joined" if joining else "left", "room": room})
    except WebSocketDisconnect:
        logger.debug("Client WebSocket déconnecté")
    finally:
        hub.disconnect(websocket)
