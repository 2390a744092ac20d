"""
Notifications temps réel (WebSocket) pour le suivi des présences

Les clients rejoignent des salles "session_{id}" ou "class_{id}". La
diffusion est au mieux: un client déconnecté est simplement retiré.
"""
from datetime import datetime
from typing import Any, Dict, Iterable, Set
import logging

from fastapi import WebSocket

logger = logging.getLogger(__name__)

ATTENDANCE_MARKED = "attendanceMarked"


def session_room(session_id: int) -> str:
    return f"session_{session_id}"


def class_room(class_id: int) -> str:
    return f"class_{class_id}"


class NotificationHub:
    """Gestion des salles WebSocket"""

    def __init__(self):
        self.rooms: Dict[str, Set[WebSocket]] = {}

    def join(self, websocket: WebSocket, room: str) -> None:
        self.rooms.setdefault(room, set()).add(websocket)
        logger.debug(f"Client ajouté à la salle {room} ({len(self.rooms[room])} abonné(s))")

    def leave(self, websocket: WebSocket, room: str) -> None:
        members = self.rooms.get(room)
        if members is None:
            return
        members.discard(websocket)
        if not members:
            del self.rooms[room]

    def disconnect(self, websocket: WebSocket) -> None:
        for room in list(self.rooms):
            self.leave(websocket, room)

    async def publish(self, event: str, rooms: Iterable[str], data: Dict[str, Any]) -> int:
        """
        Diffuser un événement dans plusieurs salles
        Returns:
            Nombre de messages effectivement envoyés
        """
        sent = 0
        for room in rooms:
            for websocket in list(self.rooms.get(room, ())):
                try:
                    await websocket.send_json({"event": event, "room": room, "data": data})
                    sent += 1
                except Exception as e:
                    logger.warning(f"Client WebSocket injoignable dans {room}: {e}")
                    self.leave(websocket, room)
        return sent

    async def publish_attendance(
        self,
        attendance_id: int,
        student_id: int,
        student_name: str,
        student_roll_no: str,
        session_id: int,
        class_id: int,
        timestamp: datetime,
        status: str,
    ) -> int:
        """Annoncer une présence validée au cours et à la session"""
        data = {
            "attendanceId": attendance_id,
            "studentId": student_id,
            "studentName": student_name,
            "studentRollNo": student_roll_no,
            "sessionId": session_id,
            "classId": class_id,
            "timestamp": timestamp.isoformat(),
            "status": status,
        }
        return await self.publish(ATTENDANCE_MARKED, [session_room(session_id), class_room(class_id)], data)


# Instance globale du hub
notification_hub = NotificationHub()


def get_notification_hub() -> NotificationHub:
    """Dépendance FastAPI (surchargée dans les tests)"""
    return notification_hub
