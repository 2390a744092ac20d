"""
Routes de présence côté étudiant
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from inclass.database import get_db
from inclass.models.attendance import AttendanceRecord
from inclass.models.session import AttendanceSession
from inclass.models.user import User
from inclass.routers.auth import get_current_student
from inclass.schemas.attendance import MarkAttendanceBody
from inclass.services.attendance_service import AttendanceProtocol, MarkAttendanceRequest
from inclass.services.challenge_store import ChallengeStore, get_challenge_store
from inclass.services.encryption_service import EncryptionService, get_encryption_service
from inclass.services.face_service import FaceRecognitionService, get_face_service
from inclass.services.notification_service import NotificationHub, get_notification_hub
from inclass.services.webauthn_service import WebAuthnService, get_webauthn_service

router = APIRouter(prefix="/attendance", tags=["Présence"])


def get_attendance_protocol(
    db: AsyncSession = Depends(get_db),
    challenge_store: ChallengeStore = Depends(get_challenge_store),
    face_engine: FaceRecognitionService = Depends(get_face_service),
    webauthn: WebAuthnService = Depends(get_webauthn_service),
    encryption: EncryptionService = Depends(get_encryption_service),
    notifier: NotificationHub = Depends(get_notification_hub),
) -> AttendanceProtocol:
    return AttendanceProtocol(db, challenge_store, face_engine, webauthn, encryption, notifier)


@router.post("/mark")
async def mark_attendance(
    body: MarkAttendanceBody,
    request: Request,
    current_user: User = Depends(get_current_student),
    protocol: AttendanceProtocol = Depends(get_attendance_protocol),
):
    """Valider sa présence avec le code de session et les preuves biométriques"""
    receipt = await protocol.redeem(
        current_user,
        MarkAttendanceRequest(
            code=body.code,
            face_image=body.face_image,
            face_embedding=body.face_embedding,
            fingerprint_auth_response=body.fingerprint_auth_response,
            fingerprint_challenge=body.fingerprint_challenge,
            liveness_frames=body.liveness_frames,
            ip_address=request.client.host if request.client else None,
        ),
    )
    return {"success": True, "message": "Présence enregistrée", "data": receipt.to_dict()}


@router.get("/me")
async def my_attendance(
    current_user: User = Depends(get_current_student),
    db: AsyncSession = Depends(get_db),
):
    """Historique des présences de l'étudiant"""
    result = await db.execute(
        select(AttendanceRecord, AttendanceSession)
        .join(AttendanceSession, AttendanceSession.id == AttendanceRecord.session_id)
        .where(AttendanceRecord.student_id == current_user.id)
        .order_by(AttendanceRecord.created_at.desc())
    )
    return {
        "success": True,
        "data": [
            {
                "attendanceId": record.id,
                "sessionId": session.id,
                "classId": session.class_id,
                "status": record.status,
                "faceVerified": record.face_verified,
                "fingerprintVerified": record.fingerprint_verified,
                "timestamp": record.created_at.isoformat(),
            }
            for record, session in result.all()
        ],
    }
