"""
Statut biométrique global de l'utilisateur
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from inclass.database import get_db
from inclass.models.user import User
from inclass.routers.auth import get_current_user
from inclass.services import credential_repository as repository
from inclass.services.face_service import FaceRecognitionService, get_face_service

router = APIRouter(prefix="/biometrics", tags=["Biométrie"])


@router.get("/status")
async def biometric_status(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    face_engine: FaceRecognitionService = Depends(get_face_service),
):
    """Indique quelles données biométriques sont enrôlées"""
    credentials = await repository.find_active_credentials(db, current_user.id)
    encoding = await repository.find_active_face_encoding(db, current_user.id)
    return {
        "success": True,
        "webauthn": {"enrolled": bool(credentials), "count": len(credentials)},
        "face": {"enrolled": encoding is not None},
        "faceEngineMode": face_engine.mode.value,
    }
