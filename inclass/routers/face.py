"""
Routes de reconnaissance faciale (enrôlement, vérification consultative, vivacité)
"""
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from inclass.config import get_settings
from inclass.database import get_db
from inclass.errors import BiometricEnrollmentRequired, NotFoundError, ValidationError
from inclass.models.user import User
from inclass.routers.auth import get_current_user
from inclass.schemas.biometric import (
    FaceCaptureRequest, FaceVerifyResponse, LivenessRequest, LivenessResponse
)
from inclass.services import credential_repository as repository
from inclass.services.encryption_service import EncryptionService, get_encryption_service
from inclass.services.face_service import (
    ExtractionStatus, FaceEngineMode, FaceRecognitionService, extraction_error, get_face_service
)

router = APIRouter(prefix="/face", tags=["Visage"])


def _require_capture(body: FaceCaptureRequest) -> None:
    if not body.image and body.embedding is None:
        raise ValidationError("Une image ou un descripteur est requis", code="FACE_REQUIRED")


async def _descriptor_from_capture(body: FaceCaptureRequest, face_engine: FaceRecognitionService) -> List[float]:
    if body.embedding is not None:
        try:
            return face_engine.validate_descriptor(body.embedding)
        except ValueError as e:
            raise ValidationError(str(e), code="INVALID_FACE_EMBEDDING")

    extraction = await run_in_threadpool(face_engine.extract_descriptor, body.image)
    if extraction.status is not ExtractionStatus.FOUND:
        raise extraction_error(extraction.status)
    return extraction.descriptor


@router.post("/enroll")
async def enroll_face(
    body: FaceCaptureRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    face_engine: FaceRecognitionService = Depends(get_face_service),
    encryption: EncryptionService = Depends(get_encryption_service),
):
    """Enregistrer (ou remplacer) le descripteur facial, chiffré au repos"""
    _require_capture(body)
    descriptor = await _descriptor_from_capture(body, face_engine)
    updated = await repository.upsert_face_encoding(
        db, current_user.id, encryption.encrypt_descriptor(descriptor)
    )
    return {
        "success": True,
        "message": "Visage mis à jour" if updated else "Visage enregistré",
        "updated": updated,
    }


@router.post("/verify", response_model=FaceVerifyResponse)
async def verify_face(
    body: FaceCaptureRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    face_engine: FaceRecognitionService = Depends(get_face_service),
    encryption: EncryptionService = Depends(get_encryption_service),
):
    """Vérification consultative: renvoie le score et le seuil, ne valide rien"""
    _require_capture(body)
    encoding = await repository.find_active_face_encoding(db, current_user.id)
    if encoding is None:
        raise BiometricEnrollmentRequired("Aucun visage enregistré pour ce compte", code="FACE_NOT_ENROLLED")
    enrolled = encryption.decrypt_descriptor(encoding.encrypted_descriptor)

    captured = body.image
    if body.embedding is not None:
        captured = await _descriptor_from_capture(body, face_engine)

    try:
        result = await run_in_threadpool(face_engine.verify, captured, enrolled)
    except ValueError as e:
        raise ValidationError(str(e), code="INVALID_FACE_EMBEDDING")
    if result.status is not ExtractionStatus.FOUND:
        raise extraction_error(result.status)

    return FaceVerifyResponse(
        verified=result.matched,
        score=result.score,
        threshold=result.threshold,
        mode=result.mode.value,
        warning=result.warning,
    )


@router.post("/liveness", response_model=LivenessResponse)
async def check_liveness(
    body: LivenessRequest,
    current_user: User = Depends(get_current_user),
    face_engine: FaceRecognitionService = Depends(get_face_service),
):
    """Détection de clignement sur une séquence d'images (consultatif)"""
    if face_engine.mode is FaceEngineMode.DEGRADED:
        raise extraction_error(ExtractionStatus.UNAVAILABLE)
    result = await run_in_threadpool(face_engine.check_liveness, body.frames)
    return LivenessResponse(blink_detected=result.blink_detected, frames_analyzed=result.frames_analyzed)


@router.get("/status")
async def face_status(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    face_engine: FaceRecognitionService = Depends(get_face_service),
):
    encoding = await repository.find_active_face_encoding(db, current_user.id)
    return {
        "success": True,
        "enrolled": encoding is not None,
        "enrolledAt": encoding.enrolled_at.isoformat() if encoding else None,
        "mode": face_engine.mode.value,
        "threshold": get_settings().FACE_SIMILARITY_THRESHOLD,
    }


@router.delete("/enroll")
async def revoke_face(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Révoquer le visage enregistré (suppression logique)"""
    if not await repository.deactivate_face_encoding(db, current_user.id):
        raise NotFoundError("Aucun visage enregistré", code="FACE_NOT_ENROLLED")
    return {"success": True, "message": "Visage révoqué"}
