"""
Routes WebAuthn (enregistrement et vérification d'un authentificateur de plateforme)
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from inclass.database import get_db
from inclass.errors import BiometricEnrollmentRequired, ExpiredError, NotFoundError, VerificationFailure
from inclass.models.user import User
from inclass.routers.auth import get_current_user
from inclass.schemas.biometric import (
    CredentialResponse, FingerprintEnrollComplete, FingerprintVerifyComplete
)
from inclass.services import credential_repository as repository
from inclass.services.attendance_service import complete_authentication
from inclass.services.challenge_store import ChallengeFlow, ChallengeStore, get_challenge_store
from inclass.services.webauthn_service import WebAuthnService, get_webauthn_service

router = APIRouter(prefix="/fingerprint", tags=["WebAuthn"])


@router.post("/enroll/start")
async def enroll_start(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: ChallengeStore = Depends(get_challenge_store),
    webauthn: WebAuthnService = Depends(get_webauthn_service),
):
    """Options d'enregistrement (les appareils déjà enrôlés sont exclus)"""
    credentials = await repository.find_active_credentials(db, current_user.id)
    options, challenge = webauthn.generate_registration_options(
        current_user.id,
        current_user.email,
        current_user.name,
        [c.credential_id for c in credentials],
    )
    await store.issue(current_user.id, ChallengeFlow.REGISTRATION, challenge)
    return {"success": True, "options": options}


@router.post("/enroll/complete", status_code=status.HTTP_201_CREATED)
async def enroll_complete(
    body: FingerprintEnrollComplete,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: ChallengeStore = Depends(get_challenge_store),
    webauthn: WebAuthnService = Depends(get_webauthn_service),
):
    """Vérifier l'attestation et enregistrer l'authentificateur"""
    challenge = await store.get(current_user.id, ChallengeFlow.REGISTRATION)
    if challenge is None:
        raise ExpiredError(
            "Le défi d'enregistrement a expiré. Recommencez l'enregistrement.",
            code="CHALLENGE_EXPIRED",
        )

    result = webauthn.verify_registration(body.registration_response, challenge)
    if not result.verified:
        raise VerificationFailure(
            result.error or "Enregistrement WebAuthn refusé",
            code="WEBAUTHN_FAILED",
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    await store.consume(current_user.id, ChallengeFlow.REGISTRATION)

    credential = await repository.insert_credential(
        db,
        user_id=current_user.id,
        credential_id=result.credential_id,
        public_key=result.public_key,
        counter=result.counter,
        device_name=body.device_name,
    )
    return {"success": True, "message": "Authentificateur enregistré", "credentialId": credential.credential_id}


@router.post("/verify/start")
async def verify_start(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: ChallengeStore = Depends(get_challenge_store),
    webauthn: WebAuthnService = Depends(get_webauthn_service),
):
    """Options d'authentification pour les authentificateurs actifs de l'utilisateur"""
    credentials = await repository.find_active_credentials(db, current_user.id)
    if not credentials:
        raise BiometricEnrollmentRequired(
            "Aucun authentificateur enregistré pour ce compte",
            code="WEBAUTHN_NOT_ENROLLED",
        )
    options, challenge = webauthn.generate_authentication_options([c.credential_id for c in credentials])
    await store.issue(current_user.id, ChallengeFlow.AUTHENTICATION, challenge)
    return {"success": True, "options": options}


@router.post("/verify/complete")
async def verify_complete(
    body: FingerprintVerifyComplete,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: ChallengeStore = Depends(get_challenge_store),
    webauthn: WebAuthnService = Depends(get_webauthn_service),
):
    """Vérification WebAuthn isolée (hors présence)"""
    credential = await complete_authentication(
        db, store, webauthn, current_user.id, body.authentication_response
    )
    return {"success": True, "verified": True, "credentialId": credential.credential_id}


@router.get("/status")
async def fingerprint_status(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    credentials = await repository.find_active_credentials(db, current_user.id)
    return {
        "success": True,
        "enrolled": bool(credentials),
        "credentials": [CredentialResponse.model_validate(c).model_dump() for c in credentials],
    }


@router.delete("/enroll/{credential_id}")
async def revoke_credential(
    credential_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Révoquer un authentificateur (suppression logique)"""
    if not await repository.deactivate_credential(db, current_user.id, credential_id):
        raise NotFoundError("Authentificateur introuvable", code="CREDENTIAL_NOT_FOUND")
    return {"success": True, "message": "Authentificateur révoqué"}
