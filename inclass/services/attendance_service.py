"""
Protocole de validation de présence

Étapes d'une tentative (la première garde en échec interrompt tout):
    Soumise -> Code validé -> Enrôlement vérifié -> Visage vérifié
            -> WebAuthn vérifié -> Enregistrée

La vérification faciale précède toujours la consommation du défi WebAuthn,
qui précède toujours l'écriture de la présence. Deux tentatives concurrentes
pour le même couple (étudiant, session) sont départagées par l'index unique
de la table attendance: la perdante reçoit ALREADY_MARKED.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
import enum
import secrets
import logging

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from inclass.config import get_settings
from inclass.errors import (
    AuthorizationError,
    BiometricEnrollmentRequired,
    ConflictError,
    ExpiredError,
    NotFoundError,
    ValidationError,
    VerificationFailure,
)
from inclass.models.attendance import AttendanceRecord, AttendanceStatus
from inclass.models.course import Enrollment
from inclass.models.session import AttendanceSession
from inclass.models.user import User
from inclass.services import credential_repository as repository
from inclass.services import session_service
from inclass.services.challenge_store import ChallengeFlow, ChallengeStore
from inclass.services.encryption_service import EncryptionService
from inclass.services.face_service import (
    ExtractionStatus,
    FaceEngineMode,
    FaceRecognitionService,
    extraction_error,
)
from inclass.services.notification_service import NotificationHub
from inclass.services.webauthn_service import WebAuthnService

logger = logging.getLogger(__name__)


class BiometricPolicy(str, enum.Enum):
    """
    Preuves biométriques exigées pour valider une présence
    - both_required: visage ET authentificateur WebAuthn
    - any_one_required: au moins une des deux preuves
    - optional: aucune preuve exigée (celles fournies doivent tout de même réussir)
    """
    BOTH_REQUIRED = "both_required"
    ANY_ONE_REQUIRED = "any_one_required"
    OPTIONAL = "optional"


@dataclass
class MarkAttendanceRequest:
    """Preuves soumises par l'étudiant"""
    code: Optional[str]
    face_image: Optional[str] = None
    face_embedding: Optional[Sequence[float]] = None
    fingerprint_auth_response: Optional[Dict[str, Any]] = None
    fingerprint_challenge: Optional[str] = None
    liveness_frames: Optional[List[str]] = None
    ip_address: Optional[str] = None

    @property
    def has_face_proof(self) -> bool:
        return bool(self.face_image) or self.face_embedding is not None

    @property
    def has_fingerprint_proof(self) -> bool:
        return bool(self.fingerprint_auth_response) or bool(self.fingerprint_challenge)


@dataclass
class AttendanceReceipt:
    attendance_id: int
    session_id: int
    class_id: int
    timestamp: datetime
    face_verified: bool
    face_match_score: Optional[float]
    fingerprint_verified: bool
    fingerprint_credential_id: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attendanceId": self.attendance_id,
            "sessionId": self.session_id,
            "classId": self.class_id,
            "timestamp": self.timestamp.isoformat(),
            "faceVerified": self.face_verified,
            "faceMatchScore": self.face_match_score,
            "fingerprintVerified": self.fingerprint_verified,
            "fingerprintCredentialId": self.fingerprint_credential_id,
        }


@dataclass
class _FaceOutcome:
    verified: bool = False
    score: Optional[float] = None


@dataclass
class _FingerprintOutcome:
    verified: bool = False
    credential_id: Optional[str] = None


async def is_enrolled(db: AsyncSession, student_id: int, class_id: int) -> bool:
    result = await db.execute(
        select(Enrollment.id).where(Enrollment.student_id == student_id, Enrollment.class_id == class_id)
    )
    return result.scalar_one_or_none() is not None


async def complete_authentication(
    db: AsyncSession,
    challenge_store: ChallengeStore,
    webauthn: WebAuthnService,
    user_id: int,
    response: Dict[str, Any],
    supplied_challenge: Optional[str] = None,
):
    """
    Vérifier une assertion WebAuthn contre le défi émis pour l'utilisateur
    En cas de succès, le compteur est persisté puis le défi consommé.

    Args:
        supplied_challenge: Défi renvoyé par le client; s'il est fourni, il doit
            être identique au défi stocké.

    Returns:
        Le credential utilisé
    """
    stored = await challenge_store.get(user_id, ChallengeFlow.AUTHENTICATION)
    if stored is None or (
        supplied_challenge is not None
        and not secrets.compare_digest(stored.encode(), supplied_challenge.encode())
    ):
        raise ExpiredError(
            "Le défi WebAuthn a expiré ou est invalide. Recommencez la vérification.",
            code="CHALLENGE_EXPIRED",
        )

    credential_id = str(response.get("rawId") or response.get("id") or "").rstrip("=")
    credential = None
    if credential_id:
        credential = await repository.find_active_credential(db, user_id, credential_id)
    if credential is None:
        raise NotFoundError("Authentificateur inconnu ou révoqué", code="CREDENTIAL_NOT_FOUND")

    result = webauthn.verify_authentication(response, stored, credential)
    if not result.verified:
        raise VerificationFailure(
            result.error or "Vérification WebAuthn échouée",
            code=result.code or "WEBAUTHN_FAILED",
        )

    # Une assertion rejouée en parallèle a déjà avancé le compteur
    credential_id = credential.credential_id
    if not await repository.update_counter(db, credential_id, result.new_counter):
        await db.rollback()
        logger.warning(f"Compteur du credential {credential_id} déjà à jour: assertion rejouée")
        raise VerificationFailure(
            "Compteur de signature non incrémenté: authentificateur possiblement cloné",
            code="COUNTER_NOT_INCREASED",
        )
    await db.commit()
    await challenge_store.consume(user_id, ChallengeFlow.AUTHENTICATION)
    return credential


class AttendanceProtocol:
    """Orchestrateur d'une tentative de validation de présence"""

    def __init__(
        self,
        db: AsyncSession,
        challenge_store: ChallengeStore,
        face_engine: FaceRecognitionService,
        webauthn: WebAuthnService,
        encryption: EncryptionService,
        notifier: Optional[NotificationHub] = None,
        policy: Optional[BiometricPolicy] = None,
    ):
        self.db = db
        self.challenge_store = challenge_store
        self.face_engine = face_engine
        self.webauthn = webauthn
        self.encryption = encryption
        self.notifier = notifier
        self.policy = BiometricPolicy(policy or get_settings().ATTENDANCE_BIOMETRIC_POLICY)

    async def redeem(
        self,
        student: User,
        request: MarkAttendanceRequest,
        now: Optional[datetime] = None,
    ) -> AttendanceReceipt:
        """Valider la présence d'un étudiant pour le code soumis"""
        now = now or datetime.utcnow()

        session = await self._validate_code(student, request.code, now)
        face_encoding, credentials = await self._check_enrollment(student)

        face = await self._verify_face(student, request, face_encoding)
        fingerprint = await self._verify_fingerprint(student, request, credentials)

        if self.policy is BiometricPolicy.ANY_ONE_REQUIRED and not (face.verified or fingerprint.verified):
            raise ValidationError(
                "Au moins une preuve biométrique est requise",
                code="BIOMETRIC_PROOF_REQUIRED",
            )

        record = await self._commit(student, session, request, face, fingerprint, now)
        await self._notify(student, session, record)

        logger.info(
            f"Présence validée: étudiant {student.id}, session {session.id} "
            f"(visage={face.verified}, webauthn={fingerprint.verified})"
        )
        return AttendanceReceipt(
            attendance_id=record.id,
            session_id=session.id,
            class_id=session.class_id,
            timestamp=record.created_at,
            face_verified=face.verified,
            face_match_score=face.score,
            fingerprint_verified=fingerprint.verified,
            fingerprint_credential_id=fingerprint.credential_id,
        )

    async def _validate_code(self, student: User, code: Optional[str], now: datetime) -> AttendanceSession:
        code = (code or "").strip().upper()
        if not code:
            raise ValidationError("Le code de session est requis", code="CODE_REQUIRED")

        session = await session_service.find_session_by_code(self.db, code)
        if session is None:
            raise NotFoundError("Code de session invalide", code="INVALID_CODE")

        if session.is_expired(now):
            raise ExpiredError(
                "Ce code a expiré. Vous pouvez signaler le problème à votre enseignant.",
                code="CODE_EXPIRED",
                details={"sessionId": session.id, "expiresAt": session.expires_at.isoformat()},
            )

        if not await is_enrolled(self.db, student.id, session.class_id):
            raise AuthorizationError("Vous n'êtes pas inscrit à ce cours", code="NOT_ENROLLED_IN_CLASS")

        return session

    async def _check_enrollment(self, student: User):
        face_encoding = await repository.find_active_face_encoding(self.db, student.id)
        credentials = await repository.find_active_credentials(self.db, student.id)
        details = {"faceEnrolled": face_encoding is not None, "webauthnEnrolled": bool(credentials)}

        if self.policy is BiometricPolicy.BOTH_REQUIRED:
            if face_encoding is None:
                raise BiometricEnrollmentRequired(
                    "Enregistrez votre visage avant de marquer votre présence",
                    code="FACE_NOT_ENROLLED",
                    details=details,
                )
            if not credentials:
                raise BiometricEnrollmentRequired(
                    "Enregistrez votre empreinte (WebAuthn) avant de marquer votre présence",
                    code="WEBAUTHN_NOT_ENROLLED",
                    details=details,
                )
        elif self.policy is BiometricPolicy.ANY_ONE_REQUIRED:
            if face_encoding is None and not credentials:
                raise BiometricEnrollmentRequired(
                    "Enregistrez au moins une donnée biométrique",
                    details=details,
                )

        return face_encoding, credentials

    async def _verify_face(self, student: User, request: MarkAttendanceRequest, face_encoding) -> _FaceOutcome:
        required = self.policy is BiometricPolicy.BOTH_REQUIRED
        if not request.has_face_proof:
            if required:
                raise ValidationError("Une capture du visage est requise", code="FACE_REQUIRED")
            return _FaceOutcome()

        if face_encoding is None:
            raise BiometricEnrollmentRequired(
                "Aucun visage enregistré pour ce compte",
                code="FACE_NOT_ENROLLED",
            )

        enrolled = self.encryption.decrypt_descriptor(face_encoding.encrypted_descriptor)

        if request.face_embedding is not None:
            try:
                captured = self.face_engine.validate_descriptor(request.face_embedding)
            except ValueError as e:
                raise ValidationError(str(e), code="INVALID_FACE_EMBEDDING")
        else:
            captured = request.face_image

        try:
            result = await run_in_threadpool(self.face_engine.verify, captured, enrolled)
        except ValueError as e:
            raise ValidationError(str(e), code="INVALID_FACE_EMBEDDING")

        if result.mode is FaceEngineMode.DEGRADED:
            if required:
                raise ValidationError(
                    "Reconnaissance faciale indisponible: la vérification du visage ne peut pas être garantie",
                    code="FACE_ENGINE_DEGRADED",
                )
            logger.warning(f"Vérification faciale dégradée pour l'étudiant {student.id}: {result.warning}")
            return _FaceOutcome()

        if result.status is not ExtractionStatus.FOUND:
            raise extraction_error(result.status)

        if not result.matched:
            logger.info(f"Visage non reconnu pour l'étudiant {student.id} (score={result.score:.4f})")
            raise VerificationFailure(
                "Visage non reconnu. Essayez avec un meilleur éclairage.",
                code="FACE_MISMATCH",
                score=result.score,
            )

        await self._check_liveness(student, request)
        return _FaceOutcome(verified=True, score=result.score)

    async def _check_liveness(self, student: User, request: MarkAttendanceRequest) -> None:
        if not get_settings().LIVENESS_REQUIRED:
            return
        if self.face_engine.mode is FaceEngineMode.DEGRADED:
            raise ValidationError(
                "Détection de vivacité indisponible: moteur facial en mode dégradé",
                code="FACE_ENGINE_DEGRADED",
            )
        if not request.liveness_frames:
            raise VerificationFailure("Séquence de vivacité manquante", code="LIVENESS_FAILED")
        liveness = await run_in_threadpool(self.face_engine.check_liveness, request.liveness_frames)
        if not liveness.blink_detected:
            logger.info(f"Aucun clignement détecté pour l'étudiant {student.id}")
            raise VerificationFailure("Aucun clignement détecté", code="LIVENESS_FAILED")

    async def _verify_fingerprint(
        self, student: User, request: MarkAttendanceRequest, credentials
    ) -> _FingerprintOutcome:
        required = self.policy is BiometricPolicy.BOTH_REQUIRED
        if not request.has_fingerprint_proof:
            if required:
                raise ValidationError("Une vérification par empreinte est requise", code="FINGERPRINT_REQUIRED")
            return _FingerprintOutcome()

        response = request.fingerprint_auth_response
        supplied = request.fingerprint_challenge
        if not response or not supplied:
            raise ValidationError(
                "La réponse WebAuthn et le défi associé sont requis",
                code="FINGERPRINT_REQUIRED",
            )
        if not credentials:
            raise BiometricEnrollmentRequired(
                "Aucun authentificateur enregistré pour ce compte",
                code="WEBAUTHN_NOT_ENROLLED",
            )

        credential = await complete_authentication(
            self.db, self.challenge_store, self.webauthn, student.id, response, supplied
        )
        return _FingerprintOutcome(verified=True, credential_id=credential.credential_id)

    async def _commit(
        self,
        student: User,
        session: AttendanceSession,
        request: MarkAttendanceRequest,
        face: _FaceOutcome,
        fingerprint: _FingerprintOutcome,
        now: datetime,
    ) -> AttendanceRecord:
        # Le rollback expire les instances chargées: pas de lecture d'attribut après
        student_id, session_id = student.id, session.id
        record = AttendanceRecord(
            student_id=student_id,
            session_id=session_id,
            status=AttendanceStatus.PRESENT.value,
            ip_address=request.ip_address,
            face_verified=face.verified,
            face_match_score=face.score,
            fingerprint_verified=fingerprint.verified,
            fingerprint_credential_id=fingerprint.credential_id,
            created_at=now,
        )
        self.db.add(record)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(f"Présence déjà enregistrée: étudiant {student_id}, session {session_id}")
            raise ConflictError("Présence déjà enregistrée pour cette session", code="ALREADY_MARKED")
        await self.db.refresh(record)
        return record

    async def _notify(self, student: User, session: AttendanceSession, record: AttendanceRecord) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.publish_attendance(
                attendance_id=record.id,
                student_id=student.id,
                student_name=student.name,
                student_roll_no=student.roll_no,
                session_id=session.id,
                class_id=session.class_id,
                timestamp=record.created_at,
                status=record.status,
            )
        except Exception:
            logger.exception(f"Échec de la notification de présence {record.id}")


async def override_attendance(
    db: AsyncSession,
    faculty_id: int,
    session_id: int,
    student_id: int,
    reason: str,
) -> AttendanceRecord:
    """
    Saisie manuelle par l'enseignant (sans vérification biométrique)
    Remplace l'enregistrement existant s'il y en a un.
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Une justification est requise", code="REASON_REQUIRED")

    session = await session_service.get_owned_session(db, session_id, faculty_id)
    if not await is_enrolled(db, student_id, session.class_id):
        raise NotFoundError("Étudiant non inscrit à ce cours", code="NOT_ENROLLED_IN_CLASS")

    result = await db.execute(
        select(AttendanceRecord).where(
            AttendanceRecord.student_id == student_id,
            AttendanceRecord.session_id == session_id,
        )
    )
    record = result.scalars().first()
    if record is None:
        record = AttendanceRecord(student_id=student_id, session_id=session_id)
        db.add(record)

    record.status = AttendanceStatus.MANUAL.value
    record.is_overridden = True
    record.override_reason = reason
    await db.commit()
    await db.refresh(record)

    logger.info(f"Présence manuelle: étudiant {student_id}, session {session_id} par l'enseignant {faculty_id}")
    return record


async def list_session_attendance(db: AsyncSession, session_id: int, faculty_id: int):
    """Présences d'une session avec l'identité des étudiants"""
    await session_service.get_owned_session(db, session_id, faculty_id)
    result = await db.execute(
        select(AttendanceRecord, User)
        .join(User, User.id == AttendanceRecord.student_id)
        .where(AttendanceRecord.session_id == session_id)
        .order_by(AttendanceRecord.created_at)
    )
    return result.all()


async def detect_and_purge_duplicates(
    db: AsyncSession,
    session_id: int,
    faculty_id: int,
    confirm: bool,
) -> int:
    """
    Nettoyage des doublons d'une session (action destructive)
    Si un étudiant a plus d'un enregistrement, TOUTES les présences de la
    session sont supprimées et la session doit être relancée.

    Returns:
        Nombre d'étudiants ayant des doublons
    """
    if not confirm:
        raise ValidationError(
            "Cette action supprime toutes les présences de la session: confirmation requise",
            code="CONFIRMATION_REQUIRED",
        )

    await session_service.get_owned_session(db, session_id, faculty_id)

    result = await db.execute(
        select(AttendanceRecord.student_id)
        .where(AttendanceRecord.session_id == session_id)
        .group_by(AttendanceRecord.student_id)
        .having(func.count(AttendanceRecord.id) > 1)
    )
    duplicated = list(result.scalars().all())
    if not duplicated:
        return 0

    await db.execute(delete(AttendanceRecord).where(AttendanceRecord.session_id == session_id))
    await db.commit()

    logger.warning(
        f"Doublons détectés dans la session {session_id} (étudiants {duplicated}): "
        f"toutes les présences ont été supprimées"
    )
    return len(duplicated)
