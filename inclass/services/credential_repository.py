"""
Dépôt des données biométriques enrôlées (WebAuthn et visage)
Toutes les suppressions sont logiques (is_active = False)
"""
from datetime import datetime
from typing import List, Optional
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from inclass.errors import ConflictError
from inclass.models.biometric import WebAuthnCredential, FaceEncoding

logger = logging.getLogger(__name__)


async def find_active_credentials(db: AsyncSession, user_id: int) -> List[WebAuthnCredential]:
    """Authentificateurs actifs de l'utilisateur, du plus ancien au plus récent"""
    result = await db.execute(
        select(WebAuthnCredential)
        .where(WebAuthnCredential.user_id == user_id, WebAuthnCredential.is_active.is_(True))
        .order_by(WebAuthnCredential.created_at, WebAuthnCredential.id)
    )
    return list(result.scalars().all())


async def find_active_credential(
    db: AsyncSession, user_id: int, credential_id: str
) -> Optional[WebAuthnCredential]:
    result = await db.execute(
        select(WebAuthnCredential).where(
            WebAuthnCredential.user_id == user_id,
            WebAuthnCredential.credential_id == credential_id,
            WebAuthnCredential.is_active.is_(True),
        )
    )
    return result.scalar_one_or_none()


async def find_active_face_encoding(db: AsyncSession, user_id: int) -> Optional[FaceEncoding]:
    result = await db.execute(
        select(FaceEncoding).where(FaceEncoding.user_id == user_id, FaceEncoding.is_active.is_(True))
    )
    return result.scalar_one_or_none()


async def insert_credential(
    db: AsyncSession,
    user_id: int,
    credential_id: str,
    public_key: str,
    counter: int,
    device_name: Optional[str] = None,
) -> WebAuthnCredential:
    """
    Enregistrer un nouvel authentificateur

    Raises:
        ConflictError: l'identifiant de credential existe déjà (même appareil enrôlé deux fois)
    """
    existing = await db.execute(
        select(WebAuthnCredential.id).where(WebAuthnCredential.credential_id == credential_id)
    )
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("Cet appareil est déjà enregistré", code="CREDENTIAL_EXISTS")

    credential = WebAuthnCredential(
        user_id=user_id,
        credential_id=credential_id,
        public_key=public_key,
        counter=counter,
        device_name=device_name or "Appareil inconnu",
        is_active=True,
    )
    db.add(credential)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Cet appareil est déjà enregistré", code="CREDENTIAL_EXISTS")
    await db.refresh(credential)
    logger.info(f"Authentificateur enregistré pour l'utilisateur {user_id}")
    return credential


async def update_counter(db: AsyncSession, credential_id: str, new_counter: int) -> bool:
    """
    Mettre à jour le compteur de signatures après une authentification réussie
    Le compteur n'est jamais décrémenté: la mise à jour ne s'applique que si
    la nouvelle valeur est strictement supérieure à la valeur stockée.

    Returns:
        True si la ligne a été modifiée
    """
    result = await db.execute(
        update(WebAuthnCredential)
        .where(
            WebAuthnCredential.credential_id == credential_id,
            WebAuthnCredential.counter < new_counter,
        )
        .values(counter=new_counter, last_used_at=datetime.utcnow())
    )
    return result.rowcount == 1


async def deactivate_credential(db: AsyncSession, user_id: int, credential_id: str) -> bool:
    result = await db.execute(
        update(WebAuthnCredential)
        .where(
            WebAuthnCredential.user_id == user_id,
            WebAuthnCredential.credential_id == credential_id,
            WebAuthnCredential.is_active.is_(True),
        )
        .values(is_active=False)
    )
    await db.commit()
    return result.rowcount == 1


async def upsert_face_encoding(db: AsyncSession, user_id: int, encrypted_descriptor: str) -> bool:
    """
    Enregistrer le descripteur facial (un seul par utilisateur)

    Returns:
        True si un enregistrement existant a été remplacé
    """
    result = await db.execute(select(FaceEncoding).where(FaceEncoding.user_id == user_id))
    encoding = result.scalar_one_or_none()

    updated = encoding is not None
    if encoding is None:
        db.add(FaceEncoding(user_id=user_id, encrypted_descriptor=encrypted_descriptor, is_active=True))
    else:
        encoding.encrypted_descriptor = encrypted_descriptor
        encoding.is_active = True
        encoding.enrolled_at = datetime.utcnow()

    await db.commit()
    return updated


async def deactivate_face_encoding(db: AsyncSession, user_id: int) -> bool:
    result = await db.execute(
        update(FaceEncoding)
        .where(FaceEncoding.user_id == user_id, FaceEncoding.is_active.is_(True))
        .values(is_active=False)
    )
    await db.commit()
    return result.rowcount == 1
