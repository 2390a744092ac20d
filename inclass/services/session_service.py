"""
Service d'ouverture des sessions de présence
"""
from datetime import datetime, timedelta
from typing import Optional
import secrets
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from inclass.config import settings
from inclass.errors import NotFoundError
from inclass.models.course import Course
from inclass.models.session import AttendanceSession

logger = logging.getLogger(__name__)

CODE_BYTES = 3  # 6 caractères hexadécimaux, ~16,7 millions de codes


def generate_code() -> str:
    """Code court saisissable par un humain (ex: A1B2C3)"""
    return secrets.token_hex(CODE_BYTES).upper()


async def get_owned_course(db: AsyncSession, class_id: int, faculty_id: int) -> Course:
    """Cours appartenant à l'enseignant, sinon NotFoundError"""
    result = await db.execute(
        select(Course).where(Course.id == class_id, Course.faculty_id == faculty_id)
    )
    course = result.scalar_one_or_none()
    if course is None:
        raise NotFoundError("Cours introuvable ou non autorisé", code="CLASS_NOT_FOUND")
    return course


async def start_session(
    db: AsyncSession,
    class_id: int,
    faculty_id: int,
    now: Optional[datetime] = None,
) -> AttendanceSession:
    """
    Ouvrir une fenêtre de présence pour un cours
    Le code expire après SESSION_CODE_TTL_SECONDS.
    """
    await get_owned_course(db, class_id, faculty_id)

    now = now or datetime.utcnow()
    session = AttendanceSession(
        class_id=class_id,
        code=generate_code(),
        created_at=now,
        expires_at=now + timedelta(seconds=settings.SESSION_CODE_TTL_SECONDS),
        is_active=True,
    )
    db.add(session)
    await db.commit()
    await db.refresh(session)

    logger.info(f"Session {session.id} ouverte pour le cours {class_id} (expire à {session.expires_at})")
    return session


async def find_session_by_code(db: AsyncSession, code: str) -> Optional[AttendanceSession]:
    """Session active la plus récente portant ce code (expirée ou non)"""
    result = await db.execute(
        select(AttendanceSession)
        .where(AttendanceSession.code == code, AttendanceSession.is_active.is_(True))
        .order_by(AttendanceSession.created_at.desc(), AttendanceSession.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_session(db: AsyncSession, session_id: int) -> AttendanceSession:
    result = await db.execute(select(AttendanceSession).where(AttendanceSession.id == session_id))
    session = result.scalar_one_or_none()
    if session is None:
        raise NotFoundError("Session introuvable", code="SESSION_NOT_FOUND")
    return session


async def get_owned_session(db: AsyncSession, session_id: int, faculty_id: int) -> AttendanceSession:
    """Session d'un cours de l'enseignant, sinon NotFoundError"""
    session = await get_session(db, session_id)
    await get_owned_course(db, session.class_id, faculty_id)
    return session


async def close_session(db: AsyncSession, session_id: int, faculty_id: int) -> AttendanceSession:
    """Fermer une session avant son expiration (le code n'est plus accepté)"""
    session = await get_owned_session(db, session_id, faculty_id)
    await db.execute(
        update(AttendanceSession).where(AttendanceSession.id == session.id).values(is_active=False)
    )
    await db.commit()
    await db.refresh(session)
    logger.info(f"Session {session_id} fermée")
    return session
