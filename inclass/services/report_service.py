"""
Signalements de code expiré

Un code expiré n'est jamais accepté par le protocole de présence: l'étudiant
le signale, puis l'enseignant approuve (saisie manuelle) ou rejette.
"""
from datetime import datetime
from typing import List, Optional
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from inclass.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from inclass.models.attendance import ExpiredCodeReport, ReportStatus
from inclass.models.course import Course
from inclass.models.session import AttendanceSession
from inclass.services import session_service
from inclass.services.attendance_service import is_enrolled, override_attendance

logger = logging.getLogger(__name__)


async def create_report(
    db: AsyncSession,
    student_id: int,
    session_id: int,
    reason: str,
    now: Optional[datetime] = None,
) -> ExpiredCodeReport:
    """Signaler un code expiré pour une session du cours de l'étudiant"""
    session = await session_service.get_session(db, session_id)
    if not session.is_expired(now or datetime.utcnow()):
        raise ValidationError("Ce code est encore valide: marquez votre présence", code="CODE_NOT_EXPIRED")
    if not await is_enrolled(db, student_id, session.class_id):
        raise AuthorizationError("Vous n'êtes pas inscrit à ce cours", code="NOT_ENROLLED_IN_CLASS")

    report = ExpiredCodeReport(student_id=student_id, session_id=session_id, report_reason=reason.strip())
    db.add(report)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Vous avez déjà signalé cette session", code="REPORT_EXISTS")
    await db.refresh(report)
    logger.info(f"Signalement de code expiré: étudiant {student_id}, session {session_id}")
    return report


async def list_reports(db: AsyncSession, faculty_id: int, status: Optional[str] = None) -> List[ExpiredCodeReport]:
    """Signalements des sessions des cours de l'enseignant"""
    query = (
        select(ExpiredCodeReport)
        .join(AttendanceSession, AttendanceSession.id == ExpiredCodeReport.session_id)
        .join(Course, Course.id == AttendanceSession.class_id)
        .where(Course.faculty_id == faculty_id)
        .order_by(ExpiredCodeReport.created_at.desc())
    )
    if status:
        query = query.where(ExpiredCodeReport.status == status)
    result = await db.execute(query)
    return list(result.scalars().all())


async def _pending_report(db: AsyncSession, report_id: int, faculty_id: int) -> ExpiredCodeReport:
    result = await db.execute(select(ExpiredCodeReport).where(ExpiredCodeReport.id == report_id))
    report = result.scalar_one_or_none()
    if report is None:
        raise NotFoundError("Signalement introuvable", code="REPORT_NOT_FOUND")
    await session_service.get_owned_session(db, report.session_id, faculty_id)
    if report.status != ReportStatus.PENDING.value:
        raise ConflictError("Ce signalement a déjà été traité", code="REPORT_ALREADY_RESOLVED")
    return report


async def approve_report(
    db: AsyncSession, report_id: int, faculty_id: int, response: Optional[str] = None
) -> ExpiredCodeReport:
    """Approuver: la présence est saisie manuellement"""
    report = await _pending_report(db, report_id, faculty_id)
    await override_attendance(
        db,
        faculty_id=faculty_id,
        session_id=report.session_id,
        student_id=report.student_id,
        reason=f"Code expiré signalé: {report.report_reason}",
    )
    report.status = ReportStatus.APPROVED.value
    report.faculty_response = response
    report.resolved_at = datetime.utcnow()
    await db.commit()
    await db.refresh(report)
    return report


async def reject_report(
    db: AsyncSession, report_id: int, faculty_id: int, response: Optional[str] = None
) -> ExpiredCodeReport:
    report = await _pending_report(db, report_id, faculty_id)
    report.status = ReportStatus.REJECTED.value
    report.faculty_response = response
    report.resolved_at = datetime.utcnow()
    await db.commit()
    await db.refresh(report)
    return report
