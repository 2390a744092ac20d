"""
Service de gestion des cours et des inscriptions
"""
from typing import List
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from inclass.errors import ConflictError, NotFoundError
from inclass.models.course import Course, Enrollment
from inclass.models.user import User, UserRole
from inclass.services.session_service import get_owned_course

logger = logging.getLogger(__name__)


async def create_course(db: AsyncSession, faculty_id: int, course_code: str, title: str) -> Course:
    course = Course(faculty_id=faculty_id, course_code=course_code.strip().upper(), title=title.strip())
    db.add(course)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Vous avez déjà un cours avec ce code", code="COURSE_EXISTS")
    await db.refresh(course)
    return course


async def list_courses(db: AsyncSession, faculty_id: int) -> List[Course]:
    result = await db.execute(
        select(Course).where(Course.faculty_id == faculty_id).order_by(Course.course_code)
    )
    return list(result.scalars().all())


async def enroll_student(db: AsyncSession, class_id: int, faculty_id: int, student_id: int) -> Enrollment:
    """Inscrire un étudiant à un cours de l'enseignant"""
    await get_owned_course(db, class_id, faculty_id)

    result = await db.execute(select(User).where(User.id == student_id, User.role == UserRole.STUDENT))
    if result.scalar_one_or_none() is None:
        raise NotFoundError("Étudiant introuvable", code="STUDENT_NOT_FOUND")

    enrollment = Enrollment(student_id=student_id, class_id=class_id)
    db.add(enrollment)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Étudiant déjà inscrit à ce cours", code="ALREADY_ENROLLED")
    await db.refresh(enrollment)
    logger.info(f"Étudiant {student_id} inscrit au cours {class_id}")
    return enrollment
