"""
Routes enseignant: cours, sessions de présence, corrections
"""
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from inclass.database import get_db
from inclass.models.user import User
from inclass.routers.auth import get_current_faculty
from inclass.schemas.attendance import (
    AttendanceRow, CourseCreate, CourseResponse, DuplicateDetectionRequest,
    EnrollStudentRequest, OverrideRequest, SessionResponse, StartSessionRequest
)
from inclass.services import attendance_service, course_service, session_service

router = APIRouter(prefix="/faculty", tags=["Enseignant"])


@router.post("/courses", response_model=CourseResponse, status_code=status.HTTP_201_CREATED)
async def create_course(
    body: CourseCreate,
    current_user: User = Depends(get_current_faculty),
    db: AsyncSession = Depends(get_db),
):
    return await course_service.create_course(db, current_user.id, body.course_code, body.title)


@router.get("/courses", response_model=List[CourseResponse])
async def list_courses(
    current_user: User = Depends(get_current_faculty),
    db: AsyncSession = Depends(get_db),
):
    return await course_service.list_courses(db, current_user.id)


@router.post("/courses/{class_id}/students", status_code=status.HTTP_201_CREATED)
async def enroll_student(
    class_id: int,
    body: EnrollStudentRequest,
    current_user: User = Depends(get_current_faculty),
    db: AsyncSession = Depends(get_db),
):
    """Inscrire un étudiant au cours"""
    enrollment = await course_service.enroll_student(db, class_id, current_user.id, body.student_id)
    return {"success": True, "enrollmentId": enrollment.id}


@router.post("/start-session", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def start_session(
    body: StartSessionRequest,
    current_user: User = Depends(get_current_faculty),
    db: AsyncSession = Depends(get_db),
):
    """Ouvrir une session de présence et obtenir le code à afficher"""
    session = await session_service.start_session(db, body.class_id, current_user.id)
    return SessionResponse(
        sessionId=session.id,
        classId=session.class_id,
        code=session.code,
        expires_at=session.expires_at,
    )


@router.post("/sessions/{session_id}/close")
async def close_session(
    session_id: int,
    current_user: User = Depends(get_current_faculty),
    db: AsyncSession = Depends(get_db),
):
    await session_service.close_session(db, session_id, current_user.id)
    return {"success": True, "message": "Session fermée"}


@router.get("/sessions/{session_id}/attendance", response_model=List[AttendanceRow])
async def session_attendance(
    session_id: int,
    current_user: User = Depends(get_current_faculty),
    db: AsyncSession = Depends(get_db),
):
    """Présences enregistrées pour une session"""
    rows = await attendance_service.list_session_attendance(db, session_id, current_user.id)
    return [
        AttendanceRow(
            id=record.id,
            student_id=student.id,
            student_name=student.name,
            roll_no=student.roll_no,
            status=record.status,
            face_verified=record.face_verified,
            face_match_score=record.face_match_score,
            fingerprint_verified=record.fingerprint_verified,
            is_overridden=record.is_overridden,
            override_reason=record.override_reason,
            created_at=record.created_at,
        )
        for record, student in rows
    ]


@router.post("/attendance/override")
async def override_attendance(
    body: OverrideRequest,
    current_user: User = Depends(get_current_faculty),
    db: AsyncSession = Depends(get_db),
):
    """Saisie manuelle d'une présence (sans vérification biométrique)"""
    record = await attendance_service.override_attendance(
        db,
        faculty_id=current_user.id,
        session_id=body.session_id,
        student_id=body.student_id,
        reason=body.reason,
    )
    return {"success": True, "attendanceId": record.id, "status": record.status}


@router.post("/duplicate-detection")
async def duplicate_detection(
    body: DuplicateDetectionRequest,
    current_user: User = Depends(get_current_faculty),
    db: AsyncSession = Depends(get_db),
):
    """
    Détection des doublons: si un étudiant a plusieurs présences dans la session,
    toutes les présences de la session sont supprimées (la session doit être relancée)
    """
    found = await attendance_service.detect_and_purge_duplicates(
        db, body.session_id, current_user.id, body.confirm
    )
    message = (
        "Doublons supprimés: relancez la session" if found else "Aucun doublon détecté"
    )
    return {"success": True, "duplicatesFound": found, "message": message}
