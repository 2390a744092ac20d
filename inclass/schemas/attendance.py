"""
Schémas Pydantic pour les sessions, présences et signalements
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional
from datetime import datetime


class MarkAttendanceBody(BaseModel):
    """Soumission d'un code de session avec les preuves biométriques"""
    model_config = ConfigDict(populate_by_name=True)

    code: Optional[str] = None
    face_image: Optional[str] = Field(default=None, alias="faceImage")
    face_embedding: Optional[List[float]] = Field(default=None, alias="faceEmbedding")
    fingerprint_auth_response: Optional[Dict[str, Any]] = Field(default=None, alias="fingerprintAuthResponse")
    fingerprint_challenge: Optional[str] = Field(default=None, alias="fingerprintChallenge")
    liveness_frames: Optional[List[str]] = Field(default=None, alias="livenessFrames")


class StartSessionRequest(BaseModel):
    class_id: int


class SessionResponse(BaseModel):
    sessionId: int
    classId: int
    code: str
    expires_at: datetime


class OverrideRequest(BaseModel):
    """Saisie manuelle d'une présence"""
    session_id: int
    student_id: int
    reason: str = Field(min_length=1)


class DuplicateDetectionRequest(BaseModel):
    session_id: int
    confirm: bool = False


class AttendanceRow(BaseModel):
    """Ligne de présence d'une session"""
    id: int
    student_id: int
    student_name: str
    roll_no: Optional[str] = None
    status: str
    face_verified: bool
    face_match_score: Optional[float] = None
    fingerprint_verified: bool
    is_overridden: bool
    override_reason: Optional[str] = None
    created_at: datetime


class CourseCreate(BaseModel):
    course_code: str = Field(min_length=1, max_length=50)
    title: str = Field(min_length=1, max_length=255)


class CourseResponse(BaseModel):
    id: int
    course_code: str
    title: str
    created_at: datetime

    class Config:
        from_attributes = True


class EnrollStudentRequest(BaseModel):
    student_id: int


class ExpiredCodeReportCreate(BaseModel):
    """Signalement d'un code expiré"""
    session_id: int
    reason: str = Field(min_length=1)


class ReportDecision(BaseModel):
    response: Optional[str] = None


class ExpiredCodeReportResponse(BaseModel):
    id: int
    student_id: int
    session_id: int
    report_reason: str
    status: str
    faculty_response: Optional[str] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None

    class Config:
        from_attributes = True
