"""
Modèles pour les enregistrements de présence et les signalements de code expiré
"""
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean, Float, ForeignKey, Index, UniqueConstraint
)
from datetime import datetime
import enum

from inclass.database import Base


class AttendanceStatus(str, enum.Enum):
    """Statuts d'un enregistrement (l'absence est implicite)"""
    PRESENT = "Present"
    MANUAL = "Manual"


class AttendanceRecord(Base):
    """Résultat d'un étudiant pour une session"""
    __tablename__ = "attendance"
    # Index unique nommé: c'est lui qui départage deux validations concurrentes
    __table_args__ = (
        Index("uq_attendance_student_session", "student_id", "session_id", unique=True),
    )

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    session_id = Column(Integer, ForeignKey("sessions.id"), nullable=False, index=True)
    status = Column(String(20), default=AttendanceStatus.PRESENT.value, nullable=False)
    ip_address = Column(String(45), nullable=True)

    # Vérifications biométriques
    face_verified = Column(Boolean, default=False)
    face_match_score = Column(Float, nullable=True)
    fingerprint_verified = Column(Boolean, default=False)
    fingerprint_credential_id = Column(String(512), nullable=True)

    # Saisie manuelle par l'enseignant
    is_overridden = Column(Boolean, default=False)
    override_reason = Column(Text, nullable=True)

    is_duplicate = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<AttendanceRecord student={self.student_id} session={self.session_id} {self.status}>"


class ReportStatus(str, enum.Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class ExpiredCodeReport(Base):
    """Signalement d'un code expiré par un étudiant, tranché par l'enseignant"""
    __tablename__ = "expired_code_reports"
    __table_args__ = (UniqueConstraint("student_id", "session_id", name="uq_reports_student_session"),)

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    session_id = Column(Integer, ForeignKey("sessions.id"), nullable=False)
    report_reason = Column(Text, nullable=False)
    status = Column(String(20), default=ReportStatus.PENDING.value, nullable=False)
    faculty_response = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    resolved_at = Column(DateTime, nullable=True)
