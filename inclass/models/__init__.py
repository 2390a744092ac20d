# Modèles de données
# Importer tous les modèles pour que SQLAlchemy puisse résoudre les tables

from inclass.models.user import User, UserRole
from inclass.models.biometric import WebAuthnCredential, FaceEncoding
from inclass.models.course import Course, Enrollment
from inclass.models.session import AttendanceSession
from inclass.models.attendance import (
    AttendanceRecord,
    AttendanceStatus,
    ExpiredCodeReport,
    ReportStatus,
)

__all__ = [
    "User",
    "UserRole",
    "WebAuthnCredential",
    "FaceEncoding",
    "Course",
    "Enrollment",
    "AttendanceSession",
    "AttendanceRecord",
    "AttendanceStatus",
    "ExpiredCodeReport",
    "ReportStatus",
]
