"""
Modèles pour les cours et les inscriptions
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from datetime import datetime

from inclass.database import Base


class Course(Base):
    """Cours enseigné par un enseignant"""
    __tablename__ = "classes"
    __table_args__ = (UniqueConstraint("faculty_id", "course_code", name="uq_classes_faculty_code"),)

    id = Column(Integer, primary_key=True, index=True)
    faculty_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    course_code = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    total_classes = Column(Integer, default=1)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Course {self.course_code}>"


class Enrollment(Base):
    """Inscription d'un étudiant à un cours"""
    __tablename__ = "enrollments"
    __table_args__ = (UniqueConstraint("student_id", "class_id", name="uq_enrollments_student_class"),)

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    class_id = Column(Integer, ForeignKey("classes.id"), nullable=False, index=True)
    enrolled_at = Column(DateTime, default=datetime.utcnow)
