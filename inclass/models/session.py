"""
Modèle pour les sessions de présence (fenêtres ouvertes par l'enseignant)
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, Index
from datetime import datetime

from inclass.database import Base


class AttendanceSession(Base):
    """
    Fenêtre de présence à durée limitée
    La session "expire" naturellement quand expires_at est dépassé; elle n'est
    jamais supprimée et sert de piste d'audit.
    """
    __tablename__ = "sessions"
    __table_args__ = (Index("ix_sessions_code_created", "code", "created_at"),)

    id = Column(Integer, primary_key=True, index=True)
    class_id = Column(Integer, ForeignKey("classes.id"), nullable=False, index=True)
    code = Column(String(16), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    def is_expired(self, now: datetime) -> bool:
        """Le code n'est valide que si expires_at est strictement dans le futur"""
        return self.expires_at <= now

    def __repr__(self):
        return f"<AttendanceSession class={self.class_id} code={self.code}>"
