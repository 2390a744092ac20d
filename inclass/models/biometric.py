"""
Modèles pour les données biométriques enrôlées
"""
from sqlalchemy import Column, Integer, String, Text, Boolean, ForeignKey, DateTime
from datetime import datetime

from inclass.database import Base


class WebAuthnCredential(Base):
    """
    Authentificateur de plateforme (empreinte, Face ID, PIN) enrôlé via WebAuthn
    - credential_id: identifiant opaque (base64url), unique globalement
    - public_key: clé COSE encodée en CBOR puis base64url
    - counter: compteur de signatures, jamais décrémenté
    """
    __tablename__ = "webauthn_credentials"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    credential_id = Column(String(512), unique=True, nullable=False)
    public_key = Column(Text, nullable=False)
    counter = Column(Integer, default=0, nullable=False)
    device_name = Column(String(255), default="Appareil inconnu")
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    last_used_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<WebAuthnCredential user_id={self.user_id} active={self.is_active}>"


class FaceEncoding(Base):
    """
    Descripteur facial enrôlé (vecteur de 128 dimensions, chiffré au repos)
    Un seul enregistrement par utilisateur: le ré-enrôlement le remplace
    """
    __tablename__ = "face_encodings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    encrypted_descriptor = Column(Text, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    enrolled_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<FaceEncoding user_id={self.user_id} active={self.is_active}>"
