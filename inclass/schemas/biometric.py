"""
Schémas Pydantic pour la biométrie (WebAuthn et visage)
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional
from datetime import datetime


class FingerprintEnrollComplete(BaseModel):
    """Fin d'enregistrement WebAuthn"""
    model_config = ConfigDict(populate_by_name=True)

    registration_response: Dict[str, Any] = Field(alias="registrationResponse")
    device_name: Optional[str] = Field(default=None, alias="deviceName", max_length=255)


class FingerprintVerifyComplete(BaseModel):
    """Fin d'authentification WebAuthn (hors présence)"""
    model_config = ConfigDict(populate_by_name=True)

    authentication_response: Dict[str, Any] = Field(alias="authenticationResponse")


class CredentialResponse(BaseModel):
    """Authentificateur enregistré"""
    credential_id: str
    device_name: Optional[str] = None
    counter: int
    created_at: datetime
    last_used_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class FaceCaptureRequest(BaseModel):
    """Image du visage (base64) ou descripteur déjà calculé"""
    image: Optional[str] = None
    embedding: Optional[List[float]] = None


class FaceVerifyResponse(BaseModel):
    """Réponse de la vérification faciale consultative"""
    verified: bool
    score: Optional[float] = None
    threshold: float
    mode: str
    warning: Optional[str] = None


class LivenessRequest(BaseModel):
    frames: List[str] = Field(min_length=2)


class LivenessResponse(BaseModel):
    blink_detected: bool
    frames_analyzed: int
