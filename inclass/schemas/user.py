"""
Schémas Pydantic des comptes et jetons
"""
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from typing import Optional
from datetime import datetime
from inclass.models.user import UserRole


class UserCreate(BaseModel):
    """Inscription (étudiant ou enseignant)"""
    email: EmailStr
    name: str = Field(min_length=1, max_length=200)
    roll_no: Optional[str] = Field(default=None, max_length=50)
    password: str = Field(min_length=8)
    role: UserRole = UserRole.STUDENT

    @field_validator("roll_no")
    @classmethod
    def normalize_roll_no(cls, value: Optional[str]) -> Optional[str]:
        # Matricule vide = pas de matricule
        if value is None:
            return None
        return value.strip().upper() or None


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str
    roll_no: Optional[str] = None
    role: UserRole
    is_active: bool
    created_at: datetime


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: UserRole
    expires_in: int


class TokenData(BaseModel):
    """Revendications extraites d'un JWT valide"""
    user_id: int
    email: Optional[str] = None
    role: Optional[str] = None
