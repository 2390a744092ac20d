"""
Routes d'authentification
"""
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from inclass.config import settings
from inclass.database import get_db
from inclass.errors import AuthorizationError
from inclass.schemas.user import UserCreate, UserResponse, Token
from inclass.services.auth_service import (
    authenticate_user, create_user_token, decode_access_token,
    get_user_by_id, create_user
)
from inclass.models.user import User, UserRole

router = APIRouter(prefix="/auth", tags=["Authentification"])

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Récupérer l'utilisateur courant à partir du token"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Token invalide",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token_data = decode_access_token(token)
    if token_data is None:
        raise credentials_exception

    user = await get_user_by_id(db, token_data.user_id)
    if user is None or not user.is_active:
        raise credentials_exception

    return user


def require_role(*roles: UserRole):
    """Dépendance: l'utilisateur courant doit avoir l'un des rôles donnés"""
    async def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise AuthorizationError(
                "Accès réservé: " + ", ".join(role.value for role in roles),
                code="ROLE_REQUIRED",
            )
        return current_user
    return checker


get_current_student = require_role(UserRole.STUDENT)
get_current_faculty = require_role(UserRole.FACULTY, UserRole.ADMIN)


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(user_data: UserCreate, db: AsyncSession = Depends(get_db)):
    """Inscription d'un nouvel utilisateur (étudiant ou enseignant)"""
    if user_data.role == UserRole.ADMIN:
        raise AuthorizationError("Le rôle administrateur ne peut pas être auto-attribué", code="ROLE_FORBIDDEN")

    return await create_user(
        db,
        email=user_data.email,
        password=user_data.password,
        name=user_data.name,
        roll_no=user_data.roll_no,
        role=user_data.role
    )


@router.post("/token", response_model=Token)
async def login_for_token(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db)
):
    """Connexion et obtention du token"""
    user = await authenticate_user(db, form_data.username, form_data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Email ou mot de passe incorrect",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return Token(
        access_token=create_user_token(user),
        role=user.role,
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    """Récupérer les informations de l'utilisateur connecté"""
    return current_user
