"""
Comptes et jetons d'accès

Les mots de passe sont hachés avec bcrypt (passlib) et les jetons sont des
JWT signés (python-jose) portant l'identifiant, l'email et le rôle.
"""
from datetime import datetime, timedelta
from typing import Optional
import logging

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from inclass.config import settings
from inclass.errors import ConflictError
from inclass.models.user import User, UserRole
from inclass.schemas.user import TokenData

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Signer un JWT; expiration par défaut: ACCESS_TOKEN_EXPIRE_MINUTES"""
    claims = dict(data)
    claims["exp"] = datetime.utcnow() + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_user_token(user: User) -> str:
    return create_access_token({"sub": str(user.id), "email": user.email, "role": user.role.value})


def decode_access_token(token: str) -> Optional[TokenData]:
    """
    Lire un JWT

    Returns:
        TokenData, ou None si la signature, l'expiration ou le sujet sont invalides
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        logger.info(f"Token JWT refusé: {e}")
        return None

    subject = payload.get("sub")
    try:
        user_id = int(subject)
    except (TypeError, ValueError):
        logger.info(f"Sujet de token illisible: {subject!r}")
        return None
    return TokenData(user_id=user_id, email=payload.get("email"), role=payload.get("role"))


async def get_user_by_id(db: AsyncSession, user_id: int) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == normalize_email(email)))
    return result.scalar_one_or_none()


async def authenticate_user(db: AsyncSession, email: str, password: str) -> Optional[User]:
    """Compte actif dont le mot de passe correspond, sinon None"""
    user = await get_user_by_email(db, email)
    if user is None or not user.is_active or not verify_password(password, user.hashed_password):
        logger.info(f"Échec de connexion pour {normalize_email(email)}")
        return None
    return user


async def create_user(
    db: AsyncSession,
    email: str,
    password: str,
    name: str,
    roll_no: Optional[str] = None,
    role: UserRole = UserRole.STUDENT
) -> User:
    """Créer un compte (email unique, insensible à la casse)"""
    email = normalize_email(email)
    if await get_user_by_email(db, email):
        raise ConflictError("Cet email est déjà utilisé", code="EMAIL_EXISTS")

    user = User(
        email=email,
        hashed_password=get_password_hash(password),
        name=name.strip(),
        roll_no=roll_no,
        role=role
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Cet email est déjà utilisé", code="EMAIL_EXISTS")
    await db.refresh(user)
    logger.info(f"Compte créé: {email} ({role.value})")
    return user
