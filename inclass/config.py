"""
Configuration de l'application
"""
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Paramètres de configuration"""

    # Application
    APP_NAME: str = "InClass Présence"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Base de données
    DATABASE_URL: str = "sqlite+aiosqlite:///./inclass.db"

    # Sécurité
    SECRET_KEY: str = "votre-cle-secrete-tres-longue-et-complexe-a-changer"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    CORS_ORIGINS: List[str] = ["http://localhost:5173"]

    # Compte administrateur créé au démarrage (run.py)
    BOOTSTRAP_ADMIN_EMAIL: str = "admin@inclass.edu"
    BOOTSTRAP_ADMIN_PASSWORD: Optional[str] = None

    # Chiffrement des descripteurs faciaux (PBKDF2 + AES-256-GCM)
    BIOMETRIC_ENCRYPTION_KEY: Optional[str] = None

    # Reconnaissance faciale
    FACE_SIMILARITY_THRESHOLD: float = 0.62
    FACE_DESCRIPTOR_LENGTH: int = 128
    FACE_ENGINE_MODE: str = "full"  # full | degraded

    # Vivacité (clignement, eye aspect ratio)
    LIVENESS_REQUIRED: bool = False
    LIVENESS_EAR_THRESHOLD: float = 0.21
    LIVENESS_MIN_CLOSED_FRAMES: int = 1

    # WebAuthn (identité du relying party)
    WEBAUTHN_RP_ID: str = "localhost"
    WEBAUTHN_RP_NAME: str = "InClass Attendance System"
    WEBAUTHN_ORIGIN: str = "http://localhost:5173"
    WEBAUTHN_TIMEOUT_MS: int = 60000
    # Certains authentificateurs renvoient toujours un compteur nul
    WEBAUTHN_ALLOW_ZERO_COUNTER: bool = False

    # Défis WebAuthn (intervalles en secondes)
    CHALLENGE_TTL_SECONDS: int = 300
    CHALLENGE_SWEEP_INTERVAL_SECONDS: int = 300
    CHALLENGE_STORE_BACKEND: str = "memory"  # memory | redis
    REDIS_URL: str = "redis://localhost:6379/0"

    # Sessions de présence
    SESSION_CODE_TTL_SECONDS: int = 300
    ATTENDANCE_BIOMETRIC_POLICY: str = "both_required"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()


def get_settings() -> Settings:
    """
    Relire la configuration (variables d'environnement et .env)
    Utilisé pour les valeurs ajustables sans redémarrage (seuil facial)
    """
    return Settings()
