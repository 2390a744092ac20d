"""
Taxonomie des erreurs et gestionnaires d'exceptions FastAPI

Toutes les erreurs sont renvoyées sous la même enveloppe:
    {"success": false, "error": {"message": ..., "code": ..., ...détails}}
"""
from typing import Any, Dict, Optional
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Erreur applicative avec statut HTTP et code machine"""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        error = {"message": self.message, "code": self.code}
        error.update(self.details)
        return {"success": False, "error": error}


class ValidationError(AppError):
    """Entrée manquante ou mal formée"""
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"


class AuthenticationError(AppError):
    """Identité non établie"""
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "AUTHENTICATION_ERROR"


class AuthorizationError(AuthenticationError):
    """Identité établie mais non autorisée (rôle, inscription)"""
    status_code = status.HTTP_403_FORBIDDEN
    code = "AUTHORIZATION_ERROR"


class BiometricEnrollmentRequired(AuthorizationError):
    """L'étudiant doit d'abord enrôler ses données biométriques"""
    code = "BIOMETRICS_NOT_ENROLLED"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class ConflictError(AppError):
    """Violation d'unicité"""
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"


class VerificationFailure(AppError):
    """La preuve biométrique ne satisfait pas la vérification"""
    status_code = status.HTTP_403_FORBIDDEN
    code = "VERIFICATION_FAILED"

    def __init__(self, message: str, code: Optional[str] = None, score: Optional[float] = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        if score is not None:
            details["score"] = score
        super().__init__(message, code=code, details=details, **kwargs)
        self.score = score


class ExpiredError(AppError):
    """Code de session ou défi hors de sa fenêtre de validité"""
    status_code = status.HTTP_400_BAD_REQUEST
    code = "EXPIRED"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details["expired"] = True
        super().__init__(message, code=code, details=details)


class DatabaseError(AppError):
    code = "DATABASE_ERROR"


class DecryptionError(AppError):
    """Étiquette d'authentification invalide: données altérées ou mauvaise clé"""
    code = "DECRYPTION_ERROR"


class FaceModelError(AppError):
    """Le modèle d'extraction de descripteurs a échoué"""
    code = "FACE_MODEL_ERROR"


def _envelope(status_code: int, message: str, code: str, **extra) -> JSONResponse:
    error = {"message": message, "code": code}
    error.update(extra)
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s -> %s %s: %s", request.method, request.url.path, exc.status_code, exc.code, exc.message)
    else:
        logger.info("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    codes = {
        401: "AUTHENTICATION_ERROR",
        403: "AUTHORIZATION_ERROR",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
    }
    response = _envelope(exc.status_code, str(exc.detail), codes.get(exc.status_code, "HTTP_ERROR"))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()]
    return _envelope(
        status.HTTP_400_BAD_REQUEST,
        "Requête invalide",
        "VALIDATION_ERROR",
        fields=fields,
    )


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Erreur de base de données sur %s %s: %s", request.method, request.url.path, exc)
    return _envelope(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Erreur de base de données",
        "DATABASE_ERROR",
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Brancher les gestionnaires sur l'application"""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
