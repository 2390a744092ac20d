"""
Application principale FastAPI
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import asyncio
import logging

from inclass.config import settings
from inclass.database import init_db
from inclass.errors import register_exception_handlers
from inclass.routers import (
    attendance, auth, biometrics, face, faculty, fingerprint, realtime, reports
)
from inclass.services.challenge_store import get_challenge_store, run_sweeper

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Cycle de vie de l'application"""
    # Startup
    await init_db()
    logger.info("✅ Base de données initialisée")

    store = get_challenge_store()
    sweeper = asyncio.create_task(run_sweeper(store, settings.CHALLENGE_SWEEP_INTERVAL_SECONDS))
    yield
    # Shutdown
    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass
    await store.close()
    logger.info("👋 Arrêt de l'application")


# Créer l'application FastAPI
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="""
    🎓 Système de présence universitaire

    Les étudiants valident leur présence avec:
    - le code de session affiché par l'enseignant
    - la reconnaissance faciale
    - un authentificateur de plateforme (WebAuthn: empreinte, Face ID, PIN)
    """,
    lifespan=lifespan
)

# Configuration CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Inclure les routers
app.include_router(auth.router, prefix="/api")
app.include_router(attendance.router, prefix="/api")
app.include_router(fingerprint.router, prefix="/api")
app.include_router(face.router, prefix="/api")
app.include_router(biometrics.router, prefix="/api")
app.include_router(faculty.router, prefix="/api")
app.include_router(reports.router, prefix="/api")
app.include_router(realtime.router)


@app.get("/")
async def root():
    """Page d'accueil"""
    return {
        "message": "🎓 Bienvenue sur le système de présence InClass",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc"
    }


@app.get("/health")
async def health_check():
    """Vérification de santé"""
    return {"status": "healthy", "version": settings.APP_VERSION}
