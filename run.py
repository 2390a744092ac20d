"""
Script de démarrage: tables, compte administrateur initial, serveur
"""
import uvicorn
import asyncio
import logging

from inclass.config import settings
from inclass.database import init_db, async_session_maker
from inclass.services.auth_service import create_user, get_user_by_email
from inclass.models.user import UserRole

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("inclass")


async def bootstrap_admin():
    """Créer le compte administrateur si BOOTSTRAP_ADMIN_PASSWORD est défini"""
    if not settings.BOOTSTRAP_ADMIN_PASSWORD:
        logger.info("BOOTSTRAP_ADMIN_PASSWORD absent: aucun compte administrateur créé")
        return

    async with async_session_maker() as db:
        if await get_user_by_email(db, settings.BOOTSTRAP_ADMIN_EMAIL):
            logger.info(f"Administrateur existant: {settings.BOOTSTRAP_ADMIN_EMAIL}")
            return
        await create_user(
            db,
            email=settings.BOOTSTRAP_ADMIN_EMAIL,
            password=settings.BOOTSTRAP_ADMIN_PASSWORD,
            name="Administrateur",
            role=UserRole.ADMIN
        )
        logger.info(f"✅ Administrateur créé: {settings.BOOTSTRAP_ADMIN_EMAIL}")


async def main():
    logger.info("🚀 Initialisation d'InClass...")
    await init_db()
    await bootstrap_admin()


if __name__ == "__main__":
    asyncio.run(main())

    logger.info(f"🌐 API sur http://{settings.HOST}:{settings.PORT} (documentation: /docs)")
    uvicorn.run(
        "inclass.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
