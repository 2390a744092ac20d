"""
Moteur SQLAlchemy asynchrone et sessions

En SQLite, les validations concurrentes d'une même session se sérialisent
sur le verrou d'écriture: on attend le verrou (busy timeout) plutôt que
d'échouer immédiatement, et c'est l'index unique de la table attendance
qui départage les doublons.
"""
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from inclass.config import settings

SQLITE_BUSY_TIMEOUT_SECONDS = 15


def _is_sqlite(url: str) -> bool:
    return make_url(url).get_backend_name() == "sqlite"


def build_engine(url: str, **kwargs):
    """Créer un moteur asynchrone (réglages SQLite: attente du verrou, clés étrangères)"""
    if _is_sqlite(url):
        kwargs.setdefault("connect_args", {"timeout": SQLITE_BUSY_TIMEOUT_SECONDS})
    async_engine = create_async_engine(url, echo=settings.DEBUG, **kwargs)

    if _is_sqlite(url):
        @event.listens_for(async_engine.sync_engine, "connect")
        def _sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return async_engine


engine = build_engine(settings.DATABASE_URL)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)


class Base(DeclarativeBase):
    """Classe de base pour tous les modèles"""
    pass


async def get_db():
    """Session par requête: validée en fin de requête, annulée sur erreur"""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db():
    """Créer les tables manquantes"""
    # Enregistrer les tables dans les métadonnées
    import inclass.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
