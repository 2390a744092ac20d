"""
Magasin de défis WebAuthn à usage unique

Un défi est indexé par (principal, flux) où le flux est l'enregistrement ou
l'authentification. Il est consommé à la vérification et expire de toute façon
après CHALLENGE_TTL_SECONDS.

Deux implémentations:
- InMemoryChallengeStore: dictionnaire local protégé par un verrou (une seule instance)
- RedisChallengeStore: clés Redis avec expiration, obligatoire dès que plusieurs
  instances de l'application servent les requêtes
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple
import asyncio
import enum
import threading
import time
import logging

logger = logging.getLogger(__name__)


class ChallengeFlow(str, enum.Enum):
    """Cérémonies WebAuthn"""
    REGISTRATION = "registration"
    AUTHENTICATION = "authentication"


@dataclass
class _Entry:
    challenge: str
    issued_at: float


class ChallengeStore(ABC):
    """Interface commune des magasins de défis"""

    def __init__(self, ttl_seconds: int = 300):
        self.ttl_seconds = ttl_seconds

    @abstractmethod
    async def issue(self, principal: int, flow: ChallengeFlow, challenge: str) -> None:
        """Enregistrer un défi (le dernier émis remplace le précédent)"""

    @abstractmethod
    async def get(self, principal: int, flow: ChallengeFlow) -> Optional[str]:
        """Défi vivant ou None"""

    @abstractmethod
    async def consume(self, principal: int, flow: ChallengeFlow) -> Optional[str]:
        """Retirer et renvoyer le défi; un second appel renvoie None"""

    @abstractmethod
    async def sweep(self) -> int:
        """Supprimer les défis expirés, renvoie le nombre d'entrées retirées"""

    async def close(self) -> None:
        pass


class InMemoryChallengeStore(ChallengeStore):
    """Défis en mémoire du processus"""

    def __init__(self, ttl_seconds: int = 300, clock: Callable[[], float] = time.monotonic):
        super().__init__(ttl_seconds)
        self._clock = clock
        self._entries: Dict[Tuple[int, ChallengeFlow], _Entry] = {}
        self._lock = threading.Lock()

    def _is_live(self, entry: _Entry, now: float) -> bool:
        return now - entry.issued_at < self.ttl_seconds

    async def issue(self, principal: int, flow: ChallengeFlow, challenge: str) -> None:
        with self._lock:
            self._entries[(principal, ChallengeFlow(flow))] = _Entry(challenge, self._clock())

    async def get(self, principal: int, flow: ChallengeFlow) -> Optional[str]:
        with self._lock:
            entry = self._entries.get((principal, ChallengeFlow(flow)))
            if entry is None or not self._is_live(entry, self._clock()):
                return None
            return entry.challenge

    async def consume(self, principal: int, flow: ChallengeFlow) -> Optional[str]:
        with self._lock:
            entry = self._entries.pop((principal, ChallengeFlow(flow)), None)
        if entry is None or not self._is_live(entry, self._clock()):
            return None
        return entry.challenge

    async def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if not self._is_live(entry, now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"{len(expired)} défi(s) expiré(s) supprimé(s)")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisChallengeStore(ChallengeStore):
    """Défis partagés entre instances via Redis (expiration gérée par Redis)"""

    def __init__(self, client, ttl_seconds: int = 300, prefix: str = "challenge"):
        super().__init__(ttl_seconds)
        self._redis = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int = 300) -> "RedisChallengeStore":
        import redis.asyncio as aioredis
        return cls(aioredis.from_url(url, decode_responses=True), ttl_seconds)

    def _key(self, principal: int, flow: ChallengeFlow) -> str:
        return f"{self._prefix}:{ChallengeFlow(flow).value}:{principal}"

    async def issue(self, principal: int, flow: ChallengeFlow, challenge: str) -> None:
        await self._redis.set(self._key(principal, flow), challenge, ex=self.ttl_seconds)

    async def get(self, principal: int, flow: ChallengeFlow) -> Optional[str]:
        return await self._redis.get(self._key(principal, flow))

    async def consume(self, principal: int, flow: ChallengeFlow) -> Optional[str]:
        return await self._redis.getdel(self._key(principal, flow))

    async def sweep(self) -> int:
        # Les clés portent leur propre expiration
        return 0

    async def close(self) -> None:
        await self._redis.aclose()


async def run_sweeper(store: ChallengeStore, interval_seconds: int) -> None:
    """Boucle de nettoyage périodique, lancée au démarrage de l'application"""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await store.sweep()
        except Exception:
            logger.exception("Échec du nettoyage des défis expirés")


# Instance globale - créée à la demande selon la configuration
challenge_store = None


def get_challenge_store() -> ChallengeStore:
    """
    Retourne le magasin de défis configuré
    Lazy initialization pour attendre que la config soit chargée
    """
    global challenge_store

    if challenge_store is None:
        from inclass.config import settings
        if settings.CHALLENGE_STORE_BACKEND == "redis":
            challenge_store = RedisChallengeStore.from_url(settings.REDIS_URL, settings.CHALLENGE_TTL_SECONDS)
            logger.info("Magasin de défis: Redis")
        else:
            challenge_store = InMemoryChallengeStore(settings.CHALLENGE_TTL_SECONDS)
            logger.info("Magasin de défis: mémoire locale (instance unique)")

    return challenge_store
