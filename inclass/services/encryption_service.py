"""
Service de chiffrement AES-256-GCM pour les données biométriques
Clé dérivée par PBKDF2-HMAC-SHA256 avec un sel aléatoire par message
"""
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from typing import List, Optional
import base64
import binascii
import json
import os
import logging

from inclass.errors import DecryptionError

logger = logging.getLogger(__name__)

SALT_LENGTH = 64
IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
KDF_ITERATIONS = 100000


class EncryptionService:
    """
    Service de chiffrement/déchiffrement pour les descripteurs faciaux

    Format du blob (base64): sel (64) ‖ iv (16) ‖ tag (16) ‖ texte chiffré
    Chaque appel à encrypt tire un nouveau sel et un nouveau iv.
    """

    def __init__(self, encryption_key: Optional[str] = None):
        """
        Initialise le service avec le secret serveur

        Args:
            encryption_key: Secret à partir duquel les clés sont dérivées.
        """
        if encryption_key:
            self._secret = encryption_key.encode()
        else:
            logger.warning("Aucune clé de chiffrement fournie - utilisation d'une clé par défaut (NON SÉCURISÉ)")
            self._secret = b"default-encryption-key-change-this"

    def _derive_key(self, salt: bytes) -> bytes:
        """Dériver une clé AES-256 à partir du secret et du sel"""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=KDF_ITERATIONS,
        )
        return kdf.derive(self._secret)

    def encrypt(self, data: bytes) -> str:
        """
        Chiffre des données binaires

        Args:
            data: Données à chiffrer (bytes)

        Returns:
            Blob chiffré encodé en base64
        """
        salt = os.urandom(SALT_LENGTH)
        iv = os.urandom(IV_LENGTH)
        sealed = AESGCM(self._derive_key(salt)).encrypt(iv, data, None)
        # AESGCM renvoie texte chiffré ‖ tag
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        blob = base64.b64encode(salt + iv + tag + ciphertext).decode("ascii")
        logger.debug(f"Données chiffrées: {len(data)} bytes -> {len(blob)} caractères")
        return blob

    def decrypt(self, blob: str) -> bytes:
        """
        Déchiffre un blob produit par encrypt

        Raises:
            DecryptionError: tag invalide (données altérées, mauvaise clé) ou blob mal formé
        """
        try:
            raw = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError, TypeError):
            logger.error("Échec du déchiffrement: blob non base64")
            raise DecryptionError("Données biométriques chiffrées mal formées")

        header = SALT_LENGTH + IV_LENGTH + TAG_LENGTH
        if len(raw) < header:
            logger.error(f"Échec du déchiffrement: blob trop court ({len(raw)} bytes)")
            raise DecryptionError("Données biométriques chiffrées mal formées")

        salt = raw[:SALT_LENGTH]
        iv = raw[SALT_LENGTH:SALT_LENGTH + IV_LENGTH]
        tag = raw[SALT_LENGTH + IV_LENGTH:header]
        ciphertext = raw[header:]

        try:
            return AESGCM(self._derive_key(salt)).decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            logger.error("Échec du déchiffrement: tag invalide (clé incorrecte ou données corrompues)")
            raise DecryptionError(
                "Impossible de déchiffrer les données biométriques. Clé incorrecte ou données corrompues."
            )

    def encrypt_descriptor(self, descriptor: List[float]) -> str:
        """Chiffrer un descripteur facial (sérialisé en JSON, aller-retour exact)"""
        return self.encrypt(json.dumps([float(x) for x in descriptor]).encode("utf-8"))

    def decrypt_descriptor(self, blob: str) -> List[float]:
        """Déchiffrer un descripteur facial"""
        plaintext = self.decrypt(blob)
        try:
            values = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            raise DecryptionError("Descripteur facial déchiffré illisible")
        if not isinstance(values, list):
            raise DecryptionError("Descripteur facial déchiffré illisible")
        return [float(x) for x in values]

    @staticmethod
    def generate_key() -> str:
        """
        Génère un nouveau secret de chiffrement

        Returns:
            Secret (string base64)
        """
        return base64.urlsafe_b64encode(os.urandom(32)).decode()


# Instance globale - sera initialisée avec la clé de config
encryption_service = None


def get_encryption_service() -> EncryptionService:
    """
    Retourne l'instance du service de chiffrement
    Lazy initialization pour attendre que la config soit chargée
    """
    global encryption_service

    if encryption_service is None:
        from inclass.config import settings
        encryption_service = EncryptionService(settings.BIOMETRIC_ENCRYPTION_KEY)

    return encryption_service
