"""
Service WebAuthn (authentificateurs de plateforme: empreinte, Face ID, PIN)

Le service ne fait que de la vérification cryptographique: il génère les
défis et les renvoie, l'appelant se charge de les stocker dans le magasin de
défis et de persister les credentials et compteurs.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
import secrets
import logging

from fido2 import cbor
from fido2.cose import CoseKey
from fido2.features import webauthn_json_mapping
from fido2.server import Fido2Server
from fido2.utils import websafe_decode, websafe_encode
from fido2.webauthn import (
    Aaguid,
    AttestationConveyancePreference,
    AttestedCredentialData,
    AuthenticationResponse,
    AuthenticatorAttachment,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    PublicKeyCredentialRpEntity,
    PublicKeyCredentialType,
    PublicKeyCredentialUserEntity,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from inclass.config import settings

webauthn_json_mapping.enabled = True

logger = logging.getLogger(__name__)

CHALLENGE_BYTES = 32


@dataclass
class RegistrationResult:
    """Résultat typé de la vérification d'un enregistrement"""
    verified: bool
    credential_id: Optional[str] = None
    public_key: Optional[str] = None
    counter: int = 0
    error: Optional[str] = None


@dataclass
class AuthenticationResult:
    """Résultat typé de la vérification d'une assertion"""
    verified: bool
    credential_id: Optional[str] = None
    new_counter: Optional[int] = None
    error: Optional[str] = None
    code: Optional[str] = None


def _to_json(value: Any) -> Any:
    """Convertir les options fido2 en JSON (bytes en base64url)"""
    if isinstance(value, (bytes, bytearray)):
        return websafe_encode(bytes(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {key: _to_json(item) for key, item in value.items() if item is not None}
    if isinstance(value, (list, tuple)):
        return [_to_json(item) for item in value]
    return value


def encode_public_key(public_key: CoseKey) -> str:
    return websafe_encode(cbor.encode(dict(public_key)))


def decode_public_key(encoded: str) -> CoseKey:
    return CoseKey.parse(cbor.decode(websafe_decode(encoded)))


class WebAuthnService:
    """Cérémonies WebAuthn pour un relying party unique"""

    def __init__(
        self,
        rp_id: str,
        rp_name: str,
        origin: str,
        timeout_ms: Optional[int] = None,
        allow_zero_counter: bool = False,
    ):
        self.rp_id = rp_id
        self.origin = origin
        self.allow_zero_counter = allow_zero_counter
        self.server = Fido2Server(
            PublicKeyCredentialRpEntity(id=rp_id, name=rp_name),
            attestation=AttestationConveyancePreference.NONE,
            verify_origin=self._verify_origin,
        )
        self.server.timeout = timeout_ms

    def _verify_origin(self, origin: str) -> bool:
        return origin == self.origin

    def generate_registration_options(
        self,
        user_id: int,
        user_name: str,
        display_name: str,
        existing_credential_ids: Sequence[str] = (),
    ) -> Tuple[Dict[str, Any], str]:
        """
        Options d'enregistrement (attachement plateforme, vérification utilisateur requise)
        Les credentials déjà enrôlés sont exclus pour empêcher un double enrôlement.

        Returns:
            Tuple (options JSON, défi base64url)
        """
        challenge = secrets.token_bytes(CHALLENGE_BYTES)
        exclude = [
            PublicKeyCredentialDescriptor(
                type=PublicKeyCredentialType.PUBLIC_KEY,
                id=websafe_decode(credential_id),
                transports=[AuthenticatorTransport.INTERNAL],
            )
            for credential_id in existing_credential_ids
        ]
        options, state = self.server.register_begin(
            PublicKeyCredentialUserEntity(
                name=user_name,
                id=str(user_id).encode("utf-8"),
                display_name=display_name,
            ),
            credentials=exclude,
            resident_key_requirement=ResidentKeyRequirement.DISCOURAGED,
            user_verification=UserVerificationRequirement.REQUIRED,
            authenticator_attachment=AuthenticatorAttachment.PLATFORM,
            challenge=challenge,
        )
        return _to_json(options)["publicKey"], state["challenge"]

    def verify_registration(self, response: Mapping[str, Any], expected_challenge: str) -> RegistrationResult:
        """
        Valider l'attestation contre le défi attendu, le rp_id et l'origine
        Ne lève jamais d'exception pour une réponse invalide.
        """
        state = {
            "challenge": expected_challenge,
            "user_verification": UserVerificationRequirement.REQUIRED,
        }
        try:
            auth_data = self.server.register_complete(state, dict(response))
        except Exception as e:
            logger.info(f"Enregistrement WebAuthn refusé: {e}")
            return RegistrationResult(verified=False, error=str(e) or type(e).__name__)

        credential = auth_data.credential_data
        return RegistrationResult(
            verified=True,
            credential_id=websafe_encode(credential.credential_id),
            public_key=encode_public_key(credential.public_key),
            counter=auth_data.counter,
        )

    def generate_authentication_options(
        self, allowed_credential_ids: Sequence[str]
    ) -> Tuple[Dict[str, Any], str]:
        """
        Options d'authentification limitées aux credentials actifs de l'utilisateur

        Returns:
            Tuple (options JSON, défi base64url)
        """
        challenge = secrets.token_bytes(CHALLENGE_BYTES)
        allow = [
            PublicKeyCredentialDescriptor(
                type=PublicKeyCredentialType.PUBLIC_KEY,
                id=websafe_decode(credential_id),
                transports=[AuthenticatorTransport.INTERNAL],
            )
            for credential_id in allowed_credential_ids
        ]
        options, state = self.server.authenticate_begin(
            allow,
            user_verification=UserVerificationRequirement.REQUIRED,
            challenge=challenge,
        )
        return _to_json(options)["publicKey"], state["challenge"]

    def verify_authentication(
        self,
        response: Mapping[str, Any],
        expected_challenge: str,
        stored_credential: Any,
    ) -> AuthenticationResult:
        """
        Valider une assertion signée pour un credential enregistré

        Args:
            response: Réponse JSON de navigator.credentials.get()
            expected_challenge: Défi émis (base64url)
            stored_credential: Objet avec credential_id, public_key et counter

        Le compteur renvoyé doit être strictement supérieur au compteur stocké,
        sinon l'authentificateur est peut-être cloné.
        """
        state = {
            "challenge": expected_challenge,
            "user_verification": UserVerificationRequirement.REQUIRED,
        }
        try:
            assertion = AuthenticationResponse.from_dict(response)
            credentials = [
                AttestedCredentialData.create(
                    Aaguid.NONE,
                    websafe_decode(stored_credential.credential_id),
                    decode_public_key(stored_credential.public_key),
                )
            ]
            self.server.authenticate_complete(state, credentials, dict(response))
        except Exception as e:
            logger.info(f"Assertion WebAuthn refusée: {e}")
            return AuthenticationResult(
                verified=False,
                credential_id=stored_credential.credential_id,
                error=str(e) or type(e).__name__,
                code="WEBAUTHN_FAILED",
            )

        new_counter = assertion.response.authenticator_data.counter
        stored_counter = stored_credential.counter or 0
        unsupported = self.allow_zero_counter and new_counter == 0 and stored_counter == 0
        if new_counter <= stored_counter and not unsupported:
            logger.warning(
                f"Compteur non croissant pour le credential {stored_credential.credential_id}: "
                f"{stored_counter} -> {new_counter} (authentificateur cloné ?)"
            )
            return AuthenticationResult(
                verified=False,
                credential_id=stored_credential.credential_id,
                new_counter=new_counter,
                error="Le compteur de signatures n'a pas augmenté",
                code="COUNTER_NOT_INCREASED",
            )

        return AuthenticationResult(
            verified=True,
            credential_id=stored_credential.credential_id,
            new_counter=new_counter,
        )


# Instance globale du service
webauthn_service = WebAuthnService(
    rp_id=settings.WEBAUTHN_RP_ID,
    rp_name=settings.WEBAUTHN_RP_NAME,
    origin=settings.WEBAUTHN_ORIGIN,
    timeout_ms=settings.WEBAUTHN_TIMEOUT_MS,
    allow_zero_counter=settings.WEBAUTHN_ALLOW_ZERO_COUNTER,
)


def get_webauthn_service() -> WebAuthnService:
    """Dépendance FastAPI (surchargée dans les tests)"""
    return webauthn_service
