"""
Fixtures communes: base SQLite par test, client HTTP, authentificateur logiciel
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("BIOMETRIC_ENCRYPTION_KEY", "cle-de-test")
os.environ.setdefault("WEBAUTHN_RP_ID", "localhost")
os.environ.setdefault("WEBAUTHN_ORIGIN", "http://localhost:5173")
os.environ.setdefault("FACE_ENGINE_MODE", "full")

from datetime import datetime, timedelta
from typing import List, Optional

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from fastapi.testclient import TestClient
from fido2.cose import ES256
from fido2.utils import sha256, websafe_encode
from fido2.webauthn import (
    Aaguid,
    AttestationObject,
    AttestedCredentialData,
    AuthenticatorData,
    CollectedClientData,
)
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from inclass.database import Base, get_db
from inclass.main import app
from inclass.models import (
    AttendanceSession,
    Course,
    Enrollment,
    FaceEncoding,
    User,
    UserRole,
    WebAuthnCredential,
)
from inclass.services.auth_service import create_access_token
from inclass.services.challenge_store import InMemoryChallengeStore, get_challenge_store
from inclass.services.encryption_service import get_encryption_service
from inclass.services.notification_service import NotificationHub, get_notification_hub
from inclass.services.webauthn_service import encode_public_key

ORIGIN = "http://localhost:5173"
RP_ID = "localhost"

FLAG_UP = 0x01
FLAG_UV = 0x04
FLAG_AT = 0x40


class SoftAuthenticator:
    """Authentificateur de plateforme logiciel (clé ES256 en mémoire)"""

    def __init__(self, rp_id: str = RP_ID, origin: str = ORIGIN):
        self.rp_id = rp_id
        self.origin = origin
        self.private_key = ec.generate_private_key(ec.SECP256R1())
        self.credential_id = os.urandom(32)
        self.public_key = ES256.from_cryptography_key(self.private_key.public_key())

    @property
    def credential_id_b64(self) -> str:
        return websafe_encode(self.credential_id)

    @property
    def public_key_b64(self) -> str:
        return encode_public_key(self.public_key)

    def register(self, challenge: str, origin: Optional[str] = None, counter: int = 0) -> dict:
        client_data = CollectedClientData.create(
            type="webauthn.create", challenge=challenge, origin=origin or self.origin
        )
        auth_data = AuthenticatorData.create(
            sha256(self.rp_id.encode()),
            FLAG_UP | FLAG_UV | FLAG_AT,
            counter,
            AttestedCredentialData.create(Aaguid.NONE, self.credential_id, self.public_key),
        )
        attestation = AttestationObject.create("none", auth_data, {})
        return {
            "id": self.credential_id_b64,
            "rawId": self.credential_id_b64,
            "type": "public-key",
            "response": {
                "clientDataJSON": websafe_encode(client_data),
                "attestationObject": websafe_encode(attestation),
            },
            "clientExtensionResults": {},
        }

    def authenticate(self, challenge: str, counter: int, origin: Optional[str] = None) -> dict:
        client_data = CollectedClientData.create(
            type="webauthn.get", challenge=challenge, origin=origin or self.origin
        )
        auth_data = AuthenticatorData.create(sha256(self.rp_id.encode()), FLAG_UP | FLAG_UV, counter)
        signature = self.private_key.sign(auth_data + client_data.hash, ec.ECDSA(hashes.SHA256()))
        return {
            "id": self.credential_id_b64,
            "rawId": self.credential_id_b64,
            "type": "public-key",
            "response": {
                "clientDataJSON": websafe_encode(client_data),
                "authenticatorData": websafe_encode(auth_data),
                "signature": websafe_encode(signature),
            },
            "clientExtensionResults": {},
        }


class Seeder:
    """Insertion directe de données de test (moteur synchrone)"""

    def __init__(self, engine):
        self.engine = engine

    def _add(self, obj):
        with Session(self.engine, expire_on_commit=False) as db:
            db.add(obj)
            db.commit()
            db.refresh(obj)
            return obj

    def user(self, user_id: Optional[int] = None, role: UserRole = UserRole.STUDENT,
             name: str = "Amina Benali", roll_no: Optional[str] = "CS-042") -> User:
        email = f"user{user_id or os.urandom(4).hex()}@univ-lyon.fr"
        return self._add(User(id=user_id, email=email, hashed_password="x", name=name,
                              roll_no=roll_no, role=role))

    def course(self, faculty_id: int, class_id: Optional[int] = None, course_code: str = "CS101") -> Course:
        return self._add(Course(id=class_id, faculty_id=faculty_id, course_code=course_code,
                                title="Algorithmique"))

    def enroll(self, student_id: int, class_id: int) -> Enrollment:
        return self._add(Enrollment(student_id=student_id, class_id=class_id))

    def session(self, class_id: int, code: str = "A1B2C3", session_id: Optional[int] = None,
                expires_at: Optional[datetime] = None, created_at: Optional[datetime] = None) -> AttendanceSession:
        now = datetime.utcnow()
        return self._add(AttendanceSession(
            id=session_id,
            class_id=class_id,
            code=code,
            created_at=created_at or now,
            expires_at=expires_at or now + timedelta(minutes=5),
            is_active=True,
        ))

    def face(self, user_id: int, descriptor: List[float]) -> FaceEncoding:
        blob = get_encryption_service().encrypt_descriptor(descriptor)
        return self._add(FaceEncoding(user_id=user_id, encrypted_descriptor=blob, is_active=True))

    def credential(self, user_id: int, authenticator: SoftAuthenticator, counter: int = 0) -> WebAuthnCredential:
        return self._add(WebAuthnCredential(
            user_id=user_id,
            credential_id=authenticator.credential_id_b64,
            public_key=authenticator.public_key_b64,
            counter=counter,
            device_name="Portable de test",
        ))

    def execute(self, statement: str):
        with self.engine.begin() as conn:
            return conn.exec_driver_sql(statement)

    def scalar(self, statement: str):
        with self.engine.connect() as conn:
            return conn.exec_driver_sql(statement).scalar()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "inclass-test.db"


@pytest.fixture
def sync_engine(db_path):
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def seed(sync_engine):
    return Seeder(sync_engine)


@pytest.fixture
def session_maker(db_path, sync_engine):
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def challenge_store():
    return InMemoryChallengeStore(ttl_seconds=300)


@pytest.fixture
def hub():
    return NotificationHub()


@pytest.fixture
def authenticator():
    return SoftAuthenticator()


@pytest.fixture
def client(session_maker, challenge_store, hub):
    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_challenge_store] = lambda: challenge_store
    app.dependency_overrides[get_notification_hub] = lambda: hub
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(user: User) -> dict:
    token = create_access_token({"sub": str(user.id), "email": user.email, "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


def descriptor_at_distance(distance: float, length: int = 128) -> List[float]:
    """Descripteur à une distance euclidienne donnée de l'origine"""
    return [distance] + [0.0] * (length - 1)
