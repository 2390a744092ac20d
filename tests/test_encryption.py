"""
Tests du chiffrement AES-256-GCM des descripteurs faciaux
"""
import base64
import random

import pytest

from inclass.errors import DecryptionError
from inclass.services.encryption_service import (
    IV_LENGTH,
    SALT_LENGTH,
    TAG_LENGTH,
    EncryptionService,
)


@pytest.fixture
def service():
    return EncryptionService("secret-serveur")


def test_descriptor_round_trip_is_exact(service):
    rng = random.Random(7)
    descriptor = [rng.uniform(-0.5, 0.5) for _ in range(128)]
    assert service.decrypt_descriptor(service.encrypt_descriptor(descriptor)) == descriptor


def test_encrypting_twice_gives_different_blobs(service):
    descriptor = [0.1] * 128
    first = service.encrypt_descriptor(descriptor)
    second = service.encrypt_descriptor(descriptor)
    assert first != second

    raw_first, raw_second = base64.b64decode(first), base64.b64decode(second)
    assert raw_first[:SALT_LENGTH] != raw_second[:SALT_LENGTH]
    assert raw_first[SALT_LENGTH:SALT_LENGTH + IV_LENGTH] != raw_second[SALT_LENGTH:SALT_LENGTH + IV_LENGTH]


def test_blob_layout(service):
    plaintext = b"descripteur"
    raw = base64.b64decode(service.encrypt(plaintext))
    assert len(raw) == SALT_LENGTH + IV_LENGTH + TAG_LENGTH + len(plaintext)


def test_tampered_ciphertext_is_rejected(service):
    raw = bytearray(base64.b64decode(service.encrypt(b"donnees biometriques")))
    raw[-1] ^= 0x01
    with pytest.raises(DecryptionError):
        service.decrypt(base64.b64encode(bytes(raw)).decode())


def test_tampered_tag_is_rejected(service):
    raw = bytearray(base64.b64decode(service.encrypt(b"donnees biometriques")))
    raw[SALT_LENGTH + IV_LENGTH] ^= 0xFF
    with pytest.raises(DecryptionError):
        service.decrypt(base64.b64encode(bytes(raw)).decode())


def test_wrong_key_is_rejected(service):
    blob = service.encrypt(b"donnees biometriques")
    with pytest.raises(DecryptionError):
        EncryptionService("une-autre-cle").decrypt(blob)


@pytest.mark.parametrize("blob", ["pas du base64 !", base64.b64encode(b"court").decode()])
def test_malformed_blob_is_rejected(service, blob):
    with pytest.raises(DecryptionError):
        service.decrypt(blob)
