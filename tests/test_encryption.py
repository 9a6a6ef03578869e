"""Tests for the reference encryption and signing service."""

import pytest

from labhazards.errors import DecodeError
from labhazards.services.encryption import EncryptionService, generate_salt


def test_encrypt_decrypt_roundtrip():
    svc = EncryptionService()
    salt = generate_salt()
    encrypted = svc.encrypt(f"{salt}:42")

    assert "42" not in encrypted  # not stored in plaintext
    assert svc.decrypt(encrypted) == f"{salt}:42"


def test_garbage_token_is_a_decode_error():
    svc = EncryptionService()
    with pytest.raises(DecodeError, match="Bad decrypted request"):
        svc.decrypt("not-a-fernet-token")


def test_signature_depends_on_message_and_salt():
    svc = EncryptionService()
    signature = svc.sign('{"id":1}', "a" * 32)

    assert len(signature) == 64
    assert svc.verify('{"id":1}', "a" * 32, signature)
    assert not svc.verify('{"id":2}', "a" * 32, signature)
    assert not svc.verify('{"id":1}', "b" * 32, signature)


def test_salts_are_fresh_hex():
    salts = {generate_salt() for _ in range(20)}
    assert len(salts) == 20
    assert all(len(s) == 32 and int(s, 16) >= 0 for s in salts)
