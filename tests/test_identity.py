"""Tests for opaque content-bound references and their transport codec."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from labhazards.errors import DecodeError, NotFoundError, StaleReferenceError, ValidationError
from labhazards.models.organization import Room
from labhazards.services import identity, references
from labhazards.services.encryption import EncryptionService
from labhazards.services.identity import OpaqueRef
from labhazards.services.snapshots import room_snapshot


def test_unchanged_record_resolves(db, seeded):
    room = seeded["room"]
    ref = references.mint(room.id, room_snapshot(room))

    assert references.resolve(db, ref, Room, room_snapshot, "Room") is room


def test_changed_record_is_stale(db, seeded):
    room = seeded["room"]
    ref = references.mint(room.id, room_snapshot(room))
    room.name = "CH A2 435"
    db.commit()

    with pytest.raises(StaleReferenceError, match="Room has been changed from another user"):
        references.resolve(db, ref, Room, room_snapshot, "Room")


def test_deleted_record_is_not_found(db, seeded):
    room = seeded["other_room"]
    ref = references.mint(room.id, room_snapshot(room))
    db.delete(room)
    db.commit()

    with pytest.raises(NotFoundError, match="Room not found."):
        references.resolve(db, ref, Room, room_snapshot, "Room")


def test_every_mint_is_different_but_resolves_to_same_id(seeded):
    room = seeded["room"]
    first = references.mint(room.id, room_snapshot(room))
    second = references.mint(room.id, room_snapshot(room))

    assert first != second
    assert identity.unpack(references.decode(first)) == identity.unpack(references.decode(second)) == room.id


def test_canonical_form_ignores_key_order_and_timezone():
    naive = datetime(2026, 10, 19, 12, 0)
    aware = naive.replace(tzinfo=timezone(timedelta(hours=2)))

    assert identity.canonical_json({"b": 1, "a": naive}) == identity.canonical_json({"a": aware, "b": 1})
    assert identity.canonical_json({"a": naive}) == '{"a":"2026-10-19T12:00:00"}'


def test_transported_salt_must_match_encrypted_salt():
    ref = identity.sign(7, {"id": 7})
    forged = OpaqueRef(salt="0" * 32, eph_id=ref.eph_id)

    assert identity.unpack(ref) == 7
    with pytest.raises(DecodeError):
        identity.unpack(forged)


def test_tampered_signature_is_stale(db, seeded):
    room = seeded["room"]
    ref = identity.sign(room.id, room_snapshot(room))
    ciphertext, _, _ = ref.eph_id.rpartition("-")
    tampered = OpaqueRef(salt=ref.salt, eph_id=f"{ciphertext}-{'0' * 64}")

    with pytest.raises(StaleReferenceError):
        identity.verify(db, tampered, Room, room_snapshot, "Room")


def test_reference_from_another_key_cannot_be_decrypted():
    other = EncryptionService(b"YWJjZGVmZ2hpamtsbW5vcHFyc3R1dnd4eXoxMjM0NTY=")
    ref = identity.sign(3, {"id": 3}, service=other)

    with pytest.raises(DecodeError):
        identity.unpack(ref)


def test_decode_reports_both_bad_members():
    raw = json.dumps({"salt": "XYZ", "eph_id": "no signature"})

    with pytest.raises(ValidationError) as exc_info:
        references.decode(raw)
    assert [param for param, _ in exc_info.value.problems] == ["id.salt", "id.eph_id"]


@pytest.mark.parametrize("raw", [None, "", "not json", "[1, 2]"])
def test_decode_rejects_malformed_transport(raw):
    with pytest.raises(ValidationError):
        references.decode(raw)


def test_minted_reference_matches_transport_patterns(seeded):
    room = seeded["room"]
    data = json.loads(references.mint(room.id, room_snapshot(room)))

    assert set(data) == {"salt", "eph_id"}
    assert references.SALT_RE.match(data["salt"])
    assert references.EPH_ID_RE.match(data["eph_id"])
