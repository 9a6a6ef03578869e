"""
Content-hash identity: opaque references bound to a record's content.

A reference is minted every time a record is exposed to a client. It holds
the encrypted internal id and a keyed hash of the record as it was read.
Before any mutation the hash is recomputed over the stored record; if the
record changed in between, the reference is stale and the write is refused.
This stands in for a version column.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Type

from sqlalchemy.orm import Session

from labhazards.errors import DecodeError, NotFoundError, StaleReferenceError
from labhazards.services.encryption import EncryptionService, generate_salt

logger = logging.getLogger(__name__)

encryption = EncryptionService()


@dataclass(frozen=True)
class OpaqueRef:
    salt: str
    eph_id: str


def json_value(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, datetime):
        return value.replace(tzinfo=None).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value


def canonical_json(snapshot: dict[str, Any]) -> str:
    """
    Stable string form of a record snapshot.

    Keys are sorted and datetimes rendered as naive ISO-8601, so the same
    stored values always produce the same string regardless of dict order
    or driver timezone handling.
    """
    normalized = {key: json_value(value) for key, value in snapshot.items()}
    return json.dumps(normalized, sort_keys=True, separators=(",", ":"))


def sign(internal_id: int, snapshot: dict[str, Any], service: EncryptionService | None = None) -> OpaqueRef:
    """Mint a fresh reference for ``internal_id`` bound to ``snapshot``."""
    service = service or encryption
    salt = generate_salt()
    eph_id = (
        service.encrypt(f"{salt}:{internal_id}")
        + "-"
        + service.sign(canonical_json(snapshot), salt)
    )
    return OpaqueRef(salt=salt, eph_id=eph_id)


def _split(ref: OpaqueRef) -> tuple[str, str]:
    # Fernet tokens may contain '-', the hex signature never does
    ciphertext, sep, signature = ref.eph_id.rpartition("-")
    if not sep or not ciphertext or not signature:
        raise DecodeError("Malformed reference")
    return ciphertext, signature


def unpack(ref: OpaqueRef, service: EncryptionService | None = None) -> int:
    """Recover the internal id without checking the content signature."""
    service = service or encryption
    ciphertext, _ = _split(ref)
    decrypted = service.decrypt(ciphertext)
    salt, sep, raw_id = decrypted.partition(":")
    if not sep or salt != ref.salt:
        raise DecodeError("Bad decrypted request")
    try:
        return int(raw_id)
    except ValueError as exc:
        raise DecodeError("Bad decrypted request") from exc


def verify(
    db: Session,
    ref: OpaqueRef,
    model: Type[Any],
    snapshot_fn: Callable[[Any], dict[str, Any]],
    label: str,
    service: EncryptionService | None = None,
):
    """
    Resolve ``ref`` to the stored record, refusing stale references.

    Raises DecodeError, NotFoundError or StaleReferenceError.
    """
    service = service or encryption
    internal_id = unpack(ref, service)
    _, signature = _split(ref)
    record = db.get(model, internal_id)
    if record is None:
        raise NotFoundError(f"{label} not found.")
    if not service.verify(canonical_json(snapshot_fn(record)), ref.salt, signature):
        logger.info("Stale reference for %s %s", label, internal_id)
        raise StaleReferenceError(
            f"{label} has been changed from another user. "
            "Please reload the page to make modifications"
        )
    return record
