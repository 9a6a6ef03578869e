"""
Transport codec for opaque references.

On the wire a reference is the JSON object ``{"salt": ..., "eph_id": ...}``.
Both members are checked against their character sets before any
decryption or database access happens.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable, Type

from sqlalchemy.orm import Session

from labhazards.errors import ValidationError
from labhazards.services import identity
from labhazards.services.identity import OpaqueRef

SALT_RE = re.compile(r"^[0-9a-f]{32}$")
EPH_ID_RE = re.compile(r"^[A-Za-z0-9_=-]+-[0-9a-f]{64}$")


def encode(ref: OpaqueRef) -> str:
    return json.dumps({"salt": ref.salt, "eph_id": ref.eph_id})


def decode(raw: str | None, param: str = "id") -> OpaqueRef:
    """Parse and shape-check a transported reference. Raises ValidationError."""
    if not raw:
        raise ValidationError([(param, "is required")])
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        raise ValidationError([(param, "is not a valid reference")])
    if not isinstance(data, dict):
        raise ValidationError([(param, "is not a valid reference")])

    salt, eph_id = data.get("salt"), data.get("eph_id")
    problems = []
    if not isinstance(salt, str) or not SALT_RE.match(salt):
        problems.append((f"{param}.salt", "Failed Regex match"))
    if not isinstance(eph_id, str) or not EPH_ID_RE.match(eph_id):
        problems.append((f"{param}.eph_id", "Failed Regex match"))
    if problems:
        raise ValidationError(problems)
    return OpaqueRef(salt=salt, eph_id=eph_id)


def mint(internal_id: int, snapshot: dict[str, Any]) -> str:
    """Sign a record snapshot and return its transport string."""
    return encode(identity.sign(internal_id, snapshot))


def resolve(
    db: Session,
    raw: str | None,
    model: Type[Any],
    snapshot_fn: Callable[[Any], dict[str, Any]],
    label: str,
):
    """Decode ``raw`` and return the unchanged record it names."""
    return identity.verify(db, decode(raw), model, snapshot_fn, label)

