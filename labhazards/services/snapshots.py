"""
Field-by-field snapshots of records.

A snapshot is what gets hashed into an opaque reference and what audit
diffs compare. Changing the field list of a snapshot invalidates every
reference minted before the change.
"""

from __future__ import annotations

from typing import Any

from labhazards.models.organization import Room, Unit
from labhazards.models.permits import Authorization, Dispensation


def authorization_snapshot(auth: Authorization) -> dict[str, Any]:
    return {
        "id": auth.id_authorization,
        "authorization": auth.authorization,
        "id_unit": auth.id_unit,
        "expiration_date": auth.expiration_date,
        "status": auth.status,
        "creation_date": auth.creation_date,
        "renewals": auth.renewals,
        "type": auth.type,
        "authority": auth.authority,
        "date_expiry_notified": auth.date_expiry_notified,
    }


def dispensation_snapshot(disp: Dispensation) -> dict[str, Any]:
    return {
        "id": disp.id_dispensation,
        "renewals": disp.renewals,
        "id_dispensation_subject": disp.id_dispensation_subject,
        "subject_other": disp.subject_other,
        "date_expiry_notified": disp.date_expiry_notified,
        "requires": disp.requires,
        "comment": disp.comment,
        "status": disp.status,
        "date_start": disp.date_start,
        "date_end": disp.date_end,
        "file_path": disp.file_path,
        "created_by": disp.created_by,
        "created_on": disp.created_on,
        "modified_by": disp.modified_by,
        "modified_on": disp.modified_on,
    }


def unit_snapshot(unit: Unit) -> dict[str, Any]:
    return {"id": unit.id, "name": unit.name, "parent_id": unit.parent_id}


def room_snapshot(room: Room) -> dict[str, Any]:
    return {"id": room.id, "name": room.name, "is_deleted": room.is_deleted}

