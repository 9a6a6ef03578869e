"""Unit tree maintenance and room/unit lookups."""

from __future__ import annotations

import logging
from collections import defaultdict

from sqlalchemy import select
from sqlalchemy.orm import Session

from labhazards.errors import ConflictError
from labhazards.models.database import atomic
from labhazards.models.organization import (
    Person,
    Room,
    Unit,
    UnitHasCosec,
    UnitHasProfessor,
    UnitHasRoom,
)
from labhazards.models.permits import Authorization, DispensationHasUnit
from labhazards.services import references
from labhazards.services.audit import log_action
from labhazards.services.callers import Caller, Capability
from labhazards.services.snapshots import unit_snapshot

logger = logging.getLogger(__name__)


def subtree_post_order(db: Session, root: Unit) -> list[Unit]:
    """Every unit under ``root``, children before their parent, ``root`` last."""
    children: dict[int | None, list[Unit]] = defaultdict(list)
    for unit in db.query(Unit).order_by(Unit.id).all():
        children[unit.parent_id].append(unit)

    ordered: list[Unit] = []
    seen: set[int] = set()
    stack: list[tuple[Unit, bool]] = [(root, False)]
    while stack:
        unit, expanded = stack.pop()
        if expanded:
            ordered.append(unit)
            continue
        if unit.id in seen:
            continue
        seen.add(unit.id)
        stack.append((unit, True))
        for child in reversed(children[unit.id]):
            stack.append((child, False))
    return ordered


def delete_unit_cascade(db: Session, caller: Caller, ref: str) -> list[str]:
    """
    Delete the referenced unit and its whole subtree.

    Raises ConflictError, deleting nothing, when any unit of the subtree
    still owns authorizations. Returns the deleted unit names in deletion
    order.
    """
    caller.require(Capability.EDIT_UNITS)
    with atomic(db):
        root = references.resolve(db, ref, Unit, unit_snapshot, "Unit")
        units = subtree_post_order(db, root)
        ids = [unit.id for unit in units]

        owners = (
            db.query(Authorization.authorization)
            .filter(Authorization.id_unit.in_(ids))
            .order_by(Authorization.authorization)
            .all()
        )
        if owners:
            raise ConflictError(
                "Unit still owns authorizations: " + ", ".join(code for (code,) in owners)
            )

        deleted = []
        for unit in units:
            before = unit_snapshot(unit)
            for join_model in (UnitHasRoom, UnitHasCosec, UnitHasProfessor, DispensationHasUnit):
                db.query(join_model).filter(join_model.id_unit == unit.id).delete(
                    synchronize_session=False
                )
            db.delete(unit)
            db.flush()
            log_action(
                db,
                actor=caller.username,
                action="DELETE",
                table_name=Unit.__tablename__,
                resource_id=before["id"],
                before=before,
            )
            deleted.append(before["name"])
    logger.info("Deleted unit %s and %d descendants", deleted[-1], len(deleted) - 1)
    return deleted


def list_units(db: Session, caller: Caller, name: str | None = None) -> list[Unit]:
    caller.require(Capability.LIST_UNITS)
    query = db.query(Unit)
    if name:
        query = query.filter(Unit.name.contains(name))
    return query.order_by(Unit.name).all()


def list_rooms(db: Session, caller: Caller, name: str | None = None) -> list[Room]:
    caller.require(Capability.LIST_ROOMS)
    query = db.query(Room).filter(Room.is_deleted.is_(False))
    if name:
        query = query.filter(Room.name.contains(name))
    return query.order_by(Room.name).all()


def list_labs_and_units(
    db: Session,
    caller: Caller,
    unit: str | None = None,
    room: str | None = None,
) -> list[dict]:
    """One ``{id_lab, id_unit, lab_display}`` row per room/unit link."""
    caller.require(Capability.LIST_ROOMS)
    query = (
        db.query(Room.id, Room.name, Unit.id)
        .join(UnitHasRoom, UnitHasRoom.id_lab == Room.id)
        .join(Unit, Unit.id == UnitHasRoom.id_unit)
        .filter(Room.is_deleted.is_(False))
    )
    if unit:
        query = query.filter(Unit.name.contains(unit))
    if room:
        query = query.filter(Room.name.contains(room))
    return [
        {"id_lab": id_lab, "id_unit": id_unit, "lab_display": name}
        for id_lab, name, id_unit in query.order_by(Room.name, Unit.id).all()
    ]


def _scipers(db: Session, join_model, unit_id: int) -> str:
    rows = (
        db.query(Person.sciper)
        .join(join_model, join_model.id_person == Person.id_person)
        .filter(join_model.id_unit == unit_id)
        .order_by(Person.sciper)
        .all()
    )
    return ",".join(str(sciper) for (sciper,) in rows)


def list_profs_and_cosecs(db: Session, caller: Caller, unit: str | None = None) -> list[dict]:
    """
    Professors and COSECs of every unit that has at least one room.

    Scipers are comma-joined, one ``{unit, id_unit, sciper, sciper_cosec}``
    row per unit.
    """
    caller.require(Capability.LIST_UNITS)
    query = db.query(Unit).filter(Unit.id.in_(select(UnitHasRoom.id_unit)))
    if unit:
        query = query.filter(Unit.name.contains(unit))
    return [
        {
            "unit": u.name,
            "id_unit": u.id,
            "sciper": _scipers(db, UnitHasProfessor, u.id),
            "sciper_cosec": _scipers(db, UnitHasCosec, u.id),
        }
        for u in query.order_by(Unit.name).all()
    ]
