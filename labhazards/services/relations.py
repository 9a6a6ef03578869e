"""
Relation reconciler: applies declarative change lists to join tables.

A change list is a diff, not a replacement. ``ADD`` links a target if it is
not linked yet, ``REMOVE`` unlinks every matching join row, and a related
entity that no change mentions is left alone. The reconciler never commits;
it runs inside the owner's transaction so a failure anywhere aborts the
whole mutation.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Type

from sqlalchemy.orm import Session

from labhazards.errors import NotFoundError, ValidationError
from labhazards.models.organization import Chemical, Person, Room, Unit
from labhazards.services.validation import validate_against_schema

logger = logging.getLogger(__name__)


class ChangeStatus(str, enum.Enum):
    ADD = "New"
    REMOVE = "Deleted"


@dataclass(frozen=True)
class RelationChange:
    status: ChangeStatus
    name: str | None = None
    id: int | None = None
    sciper: int | None = None

    @classmethod
    def add(cls, **keys) -> RelationChange:
        return cls(status=ChangeStatus.ADD, **keys)

    @classmethod
    def remove(cls, **keys) -> RelationChange:
        return cls(status=ChangeStatus.REMOVE, **keys)

    def describe(self) -> str:
        for key in (self.sciper, self.name, self.id):
            if key is not None:
                return str(key)
        return "?"


def parse_changes(
    data: Iterable[dict[str, Any]] | None,
    schema: dict[str, Any],
    param: str,
) -> list[RelationChange]:
    """Validate a raw change list and drop the unchanged ``Default`` entries."""
    data = list(data or [])
    errors = validate_against_schema(data, schema)
    if errors:
        raise ValidationError([(param, error) for error in errors])
    return [
        RelationChange(
            status=ChangeStatus(item["status"]),
            name=item.get("name"),
            id=item.get("id"),
            sciper=item.get("sciper"),
        )
        for item in data
        if item["status"] != "Default"
    ]


# ---------------------------------------------------------------------------
# Target resolvers – map a change to the value stored in the join row
# ---------------------------------------------------------------------------

Resolver = Callable[[Session, RelationChange], Any]


def resolve_person(db: Session, change: RelationChange) -> int | None:
    person = db.query(Person).filter(Person.sciper == change.sciper).first()
    return person.id_person if person else None


def resolve_room(db: Session, change: RelationChange) -> int | None:
    query = db.query(Room)
    # A soft-deleted room may still be unlinked, never newly linked
    if change.status is ChangeStatus.ADD:
        query = query.filter(Room.is_deleted.is_(False))
    if change.name:
        room = query.filter(Room.name == change.name).first()
    elif change.id is not None:
        room = query.filter(Room.id == change.id).first()
    else:
        room = None
    return room.id if room else None


def resolve_unit(db: Session, change: RelationChange) -> int | None:
    if change.name:
        unit = db.query(Unit).filter(Unit.name == change.name).first()
    elif change.id is not None:
        unit = db.get(Unit, change.id)
    else:
        unit = None
    return unit.id if unit else None


def resolve_chemical(db: Session, change: RelationChange) -> int | None:
    chemical = db.query(Chemical).filter(Chemical.cas_auth_chem == change.name).first()
    return chemical.id_auth_chem if chemical else None


def resolve_text(db: Session, change: RelationChange) -> str | None:
    return change.name or None


@dataclass(frozen=True)
class JoinSpec:
    """Shape of one owner-to-target join table."""

    label: str
    join_model: Type[Any]
    owner_column: str
    target_column: str
    resolve: Resolver

    def matching(self, db: Session, owner_id: int, target: Any):
        return db.query(self.join_model).filter(
            getattr(self.join_model, self.owner_column) == owner_id,
            getattr(self.join_model, self.target_column) == target,
        )

    def delete_all(self, db: Session, owner_id: int) -> int:
        return (
            db.query(self.join_model)
            .filter(getattr(self.join_model, self.owner_column) == owner_id)
            .delete(synchronize_session=False)
        )

    def targets(self, db: Session, owner_id: int) -> list[Any]:
        column = getattr(self.join_model, self.target_column)
        rows = db.query(column).filter(
            getattr(self.join_model, self.owner_column) == owner_id
        )
        return [row[0] for row in rows]


def reconcile(
    db: Session,
    owner_id: int,
    join: JoinSpec,
    changes: Iterable[RelationChange],
) -> None:
    """
    Apply ``changes`` to the ``join`` table rows of ``owner_id``.

    Raises NotFoundError when an ADD names a target that does not exist.
    A REMOVE whose target cannot be found is skipped.
    """
    for change in changes:
        target = join.resolve(db, change)
        if change.status is ChangeStatus.ADD:
            if target is None:
                raise NotFoundError(f"{join.label} {change.describe()} not found")
            if join.matching(db, owner_id, target).first() is None:
                db.add(join.join_model(**{
                    join.owner_column: owner_id,
                    join.target_column: target,
                }))
                db.flush()
        elif change.status is ChangeStatus.REMOVE:
            if target is None:
                logger.info("Skipping removal of unknown %s %s", join.label, change.describe())
                continue
            join.matching(db, owner_id, target).delete(synchronize_session=False)
