"""
Dispensation lifecycle.

Dispensations move Draft/Pending -> Active -> Expired/Cancelled and never
back. The display code embeds the generated primary key, so creation is
two-phase: insert with a placeholder code, then rewrite it as DISP-<id> in
the same transaction. Each update picks at most one notification from the
status and renewal change.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from datetime import date, datetime
from typing import Any, Iterable

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from labhazards.config import settings
from labhazards.errors import NotFoundError, ValidationError
from labhazards.models.database import atomic
from labhazards.models.organization import Person, Room, Unit
from labhazards.models.permits import (
    Dispensation,
    DispensationHasHolder,
    DispensationHasRoom,
    DispensationHasTicket,
    DispensationHasUnit,
    DispensationStatus,
    DispensationSubject,
)
from labhazards.services import references
from labhazards.services.audit import log_action
from labhazards.services.callers import Caller, Capability
from labhazards.services.dates import Clock, at_noon
from labhazards.services.notifications import (
    Notification,
    NotificationKind,
    Notifier,
    notify_safely,
    select_dispensation_notification,
)
from labhazards.services.persons import Directory, emails_of, ensure_holders
from labhazards.services.relations import (
    JoinSpec,
    RelationChange,
    reconcile,
    resolve_person,
    resolve_room,
    resolve_text,
    resolve_unit,
)
from labhazards.services.snapshots import dispensation_snapshot

logger = logging.getLogger(__name__)

PLACEHOLDER_CODE = "DISP-NEW"

HOLDERS = JoinSpec("Holder", DispensationHasHolder, "id_dispensation", "id_person", resolve_person)
ROOMS = JoinSpec("Room", DispensationHasRoom, "id_dispensation", "id_lab", resolve_room)
UNITS = JoinSpec("Unit", DispensationHasUnit, "id_dispensation", "id_unit", resolve_unit)
TICKETS = JoinSpec("Ticket", DispensationHasTicket, "id_dispensation", "ticket_number", resolve_text)

_ALLOWED_TRANSITIONS = {
    DispensationStatus.DRAFT: {
        DispensationStatus.DRAFT, DispensationStatus.PENDING,
        DispensationStatus.ACTIVE, DispensationStatus.CANCELLED,
    },
    DispensationStatus.PENDING: {
        DispensationStatus.PENDING, DispensationStatus.ACTIVE, DispensationStatus.CANCELLED,
    },
    DispensationStatus.ACTIVE: {
        DispensationStatus.ACTIVE, DispensationStatus.EXPIRED, DispensationStatus.CANCELLED,
    },
    DispensationStatus.EXPIRED: {DispensationStatus.EXPIRED},
    DispensationStatus.CANCELLED: {DispensationStatus.CANCELLED},
}


def display_code(id_dispensation: int) -> str:
    return f"DISP-{id_dispensation}"


def check_transition(old: DispensationStatus, new: DispensationStatus) -> None:
    if new not in _ALLOWED_TRANSITIONS[old]:
        raise ValidationError([("status", f"cannot change from {old.value} to {new.value}")])


def _subject_id(db: Session, subject: str | None) -> int | None:
    if not subject:
        return None
    row = db.query(DispensationSubject).filter(DispensationSubject.subject == subject).first()
    if row is None:
        raise NotFoundError(f"Subject {subject} not found")
    return row.id_dispensation_subject


def decode_document(file_name: str, content_b64: str) -> bytes:
    """Check a document name and decode its base64 content."""
    if os.path.basename(file_name) != file_name or file_name in ("", ".", ".."):
        raise ValidationError([("file_name", "Invalid file name")])
    try:
        return base64.b64decode(content_b64, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError([("file", "Invalid base64 content")])


def document_path(id_dispensation: int, file_name: str) -> str:
    return os.path.join(settings.DISPENSATION_DOCUMENT_FOLDER, str(id_dispensation), file_name)


def write_document(path: str, content: bytes) -> None:
    """Store a document. Only called once the owning transaction has committed."""
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as fh:
        fh.write(content)


def _apply_relations(db, disp, holders, rooms, units, tickets) -> None:
    for join, changes in ((HOLDERS, holders), (ROOMS, rooms), (UNITS, units), (TICKETS, tickets)):
        reconcile(db, disp.id_dispensation, join, changes)


def _notify(
    db: Session,
    notifier: Notifier | None,
    kind: NotificationKind,
    disp: Dispensation,
    caller: Caller,
) -> None:
    recipients = emails_of(db, HOLDERS.targets(db, disp.id_dispensation))
    notify_safely(notifier, Notification(
        kind=kind,
        code=disp.dispensation,
        recipients=recipients,
        sender_name=caller.full_name or caller.username,
        sender_email=caller.email,
        detail={"status": disp.status.value, "date_end": disp.date_end, "renewals": disp.renewals},
    ))


def create_dispensation(
    db: Session,
    caller: Caller,
    *,
    subject: str | None = None,
    subject_other: str | None = None,
    requires: str | None = None,
    comment: str | None = None,
    status: DispensationStatus | str = DispensationStatus.DRAFT,
    date_start: date | datetime | None = None,
    date_end: date | datetime | None = None,
    holders: Iterable[RelationChange] = (),
    rooms: Iterable[RelationChange] = (),
    units: Iterable[RelationChange] = (),
    tickets: Iterable[RelationChange] = (),
    file_name: str | None = None,
    file_content: str | None = None,
    directory: Directory | None = None,
    notifier: Notifier | None = None,
    now: Clock = datetime.now,
) -> Dispensation:
    """Create a dispensation; an Active one notifies its holders."""
    caller.require(Capability.EDIT_DISPENSATIONS)
    status = DispensationStatus(status)
    if status not in (DispensationStatus.DRAFT, DispensationStatus.PENDING, DispensationStatus.ACTIVE):
        raise ValidationError([("status", f"cannot create a dispensation as {status.value}")])
    if not subject and not subject_other:
        raise ValidationError([("subject", "subject or subject_other is required")])
    holders = list(holders)
    document = decode_document(file_name, file_content) if file_name and file_content else None
    if directory is not None:
        ensure_holders(db, holders, directory)

    with atomic(db):
        stamp = now()
        disp = Dispensation(
            dispensation=PLACEHOLDER_CODE,
            status=status,
            id_dispensation_subject=_subject_id(db, subject),
            subject_other=subject_other,
            requires=requires,
            comment=comment,
            date_start=at_noon(date_start or stamp),
            date_end=at_noon(date_end) if date_end else None,
            renewals=0,
            created_by=caller.display_name,
            created_on=stamp,
            modified_by=caller.display_name,
            modified_on=stamp,
        )
        db.add(disp)
        db.flush()
        disp.dispensation = display_code(disp.id_dispensation)
        if document is not None:
            disp.file_path = document_path(disp.id_dispensation, file_name)
        db.flush()
        _apply_relations(db, disp, holders, rooms, units, tickets)
        log_action(
            db,
            actor=caller.username,
            action="CREATE",
            table_name=Dispensation.__tablename__,
            resource_id=disp.id_dispensation,
            after=dispensation_snapshot(disp),
        )

    if document is not None:
        write_document(disp.file_path, document)
    logger.info("Dispensation %s created as %s", disp.dispensation, status.value)
    if disp.status is DispensationStatus.ACTIVE:
        _notify(db, notifier, NotificationKind.NEW_DISPENSATION, disp, caller)
    return disp


_UNSET: Any = object()


def update_dispensation(
    db: Session,
    caller: Caller,
    ref: str,
    *,
    status: DispensationStatus | str | None = None,
    date_end: date | datetime | None = None,
    subject: str | None = None,
    subject_other: str | None = _UNSET,
    requires: str | None = _UNSET,
    comment: str | None = _UNSET,
    holders: Iterable[RelationChange] = (),
    rooms: Iterable[RelationChange] = (),
    units: Iterable[RelationChange] = (),
    tickets: Iterable[RelationChange] = (),
    file_name: str | None = None,
    file_content: str | None = None,
    directory: Directory | None = None,
    notifier: Notifier | None = None,
    now: Clock = datetime.now,
) -> tuple[Dispensation, NotificationKind | None]:
    """
    Edit the dispensation named by ``ref``.

    ``renewals`` increments when ``date_end`` moves to a later day. Returns
    the record and the notification kind that was sent, if any.
    """
    caller.require(Capability.EDIT_DISPENSATIONS)
    holders = list(holders)
    document = decode_document(file_name, file_content) if file_name and file_content else None
    if directory is not None:
        # no directory call or Person insert for a stale reference
        references.resolve(db, ref, Dispensation, dispensation_snapshot, "Dispensation")
        ensure_holders(db, holders, directory)

    with atomic(db):
        disp = references.resolve(db, ref, Dispensation, dispensation_snapshot, "Dispensation")
        before = dispensation_snapshot(disp)
        old_status, old_renewals = disp.status, disp.renewals

        new_status = DispensationStatus(status) if status is not None else old_status
        check_transition(old_status, new_status)

        if date_end is not None:
            new_end = at_noon(date_end)
            if disp.date_end is not None and new_end > at_noon(disp.date_end):
                disp.renewals = old_renewals + 1
            disp.date_end = new_end
        if disp.renewals > old_renewals:
            disp.date_expiry_notified = None

        disp.status = new_status
        if subject is not None:
            disp.id_dispensation_subject = _subject_id(db, subject)
        if subject_other is not _UNSET:
            disp.subject_other = subject_other
        if requires is not _UNSET:
            disp.requires = requires
        if comment is not _UNSET:
            disp.comment = comment
        if document is not None:
            disp.file_path = document_path(disp.id_dispensation, file_name)
        disp.modified_by = caller.display_name
        disp.modified_on = now()
        db.flush()

        _apply_relations(db, disp, holders, rooms, units, tickets)
        log_action(
            db,
            actor=caller.username,
            action="UPDATE",
            table_name=Dispensation.__tablename__,
            resource_id=disp.id_dispensation,
            before=before,
            after=dispensation_snapshot(disp),
        )
        new_renewals = disp.renewals

    if document is not None:
        write_document(disp.file_path, document)
    kind = select_dispensation_notification(old_status, new_status, old_renewals, new_renewals)
    if kind is not None:
        _notify(db, notifier, kind, disp, caller)
    return disp, kind


def expire_dispensation(
    db: Session,
    disp: Dispensation,
    caller: Caller,
    now: Clock = datetime.now,
) -> Dispensation:
    """Mark ``disp`` Expired. Runs inside the caller's transaction."""
    before = dispensation_snapshot(disp)
    disp.status = DispensationStatus.EXPIRED
    disp.modified_by = caller.display_name
    disp.modified_on = now()
    db.flush()
    log_action(
        db,
        actor=caller.username,
        action="UPDATE",
        table_name=Dispensation.__tablename__,
        resource_id=disp.id_dispensation,
        before=before,
        after=dispensation_snapshot(disp),
    )
    logger.info("Dispensation %s expired", disp.dispensation)
    return disp


def mark_dispensation_notified(db: Session, disp: Dispensation, now: Clock = datetime.now) -> None:
    disp.date_expiry_notified = now()
    db.flush()


def delete_dispensation(db: Session, caller: Caller, ref: str) -> None:
    caller.require(Capability.EDIT_DISPENSATIONS)
    with atomic(db):
        disp = references.resolve(db, ref, Dispensation, dispensation_snapshot, "Dispensation")
        before = dispensation_snapshot(disp)
        code = disp.dispensation
        for join in (ROOMS, HOLDERS, TICKETS, UNITS):
            join.delete_all(db, disp.id_dispensation)
        db.delete(disp)
        db.flush()
        log_action(
            db,
            actor=caller.username,
            action="DELETE",
            table_name=Dispensation.__tablename__,
            resource_id=before["id"],
            before=before,
        )
    logger.info("Dispensation %s deleted", code)


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------

def list_dispensations(
    db: Session,
    *,
    unit: str | None = None,
    code: str | None = None,
    status: str | None = None,
    room: str | None = None,
    holder: str | None = None,
    subject: str | None = None,
    ticket: str | None = None,
    skip: int = 0,
    take: int = 20,
) -> tuple[list[Dispensation], int]:
    """Search dispensations, newest first; ``take == 0`` returns every match."""
    query = db.query(Dispensation)
    if code:
        number = code.split("-")[-1]
        query = query.filter(Dispensation.id_dispensation == (int(number) if number.isdigit() else -1))
    if status:
        query = query.filter(Dispensation.status == DispensationStatus(status))
    if room:
        query = query.filter(Dispensation.id_dispensation.in_(
            select(DispensationHasRoom.id_dispensation)
            .join(Room, Room.id == DispensationHasRoom.id_lab)
            .where(Room.name.contains(room))
        ))
    if unit:
        query = query.filter(Dispensation.id_dispensation.in_(
            select(DispensationHasUnit.id_dispensation)
            .join(Unit, Unit.id == DispensationHasUnit.id_unit)
            .where(Unit.name.contains(unit))
        ))
    if holder:
        matches = [Person.name.contains(holder), Person.surname.contains(holder), Person.email.contains(holder)]
        if holder.isdigit():
            matches.append(Person.sciper == int(holder))
        query = query.filter(Dispensation.id_dispensation.in_(
            select(DispensationHasHolder.id_dispensation)
            .join(Person, Person.id_person == DispensationHasHolder.id_person)
            .where(or_(*matches))
        ))
    if subject:
        query = query.filter(or_(
            Dispensation.id_dispensation_subject.in_(
                select(DispensationSubject.id_dispensation_subject)
                .where(DispensationSubject.subject.contains(subject))
            ),
            Dispensation.subject_other.contains(subject),
        ))
    if ticket:
        query = query.filter(Dispensation.id_dispensation.in_(
            select(DispensationHasTicket.id_dispensation)
            .where(DispensationHasTicket.ticket_number.contains(ticket))
        ))

    query = query.order_by(Dispensation.id_dispensation.desc())
    total = query.count()
    if take:
        query = query.offset(skip).limit(take)
    return query.all(), total


def describe_dispensation(db: Session, disp: Dispensation) -> dict[str, Any]:
    """Client-facing view of ``disp`` carrying a freshly minted reference."""
    subject = (
        db.get(DispensationSubject, disp.id_dispensation_subject)
        if disp.id_dispensation_subject else None
    )
    holders = (
        db.query(Person)
        .filter(Person.id_person.in_(HOLDERS.targets(db, disp.id_dispensation)))
        .order_by(Person.sciper)
        .all()
    )
    rooms = db.query(Room).filter(Room.id.in_(ROOMS.targets(db, disp.id_dispensation))).order_by(Room.name).all()
    units = db.query(Unit).filter(Unit.id.in_(UNITS.targets(db, disp.id_dispensation))).order_by(Unit.name).all()
    return {
        "id": references.mint(disp.id_dispensation, dispensation_snapshot(disp)),
        "dispensation": disp.dispensation,
        "status": disp.status.value,
        "subject": subject.subject if subject else None,
        "subject_other": disp.subject_other,
        "requires": disp.requires,
        "comment": disp.comment,
        "date_start": disp.date_start,
        "date_end": disp.date_end,
        "renewals": disp.renewals,
        "file_path": disp.file_path,
        "created_by": disp.created_by,
        "created_on": disp.created_on,
        "modified_by": disp.modified_by,
        "modified_on": disp.modified_on,
        "holders": [
            {"sciper": p.sciper, "name": p.name, "surname": p.surname, "email": p.email}
            for p in holders
        ],
        "rooms": [r.name for r in rooms],
        "units": [u.name for u in units],
        "tickets": sorted(TICKETS.targets(db, disp.id_dispensation)),
    }
