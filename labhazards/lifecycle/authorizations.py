"""
Chemical authorization lifecycle.

Authorizations are created Active with zero renewals, renewed or edited
through ``update_authorization`` / ``renew_authorization``, moved to Expired
only by the expiry job, and deleted together with their four child joins.
Every multi-table write runs in a single transaction.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Iterable

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from labhazards.errors import ConflictError, NotFoundError, ValidationError
from labhazards.models.database import atomic
from labhazards.models.organization import Chemical, Person, Room, Unit
from labhazards.models.permits import (
    Authorization,
    AuthorizationHasChemical,
    AuthorizationHasHolder,
    AuthorizationHasRadiation,
    AuthorizationHasRoom,
    AuthorizationStatus,
)
from labhazards.services import references
from labhazards.services.audit import log_action
from labhazards.services.callers import Caller, Capability
from labhazards.services.dates import Clock, at_noon
from labhazards.services.persons import Directory, ensure_holders
from labhazards.services.relations import (
    JoinSpec,
    RelationChange,
    reconcile,
    resolve_chemical,
    resolve_person,
    resolve_room,
    resolve_text,
)
from labhazards.services.snapshots import authorization_snapshot

logger = logging.getLogger(__name__)

CHEMICAL = "Chemical"

HOLDERS = JoinSpec("Holder", AuthorizationHasHolder, "id_authorization", "id_person", resolve_person)
ROOMS = JoinSpec("Room", AuthorizationHasRoom, "id_authorization", "id_lab", resolve_room)
CHEMICALS = JoinSpec("CAS", AuthorizationHasChemical, "id_authorization", "id_chemical", resolve_chemical)
RADIATIONS = JoinSpec("Radiation source", AuthorizationHasRadiation, "id_authorization", "source", resolve_text)


def _apply_relations(
    db: Session,
    auth: Authorization,
    holders: Iterable[RelationChange],
    rooms: Iterable[RelationChange],
    cas: Iterable[RelationChange],
    radiations: Iterable[RelationChange],
) -> None:
    for join, changes in ((HOLDERS, holders), (ROOMS, rooms), (CHEMICALS, cas), (RADIATIONS, radiations)):
        reconcile(db, auth.id_authorization, join, changes)


def _find_by_code(db: Session, type_: str, code: str) -> Authorization | None:
    return (
        db.query(Authorization)
        .filter(Authorization.type == type_, Authorization.authorization == code)
        .first()
    )


def _already_created(existing: Authorization, unit_id: int) -> Authorization:
    # Same code and same unit: a retried submission, report success
    if existing.id_unit != unit_id:
        raise ConflictError(
            f"Authorization {existing.authorization} already exists for another unit"
        )
    logger.info("Authorization %s already exists, treating create as retry", existing.authorization)
    return existing


def create_authorization(
    db: Session,
    caller: Caller,
    *,
    unit_id: int,
    code: str,
    expiration_date: date | datetime,
    holders: Iterable[RelationChange] = (),
    rooms: Iterable[RelationChange] = (),
    cas: Iterable[RelationChange] = (),
    radiations: Iterable[RelationChange] = (),
    creation_date: date | datetime | None = None,
    authority: str | None = None,
    type_: str = CHEMICAL,
    directory: Directory | None = None,
    now: Clock = datetime.now,
) -> Authorization:
    """
    Create an Active authorization with its holders, rooms and chemicals.

    Unknown rooms or CAS codes raise NotFoundError and nothing is written.
    Re-submitting an existing code for the same unit returns the stored
    record instead of failing.
    """
    caller.require(Capability.EDIT_AUTHORIZATIONS)
    holders, rooms, cas, radiations = list(holders), list(rooms), list(cas), list(radiations)
    if db.get(Unit, unit_id) is None:
        raise NotFoundError(f"Unit {unit_id} not found")
    if directory is not None:
        ensure_holders(db, holders, directory)

    try:
        with atomic(db):
            existing = _find_by_code(db, type_, code)
            if existing is not None:
                return _already_created(existing, unit_id)
            auth = Authorization(
                authorization=code,
                status=AuthorizationStatus.ACTIVE,
                type=type_,
                creation_date=at_noon(creation_date or now()),
                expiration_date=at_noon(expiration_date),
                renewals=0,
                authority=authority,
                id_unit=unit_id,
            )
            db.add(auth)
            db.flush()
            _apply_relations(db, auth, holders, rooms, cas, radiations)
            log_action(
                db,
                actor=caller.username,
                action="CREATE",
                table_name=Authorization.__tablename__,
                resource_id=auth.id_authorization,
                after=authorization_snapshot(auth),
            )
    except IntegrityError:
        existing = _find_by_code(db, type_, code)
        if existing is None:
            raise
        return _already_created(existing, unit_id)

    logger.info("Authorization %s created", code)
    return auth


def _apply_update(
    db: Session,
    caller: Caller,
    auth: Authorization,
    *,
    expiration_date: date | datetime,
    status: AuthorizationStatus | str | None,
    renewals: int | None,
    authority: str | None,
    unit_id: int | None,
    holders: Iterable[RelationChange],
    rooms: Iterable[RelationChange],
    cas: Iterable[RelationChange],
    radiations: Iterable[RelationChange],
) -> Authorization:
    before = authorization_snapshot(auth)
    if status is not None:
        status = AuthorizationStatus(status)
        if status is AuthorizationStatus.EXPIRED and auth.status is not AuthorizationStatus.EXPIRED:
            raise ValidationError([("status", "Expired is set by the expiry job only")])

    new_expiration = at_noon(expiration_date)
    if renewals is None:
        renewed = new_expiration > at_noon(auth.expiration_date)
        renewals = auth.renewals + 1 if renewed else auth.renewals
    elif renewals < auth.renewals:
        logger.warning(
            "Ignoring renewals=%d for %s, already at %d",
            renewals, auth.authorization, auth.renewals,
        )
        renewals = auth.renewals

    if renewals > auth.renewals:
        # a renewal restarts the expiry reminder clock
        auth.date_expiry_notified = None
    auth.renewals = renewals
    auth.expiration_date = new_expiration
    if status is not None:
        auth.status = status
    if authority is not None:
        auth.authority = authority
    if unit_id is not None:
        if db.get(Unit, unit_id) is None:
            raise NotFoundError(f"Unit {unit_id} not found")
        auth.id_unit = unit_id
    db.flush()

    _apply_relations(db, auth, holders, rooms, cas, radiations)
    log_action(
        db,
        actor=caller.username,
        action="UPDATE",
        table_name=Authorization.__tablename__,
        resource_id=auth.id_authorization,
        before=before,
        after=authorization_snapshot(auth),
    )
    if renewals > before["renewals"]:
        logger.info("Authorization %s renewed (%d renewals)", auth.authorization, renewals)
    return auth


def update_authorization(
    db: Session,
    caller: Caller,
    ref: str,
    *,
    expiration_date: date | datetime,
    status: AuthorizationStatus | str | None = None,
    renewals: int | None = None,
    authority: str | None = None,
    unit_id: int | None = None,
    holders: Iterable[RelationChange] = (),
    rooms: Iterable[RelationChange] = (),
    cas: Iterable[RelationChange] = (),
    radiations: Iterable[RelationChange] = (),
    directory: Directory | None = None,
) -> Authorization:
    """
    Edit the authorization named by the opaque reference ``ref``.

    Raises StaleReferenceError when the record changed since ``ref`` was
    minted. ``renewals`` overrides the computed counter.
    """
    caller.require(Capability.EDIT_AUTHORIZATIONS)
    holders = list(holders)
    if directory is not None:
        # no directory call or Person insert for a stale reference
        references.resolve(db, ref, Authorization, authorization_snapshot, "Authorization")
        ensure_holders(db, holders, directory)
    with atomic(db):
        auth = references.resolve(db, ref, Authorization, authorization_snapshot, "Authorization")
        _apply_update(
            db, caller, auth,
            expiration_date=expiration_date, status=status, renewals=renewals,
            authority=authority, unit_id=unit_id,
            holders=holders, rooms=rooms, cas=cas, radiations=radiations,
        )
    return auth


def renew_authorization(
    db: Session,
    caller: Caller,
    code: str,
    *,
    expiration_date: date | datetime,
    renewals: int | None = None,
    type_: str = CHEMICAL,
) -> Authorization:
    """Renew by display code, for partner systems that never saw a reference."""
    caller.require(Capability.EDIT_AUTHORIZATIONS)
    with atomic(db):
        auth = get_authorization_by_code(db, code, type_)
        _apply_update(
            db, caller, auth,
            expiration_date=expiration_date, status=AuthorizationStatus.ACTIVE,
            renewals=renewals, authority=None, unit_id=None,
            holders=(), rooms=(), cas=(), radiations=(),
        )
    return auth


def expire_authorization(db: Session, auth: Authorization, caller: Caller) -> Authorization:
    """Mark ``auth`` Expired. Runs inside the caller's transaction."""
    before = authorization_snapshot(auth)
    auth.status = AuthorizationStatus.EXPIRED
    db.flush()
    log_action(
        db,
        actor=caller.username,
        action="UPDATE",
        table_name=Authorization.__tablename__,
        resource_id=auth.id_authorization,
        before=before,
        after=authorization_snapshot(auth),
    )
    logger.info("Authorization %s expired", auth.authorization)
    return auth


def mark_authorization_notified(db: Session, auth: Authorization, now: Clock = datetime.now) -> None:
    auth.date_expiry_notified = now()
    db.flush()


def delete_authorization(db: Session, caller: Caller, ref: str) -> None:
    """Delete the referenced authorization and every child link."""
    caller.require(Capability.EDIT_AUTHORIZATIONS)
    with atomic(db):
        auth = references.resolve(db, ref, Authorization, authorization_snapshot, "Authorization")
        before = authorization_snapshot(auth)
        for join in (HOLDERS, ROOMS, CHEMICALS, RADIATIONS):
            join.delete_all(db, auth.id_authorization)
        db.delete(auth)
        db.flush()
        log_action(
            db,
            actor=caller.username,
            action="DELETE",
            table_name=Authorization.__tablename__,
            resource_id=before["id"],
            before=before,
        )
    logger.info("Authorization %s deleted", before["authorization"])


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------

def get_authorization_by_code(db: Session, code: str, type_: str = CHEMICAL) -> Authorization:
    matches = (
        db.query(Authorization)
        .filter(Authorization.type == type_, Authorization.authorization == code)
        .all()
    )
    if not matches:
        raise NotFoundError(f"No authorization found: {code}")
    if len(matches) > 1:
        raise ConflictError(
            "More than one authorization found: "
            + ", ".join(a.authorization for a in matches)
        )
    return matches[0]


def list_authorizations(
    db: Session,
    *,
    type_: str = CHEMICAL,
    unit: str | None = None,
    code: str | None = None,
    status: str | None = None,
    room: str | None = None,
    holder: str | None = None,
    cas: str | None = None,
    source: str | None = None,
    skip: int = 0,
    take: int = 20,
) -> tuple[list[Authorization], int]:
    """Search authorizations; ``take == 0`` returns every match."""
    query = db.query(Authorization).filter(Authorization.type == type_)
    if unit:
        query = query.filter(Authorization.id_unit.in_(
            select(Unit.id).where(Unit.name.contains(unit))
        ))
    if code:
        query = query.filter(Authorization.authorization.contains(code))
    if status:
        query = query.filter(Authorization.status == AuthorizationStatus(status))
    if room:
        query = query.filter(Authorization.id_authorization.in_(
            select(AuthorizationHasRoom.id_authorization)
            .join(Room, Room.id == AuthorizationHasRoom.id_lab)
            .where(Room.name.contains(room))
        ))
    if holder:
        matches = [Person.name.contains(holder), Person.surname.contains(holder), Person.email.contains(holder)]
        if holder.isdigit():
            matches.append(Person.sciper == int(holder))
        query = query.filter(Authorization.id_authorization.in_(
            select(AuthorizationHasHolder.id_authorization)
            .join(Person, Person.id_person == AuthorizationHasHolder.id_person)
            .where(or_(*matches))
        ))
    if cas:
        query = query.filter(Authorization.id_authorization.in_(
            select(AuthorizationHasChemical.id_authorization)
            .join(Chemical, Chemical.id_auth_chem == AuthorizationHasChemical.id_chemical)
            .where(or_(Chemical.cas_auth_chem.contains(cas), Chemical.auth_chem_en.contains(cas)))
        ))
    if source:
        query = query.filter(Authorization.id_authorization.in_(
            select(AuthorizationHasRadiation.id_authorization)
            .where(AuthorizationHasRadiation.source.contains(source))
        ))

    query = query.order_by(Authorization.authorization.asc())
    total = query.count()
    if take:
        query = query.offset(skip).limit(take)
    return query.all(), total


def describe_authorization(db: Session, auth: Authorization) -> dict[str, Any]:
    """Client-facing view of ``auth`` carrying a freshly minted reference."""
    unit = db.get(Unit, auth.id_unit) if auth.id_unit else None
    holder_ids = HOLDERS.targets(db, auth.id_authorization)
    room_ids = ROOMS.targets(db, auth.id_authorization)
    chemical_ids = CHEMICALS.targets(db, auth.id_authorization)
    holders = db.query(Person).filter(Person.id_person.in_(holder_ids)).order_by(Person.sciper).all()
    rooms = db.query(Room).filter(Room.id.in_(room_ids)).order_by(Room.name).all()
    chemicals = (
        db.query(Chemical)
        .filter(Chemical.id_auth_chem.in_(chemical_ids))
        .order_by(Chemical.cas_auth_chem)
        .all()
    )
    return {
        "id": references.mint(auth.id_authorization, authorization_snapshot(auth)),
        "authorization": auth.authorization,
        "status": auth.status.value,
        "type": auth.type,
        "creation_date": auth.creation_date,
        "expiration_date": auth.expiration_date,
        "renewals": auth.renewals,
        "authority": auth.authority,
        "unit": unit.name if unit else None,
        "holders": [
            {"sciper": p.sciper, "name": p.name, "surname": p.surname, "email": p.email}
            for p in holders
        ],
        "rooms": [r.name for r in rooms],
        "chemicals": [
            {"cas": c.cas_auth_chem, "name": c.auth_chem_en, "requires_authorization": c.flag_auth_chem}
            for c in chemicals
        ],
        "radiations": sorted(RADIATIONS.targets(db, auth.id_authorization)),
    }


def check_chemical_authorizations(
    db: Session,
    sciper: int,
    cas_codes: Iterable[str],
    now: Clock = datetime.now,
) -> dict[str, int]:
    """
    For each CAS code, 1 when ``sciper`` holds an unexpired chemical
    authorization covering it and the chemical requires one, else 0.
    """
    authorized = {
        cas
        for (cas,) in db.query(Chemical.cas_auth_chem)
        .join(AuthorizationHasChemical, AuthorizationHasChemical.id_chemical == Chemical.id_auth_chem)
        .join(Authorization, Authorization.id_authorization == AuthorizationHasChemical.id_authorization)
        .join(AuthorizationHasHolder, AuthorizationHasHolder.id_authorization == Authorization.id_authorization)
        .join(Person, Person.id_person == AuthorizationHasHolder.id_person)
        .filter(
            Person.sciper == sciper,
            Authorization.type == CHEMICAL,
            Authorization.expiration_date > now(),
            Chemical.flag_auth_chem.is_(True),
        )
    }
    return {cas: int(cas in authorized) for cas in cas_codes}
