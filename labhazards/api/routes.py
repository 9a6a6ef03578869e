"""
FastAPI routes – the internal JSON API used by the staff front end.

Records are always named by opaque references; every listed record comes
with a freshly minted one, and mutations refuse references minted before
the record last changed.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy import text
from sqlalchemy.orm import Session

from labhazards.api.dependencies import get_caller, get_directory, get_notifier
from labhazards.config import settings
from labhazards.lifecycle import authorizations, dispensations, units
from labhazards.models.database import get_db
from labhazards.models.organization import Unit
from labhazards.models.permits import AuthorizationStatus, DispensationStatus
from labhazards.schemas.api import (
    AuthorizationCreate,
    AuthorizationList,
    AuthorizationUpdate,
    DeleteRequest,
    DispensationCreate,
    DispensationList,
    DispensationUpdate,
    HealthResponse,
    MutationStatus,
    RoomResponse,
    UnitResponse,
)
from labhazards.schemas.changes import (
    ENTITY_CHANGES_SCHEMA,
    HOLDER_CHANGES_SCHEMA,
    TEXT_CHANGES_SCHEMA,
)
from labhazards.services import references
from labhazards.services.callers import Caller, Capability
from labhazards.services.notifications import Notifier
from labhazards.services.persons import Directory
from labhazards.services.relations import parse_changes
from labhazards.services.snapshots import room_snapshot, unit_snapshot

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@router.get("/health", response_model=HealthResponse)
def health_check(db: Session = Depends(get_db)):
    """Basic health endpoint – verifies DB connectivity."""
    try:
        db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception:
        logger.exception("Database health check failed")
        db_status = "disconnected"
    return HealthResponse(
        status="healthy",
        environment=settings.ENVIRONMENT,
        database=db_status,
    )


# ---------------------------------------------------------------------------
# Units
# ---------------------------------------------------------------------------

def _unit_id(db: Session, ref: str | None) -> int | None:
    if ref is None:
        return None
    return references.resolve(db, ref, Unit, unit_snapshot, "Unit").id


@router.get("/units", response_model=list[UnitResponse])
def list_units(
    name: str | None = None,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    return [
        UnitResponse(
            id=references.mint(unit.id, unit_snapshot(unit)),
            name=unit.name,
            parent_id=unit.parent_id,
        )
        for unit in units.list_units(db, caller, name)
    ]


@router.post("/units/delete", response_model=MutationStatus)
def delete_unit(
    request: DeleteRequest,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    """Delete a unit together with its sub-units."""
    deleted = units.delete_unit_cascade(db, caller, request.id)
    return MutationStatus(name=deleted[-1])


@router.get("/rooms", response_model=list[RoomResponse])
def list_rooms(
    name: str | None = None,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    """Rooms still in use; soft-deleted rooms are left out."""
    return [
        RoomResponse(id=references.mint(room.id, room_snapshot(room)), name=room.name)
        for room in units.list_rooms(db, caller, name)
    ]


# ---------------------------------------------------------------------------
# Authorizations
# ---------------------------------------------------------------------------

@router.get("/authorizations", response_model=AuthorizationList)
def list_authorizations(
    type_: str = Query(authorizations.CHEMICAL, alias="type"),
    unit: str | None = None,
    code: str | None = None,
    status: AuthorizationStatus | None = None,
    room: str | None = None,
    holder: str | None = None,
    cas: str | None = None,
    source: str | None = None,
    skip: int = Query(0, ge=0),
    take: int = Query(20, ge=0, le=1000),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    caller.require(Capability.LIST_AUTHORIZATIONS)
    found, total = authorizations.list_authorizations(
        db, type_=type_, unit=unit, code=code, status=status, room=room,
        holder=holder, cas=cas, source=source, skip=skip, take=take,
    )
    return AuthorizationList(
        totalCount=total,
        authorizations=[authorizations.describe_authorization(db, a) for a in found],
    )


@router.post("/authorizations", response_model=MutationStatus)
def create_authorization(
    request: AuthorizationCreate,
    caller: Caller = Depends(get_caller),
    directory: Directory = Depends(get_directory),
    db: Session = Depends(get_db),
):
    caller.require(Capability.EDIT_AUTHORIZATIONS)
    auth = authorizations.create_authorization(
        db,
        caller,
        unit_id=_unit_id(db, request.unit_ref),
        code=request.code,
        expiration_date=request.expiration_date,
        creation_date=request.creation_date,
        authority=request.authority,
        holders=parse_changes(request.holders, HOLDER_CHANGES_SCHEMA, "holders"),
        rooms=parse_changes(request.rooms, ENTITY_CHANGES_SCHEMA, "rooms"),
        cas=parse_changes(request.cas, TEXT_CHANGES_SCHEMA, "cas"),
        radiations=parse_changes(request.radiations, TEXT_CHANGES_SCHEMA, "radiations"),
        directory=directory,
    )
    return MutationStatus(name=auth.authorization)


@router.post("/authorizations/update", response_model=MutationStatus)
def update_authorization(
    request: AuthorizationUpdate,
    caller: Caller = Depends(get_caller),
    directory: Directory = Depends(get_directory),
    db: Session = Depends(get_db),
):
    caller.require(Capability.EDIT_AUTHORIZATIONS)
    auth = authorizations.update_authorization(
        db,
        caller,
        request.id,
        expiration_date=request.expiration_date,
        status=request.status,
        authority=request.authority,
        unit_id=_unit_id(db, request.unit_ref),
        holders=parse_changes(request.holders, HOLDER_CHANGES_SCHEMA, "holders"),
        rooms=parse_changes(request.rooms, ENTITY_CHANGES_SCHEMA, "rooms"),
        cas=parse_changes(request.cas, TEXT_CHANGES_SCHEMA, "cas"),
        radiations=parse_changes(request.radiations, TEXT_CHANGES_SCHEMA, "radiations"),
        directory=directory,
    )
    return MutationStatus(
        name=auth.authorization,
        id=authorizations.describe_authorization(db, auth)["id"],
    )


@router.post("/authorizations/delete", response_model=MutationStatus)
def delete_authorization(
    request: DeleteRequest,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    authorizations.delete_authorization(db, caller, request.id)
    return MutationStatus()


# ---------------------------------------------------------------------------
# Dispensations
# ---------------------------------------------------------------------------

@router.get("/dispensations", response_model=DispensationList)
def list_dispensations(
    unit: str | None = None,
    code: str | None = None,
    status: DispensationStatus | None = None,
    room: str | None = None,
    holder: str | None = None,
    subject: str | None = None,
    ticket: str | None = None,
    skip: int = Query(0, ge=0),
    take: int = Query(20, ge=0, le=1000),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    caller.require(Capability.LIST_DISPENSATIONS)
    found, total = dispensations.list_dispensations(
        db, unit=unit, code=code, status=status, room=room, holder=holder,
        subject=subject, ticket=ticket, skip=skip, take=take,
    )
    return DispensationList(
        totalCount=total,
        dispensations=[dispensations.describe_dispensation(db, d) for d in found],
    )


@router.post("/dispensations", response_model=MutationStatus)
def create_dispensation(
    request: DispensationCreate,
    caller: Caller = Depends(get_caller),
    directory: Directory = Depends(get_directory),
    notifier: Notifier = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    caller.require(Capability.EDIT_DISPENSATIONS)
    disp = dispensations.create_dispensation(
        db,
        caller,
        subject=request.subject,
        subject_other=request.subject_other,
        requires=request.requires,
        comment=request.comment,
        status=request.status,
        date_start=request.date_start,
        date_end=request.date_end,
        holders=parse_changes(request.holders, HOLDER_CHANGES_SCHEMA, "holders"),
        rooms=parse_changes(request.rooms, ENTITY_CHANGES_SCHEMA, "rooms"),
        units=parse_changes(request.units, ENTITY_CHANGES_SCHEMA, "units"),
        tickets=parse_changes(request.tickets, TEXT_CHANGES_SCHEMA, "tickets"),
        file_name=request.file_name,
        file_content=request.file,
        directory=directory,
        notifier=notifier,
    )
    return MutationStatus(name=disp.dispensation)


@router.post("/dispensations/update", response_model=MutationStatus)
def update_dispensation(
    request: DispensationUpdate,
    caller: Caller = Depends(get_caller),
    directory: Directory = Depends(get_directory),
    notifier: Notifier = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    caller.require(Capability.EDIT_DISPENSATIONS)
    optional = {
        field: getattr(request, field)
        for field in ("subject_other", "requires", "comment")
        if field in request.model_fields_set
    }
    disp, _ = dispensations.update_dispensation(
        db,
        caller,
        request.id,
        status=request.status,
        date_end=request.date_end,
        subject=request.subject,
        holders=parse_changes(request.holders, HOLDER_CHANGES_SCHEMA, "holders"),
        rooms=parse_changes(request.rooms, ENTITY_CHANGES_SCHEMA, "rooms"),
        units=parse_changes(request.units, ENTITY_CHANGES_SCHEMA, "units"),
        tickets=parse_changes(request.tickets, TEXT_CHANGES_SCHEMA, "tickets"),
        file_name=request.file_name,
        file_content=request.file,
        directory=directory,
        notifier=notifier,
        **optional,
    )
    return MutationStatus(
        name=disp.dispensation,
        id=dispensations.describe_dispensation(db, disp)["id"],
    )


@router.post("/dispensations/delete", response_model=MutationStatus)
def delete_dispensation(
    request: DeleteRequest,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    dispensations.delete_dispensation(db, caller, request.id)
    return MutationStatus()
