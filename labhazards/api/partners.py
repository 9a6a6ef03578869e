"""
REST endpoints for the ticketing (SNOW) and ordering (Catalyse) systems.

Parameters come from the query string and go through the validation gate
before any handler runs. Successful calls answer ``{"Message": "Ok"}``,
with a ``Data`` member for reads.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from labhazards.api.dependencies import gated, get_caller, get_directory
from labhazards.lifecycle import authorizations, chemicals, units
from labhazards.models.database import get_db
from labhazards.schemas.api import PartnerResponse
from labhazards.services.callers import Caller, Capability
from labhazards.services.dates import at_noon
from labhazards.services.gate import (
    ApiCheck,
    Custom,
    Pattern,
    Temporal,
    choice,
    comma_list,
    from_query,
)
from labhazards.services.persons import Directory
from labhazards.services.relations import RelationChange

logger = logging.getLogger(__name__)

router = APIRouter()

REQ = Pattern(r"[A-Z][a-zA-Z0-9.]*-[a-zA-Z0-9.]*")
RENEW_REQ = Pattern(r"[A-Z][a-zA-Z0-9.]*-[a-zA-Z0-9.]*-[0-9]+")
CAS = Pattern(r"[0-9][0-9-/]*[0-9]")
CHEMICAL_NAME = Pattern(r"[A-Za-z0-9/()*+\"%&='?\[\]{},.:; -]+")
UNIT_NAME = Pattern(r"[A-Z][A-Z-]*[A-Z]")
ROOM_NAME = Pattern(r"[A-Z][A-Z0-9-. ]*[A-Z0-9]")


def _whole_number(value, validate):
    return int(validate(value, Pattern(r"[0-9]+")))


ID = Custom(_whole_number)


def _yes_no(value, validate):
    answer = validate(value, choice("yes", "no", "1", "0", "true", "false"))
    return answer in ("yes", "1", "true")


def _can(capability: Capability):
    return lambda caller: caller.can(capability)


def _query(*names: str) -> dict[str, Any]:
    return {name: from_query(name) for name in names}


AUTH_REQ = ApiCheck(
    authorize=_can(Capability.EDIT_AUTHORIZATIONS),
    required=_query("req", "date", "id_unit", "room_ids", "scipers", "cas"),
    validate={
        "req": REQ,
        "date": Temporal(),
        "id_unit": ID,
        "room_ids": comma_list(ID),
        "scipers": comma_list(ID),
        "cas": comma_list(CAS),
    },
)

AUTH_RENEW = ApiCheck(
    authorize=_can(Capability.EDIT_AUTHORIZATIONS),
    required=_query("req", "date"),
    validate={"req": RENEW_REQ, "date": Temporal()},
)

ADD_CHEM = ApiCheck(
    authorize=_can(Capability.EDIT_CHEMICALS),
    required=_query("cas", "en", "auth"),
    optional=_query("fr"),
    validate={"cas": CAS, "en": CHEMICAL_NAME, "fr": CHEMICAL_NAME, "auth": Custom(_yes_no)},
)

GET_CHEM = ApiCheck(
    authorize=_can(Capability.LIST_CHEMICALS),
    optional=_query("cas"),
    validate={"cas": comma_list(CAS)},
)

AUTH_CHECK = ApiCheck(
    authorize=_can(Capability.LIST_AUTHORIZATIONS),
    required=_query("sciper", "cas"),
    validate={"sciper": ID, "cas": comma_list(CAS)},
)

LABS_AND_UNITS = ApiCheck(
    authorize=_can(Capability.LIST_ROOMS),
    optional=_query("unit", "room"),
    validate={"unit": UNIT_NAME, "room": ROOM_NAME},
)

PROFS_AND_COSECS = ApiCheck(
    authorize=_can(Capability.LIST_UNITS),
    optional=_query("unit"),
    validate={"unit": UNIT_NAME},
)


@router.post("/auth_req", response_model=PartnerResponse, response_model_exclude_none=True)
def auth_req(
    params: dict = Depends(gated(AUTH_REQ)),
    caller: Caller = Depends(get_caller),
    directory: Directory = Depends(get_directory),
    db: Session = Depends(get_db),
):
    """Create a chemical authorization from a ticket request."""
    authorizations.create_authorization(
        db,
        caller,
        unit_id=params["id_unit"],
        code=params["req"],
        expiration_date=at_noon(params["date"]),
        holders=[RelationChange.add(sciper=s) for s in params["scipers"]],
        rooms=[RelationChange.add(id=r) for r in params["room_ids"]],
        cas=[RelationChange.add(name=c) for c in params["cas"]],
        directory=directory,
    )
    return PartnerResponse()


@router.post("/auth_renew", response_model=PartnerResponse, response_model_exclude_none=True)
def auth_renew(
    params: dict = Depends(gated(AUTH_RENEW)),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    """Renew by ``<Unit>-<Seq>-<renewals>``; the suffix sets the renewal count."""
    code, _, renewals = params["req"].rpartition("-")
    authorizations.renew_authorization(
        db,
        caller,
        code,
        expiration_date=params["date"],
        renewals=int(renewals),
    )
    return PartnerResponse()


@router.post("/add_chem", response_model=PartnerResponse, response_model_exclude_none=True)
def add_chem(
    params: dict = Depends(gated(ADD_CHEM)),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    chemicals.create_chemical(
        db,
        caller,
        cas=params["cas"],
        name_en=params["en"],
        name_fr=params.get("fr"),
        requires_authorization=params["auth"],
    )
    return PartnerResponse()


@router.get("/get_chem", response_model=PartnerResponse)
def get_chem(
    params: dict = Depends(gated(GET_CHEM)),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    found = chemicals.list_chemicals(db, caller, cas=params.get("cas"))
    return PartnerResponse(Data=[chemicals.describe_chemical(c) for c in found])


@router.get("/auth_check", response_model=PartnerResponse)
def auth_check(
    params: dict = Depends(gated(AUTH_CHECK)),
    db: Session = Depends(get_db),
):
    """Which of the given CAS codes the holder is currently authorized for."""
    result = authorizations.check_chemical_authorizations(
        db, params["sciper"], params["cas"]
    )
    return PartnerResponse(Data=[result])


@router.get("/get_labs_and_units", response_model=PartnerResponse)
def get_labs_and_units(
    params: dict = Depends(gated(LABS_AND_UNITS)),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    rows = units.list_labs_and_units(db, caller, unit=params.get("unit"), room=params.get("room"))
    return PartnerResponse(Data=rows)


@router.get("/get_profs_and_cosecs", response_model=PartnerResponse)
def get_profs_and_cosecs(
    params: dict = Depends(gated(PROFS_AND_COSECS)),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    return PartnerResponse(Data=units.list_profs_and_cosecs(db, caller, unit=params.get("unit")))
