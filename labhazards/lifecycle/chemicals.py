"""Chemical catalogue: CAS codes that authorizations may reference."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from labhazards.errors import ConflictError
from labhazards.models.database import atomic
from labhazards.models.organization import Chemical
from labhazards.services.audit import log_action
from labhazards.services.callers import Caller, Capability

logger = logging.getLogger(__name__)


def create_chemical(
    db: Session,
    caller: Caller,
    *,
    cas: str,
    name_en: str,
    name_fr: str | None = None,
    requires_authorization: bool = False,
) -> Chemical:
    caller.require(Capability.EDIT_CHEMICALS)
    with atomic(db):
        if db.query(Chemical).filter(Chemical.cas_auth_chem == cas).first() is not None:
            raise ConflictError(f"Chemical {cas} already exists")
        chemical = Chemical(
            cas_auth_chem=cas,
            auth_chem_en=name_en,
            auth_chem_fr=name_fr,
            flag_auth_chem=requires_authorization,
        )
        db.add(chemical)
        db.flush()
        log_action(
            db,
            actor=caller.username,
            action="CREATE",
            table_name=Chemical.__tablename__,
            resource_id=chemical.id_auth_chem,
            after={
                "cas": cas,
                "name_en": name_en,
                "name_fr": name_fr,
                "requires_authorization": requires_authorization,
            },
        )
    logger.info("Chemical %s created", cas)
    return chemical


def list_chemicals(db: Session, caller: Caller, cas: list[str] | None = None) -> list[Chemical]:
    caller.require(Capability.LIST_CHEMICALS)
    query = db.query(Chemical)
    if cas:
        query = query.filter(Chemical.cas_auth_chem.in_(cas))
    return query.order_by(Chemical.cas_auth_chem).all()


def describe_chemical(chemical: Chemical) -> dict:
    return {
        "cas_auth_chem": chemical.cas_auth_chem,
        "auth_chem_en": chemical.auth_chem_en,
        "flag_auth_chem": chemical.flag_auth_chem,
    }
