"""
People lookup and on-demand creation of holders.

Holders are the only related entity a permit mutation may create: a "New"
holder whose sciper is not yet known is fetched from the directory and
inserted before the permit transaction starts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Protocol

import requests
from sqlalchemy.orm import Session

from labhazards.config import settings
from labhazards.errors import NotFoundError
from labhazards.models.database import atomic
from labhazards.models.organization import Person
from labhazards.services.relations import ChangeStatus, RelationChange

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirectoryPerson:
    sciper: int
    first_name: str
    last_name: str
    email: str | None = None


class Directory(Protocol):
    def resolve_person(self, sciper: int) -> DirectoryPerson | None: ...


class RequestsDirectory:
    """People directory reached over HTTP: ``GET <url>?query=<sciper>``."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = base_url or settings.DIRECTORY_API_URL
        self.timeout = timeout or settings.DIRECTORY_API_TIMEOUT

    def resolve_person(self, sciper: int) -> DirectoryPerson | None:
        if not self.base_url:
            logger.warning("DIRECTORY_API_URL not set, cannot look up sciper %s", sciper)
            return None
        r = requests.get(self.base_url, params={"query": str(sciper)}, timeout=self.timeout)
        r.raise_for_status()
        for person in r.json().get("persons", []):
            if str(person.get("id")) == str(sciper):
                return DirectoryPerson(
                    sciper=int(person["id"]),
                    first_name=person.get("firstname", ""),
                    last_name=person.get("lastname", ""),
                    email=person.get("email"),
                )
        return None


def find_or_create_person(db: Session, entry: DirectoryPerson) -> Person:
    person = db.query(Person).filter(Person.sciper == entry.sciper).first()
    if person is None:
        person = Person(
            sciper=entry.sciper,
            name=entry.first_name,
            surname=entry.last_name,
            email=entry.email,
        )
        db.add(person)
        db.flush()
    return person


def ensure_holders(
    db: Session,
    holders: Iterable[RelationChange],
    directory: Directory,
) -> None:
    """
    Make sure every holder tagged ``New`` exists as a Person.

    Raises NotFoundError for a sciper the directory does not know. A
    directory transport failure propagates unchanged.
    """
    missing = []
    for holder in holders:
        if holder.status is not ChangeStatus.ADD or holder.sciper is None:
            continue
        if db.query(Person).filter(Person.sciper == holder.sciper).first() is None:
            missing.append(holder.sciper)
    if not missing:
        return

    entries = []
    for sciper in dict.fromkeys(missing):
        entry = directory.resolve_person(sciper)
        if entry is None:
            raise NotFoundError(f"Sciper {sciper} not found")
        entries.append(entry)

    with atomic(db):
        for entry in entries:
            find_or_create_person(db, entry)
            logger.info("Created person %s from directory", entry.sciper)


def emails_of(db: Session, person_ids: Iterable[int]) -> list[str]:
    ids = list(person_ids)
    if not ids:
        return []
    rows = db.query(Person.email).filter(Person.id_person.in_(ids)).all()
    return sorted({email for (email,) in rows if email})
