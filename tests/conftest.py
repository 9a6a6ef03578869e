import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LHD_ENCRYPTION_KEY"] = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="
os.environ["SNOW_TOKEN"] = "snow-token"
os.environ["CATALYSE_TOKEN"] = "catalyse-token"
os.environ["LHD_ADMIN_TOKEN"] = "admin-token"
os.environ["DIRECTORY_API_URL"] = ""
os.environ["SMTP_SERVER"] = ""

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from labhazards.api.dependencies import get_directory, get_notifier
from labhazards.main import app
from labhazards.models.database import Base, get_db
from labhazards.models.organization import Chemical, Person, Room, Unit, UnitHasRoom
from labhazards.models.permits import DispensationSubject
from labhazards.services.notifications import OutboxNotifier
from labhazards.services.persons import DirectoryPerson

NOW = datetime(2026, 10, 19, 9, 0)

WATER = "7732-18-5"
ETHANOL = "64-17-5"


class FakeDirectory:
    """In-memory people directory that records every lookup."""

    def __init__(self, people=()):
        self.people = {p.sciper: p for p in people}
        self.lookups = []

    def resolve_person(self, sciper):
        self.lookups.append(sciper)
        return self.people.get(sciper)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def outbox():
    return OutboxNotifier()


@pytest.fixture
def directory():
    return FakeDirectory([
        DirectoryPerson(sciper=200002, first_name="Ada", last_name="Lovelace", email="ada@example.com"),
    ])


@pytest.fixture
def seeded(db):
    """Two units, three rooms (one deleted), two chemicals, one person, one subject."""
    unit = Unit(name="LCBM")
    other_unit = Unit(name="LMIS")
    rooms = [
        Room(name="CH A2 434"),
        Room(name="CH B3 100"),
        Room(name="CH Z0 000", is_deleted=True),
    ]
    water = Chemical(cas_auth_chem=WATER, auth_chem_en="Water", flag_auth_chem=True)
    ethanol = Chemical(cas_auth_chem=ETHANOL, auth_chem_en="Ethanol", flag_auth_chem=False)
    person = Person(sciper=100001, name="Marie", surname="Curie", email="marie@example.com")
    subject = DispensationSubject(subject="Lasers")
    db.add_all([unit, other_unit, *rooms, water, ethanol, person, subject])
    db.flush()
    db.add(UnitHasRoom(id_unit=unit.id, id_lab=rooms[0].id))
    db.commit()
    return {
        "unit": unit,
        "other_unit": other_unit,
        "room": rooms[0],
        "other_room": rooms[1],
        "deleted_room": rooms[2],
        "water": water,
        "ethanol": ethanol,
        "person": person,
        "subject": subject,
    }


@pytest.fixture
def client(db, outbox, directory):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: outbox
    app.dependency_overrides[get_directory] = lambda: directory
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    return {
        "snow": bearer("snow-token"),
        "catalyse": bearer("catalyse-token"),
        "admin": bearer("admin-token"),
    }
