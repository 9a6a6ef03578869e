"""
Organizational reference data: people, units, rooms, chemicals.

These rows are referenced by permits but never created as a side effect of
a permit mutation, with the one exception of holders (see
``labhazards.services.persons``).
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)

from labhazards.models.database import Base


# ---------------------------------------------------------------------------
# Person – holders, COSECs, professors; identified by sciper
# ---------------------------------------------------------------------------
class Person(Base):
    __tablename__ = "person"

    id_person = Column(Integer, primary_key=True, autoincrement=True)
    sciper = Column(Integer, unique=True, nullable=False, comment="Lifelong person id")
    name = Column(String(255), nullable=False)
    surname = Column(String(255), nullable=False)
    email = Column(String(255))


# ---------------------------------------------------------------------------
# Unit – organizational tree (school > institute > unit > sub-unit)
# ---------------------------------------------------------------------------
class Unit(Base):
    __tablename__ = "unit"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False)
    parent_id = Column(Integer, ForeignKey("unit.id"), nullable=True)


class UnitHasRoom(Base):
    __tablename__ = "unit_has_room"

    id = Column(Integer, primary_key=True, autoincrement=True)
    id_unit = Column(Integer, ForeignKey("unit.id"), nullable=False)
    id_lab = Column(Integer, ForeignKey("room.id"), nullable=False)


class UnitHasCosec(Base):
    __tablename__ = "unit_has_cosec"

    id = Column(Integer, primary_key=True, autoincrement=True)
    id_unit = Column(Integer, ForeignKey("unit.id"), nullable=False)
    id_person = Column(Integer, ForeignKey("person.id_person"), nullable=False)


class UnitHasProfessor(Base):
    __tablename__ = "unit_has_professor"

    id = Column(Integer, primary_key=True, autoincrement=True)
    id_unit = Column(Integer, ForeignKey("unit.id"), nullable=False)
    id_person = Column(Integer, ForeignKey("person.id_person"), nullable=False)


# ---------------------------------------------------------------------------
# Room – soft-deleted; a deleted room cannot be newly linked
# ---------------------------------------------------------------------------
class Room(Base):
    __tablename__ = "room"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(64), nullable=False, comment="e.g. CH A2 434")
    is_deleted = Column(Boolean, default=False, nullable=False)

    __table_args__ = (Index("ix_room_name", "name"),)


# ---------------------------------------------------------------------------
# Chemical – known CAS codes; must pre-exist before being authorized
# ---------------------------------------------------------------------------
class Chemical(Base):
    __tablename__ = "auth_chem"

    id_auth_chem = Column(Integer, primary_key=True, autoincrement=True)
    cas_auth_chem = Column(String(32), unique=True, nullable=False, comment="CAS registry number")
    auth_chem_en = Column(String(255), nullable=False)
    auth_chem_fr = Column(String(255))
    flag_auth_chem = Column(Boolean, default=False, nullable=False, comment="Requires authorization")


# ---------------------------------------------------------------------------
# Mutation log – audit trail written inside each lifecycle transaction
# ---------------------------------------------------------------------------
class MutationLog(Base):
    __tablename__ = "mutation_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor = Column(String(128), nullable=False, comment="Caller username")
    action = Column(String(16), nullable=False, comment="CREATE | UPDATE | DELETE")
    table_name = Column(String(64), nullable=False)
    resource_id = Column(Integer, nullable=False)
    detail = Column(JSON, comment="Field diff {field: {before, after}}")
    timestamp = Column(DateTime, default=datetime.now, nullable=False)

    __table_args__ = (Index("ix_mutation_log_timestamp", "timestamp"),)


# ---------------------------------------------------------------------------
# Job run – history of scheduled scans
# ---------------------------------------------------------------------------
class JobRun(Base):
    __tablename__ = "job_run"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_name = Column(String(128), nullable=False)
    status = Column(String(16), default="running", nullable=False)
    started_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    scanned_count = Column(Integer, default=0, nullable=False)
    processed_count = Column(Integer, default=0, nullable=False)
    failed_count = Column(Integer, default=0, nullable=False)
    errors = Column(JSON, default=list)

