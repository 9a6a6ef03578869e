"""
Time-bounded permits: chemical authorizations and dispensations.

Both permit kinds own several many-to-many joins. Join rows carry no data
beyond the two keys (or a free-text value for radiation sources and
tickets) and are only ever written through the relation reconciler.
"""

import enum

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from labhazards.models.database import Base


class AuthorizationStatus(str, enum.Enum):
    ACTIVE = "Active"
    EXPIRED = "Expired"


class DispensationStatus(str, enum.Enum):
    DRAFT = "Draft"
    PENDING = "Pending"
    ACTIVE = "Active"
    EXPIRED = "Expired"
    CANCELLED = "Cancelled"


def _values(enum_cls):
    return [member.value for member in enum_cls]


# ---------------------------------------------------------------------------
# Authorization – chemical-use permit owned by a unit
# ---------------------------------------------------------------------------
class Authorization(Base):
    __tablename__ = "authorization"

    id_authorization = Column(Integer, primary_key=True, autoincrement=True)
    authorization = Column(String(64), nullable=False, comment="Display code <Unit>-<Sequence>")
    status = Column(
        Enum(AuthorizationStatus, values_callable=_values, name="authorization_status_enum"),
        default=AuthorizationStatus.ACTIVE,
        nullable=False,
    )
    type = Column(String(32), default="Chemical", nullable=False)
    creation_date = Column(DateTime, nullable=False)
    expiration_date = Column(DateTime, nullable=False)
    renewals = Column(Integer, default=0, nullable=False)
    authority = Column(String(255))
    date_expiry_notified = Column(DateTime, nullable=True)
    id_unit = Column(Integer, ForeignKey("unit.id"), nullable=True)

    __table_args__ = (
        UniqueConstraint("type", "authorization", name="uq_authorization_type_code"),
        Index("ix_authorization_status_expiration", "status", "expiration_date"),
    )


class AuthorizationHasHolder(Base):
    __tablename__ = "authorization_has_holder"

    id = Column(Integer, primary_key=True, autoincrement=True)
    id_authorization = Column(Integer, ForeignKey("authorization.id_authorization"), nullable=False)
    id_person = Column(Integer, ForeignKey("person.id_person"), nullable=False)


class AuthorizationHasRoom(Base):
    __tablename__ = "authorization_has_room"

    id = Column(Integer, primary_key=True, autoincrement=True)
    id_authorization = Column(Integer, ForeignKey("authorization.id_authorization"), nullable=False)
    id_lab = Column(Integer, ForeignKey("room.id"), nullable=False)


class AuthorizationHasChemical(Base):
    __tablename__ = "authorization_has_chemical"

    id = Column(Integer, primary_key=True, autoincrement=True)
    id_authorization = Column(Integer, ForeignKey("authorization.id_authorization"), nullable=False)
    id_chemical = Column(Integer, ForeignKey("auth_chem.id_auth_chem"), nullable=False)


class AuthorizationHasRadiation(Base):
    __tablename__ = "authorization_has_radiation"

    id = Column(Integer, primary_key=True, autoincrement=True)
    id_authorization = Column(Integer, ForeignKey("authorization.id_authorization"), nullable=False)
    source = Column(String(255), nullable=False)


# ---------------------------------------------------------------------------
# Dispensation – general hazardous-activity permit
# ---------------------------------------------------------------------------
class DispensationSubject(Base):
    __tablename__ = "dispensation_subject"

    id_dispensation_subject = Column(Integer, primary_key=True, autoincrement=True)
    subject = Column(String(255), unique=True, nullable=False)


class Dispensation(Base):
    __tablename__ = "dispensation"

    id_dispensation = Column(Integer, primary_key=True, autoincrement=True)
    dispensation = Column(String(32), nullable=False, comment="Display code DISP-<id>")
    status = Column(
        Enum(DispensationStatus, values_callable=_values, name="dispensation_status_enum"),
        default=DispensationStatus.DRAFT,
        nullable=False,
    )
    id_dispensation_subject = Column(
        Integer, ForeignKey("dispensation_subject.id_dispensation_subject"), nullable=True
    )
    subject_other = Column(String(255))
    requires = Column(Text)
    comment = Column(Text)
    date_start = Column(DateTime)
    date_end = Column(DateTime)
    renewals = Column(Integer, default=0, nullable=False)
    date_expiry_notified = Column(DateTime, nullable=True)
    file_path = Column(String(1024))
    created_by = Column(String(255))
    created_on = Column(DateTime)
    modified_by = Column(String(255))
    modified_on = Column(DateTime)

    __table_args__ = (Index("ix_dispensation_status_end", "status", "date_end"),)


class DispensationHasHolder(Base):
    __tablename__ = "dispensation_has_holder"

    id = Column(Integer, primary_key=True, autoincrement=True)
    id_dispensation = Column(Integer, ForeignKey("dispensation.id_dispensation"), nullable=False)
    id_person = Column(Integer, ForeignKey("person.id_person"), nullable=False)


class DispensationHasRoom(Base):
    __tablename__ = "dispensation_has_room"

    id = Column(Integer, primary_key=True, autoincrement=True)
    id_dispensation = Column(Integer, ForeignKey("dispensation.id_dispensation"), nullable=False)
    id_lab = Column(Integer, ForeignKey("room.id"), nullable=False)


class DispensationHasUnit(Base):
    __tablename__ = "dispensation_has_unit"

    id = Column(Integer, primary_key=True, autoincrement=True)
    id_dispensation = Column(Integer, ForeignKey("dispensation.id_dispensation"), nullable=False)
    id_unit = Column(Integer, ForeignKey("unit.id"), nullable=False)


class DispensationHasTicket(Base):
    __tablename__ = "dispensation_has_ticket"

    id = Column(Integer, primary_key=True, autoincrement=True)
    id_dispensation = Column(Integer, ForeignKey("dispensation.id_dispensation"), nullable=False)
    ticket_number = Column(String(64), nullable=False)
