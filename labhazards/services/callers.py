"""
Caller identities and their capability sets.

A ``Caller`` is resolved once per request (or fixed for a scheduled job) and
passed explicitly to the gate and to every lifecycle operation. It is
immutable; nothing reads capabilities from global state.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from labhazards.config import settings
from labhazards.errors import AuthorizationError


class Capability(str, enum.Enum):
    LIST_AUTHORIZATIONS = "canListAuthorizations"
    EDIT_AUTHORIZATIONS = "canEditAuthorizations"
    LIST_DISPENSATIONS = "canListDispensations"
    EDIT_DISPENSATIONS = "canEditDispensations"
    LIST_CHEMICALS = "canListChemicals"
    EDIT_CHEMICALS = "canEditChemicals"
    LIST_ROOMS = "canListRooms"
    LIST_UNITS = "canListUnits"
    EDIT_UNITS = "canEditUnits"


@dataclass(frozen=True)
class Caller:
    username: str
    full_name: str = ""
    email: str = ""
    sciper: int | None = None
    capabilities: frozenset[Capability] = field(default_factory=frozenset)

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def require(self, capability: Capability) -> None:
        if not self.can(capability):
            raise AuthorizationError()

    @property
    def display_name(self) -> str:
        """Attribution string stored in created_by / modified_by."""
        name = self.full_name or self.username
        return f"{name} ({self.sciper})" if self.sciper else name


SNOW_CALLER = Caller(
    username="SNOW",
    full_name="SNOW",
    capabilities=frozenset({
        Capability.LIST_ROOMS,
        Capability.LIST_UNITS,
        Capability.LIST_CHEMICALS,
        Capability.EDIT_CHEMICALS,
        Capability.EDIT_AUTHORIZATIONS,
    }),
)

CATALYSE_CALLER = Caller(
    username="CATALYSE",
    full_name="CATALYSE",
    capabilities=frozenset({Capability.LIST_AUTHORIZATIONS}),
)

ADMIN_CALLER = Caller(
    username="LHD-admin",
    full_name="LHD admin",
    capabilities=frozenset(Capability),
)


def cron_caller() -> Caller:
    return Caller(
        username="LHD-cron",
        full_name="LHD-cron",
        email=settings.CRONJOBS_EMAIL,
        capabilities=frozenset({
            Capability.EDIT_AUTHORIZATIONS,
            Capability.EDIT_DISPENSATIONS,
        }),
    )


def caller_for_token(token: str | None) -> Caller | None:
    """Map a bearer token to its fixed caller, or None when unknown."""
    if not token:
        return None
    known = {
        settings.SNOW_TOKEN: SNOW_CALLER,
        settings.CATALYSE_TOKEN: CATALYSE_CALLER,
        settings.LHD_ADMIN_TOKEN: ADMIN_CALLER,
    }
    known.pop("", None)
    return known.get(token)
