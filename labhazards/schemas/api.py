"""Pydantic models for API request/response serialization."""

from __future__ import annotations

from datetime import date
from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Authorizations
# ---------------------------------------------------------------------------

class AuthorizationCreate(BaseModel):
    """New authorization. Change lists are validated against their JSON schema."""
    unit_ref: str
    code: str = Field(..., min_length=1, max_length=64)
    expiration_date: date
    creation_date: date | None = None
    authority: str | None = None
    holders: list[dict[str, Any]] = []
    rooms: list[dict[str, Any]] = []
    cas: list[dict[str, Any]] = []
    radiations: list[dict[str, Any]] = []


class AuthorizationUpdate(BaseModel):
    id: str
    expiration_date: date
    status: str | None = None
    authority: str | None = None
    unit_ref: str | None = None
    holders: list[dict[str, Any]] = []
    rooms: list[dict[str, Any]] = []
    cas: list[dict[str, Any]] = []
    radiations: list[dict[str, Any]] = []


class AuthorizationList(BaseModel):
    totalCount: int
    authorizations: list[dict[str, Any]]


# ---------------------------------------------------------------------------
# Dispensations
# ---------------------------------------------------------------------------

class DispensationCreate(BaseModel):
    subject: str | None = None
    subject_other: str | None = None
    requires: str | None = None
    comment: str | None = None
    status: str = "Draft"
    date_start: date | None = None
    date_end: date | None = None
    holders: list[dict[str, Any]] = []
    rooms: list[dict[str, Any]] = []
    units: list[dict[str, Any]] = []
    tickets: list[dict[str, Any]] = []
    file_name: str | None = None
    file: str | None = Field(None, description="Base64 document content")


class DispensationUpdate(BaseModel):
    id: str
    status: str | None = None
    date_end: date | None = None
    subject: str | None = None
    subject_other: str | None = None
    requires: str | None = None
    comment: str | None = None
    holders: list[dict[str, Any]] = []
    rooms: list[dict[str, Any]] = []
    units: list[dict[str, Any]] = []
    tickets: list[dict[str, Any]] = []
    file_name: str | None = None
    file: str | None = None


class DispensationList(BaseModel):
    totalCount: int
    dispensations: list[dict[str, Any]]


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------

class DeleteRequest(BaseModel):
    id: str


class MutationStatus(BaseModel):
    isSuccess: bool = True
    name: str | None = None
    id: str | None = None


class PartnerResponse(BaseModel):
    Message: str = "Ok"
    Data: Any = None


class UnitResponse(BaseModel):
    id: str
    name: str
    parent_id: int | None = None


class RoomResponse(BaseModel):
    id: str
    name: str


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

class HealthResponse(BaseModel):
    status: str = "healthy"
    environment: str
    database: str = "connected"
