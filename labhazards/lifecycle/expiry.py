"""
Expiry scanner.

Read-only queries feeding the cron jobs. ``threshold_days == 0`` is the
"already overdue" scan and ignores earlier reminders; any other threshold
is the advance-warning scan and only returns records never reminded.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from labhazards.models.permits import (
    Authorization,
    AuthorizationStatus,
    Dispensation,
    DispensationStatus,
)
from labhazards.services.dates import Clock


def find_expiring(
    db: Session,
    model: Any,
    *,
    status_column: Any,
    active: Any,
    date_column: Any,
    notified_column: Any,
    threshold_days: int,
    now: Clock = datetime.now,
) -> list[Any]:
    if threshold_days < 0:
        raise ValueError("threshold_days must be zero or positive")
    limit = now() + timedelta(days=threshold_days)
    query = db.query(model).filter(status_column == active, date_column < limit)
    if threshold_days != 0:
        query = query.filter(notified_column.is_(None))
    return query.order_by(date_column.asc()).all()


def scan_expiring_authorizations(
    db: Session, threshold_days: int, now: Clock = datetime.now
) -> list[Authorization]:
    return find_expiring(
        db,
        Authorization,
        status_column=Authorization.status,
        active=AuthorizationStatus.ACTIVE,
        date_column=Authorization.expiration_date,
        notified_column=Authorization.date_expiry_notified,
        threshold_days=threshold_days,
        now=now,
    )


def scan_expiring_dispensations(
    db: Session, threshold_days: int, now: Clock = datetime.now
) -> list[Dispensation]:
    return find_expiring(
        db,
        Dispensation,
        status_column=Dispensation.status,
        active=DispensationStatus.ACTIVE,
        date_column=Dispensation.date_end,
        notified_column=Dispensation.date_expiry_notified,
        threshold_days=threshold_days,
        now=now,
    )
