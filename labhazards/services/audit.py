"""Audit logging service for mutation tracking."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from labhazards.models.organization import MutationLog
from labhazards.services.identity import json_value

logger = logging.getLogger(__name__)


def diff_snapshots(
    before: dict[str, Any],
    after: dict[str, Any],
) -> dict[str, dict[str, Any]]:
    """Return ``{field: {"before": ..., "after": ...}}`` for every changed field."""
    diffs: dict[str, dict[str, Any]] = {}
    for key in sorted(set(before) | set(after)):
        old, new = before.get(key), after.get(key)
        if old != new:
            diffs[key] = {"before": old, "after": new}
    return diffs


def log_action(
    db: Session,
    *,
    actor: str,
    action: str,
    table_name: str,
    resource_id: int,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
) -> None:
    """Write an audit log entry inside the caller's transaction."""
    detail = diff_snapshots(before or {}, after or {})
    entry = MutationLog(
        actor=actor,
        action=action,
        table_name=table_name,
        resource_id=resource_id,
        detail={
            field: {side: json_value(value) for side, value in change.items()}
            for field, change in detail.items()
        },
    )
    db.add(entry)
    db.flush()
    logger.info("AUDIT: %s %s %s/%s", actor, action, table_name, resource_id)
