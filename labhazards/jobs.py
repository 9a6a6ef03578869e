"""
Scheduled expiry jobs.

Each job scans for due records, then handles every record in its own
transaction with the configured lock-wait and runtime budgets. A record
that fails is logged and counted and the loop moves on. Notifications go
out after the record's transaction commits. Every run is recorded as a
``JobRun`` row.

Run from cron:

    labhazards-jobs expire-authorizations
    labhazards-jobs remind-dispensations --days 30
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from typing import Any, Callable

import typer
from sqlalchemy.orm import Session

from labhazards.config import settings
from labhazards.lifecycle import authorizations, dispensations, expiry
from labhazards.models.database import SessionLocal, atomic
from labhazards.models.organization import JobRun
from labhazards.models.permits import Authorization, Dispensation
from labhazards.services.callers import Caller, cron_caller
from labhazards.services.dates import Clock
from labhazards.services.notifications import (
    EmailNotifier,
    Notification,
    NotificationKind,
    Notifier,
    notify_safely,
)
from labhazards.services.persons import emails_of

logger = logging.getLogger(__name__)

Handler = Callable[[Session, Any], Notification | None]


def run_job(
    db: Session,
    job_name: str,
    records: list[Any],
    handle: Handler,
    *,
    label: Callable[[Any], str],
    notifier: Notifier | None = None,
    now: Clock = datetime.now,
) -> dict[str, Any]:
    """Apply ``handle`` to each record in its own transaction; return a summary."""
    with atomic(db):
        run = JobRun(job_name=job_name, status="running", started_at=now(), scanned_count=len(records))
        db.add(run)

    logger.info("Starting job '%s' with %d records", job_name, len(records))
    start = time.perf_counter()
    processed, errors = 0, []
    for position, record in enumerate(records, start=1):
        code = f"#{position}"
        try:
            code = label(record)
            with atomic(
                db,
                max_wait=settings.TX_MAX_WAIT_SECONDS,
                timeout=settings.TX_TIMEOUT_SECONDS,
            ):
                notification = handle(db, record)
        except Exception as exc:
            logger.error("Job '%s' failed on %s: %s", job_name, code, exc)
            errors.append({"record": code, "error": str(exc)})
            continue
        processed += 1
        if notification is not None:
            notify_safely(notifier, notification)

    with atomic(db):
        run.processed_count = processed
        run.failed_count = len(errors)
        run.errors = errors
        run.status = "completed" if not errors else "failed"
        run.completed_at = now()

    summary = {
        "job": job_name,
        "status": run.status,
        "scanned": len(records),
        "processed": processed,
        "failed": len(errors),
        "errors": errors,
        "duration_ms": round((time.perf_counter() - start) * 1000, 2),
    }
    logger.info("Job '%s' finished – %s (%d/%d)", job_name, run.status, processed, len(records))
    return summary


def _notification(
    db: Session,
    kind: NotificationKind,
    code: str,
    holder_ids: list[int],
    caller: Caller,
    **detail: Any,
) -> Notification:
    return Notification(
        kind=kind,
        code=code,
        recipients=emails_of(db, holder_ids),
        sender_name=caller.full_name,
        sender_email=caller.email,
        detail=detail,
    )


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

def expire_authorizations(
    db: Session, notifier: Notifier | None = None, now: Clock = datetime.now
) -> dict[str, Any]:
    caller = cron_caller()

    def handle(db: Session, auth: Authorization) -> Notification:
        authorizations.expire_authorization(db, auth, caller)
        return _notification(
            db, NotificationKind.EXPIRED_AUTHORIZATION, auth.authorization,
            authorizations.HOLDERS.targets(db, auth.id_authorization), caller,
            expiration_date=auth.expiration_date,
        )

    records = expiry.scan_expiring_authorizations(db, 0, now=now)
    return run_job(
        db, "expire-authorizations", records, handle,
        label=lambda a: a.authorization, notifier=notifier, now=now,
    )


def remind_authorizations(
    db: Session,
    days: int | None = None,
    notifier: Notifier | None = None,
    now: Clock = datetime.now,
) -> dict[str, Any]:
    caller = cron_caller()

    def handle(db: Session, auth: Authorization) -> Notification:
        authorizations.mark_authorization_notified(db, auth, now=now)
        return _notification(
            db, NotificationKind.EXPIRING_AUTHORIZATION, auth.authorization,
            authorizations.HOLDERS.targets(db, auth.id_authorization), caller,
            expiration_date=auth.expiration_date,
        )

    records = expiry.scan_expiring_authorizations(db, days or settings.EXPIRY_WARNING_DAYS, now=now)
    return run_job(
        db, "remind-authorizations", records, handle,
        label=lambda a: a.authorization, notifier=notifier, now=now,
    )


def expire_dispensations(
    db: Session, notifier: Notifier | None = None, now: Clock = datetime.now
) -> dict[str, Any]:
    caller = cron_caller()

    def handle(db: Session, disp: Dispensation) -> Notification:
        dispensations.expire_dispensation(db, disp, caller, now=now)
        return _notification(
            db, NotificationKind.EXPIRED_DISPENSATION, disp.dispensation,
            dispensations.HOLDERS.targets(db, disp.id_dispensation), caller,
            date_end=disp.date_end,
        )

    records = expiry.scan_expiring_dispensations(db, 0, now=now)
    return run_job(
        db, "expire-dispensations", records, handle,
        label=lambda d: d.dispensation, notifier=notifier, now=now,
    )


def remind_dispensations(
    db: Session,
    days: int | None = None,
    notifier: Notifier | None = None,
    now: Clock = datetime.now,
) -> dict[str, Any]:
    caller = cron_caller()

    def handle(db: Session, disp: Dispensation) -> Notification:
        dispensations.mark_dispensation_notified(db, disp, now=now)
        return _notification(
            db, NotificationKind.EXPIRING_DISPENSATION, disp.dispensation,
            dispensations.HOLDERS.targets(db, disp.id_dispensation), caller,
            date_end=disp.date_end,
        )

    records = expiry.scan_expiring_dispensations(db, days or settings.EXPIRY_WARNING_DAYS, now=now)
    return run_job(
        db, "remind-dispensations", records, handle,
        label=lambda d: d.dispensation, notifier=notifier, now=now,
    )


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

app = typer.Typer(
    add_completion=False,
    help="Lab hazards scheduled jobs (expire and remind authorizations and dispensations).",
)


@app.callback()
def _main() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(levelname)s | %(name)s | %(message)s",
    )


def _run(job: Callable[..., dict[str, Any]], **kwargs: Any) -> None:
    db = SessionLocal()
    try:
        summary = job(db, notifier=EmailNotifier(), **kwargs)
    finally:
        db.close()
    typer.echo(json.dumps(summary, default=str))
    if summary["failed"]:
        raise typer.Exit(code=1)


@app.command(name="expire-authorizations", help="Expire every overdue Active authorization.")
def expire_authorizations_cmd() -> None:
    _run(expire_authorizations)


@app.command(name="remind-authorizations", help="Warn holders of authorizations expiring soon.")
def remind_authorizations_cmd(
    days: int = typer.Option(settings.EXPIRY_WARNING_DAYS, "--days", min=1, help="Warning window in days."),
) -> None:
    _run(remind_authorizations, days=days)


@app.command(name="expire-dispensations", help="Expire every overdue Active dispensation.")
def expire_dispensations_cmd() -> None:
    _run(expire_dispensations)


@app.command(name="remind-dispensations", help="Warn holders of dispensations expiring soon.")
def remind_dispensations_cmd(
    days: int = typer.Option(settings.EXPIRY_WARNING_DAYS, "--days", min=1, help="Warning window in days."),
) -> None:
    _run(remind_dispensations, days=days)


if __name__ == "__main__":
    app()
