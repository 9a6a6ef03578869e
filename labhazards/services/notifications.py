"""
Permit notifications.

The lifecycle decides whether a notification is due and which kind; a
``Notifier`` only delivers. Delivery is best-effort: it runs after the
transaction has committed and a failure is logged, never raised.
"""

from __future__ import annotations

import enum
import logging
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Any, Protocol

from labhazards.config import settings
from labhazards.models.permits import DispensationStatus

logger = logging.getLogger(__name__)


class NotificationKind(str, enum.Enum):
    NEW_DISPENSATION = "newDispensation"
    RENEWED_DISPENSATION = "renewDispensation"
    MODIFIED_DISPENSATION = "modifiedDispensation"
    EXPIRED_DISPENSATION = "expiredDispensation"
    CANCELLED_DISPENSATION = "cancelledDispensation"
    EXPIRING_DISPENSATION = "expiringDispensation"
    EXPIRING_AUTHORIZATION = "expiringAuthorization"
    EXPIRED_AUTHORIZATION = "expiredAuthorization"


_SUBJECTS = {
    NotificationKind.NEW_DISPENSATION: "New dispensation {code}",
    NotificationKind.RENEWED_DISPENSATION: "Dispensation {code} renewed",
    NotificationKind.MODIFIED_DISPENSATION: "Dispensation {code} modified",
    NotificationKind.EXPIRED_DISPENSATION: "Dispensation {code} expired",
    NotificationKind.CANCELLED_DISPENSATION: "Dispensation {code} cancelled",
    NotificationKind.EXPIRING_DISPENSATION: "Dispensation {code} expires soon",
    NotificationKind.EXPIRING_AUTHORIZATION: "Authorization {code} expires soon",
    NotificationKind.EXPIRED_AUTHORIZATION: "Authorization {code} expired",
}


def select_dispensation_notification(
    old_status: DispensationStatus,
    new_status: DispensationStatus,
    old_renewals: int,
    new_renewals: int,
) -> NotificationKind | None:
    """First matching rule wins; at most one notification per update."""
    if new_renewals > old_renewals and new_status == DispensationStatus.ACTIVE:
        return NotificationKind.RENEWED_DISPENSATION
    if old_status == DispensationStatus.DRAFT and new_status == DispensationStatus.ACTIVE:
        return NotificationKind.NEW_DISPENSATION
    if new_status == DispensationStatus.ACTIVE:
        return NotificationKind.MODIFIED_DISPENSATION
    if new_status == DispensationStatus.EXPIRED and old_status != DispensationStatus.EXPIRED:
        return NotificationKind.EXPIRED_DISPENSATION
    if new_status == DispensationStatus.CANCELLED and old_status != DispensationStatus.CANCELLED:
        return NotificationKind.CANCELLED_DISPENSATION
    return None


@dataclass
class Notification:
    kind: NotificationKind
    code: str
    recipients: list[str]
    sender_name: str
    sender_email: str = ""
    detail: dict[str, Any] = field(default_factory=dict)

    @property
    def subject(self) -> str:
        return "[LHD] " + _SUBJECTS[self.kind].format(code=self.code)


class Notifier(Protocol):
    def notify(self, notification: Notification) -> None: ...


class OutboxNotifier:
    """Keeps notifications in memory; used by tests and dry runs."""

    def __init__(self):
        self.outbox: list[Notification] = []

    def notify(self, notification: Notification) -> None:
        self.outbox.append(notification)

    def kinds(self) -> list[NotificationKind]:
        return [n.kind for n in self.outbox]


class EmailNotifier:
    """Sends one plain-text email per notification over SMTP."""

    def __init__(self, server: str | None = None, from_addr: str | None = None):
        self.server = server or settings.SMTP_SERVER
        self.from_addr = from_addr or settings.EMAIL_FROM

    def notify(self, notification: Notification) -> None:
        recipients = [r for r in notification.recipients if r]
        if notification.sender_email:
            recipients.append(notification.sender_email)
        if not self.server or not recipients:
            logger.info("Not sending %s for %s: no SMTP server or recipients",
                        notification.kind.value, notification.code)
            return
        msg = EmailMessage()
        msg["Subject"] = notification.subject
        msg["From"] = self.from_addr
        msg["To"] = ", ".join(sorted(set(recipients)))
        lines = [f"{notification.subject}", "", f"Sent on behalf of {notification.sender_name}."]
        lines += [f"{key}: {value}" for key, value in notification.detail.items()]
        msg.set_content("\n".join(lines))
        with smtplib.SMTP(self.server) as s:
            s.send_message(msg)


def notify_safely(notifier: Notifier | None, notification: Notification) -> bool:
    """Deliver ``notification``; log and swallow delivery failures."""
    if notifier is None:
        return False
    try:
        notifier.notify(notification)
    except Exception:
        logger.exception("Failed to send %s for %s", notification.kind.value, notification.code)
        return False
    logger.info("Sent %s for %s to %d recipients",
                notification.kind.value, notification.code, len(notification.recipients))
    return True
