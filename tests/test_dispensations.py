"""Tests for the dispensation lifecycle and its notifications."""

import base64
import os
from datetime import timedelta

import pytest

from labhazards.config import settings
from labhazards.errors import NotFoundError, StaleReferenceError, ValidationError
from labhazards.lifecycle import dispensations
from labhazards.models.organization import Person
from labhazards.models.permits import (
    Dispensation,
    DispensationHasHolder,
    DispensationHasTicket,
    DispensationStatus,
)
from labhazards.services import references
from labhazards.services.callers import ADMIN_CALLER
from labhazards.services.notifications import (
    NotificationKind,
    select_dispensation_notification,
)
from labhazards.services.relations import RelationChange
from labhazards.services.snapshots import dispensation_snapshot


@pytest.fixture
def make_dispensation(db, seeded, clock, outbox):
    def _make(status="Draft", days=60, **overrides):
        kwargs = dict(
            subject="Lasers",
            status=status,
            date_end=clock() + timedelta(days=days),
            holders=[RelationChange.add(sciper=100001)],
            rooms=[RelationChange.add(name="CH A2 434")],
            units=[RelationChange.add(name="LCBM")],
            tickets=[RelationChange.add(name="INC0001")],
            notifier=outbox,
            now=clock,
        )
        kwargs.update(overrides)
        return dispensations.create_dispensation(db, ADMIN_CALLER, **kwargs)

    return _make


def _ref(disp):
    return references.mint(disp.id_dispensation, dispensation_snapshot(disp))


def test_create_assigns_code_from_primary_key(db, make_dispensation):
    disp = make_dispensation()

    assert disp.dispensation == f"DISP-{disp.id_dispensation}"
    assert disp.status is DispensationStatus.DRAFT
    assert disp.renewals == 0
    assert disp.created_by == "LHD admin"
    assert db.query(DispensationHasHolder).count() == 1
    assert db.query(DispensationHasTicket).one().ticket_number == "INC0001"


def test_activating_a_draft_sends_new_not_modified(db, make_dispensation, outbox):
    disp = make_dispensation()
    assert outbox.outbox == []

    _, kind = dispensations.update_dispensation(
        db, ADMIN_CALLER, _ref(disp), status="Active", notifier=outbox
    )

    assert kind is NotificationKind.NEW_DISPENSATION
    assert outbox.kinds() == [NotificationKind.NEW_DISPENSATION]
    assert outbox.outbox[0].recipients == ["marie@example.com"]
    assert outbox.outbox[0].code == disp.dispensation


def test_created_active_notifies_holders(make_dispensation, outbox):
    make_dispensation(status="Active")
    assert outbox.kinds() == [NotificationKind.NEW_DISPENSATION]


def test_later_end_date_renews(db, make_dispensation, outbox, clock):
    disp = make_dispensation(status="Active")
    disp.date_expiry_notified = clock()
    db.commit()

    updated, kind = dispensations.update_dispensation(
        db, ADMIN_CALLER, _ref(disp), date_end=clock() + timedelta(days=400), notifier=outbox
    )

    assert updated.renewals == 1
    assert updated.date_expiry_notified is None
    assert kind is NotificationKind.RENEWED_DISPENSATION


def test_same_day_end_date_is_not_a_renewal(db, make_dispensation, outbox):
    disp = make_dispensation(status="Active")
    updated, kind = dispensations.update_dispensation(
        db, ADMIN_CALLER, _ref(disp),
        date_end=disp.date_end + timedelta(hours=6), comment="moved desk", notifier=outbox,
    )

    assert updated.renewals == 0
    assert updated.comment == "moved desk"
    assert kind is NotificationKind.MODIFIED_DISPENSATION


def test_cancelling_notifies_once_and_is_terminal(db, make_dispensation, outbox):
    disp = make_dispensation(status="Active")
    updated, kind = dispensations.update_dispensation(
        db, ADMIN_CALLER, _ref(disp), status="Cancelled", notifier=outbox
    )
    assert kind is NotificationKind.CANCELLED_DISPENSATION

    with pytest.raises(ValidationError, match="cannot change from Cancelled to Active"):
        dispensations.update_dispensation(db, ADMIN_CALLER, _ref(updated), status="Active")


def test_active_cannot_go_back_to_draft(db, make_dispensation):
    disp = make_dispensation(status="Active")
    with pytest.raises(ValidationError):
        dispensations.update_dispensation(db, ADMIN_CALLER, _ref(disp), status="Draft")
    db.refresh(disp)
    assert disp.status is DispensationStatus.ACTIVE


def test_stale_reference_is_refused(db, make_dispensation):
    disp = make_dispensation()
    old_ref = _ref(disp)
    dispensations.update_dispensation(db, ADMIN_CALLER, _ref(disp), comment="first")

    with pytest.raises(StaleReferenceError):
        dispensations.update_dispensation(db, ADMIN_CALLER, old_ref, comment="second")


def test_subject_is_required(make_dispensation):
    with pytest.raises(ValidationError):
        make_dispensation(subject=None)


def test_unknown_subject_is_not_found(db, make_dispensation):
    with pytest.raises(NotFoundError):
        make_dispensation(subject="Cryogenics")
    assert db.query(Dispensation).count() == 0


def test_free_text_subject_is_accepted(make_dispensation):
    disp = make_dispensation(subject=None, subject_other="Glovebox")
    assert disp.id_dispensation_subject is None
    assert disp.subject_other == "Glovebox"


def test_unknown_unit_rolls_back(db, make_dispensation):
    with pytest.raises(NotFoundError):
        make_dispensation(units=[RelationChange.add(name="NOPE")])
    assert db.query(Dispensation).count() == 0


def test_document_is_written_under_dispensation_folder(make_dispensation, monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "DISPENSATION_DOCUMENT_FOLDER", str(tmp_path))
    disp = make_dispensation(
        file_name="approval.pdf",
        file_content=base64.b64encode(b"%PDF-1.4").decode(),
    )

    expected = os.path.join(str(tmp_path), str(disp.id_dispensation), "approval.pdf")
    assert disp.file_path == expected
    with open(expected, "rb") as fh:
        assert fh.read() == b"%PDF-1.4"


def test_document_name_cannot_escape_folder(db, make_dispensation, monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "DISPENSATION_DOCUMENT_FOLDER", str(tmp_path))
    with pytest.raises(ValidationError):
        make_dispensation(file_name="../evil.sh", file_content=base64.b64encode(b"x").decode())
    assert db.query(Dispensation).count() == 0


def test_rolled_back_create_leaves_no_document(db, make_dispensation, monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "DISPENSATION_DOCUMENT_FOLDER", str(tmp_path))
    with pytest.raises(NotFoundError):
        make_dispensation(
            rooms=[RelationChange.add(name="NoSuchRoom")],
            file_name="permit.pdf",
            file_content=base64.b64encode(b"%PDF-1.4").decode(),
        )

    assert db.query(Dispensation).count() == 0
    assert os.listdir(tmp_path) == []


def test_rolled_back_update_keeps_stored_document(db, make_dispensation, monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "DISPENSATION_DOCUMENT_FOLDER", str(tmp_path))
    disp = make_dispensation(
        file_name="permit.pdf",
        file_content=base64.b64encode(b"ORIGINAL").decode(),
    )

    with pytest.raises(NotFoundError):
        dispensations.update_dispensation(
            db, ADMIN_CALLER, _ref(disp),
            rooms=[RelationChange.add(name="NoSuchRoom")],
            file_name="permit.pdf",
            file_content=base64.b64encode(b"REPLACED").decode(),
        )

    db.refresh(disp)
    with open(disp.file_path, "rb") as fh:
        assert fh.read() == b"ORIGINAL"


def test_bad_document_content_is_refused_before_any_write(db, make_dispensation, monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "DISPENSATION_DOCUMENT_FOLDER", str(tmp_path))
    with pytest.raises(ValidationError):
        make_dispensation(file_name="permit.pdf", file_content="not base64!")
    assert db.query(Dispensation).count() == 0


def test_stale_update_never_reaches_the_directory(db, make_dispensation, directory):
    disp = make_dispensation()
    old_ref = _ref(disp)
    dispensations.update_dispensation(db, ADMIN_CALLER, _ref(disp), comment="first")

    with pytest.raises(StaleReferenceError):
        dispensations.update_dispensation(
            db, ADMIN_CALLER, old_ref,
            holders=[RelationChange.add(sciper=200002)],
            directory=directory,
        )
    assert directory.lookups == []
    assert db.query(Person).filter(Person.sciper == 200002).count() == 0


def test_failed_delivery_does_not_undo_the_update(db, make_dispensation):
    class BrokenNotifier:
        def notify(self, notification):
            raise ConnectionError("smtp down")

    disp = make_dispensation()
    updated, kind = dispensations.update_dispensation(
        db, ADMIN_CALLER, _ref(disp), status="Active", notifier=BrokenNotifier()
    )

    assert kind is NotificationKind.NEW_DISPENSATION
    db.refresh(updated)
    assert updated.status is DispensationStatus.ACTIVE


def test_delete_removes_links(db, make_dispensation):
    disp = make_dispensation()
    dispensations.delete_dispensation(db, ADMIN_CALLER, _ref(disp))

    assert db.query(Dispensation).count() == 0
    assert db.query(DispensationHasHolder).count() == 0
    assert db.query(DispensationHasTicket).count() == 0


def test_list_by_code_and_ticket(db, make_dispensation):
    first = make_dispensation()
    make_dispensation(tickets=[RelationChange.add(name="INC0002")])

    found, total = dispensations.list_dispensations(db, code=first.dispensation)
    assert total == 1
    assert found[0].id_dispensation == first.id_dispensation

    found, total = dispensations.list_dispensations(db, ticket="INC0002")
    assert total == 1

    described = dispensations.describe_dispensation(db, found[0])
    assert described["subject"] == "Lasers"
    assert described["units"] == ["LCBM"]


@pytest.mark.parametrize(
    "old_status,new_status,old_renewals,new_renewals,expected",
    [
        ("Draft", "Active", 0, 1, NotificationKind.RENEWED_DISPENSATION),
        ("Draft", "Active", 0, 0, NotificationKind.NEW_DISPENSATION),
        ("Pending", "Active", 0, 0, NotificationKind.MODIFIED_DISPENSATION),
        ("Active", "Active", 2, 2, NotificationKind.MODIFIED_DISPENSATION),
        ("Active", "Expired", 0, 0, NotificationKind.EXPIRED_DISPENSATION),
        ("Expired", "Expired", 0, 0, None),
        ("Active", "Cancelled", 1, 1, NotificationKind.CANCELLED_DISPENSATION),
        ("Draft", "Pending", 0, 0, None),
    ],
)
def test_notification_selection_first_match_wins(old_status, new_status, old_renewals, new_renewals, expected):
    kind = select_dispensation_notification(
        DispensationStatus(old_status), DispensationStatus(new_status), old_renewals, new_renewals
    )
    assert kind is expected
