"""Tests for unit tree deletion and lookups."""

import pytest

from labhazards.errors import AuthorizationError, ConflictError, StaleReferenceError
from labhazards.lifecycle import authorizations, units
from labhazards.models.organization import Person, Unit, UnitHasCosec, UnitHasProfessor, UnitHasRoom
from labhazards.models.permits import Dispensation, DispensationHasUnit
from labhazards.services import references
from labhazards.services.callers import ADMIN_CALLER, CATALYSE_CALLER, SNOW_CALLER
from labhazards.services.snapshots import unit_snapshot


@pytest.fixture
def tree(db, seeded):
    """LCBM > LCBM-A > LCBM-A1, plus LCBM-B; each with some links."""
    root = seeded["unit"]
    child = Unit(name="LCBM-A", parent_id=root.id)
    other_child = Unit(name="LCBM-B", parent_id=root.id)
    db.add_all([child, other_child])
    db.flush()
    grandchild = Unit(name="LCBM-A1", parent_id=child.id)
    db.add(grandchild)
    db.flush()
    disp = Dispensation(dispensation="DISP-1", subject_other="x")
    db.add(disp)
    db.flush()
    db.add_all([
        UnitHasRoom(id_unit=grandchild.id, id_lab=seeded["other_room"].id),
        UnitHasCosec(id_unit=child.id, id_person=seeded["person"].id_person),
        UnitHasCosec(id_unit=grandchild.id, id_person=seeded["person"].id_person),
        UnitHasProfessor(id_unit=grandchild.id, id_person=seeded["person"].id_person),
        DispensationHasUnit(id_dispensation=disp.id_dispensation, id_unit=other_child.id),
    ])
    db.commit()
    return {"root": root, "child": child, "other_child": other_child, "grandchild": grandchild}


def _ref(unit):
    return references.mint(unit.id, unit_snapshot(unit))


def test_subtree_is_ordered_children_first(db, tree):
    names = [u.name for u in units.subtree_post_order(db, tree["root"])]
    assert names == ["LCBM-A1", "LCBM-A", "LCBM-B", "LCBM"]


def test_delete_removes_subtree_and_links(db, seeded, tree):
    deleted = units.delete_unit_cascade(db, ADMIN_CALLER, _ref(tree["root"]))

    assert deleted == ["LCBM-A1", "LCBM-A", "LCBM-B", "LCBM"]
    assert [u.name for u in db.query(Unit).all()] == ["LMIS"]
    assert db.query(UnitHasRoom).count() == 0
    assert db.query(UnitHasCosec).count() == 0
    assert db.query(UnitHasProfessor).count() == 0
    assert db.query(DispensationHasUnit).count() == 0
    assert db.query(Person).count() == 1
    assert db.query(Dispensation).count() == 1


def test_delete_refused_while_a_unit_owns_authorizations(db, tree, clock):
    authorizations.create_authorization(
        db, ADMIN_CALLER, unit_id=tree["grandchild"].id, code="Unit-001", expiration_date=clock()
    )

    with pytest.raises(ConflictError, match="Unit-001"):
        units.delete_unit_cascade(db, ADMIN_CALLER, _ref(tree["root"]))
    assert db.query(Unit).count() == 5


def test_delete_with_stale_reference(db, tree):
    ref = _ref(tree["child"])
    tree["child"].name = "LCBM-AA"
    db.commit()

    with pytest.raises(StaleReferenceError):
        units.delete_unit_cascade(db, ADMIN_CALLER, ref)


def test_delete_requires_edit_units(db, tree):
    with pytest.raises(AuthorizationError):
        units.delete_unit_cascade(db, SNOW_CALLER, _ref(tree["root"]))


def test_labs_and_units(db, seeded, tree):
    rows = units.list_labs_and_units(db, SNOW_CALLER)
    assert rows == [
        {"id_lab": seeded["room"].id, "id_unit": seeded["unit"].id, "lab_display": "CH A2 434"},
        {"id_lab": seeded["other_room"].id, "id_unit": tree["grandchild"].id, "lab_display": "CH B3 100"},
    ]
    assert units.list_labs_and_units(db, SNOW_CALLER, room="B3")[0]["lab_display"] == "CH B3 100"

    with pytest.raises(AuthorizationError):
        units.list_labs_and_units(db, CATALYSE_CALLER)


def test_list_rooms_hides_deleted(db, seeded):
    assert [r.name for r in units.list_rooms(db, SNOW_CALLER)] == ["CH A2 434", "CH B3 100"]


def test_profs_and_cosecs_only_for_units_with_rooms(db, tree):
    """LCBM-A has a COSEC but no room, so it is left out."""
    rows = units.list_profs_and_cosecs(db, SNOW_CALLER)

    assert rows == [
        {"unit": "LCBM", "id_unit": tree["root"].id, "sciper": "", "sciper_cosec": ""},
        {"unit": "LCBM-A1", "id_unit": tree["grandchild"].id, "sciper": "100001", "sciper_cosec": "100001"},
    ]
    assert [r["unit"] for r in units.list_profs_and_cosecs(db, SNOW_CALLER, unit="A1")] == ["LCBM-A1"]

    with pytest.raises(AuthorizationError):
        units.list_profs_and_cosecs(db, CATALYSE_CALLER)
