"""Tests for JSON schema validation of relation-change lists."""

from labhazards.schemas.changes import (
    ENTITY_CHANGES_SCHEMA,
    HOLDER_CHANGES_SCHEMA,
    TEXT_CHANGES_SCHEMA,
)
from labhazards.services.validation import validate_against_schema


def test_valid_holder_changes():
    changes = [{"status": "New", "sciper": 100001}, {"status": "Default", "sciper": 100002}]
    assert validate_against_schema(changes, HOLDER_CHANGES_SCHEMA) == []


def test_missing_required_fields():
    errors = validate_against_schema([{"status": "New"}], HOLDER_CHANGES_SCHEMA)
    assert any("sciper" in e for e in errors)


def test_entity_needs_name_or_id():
    assert validate_against_schema([{"status": "New", "id": 3}], ENTITY_CHANGES_SCHEMA) == []
    assert validate_against_schema([{"status": "New", "name": "CH A2 434"}], ENTITY_CHANGES_SCHEMA) == []
    assert len(validate_against_schema([{"status": "New"}], ENTITY_CHANGES_SCHEMA)) > 0


def test_invalid_status():
    errors = validate_against_schema([{"status": "Added", "name": "X-ray"}], TEXT_CHANGES_SCHEMA)
    assert errors and errors[0].startswith("[0/status]")


def test_list_is_required():
    errors = validate_against_schema({"status": "New", "name": "X-ray"}, TEXT_CHANGES_SCHEMA)
    assert len(errors) > 0
