"""Tests for the declarative authorization and validation gate."""

from datetime import datetime

import pytest

from labhazards.errors import AuthorizationError, ValidationError
from labhazards.services.callers import ADMIN_CALLER, CATALYSE_CALLER, Capability
from labhazards.services.gate import (
    ApiCheck,
    Custom,
    InvalidParameter,
    Numeric,
    Pattern,
    Temporal,
    check_call,
    choice,
    comma_list,
    ensure_valid,
    from_query,
)

CHECK = ApiCheck(
    authorize=lambda caller: caller.can(Capability.EDIT_AUTHORIZATIONS),
    required={"req": from_query("req"), "date": from_query("date"), "ids": from_query("ids")},
    optional={"note": from_query("note")},
    validate={
        "req": Pattern(r"[A-Z][a-zA-Z0-9.]*-[a-zA-Z0-9.]*"),
        "date": Temporal(),
        "ids": comma_list(Numeric()),
        "note": Pattern(r"[a-z ]+"),
    },
)


def test_valid_call_returns_sanitized_params():
    params = check_call(CHECK, ADMIN_CALLER, {"req": "Unit-001", "date": "19/10/2026", "ids": "1,2,3"})

    assert params == {"req": "Unit-001", "date": datetime(2026, 10, 19), "ids": [1, 2, 3]}


def test_unauthorized_caller_is_refused_before_extraction():
    """Extractors never run for a caller without the capability."""

    def exploding(source):
        raise AssertionError("extractor should not run")

    check = ApiCheck(
        authorize=lambda caller: caller.can(Capability.EDIT_AUTHORIZATIONS),
        required={"req": exploding},
        validate={"req": Numeric()},
    )

    with pytest.raises(AuthorizationError) as exc_info:
        check_call(check, CATALYSE_CALLER, {})
    assert str(exc_info.value) == "Unauthorized"


def test_every_bad_parameter_is_reported_together():
    with pytest.raises(ValidationError) as exc_info:
        check_call(CHECK, ADMIN_CALLER, {"req": "unit001", "date": "someday", "note": "UPPER"})

    assert exc_info.value.problems == [
        ("req", "Failed Regex match"),
        ("date", "Invalid date"),
        ("ids", "is required"),
        ("note", "Failed Regex match"),
    ]
    assert str(exc_info.value).startswith("req: Failed Regex match; date: Invalid date")


def test_absent_optional_parameter_is_omitted():
    params = check_call(CHECK, ADMIN_CALLER, {"req": "A-1", "date": "2026-10-19", "ids": "4", "note": ""})
    assert "note" not in params


def test_undeclared_extractor_is_a_programming_error():
    check = ApiCheck(authorize=lambda caller: True, validate={"orphan": Numeric()})
    with pytest.raises(LookupError):
        check_call(check, ADMIN_CALLER, {"orphan": "1"})


def test_comma_list_reports_bad_element():
    with pytest.raises(InvalidParameter, match="Invalid number"):
        ensure_valid("1,two,3", comma_list(Numeric()))


@pytest.mark.parametrize("raw,expected", [("42", 42), ("1.5", 1.5), ("-3", -3)])
def test_numeric(raw, expected):
    assert ensure_valid(raw, Numeric()) == expected


@pytest.mark.parametrize("raw", ["nan", "inf", "twelve"])
def test_numeric_rejects_non_finite(raw):
    with pytest.raises(InvalidParameter):
        ensure_valid(raw, Numeric())


def test_pattern_must_match_whole_value():
    with pytest.raises(InvalidParameter):
        ensure_valid("Unit-001; drop", Pattern(r"[A-Z][a-zA-Z0-9.]*-[a-zA-Z0-9.]*"))


def test_custom_validator_can_reenter_dispatch():
    pairs = Custom(lambda value, validate: {
        key: validate(val, Numeric()) for key, val in (item.split("=") for item in value.split(";"))
    })
    assert ensure_valid("a=1;b=2", pairs) == {"a": 1, "b": 2}


def test_choice_is_case_insensitive_by_default():
    assert ensure_valid("YES", choice("yes", "no")) == "yes"
    with pytest.raises(InvalidParameter):
        ensure_valid("maybe", choice("yes", "no"))
