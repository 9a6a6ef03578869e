"""
Declarative authorization and parameter validation for entry points.

An ``ApiCheck`` names who may call an endpoint and which parameters it
takes. ``check_call`` refuses unauthorized callers before touching any
parameter, then extracts and validates every declared parameter, collecting
all failures into one ValidationError.

Validators are a closed set:
- ``Pattern(regex)``  the whole value must match
- ``Numeric()``       int when integral, float otherwise
- ``Temporal()``      ISO-8601 or dd/mm/yyyy date
- ``Custom(fn)``      ``fn(value, validate)``; ``validate(value, validator)``
  re-enters the same dispatch, e.g. for comma-separated lists
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Union

from labhazards.errors import AuthorizationError, ValidationError
from labhazards.services.callers import Caller
from labhazards.services.dates import parse_date


@dataclass(frozen=True)
class Pattern:
    regex: re.Pattern

    def __init__(self, regex: str | re.Pattern):
        object.__setattr__(self, "regex", re.compile(regex) if isinstance(regex, str) else regex)


@dataclass(frozen=True)
class Numeric:
    pass


@dataclass(frozen=True)
class Temporal:
    pass


@dataclass(frozen=True)
class Custom:
    fn: Callable[[str, Callable[[str, "Validator"], Any]], Any]


Validator = Union[Pattern, Numeric, Temporal, Custom]
Extractor = Callable[[Mapping[str, Any]], Any]


class InvalidParameter(Exception):
    """Raised by validators; collected by ``check_call``."""


def ensure_valid(value: str, validator: Validator) -> Any:
    """Validate one raw value, returning its sanitized form."""
    if isinstance(validator, Pattern):
        if validator.regex.fullmatch(value):
            return value
        raise InvalidParameter("Failed Regex match")
    if isinstance(validator, Numeric):
        try:
            return int(value)
        except (TypeError, ValueError):
            pass
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise InvalidParameter("Invalid number")
        if math.isnan(number) or math.isinf(number):
            raise InvalidParameter("Invalid number")
        return number
    if isinstance(validator, Temporal):
        try:
            return parse_date(str(value))
        except ValueError:
            raise InvalidParameter("Invalid date")
    if isinstance(validator, Custom):
        return validator.fn(value, ensure_valid)
    raise TypeError(f"Bad validator {validator!r}")


def comma_list(item: Validator) -> Custom:
    """Validator for ``a,b,c`` where each element must pass ``item``."""
    return Custom(lambda value, validate: [validate(part, item) for part in str(value).split(",")])


def choice(*allowed: str, case_sensitive: bool = False) -> Custom:
    def _choose(value, _validate):
        candidates = {a if case_sensitive else a.lower(): a for a in allowed}
        key = value if case_sensitive else str(value).lower()
        if key not in candidates:
            raise InvalidParameter(f"Must be one of {', '.join(allowed)}")
        return candidates[key]

    return Custom(_choose)


def from_query(name: str) -> Extractor:
    return lambda source: source.get(name)


@dataclass(frozen=True)
class ApiCheck:
    authorize: Callable[[Caller], bool]
    validate: Mapping[str, Validator]
    required: Mapping[str, Extractor] = field(default_factory=dict)
    optional: Mapping[str, Extractor] = field(default_factory=dict)


def check_call(check: ApiCheck, caller: Caller, source: Mapping[str, Any]) -> dict[str, Any]:
    """
    Authorize ``caller`` and return the validated parameters from ``source``.

    Raises AuthorizationError before any extraction when the caller is not
    allowed, and a single ValidationError listing every bad parameter.
    """
    if not check.authorize(caller):
        raise AuthorizationError()

    params: dict[str, Any] = {}
    problems: list[tuple[str, str]] = []
    for param, validator in check.validate.items():
        if param in check.required:
            raw = check.required[param](source)
            if raw is None or raw == "":
                problems.append((param, "is required"))
                continue
        elif param in check.optional:
            raw = check.optional[param](source)
            if raw is None or raw == "":
                continue
        else:
            raise LookupError(f"Don't know how to get {param} from request")
        try:
            params[param] = ensure_valid(raw, validator)
        except InvalidParameter as exc:
            problems.append((param, str(exc)))

    if problems:
        raise ValidationError(problems)
    return params
