"""
JSON Schema validation service.

Collects all errors rather than failing on the first one, each prefixed with
the JSON path of the offending element.
"""

from typing import Any

import jsonschema


def validate_against_schema(data: Any, schema: dict[str, Any]) -> list[str]:
    """
    Validate a value against a JSON schema.
    Returns a list of error messages (empty list = valid).
    """
    validator = jsonschema.Draft7Validator(schema)
    errors = []
    for error in validator.iter_errors(data):
        path = "/".join(str(p) for p in error.absolute_path)
        errors.append(f"[{path}] {error.message}" if path else error.message)
    return errors
