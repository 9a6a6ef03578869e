"""
Error taxonomy shared by the lifecycle engine and the HTTP layer.

Each error carries the HTTP status the API layer maps it to; the lifecycle
code itself never looks at status codes.
"""

from __future__ import annotations


class LHDError(Exception):
    status_code = 500


class ValidationError(LHDError):
    """Malformed or missing input, aggregated across every bad parameter."""

    status_code = 400

    def __init__(self, problems: list[tuple[str, str]] | str):
        if isinstance(problems, str):
            problems = [("input", problems)]
        self.problems = list(problems)
        super().__init__(
            "; ".join(f"{param}: {error}" for param, error in self.problems)
        )


class AuthorizationError(LHDError):
    """Capability check failed. Never says which capability was missing."""

    status_code = 403

    def __init__(self, *_args):
        super().__init__("Unauthorized")


class NotFoundError(LHDError):
    status_code = 404


class StaleReferenceError(LHDError):
    status_code = 409


class ConflictError(LHDError):
    status_code = 409


class DecodeError(LHDError):
    status_code = 400
