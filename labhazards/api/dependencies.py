"""
Request-scoped dependencies: caller identity, collaborators, gated params.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from fastapi import Depends, Header, Request

from labhazards.errors import AuthorizationError
from labhazards.services.callers import Caller, caller_for_token
from labhazards.services.gate import ApiCheck, check_call
from labhazards.services.notifications import EmailNotifier, Notifier
from labhazards.services.persons import Directory, RequestsDirectory

logger = logging.getLogger(__name__)


def get_caller(authorization: str | None = Header(None)) -> Caller:
    """Resolve ``Authorization: Bearer <token>`` to a fixed caller."""
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    caller = caller_for_token(token)
    if caller is None:
        logger.warning("Rejected request with unknown bearer token")
        raise AuthorizationError()
    return caller


def get_notifier() -> Notifier:
    return EmailNotifier()


def get_directory() -> Directory:
    return RequestsDirectory()


def gated(check: ApiCheck) -> Callable[..., dict[str, Any]]:
    """Dependency returning the validated query parameters for ``check``."""

    def _params(request: Request, caller: Caller = Depends(get_caller)) -> dict[str, Any]:
        return check_call(check, caller, request.query_params)

    return _params
