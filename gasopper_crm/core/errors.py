"""Failure results shared by every CRM service.

Services raise these instead of transport exceptions; the HTTP layer maps
``status_code`` and ``code`` onto the JSON error envelope.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session


logger = logging.getLogger("gasopper.storage")


class CRMError(Exception):
    status_code: int = 500
    code: str = "error"

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundOrDenied(CRMError):
    """Target is absent or invisible to the actor; callers never learn which."""

    status_code = 404
    code = "not_found"


class ValidationFailed(CRMError):
    status_code = 422
    code = "validation_failed"


class ConflictFailed(CRMError):
    status_code = 409
    code = "conflict"


class ForbiddenOperation(CRMError):
    status_code = 403
    code = "forbidden"


class AuthenticationFailed(CRMError):
    status_code = 401
    code = "authentication_failed"


class OperationFailed(CRMError):
    status_code = 500
    code = "operation_failed"


@contextmanager
def storage_boundary(session: Session, operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("storage.failed", extra={"operation": operation, "error": str(exc)})
        raise OperationFailed(f"{operation} failed") from exc
