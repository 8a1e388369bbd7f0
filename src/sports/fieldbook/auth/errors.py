"""
Application error taxonomy.

Every failure that crosses a component boundary is an ``ApplicationError`` tagged
with an ``ErrorKind``. Transports translate the kind into a status code; callers
that need to branch on the failure compare ``error.kind`` instead of catching a
specific subclass.

Messages carry a stable numbered code (``error-<area>-<number>``) so that log
lines and client reports can be correlated without leaking internals.

This module also holds the generic persistence-error translator shared by the
CRUD modules of the booking backend: it classifies a raw SQLAlchemy error into
``NotFound``, ``Conflict``, ``BadRequest`` or ``InternalFault``.
"""

import contextlib
import enum
from typing import Any, Dict, Iterable, Iterator, Optional

from sqlalchemy.exc import IntegrityError, NoResultFound, SQLAlchemyError


class ErrorKind(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    BAD_REQUEST = "bad_request"
    INTERNAL_FAULT = "internal_fault"


HTTP_STATUS: Dict[ErrorKind, int] = {
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.INTERNAL_FAULT: 500,
}


class ConfigurationError(Exception):
    """Raised when the process configuration cannot produce a working component."""


class ApplicationError(Exception):
    """
    Base class for typed application errors.

    Attributes:
        kind: The error category used by transports to choose a response.
        message: Human readable message, safe to return to API consumers.
        details: Optional structured data attached to the response body.
    """

    kind: ErrorKind = ErrorKind.INTERNAL_FAULT

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}

    @property
    def status(self) -> int:
        return HTTP_STATUS[self.kind]

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "kind": self.kind.value, **self.details}


class Unauthenticated(ApplicationError):
    """
    Missing, invalid or expired credential or token.

    ``reason`` lets transports distinguish an expired access token from an
    invalid one.
    """

    kind = ErrorKind.UNAUTHENTICATED

    def __init__(
        self,
        message: str,
        reason: str = "invalid",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details={"reason": reason, **(details or {})})
        self.reason = reason

    @staticmethod
    def token_missing() -> "Unauthenticated":
        return Unauthenticated(
            "error-auth-gate-1000 Missing bearer token", reason="missing"
        )

    @staticmethod
    def token_expired() -> "Unauthenticated":
        return Unauthenticated(
            "error-token-1001 Access token has expired", reason="expired"
        )

    @staticmethod
    def token_invalid() -> "Unauthenticated":
        return Unauthenticated("error-token-1002 Invalid access token")

    @staticmethod
    def invalid_credentials() -> "Unauthenticated":
        return Unauthenticated("error-session-1003 Invalid email or password")

    @staticmethod
    def refresh_token_mismatch() -> "Unauthenticated":
        return Unauthenticated("error-refresh-1004 Refresh tokens do not match")

    @staticmethod
    def refresh_token_expired() -> "Unauthenticated":
        return Unauthenticated(
            "error-refresh-1005 Refresh token has expired", reason="expired"
        )

    @staticmethod
    def provider_email_missing(provider: str) -> "Unauthenticated":
        return Unauthenticated(
            f"error-federated-1006 {provider.title()} account has no email"
        )

    @staticmethod
    def provider_subject_missing(provider: str) -> "Unauthenticated":
        return Unauthenticated(
            f"error-federated-1007 {provider.title()} account has no subject"
        )


class Forbidden(ApplicationError):
    kind = ErrorKind.FORBIDDEN

    @staticmethod
    def insufficient_role(
        required: Iterable[str], actual: Optional[str]
    ) -> "Forbidden":
        required_roles = sorted(required)
        return Forbidden(
            "error-auth-gate-1100 You do not have permission to access this resource. "
            f"Required: {', '.join(required_roles)}, got: {actual}",
            details={"required_roles": required_roles, "role": actual},
        )

    @staticmethod
    def principal_missing() -> "Forbidden":
        return Forbidden("error-auth-gate-1101 User not found in request context")

    @staticmethod
    def refresh_token_revoked() -> "Forbidden":
        return Forbidden("error-refresh-1102 Refresh token already revoked")


class NotFound(ApplicationError):
    kind = ErrorKind.NOT_FOUND

    @staticmethod
    def refresh_token(record_id: str) -> "NotFound":
        return NotFound(f"error-refresh-1200 Refresh token {record_id} not found")

    @staticmethod
    def record(model: str, identifiers: str) -> "NotFound":
        return NotFound(f"error-persistence-1201 {model} with {identifiers} not found")


class Conflict(ApplicationError):
    kind = ErrorKind.CONFLICT

    @staticmethod
    def email_taken(email: str) -> "Conflict":
        return Conflict(f"error-directory-1300 Email {email} already used.")

    @staticmethod
    def identity_linked(provider: str, provider_id: str) -> "Conflict":
        return Conflict(
            f"error-federated-1302 {provider.title()} account {provider_id} is "
            "already linked to another user"
        )

    @staticmethod
    def record(model: str, identifiers: str) -> "Conflict":
        return Conflict(
            f"error-persistence-1301 {model} with {identifiers} already exists"
        )


class BadRequest(ApplicationError):
    kind = ErrorKind.BAD_REQUEST

    @staticmethod
    def invalid_body(detail: str = "") -> "BadRequest":
        return BadRequest(f"error-request-1400 Invalid request body {detail}".strip())

    @staticmethod
    def invalid_reference(model: str, identifiers: str) -> "BadRequest":
        return BadRequest(
            f"error-persistence-1401 {model} with {identifiers} references a missing record"
        )


class InternalFault(ApplicationError):
    kind = ErrorKind.INTERNAL_FAULT

    @staticmethod
    def access_token_signing_failed() -> "InternalFault":
        return InternalFault(
            "error-token-1500 There was a problem generating access token"
        )

    @staticmethod
    def refresh_token_issue_failed() -> "InternalFault":
        return InternalFault(
            "error-refresh-1501 There was a problem when generating a refresh token"
        )

    @staticmethod
    def refresh_token_rotation_failed() -> "InternalFault":
        return InternalFault(
            "error-refresh-1502 There was a problem when revoking a refresh token"
        )

    @staticmethod
    def password_hashing_failed() -> "InternalFault":
        return InternalFault("error-session-1503 There was a problem checking credentials")

    @staticmethod
    def provider_user_create_failed() -> "InternalFault":
        return InternalFault(
            "error-federated-1504 There was a problem creating new provided user"
        )

    @staticmethod
    def provider_link_failed() -> "InternalFault":
        return InternalFault(
            "error-federated-1505 There was a problem linking provider to existing user"
        )

    @staticmethod
    def record(model: str, identifiers: str) -> "InternalFault":
        return InternalFault(
            f"error-persistence-1506 Failed to access {model} with {identifiers}"
        )


UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"


def _sqlstate(error: IntegrityError) -> Optional[str]:
    original = getattr(error, "orig", None)
    return getattr(original, "sqlstate", None) or getattr(original, "pgcode", None)


def _describe(identifiers: Dict[str, Any]) -> str:
    if not identifiers:
        return "the given identifiers"
    return ", ".join(f"{name} {value}" for name, value in identifiers.items())


def translate_persistence_error(
    error: Exception, model: str, **identifiers: Any
) -> ApplicationError:
    """
    Classify a persistence-layer error into an application error.

    Args:
        error: The raw error raised by SQLAlchemy or the database driver.
        model: Name of the model being accessed, used in the message.
        **identifiers: Identifying fields of the record, e.g. ``id="..."``.

    Returns:
        ``NotFound`` when a point lookup, update or delete found no row,
        ``Conflict`` on a unique-constraint violation, ``BadRequest`` on a
        foreign-key violation and ``InternalFault`` for anything else.
    """
    described = _describe(identifiers)

    if isinstance(error, ApplicationError):
        return error

    if isinstance(error, NoResultFound):
        return NotFound.record(model, described)

    if isinstance(error, IntegrityError):
        sqlstate = _sqlstate(error)
        message = str(error.orig if error.orig is not None else error)
        if sqlstate == UNIQUE_VIOLATION or "UNIQUE constraint failed" in message:
            return Conflict.record(model, described)
        if sqlstate == FOREIGN_KEY_VIOLATION or "FOREIGN KEY constraint failed" in message:
            return BadRequest.invalid_reference(model, described)

    return InternalFault.record(model, described)


@contextlib.contextmanager
def persistence_errors(model: str, **identifiers: Any) -> Iterator[None]:
    """Re-raise SQLAlchemy errors raised inside the block as application errors."""
    try:
        yield
    except SQLAlchemyError as e:
        raise translate_persistence_error(e, model, **identifiers) from e
