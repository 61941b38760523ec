"""Error taxonomy for the bearer authorization registry.

Every failure in the model, store and request check is raised as one of the
exceptions below. They all derive from AuthorizationError so the transport
layer can translate the whole family in one place.

Error Kinds:
    - NoTokenError: no bearer credential, or a malformed Authorization header
    - NoScopeError: a scope was required but none was supplied (reserved)
    - NotAuthorizedError: unknown, expired, revoked or under-scoped token
    - AlreadyAuthorizedError: conflicting registration under the reject policy
    - NoSuchEntityError: empty or malformed serialized record
    - OperationNotImplementedError: the store backend lacks the operation

NotAuthorizedError is undifferentiated: an unknown token and an expired one
raise the same error.

Used by:
    - src.auth.models: record parsing
    - src.auth.store: lookups, registration conflicts, deletion
    - src.auth.auth: request-time decision
    - src.service.main: HTTP status mapping
"""

from typing import Optional


class AuthorizationError(Exception):
    """Base class for all authorization registry failures."""

    message = "authorization error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)


class NoTokenError(AuthorizationError):
    """Raised when no bearer token was provided."""

    message = "no token provided"


class NoScopeError(AuthorizationError):
    """Raised when no scope was provided."""

    message = "no scope provided"


class NotAuthorizedError(AuthorizationError):
    """Raised when the caller is not authorized."""

    message = "not authorized"


class AlreadyAuthorizedError(AuthorizationError):
    """Raised when a registration collides with an existing authorization."""

    message = "already authorized"


class NoSuchEntityError(AuthorizationError):
    """Raised when the authorization does not exist or cannot be parsed."""

    message = "entity does not exist"


class MalformedRecordError(NoSuchEntityError):
    """Raised when a serialized authorization record cannot be parsed.

    Attributes:
        line_number: 1-based position of the record in its source, when it was
            read from a multi-line dump. None for single-record parsing.
    """

    message = "malformed authorization record"

    def __init__(self, message: Optional[str] = None, line_number: Optional[int] = None):
        if line_number is not None:
            message = f"{message or self.message} (line {line_number})"
        super().__init__(message)
        self.line_number = line_number


class OperationNotImplementedError(AuthorizationError):
    """Raised by store backends that do not support an operation."""

    message = "not implemented"
