"""Bearer token authorization registry."""

from .auth import check_authorization, get_bearer_token, get_client_id, require_scope, resolve_client_id
from .errors import (
    AlreadyAuthorizedError,
    AuthorizationError,
    MalformedRecordError,
    NoScopeError,
    NoSuchEntityError,
    NoTokenError,
    NotAuthorizedError,
    OperationNotImplementedError,
)
from .models import (
    DEFAULT_SCOPE,
    SCOPE_ADMIN,
    SCOPE_READ,
    SCOPE_WRITE,
    Authorization,
    AuthorizationRequest,
    ScopeMatching,
    TokenType,
    has_scope,
    new_authorization,
)
from .store import AuthorizationStore, IdentityConflictPolicy, InMemoryAuthorizationStore
from .tokens import create_simple_id, create_simple_token

__all__ = [
    "check_authorization",
    "get_bearer_token",
    "get_client_id",
    "require_scope",
    "resolve_client_id",
    "AuthorizationError",
    "AlreadyAuthorizedError",
    "MalformedRecordError",
    "NoScopeError",
    "NoSuchEntityError",
    "NoTokenError",
    "NotAuthorizedError",
    "OperationNotImplementedError",
    "DEFAULT_SCOPE",
    "SCOPE_ADMIN",
    "SCOPE_READ",
    "SCOPE_WRITE",
    "Authorization",
    "AuthorizationRequest",
    "ScopeMatching",
    "TokenType",
    "has_scope",
    "new_authorization",
    "AuthorizationStore",
    "IdentityConflictPolicy",
    "InMemoryAuthorizationStore",
    "create_simple_id",
    "create_simple_token",
]
