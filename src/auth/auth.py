"""Request-time authorization checks for bearer tokens.

This module answers the two questions asked for every protected request: is
the presented bearer token currently valid, and does it carry the requested
scope. It also provides the FastAPI dependencies that wire those checks into
endpoints.

Authorization Flow:
    1. Extract the token from an "Authorization: Bearer <token>" header
    2. Resolve the token through the authorization store
    3. Reject unknown, revoked or expired authorizations
    4. Grant admin-scoped authorizations unconditionally
    5. Otherwise require the requested scope

Security Model:
    - Unknown and invalid tokens produce the same NotAuthorizedError, so a
      caller cannot learn whether a token ever existed
    - Identity resolution (resolve_client_id) does not check scope and is not
      an authorization grant
    - Only a short token prefix is ever logged

Dependencies:
    - fastapi: header extraction and HTTP error responses
    - structlog: security event logging in the FastAPI dependencies

Used by:
    - src.service.main: protecting API endpoints via require_scope()
"""

from typing import Optional

import structlog
from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from .errors import AuthorizationError, NoTokenError, NotAuthorizedError
from .models import Authorization, ScopeMatching, has_scope
from .store import AuthorizationStore, token_prefix

logger = structlog.get_logger()

BEARER_SCHEME = "Bearer"

# The raw Authorization header; parsed by get_bearer_token()
# auto_error=False allows manual error handling with custom messages
bearer_header = APIKeyHeader(name="Authorization", auto_error=False)


def get_bearer_token(header: Optional[str]) -> str:
    """Extract the token from an Authorization header value.

    Only the exact form "Bearer <token>" is accepted: the scheme keyword, a
    single space and the token.

    Args:
        header: Raw Authorization header value, or None if absent

    Returns:
        str: The bearer token

    Raises:
        NoTokenError: If the header is absent, empty or malformed
    """
    if not header:
        raise NoTokenError()

    parts = header.split(" ")
    if len(parts) != 2:
        raise NoTokenError()
    if parts[0] != BEARER_SCHEME or not parts[1]:
        raise NoTokenError()

    return parts[1]


def check_authorization(
    store: AuthorizationStore,
    token: str,
    scope: str,
    matching: ScopeMatching = ScopeMatching.TOKEN,
) -> Authorization:
    """Validate a presented token against a required scope.

    Args:
        store: Store used to resolve the token
        token: The presented bearer token
        scope: The scope required by the caller
        matching: Scope comparison strategy

    Returns:
        Authorization: The matching, valid authorization

    Raises:
        NoTokenError: If no token was presented
        NotAuthorizedError: If the token is unknown, revoked, expired or lacks
            the scope, or if the lookup itself failed
    """
    if not token:
        raise NoTokenError()

    try:
        auth = store.find_by_token(token)
    except AuthorizationError as e:
        raise NotAuthorizedError() from e

    if auth is None or not auth.is_valid():
        raise NotAuthorizedError()

    if auth.has_admin_scope(matching):
        return auth

    if not has_scope(auth.scope, scope, matching):
        raise NotAuthorizedError()

    return auth


def resolve_client_id(store: AuthorizationStore, token: str) -> str:
    """Return the client id owning a token.

    No scope or validity check is performed.

    Raises:
        NoTokenError: If no token was presented
        NotAuthorizedError: If the token resolves to no authorization
    """
    # TODO: cache token -> client_id once a persistent store backend exists
    auth = store.find_by_token(token)
    if auth is None:
        raise NotAuthorizedError()
    return auth.client_id


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": BEARER_SCHEME},
    )


async def get_bearer_credential(authorization: Optional[str] = Security(bearer_header)) -> str:
    """FastAPI dependency returning the bearer token of the current request.

    Raises:
        HTTPException: 401 Unauthorized if the header is missing or malformed
    """
    try:
        return get_bearer_token(authorization)
    except NoTokenError:
        logger.warning("Missing or malformed bearer token in request")
        raise _unauthorized("Missing bearer token") from None


def require_scope(scope: str):
    """Build a FastAPI dependency that authorizes the request for a scope.

    The store and settings are taken from the service container held in
    app.state.container.

    Args:
        scope: Scope the endpoint requires, e.g. "api:read"

    Returns:
        A dependency resolving to the Authorization of the caller

    Usage:
        @app.get("/items")
        async def items(auth: Authorization = Depends(require_scope("api:read"))):
            ...
    """

    async def dependency(request: Request, token: str = Security(get_bearer_credential)) -> Authorization:
        container = request.app.state.container
        store = container.get("authorization_store")
        settings = container.get("settings")

        try:
            auth = check_authorization(store, token, scope, settings.scope_matching)
        except AuthorizationError:
            # Same response for unknown, invalid and under-scoped tokens
            logger.warning(
                "Authorization denied",
                required_scope=scope,
                token_prefix=token_prefix(token),
                extra={"security_event": True},
            )
            raise _unauthorized("Not authorized") from None

        logger.info(
            "Request authorized",
            realm=auth.realm,
            client_id=auth.client_id,
            required_scope=scope,
        )
        return auth

    return dependency


async def get_client_id(request: Request, token: str = Security(get_bearer_credential)) -> str:
    """FastAPI dependency returning the client id owning the presented token.

    Raises:
        HTTPException: 401 Unauthorized if the token is unknown
    """
    store = request.app.state.container.get("authorization_store")
    try:
        return resolve_client_id(store, token)
    except AuthorizationError:
        logger.warning("Unknown bearer token", token_prefix=token_prefix(token))
        raise _unauthorized("Not authorized") from None
