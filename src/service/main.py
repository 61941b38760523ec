"""FastAPI service exposing the bearer authorization registry.

This module is the HTTP transport around the authorization core. It extracts
bearer tokens from requests, delegates every decision to src.auth, and maps
the authorization error taxonomy to HTTP responses.

API Endpoints:
    - GET /: service identification (no authentication)
    - GET /healthz: store statistics (api:read)
    - GET /whoami: client id owning the presented token
    - POST /authorizations: issue and register an authorization (api:admin)
    - GET /authorizations/{realm}/{client_id}: look up an authorization (api:admin)
    - POST /authorizations/{realm}/{client_id}/revoke: revoke (api:admin)
    - DELETE /authorizations/{realm}/{client_id}: delete (api:admin)

Error Mapping:
    - NoTokenError, NotAuthorizedError -> 401 Unauthorized
    - NoScopeError -> 403 Forbidden
    - AlreadyAuthorizedError -> 409 Conflict
    - NoSuchEntityError, MalformedRecordError -> 400 Bad Request
    - OperationNotImplementedError -> 501 Not Implemented

Bootstrap:
    Nobody can issue authorizations until an admin token exists. Set
    AUTH_ADMIN_TOKEN, or AUTH_SEED_FILE with an api:admin record, before start.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import structlog
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..auth import require_scope
from ..auth.auth import get_client_id
from ..auth.errors import (
    AlreadyAuthorizedError,
    AuthorizationError,
    NoScopeError,
    NoSuchEntityError,
    NoTokenError,
    NotAuthorizedError,
    OperationNotImplementedError,
)
from ..auth.models import (
    SCOPE_ADMIN,
    SCOPE_READ,
    Authorization,
    AuthorizationRequest,
    new_authorization,
)
from ..auth.tokens import create_simple_id
from ..config import AuthSettings, configure_logging
from ..container import configure_services

# Load environment variables
load_dotenv()

logger = structlog.get_logger()

SERVICE_NAME = "Bearer Authorization Registry"
SERVICE_VERSION = "1.0.0"

_ERROR_STATUS = (
    (NoTokenError, status.HTTP_401_UNAUTHORIZED),
    (NotAuthorizedError, status.HTTP_401_UNAUTHORIZED),
    (NoScopeError, status.HTTP_403_FORBIDDEN),
    (AlreadyAuthorizedError, status.HTTP_409_CONFLICT),
    (NoSuchEntityError, status.HTTP_400_BAD_REQUEST),
    (OperationNotImplementedError, status.HTTP_501_NOT_IMPLEMENTED),
)


class IssuedAuthorization(Authorization):
    """Response body for issuance and lookup, including the internal state."""

    revoked: bool = False
    created: int = 0
    updated: int = 0


def _to_response(auth: Authorization) -> IssuedAuthorization:
    return IssuedAuthorization(
        **auth.model_dump(), revoked=auth.revoked, created=auth.created, updated=auth.updated
    )


def error_status(exc: AuthorizationError) -> int:
    """Map an authorization error to an HTTP status code."""
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_app(settings: Optional[AuthSettings] = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Service settings, read from the environment when omitted

    Returns:
        FastAPI: Application whose lifespan creates and disposes the container
    """
    if settings is None:
        settings = AuthSettings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        container = configure_services(settings)

        logger.info("Initializing services...")
        store = container.get("authorization_store")
        logger.info("Authorization store ready", backend=type(store).__name__)

        # Store container in app state for access in endpoints
        app.state.container = container

        yield

        logger.info("Shutting down services...")
        await container.dispose_async()

    app = FastAPI(
        title=SERVICE_NAME,
        version=SERVICE_VERSION,
        description="Issues, validates and revokes scoped bearer tokens",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=3600,
    )

    @app.exception_handler(AuthorizationError)
    async def authorization_error_handler(request: Request, exc: AuthorizationError):
        status_code = error_status(exc)
        headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
        return JSONResponse(status_code=status_code, content={"detail": str(exc)}, headers=headers)

    @app.get("/")
    async def root():
        """Service identification, no authentication required."""
        return {"service": SERVICE_NAME, "version": SERVICE_VERSION, "status": "running"}

    @app.get("/healthz")
    async def health(request: Request, auth: Authorization = Depends(require_scope(SCOPE_READ))):
        """Report store statistics.

        The authorizations field is null when the store backend does not
        provide statistics.

        HTTP Status Codes:
            - 200 OK: Store reachable
            - 401 Unauthorized: Missing, invalid or under-scoped token
        """
        store = request.app.state.container.get("authorization_store")
        try:
            stats = store.stats()
        except OperationNotImplementedError:
            stats = None
        logger.info("Health check accessed", client_id=auth.client_id, stats=stats)
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "authorizations": stats,
        }

    @app.get("/whoami")
    async def whoami(client_id: str = Depends(get_client_id)):
        """Return the client id owning the presented token.

        This resolves identity only; it does not check scope.
        """
        return {"client_id": client_id}

    @app.post("/authorizations", response_model=IssuedAuthorization, status_code=status.HTTP_201_CREATED)
    async def issue_authorization(
        request: Request,
        authorization_request: AuthorizationRequest,
        expires_in_days: Optional[int] = Query(
            None, description="Lifetime in days, 0 = never, defaults to AUTH_DEFAULT_EXPIRES_DAYS"
        ),
        admin: Authorization = Depends(require_scope(SCOPE_ADMIN)),
    ):
        """Construct and register a new authorization.

        The response carries the generated bearer token. A request without a
        client_id is given a generated one.

        HTTP Status Codes:
            - 201 Created: Authorization issued
            - 401 Unauthorized: Caller is not an admin
            - 409 Conflict: Identity already registered under the reject policy
            - 422 Unprocessable Entity: Invalid request body
        """
        container = request.app.state.container
        store = container.get("authorization_store")
        if expires_in_days is None:
            expires_in_days = container.get("settings").default_expires_days
        if not authorization_request.client_id:
            authorization_request = authorization_request.model_copy(update={"client_id": create_simple_id()})

        auth = new_authorization(authorization_request, expires_in_days)
        store.register(auth)

        logger.info(
            "Authorization issued",
            realm=auth.realm,
            client_id=auth.client_id,
            issued_by=admin.client_id,
            expires=auth.expires,
        )
        return _to_response(auth)

    @app.get("/authorizations/{realm}/{client_id}", response_model=IssuedAuthorization)
    async def get_authorization(
        request: Request,
        realm: str,
        client_id: str,
        admin: Authorization = Depends(require_scope(SCOPE_ADMIN)),
    ):
        """Look up an authorization by realm and client id."""
        store = request.app.state.container.get("authorization_store")
        auth = store.find_by_identity(realm, client_id)
        if auth is None:
            raise HTTPException(status_code=404, detail=f"Authorization not found: {realm}/{client_id}")
        return _to_response(auth)

    @app.post("/authorizations/{realm}/{client_id}/revoke", response_model=IssuedAuthorization)
    async def revoke_authorization(
        request: Request,
        realm: str,
        client_id: str,
        admin: Authorization = Depends(require_scope(SCOPE_ADMIN)),
    ):
        """Revoke an authorization. The record stays registered but is no longer valid."""
        store = request.app.state.container.get("authorization_store")
        auth = store.revoke(realm, client_id)
        if auth is None:
            raise HTTPException(status_code=404, detail=f"Authorization not found: {realm}/{client_id}")
        logger.info("Authorization revoked via API", realm=realm, client_id=client_id, revoked_by=admin.client_id)
        return _to_response(auth)

    @app.delete("/authorizations/{realm}/{client_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_authorization(
        request: Request,
        realm: str,
        client_id: str,
        admin: Authorization = Depends(require_scope(SCOPE_ADMIN)),
    ):
        """Delete an authorization from the store.

        HTTP Status Codes:
            - 204 No Content: Deleted
            - 404 Not Found: Nothing registered for the identity
            - 501 Not Implemented: The store backend cannot delete
        """
        store = request.app.state.container.get("authorization_store")
        if store.delete(realm, client_id) is None:
            raise HTTPException(status_code=404, detail=f"Authorization not found: {realm}/{client_id}")
        logger.info("Authorization deleted via API", realm=realm, client_id=client_id, deleted_by=admin.client_id)
        return None

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    configure_logging()
    settings = AuthSettings.from_env()

    # Run the server
    uvicorn.run(
        "src.service.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
    )
