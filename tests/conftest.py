"""Global test configuration and fixtures."""

import os

# Ensure test modules can import src
import sys
import tempfile
from collections.abc import Generator
from typing import Optional

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.auth.models import DEFAULT_SCOPE, Authorization, AuthorizationRequest
from src.auth.store import AuthorizationStore, InMemoryAuthorizationStore
from src.config import AuthSettings

REALM = "realm"
USER_ID = "userid"
CLIENT_ID = "client@example.com"
ADMIN_TOKEN = "test-admin-token"


class ReadOnlyStore(AuthorizationStore):
    """Minimal backend implementing only the required store operations."""

    def __init__(self):
        self.records: dict[str, Authorization] = {}

    def register(self, auth: Authorization) -> None:
        self.records[auth.token] = auth

    def find_by_token(self, token: str) -> Optional[Authorization]:
        return self.records.get(token)

    def find_by_identity(self, realm: str, client_id: str) -> Optional[Authorization]:
        for auth in self.records.values():
            if auth.realm == realm and auth.client_id == client_id:
                return auth
        return None


@pytest.fixture
def temp_dir() -> Generator[str, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def store() -> InMemoryAuthorizationStore:
    """Create an empty in-memory store."""
    return InMemoryAuthorizationStore()


@pytest.fixture
def auth_request() -> AuthorizationRequest:
    """Standard issuance request with the default scope."""
    return AuthorizationRequest(
        realm=REALM,
        user_id=USER_ID,
        client_id=CLIENT_ID,
        scope=DEFAULT_SCOPE,
    )


@pytest.fixture
def settings() -> AuthSettings:
    """Service settings with a bootstrap admin token."""
    return AuthSettings(admin_token=ADMIN_TOKEN)


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def api_client(settings) -> Generator[TestClient, None, None]:
    """Create a test client; entering it runs the application lifespan."""
    from src.service.main import create_app

    with TestClient(create_app(settings)) as client:
        yield client
