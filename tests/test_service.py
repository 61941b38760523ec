"""Test the HTTP endpoints of the authorization service."""

from unittest.mock import patch

from fastapi.testclient import TestClient

from src.auth.errors import (
    AlreadyAuthorizedError,
    MalformedRecordError,
    NoScopeError,
    NoTokenError,
    NotAuthorizedError,
    OperationNotImplementedError,
)
from src.auth.models import SCOPE_ADMIN, SECONDS_PER_DAY, Authorization
from src.auth.store import IdentityConflictPolicy
from src.config import AuthSettings
from src.container import register_admin_token
from src.service.main import create_app, error_status

from conftest import ADMIN_TOKEN, CLIENT_ID, REALM, USER_ID, ReadOnlyStore

ISSUE_BODY = {"realm": REALM, "user_id": USER_ID, "client_id": CLIENT_ID, "scope": "api:read api:write"}


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def issue(client: TestClient, admin_headers, body=None, **params):
    return client.post("/authorizations", json=body or ISSUE_BODY, headers=admin_headers, params=params)


class TestErrorMapping:
    """Test the error to status code mapping."""

    def test_error_status(self):
        assert error_status(NoTokenError()) == 401
        assert error_status(NotAuthorizedError()) == 401
        assert error_status(NoScopeError()) == 403
        assert error_status(AlreadyAuthorizedError()) == 409
        assert error_status(MalformedRecordError()) == 400
        assert error_status(OperationNotImplementedError()) == 501


class TestPublicEndpoints:
    """Test endpoints that need no or minimal authentication."""

    def test_root(self, api_client):
        """Test service identification."""
        response = api_client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "running"

    def test_health_requires_authentication(self, api_client):
        """Test that the health endpoint requires a bearer token."""
        response = api_client.get("/healthz")

        assert response.status_code == 401
        assert response.json()["detail"] == "Missing bearer token"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_health_with_admin(self, api_client, admin_headers):
        """Test health statistics with the bootstrap admin token."""
        response = api_client.get("/healthz", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "timestamp" in data
        assert data["authorizations"]["total"] == 1
        assert data["authorizations"]["valid"] == 1

    def test_malformed_header(self, api_client):
        """Test that a non-bearer scheme is rejected."""
        response = api_client.get("/healthz", headers={"Authorization": f"Basic {ADMIN_TOKEN}"})
        assert response.status_code == 401

    def test_unknown_token(self, api_client):
        """Test that an unknown token is rejected."""
        response = api_client.get("/healthz", headers=bearer("unknown"))
        assert response.status_code == 401
        assert response.json()["detail"] == "Not authorized"

    def test_whoami(self, api_client, admin_headers):
        """Test identity resolution."""
        response = api_client.get("/whoami", headers=admin_headers)
        assert response.status_code == 200
        assert response.json() == {"client_id": "admin"}

        assert api_client.get("/whoami", headers=bearer("unknown")).status_code == 401


class TestIssuance:
    """Test issuing authorizations."""

    def test_issue(self, api_client, admin_headers):
        """Test that an admin can issue an authorization that then works."""
        response = issue(api_client, admin_headers, expires_in_days=1)

        assert response.status_code == 201
        data = response.json()
        assert data["realm"] == REALM
        assert data["client_id"] == CLIENT_ID
        assert data["token_type"] == "user"
        assert data["revoked"] is False
        assert data["expires"] == data["created"] + SECONDS_PER_DAY
        assert data["token"]

        # The new token can read but not administer
        assert api_client.get("/healthz", headers=bearer(data["token"])).status_code == 200
        assert issue(api_client, bearer(data["token"])).status_code == 401
        assert api_client.get("/whoami", headers=bearer(data["token"])).json() == {"client_id": CLIENT_ID}

    def test_issue_uses_default_expiry(self, api_client, admin_headers):
        """Test that the configured default lifetime is applied."""
        data = issue(api_client, admin_headers).json()
        assert data["expires"] == data["created"] + 30 * SECONDS_PER_DAY

    def test_issue_never_expires(self, api_client, admin_headers):
        """Test issuing with zero days."""
        assert issue(api_client, admin_headers, expires_in_days=0).json()["expires"] == 0

    def test_issue_ignores_request_token(self, api_client, admin_headers):
        """Test that a caller-supplied token is not honoured."""
        body = dict(ISSUE_BODY, token="my-own-token")
        data = issue(api_client, admin_headers, body=body).json()
        assert data["token"] != "my-own-token"

    def test_issue_generates_client_id(self, api_client, admin_headers):
        """Test that a request without client_id gets a generated one."""
        body = {"realm": REALM, "user_id": USER_ID}
        first = issue(api_client, admin_headers, body=body).json()
        second = issue(api_client, admin_headers, body=body).json()

        assert len(first["client_id"]) == 16
        assert first["client_id"] != second["client_id"]
        # Both identities stay registered
        for data in (first, second):
            response = api_client.get(f"/authorizations/{REALM}/{data['client_id']}", headers=admin_headers)
            assert response.json()["token"] == data["token"]

    def test_issue_requires_admin(self, api_client):
        """Test that issuance without a token is rejected."""
        response = api_client.post("/authorizations", json=ISSUE_BODY)
        assert response.status_code == 401

    def test_issue_invalid_body(self, api_client, admin_headers):
        """Test request validation."""
        assert issue(api_client, admin_headers, body={"realm": REALM}).status_code == 422
        body = dict(ISSUE_BODY, scope="api:read,api:write")
        assert issue(api_client, admin_headers, body=body).status_code == 422

    def test_expired_issue_is_rejected(self, api_client, admin_headers):
        """Test that an already-expired authorization cannot be used."""
        token = issue(api_client, admin_headers, expires_in_days=-1).json()["token"]
        assert api_client.get("/healthz", headers=bearer(token)).status_code == 401

    def test_reissue_replaces_token(self, api_client, admin_headers):
        """Test that issuing for the same identity invalidates the old token."""
        first = issue(api_client, admin_headers).json()["token"]
        second = issue(api_client, admin_headers).json()["token"]

        assert api_client.get("/healthz", headers=bearer(first)).status_code == 401
        assert api_client.get("/healthz", headers=bearer(second)).status_code == 200

    def test_reissue_rejected_under_reject_policy(self, admin_headers):
        """Test 409 on conflicting issuance with the reject policy."""
        settings = AuthSettings(admin_token=ADMIN_TOKEN, identity_conflict=IdentityConflictPolicy.REJECT)

        with TestClient(create_app(settings)) as client:
            assert issue(client, admin_headers).status_code == 201
            response = issue(client, admin_headers)

        assert response.status_code == 409
        assert "already exists" in response.json()["detail"]


class TestAdministration:
    """Test lookup, revocation and deletion endpoints."""

    def test_lookup(self, api_client, admin_headers):
        """Test lookup by realm and client id."""
        token = issue(api_client, admin_headers).json()["token"]

        response = api_client.get(f"/authorizations/{REALM}/{CLIENT_ID}", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["token"] == token

        response = api_client.get(f"/authorizations/{REALM}/nobody", headers=admin_headers)
        assert response.status_code == 404

    def test_revoke(self, api_client, admin_headers):
        """Test that revocation invalidates the token."""
        token = issue(api_client, admin_headers).json()["token"]

        response = api_client.post(f"/authorizations/{REALM}/{CLIENT_ID}/revoke", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["revoked"] is True

        assert api_client.get("/healthz", headers=bearer(token)).status_code == 401
        assert api_client.post(f"/authorizations/{REALM}/nobody/revoke", headers=admin_headers).status_code == 404

    def test_delete(self, api_client, admin_headers):
        """Test deletion removes the authorization."""
        token = issue(api_client, admin_headers).json()["token"]

        response = api_client.delete(f"/authorizations/{REALM}/{CLIENT_ID}", headers=admin_headers)
        assert response.status_code == 204

        assert api_client.get("/healthz", headers=bearer(token)).status_code == 401
        assert api_client.get(f"/authorizations/{REALM}/{CLIENT_ID}", headers=admin_headers).status_code == 404
        assert api_client.delete(f"/authorizations/{REALM}/{CLIENT_ID}", headers=admin_headers).status_code == 404

    def test_delete_not_implemented(self, api_client, admin_headers):
        """Test that a store without deletion maps to 501."""
        store = api_client.app.state.container.get("authorization_store")
        with patch.object(store, "delete", side_effect=OperationNotImplementedError()):
            response = api_client.delete(f"/authorizations/{REALM}/{CLIENT_ID}", headers=admin_headers)

        assert response.status_code == 501
        assert response.json()["detail"] == "not implemented"

    def test_administration_requires_admin(self, api_client, admin_headers):
        """Test that non-admin tokens cannot administer."""
        token = issue(api_client, admin_headers).json()["token"]

        for method, path in [
            ("get", f"/authorizations/{REALM}/{CLIENT_ID}"),
            ("post", f"/authorizations/{REALM}/{CLIENT_ID}/revoke"),
            ("delete", f"/authorizations/{REALM}/{CLIENT_ID}"),
        ]:
            response = getattr(api_client, method)(path, headers=bearer(token))
            assert response.status_code == 401


class TestMinimalBackend:
    """Test the service against a store implementing only the required operations."""

    def test_optional_operations(self, api_client, admin_headers):
        """Test health, revocation and deletion on a backend without them."""
        backend = ReadOnlyStore()
        register_admin_token(backend, ADMIN_TOKEN)
        backend.register(Authorization(realm=REALM, client_id=CLIENT_ID, token="client-token"))
        api_client.app.state.container.register_instance("authorization_store", backend)

        response = api_client.get("/healthz", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["authorizations"] is None

        response = api_client.post(f"/authorizations/{REALM}/{CLIENT_ID}/revoke", headers=admin_headers)
        assert response.status_code == 501
        assert "revoke" in response.json()["detail"]

        response = api_client.delete(f"/authorizations/{REALM}/{CLIENT_ID}", headers=admin_headers)
        assert response.status_code == 501

        # Required operations keep working
        assert api_client.get(f"/authorizations/{REALM}/{CLIENT_ID}", headers=admin_headers).status_code == 200
        assert api_client.get("/whoami", headers=bearer("client-token")).json() == {"client_id": CLIENT_ID}

    def test_app_starts_with_minimal_backend(self, settings, admin_headers):
        """Test that startup does not depend on optional store operations."""
        backend = ReadOnlyStore()

        with patch("src.container.InMemoryAuthorizationStore", return_value=backend):
            with TestClient(create_app(settings)) as client:
                assert client.app.state.container.get("authorization_store") is backend
                assert client.get("/healthz", headers=admin_headers).status_code == 200


class TestSeeding:
    """Test startup seeding from a record file."""

    def test_seed_file(self, temp_dir):
        """Test that seeded records are usable."""
        path = f"{temp_dir}/seed.txt"
        with open(path, "w", encoding="utf-8") as f:
            f.write("# seed\n")
            f.write(f"ops,{REALM},seeded-admin,api,ops,{SCOPE_ADMIN},0\n")
            f.write(f"reader,{REALM},seeded-reader,user,reader,api:read,0\n")

        with TestClient(create_app(AuthSettings(seed_file=path))) as client:
            assert client.get("/healthz", headers=bearer("seeded-reader")).status_code == 200
            response = client.get(f"/authorizations/{REALM}/reader", headers=bearer("seeded-admin"))

        assert response.status_code == 200
        assert response.json()["token_type"] == "user"

