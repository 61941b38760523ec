"""Authorization record model for bearer token credentials.

This module defines the Pydantic models for authorizations and authorization
requests, together with the validity, scope and serialization rules that the
store and the request check rely on.

Authorization Models:
    - Authorization: a user, app, api client or bot and its permissions
    - AuthorizationRequest: login/issuance request from a user, app or bot
    - TokenType: provenance tag of a credential (user, app, api, bot)
    - ScopeMatching: how a required scope is compared against granted scopes

Record Format:
    An authorization serializes to a single line of 7 comma-joined fields:
    client_id,realm,token,token_type,user_id,scope,expires
    Fields are not escaped. revoked, created and updated are not part of the
    record; parsing resets revoked to False and stamps created/updated.

Scope Matching:
    - TOKEN (default): scope strings are split on whitespace and commas, and
      every required token must be present in the granted set
    - SUBSTRING: legacy containment check, "api:read" matches "api:readonly"

Dependencies:
    - pydantic: model validation and JSON serialization
    - re: scope tokenization and integer checks

Used by:
    - src.auth.store: registration and dump/load of records
    - src.auth.auth: validity and scope checks at request time
    - src.service.main: request/response bodies
"""

import re
import time
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import MalformedRecordError
from .tokens import create_simple_token

# Default scopes
SCOPE_READ = "api:read"
SCOPE_WRITE = "api:write"
SCOPE_ADMIN = "api:admin"
DEFAULT_SCOPE = f"{SCOPE_READ} {SCOPE_WRITE}"

SECONDS_PER_DAY = 86400

RECORD_SEPARATOR = ","
RECORD_FIELD_COUNT = 7

_SCOPE_DELIMITERS = re.compile(r"[\s,]+")
_INTEGER = re.compile(r"[+-]?[0-9]+")

# Expiry is a signed 64-bit integer in the record format
EXPIRES_MIN = -(2**63)
EXPIRES_MAX = 2**63 - 1


def timestamp_now() -> int:
    """Return the current time in Unix epoch seconds."""
    return int(time.time())


class TokenType(str, Enum):
    """Provenance of a credential. Does not change validation."""

    USER = "user"
    APP = "app"
    API = "api"
    BOT = "bot"


DEFAULT_TOKEN_TYPE = TokenType.USER


class ScopeMatching(str, Enum):
    """Strategy used to compare a required scope with a granted scope string."""

    TOKEN = "token"
    SUBSTRING = "substring"


def split_scopes(scopes: str) -> set[str]:
    """Split a scope string on whitespace and commas into a set of scope tokens."""
    return {scope for scope in _SCOPE_DELIMITERS.split(scopes) if scope}


def has_scope(scopes: str, scope: str, matching: ScopeMatching = ScopeMatching.TOKEN) -> bool:
    """Check whether the granted scopes cover the required scope.

    Args:
        scopes: Granted scope string, e.g. "api:read api:write"
        scope: Required scope string. In TOKEN mode it may list several
            scopes, all of which must be granted.
        matching: Comparison strategy

    Returns:
        bool: False if either input is empty, otherwise the result of the
        selected comparison
    """
    # Empty inputs never grant anything
    if not scopes or not scope:
        return False

    if matching == ScopeMatching.SUBSTRING:
        return scope in scopes

    required = split_scopes(scope)
    return bool(required) and required <= split_scopes(scopes)


class Authorization(BaseModel):
    """A user, app, api client or bot and its permissions within a realm.

    The pair (realm, client_id) identifies the credential holder and the token
    is the bearer credential presented at request time. Both are unique within
    a store.

    Validity Rules:
        - revoked authorizations are never valid
        - expires == 0 means the authorization never expires
        - otherwise the authorization is valid while expires >= now

    Internal Fields:
        revoked, created and updated are excluded from JSON output and from the
        canonical record.

    Usage Example:
        auth = Authorization(
            client_id="client@example.com",
            realm="realm",
            token="cdeba542-ebb0-4cae-9544-df6059ba1752",
            user_id="userid",
            scope="api:read api:write",
        )
        auth.is_valid()  # True, never expires
    """

    # Unique identifier of the holder within the realm (email, app id, bot id)
    client_id: str = Field("", description="Client identifier, unique within the realm")

    # Namespace partitioning client ids
    realm: str = Field("", description="Realm the client belongs to")

    # Opaque bearer credential, unique process-wide
    token: str = Field(..., description="Bearer token")

    token_type: TokenType = Field(DEFAULT_TOKEN_TYPE, description="user, app, api or bot")

    # Meaning depends on token_type, e.g. email for users, bot user id for bots
    user_id: str = Field("", description="Secondary identity reference")

    scope: str = Field("", description="Whitespace-delimited scopes")

    # Unix epoch seconds, 0 = never
    expires: int = Field(0, description="Expiry timestamp, 0 means never")

    revoked: bool = Field(False, exclude=True)
    created: int = Field(0, exclude=True)
    updated: int = Field(0, exclude=True)

    def is_valid(self, now: Optional[int] = None) -> bool:
        """Verify that the authorization is neither revoked nor expired."""
        if self.revoked:
            return False
        if self.expires == 0:
            return True
        if now is None:
            now = timestamp_now()
        return self.expires >= now

    def has_admin_scope(self, matching: ScopeMatching = ScopeMatching.TOKEN) -> bool:
        """Check if the authorization includes scope 'api:admin'."""
        return has_scope(self.scope, SCOPE_ADMIN, matching)

    def equals(self, other: Optional["Authorization"]) -> bool:
        """Compare token, realm, client_id and user_id with another authorization."""
        if other is None:
            return False
        return (
            self.token == other.token
            and self.realm == other.realm
            and self.client_id == other.client_id
            and self.user_id == other.user_id
        )

    @property
    def identity_key(self) -> str:
        return named_key(self.realm, self.client_id)

    def to_record(self) -> str:
        """Serialize to the canonical 7-field comma-joined record."""
        return RECORD_SEPARATOR.join(
            [
                self.client_id,
                self.realm,
                self.token,
                self.token_type.value,
                self.user_id,
                self.scope,
                str(self.expires),
            ]
        )

    def __str__(self) -> str:
        return self.to_record()

    @classmethod
    def from_record(cls, record: str) -> "Authorization":
        """Parse a canonical record back into an Authorization.

        The record does not carry revoked, created or updated. The parsed
        authorization is therefore never revoked and both timestamps are set
        to the current time.

        Args:
            record: A line produced by to_record()

        Returns:
            Authorization: The parsed authorization

        Raises:
            MalformedRecordError: If the record is empty, does not have exactly
                7 fields, the expiry is not a signed 64-bit integer or the
                token type is unknown
        """
        if not record:
            raise MalformedRecordError("empty authorization record")

        parts = record.split(RECORD_SEPARATOR)
        if len(parts) != RECORD_FIELD_COUNT:
            raise MalformedRecordError(
                f"expected {RECORD_FIELD_COUNT} fields, found {len(parts)}"
            )

        client_id, realm, token, token_type, user_id, scope, expires = parts
        if not _INTEGER.fullmatch(expires):
            raise MalformedRecordError(f"expires is not an integer: {expires!r}")
        expires_at = int(expires)
        if not EXPIRES_MIN <= expires_at <= EXPIRES_MAX:
            raise MalformedRecordError(f"expires is out of range: {expires!r}")

        now = timestamp_now()
        try:
            return cls(
                client_id=client_id,
                realm=realm,
                token=token,
                token_type=token_type,
                user_id=user_id,
                scope=scope,
                expires=expires_at,
                revoked=False,
                created=now,
                updated=now,
            )
        except ValidationError as e:
            raise MalformedRecordError(f"invalid authorization record: {e.error_count()} errors") from e


class AuthorizationRequest(BaseModel):
    """A login/authorization request from a user, app or bot.

    The token field is accepted for wire compatibility but is never used when
    a new authorization is constructed; a fresh token is always generated.
    Commas are rejected in every field that ends up in the canonical record.
    """

    realm: str = Field(..., min_length=1, description="Realm of the client")
    user_id: str = Field(..., min_length=1, description="Secondary identity reference")
    client_id: str = Field("", description="Client identifier, unique within the realm")
    token: str = Field("", description="Ignored on issuance")
    scope: str = Field("", description="Requested scopes")

    @field_validator("realm", "user_id", "client_id", "scope")
    @classmethod
    def validate_no_separator(cls, v):
        # The record format has no escaping
        if RECORD_SEPARATOR in v:
            raise ValueError("Field must not contain a comma")
        return v


def named_key(realm: str, client_id: str) -> str:
    """Build the identity lookup key for a realm and client id."""
    return realm + "." + client_id


def new_authorization(
    request: AuthorizationRequest,
    expires_in_days: int,
    token_factory: Callable[[], str] = create_simple_token,
    now: Optional[int] = None,
) -> Authorization:
    """Construct a new authorization from a request.

    Args:
        request: The issuance request. request.token is ignored.
        expires_in_days: Lifetime in days. 0 means never expires, a negative
            value produces an authorization that is already expired.
        token_factory: Generator for the bearer token
        now: Creation time in Unix seconds, defaults to the current time

    Returns:
        Authorization: The new, unregistered authorization
    """
    if now is None:
        now = timestamp_now()

    auth = Authorization(
        client_id=request.client_id,
        realm=request.realm,
        token=token_factory(),
        token_type=DEFAULT_TOKEN_TYPE,
        user_id=request.user_id,
        scope=request.scope,
        revoked=False,
        expires=now + expires_in_days * SECONDS_PER_DAY,
        created=now,
        updated=now,
    )
    if expires_in_days == 0:
        auth.expires = 0

    return auth
