"""Authorization store with dual-key lookup.

This module provides the keyed index over authorization records. Every record
is reachable two ways: by its bearer token (request-time checks) and by its
identity key realm + "." + client_id (administration).

Store Backends:
    - AuthorizationStore: abstract interface; delete, revoke, revoke_token and
      stats raise OperationNotImplementedError unless a backend implements them
    - InMemoryAuthorizationStore: transient, lock-protected dictionaries

Consistency Model:
    - Both indices are updated under one lock, so readers never see one index
      updated and the other stale
    - Registering over an existing token or identity displaces the previous
      record from both indices
    - Expiry is evaluated lazily by Authorization.is_valid(); nothing is swept

Conflict Policies:
    - OVERWRITE: last write wins (default)
    - REJECT: a registration that would displace a different record raises
      AlreadyAuthorizedError

Dependencies:
    - threading: RLock guarding both indices
    - structlog: audit logging of mutations

Used by:
    - src.auth.auth: token lookup during request checks
    - src.container: store lifecycle
    - src.service.main: issuance and administration endpoints
"""

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from enum import Enum
from typing import Optional

import structlog

from .errors import (
    AlreadyAuthorizedError,
    MalformedRecordError,
    NoTokenError,
    OperationNotImplementedError,
)
from .models import Authorization, named_key, timestamp_now

logger = structlog.get_logger()


class IdentityConflictPolicy(str, Enum):
    """What register() does when a record would displace a different one."""

    OVERWRITE = "overwrite"
    REJECT = "reject"


def token_prefix(token: str) -> str:
    """Return a log-safe prefix of a bearer token."""
    return token[:4] + "..." if len(token) > 4 else "***"


class AuthorizationStore(ABC):
    """Interface of an authorization store.

    Lookups return None when nothing matches; errors are reserved for invalid
    input or backend failures, so callers can tell "found nothing" from
    "lookup failed".
    """

    @abstractmethod
    def register(self, auth: Authorization) -> None:
        """Insert or overwrite an authorization under its token and identity key."""

    @abstractmethod
    def find_by_token(self, token: str) -> Optional[Authorization]:
        """Look up an authorization by bearer token."""

    @abstractmethod
    def find_by_identity(self, realm: str, client_id: str) -> Optional[Authorization]:
        """Look up an authorization by realm and client id."""

    # Optional operations. Backends that cannot support them must not pretend to.

    def delete(self, realm: str, client_id: str) -> Optional[Authorization]:
        """Remove an authorization."""
        raise OperationNotImplementedError("delete is not implemented by this store")

    def revoke(self, realm: str, client_id: str) -> Optional[Authorization]:
        """Revoke the authorization registered for an identity."""
        raise OperationNotImplementedError("revoke is not implemented by this store")

    def revoke_token(self, token: str) -> Optional[Authorization]:
        """Revoke the authorization registered for a token."""
        raise OperationNotImplementedError("revoke_token is not implemented by this store")

    def stats(self, now: Optional[int] = None) -> dict[str, int]:
        """Count registered authorizations by state."""
        raise OperationNotImplementedError("stats is not implemented by this store")


class InMemoryAuthorizationStore(AuthorizationStore):
    """Transient, thread-safe authorization store backed by two dictionaries.

    Internal State:
        _by_token: token -> Authorization
        _by_identity: realm + "." + client_id -> Authorization
        _lock: guards both dictionaries for every read and write

    Invariant:
        The values of both dictionaries are the same set of records, and every
        record is stored under its own token and its own identity key.

    Thread Safety:
        All public methods acquire the same re-entrant lock. Records handed out
        are shared objects; mutate them through revoke() rather than directly.
    """

    def __init__(self, conflict_policy: IdentityConflictPolicy = IdentityConflictPolicy.OVERWRITE):
        self.conflict_policy = conflict_policy
        self._by_token: dict[str, Authorization] = {}
        self._by_identity: dict[str, Authorization] = {}
        self._lock = threading.RLock()

    def register(self, auth: Authorization) -> None:
        """Register an authorization under its token and identity key.

        Args:
            auth: The authorization to register

        Raises:
            NoTokenError: If the authorization has no token
            AlreadyAuthorizedError: Under the REJECT policy, if the token or
                the identity key already belongs to a different record

        Side Effects:
            Records displaced under the OVERWRITE policy are removed from both
            indices, so their tokens stop resolving.
        """
        if not auth.token:
            raise NoTokenError()

        key = auth.identity_key
        with self._lock:
            displaced = []
            by_token = self._by_token.get(auth.token)
            if by_token is not None and by_token.identity_key != key:
                displaced.append(by_token)
            by_identity = self._by_identity.get(key)
            if by_identity is not None and by_identity.token != auth.token:
                displaced.append(by_identity)

            if displaced and self.conflict_policy == IdentityConflictPolicy.REJECT:
                logger.warning(
                    "Authorization registration rejected",
                    realm=auth.realm,
                    client_id=auth.client_id,
                    token_prefix=token_prefix(auth.token),
                )
                raise AlreadyAuthorizedError(f"authorization already exists for {key}")

            for old in displaced:
                self._remove(old)

            self._by_token[auth.token] = auth
            self._by_identity[key] = auth

        if displaced:
            logger.warning(
                "Authorization overwritten",
                realm=auth.realm,
                client_id=auth.client_id,
                displaced=len(displaced),
            )
        logger.info(
            "Authorization registered",
            realm=auth.realm,
            client_id=auth.client_id,
            token_type=auth.token_type.value,
            expires=auth.expires,
        )

    def _remove(self, auth: Authorization) -> None:
        # Only drop entries that still point at this record
        if self._by_token.get(auth.token) is auth:
            del self._by_token[auth.token]
        key = auth.identity_key
        if self._by_identity.get(key) is auth:
            del self._by_identity[key]

    def find_by_token(self, token: str) -> Optional[Authorization]:
        """Look up an authorization by bearer token.

        Raises:
            NoTokenError: If token is empty
        """
        if not token:
            raise NoTokenError()
        with self._lock:
            return self._by_token.get(token)

    def find_by_identity(self, realm: str, client_id: str) -> Optional[Authorization]:
        with self._lock:
            return self._by_identity.get(named_key(realm, client_id))

    def delete(self, realm: str, client_id: str) -> Optional[Authorization]:
        """Remove an authorization from both indices.

        Returns:
            The removed authorization, or None if nothing was registered under
            the identity
        """
        with self._lock:
            auth = self._by_identity.get(named_key(realm, client_id))
            if auth is None:
                return None
            self._remove(auth)

        logger.info("Authorization deleted", realm=realm, client_id=client_id)
        return auth

    def revoke(self, realm: str, client_id: str) -> Optional[Authorization]:
        """Revoke the authorization registered for an identity."""
        with self._lock:
            auth = self._by_identity.get(named_key(realm, client_id))
            if auth is None:
                return None
            self._mark_revoked(auth)
        return auth

    def revoke_token(self, token: str) -> Optional[Authorization]:
        """Revoke the authorization registered for a token.

        Raises:
            NoTokenError: If token is empty
        """
        if not token:
            raise NoTokenError()
        with self._lock:
            auth = self._by_token.get(token)
            if auth is None:
                return None
            self._mark_revoked(auth)
        return auth

    def _mark_revoked(self, auth: Authorization) -> None:
        auth.revoked = True
        auth.updated = timestamp_now()
        logger.info("Authorization revoked", realm=auth.realm, client_id=auth.client_id)

    def list_authorizations(self) -> list[Authorization]:
        """Return all registered authorizations."""
        with self._lock:
            return list(self._by_token.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_token)

    def stats(self, now: Optional[int] = None) -> dict[str, int]:
        """Count registered authorizations by state.

        Returns:
            Dictionary with total, valid, revoked and expired counts. Revoked
            records are not counted as expired.
        """
        if now is None:
            now = timestamp_now()
        counts = {"total": 0, "valid": 0, "revoked": 0, "expired": 0}
        for auth in self.list_authorizations():
            counts["total"] += 1
            if auth.revoked:
                counts["revoked"] += 1
            elif auth.is_valid(now):
                counts["valid"] += 1
            else:
                counts["expired"] += 1
        return counts

    def dump(self) -> Iterator[str]:
        """Yield every authorization as a canonical record line."""
        for auth in self.list_authorizations():
            yield auth.to_record()

    def load(self, lines: Iterable[str]) -> int:
        """Register authorizations from canonical record lines.

        Blank lines and lines starting with '#' are skipped.

        Args:
            lines: Record lines, e.g. an open text file

        Returns:
            int: Number of authorizations registered

        Raises:
            MalformedRecordError: On the first line that cannot be parsed, with
                its line number. Records before it stay registered.
        """
        loaded = 0
        for line_number, line in enumerate(lines, start=1):
            record = line.strip()
            if not record or record.startswith("#"):
                continue
            try:
                auth = Authorization.from_record(record)
            except MalformedRecordError as e:
                raise MalformedRecordError(str(e), line_number=line_number) from e
            self.register(auth)
            loaded += 1

        logger.info("Loaded authorizations", count=loaded)
        return loaded
