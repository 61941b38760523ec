"""Opaque identifier and bearer token generation.

Both generators return URL-safe strings that never contain a comma, so the
output can be embedded in the canonical comma-joined authorization record
without escaping.

Dependencies:
    - secrets: cryptographically secure short identifiers
    - uuid: random (version 4) bearer tokens
"""

import secrets
import uuid


def create_simple_id() -> str:
    """Return a short opaque identifier for general entity ids."""
    return secrets.token_hex(8)


def create_simple_token() -> str:
    """Return a long opaque bearer token."""
    return str(uuid.uuid4())
