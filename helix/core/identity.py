"""
Progress-owner identity.

Owners are opaque strings: an authenticated user id or a locally generated
anonymous id carrying the configured prefix. Trust is established in one
place only, by verifying an HMAC-signed session token.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import time

from config import get_settings

from .errors import InvalidIdentityError


def generate_anonymous_id(prefix: str | None = None) -> str:
    """Create a new anonymous owner id (prefix + epoch millis + random suffix)."""
    prefix = prefix if prefix is not None else get_settings().anonymous_prefix
    return f"{prefix}{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def is_anonymous(owner_id: str, prefix: str | None = None) -> bool:
    """Check whether an owner id marks an anonymous session."""
    prefix = prefix if prefix is not None else get_settings().anonymous_prefix
    return owner_id == prefix.rstrip("-") or owner_id.startswith(prefix)


def _signature(owner_id: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), owner_id.encode("utf-8"), hashlib.sha256).hexdigest()


def sign_owner(owner_id: str, secret: str | None = None) -> str:
    """Issue a session token for owner_id."""
    secret = secret or get_settings().session_secret
    return f"{owner_id}.{_signature(owner_id, secret)}"


def verify_token(token: str, secret: str | None = None) -> str:
    """
    Verify a session token and return the owner id it was issued for.

    Raises:
        InvalidIdentityError: If the token is malformed or the signature does not match
    """
    secret = secret or get_settings().session_secret
    owner_id, sep, signature = (token or "").rpartition(".")
    if not sep or not owner_id or not signature:
        raise InvalidIdentityError("Malformed session token")
    if not hmac.compare_digest(signature, _signature(owner_id, secret)):
        raise InvalidIdentityError("Session token signature mismatch")
    return owner_id
