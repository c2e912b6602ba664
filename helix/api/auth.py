"""
Request authentication and shared dependencies.

Callers authenticate with a signed session token:

    Authorization: Bearer <owner>.<hmac>

The verified owner id is the only identity the routers trust.
"""

from __future__ import annotations

from functools import lru_cache

from fastapi import Header, HTTPException

from config import get_settings
from helix.content.catalog import ContentCatalog
from helix.core.errors import InvalidIdentityError
from helix.core.identity import verify_token
from helix.persistence.database import async_session_scope
from helix.persistence.migration import AnonymousMigrator
from helix.persistence.repository import ProgressRepository


def get_current_owner(authorization: str | None = Header(default=None)) -> str:
    """Verify the bearer token and return the owner id it was issued for."""
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing session token")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Expected a bearer session token")

    try:
        return verify_token(token)
    except InvalidIdentityError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e


def get_repository() -> ProgressRepository:
    return ProgressRepository(async_session_scope)


def get_migrator() -> AnonymousMigrator:
    return AnonymousMigrator(async_session_scope)


@lru_cache(maxsize=1)
def get_catalog() -> ContentCatalog:
    """Content catalogue from settings.content_catalog_path, or the bundled one."""
    settings = get_settings()
    return ContentCatalog.load(settings.content_catalog_path if settings.has_content_catalog() else None)
