"""
Write strategies for position updates.

The persistence gateway tries these in order until one succeeds:

1. ApiWriteStrategy: authenticated HTTP write path
2. DirectUpsertStrategy: INSERT ... ON CONFLICT DO UPDATE on the progress table
3. UpdateThenInsertStrategy: UPDATE, then INSERT if no row matched
4. RpcWriteStrategy: server-side upsert procedure

Each strategy raises on failure; none of them retries on its own.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Any, Callable

import httpx
from loguru import logger
from sqlalchemy import func, text
from sqlalchemy import update as sa_update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from helix.core.errors import WriteRejectedError
from helix.core.identity import is_anonymous
from helix.persistence.database import SessionScope
from helix.persistence.models import UserStitchProgress
from helix.persistence.updates import PositionUpdate

TokenProvider = Callable[[str], str | None]

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")

_MUTABLE_COLUMNS = ("order_number", "skip_number", "distractor_level")


class WriteStrategy(ABC):
    """One way of making a position update durable."""

    name: str = "strategy"

    @abstractmethod
    async def attempt_write(self, update: PositionUpdate) -> None:
        """
        Write update.

        Raises:
            httpx.HTTPError, SQLAlchemyError, WriteRejectedError: On failure
        """


class ApiWriteStrategy(WriteStrategy):
    """POST the update to the authenticated progress endpoint."""

    name = "api"

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_url: str,
        token_provider: TokenProvider | None = None,
    ):
        self.client = client
        self.api_url = api_url.rstrip("/")
        self.token_provider = token_provider

    async def attempt_write(self, update: PositionUpdate) -> None:
        headers = {}
        token = self.token_provider(update.user_id) if self.token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"

        response = await self.client.post(
            f"{self.api_url}/api/progress/update",
            json=update.to_dict(),
            headers=headers,
        )
        response.raise_for_status()

        data = response.json()
        if not data.get("success", False):
            raise WriteRejectedError(data.get("error") or "Progress API rejected the update")


def upsert_statement(dialect_name: str, values: dict[str, Any]):
    """
    Build an idempotent upsert on (user_id, thread_id, stitch_id).

    Raises:
        WriteRejectedError: If the dialect has no native upsert
    """
    if dialect_name == "postgresql":
        insert = postgresql.insert
    elif dialect_name == "sqlite":
        insert = sqlite.insert
    else:
        raise WriteRejectedError(f"No native upsert for dialect {dialect_name}")

    stmt = insert(UserStitchProgress).values(**values)
    set_ = {column: getattr(stmt.excluded, column) for column in _MUTABLE_COLUMNS}
    if "is_anonymous" in values:
        set_["is_anonymous"] = stmt.excluded.is_anonymous
    set_["updated_at"] = func.now()
    return stmt.on_conflict_do_update(
        index_elements=["user_id", "thread_id", "stitch_id"],
        set_=set_,
    )


async def upsert_progress(session: AsyncSession, values: dict[str, Any]) -> None:
    """Upsert one progress row using the session's dialect."""
    dialect_name = session.get_bind().dialect.name
    await session.execute(upsert_statement(dialect_name, values))


class DirectUpsertStrategy(WriteStrategy):
    """Native upsert against the progress table."""

    name = "upsert"

    def __init__(self, session_scope: SessionScope, is_anonymous: Callable[[str], bool] | None = None):
        self.session_scope = session_scope
        self.is_anonymous = is_anonymous

    async def attempt_write(self, update: PositionUpdate) -> None:
        values = update.to_row()
        if self.is_anonymous is not None:
            values["is_anonymous"] = self.is_anonymous(update.user_id)
        async with self.session_scope() as session:
            await upsert_progress(session, values)


class UpdateThenInsertStrategy(WriteStrategy):
    """Portable upsert: UPDATE by key, INSERT when nothing matched."""

    name = "update-insert"

    def __init__(self, session_scope: SessionScope):
        self.session_scope = session_scope

    async def attempt_write(self, update: PositionUpdate) -> None:
        row = update.to_row()
        async with self.session_scope() as session:
            result = await session.execute(
                sa_update(UserStitchProgress)
                .where(
                    UserStitchProgress.user_id == update.user_id,
                    UserStitchProgress.thread_id == update.thread_id,
                    UserStitchProgress.stitch_id == update.stitch_id,
                )
                .values(**{column: row[column] for column in _MUTABLE_COLUMNS}, updated_at=func.now())
            )
            if result.rowcount == 0:
                logger.debug("No progress row for {} - inserting", update.stitch_id)
                session.add(UserStitchProgress(**row))


class RpcWriteStrategy(WriteStrategy):
    """Call the server-side upsert procedure."""

    name = "rpc"

    def __init__(self, session_scope: SessionScope, function_name: str = "upsert_user_stitch_progress"):
        if not _IDENTIFIER.match(function_name):
            raise ValueError(f"Invalid procedure name: {function_name!r}")
        self.session_scope = session_scope
        self.function_name = function_name

    async def attempt_write(self, update: PositionUpdate) -> None:
        async with self.session_scope() as session:
            await session.execute(
                text(
                    f"SELECT {self.function_name}("
                    ":p_user_id, :p_thread_id, :p_stitch_id, "
                    ":p_order_number, :p_skip_number, :p_distractor_level)"
                ),
                {f"p_{column}": value for column, value in update.to_row().items()},
            )


def default_strategies(
    session_scope: SessionScope,
    http_client: httpx.AsyncClient,
    token_provider: TokenProvider | None = None,
    settings: Settings | None = None,
) -> list[WriteStrategy]:
    """The four-attempt fallback ladder in order."""
    settings = settings or get_settings()
    return [
        ApiWriteStrategy(http_client, settings.progress_api_url, token_provider),
        DirectUpsertStrategy(session_scope, is_anonymous),
        UpdateThenInsertStrategy(session_scope),
        RpcWriteStrategy(session_scope, settings.stitch_progress_rpc),
    ]
