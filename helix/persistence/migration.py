"""
Anonymous -> authenticated progress migration.

Re-keys everything an anonymous owner accumulated onto the authenticated
user in one transaction:

1. state snapshot (user_state)
2. session results (session_results)
3. per-stitch positions (user_stitch_progress)
4. profile totals, recomputed from the migrated session results

Where both owners have a row for the same key the most recently updated row
wins. Any failure rolls the whole migration back. Running it again is a no-op
apart from recomputing the same totals.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from helix.core.errors import MigrationError
from helix.core.identity import is_anonymous
from helix.persistence.database import SessionScope
from helix.persistence.models import Profile, SessionResult, UserState, UserStitchProgress


@dataclass
class MigrationResult:
    """What a migration moved and the resulting profile totals."""

    anonymous_id: str
    user_id: str
    state_migrated: bool = False
    sessions_migrated: int = 0
    progress_migrated: int = 0
    progress_conflicts: int = 0
    total_points: int = 0
    total_sessions: int = 0

    def to_dict(self) -> dict:
        return {
            "anonymousId": self.anonymous_id,
            "userId": self.user_id,
            "stateMigrated": self.state_migrated,
            "sessionsMigrated": self.sessions_migrated,
            "progressMigrated": self.progress_migrated,
            "progressConflicts": self.progress_conflicts,
            "totalPoints": self.total_points,
            "totalSessions": self.total_sessions,
        }


def _newer(left: datetime | None, right: datetime | None) -> bool:
    """True if left is strictly more recent than right."""
    if left is None:
        return False
    if right is None:
        return True
    if (left.tzinfo is None) != (right.tzinfo is None):
        left, right = left.replace(tzinfo=None), right.replace(tzinfo=None)
    return left > right


class AnonymousMigrator:
    """Moves an anonymous owner's data onto an authenticated user."""

    def __init__(self, session_scope: SessionScope):
        self.session_scope = session_scope

    async def migrate(self, anonymous_id: str, user_id: str) -> MigrationResult:
        """
        Migrate all data of anonymous_id to user_id.

        Raises:
            ValueError: If the ids are the same or anonymous_id is not anonymous
            MigrationError: If any step fails (nothing is changed)
        """
        if anonymous_id == user_id:
            raise ValueError("Anonymous and authenticated ids must differ")
        if not is_anonymous(anonymous_id):
            raise ValueError(f"{anonymous_id!r} is not an anonymous id")

        result = MigrationResult(anonymous_id=anonymous_id, user_id=user_id)
        logger.info("Migrating anonymous progress {} -> {}", anonymous_id, user_id)

        try:
            async with self.session_scope() as session:
                result.state_migrated = await self._step(
                    "user_state", self._migrate_state(session, anonymous_id, user_id)
                )
                result.sessions_migrated = await self._step(
                    "session_results", self._migrate_sessions(session, anonymous_id, user_id)
                )
                result.progress_migrated, result.progress_conflicts = await self._step(
                    "user_stitch_progress", self._migrate_progress(session, anonymous_id, user_id)
                )
                result.total_points, result.total_sessions = await self._step(
                    "profiles", self._recompute_profile(session, user_id)
                )
        except SQLAlchemyError as e:
            logger.error("Migration {} -> {} failed to commit: {}", anonymous_id, user_id, e)
            raise MigrationError(f"Migration commit failed: {e}") from e

        logger.info(
            "Migration {} -> {} complete: state={}, sessions={}, progress={} ({} conflicts), points={}",
            anonymous_id,
            user_id,
            result.state_migrated,
            result.sessions_migrated,
            result.progress_migrated,
            result.progress_conflicts,
            result.total_points,
        )
        return result

    async def _step(self, table: str, operation):
        try:
            value = await operation
        except SQLAlchemyError as e:
            logger.error("Migration step {} failed, rolling back: {}", table, e)
            raise MigrationError(f"Migration failed at {table}: {e}", table=table) from e
        logger.debug("Migration step {} done: {}", table, value)
        return value

    async def _migrate_state(self, session: AsyncSession, anonymous_id: str, user_id: str) -> bool:
        anonymous_row = await session.get(UserState, anonymous_id)
        if anonymous_row is None:
            return False

        user_row = await session.get(UserState, user_id)
        state = dict(anonymous_row.state)
        state["userId"] = user_id

        if user_row is None:
            session.add(UserState(user_id=user_id, state=state, last_updated=anonymous_row.last_updated))
            migrated = True
        elif _newer(anonymous_row.last_updated, user_row.last_updated):
            user_row.state = state
            user_row.last_updated = anonymous_row.last_updated
            migrated = True
        else:
            migrated = False

        await session.delete(anonymous_row)
        await session.flush()
        return migrated

    async def _migrate_sessions(self, session: AsyncSession, anonymous_id: str, user_id: str) -> int:
        result = await session.execute(
            update(SessionResult)
            .where(SessionResult.user_id == anonymous_id)
            .values(user_id=user_id, is_anonymous=False)
        )
        return result.rowcount or 0

    async def _migrate_progress(self, session: AsyncSession, anonymous_id: str, user_id: str) -> tuple[int, int]:
        anonymous_rows = (
            await session.execute(select(UserStitchProgress).where(UserStitchProgress.user_id == anonymous_id))
        ).scalars().all()
        if not anonymous_rows:
            return 0, 0

        existing = {
            (row.thread_id, row.stitch_id): row
            for row in (
                await session.execute(select(UserStitchProgress).where(UserStitchProgress.user_id == user_id))
            ).scalars().all()
        }

        migrated = conflicts = 0
        for row in anonymous_rows:
            target = existing.get((row.thread_id, row.stitch_id))
            if target is None:
                session.add(
                    UserStitchProgress(
                        user_id=user_id,
                        thread_id=row.thread_id,
                        stitch_id=row.stitch_id,
                        order_number=row.order_number,
                        skip_number=row.skip_number,
                        distractor_level=row.distractor_level,
                        is_anonymous=False,
                        updated_at=row.updated_at,
                    )
                )
                migrated += 1
            else:
                conflicts += 1
                if _newer(row.updated_at, target.updated_at):
                    target.order_number = row.order_number
                    target.skip_number = row.skip_number
                    target.distractor_level = row.distractor_level
                    target.updated_at = row.updated_at
                    migrated += 1
            await session.delete(row)

        await session.flush()
        return migrated, conflicts

    async def _recompute_profile(self, session: AsyncSession, user_id: str) -> tuple[int, int]:
        points, sessions = (
            await session.execute(
                select(
                    func.coalesce(func.sum(SessionResult.total_points), 0),
                    func.count(SessionResult.id),
                ).where(SessionResult.user_id == user_id)
            )
        ).one()

        profile = await session.get(Profile, user_id)
        if profile is None:
            profile = Profile(user_id=user_id)
            session.add(profile)
        profile.total_points = int(points)
        profile.total_sessions = int(sessions)
        await session.flush()
        return profile.total_points, profile.total_sessions
