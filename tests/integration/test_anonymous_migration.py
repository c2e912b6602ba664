"""
Integration tests for anonymous -> authenticated progress migration.
"""

from datetime import datetime

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from helix.core.errors import MigrationError
from helix.persistence.migration import AnonymousMigrator
from helix.persistence.models import Profile, SessionResult, UserState, UserStitchProgress
from helix.persistence.repository import ProgressRepository, SessionSummary

ANON = "anonymous-1714564800000-abcd1234"
USER = "user-42"

OLD = datetime(2024, 1, 1, 9, 0)
NEW = datetime(2024, 6, 1, 9, 0)


def progress_row(user_id, stitch_id, order_number, skip_number, updated_at):
    return UserStitchProgress(
        user_id=user_id,
        thread_id="thread-T1-001",
        stitch_id=stitch_id,
        order_number=order_number,
        skip_number=skip_number,
        distractor_level="L2" if skip_number > 1 else "L1",
        is_anonymous=user_id.startswith("anonymous-"),
        updated_at=updated_at,
    )


@pytest_asyncio.fixture
async def seeded(db_scope, three_tube_state):
    """Anonymous owner with state, two sessions and three stitch rows; user has one overlapping row."""
    repository = ProgressRepository(db_scope)
    three_tube_state.user_id = ANON
    await repository.save_state(three_tube_state)
    await repository.record_session_result(SessionSummary(user_id=ANON, total_points=4, stitches_completed=2))
    await repository.record_session_result(SessionSummary(user_id=ANON, total_points=6, stitches_completed=3))
    await repository.record_session_result(SessionSummary(user_id=USER, total_points=10, stitches_completed=4))

    async with db_scope() as session:
        session.add_all([
            progress_row(ANON, "a", 0, 1, NEW),
            progress_row(ANON, "b", 3, 5, NEW),
            progress_row(ANON, "c", 1, 1, OLD),
            progress_row(USER, "b", 0, 1, OLD),
            progress_row(USER, "c", 7, 10, NEW),
        ])
    return db_scope


async def rows_for(db_scope, user_id):
    async with db_scope() as session:
        result = await session.execute(
            select(UserStitchProgress).where(UserStitchProgress.user_id == user_id)
        )
        return {row.stitch_id: (row.order_number, row.skip_number) for row in result.scalars().all()}


class TestMigration:
    @pytest.mark.asyncio
    async def test_moves_everything_to_user(self, seeded):
        result = await AnonymousMigrator(seeded).migrate(ANON, USER)

        assert result.state_migrated
        assert result.sessions_migrated == 2
        assert result.progress_conflicts == 2
        assert (result.total_points, result.total_sessions) == (20, 3)

        assert await rows_for(seeded, ANON) == {}
        user_rows = await rows_for(seeded, USER)
        assert user_rows["a"] == (0, 1)
        # Newest row wins on conflict
        assert user_rows["b"] == (3, 5)
        assert user_rows["c"] == (7, 10)

        async with seeded() as session:
            assert await session.get(UserState, ANON) is None
            state = await session.get(UserState, USER)
            assert state.state["userId"] == USER
            profile = await session.get(Profile, USER)
            assert (profile.total_points, profile.total_sessions) == (20, 3)
            owners = (await session.execute(select(SessionResult.user_id))).scalars().all()
            assert set(owners) == {USER}

    @pytest.mark.asyncio
    async def test_repeat_is_noop(self, seeded):
        migrator = AnonymousMigrator(seeded)
        await migrator.migrate(ANON, USER)
        before = await rows_for(seeded, USER)

        again = await migrator.migrate(ANON, USER)

        assert not again.state_migrated
        assert again.sessions_migrated == 0
        assert again.progress_migrated == 0
        assert (again.total_points, again.total_sessions) == (20, 3)
        assert await rows_for(seeded, USER) == before

    @pytest.mark.asyncio
    async def test_failure_rolls_back_every_step(self, seeded, monkeypatch):
        migrator = AnonymousMigrator(seeded)

        async def broken_profile(session, user_id):
            raise OperationalError("UPDATE profiles", {}, Exception("disk I/O error"))

        monkeypatch.setattr(migrator, "_recompute_profile", broken_profile)

        with pytest.raises(MigrationError) as exc_info:
            await migrator.migrate(ANON, USER)

        assert exc_info.value.table == "profiles"
        assert len(await rows_for(seeded, ANON)) == 3
        assert (await rows_for(seeded, USER))["b"] == (0, 1)
        async with seeded() as session:
            assert await session.get(UserState, ANON) is not None
            owners = (await session.execute(select(SessionResult.user_id))).scalars().all()
            assert owners.count(ANON) == 2

    @pytest.mark.asyncio
    async def test_nothing_to_migrate(self, db_scope):
        result = await AnonymousMigrator(db_scope).migrate(ANON, USER)

        assert result.to_dict() == {
            "anonymousId": ANON,
            "userId": USER,
            "stateMigrated": False,
            "sessionsMigrated": 0,
            "progressMigrated": 0,
            "progressConflicts": 0,
            "totalPoints": 0,
            "totalSessions": 0,
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize("anonymous_id,user_id", [(ANON, ANON), ("user-7", USER)])
    async def test_rejects_invalid_ids(self, db_scope, anonymous_id, user_id):
        with pytest.raises(ValueError):
            await AnonymousMigrator(db_scope).migrate(anonymous_id, user_id)
