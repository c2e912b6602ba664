"""
Integration tests for a full play loop: seed, play, persist, resume.
"""

import pytest
import pytest_asyncio
from sqlalchemy import select

from helix.content.buffer import ContentBuffer
from helix.core.state import DistractorLevel
from helix.persistence.gateway import PersistenceGateway
from helix.persistence.models import UserStitchProgress
from helix.persistence.repository import ProgressRepository
from helix.persistence.storage import SqliteStorage
from helix.persistence.strategies import DirectUpsertStrategy
from helix.session import LearningSession

ANON = "anonymous-1714564800000-abcd1234"


@pytest.fixture
def local_storage(tmp_path):
    storage = SqliteStorage(tmp_path / "local_storage.db")
    yield storage
    storage.close()


@pytest_asyncio.fixture
async def gateway(db_scope, local_storage):
    gateway = PersistenceGateway(
        [DirectUpsertStrategy(db_scope)],
        local_storage=local_storage,
        retry_delay=60,
        urgent_delay=0,
    )
    yield gateway
    await gateway.stop()


def offline_buffer():
    return ContentBuffer(None, phase1_size=3, phase2_size=5, critical_count=1)


async def stored_rows(db_scope, user_id):
    async with db_scope() as session:
        result = await session.execute(select(UserStitchProgress).where(UserStitchProgress.user_id == user_id))
        return {row.stitch_id: row for row in result.scalars().all()}


class TestLearningSession:
    @pytest.mark.asyncio
    async def test_new_anonymous_learner_plays_offline(self, db_scope, gateway, fixed_clock):
        repository = ProgressRepository(db_scope)
        session = LearningSession(ANON, gateway=gateway, buffer=offline_buffer(), repository=repository, clock=fixed_clock)

        state = await session.start()

        assert session.is_new
        assert state.active_tube_number == 1
        assert gateway.pending_count == 30

        content = await session.current_content()
        assert content.title == "Number Recognition"
        assert not content.is_emergency

        session.complete(3, 3)
        session.complete(1, 3)
        session.complete(3, 3)

        assert session.current_stitch().tube_number == 1

        summary = await session.finish()

        assert summary.stitches_completed == 3
        assert (summary.correct_answers, summary.total_questions, summary.total_points) == (7, 9, 7)
        assert gateway.pending_count == 0
        assert local_storage_is_clean(gateway)

        rows = await stored_rows(db_scope, ANON)
        assert len(rows) == 30
        mastered = rows["stitch-T1-001-01"]
        assert (mastered.order_number, mastered.skip_number, mastered.distractor_level) == (1, 3, "L2")
        assert rows["stitch-T1-001-02"].order_number == 0
        # Tube 2 was not mastered, so its current stitch stays put
        assert rows["stitch-T2-001-01"].order_number == 0
        assert rows["stitch-T2-001-01"].skip_number == 1

        profile = await repository.get_profile(ANON)
        assert profile.total_points == 7

    @pytest.mark.asyncio
    async def test_resume_from_local_snapshot(self, db_scope, gateway):
        first = LearningSession(ANON, gateway=gateway, buffer=offline_buffer())
        await first.start()
        first.complete(3, 3)
        await first.finish()

        second = LearningSession(ANON, gateway=gateway, buffer=offline_buffer())
        state = await second.start()

        assert not second.is_new
        assert state.active_tube_number == 2
        assert state.tubes[1].current_stitch_id == "stitch-T1-001-02"
        entry = state.tubes[1].positions[1]
        assert (entry.stitch_id, entry.distractor_level) == ("stitch-T1-001-01", DistractorLevel.L2)

    @pytest.mark.asyncio
    async def test_returning_learner_offline_gets_emergency_content(self, db_scope, gateway, three_tube_state):
        repository = ProgressRepository(db_scope)
        await repository.save_state(three_tube_state)
        buffer = offline_buffer()
        session = LearningSession("user-1", gateway=gateway, buffer=buffer, repository=repository)

        await session.start()
        content = await session.current_content()

        assert not session.is_new
        assert content.is_emergency
        assert content.questions
        assert buffer.status.phase1_failed

    @pytest.mark.asyncio
    async def test_complete_before_start_raises(self, gateway):
        session = LearningSession(ANON, gateway=gateway, buffer=offline_buffer())

        with pytest.raises(RuntimeError):
            session.complete(1, 1)


def local_storage_is_clean(gateway):
    return gateway.local_storage.items_with_prefix("stitch_update_") == []
