"""
Unit tests for the content buffer and its fallback chain.
"""

import httpx
import pytest

from helix.content.bundled import DEFAULT_MANIFEST
from helix.content.buffer import ContentBuffer, upcoming_stitch_ids
from helix.content.schemas import ContentManifest, Question, StitchContent
from helix.core.errors import NoContentError
from helix.core.state import TubeState, UserProgressState


def make_stitch(stitch_id):
    return StitchContent(
        id=stitch_id,
        title=f"Remote {stitch_id}",
        questions=[Question(id=f"{stitch_id}-q1", text="?", correct_answer="1")],
    )


class FakeContentClient:
    """In-memory stand-in for ContentClient."""

    def __init__(self, known=None, fail=False):
        self.known = set(known or [])
        self.fail = fail
        self.batches = []

    async def fetch_batch(self, stitch_ids):
        self.batches.append(list(stitch_ids))
        if self.fail:
            raise httpx.ConnectError("content API offline")
        return {stitch_id: make_stitch(stitch_id) for stitch_id in stitch_ids if stitch_id in self.known}

    async def fetch_manifest(self):
        if self.fail:
            raise httpx.ConnectError("content API offline")
        return ContentManifest(version=7)


def all_ids(state, limit):
    return {stitch_id for tube in state.tubes.values() for stitch_id in upcoming_stitch_ids(tube, limit)}


class TestGetStitch:
    @pytest.mark.asyncio
    async def test_remote_then_cached(self, three_tube_state):
        client = FakeContentClient(known=all_ids(three_tube_state, 5))
        buffer = ContentBuffer(client, phase1_size=2, phase2_size=5, critical_count=1)

        first = await buffer.get_stitch("stitch-T2-001-03")
        second = await buffer.get_stitch("stitch-T2-001-03")

        assert first.title == "Remote stitch-T2-001-03"
        assert second is first
        assert client.batches == [["stitch-T2-001-03"]]

    @pytest.mark.asyncio
    async def test_bundled_before_remote(self):
        client = FakeContentClient(known={"stitch-T1-001-01"})
        buffer = ContentBuffer(client, use_bundled=True, phase1_size=2, phase2_size=5, critical_count=1)

        stitch = await buffer.get_stitch("stitch-T1-001-01")

        assert stitch.title == "Number Recognition"
        assert client.batches == []

    @pytest.mark.asyncio
    async def test_bundled_ignored_for_returning_learners(self):
        client = FakeContentClient(known={"stitch-T1-001-01"})
        buffer = ContentBuffer(client, phase1_size=2, phase2_size=5, critical_count=1)

        stitch = await buffer.get_stitch("stitch-T1-001-01")

        assert stitch.title == "Remote stitch-T1-001-01"

    @pytest.mark.asyncio
    async def test_emergency_when_everything_fails(self):
        buffer = ContentBuffer(FakeContentClient(fail=True), phase1_size=2, phase2_size=5, critical_count=1)

        stitch = await buffer.get_stitch("stitch-T3-002-04")

        assert stitch.is_emergency
        assert stitch.questions
        assert not buffer.is_cached("stitch-T3-002-04")
        assert buffer.status.emergency_substitutions == 1

    @pytest.mark.asyncio
    async def test_emergency_when_api_lacks_stitch(self):
        buffer = ContentBuffer(FakeContentClient(), phase1_size=2, phase2_size=5, critical_count=1)

        stitch = await buffer.get_stitch("unknown")

        assert stitch.is_emergency

    @pytest.mark.asyncio
    async def test_no_client_falls_back(self):
        buffer = ContentBuffer(None, phase1_size=2, phase2_size=5, critical_count=1)

        assert (await buffer.get_stitch("stitch-T1-001-05")).is_emergency
        assert (await buffer.load_manifest()) is DEFAULT_MANIFEST


class TestInPlay:
    @pytest.mark.asyncio
    async def test_in_play_stitch(self, three_tube_state):
        buffer = ContentBuffer(FakeContentClient(known={"stitch-T1-001-01"}), phase1_size=2, phase2_size=5, critical_count=1)

        stitch = await buffer.get_in_play_stitch(three_tube_state)

        assert stitch.id == "stitch-T1-001-01"
        assert buffer.status.active_stitch_loaded

    @pytest.mark.asyncio
    async def test_in_play_without_current_stitch(self):
        state = UserProgressState(user_id="u", tubes={1: TubeState(thread_id="t")})
        buffer = ContentBuffer(FakeContentClient(), phase1_size=2, phase2_size=5, critical_count=1)

        with pytest.raises(NoContentError):
            await buffer.get_in_play_stitch(state)


class TestBufferPhases:
    @pytest.mark.asyncio
    async def test_phase1_loads_each_tube_window(self, three_tube_state):
        client = FakeContentClient(known=all_ids(three_tube_state, 5))
        buffer = ContentBuffer(client, phase1_size=2, phase2_size=5, critical_count=1)

        loaded = await buffer.fill_initial_buffer(three_tube_state)

        assert loaded == 6
        assert len(client.batches) == 1
        assert set(client.batches[0]) == all_ids(three_tube_state, 2)
        assert buffer.status.phase1_loaded
        assert not buffer.status.phase1_failed

    @pytest.mark.asyncio
    async def test_phase1_uses_bundled_for_new_learners(self, three_tube_state):
        client = FakeContentClient(known=all_ids(three_tube_state, 5))
        buffer = ContentBuffer(client, use_bundled=True, phase1_size=2, phase2_size=5, critical_count=1)

        await buffer.fill_initial_buffer(three_tube_state)

        assert "stitch-T1-001-01" not in client.batches[0]
        assert buffer.is_cached("stitch-T1-001-01")

    @pytest.mark.asyncio
    async def test_phase1_failure_substitutes_current_stitches(self, three_tube_state):
        buffer = ContentBuffer(FakeContentClient(fail=True), phase1_size=2, phase2_size=5, critical_count=1)

        loaded = await buffer.fill_initial_buffer(three_tube_state)

        assert loaded == 0
        assert buffer.status.phase1_failed
        assert buffer.status.phase1_loaded
        assert buffer.status.emergency_substitutions == 3
        assert len(buffer) == 3

    @pytest.mark.asyncio
    async def test_phase2_requires_phase1(self, three_tube_state):
        client = FakeContentClient(known=all_ids(three_tube_state, 5))
        buffer = ContentBuffer(client, phase1_size=2, phase2_size=5, critical_count=1)

        assert await buffer.fill_complete_buffer(three_tube_state) == 0
        assert client.batches == []

    @pytest.mark.asyncio
    async def test_phase2_fetches_only_missing(self, three_tube_state):
        client = FakeContentClient(known=all_ids(three_tube_state, 5))
        buffer = ContentBuffer(client, phase1_size=2, phase2_size=5, critical_count=1)

        await buffer.fill_initial_buffer(three_tube_state)
        loaded = await buffer.fill_complete_buffer(three_tube_state)

        assert loaded == 9
        assert set(client.batches[1]) == all_ids(three_tube_state, 5) - all_ids(three_tube_state, 2)
        assert buffer.status.phase2_loaded
        assert buffer.status.total_stitches_loaded == 15

    @pytest.mark.asyncio
    async def test_phase2_failure_substitutes_critical_stitches(self, three_tube_state):
        client = FakeContentClient(known=all_ids(three_tube_state, 1))
        buffer = ContentBuffer(client, phase1_size=1, phase2_size=5, critical_count=2)
        await buffer.fill_initial_buffer(three_tube_state)
        client.fail = True

        loaded = await buffer.fill_complete_buffer(three_tube_state)

        assert loaded == 0
        assert buffer.status.phase2_failed
        # Position 1 of each tube is critical and uncached
        assert buffer.status.emergency_substitutions == 3
        assert not buffer.is_cached("stitch-T1-001-02")
        assert buffer.is_cached("stitch-T1-001-01")

    @pytest.mark.asyncio
    async def test_emergency_entries_refetched_later(self, three_tube_state):
        client = FakeContentClient(known=all_ids(three_tube_state, 5), fail=True)
        buffer = ContentBuffer(client, phase1_size=2, phase2_size=5, critical_count=1)
        await buffer.fill_initial_buffer(three_tube_state)
        client.fail = False

        loaded = await buffer.fill_complete_buffer(three_tube_state)

        assert loaded == 15
        assert buffer.is_cached("stitch-T1-001-01")

    @pytest.mark.asyncio
    async def test_manifest_fallback(self):
        buffer = ContentBuffer(FakeContentClient(fail=True), phase1_size=2, phase2_size=5, critical_count=1)

        assert await buffer.load_manifest() is DEFAULT_MANIFEST

    @pytest.mark.asyncio
    async def test_manifest_from_remote(self):
        buffer = ContentBuffer(FakeContentClient(), phase1_size=2, phase2_size=5, critical_count=1)

        assert (await buffer.load_manifest()).version == 7

    def test_clear(self):
        buffer = ContentBuffer(FakeContentClient(), phase1_size=2, phase2_size=5, critical_count=1)
        buffer.status.phase1_loaded = True

        buffer.clear()

        assert len(buffer) == 0
        assert not buffer.status.phase1_loaded
