"""
Learning session.

Wires the tube cycler, the content buffer and the persistence gateway into one
play loop for a single owner:

    session = LearningSession(user_id, gateway=gateway, buffer=buffer, repository=repository)
    await session.start()
    content = await session.current_content()
    session.complete(correct, total)   # returns immediately, writes are deferred
    ...
    await session.finish()
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from helix.content.buffer import ContentBuffer
from helix.content.schemas import StitchContent
from helix.core.identity import is_anonymous
from helix.core.state import CompletionOutcome, UserProgressState, utc_now
from helix.persistence.gateway import PersistenceGateway
from helix.persistence.repository import ProgressRepository, SessionSummary
from helix.persistence.updates import diff_tube, tube_updates
from helix.sequencing.cycler import CurrentStitch, StitchCompletion, TubeCycler
from helix.sequencing.seeding import seed_progress_state


class LearningSession:
    """One owner's play loop."""

    def __init__(
        self,
        user_id: str,
        *,
        gateway: PersistenceGateway,
        buffer: ContentBuffer,
        repository: ProgressRepository | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.user_id = user_id
        self.gateway = gateway
        self.buffer = buffer
        self.repository = repository
        self.clock = clock
        self.cycler: TubeCycler | None = None
        self.summary = SessionSummary(user_id=user_id)
        self.is_new = False

    @property
    def state(self) -> UserProgressState:
        return self._require_cycler().state

    def _require_cycler(self) -> TubeCycler:
        if self.cycler is None:
            raise RuntimeError("Session not started")
        return self.cycler

    async def _load_state(self) -> UserProgressState:
        state = self.gateway.load_snapshot(self.user_id)
        if state is not None:
            logger.info("Resuming {} from local state", self.user_id)
            return state

        if self.repository is not None:
            try:
                state = await self.repository.load_state(self.user_id)
            except SQLAlchemyError as e:
                logger.warning("Could not load stored state for {}: {}", self.user_id, e)
            else:
                active = state.active_tube if state else None
                if state is not None and active is not None and active.current_entry is not None:
                    logger.info("Resuming {} from stored state", self.user_id)
                    return state

        self.is_new = True
        manifest = await self.buffer.load_manifest()
        return seed_progress_state(self.user_id, manifest, clock=self.clock)

    async def start(self) -> UserProgressState:
        """Load or seed the owner's state and buffer the first stitches."""
        if is_anonymous(self.user_id):
            self.buffer.use_bundled = True

        state = await self._load_state()
        if self.is_new:
            self.buffer.use_bundled = True
            for tube in state.tubes.values():
                for update in tube_updates(self.user_id, tube):
                    self.gateway.enqueue(update)

        self.cycler = TubeCycler(state, clock=self.clock)
        self.cycler.add_listener(self._on_completion)
        self.gateway.save_snapshot(state)

        await self.buffer.get_in_play_stitch(state)
        await self.buffer.fill_initial_buffer(state)
        return state

    def current_stitch(self) -> CurrentStitch:
        return self._require_cycler().get_current_stitch()

    async def current_content(self) -> StitchContent:
        """Content for the stitch due now in the active tube."""
        return await self.buffer.get_stitch(self.current_stitch().stitch_id)

    def complete(self, correct_count: int, total_count: int) -> UserProgressState:
        """Record a completed stitch and rotate tubes. Never waits on persistence."""
        outcome = CompletionOutcome(correct_count=correct_count, total_count=total_count)
        state = self._require_cycler().complete_stitch(outcome)

        self.summary.correct_answers += correct_count
        self.summary.total_questions += total_count
        self.summary.total_points += correct_count
        self.summary.stitches_completed += 1
        return state

    def _on_completion(self, completion: StitchCompletion) -> None:
        self.gateway.save_snapshot(completion.state)
        for update in diff_tube(self.user_id, completion.previous_tube, completion.tube):
            self.gateway.submit(update)

    async def finish(self) -> SessionSummary:
        """Flush pending writes and record the session result."""
        state = self.state
        self.gateway.save_snapshot(state)
        await self.gateway.flush()

        if self.repository is not None and self.summary.stitches_completed:
            try:
                await self.repository.save_state(state)
                await self.repository.record_session_result(self.summary)
            except SQLAlchemyError as e:
                logger.error("Could not record session for {}: {}", self.user_id, e)

        logger.info(
            "Session finished for {}: {} stitches, {}/{} correct",
            self.user_id,
            self.summary.stitches_completed,
            self.summary.correct_answers,
            self.summary.total_questions,
        )
        return self.summary
