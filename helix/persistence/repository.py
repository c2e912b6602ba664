"""
Progress repository.

Server-side reads and writes against the relational progress store:
position rows, state snapshots, session results and profile aggregates.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from sqlalchemy import delete, func, select

from helix.core.identity import is_anonymous
from helix.core.state import UserProgressState, utc_now
from helix.persistence.database import SessionScope
from helix.persistence.models import Profile, SessionResult, UserState, UserStitchProgress
from helix.persistence.strategies import upsert_progress
from helix.persistence.updates import PositionUpdate
from helix.sequencing.adapters import state_from_dict


@dataclass
class SessionSummary:
    """Totals for one finished learning session."""

    user_id: str
    total_points: int = 0
    correct_answers: int = 0
    total_questions: int = 0
    stitches_completed: int = 0

    @property
    def accuracy(self) -> float:
        if self.total_questions == 0:
            return 0.0
        return self.correct_answers / self.total_questions


@dataclass
class ProfileTotals:
    user_id: str
    total_points: int
    total_sessions: int


class ProgressRepository:
    """Async access to the progress store through a transactional session scope."""

    def __init__(self, session_scope: SessionScope):
        self.session_scope = session_scope

    async def upsert_position(self, update: PositionUpdate) -> None:
        """Idempotently write one position row."""
        values = update.to_row()
        values["is_anonymous"] = is_anonymous(update.user_id)
        async with self.session_scope() as session:
            await upsert_progress(session, values)

    async def load_progress_rows(self, user_id: str) -> list[UserStitchProgress]:
        async with self.session_scope() as session:
            result = await session.execute(
                select(UserStitchProgress)
                .where(UserStitchProgress.user_id == user_id)
                .order_by(UserStitchProgress.thread_id, UserStitchProgress.order_number)
            )
            return list(result.scalars().all())

    async def save_state(self, state: UserProgressState) -> None:
        """Store the latest full state snapshot for its owner."""
        async with self.session_scope() as session:
            row = await session.get(UserState, state.user_id)
            if row is None:
                session.add(UserState(user_id=state.user_id, state=state.to_dict(), last_updated=utc_now()))
            else:
                row.state = state.to_dict()
                row.last_updated = utc_now()

    async def load_state(self, user_id: str) -> UserProgressState | None:
        """Load the stored state snapshot, or None if absent or unreadable."""
        async with self.session_scope() as session:
            row = await session.get(UserState, user_id)
            if row is None:
                return None
            data = dict(row.state)

        try:
            state = state_from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning("Stored state for {} is unreadable: {}", user_id, e)
            return None
        state.user_id = user_id
        return state

    async def record_session_result(self, summary: SessionSummary) -> int:
        """
        Record a finished session and fold it into the owner's profile.

        Returns:
            The new session result id
        """
        anonymous = is_anonymous(summary.user_id)
        async with self.session_scope() as session:
            result = SessionResult(
                user_id=summary.user_id,
                total_points=summary.total_points,
                correct_answers=summary.correct_answers,
                total_questions=summary.total_questions,
                stitches_completed=summary.stitches_completed,
                is_anonymous=anonymous,
                completed_at=utc_now(),
            )
            session.add(result)

            profile = await session.get(Profile, summary.user_id)
            if profile is None:
                profile = Profile(user_id=summary.user_id, total_points=0, total_sessions=0)
                session.add(profile)
            profile.total_points = (profile.total_points or 0) + summary.total_points
            profile.total_sessions = (profile.total_sessions or 0) + 1
            profile.last_session_at = utc_now()

            await session.flush()
            logger.info(
                "Recorded session for {}: {} points, {}/{} correct",
                summary.user_id,
                summary.total_points,
                summary.correct_answers,
                summary.total_questions,
            )
            return result.id

    async def get_profile(self, user_id: str) -> ProfileTotals | None:
        async with self.session_scope() as session:
            profile = await session.get(Profile, user_id)
            if profile is None:
                return None
            return ProfileTotals(
                user_id=profile.user_id,
                total_points=profile.total_points or 0,
                total_sessions=profile.total_sessions or 0,
            )

    async def session_totals(self, user_id: str) -> ProfileTotals:
        """Aggregate points and session count directly from session results."""
        async with self.session_scope() as session:
            result = await session.execute(
                select(
                    func.coalesce(func.sum(SessionResult.total_points), 0),
                    func.count(SessionResult.id),
                ).where(SessionResult.user_id == user_id)
            )
            points, sessions = result.one()
        return ProfileTotals(user_id=user_id, total_points=int(points), total_sessions=int(sessions))

    async def reset_progress(self, user_id: str) -> int:
        """
        Delete all position rows and the state snapshot of user_id.

        Session results and profile totals are kept.

        Returns:
            Number of position rows deleted
        """
        async with self.session_scope() as session:
            result = await session.execute(
                delete(UserStitchProgress).where(UserStitchProgress.user_id == user_id)
            )
            await session.execute(delete(UserState).where(UserState.user_id == user_id))
        logger.info("Reset progress for {} ({} rows)", user_id, result.rowcount)
        return result.rowcount or 0
