"""
Progress router.

Authenticated write path for position updates, session results, progress
reset and anonymous -> authenticated migration. The verified session owner
must match the owner a request writes for.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError

from helix.api.auth import get_current_owner, get_migrator, get_repository
from helix.core.errors import InvalidIdentityError, MigrationError
from helix.core.identity import is_anonymous, verify_token
from helix.core.state import DistractorLevel
from helix.persistence.migration import AnonymousMigrator
from helix.persistence.repository import ProgressRepository, SessionSummary
from helix.persistence.updates import PositionUpdate

router = APIRouter()


# ========================================
# Request/Response Models
# ========================================


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class PositionUpdateRequest(_CamelModel):
    """Request model for a single position update."""

    user_id: str = Field(alias="userId", min_length=1)
    thread_id: str = Field(alias="threadId", min_length=1)
    stitch_id: str = Field(alias="stitchId", min_length=1)
    order_number: int = Field(alias="orderNumber", ge=0)
    skip_number: int = Field(default=1, alias="skipNumber", ge=1)
    distractor_level: DistractorLevel = Field(default=DistractorLevel.L1, alias="distractorLevel")

    def to_update(self) -> PositionUpdate:
        return PositionUpdate(
            user_id=self.user_id,
            thread_id=self.thread_id,
            stitch_id=self.stitch_id,
            order_number=self.order_number,
            skip_number=self.skip_number,
            distractor_level=self.distractor_level,
        )


class SessionResultRequest(_CamelModel):
    """Request model for recording a finished session."""

    user_id: str = Field(alias="userId", min_length=1)
    total_points: int = Field(default=0, alias="totalPoints", ge=0)
    correct_answers: int = Field(default=0, alias="correctAnswers", ge=0)
    total_questions: int = Field(default=0, alias="totalQuestions", ge=0)
    stitches_completed: int = Field(default=0, alias="stitchesCompleted", ge=0)


class MigrationRequest(_CamelModel):
    """Request model for a migration; the token proves the caller held the anonymous session."""

    anonymous_id: str = Field(alias="anonymousId", min_length=1)
    anonymous_token: str = Field(alias="anonymousToken", min_length=1)


class ResetRequest(_CamelModel):
    user_id: str = Field(alias="userId", min_length=1)


def _require_owner(owner: str, user_id: str) -> None:
    if owner != user_id:
        logger.warning("Owner {} attempted to write progress for {}", owner, user_id)
        raise HTTPException(status_code=403, detail="Session owner does not match userId")


def _require_anonymous_token(token: str, anonymous_id: str, owner: str) -> None:
    try:
        token_owner = verify_token(token)
    except InvalidIdentityError as e:
        logger.warning("Owner {} presented an invalid token for {}: {}", owner, anonymous_id, e)
        raise HTTPException(status_code=403, detail="Invalid anonymous session token") from e
    if token_owner != anonymous_id:
        logger.warning("Owner {} presented a token for {} while migrating {}", owner, token_owner, anonymous_id)
        raise HTTPException(status_code=403, detail="Anonymous session token does not match anonymousId")


# ========================================
# Progress Endpoints
# ========================================


@router.post("/progress/update", summary="Persist one stitch position")
async def update_progress(
    request: PositionUpdateRequest,
    owner: str = Depends(get_current_owner),
    repository: ProgressRepository = Depends(get_repository),
) -> dict[str, Any]:
    _require_owner(owner, request.user_id)
    try:
        await repository.upsert_position(request.to_update())
    except SQLAlchemyError as e:
        logger.error("Progress update failed for {}: {}", request.stitch_id, e)
        raise HTTPException(status_code=503, detail="Progress store unavailable") from e
    return {"success": True}


@router.post("/sessions/record", summary="Record a finished session")
async def record_session(
    request: SessionResultRequest,
    owner: str = Depends(get_current_owner),
    repository: ProgressRepository = Depends(get_repository),
) -> dict[str, Any]:
    _require_owner(owner, request.user_id)
    summary = SessionSummary(
        user_id=request.user_id,
        total_points=request.total_points,
        correct_answers=request.correct_answers,
        total_questions=request.total_questions,
        stitches_completed=request.stitches_completed,
    )
    try:
        session_id = await repository.record_session_result(summary)
        totals = await repository.get_profile(request.user_id)
    except SQLAlchemyError as e:
        logger.error("Session record failed for {}: {}", request.user_id, e)
        raise HTTPException(status_code=503, detail="Progress store unavailable") from e

    return {
        "success": True,
        "sessionId": session_id,
        "totalPoints": totals.total_points if totals else request.total_points,
        "totalSessions": totals.total_sessions if totals else 1,
    }


@router.post("/progress/reset", summary="Delete all stitch progress for the owner")
async def reset_progress(
    request: ResetRequest,
    owner: str = Depends(get_current_owner),
    repository: ProgressRepository = Depends(get_repository),
) -> dict[str, Any]:
    _require_owner(owner, request.user_id)
    try:
        deleted = await repository.reset_progress(request.user_id)
    except SQLAlchemyError as e:
        logger.error("Progress reset failed for {}: {}", request.user_id, e)
        raise HTTPException(status_code=503, detail="Progress store unavailable") from e
    return {"success": True, "deleted": deleted}


@router.post("/auth/migrate-anonymous-user", summary="Move anonymous progress onto the authenticated owner")
async def migrate_anonymous_user(
    request: MigrationRequest,
    owner: str = Depends(get_current_owner),
    migrator: AnonymousMigrator = Depends(get_migrator),
) -> dict[str, Any]:
    """
    Re-key the anonymous owner's data onto the caller.

    The caller must be authenticated (not anonymous) and present the session
    token issued to the anonymous owner. Safe to repeat.
    """
    if is_anonymous(owner):
        raise HTTPException(status_code=403, detail="Migration requires an authenticated session")
    if not is_anonymous(request.anonymous_id):
        raise HTTPException(status_code=400, detail="anonymousId is not an anonymous id")
    _require_anonymous_token(request.anonymous_token, request.anonymous_id, owner)

    try:
        result = await migrator.migrate(request.anonymous_id, owner)
    except MigrationError as e:
        raise HTTPException(status_code=500, detail=f"Migration failed at {e.table or 'commit'}") from e

    return {"success": True, **result.to_dict()}
