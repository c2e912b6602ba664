"""
Core Module - Shared domain models and interfaces.

Components:
- state: position maps, tubes, and the per-user progress state
- errors: exception hierarchy
- identity: anonymous ids and signed session tokens
"""

from helix.core.errors import (
    HelixError,
    InvalidIdentityError,
    InvalidTubeStateError,
    MigrationError,
    NoContentError,
    WriteRejectedError,
)
from helix.core.state import (
    SKIP_LADDER,
    TUBE_NUMBERS,
    CompletionOutcome,
    DistractorLevel,
    PositionEntry,
    StitchRef,
    TubeState,
    UserProgressState,
    next_skip_number,
    utc_now,
)

__all__ = [
    "SKIP_LADDER",
    "TUBE_NUMBERS",
    "CompletionOutcome",
    "DistractorLevel",
    "HelixError",
    "InvalidIdentityError",
    "InvalidTubeStateError",
    "MigrationError",
    "NoContentError",
    "PositionEntry",
    "StitchRef",
    "TubeState",
    "UserProgressState",
    "WriteRejectedError",
    "next_skip_number",
    "utc_now",
]
