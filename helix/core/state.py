"""
Progress state types for the triple-helix engine.

Holds the per-user position maps the sequencing engine operates on:

- StitchRef: authored identity of a stitch (immutable)
- PositionEntry: a stitch's readiness inside one tube (skip number + distractor level)
- TubeState: position -> PositionEntry map for one tube; position 0 is "due now"
- UserProgressState: three tubes plus the active-tube pointer

All shapes round-trip through to_dict()/from_dict() using the camelCase keys
of the JSON wire format.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

# Skip-number progression ladder (saturates at the last rung)
SKIP_LADDER: tuple[int, ...] = (1, 3, 5, 10, 25, 100)

TUBE_NUMBERS: tuple[int, ...] = (1, 2, 3)


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def next_skip_number(skip_number: int) -> int:
    """Return the next ladder rung above skip_number (saturating at 100)."""
    for rung in SKIP_LADDER:
        if rung > skip_number:
            return rung
    return SKIP_LADDER[-1]


class DistractorLevel(str, Enum):
    """Difficulty tier selecting which wrong-answer set is shown."""

    L1 = "L1"
    L2 = "L2"
    L3 = "L3"

    def next(self) -> DistractorLevel:
        """Advance one tier, saturating at L3."""
        levels = list(DistractorLevel)
        index = levels.index(self)
        return levels[min(index + 1, len(levels) - 1)]

    @classmethod
    def parse(cls, value: Any) -> DistractorLevel:
        """Parse a stored level, falling back to L1 for unknown values."""
        if isinstance(value, DistractorLevel):
            return value
        try:
            return cls(str(value))
        except ValueError:
            return cls.L1


@dataclass(frozen=True)
class StitchRef:
    """Authored identity of a stitch."""

    id: str
    thread_id: str
    order: int
    title: str = ""


@dataclass(frozen=True)
class PositionEntry:
    """A stitch scheduled inside a tube."""

    stitch_id: str
    skip_number: int = 1
    distractor_level: DistractorLevel = DistractorLevel.L1
    order: int = 0  # authoring sequence, used for deterministic tie-breaks

    def promoted(self) -> PositionEntry:
        """Entry after a perfect-mastery completion (one rung up both ladders)."""
        return replace(
            self,
            skip_number=next_skip_number(self.skip_number),
            distractor_level=self.distractor_level.next(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "stitchId": self.stitch_id,
            "skipNumber": self.skip_number,
            "distractorLevel": self.distractor_level.value,
            "order": self.order,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PositionEntry:
        return cls(
            stitch_id=str(data.get("stitchId") or data.get("id")),
            skip_number=int(data.get("skipNumber", 1)),
            distractor_level=DistractorLevel.parse(data.get("distractorLevel", "L1")),
            order=int(data.get("order", 0) or 0),
        )


@dataclass
class TubeState:
    """
    Position map for one tube.

    Exactly one entry is expected at position 0 (the current stitch). Positions
    need not be contiguous; a lower position means sooner due.
    """

    thread_id: str | None
    positions: dict[int, PositionEntry] = field(default_factory=dict)

    @property
    def current_entry(self) -> PositionEntry | None:
        return self.positions.get(0)

    @property
    def current_stitch_id(self) -> str | None:
        entry = self.current_entry
        return entry.stitch_id if entry else None

    def sorted_entries(self) -> list[tuple[int, PositionEntry]]:
        """Entries ordered by position (soonest first)."""
        return sorted(self.positions.items())

    def position_of(self, stitch_id: str) -> int | None:
        for position, entry in self.positions.items():
            if entry.stitch_id == stitch_id:
                return position
        return None

    def copy(self) -> TubeState:
        return TubeState(thread_id=self.thread_id, positions=dict(self.positions))

    def to_dict(self) -> dict[str, Any]:
        return {
            "threadId": self.thread_id,
            "currentStitchId": self.current_stitch_id,
            "positions": {
                str(position): entry.to_dict() for position, entry in self.sorted_entries()
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TubeState:
        positions = {
            int(position): PositionEntry.from_dict(entry)
            for position, entry in (data.get("positions") or {}).items()
        }
        return cls(thread_id=data.get("threadId"), positions=positions)


@dataclass(frozen=True)
class CompletionOutcome:
    """Result of playing one stitch."""

    correct_count: int
    total_count: int

    def __post_init__(self) -> None:
        if self.correct_count < 0 or self.total_count < 0:
            raise ValueError("correct_count and total_count must be non-negative")
        if self.correct_count > self.total_count:
            raise ValueError(
                f"correct_count ({self.correct_count}) exceeds total_count ({self.total_count})"
            )

    @property
    def has_questions(self) -> bool:
        return self.total_count > 0

    @property
    def is_perfect(self) -> bool:
        return self.has_questions and self.correct_count == self.total_count


@dataclass
class UserProgressState:
    """All three tubes of one progress owner plus the active-tube pointer."""

    user_id: str
    tubes: dict[int, TubeState] = field(default_factory=dict)
    active_tube_number: int = 1
    last_updated: datetime = field(default_factory=utc_now)
    cycle_count: int = 0
    total_points: int = 0

    def __post_init__(self) -> None:
        if self.tubes and self.active_tube_number not in self.tubes:
            raise ValueError(
                f"Active tube {self.active_tube_number} not present in tubes {sorted(self.tubes)}"
            )

    @property
    def active_tube(self) -> TubeState | None:
        return self.tubes.get(self.active_tube_number)

    def copy(self) -> UserProgressState:
        return replace(self, tubes={number: tube.copy() for number, tube in self.tubes.items()})

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "activeTubeNumber": self.active_tube_number,
            "cycleCount": self.cycle_count,
            "totalPoints": self.total_points,
            "lastUpdated": self.last_updated.isoformat(),
            "tubes": {str(number): tube.to_dict() for number, tube in sorted(self.tubes.items())},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserProgressState:
        last_updated = data.get("lastUpdated") or data.get("last_updated")
        if isinstance(last_updated, (int, float)):
            timestamp = datetime.fromtimestamp(last_updated / 1000, tz=timezone.utc)
        elif last_updated:
            timestamp = datetime.fromisoformat(str(last_updated))
        else:
            timestamp = utc_now()

        return cls(
            user_id=str(data.get("userId", "")),
            tubes={
                int(number): TubeState.from_dict(tube)
                for number, tube in (data.get("tubes") or {}).items()
            },
            active_tube_number=int(data.get("activeTubeNumber", 1)),
            last_updated=timestamp,
            cycle_count=int(data.get("cycleCount", 0) or 0),
            total_points=int(data.get("totalPoints", 0) or 0),
        )
