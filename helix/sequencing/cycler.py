"""
Tube cycler.

Holds the three tubes and the active-tube pointer. Every completed stitch runs
the sequencing engine on the active tube, stores the result, and rotates the
pointer 1 -> 2 -> 3 -> 1 regardless of the outcome.

complete_stitch() only touches memory. Durable writes are the business of
completion listeners, which must schedule their work rather than await it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from loguru import logger

from helix.core.errors import InvalidTubeStateError, NoContentError
from helix.core.state import (
    CompletionOutcome,
    DistractorLevel,
    StitchRef,
    TubeState,
    UserProgressState,
    utc_now,
)

from .engine import advance_stitch


@dataclass(frozen=True)
class CurrentStitch:
    """The stitch due now in the active tube."""

    tube_number: int
    stitch: StitchRef
    skip_number: int
    distractor_level: DistractorLevel

    @property
    def stitch_id(self) -> str:
        return self.stitch.id

    @property
    def thread_id(self) -> str:
        return self.stitch.thread_id


@dataclass(frozen=True)
class StitchCompletion:
    """What changed in one complete_stitch() call."""

    tube_number: int
    previous_tube: TubeState
    tube: TubeState
    outcome: CompletionOutcome
    state: UserProgressState


CompletionListener = Callable[[StitchCompletion], None]


class TubeCycler:
    """Three-tube rotation over a user's progress state."""

    def __init__(
        self,
        state: UserProgressState,
        clock: Callable[[], datetime] = utc_now,
    ):
        if not state.tubes:
            raise InvalidTubeStateError("Progress state has no tubes")
        self._state = state.copy()
        self._clock = clock
        self._listeners: list[CompletionListener] = []
        self._completing = False

    @property
    def state(self) -> UserProgressState:
        """Snapshot of the current state (callers cannot mutate the cycler)."""
        return self._state.copy()

    @property
    def active_tube_number(self) -> int:
        return self._state.active_tube_number

    @property
    def cycle_count(self) -> int:
        return self._state.cycle_count

    def add_listener(self, listener: CompletionListener) -> None:
        self._listeners.append(listener)

    def next_tube_number(self, tube_number: int) -> int:
        numbers = sorted(self._state.tubes)
        return numbers[(numbers.index(tube_number) + 1) % len(numbers)]

    def get_current_stitch(self) -> CurrentStitch:
        """
        Get the position-0 stitch of the active tube.

        Raises:
            NoContentError: If the active tube has no position-0 entry
        """
        tube_number = self._state.active_tube_number
        tube = self._state.tubes.get(tube_number)
        entry = tube.current_entry if tube else None
        if entry is None:
            logger.error("Active tube {} has no current stitch", tube_number)
            raise NoContentError(f"Tube {tube_number} has no stitch at position 0")

        return CurrentStitch(
            tube_number=tube_number,
            stitch=StitchRef(id=entry.stitch_id, thread_id=tube.thread_id or "", order=entry.order),
            skip_number=entry.skip_number,
            distractor_level=entry.distractor_level,
        )

    def complete_stitch(self, outcome: CompletionOutcome) -> UserProgressState:
        """
        Apply a completion to the active tube and rotate to the next tube.

        Returns:
            The new state snapshot

        Raises:
            InvalidTubeStateError: If the active tube is corrupt
            RuntimeError: If called again while a completion is being applied
        """
        if self._completing:
            raise RuntimeError("complete_stitch() is not reentrant")

        self._completing = True
        try:
            previous = self._state
            tube_number = previous.active_tube_number
            tube = previous.tubes.get(tube_number)
            if tube is None:
                raise InvalidTubeStateError(
                    f"Active tube {tube_number} is missing", tube_number=tube_number
                )

            new_tube = advance_stitch(tube, outcome, tube_number=tube_number)
            tubes = {number: t.copy() for number, t in previous.tubes.items()}
            tubes[tube_number] = new_tube

            next_number = self.next_tube_number(tube_number)
            wrapped = next_number <= tube_number

            self._state = UserProgressState(
                user_id=previous.user_id,
                tubes=tubes,
                active_tube_number=next_number,
                last_updated=self._clock(),
                cycle_count=previous.cycle_count + (1 if wrapped else 0),
                total_points=previous.total_points + outcome.correct_count,
            )
        finally:
            self._completing = False

        logger.info(
            "Tube {} completed ({}/{}) - rotating to tube {}",
            tube_number,
            outcome.correct_count,
            outcome.total_count,
            next_number,
        )

        completion = StitchCompletion(
            tube_number=tube_number,
            previous_tube=tube.copy(),
            tube=new_tube.copy(),
            outcome=outcome,
            state=self._state.copy(),
        )
        for listener in self._listeners:
            try:
                listener(completion)
            except Exception:  # Intentionally broad - a listener must never break play
                logger.exception("Completion listener {} failed", listener)

        return self._state.copy()

    def select_tube(self, tube_number: int) -> None:
        """Make tube_number the active tube."""
        if tube_number not in self._state.tubes:
            raise ValueError(f"Tube {tube_number} not found")
        self._state.active_tube_number = tube_number
        self._state.last_updated = self._clock()
