"""
Stitch sequencing engine.

Pure transformation of one tube's position map given a completion outcome:

- Perfect mastery: the current stitch moves back to position == its skip number,
  climbs one rung on the skip ladder (1 -> 3 -> 5 -> 10 -> 25 -> 100) and the
  distractor ladder (L1 -> L2 -> L3), and the entry at the lowest positive
  position becomes current. No other entry moves.
- Anything else: the tube is returned unchanged (repeat until mastered).

The input tube is never mutated.
"""

from __future__ import annotations

from loguru import logger

from helix.core.errors import InvalidTubeStateError
from helix.core.state import CompletionOutcome, PositionEntry, TubeState


def _outranks(entry: PositionEntry, occupant: PositionEntry) -> bool:
    """True if entry should take a contested slot from occupant (lowest authoring order wins)."""
    return (entry.order, entry.stitch_id) < (occupant.order, occupant.stitch_id)


def _place(positions: dict[int, PositionEntry], position: int, entry: PositionEntry) -> None:
    """Insert entry at position, displacing the loser of a collision to the next free slot."""
    while True:
        occupant = positions.get(position)
        if occupant is None:
            positions[position] = entry
            return
        if _outranks(entry, occupant):
            positions[position], entry = entry, occupant
        position += 1


def advance_stitch(
    tube: TubeState,
    outcome: CompletionOutcome,
    *,
    tube_number: int | None = None,
) -> TubeState:
    """
    Compute the next position map for a tube.

    Args:
        tube: Tube whose position-0 entry was just played
        outcome: Correct/total counts for the completion
        tube_number: Only used for log and error context

    Returns:
        A new TubeState

    Raises:
        InvalidTubeStateError: If no entry occupies position 0
    """
    current = tube.current_entry
    if current is None:
        logger.error(
            "Tube {} (thread {}) has no stitch at position 0: {}",
            tube_number,
            tube.thread_id,
            tube.to_dict(),
        )
        raise InvalidTubeStateError(
            f"Tube {tube_number} has no stitch at position 0",
            tube_number=tube_number,
            thread_id=tube.thread_id,
        )

    if not outcome.has_questions:
        logger.warning("Stitch {} completed with no questions - no progress recorded", current.stitch_id)
        return tube.copy()

    if not outcome.is_perfect:
        logger.debug(
            "Stitch {} scored {}/{} - stays current (skip={}, level={})",
            current.stitch_id,
            outcome.correct_count,
            outcome.total_count,
            current.skip_number,
            current.distractor_level.value,
        )
        return tube.copy()

    promoted = current.promoted()
    remaining = {position: entry for position, entry in tube.positions.items() if position != 0}

    if not remaining:
        logger.info("Stitch {} is the only stitch in tube {} - promoted in place", current.stitch_id, tube_number)
        return TubeState(thread_id=tube.thread_id, positions={0: promoted})

    positions = dict(remaining)
    positions[0] = positions.pop(min(remaining))
    _place(positions, max(current.skip_number, 1), promoted)

    logger.debug(
        "Stitch {} mastered: moved to position {} (skip {} -> {}, level {} -> {}); {} is now current",
        current.stitch_id,
        max(current.skip_number, 1),
        current.skip_number,
        promoted.skip_number,
        current.distractor_level.value,
        promoted.distractor_level.value,
        positions[0].stitch_id,
    )
    return TubeState(thread_id=tube.thread_id, positions=positions)
