"""
Conversions between the position-map tube format and the legacy flat format.

Legacy tubes are stored as
    {"threadId", "currentStitchId", "stitches": [{"id", "position", "skipNumber", "distractorLevel"}]}
or, older still, as a bare "stitchOrder" list of ids. Snapshots in either
shape are upgraded on load.
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from helix.core.state import DistractorLevel, PositionEntry, TubeState, UserProgressState

# Skip number assumed for legacy entries that never recorded one
LEGACY_DEFAULT_SKIP = 3


def is_legacy_tube(data: dict[str, Any]) -> bool:
    return "positions" not in data and ("stitches" in data or "stitchOrder" in data)


def _legacy_position(stitch: dict[str, Any]) -> int | None:
    position = stitch.get("position")
    if position is None:
        return None
    try:
        position = int(position)
    except (TypeError, ValueError):
        return None
    return position if position >= 0 else None


def _legacy_entry(stitch: dict[str, Any], index: int) -> PositionEntry:
    order = stitch.get("order")
    return PositionEntry(
        stitch_id=str(stitch["id"]),
        skip_number=int(stitch.get("skipNumber") or LEGACY_DEFAULT_SKIP),
        distractor_level=DistractorLevel.parse(stitch.get("distractorLevel") or "L1"),
        order=int(order) if order is not None else index,
    )


def tube_from_legacy(data: dict[str, Any]) -> TubeState:
    """
    Upgrade a legacy tube dict to a TubeState.

    Stitches keep their recorded positions. A position already taken goes to
    the next free slot above it, and stitches with no position are appended
    after the last one. The stitch flagged as current (or, without a flag, the
    soonest one) is moved to 0 and everything that was ahead of it shifts back
    by one.
    """
    stitches = data.get("stitches")
    if not stitches:
        stitches = [{"id": stitch_id, "position": index} for index, stitch_id in enumerate(data.get("stitchOrder") or [])]

    placed: list[tuple[int, int, PositionEntry]] = []
    unplaced: list[PositionEntry] = []
    for index, stitch in enumerate(stitches):
        if not stitch.get("id"):
            continue
        entry = _legacy_entry(stitch, index)
        position = _legacy_position(stitch)
        if position is None:
            unplaced.append(entry)
        else:
            placed.append((position, index, entry))

    positions: dict[int, PositionEntry] = {}
    for position, _, entry in sorted(placed, key=lambda item: item[:2]):
        while position in positions:
            position += 1
        positions[position] = entry

    next_free = max(positions, default=-1) + 1
    for entry in unplaced:
        positions[next_free] = entry
        next_free += 1

    current_id = data.get("currentStitchId")
    current_at = next(
        (position for position, entry in positions.items() if current_id and entry.stitch_id == current_id),
        None,
    )
    if current_at is None and positions and 0 not in positions:
        current_at = min(positions)

    if current_at:
        current = positions.pop(current_at)
        positions = {
            (position + 1 if position < current_at else position): entry
            for position, entry in positions.items()
        }
        positions[0] = current
        logger.debug("Moved legacy current stitch {} from {} to 0", current.stitch_id, current_at)

    return TubeState(thread_id=data.get("threadId"), positions=positions)


def tube_to_legacy(tube: TubeState) -> dict[str, Any]:
    """Flatten a TubeState to the legacy stitches-list format."""
    return {
        "threadId": tube.thread_id,
        "currentStitchId": tube.current_stitch_id,
        "stitches": [
            {
                "id": entry.stitch_id,
                "position": position,
                "skipNumber": entry.skip_number,
                "distractorLevel": entry.distractor_level.value,
                "order": entry.order,
            }
            for position, entry in tube.sorted_entries()
        ],
    }


def state_from_dict(data: dict[str, Any]) -> UserProgressState:
    """Load a state snapshot, upgrading any legacy tubes it contains."""
    tubes = data.get("tubes") or {}
    legacy = [number for number, tube in tubes.items() if isinstance(tube, dict) and is_legacy_tube(tube)]
    if not legacy:
        return UserProgressState.from_dict(data)

    logger.info("Upgrading legacy tubes {} for {}", legacy, data.get("userId"))
    upgraded = dict(data)
    upgraded["tubes"] = {
        number: tube_from_legacy(tube).to_dict() if number in legacy else tube
        for number, tube in tubes.items()
    }
    if "activeTubeNumber" not in upgraded and "activeTube" in data:
        upgraded["activeTubeNumber"] = data["activeTube"]
    return UserProgressState.from_dict(upgraded)
