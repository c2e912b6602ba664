"""
Initial state for a learner with no stored progress.

Each tube is seeded from the first thread the manifest lists for it: stitches
in authoring order at positions 0..n-1, skip number 1, distractor level L1.
Tubes the manifest leaves empty fall back to the bundled default manifest.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Iterable

from loguru import logger

from helix.content.bundled import DEFAULT_MANIFEST
from helix.content.schemas import ContentManifest, StitchReference, TubeManifest
from helix.core.state import (
    TUBE_NUMBERS,
    DistractorLevel,
    PositionEntry,
    TubeState,
    UserProgressState,
    utc_now,
)


def seed_tube(thread_id: str, stitches: Iterable[StitchReference]) -> TubeState:
    """Build a fresh tube with stitches laid out in authoring order."""
    ordered = sorted(stitches, key=lambda stitch: (stitch.order, stitch.id))
    return TubeState(
        thread_id=thread_id,
        positions={
            position: PositionEntry(
                stitch_id=stitch.id,
                skip_number=1,
                distractor_level=DistractorLevel.L1,
                order=stitch.order,
            )
            for position, stitch in enumerate(ordered)
        },
    )


def _first_thread(tube: TubeManifest | None) -> tuple[str, list[StitchReference]] | None:
    if tube is None:
        return None
    for thread_id, thread in tube.threads.items():
        if thread.stitches:
            return thread_id, thread.stitches
    return None


def seed_progress_state(
    user_id: str,
    manifest: ContentManifest | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> UserProgressState:
    """Create the starting progress state for user_id."""
    tubes: dict[int, TubeState] = {}
    for tube_number in TUBE_NUMBERS:
        first = _first_thread(manifest.tubes.get(tube_number)) if manifest else None
        if first is None:
            logger.info("Manifest has no stitches for tube {} - using bundled defaults", tube_number)
            first = _first_thread(DEFAULT_MANIFEST.tubes.get(tube_number))
        thread_id, stitches = first
        tubes[tube_number] = seed_tube(thread_id, stitches)

    logger.info(
        "Seeded progress for {}: {}",
        user_id,
        ", ".join(f"tube {n}={len(t.positions)} stitches" for n, t in tubes.items()),
    )
    return UserProgressState(user_id=user_id, tubes=tubes, active_tube_number=1, last_updated=clock())
