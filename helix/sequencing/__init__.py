"""
Sequencing Module - Spaced-repetition ordering of stitches across three tubes.

Components:
- engine: per-tube position map transformation on completion
- cycler: active-tube rotation and completion fan-out
- seeding: starting state for new learners
- adapters: legacy tube format conversion
"""

from helix.sequencing.adapters import state_from_dict, tube_from_legacy, tube_to_legacy
from helix.sequencing.cycler import CurrentStitch, StitchCompletion, TubeCycler
from helix.sequencing.engine import advance_stitch
from helix.sequencing.seeding import seed_progress_state, seed_tube

__all__ = [
    "CurrentStitch",
    "StitchCompletion",
    "TubeCycler",
    "advance_stitch",
    "seed_progress_state",
    "seed_tube",
    "state_from_dict",
    "tube_from_legacy",
    "tube_to_legacy",
]
