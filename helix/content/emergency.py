"""
Emergency content.

Procedurally generated placeholder stitches used when neither the cache, the
bundled set nor the remote API can supply real content.
"""

from __future__ import annotations

import re

from helix.content.schemas import Question, StitchContent

# (text, correct answer, distractor per level)
EMERGENCY_QUESTIONS: tuple[tuple[str, str, dict[str, str]], ...] = (
    ("What is 2 + 2?", "4", {"L1": "3", "L2": "5", "L3": "6"}),
    ("What is 3 + 5?", "8", {"L1": "7", "L2": "9", "L3": "6"}),
    ("What is 10 - 4?", "6", {"L1": "5", "L2": "7", "L3": "4"}),
)

_STITCH_ID = re.compile(r"^stitch-T(?P<tube>\d+)-(?P<thread>\d+)-(?P<index>\d+)$")


def thread_id_for(stitch_id: str) -> str | None:
    """Derive the thread id from a 'stitch-T<tube>-<thread>-<index>' id."""
    match = _STITCH_ID.match(stitch_id)
    if not match:
        return None
    return f"thread-T{match.group('tube')}-{match.group('thread')}"


def tube_number_for(stitch_id: str) -> int | None:
    match = _STITCH_ID.match(stitch_id)
    return int(match.group("tube")) if match else None


def generate_emergency_stitch(stitch_id: str) -> StitchContent:
    """Build placeholder content that always has at least one answerable question."""
    tube_number = tube_number_for(stitch_id)
    questions = [
        Question(
            id=f"{stitch_id}-emergency-q{index}",
            text=text,
            correct_answer=answer,
            distractors=dict(distractors),
        )
        for index, (text, answer, distractors) in enumerate(EMERGENCY_QUESTIONS, start=1)
    ]
    return StitchContent(
        id=stitch_id,
        thread_id=thread_id_for(stitch_id),
        title=f"Basic Content for Tube {tube_number}" if tube_number else "Basic Content",
        content="Practice questions while your content loads.",
        questions=questions,
        is_emergency=True,
    )

