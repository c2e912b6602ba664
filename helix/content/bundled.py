"""
Bundled content shipped with the package.

The first stitch of each tube is available without any network call so a brand
new (or anonymous) learner can start immediately. DEFAULT_MANIFEST seeds the
tubes when the remote manifest is unreachable.
"""

from __future__ import annotations

from helix.content.schemas import (
    ContentManifest,
    Question,
    StitchContent,
    StitchReference,
    ThreadManifest,
    TubeManifest,
)

BUNDLED_STITCH_COUNT = 10

_THREAD_TITLES = {
    1: "Number Recognition",
    2: "Simple Addition",
    3: "Simple Problem Solving",
}


def _question(stitch_id: str, index: int, text: str, answer: str, l1: str, l2: str, l3: str) -> Question:
    return Question(
        id=f"{stitch_id}-q{index:02d}",
        text=text,
        correct_answer=answer,
        distractors={"L1": l1, "L2": l2, "L3": l3},
    )


BUNDLED_STITCHES: dict[str, StitchContent] = {
    "stitch-T1-001-01": StitchContent(
        id="stitch-T1-001-01",
        thread_id="thread-T1-001",
        title="Number Recognition",
        content="Recognize and identify numbers.",
        order=1,
        questions=[
            _question("stitch-T1-001-01", 1, "What number is this: 7?", "7", "1", "9", "4"),
            _question("stitch-T1-001-01", 2, "What number is this: 3?", "3", "8", "5", "2"),
            _question("stitch-T1-001-01", 3, "What number is this: 5?", "5", "6", "2", "9"),
        ],
    ),
    "stitch-T2-001-01": StitchContent(
        id="stitch-T2-001-01",
        thread_id="thread-T2-001",
        title="Simple Addition",
        content="Basic addition of single-digit numbers.",
        order=1,
        questions=[
            _question("stitch-T2-001-01", 1, "What is 1 + 1?", "2", "3", "11", "0"),
            _question("stitch-T2-001-01", 2, "What is 2 + 2?", "4", "3", "5", "22"),
            _question("stitch-T2-001-01", 3, "What is 3 + 2?", "5", "6", "4", "32"),
        ],
    ),
    "stitch-T3-001-01": StitchContent(
        id="stitch-T3-001-01",
        thread_id="thread-T3-001",
        title="Simple Problem Solving",
        content="Basic word problems using addition.",
        order=1,
        questions=[
            _question(
                "stitch-T3-001-01", 1,
                "Sam has 2 apples. He gets 1 more apple. How many apples does Sam have now?",
                "3", "2", "4", "1",
            ),
            _question(
                "stitch-T3-001-01", 2,
                "There are 3 birds on a tree. 2 more birds join them. How many birds are there now?",
                "5", "3", "4", "6",
            ),
            _question(
                "stitch-T3-001-01", 3,
                "Mia has 4 pencils. She finds 1 more. How many pencils does Mia have?",
                "5", "4", "6", "3",
            ),
        ],
    ),
}


def _default_manifest() -> ContentManifest:
    tubes: dict[int, TubeManifest] = {}
    for tube_number, title in _THREAD_TITLES.items():
        thread_id = f"thread-T{tube_number}-001"
        stitches = [
            StitchReference(
                id=f"stitch-T{tube_number}-001-{index:02d}",
                order=index,
                title=title if index == 1 else f"{title} {index}",
            )
            for index in range(1, BUNDLED_STITCH_COUNT + 1)
        ]
        tubes[tube_number] = TubeManifest(
            threads={thread_id: ThreadManifest(title=title, stitches=stitches)}
        )
    return ContentManifest(version=1, tubes=tubes)


DEFAULT_MANIFEST: ContentManifest = _default_manifest()


def get_bundled_stitch(stitch_id: str) -> StitchContent | None:
    stitch = BUNDLED_STITCHES.get(stitch_id)
    return stitch.model_copy(deep=True) if stitch else None


def is_bundled(stitch_id: str) -> bool:
    return stitch_id in BUNDLED_STITCHES
