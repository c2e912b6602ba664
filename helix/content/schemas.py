"""
Pydantic models for stitch content and the content manifest.

Field names follow the camelCase JSON of the content API; Python code uses the
snake_case attribute names.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from helix.core.state import DistractorLevel


class Question(BaseModel):
    """One question with a correct answer and a wrong answer per distractor level."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    text: str
    correct_answer: str = Field(alias="correctAnswer")
    distractors: dict[str, str] = Field(default_factory=dict)

    def distractor_for(self, level: DistractorLevel) -> str | None:
        """Wrong answer shown at level, falling back to the nearest easier tier."""
        for candidate in (level, DistractorLevel.L2, DistractorLevel.L1):
            if candidate.value in self.distractors:
                return self.distractors[candidate.value]
        return None


class StitchContent(BaseModel):
    """Playable content for one stitch."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    thread_id: str | None = Field(default=None, alias="threadId")
    title: str = ""
    content: str = ""
    order: int = 0
    questions: list[Question] = Field(default_factory=list)
    is_emergency: bool = Field(default=False, alias="isEmergency")


class StitchReference(BaseModel):
    """Manifest entry for a stitch (identity only, no questions)."""

    id: str
    order: int = 0
    title: str = ""


class ThreadManifest(BaseModel):
    title: str = ""
    stitches: list[StitchReference] = Field(default_factory=list)


class TubeManifest(BaseModel):
    threads: dict[str, ThreadManifest] = Field(default_factory=dict)


class ContentManifest(BaseModel):
    """Per-tube thread and stitch listing used to seed new users."""

    version: int = 1
    generated: str | None = None
    tubes: dict[int, TubeManifest] = Field(default_factory=dict)

    def stitch_count(self) -> int:
        return sum(
            len(thread.stitches)
            for tube in self.tubes.values()
            for thread in tube.threads.values()
        )

    def tube_for_thread(self, thread_id: str) -> int | None:
        for number, tube in self.tubes.items():
            if thread_id in tube.threads:
                return number
        return None
