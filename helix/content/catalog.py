"""
Stitch catalogue served by the content API.

Loaded from a JSON file of the form

    {
      "threads": {"thread-T1-001": {"tubeNumber": 1, "title": "..."}},
      "stitches": [{"id": "...", "threadId": "...", "order": 1, "questions": [...]}]
    }

or, when no file is configured, from the bundled content. Threads without an
explicit tube number are assigned from their "thread-T<n>-..." id.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from loguru import logger

from helix.content.bundled import BUNDLED_STITCHES, DEFAULT_MANIFEST
from helix.content.schemas import (
    ContentManifest,
    StitchContent,
    StitchReference,
    ThreadManifest,
    TubeManifest,
)

_THREAD_TUBE = re.compile(r"^thread-T(\d+)-")


class ContentCatalog:
    """In-memory stitch catalogue with a derived manifest."""

    def __init__(self, stitches: dict[str, StitchContent], manifest: ContentManifest):
        self.stitches = stitches
        self.manifest = manifest

    def __len__(self) -> int:
        return len(self.stitches)

    def get(self, stitch_id: str) -> StitchContent | None:
        return self.stitches.get(stitch_id)

    def get_many(self, stitch_ids: list[str]) -> list[StitchContent]:
        """Known stitches among stitch_ids, in request order."""
        return [self.stitches[stitch_id] for stitch_id in stitch_ids if stitch_id in self.stitches]

    @classmethod
    def bundled(cls) -> ContentCatalog:
        return cls(dict(BUNDLED_STITCHES), DEFAULT_MANIFEST)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContentCatalog:
        stitches = {
            stitch.id: stitch
            for stitch in (StitchContent.model_validate(item) for item in data.get("stitches", []))
        }
        threads: dict[str, dict[str, Any]] = data.get("threads", {})

        tubes: dict[int, TubeManifest] = {}
        for stitch in sorted(stitches.values(), key=lambda s: (s.thread_id or "", s.order, s.id)):
            if not stitch.thread_id:
                continue
            info = threads.get(stitch.thread_id, {})
            tube_number = info.get("tubeNumber")
            if tube_number is None:
                match = _THREAD_TUBE.match(stitch.thread_id)
                if not match:
                    logger.warning("Cannot place thread {} in a tube - skipping", stitch.thread_id)
                    continue
                tube_number = int(match.group(1))

            tube = tubes.setdefault(int(tube_number), TubeManifest())
            thread = tube.threads.setdefault(stitch.thread_id, ThreadManifest(title=info.get("title", "")))
            thread.stitches.append(StitchReference(id=stitch.id, order=stitch.order, title=stitch.title))

        return cls(stitches, ContentManifest(version=int(data.get("version", 1)), tubes=tubes))

    @classmethod
    def load(cls, path: Path | str | None) -> ContentCatalog:
        """Load the catalogue at path, or the bundled one if path is None."""
        if path is None:
            return cls.bundled()
        catalog = cls.from_dict(json.loads(Path(path).read_text(encoding="utf-8")))
        logger.info("Loaded content catalogue {} ({} stitches)", path, len(catalog))
        return catalog
