"""
Content buffer.

Keeps stitch content in memory ahead of play. Lookups resolve in order:

1. in-memory cache
2. bundled first-stitch content (new and anonymous learners only)
3. remote content API
4. procedurally generated emergency content

Buffering runs in two phases. Phase 1 loads the next few stitches of every
tube and must succeed for play to start; if it fails, each tube's current
stitch is substituted with emergency content. Phase 2 loads a deeper window on
a best-effort basis; on failure only the leading critical stitches of each
tube receive emergency substitutes.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

import httpx
from loguru import logger

from config import get_settings
from helix.content.bundled import DEFAULT_MANIFEST, get_bundled_stitch
from helix.content.client import ContentClient
from helix.content.emergency import generate_emergency_stitch
from helix.content.schemas import ContentManifest, StitchContent
from helix.core.errors import NoContentError
from helix.core.state import TubeState, UserProgressState


@dataclass
class BufferStatus:
    """Progress of the buffering phases."""

    active_stitch_loaded: bool = False
    phase1_loaded: bool = False
    phase1_failed: bool = False
    phase2_loaded: bool = False
    phase2_failed: bool = False
    total_stitches_loaded: int = 0
    emergency_substitutions: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def upcoming_stitch_ids(tube: TubeState, limit: int) -> list[str]:
    """Ids of the next `limit` stitches in a tube, soonest first."""
    return [entry.stitch_id for _, entry in tube.sorted_entries()[:limit]]


class ContentBuffer:
    """In-memory stitch cache with layered fallbacks."""

    def __init__(
        self,
        client: ContentClient | None = None,
        *,
        use_bundled: bool = False,
        phase1_size: int | None = None,
        phase2_size: int | None = None,
        critical_count: int | None = None,
    ):
        settings = get_settings()
        self.client = client
        self.use_bundled = use_bundled
        self.phase1_size = phase1_size or settings.phase1_buffer_size
        self.phase2_size = phase2_size or settings.phase2_buffer_size
        self.critical_count = critical_count if critical_count is not None else settings.emergency_critical_count
        self.manifest: ContentManifest | None = None
        self.status = BufferStatus()
        self._cache: dict[str, StitchContent] = {}

    def __len__(self) -> int:
        return len(self._cache)

    def is_cached(self, stitch_id: str) -> bool:
        """True if real (non-emergency) content is cached for stitch_id."""
        stitch = self._cache.get(stitch_id)
        return stitch is not None and not stitch.is_emergency

    def clear(self) -> None:
        self._cache.clear()
        self.status = BufferStatus()

    def _store(self, stitches: dict[str, StitchContent]) -> int:
        self._cache.update(stitches)
        self.status.total_stitches_loaded = sum(1 for s in self._cache.values() if not s.is_emergency)
        return len(stitches)

    def _substitute(self, stitch_id: str) -> StitchContent:
        stitch = generate_emergency_stitch(stitch_id)
        self._cache[stitch_id] = stitch
        self.status.emergency_substitutions += 1
        return stitch

    async def load_manifest(self) -> ContentManifest:
        """Fetch the remote manifest, falling back to the bundled default."""
        if self.client is not None:
            try:
                self.manifest = await self.client.fetch_manifest()
                logger.info("Loaded content manifest ({} stitches)", self.manifest.stitch_count())
                return self.manifest
            except httpx.HTTPError as e:
                logger.warning("Content manifest unavailable, using bundled default: {}", e)
        self.manifest = DEFAULT_MANIFEST
        return self.manifest

    async def _fetch(self, stitch_ids: list[str]) -> dict[str, StitchContent]:
        if self.client is None:
            raise httpx.RequestError("No content API configured")
        return await self.client.fetch_batch(stitch_ids)

    async def get_stitch(self, stitch_id: str) -> StitchContent:
        """Resolve content for stitch_id. Never fails: emergency content is the last resort."""
        cached = self._cache.get(stitch_id)
        if cached is not None:
            return cached

        if self.use_bundled:
            bundled = get_bundled_stitch(stitch_id)
            if bundled is not None:
                logger.debug("Using bundled content for {}", stitch_id)
                self._store({stitch_id: bundled})
                return bundled

        try:
            fetched = await self._fetch([stitch_id])
        except httpx.HTTPError as e:
            logger.warning("Could not fetch stitch {}: {}", stitch_id, e)
            fetched = {}

        stitch = fetched.get(stitch_id)
        if stitch is not None:
            self._store({stitch_id: stitch})
            return stitch

        logger.warning("No content source for {} - generating emergency content", stitch_id)
        return self._substitute(stitch_id)

    async def get_in_play_stitch(self, state: UserProgressState) -> StitchContent:
        """
        Content for the active tube's current stitch.

        Raises:
            NoContentError: If the active tube has no current stitch
        """
        tube = state.active_tube
        stitch_id = tube.current_stitch_id if tube else None
        if stitch_id is None:
            raise NoContentError(f"Tube {state.active_tube_number} has no stitch at position 0")

        stitch = await self.get_stitch(stitch_id)
        self.status.active_stitch_loaded = True
        return stitch

    def _missing(self, state: UserProgressState, limit: int) -> list[str]:
        seen: dict[str, None] = {}
        for _, tube in sorted(state.tubes.items()):
            for stitch_id in upcoming_stitch_ids(tube, limit):
                if not self.is_cached(stitch_id):
                    seen.setdefault(stitch_id, None)
        return list(seen)

    async def fill_initial_buffer(self, state: UserProgressState) -> int:
        """
        Phase 1: load the next phase1_size stitches of every tube.

        Returns:
            Number of stitches loaded
        """
        missing = self._missing(state, self.phase1_size)
        if self.use_bundled:
            for stitch_id in list(missing):
                bundled = get_bundled_stitch(stitch_id)
                if bundled is not None:
                    self._store({stitch_id: bundled})
                    missing.remove(stitch_id)

        loaded = 0
        if missing:
            try:
                loaded = self._store(await self._fetch(missing))
            except httpx.HTTPError as e:
                self.status.phase1_failed = True
                logger.error("Phase 1 buffering failed for {} stitches: {}", len(missing), e)
                for tube in state.tubes.values():
                    current = tube.current_stitch_id
                    if current and current not in self._cache:
                        self._substitute(current)

        self.status.phase1_loaded = True
        logger.info("Phase 1 buffer ready: {} loaded, {} cached", loaded, len(self._cache))
        return loaded

    async def fill_complete_buffer(self, state: UserProgressState) -> int:
        """
        Phase 2: best-effort load of the next phase2_size stitches of every tube.

        Returns:
            Number of stitches loaded
        """
        if not self.status.phase1_loaded:
            logger.warning("Phase 2 buffering requested before phase 1 - skipping")
            return 0

        missing = self._missing(state, self.phase2_size)
        if not missing:
            self.status.phase2_loaded = True
            return 0

        try:
            loaded = self._store(await self._fetch(missing))
        except httpx.HTTPError as e:
            self.status.phase2_failed = True
            logger.warning("Phase 2 buffering failed, substituting critical stitches: {}", e)
            for tube in state.tubes.values():
                for stitch_id in upcoming_stitch_ids(tube, self.critical_count):
                    if stitch_id not in self._cache:
                        self._substitute(stitch_id)
            return 0

        self.status.phase2_loaded = True
        logger.info("Phase 2 buffer complete: {} loaded, {} cached", loaded, len(self._cache))
        return loaded
