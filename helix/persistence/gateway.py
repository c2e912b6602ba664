"""
Persistence gateway.

Makes position updates durable without ever blocking play:

- Every update is tried against an ordered ladder of write strategies
  (API, native upsert, update-then-insert, stored procedure).
- An update no strategy accepts is mirrored to long-lived local storage and
  queued; a background loop retries the queue on a fixed delay and re-scans
  local storage for mirrors left behind by earlier runs.
- Urgent writes (session end, navigation away) are mirrored synchronously to
  both storage scopes and the remote write is deferred by a short timer.

A mirror is removed only once its update has been written remotely.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

import httpx
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from config import get_settings
from helix.core.errors import WriteRejectedError
from helix.core.state import UserProgressState, utc_now
from helix.persistence.storage import KeyValueStorage, MemoryStorage
from helix.persistence.strategies import WriteStrategy
from helix.persistence.updates import MIRROR_PREFIX, PositionUpdate, UpdateQueue
from helix.sequencing.adapters import state_from_dict

SNAPSHOT_PREFIX = "triple_helix_state_"

# Failures a single write attempt may raise; anything else is a bug and propagates
WRITE_ERRORS = (httpx.HTTPError, SQLAlchemyError, WriteRejectedError)


def snapshot_key(user_id: str) -> str:
    return f"{SNAPSHOT_PREFIX}{user_id}"


@dataclass
class GatewayStatus:
    """Current persistence status."""

    is_running: bool = False
    last_drain_at: datetime | None = None
    writes_succeeded: int = 0
    writes_failed: int = 0
    recovered: int = 0
    strategy_hits: dict[str, int] = field(default_factory=dict)


class PersistenceGateway:
    """
    Layered, offline-tolerant writer for position updates.

    Usage:
        gateway = PersistenceGateway(strategies, local_storage=SqliteStorage(path))
        gateway.start()
        await gateway.persist_position_update(update)
        ...
        await gateway.stop()
    """

    def __init__(
        self,
        strategies: Sequence[WriteStrategy],
        *,
        local_storage: KeyValueStorage,
        session_storage: KeyValueStorage | None = None,
        queue: UpdateQueue | None = None,
        retry_delay: float | None = None,
        urgent_delay: float | None = None,
    ):
        settings = get_settings()
        self.strategies = list(strategies)
        self.local_storage = local_storage
        self.session_storage = session_storage or MemoryStorage()
        self.queue = queue or UpdateQueue()
        self.retry_delay = retry_delay if retry_delay is not None else settings.retry_delay_seconds
        self.urgent_delay = (
            urgent_delay if urgent_delay is not None else settings.urgent_write_delay_ms / 1000.0
        )
        self._status = GatewayStatus()
        self._drain_lock = asyncio.Lock()
        self._loop_task: asyncio.Task | None = None
        self._pending: set[asyncio.Task] = set()
        self._retry_scheduled: asyncio.Task | None = None

    @property
    def status(self) -> GatewayStatus:
        return self._status

    @property
    def pending_count(self) -> int:
        return len(self.queue)

    # =========================================================================
    # Write path
    # =========================================================================

    async def write_through(self, update: PositionUpdate) -> bool:
        """
        Try each strategy in order until one succeeds.

        Returns:
            True if some strategy made the update durable
        """
        total = len(self.strategies)
        for attempt, strategy in enumerate(self.strategies, start=1):
            try:
                await strategy.attempt_write(update)
            except WRITE_ERRORS as e:
                logger.warning(
                    "Write attempt {}/{} ({}) failed for stitch {} (user {}, thread {}): {}",
                    attempt,
                    total,
                    strategy.name,
                    update.stitch_id,
                    update.user_id,
                    update.thread_id,
                    e,
                )
                continue

            logger.debug("Persisted stitch {} via {} (attempt {}/{})", update.stitch_id, strategy.name, attempt, total)
            self._status.writes_succeeded += 1
            self._status.strategy_hits[strategy.name] = self._status.strategy_hits.get(strategy.name, 0) + 1
            return True

        logger.error("All {} write attempts failed for stitch {} (user {})", total, update.stitch_id, update.user_id)
        self._status.writes_failed += 1
        return False

    async def persist_position_update(self, update: PositionUpdate, *, urgent: bool = False) -> bool:
        """
        Make a position update durable.

        Normal mode writes immediately and falls back to mirror + queue on
        failure. Urgent mode mirrors synchronously and defers the remote write.

        Returns:
            True if the write succeeded now (normal) or was accepted for
            deferred writing (urgent); False if it was queued for retry
        """
        if urgent:
            return self.submit(update)

        # Anything already mirrored or queued for this key is older than update
        stale = self._mirrored_payloads(update)
        queued_before = self.queue.get(update.key)

        if await self.write_through(update):
            self._remove_mirror(update, stale)
            if queued_before is not None and self.queue.get(update.key) == queued_before:
                self.queue.discard(update.key)
            return True

        self.enqueue(update)
        self._schedule_retry()
        return False

    def submit(self, update: PositionUpdate) -> bool:
        """
        Accept an update without awaiting any remote write.

        Mirrors to both storage scopes and queues the update; if an event loop
        is running, a drain is scheduled after the urgent delay.
        """
        self.enqueue(update, session_scoped=True)
        try:
            self.schedule_drain(self.urgent_delay)
        except RuntimeError:
            logger.debug("No running event loop - stitch {} waits for the next drain", update.stitch_id)
        return True

    def enqueue(self, update: PositionUpdate, *, session_scoped: bool = False) -> None:
        """Mirror update to local storage and add it to the retry queue."""
        payload = json.dumps(update.to_dict())
        self.local_storage.set_item(update.storage_key, payload)
        # A session mirror for this key must never hold an older payload than the local one
        if session_scoped or self.session_storage.get_item(update.storage_key) is not None:
            self.session_storage.set_item(update.storage_key, payload)
        self.queue.push_back(update)

    def _mirrored_payloads(self, update: PositionUpdate) -> list[str]:
        stored = (
            self.local_storage.get_item(update.storage_key),
            self.session_storage.get_item(update.storage_key),
        )
        return [value for value in stored if value is not None]

    def _remove_mirror(self, update: PositionUpdate, stale: Sequence[str] = ()) -> None:
        """Drop the mirrors of update, keeping any that hold a newer payload."""
        payload = update.to_dict()
        for storage in (self.local_storage, self.session_storage):
            stored = storage.get_item(update.storage_key)
            if stored is None:
                continue
            try:
                current = json.loads(stored)
            except json.JSONDecodeError:
                current = None
            if current is None or current == payload or stored in stale:
                storage.remove_item(update.storage_key)

    # =========================================================================
    # Retry queue
    # =========================================================================

    def recover_from_storage(self) -> int:
        """
        Queue mirrors found in storage.

        Session-scoped mirrors (urgent writes) go to the front of the queue,
        long-lived ones to the back. Unparseable mirrors are discarded.

        Returns:
            Number of updates recovered
        """
        recovered = 0
        for storage, front in ((self.session_storage, True), (self.local_storage, False)):
            for key, value in storage.items_with_prefix(MIRROR_PREFIX):
                try:
                    update = PositionUpdate.from_dict(json.loads(value))
                except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
                    logger.warning("Discarding unreadable mirror {}: {}", key, e)
                    storage.remove_item(key)
                    continue

                # Still queued from this run, not lost
                if update.key in self.queue:
                    continue
                if front:
                    self.queue.push_front(update)
                else:
                    self.queue.push_back(update)
                recovered += 1

        if recovered:
            self._status.recovered += recovered
            logger.info("Recovered {} pending updates from local storage", recovered)
        return recovered

    async def drain_queue(self) -> int:
        """
        Retry every queued update once, sequentially.

        Returns:
            Number of updates written
        """
        async with self._drain_lock:
            self.recover_from_storage()
            items = self.queue.take_all()
            written = 0

            for update in items:
                if await self.write_through(update):
                    self._remove_mirror(update)
                    written += 1
                else:
                    self.queue.requeue(update)

            self._status.last_drain_at = utc_now()
            if items:
                logger.info("Drained retry queue: {}/{} written, {} pending", written, len(items), len(self.queue))

        if len(self.queue):
            self._schedule_retry()
        return written

    def schedule_drain(self, delay: float) -> asyncio.Task:
        """
        Run drain_queue() after delay seconds.

        Raises:
            RuntimeError: If no event loop is running
        """
        loop = asyncio.get_running_loop()

        async def _deferred() -> None:
            await asyncio.sleep(delay)
            try:
                await self.drain_queue()
            except Exception:  # Intentionally broad - background task must not die silently
                logger.exception("Deferred drain failed")

        task = loop.create_task(_deferred())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def _schedule_retry(self) -> None:
        # The background loop already retries on the same delay
        if self._loop_task is not None:
            return
        # A drain running inside the scheduled retry must be able to book the next one
        scheduled = self._retry_scheduled
        if scheduled is not None and not scheduled.done() and scheduled is not asyncio.current_task():
            return
        try:
            self._retry_scheduled = self.schedule_drain(self.retry_delay)
        except RuntimeError:
            logger.debug("No running event loop - retry deferred to next drain")

    async def flush(self) -> int:
        """Wait for deferred writes, then drain whatever is still queued."""
        while self._pending:
            current = [task for task in self._pending if task is not self._retry_scheduled]
            if not current:
                break
            await asyncio.gather(*current, return_exceptions=True)
        return await self.drain_queue()

    # =========================================================================
    # Background loop
    # =========================================================================

    def start(self) -> None:
        """Start the background retry loop."""
        if self._loop_task is not None:
            logger.warning("Persistence retry loop already running")
            return

        self._loop_task = asyncio.get_running_loop().create_task(self._retry_loop())
        self._status.is_running = True
        logger.info("Persistence retry loop started (interval: {}s)", self.retry_delay)

    async def _retry_loop(self) -> None:
        while True:
            await asyncio.sleep(self.retry_delay)
            try:
                await self.drain_queue()
            except Exception:  # Intentionally broad - keep retrying on the next cycle
                logger.exception("Retry cycle failed")

    async def stop(self) -> None:
        """Stop the background loop and cancel deferred drains."""
        tasks = list(self._pending)
        if self._loop_task is not None:
            tasks.append(self._loop_task)
            self._loop_task = None

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._retry_scheduled = None
        if self._status.is_running:
            self._status.is_running = False
            logger.info("Persistence retry loop stopped ({} updates pending)", len(self.queue))

    # =========================================================================
    # Local state snapshots
    # =========================================================================

    def save_snapshot(self, state: UserProgressState) -> None:
        """Store the full progress state in long-lived local storage."""
        self.local_storage.set_item(snapshot_key(state.user_id), json.dumps(state.to_dict()))

    def load_snapshot(self, user_id: str) -> UserProgressState | None:
        """
        Load the local progress state for user_id.

        Snapshots that fail to parse, belong to another owner, or have no
        current stitch in the active tube are discarded.
        """
        raw = self.local_storage.get_item(snapshot_key(user_id))
        if raw is None:
            return None

        try:
            state = state_from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
            logger.warning("Discarding unreadable local state for {}: {}", user_id, e)
            self.local_storage.remove_item(snapshot_key(user_id))
            return None

        active = state.active_tube
        if state.user_id != user_id or active is None or active.current_entry is None:
            logger.warning("Discarding invalid local state for {}", user_id)
            self.local_storage.remove_item(snapshot_key(user_id))
            return None

        return state

    def clear_user(self, user_id: str) -> int:
        """
        Remove the snapshot, mirrors, and queued updates of user_id.

        Returns:
            Number of mirrors removed
        """
        prefix = f"{MIRROR_PREFIX}{user_id}_"
        removed = 0
        for storage in (self.local_storage, self.session_storage):
            storage.remove_item(snapshot_key(user_id))
            for key, _ in storage.items_with_prefix(prefix):
                storage.remove_item(key)
                removed += 1

        kept = [update for update in self.queue.take_all() if update.user_id != user_id]
        for update in kept:
            self.queue.push_back(update)
        return removed
