"""
Position updates and the retry queue.

A PositionUpdate is the durable record of one stitch's slot after a
completion. Updates are identified by (user_id, thread_id, stitch_id); a newer
update for the same key supersedes an older one wherever both meet.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Any, Iterator

from helix.core.state import DistractorLevel, PositionEntry, TubeState

MIRROR_PREFIX = "stitch_update_"

UpdateKey = tuple[str, str, str]


@dataclass(frozen=True)
class PositionUpdate:
    """One stitch's position and readiness for one owner."""

    user_id: str
    thread_id: str
    stitch_id: str
    order_number: int
    skip_number: int
    distractor_level: DistractorLevel

    @property
    def key(self) -> UpdateKey:
        return (self.user_id, self.thread_id, self.stitch_id)

    @property
    def storage_key(self) -> str:
        """Key of the local-storage mirror for this update."""
        return f"{MIRROR_PREFIX}{self.user_id}_{self.thread_id}_{self.stitch_id}"

    @classmethod
    def from_entry(cls, user_id: str, thread_id: str, position: int, entry: PositionEntry) -> PositionUpdate:
        return cls(
            user_id=user_id,
            thread_id=thread_id,
            stitch_id=entry.stitch_id,
            order_number=position,
            skip_number=entry.skip_number,
            distractor_level=entry.distractor_level,
        )

    def to_row(self) -> dict[str, Any]:
        """Column values for the user_stitch_progress table."""
        return {
            "user_id": self.user_id,
            "thread_id": self.thread_id,
            "stitch_id": self.stitch_id,
            "order_number": self.order_number,
            "skip_number": self.skip_number,
            "distractor_level": self.distractor_level.value,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "threadId": self.thread_id,
            "stitchId": self.stitch_id,
            "orderNumber": self.order_number,
            "skipNumber": self.skip_number,
            "distractorLevel": self.distractor_level.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PositionUpdate:
        """
        Parse an update.

        Raises:
            KeyError: If an identifying field is missing
            ValueError: If a numeric field is not a number
        """
        return cls(
            user_id=str(data["userId"]),
            thread_id=str(data["threadId"]),
            stitch_id=str(data["stitchId"]),
            order_number=int(data.get("orderNumber", 0)),
            skip_number=int(data.get("skipNumber", 1)),
            distractor_level=DistractorLevel.parse(data.get("distractorLevel", "L1")),
        )


def tube_updates(user_id: str, tube: TubeState) -> list[PositionUpdate]:
    """Updates for every entry in a tube."""
    thread_id = tube.thread_id or ""
    return [
        PositionUpdate.from_entry(user_id, thread_id, position, entry)
        for position, entry in tube.sorted_entries()
    ]


def diff_tube(user_id: str, previous: TubeState, current: TubeState) -> list[PositionUpdate]:
    """Updates for entries whose position or readiness changed between two tube states."""
    before = {entry.stitch_id: (position, entry) for position, entry in previous.positions.items()}
    return [
        update
        for update in tube_updates(user_id, current)
        if before.get(update.stitch_id) != (update.order_number, current.positions[update.order_number])
    ]


class UpdateQueue:
    """
    In-memory retry queue of position updates.

    Holds at most one update per key; pushing an update for a key already
    queued replaces the queued one.
    """

    def __init__(self) -> None:
        self._items: deque[PositionUpdate] = deque()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[PositionUpdate]:
        return iter(list(self._items))

    def __contains__(self, key: object) -> bool:
        return any(item.key == key for item in self._items)

    def _index(self, key: UpdateKey) -> int | None:
        for index, item in enumerate(self._items):
            if item.key == key:
                return index
        return None

    def get(self, key: UpdateKey) -> PositionUpdate | None:
        index = self._index(key)
        return self._items[index] if index is not None else None

    def discard(self, key: UpdateKey) -> None:
        index = self._index(key)
        if index is not None:
            del self._items[index]

    def push_back(self, update: PositionUpdate) -> None:
        """Append update, or replace the queued update for its key in place."""
        index = self._index(update.key)
        if index is None:
            self._items.append(update)
        else:
            self._items[index] = update

    def push_front(self, update: PositionUpdate) -> None:
        """Put update at the head of the queue, dropping any queued update for its key."""
        index = self._index(update.key)
        if index is not None:
            del self._items[index]
        self._items.appendleft(update)

    def requeue(self, update: PositionUpdate) -> bool:
        """Put a failed update back unless a newer one for its key arrived meanwhile."""
        if update.key in self:
            return False
        self._items.append(update)
        return True

    def take_all(self) -> list[PositionUpdate]:
        """Remove and return every queued update in order."""
        items = list(self._items)
        self._items.clear()
        return items

    def clear(self) -> None:
        self._items.clear()
