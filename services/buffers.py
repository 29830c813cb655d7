# services/buffers.py
"""
Time-ordered outcome buffers.

RetentionBuffer is a deque of (timestamp, flag) records kept in ascending
timestamp order: appends go on the right, expired records come off the left.
EntityBufferStore nests one buffer per tracked person and, inside each person,
one buffer per body part.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Generic, Iterator, List, Optional, TypeVar

from services.ppe import REQUIRED_PARTS, BodyPart


@dataclass(frozen=True)
class FrameOutcome:
    timestamp: float
    compliant: bool

    @property
    def flag(self) -> bool:
        return self.compliant


@dataclass(frozen=True)
class PersonOutcome:
    timestamp: float
    compliant: bool

    @property
    def flag(self) -> bool:
        return self.compliant


@dataclass(frozen=True)
class BodyPartOutcome:
    timestamp: float
    present: bool

    @property
    def flag(self) -> bool:
        return self.present


T = TypeVar("T", FrameOutcome, PersonOutcome, BodyPartOutcome)


class RetentionBuffer(Generic[T]):
    """Ordered outcome log with front eviction."""

    def __init__(self) -> None:
        self._items: Deque[T] = deque()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    @property
    def last_timestamp(self) -> Optional[float]:
        return self._items[-1].timestamp if self._items else None

    def push(self, outcome: T) -> None:
        last = self.last_timestamp
        if last is not None and outcome.timestamp < last:
            raise ValueError(
                f"outcome at t={outcome.timestamp} pushed after t={last}; timestamps must not decrease"
            )
        self._items.append(outcome)

    def evict_before(self, cutoff: float) -> int:
        """Drop leading records with timestamp < cutoff. Returns how many went."""
        removed = 0
        while self._items and self._items[0].timestamp < cutoff:
            self._items.popleft()
            removed += 1
        return removed

    def query(self, window_start: float) -> List[T]:
        """Records with timestamp >= window_start, oldest first. Does not mutate."""
        out: List[T] = []
        # walk from the newest end; stops at the first record outside the window
        for item in reversed(self._items):
            if item.timestamp < window_start:
                break
            out.append(item)
        out.reverse()
        return out

    def values(self, window_start: float) -> List[bool]:
        return [item.flag for item in self.query(window_start)]

    def clear(self) -> None:
        self._items.clear()


@dataclass
class PersonBuffers:
    outcomes: RetentionBuffer = field(default_factory=RetentionBuffer)
    parts: Dict[BodyPart, RetentionBuffer] = field(
        default_factory=lambda: {part: RetentionBuffer() for part in REQUIRED_PARTS}
    )

    def evict_before(self, cutoff: float) -> None:
        self.outcomes.evict_before(cutoff)
        for buf in self.parts.values():
            buf.evict_before(cutoff)

    def is_empty(self) -> bool:
        return not self.outcomes and not any(self.parts.values())


class EntityBufferStore:
    """person id -> PersonBuffers (own outcomes + one buffer per body part)."""

    def __init__(self) -> None:
        self._people: Dict[Any, PersonBuffers] = {}

    def __contains__(self, person_id: Any) -> bool:
        return person_id in self._people

    def __len__(self) -> int:
        return len(self._people)

    def ids(self) -> List[Any]:
        return list(self._people)

    def get(self, person_id: Any) -> Optional[PersonBuffers]:
        return self._people.get(person_id)

    def get_or_create(self, person_id: Any) -> PersonBuffers:
        bufs = self._people.get(person_id)
        if bufs is None:
            bufs = PersonBuffers()
            self._people[person_id] = bufs
        return bufs

    def record(self, person_id: Any, timestamp: float, compliant: bool,
               present: Dict[BodyPart, bool]) -> PersonBuffers:
        bufs = self.get_or_create(person_id)
        bufs.outcomes.push(PersonOutcome(timestamp, compliant))
        for part in REQUIRED_PARTS:
            bufs.parts[part].push(BodyPartOutcome(timestamp, bool(present.get(part, False))))
        return bufs

    def evict_before(self, cutoff: float) -> int:
        """Trim every person; forget people with nothing left. Returns people dropped."""
        gone = []
        for pid, bufs in self._people.items():
            bufs.evict_before(cutoff)
            if bufs.is_empty():
                gone.append(pid)
        for pid in gone:
            del self._people[pid]
        return len(gone)

    def clear(self) -> None:
        self._people.clear()
