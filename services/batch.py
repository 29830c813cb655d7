# services/batch.py
"""
Fixed-bucket aggregation over an analyzed video timeline.

The timeline is cut into non-overlapping buckets of window_size_s seconds.
A scrub position maps to the bucket holding it, so scrubbing anywhere inside
the same bucket always shows the same result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from services import config
from services.policy import ComplianceVerdict, FixedBucketWindow, WindowConfig, decide
from services.ppe import (
    CANONICAL_EQUIPMENT,
    PROTECTION_PART,
    ProtectionType,
    empty_result,
    has_protection_type,
    person_key,
    persons_of,
)


@dataclass(frozen=True)
class AnalyzedFrame:
    timestamp: float
    result: Dict[str, Any]


@dataclass
class BucketPerson:
    person_id: Any
    appearances: int
    counts: Dict[ProtectionType, int]
    protections: Dict[ProtectionType, ComplianceVerdict]

    def present(self, ptype: ProtectionType) -> bool:
        v = self.protections.get(ptype)
        return bool(v and v.is_compliant)

    @property
    def missing(self) -> List[ProtectionType]:
        return [t for t in ProtectionType if not self.present(t)]

    def to_raw(self) -> Dict[str, Any]:
        """Synthetic raw person carrying only the protections judged present."""
        body_parts = []
        for ptype in ProtectionType:
            if self.present(ptype):
                body_parts.append({
                    "Name": PROTECTION_PART[ptype].value,
                    "EquipmentDetections": [{"Type": CANONICAL_EQUIPMENT[ptype], "Confidence": 100}],
                })
        return {"Id": self.person_id, "BodyParts": body_parts}


@dataclass
class BucketSnapshot:
    window_start: float
    window_end: float
    persons: List[BucketPerson] = field(default_factory=list)
    frames: int = 0

    def to_raw(self) -> Dict[str, Any]:
        return {
            "Persons": [p.to_raw() for p in self.persons],
            "windowStart": self.window_start,
            "windowEnd": self.window_end,
        }


def aggregate_bucket(results: Sequence[AnalyzedFrame], current_time: float, cfg: WindowConfig) -> BucketSnapshot:
    window = FixedBucketWindow(cfg.window_size_s)
    start, end = window.bounds(current_time)
    in_bucket = [r for r in results if window.contains(r.timestamp, current_time)]

    if not in_bucket:
        return BucketSnapshot(window_start=start, window_end=end)

    # first-appearance order
    appearances: Dict[Any, int] = {}
    counts: Dict[Any, Dict[ProtectionType, int]] = {}
    for frame in in_bucket:
        for i, person in enumerate(persons_of(frame.result)):
            pid = person_key(person, i)
            appearances[pid] = appearances.get(pid, 0) + 1
            c = counts.setdefault(pid, {t: 0 for t in ProtectionType})
            for ptype in ProtectionType:
                if has_protection_type(person, ptype):
                    c[ptype] += 1

    persons: List[BucketPerson] = []
    for pid, seen in appearances.items():
        c = counts[pid]
        protections = {
            ptype: decide([True] * c[ptype] + [False] * (seen - c[ptype]), cfg)
            for ptype in ProtectionType
        }
        persons.append(BucketPerson(person_id=pid, appearances=seen, counts=c, protections=protections))

    return BucketSnapshot(window_start=start, window_end=end, persons=persons, frames=len(in_bucket))


def frame_at(results: Sequence[AnalyzedFrame], current_time: float,
             tolerance_s: float = config.FRAME_MATCH_TOLERANCE_SECONDS) -> Dict[str, Any]:
    """Raw result of the first analyzed frame within tolerance of the position (overlay boxes)."""
    for r in results:
        if abs(r.timestamp - current_time) < tolerance_s:
            return r.result
    return empty_result()


def bucket_starts(results: Sequence[AnalyzedFrame], cfg: WindowConfig) -> List[float]:
    """Start of every bucket that holds at least one analyzed frame, ascending."""
    window = FixedBucketWindow(cfg.window_size_s)
    return sorted({window.bounds(r.timestamp)[0] for r in results})
