# services/summary.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List

from services.ppe import REQUIRED_PARTS


@dataclass(frozen=True)
class AlarmSummary:
    people_with_alarms: int
    total_missing: int
    missing_per_person: List[int]

    @property
    def should_alarm(self) -> bool:
        return self.people_with_alarms > 0


def window_missing_count(person: Any) -> int:
    """
    Missing protections for one displayed person.

    Live persons are judged on their window (ppe_compliance); anything else
    (bucket persons, mapped frame persons) falls back to its own missing list.
    """
    compliance = getattr(person, "ppe_compliance", None)
    if compliance:
        return sum(0 if (compliance.get(part) and compliance[part].present) else 1
                   for part in REQUIRED_PARTS)
    for attr in ("missing", "missing_ppe"):
        missing = getattr(person, attr, None)
        if missing is not None:
            return len(missing)
    return 0


def summarize_alarms(persons: Iterable[Any]) -> AlarmSummary:
    counts = [window_missing_count(p) for p in persons]
    return AlarmSummary(
        people_with_alarms=sum(1 for c in counts if c > 0),
        total_missing=sum(counts),
        missing_per_person=counts,
    )
