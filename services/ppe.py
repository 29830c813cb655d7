# services/ppe.py
"""
Vocabulary of a raw PPE detection result and a permissive per-person mapper.

Raw results follow the Rekognition "DetectProtectiveEquipment" shape:

    {"Persons": [{"Id": 0,
                  "BodyParts": [{"Name": "HEAD",
                                 "EquipmentDetections": [{"Type": "HELMET",
                                                          "Confidence": 98.1}]}]}]}

Anything missing (persons, body parts, equipment lists, names, types) reads as
"not present". Nothing in here raises on a malformed result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class BodyPart(str, Enum):
    FACE = "FACE"
    HEAD = "HEAD"
    LEFT_HAND = "LEFT_HAND"
    RIGHT_HAND = "RIGHT_HAND"


class ProtectionType(str, Enum):
    MASK = "MASK"
    HELMET = "HELMET"
    LEFT_GLOVE = "LEFT_GLOVE"
    RIGHT_GLOVE = "RIGHT_GLOVE"


REQUIRED_PARTS: tuple = (BodyPart.FACE, BodyPart.HEAD, BodyPart.LEFT_HAND, BodyPart.RIGHT_HAND)

PROTECTION_PART: Dict[ProtectionType, BodyPart] = {
    ProtectionType.MASK: BodyPart.FACE,
    ProtectionType.HELMET: BodyPart.HEAD,
    ProtectionType.LEFT_GLOVE: BodyPart.LEFT_HAND,
    ProtectionType.RIGHT_GLOVE: BodyPart.RIGHT_HAND,
}

# equipment "Type" tags accepted as protection for each body part
EQUIPMENT_ALIASES: Dict[BodyPart, frozenset] = {
    BodyPart.FACE: frozenset({"MASK", "FACE_COVER"}),
    BodyPart.HEAD: frozenset({"HELMET", "HEAD_COVER"}),
    BodyPart.LEFT_HAND: frozenset({"GLOVE", "HAND_COVER"}),
    BodyPart.RIGHT_HAND: frozenset({"GLOVE", "HAND_COVER"}),
}

# tag written into synthetic body parts (bucket snapshots)
CANONICAL_EQUIPMENT: Dict[ProtectionType, str] = {
    ProtectionType.MASK: "MASK",
    ProtectionType.HELMET: "HELMET",
    ProtectionType.LEFT_GLOVE: "GLOVE",
    ProtectionType.RIGHT_GLOVE: "GLOVE",
}


# ───────────────────────── small utils ─────────────────────────
def _s(v: Any) -> str:
    """stringify + trim, never returns None."""
    return ("" if v is None else str(v)).strip()

def _f(v: Any, default: float = 0.0) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        return default

def _as_list(v: Any) -> List[Any]:
    return list(v) if isinstance(v, (list, tuple)) else []


# ───────────────────────── raw result access ─────────────────────────
def persons_of(result: Any) -> List[Dict[str, Any]]:
    """The person dicts of a raw result; [] for anything malformed."""
    if not isinstance(result, dict):
        return []
    return [p for p in _as_list(result.get("Persons")) if isinstance(p, dict)]


def person_key(person: Dict[str, Any], index: int) -> Any:
    """Detector-supplied id, or the index in the frame when there is none.

    Ids that can't key a dict (lists, nested dicts) are keyed by their text.
    """
    pid = person.get("Id")
    if pid is None or _s(pid) == "":
        return index
    if isinstance(pid, (int, float, str)):
        return pid
    return _s(pid)


def find_body_part(person: Dict[str, Any], part: BodyPart) -> Optional[Dict[str, Any]]:
    for bp in _as_list(person.get("BodyParts")):
        if isinstance(bp, dict) and _s(bp.get("Name")).upper() == part.value:
            return bp
    return None


def _equipment_counts(eq: Dict[str, Any], accepted: frozenset, min_confidence: float) -> bool:
    if _s(eq.get("Type")).upper() not in accepted:
        return False
    if _f(eq.get("Confidence"), 100.0) < min_confidence:
        return False
    covers = eq.get("CoversBodyPart")
    # detected but not worn (e.g. helmet in hand)
    if isinstance(covers, dict) and covers.get("Value") is False:
        return False
    return True


def has_protection(person: Dict[str, Any], part: BodyPart, min_confidence: float = 0.0) -> bool:
    """True when the body part is listed and carries an accepted equipment detection."""
    bp = find_body_part(person, part)
    if bp is None:
        return False
    accepted = EQUIPMENT_ALIASES[part]
    return any(
        _equipment_counts(eq, accepted, min_confidence)
        for eq in _as_list(bp.get("EquipmentDetections"))
        if isinstance(eq, dict)
    )


def has_protection_type(person: Dict[str, Any], ptype: ProtectionType, min_confidence: float = 0.0) -> bool:
    return has_protection(person, PROTECTION_PART[ptype], min_confidence)


# ───────────────────────── per-person mapping ─────────────────────────
@dataclass
class MappedPerson:
    person_id: Any
    present: Dict[BodyPart, bool]
    missing_ppe: List[BodyPart] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_alarm(self) -> bool:
        return bool(self.missing_ppe)

    @property
    def compliant(self) -> bool:
        return not self.missing_ppe


def map_person(person: Dict[str, Any], index: int = 0, min_confidence: float = 0.0) -> MappedPerson:
    present = {part: has_protection(person, part, min_confidence) for part in REQUIRED_PARTS}
    return MappedPerson(
        person_id=person_key(person, index),
        present=present,
        missing_ppe=[part for part in REQUIRED_PARTS if not present[part]],
        raw=person,
    )


def map_persons(result: Any, min_confidence: float = 0.0) -> List[MappedPerson]:
    return [map_person(p, i, min_confidence) for i, p in enumerate(persons_of(result))]


def scene_compliant(people: Iterable[MappedPerson]) -> bool:
    """Compliant only if at least one person was detected and none misses anything."""
    people = list(people)
    return bool(people) and all(p.compliant for p in people)


def empty_result() -> Dict[str, Any]:
    return {"Persons": []}
