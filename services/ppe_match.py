from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from services.ppe import BodyPart

Box = Tuple[float, float, float, float]


@dataclass(frozen=True)
class Det:
    box: Box
    conf: float  # 0..1


# ───────────────────────── geometry ─────────────────────────
def xyxy_area(b: Sequence[float]) -> float:
    x1, y1, x2, y2 = b
    return max(0.0, x2 - x1) * max(0.0, y2 - y1)

def iou(a, b) -> float:
    xA, yA = max(a[0], b[0]), max(a[1], b[1])
    xB, yB = min(a[2], b[2]), min(a[3], b[3])
    inter = max(0.0, xB - xA) * max(0.0, yB - yA)
    den = xyxy_area(a) + xyxy_area(b) - inter
    return (inter / den) if den > 0 else 0.0

def center(b) -> Tuple[float, float]:
    x1, y1, x2, y2 = b
    return ((x1 + x2) / 2.0, (y1 + y2) / 2.0)

def within(b, pt) -> bool:
    x1, y1, x2, y2 = b; x, y = pt
    return (x1 <= x <= x2) and (y1 <= y <= y2)


# ───────────────────────── class utils ─────────────────────────
def make_maps(names: Dict[int, str]):
    id2name = {int(k): str(v).lower() for k, v in names.items()}
    name2id = {n: i for i, n in id2name.items()}
    return id2name, name2id

def find_any_ids(name2id, *cands) -> List[int]:
    return [name2id[c] for c in cands if c in name2id]

HELMET_NAMES = ("helmet", "hardhat", "hard_hat", "hard-hat")
MASK_NAMES = ("mask", "face_mask", "face-mask", "facemask")
GLOVE_NAMES = ("gloves", "glove", "hand_glove")


# ───────────────────────── matching ─────────────────────────
# Vertical bands as fractions of person height, measured from the top.
HEAD_BAND = (0.0, 0.30)
FACE_BAND = (0.03, 0.40)
HAND_BAND = (0.35, 0.95)

# Area sanity relative to the person box
HEL_MIN_A, HEL_MAX_A = 0.004, 0.10
MASK_MIN_A, MASK_MAX_A = 0.002, 0.08
GLOV_MIN_A, GLOV_MAX_A = 0.003, 0.06


@dataclass
class PersonMatch:
    helmet: Optional[Det] = None
    mask: Optional[Det] = None
    left_glove: Optional[Det] = None
    right_glove: Optional[Det] = None

    def by_part(self) -> Dict[BodyPart, Optional[Det]]:
        return {
            BodyPart.FACE: self.mask,
            BodyPart.HEAD: self.helmet,
            BodyPart.LEFT_HAND: self.left_glove,
            BodyPart.RIGHT_HAND: self.right_glove,
        }


def _in_band(person_box, det: Det, band, min_a: float, max_a: float) -> bool:
    px1, py1, px2, py2 = person_box
    ph = py2 - py1
    p_area = xyxy_area(person_box)
    if ph <= 0 or p_area <= 0:
        return False
    a = xyxy_area(det.box)
    if a < min_a * p_area or a > max_a * p_area:
        return False
    cx, cy = center(det.box)
    return within(person_box, (cx, cy)) and (py1 + band[0] * ph) <= cy <= (py1 + band[1] * ph)


def _best(cands: Iterable[Det]) -> Optional[Det]:
    return max(cands, key=lambda d: d.conf, default=None)


def _topk_distinct(cands: List[Det], k: int = 2, distinct_iou: float = 0.5) -> List[Det]:
    picked: List[Det] = []
    for d in sorted(cands, key=lambda d: d.conf, reverse=True):
        if all(iou(d.box, p.box) < distinct_iou for p in picked):
            picked.append(d)
            if len(picked) >= k:
                break
    return picked


def match_person(person_box: Box, helmets: Sequence[Det], masks: Sequence[Det],
                 gloves: Sequence[Det]) -> PersonMatch:
    """Assign PPE boxes to one person box by position inside it."""
    helmet = _best(d for d in helmets if _in_band(person_box, d, HEAD_BAND, HEL_MIN_A, HEL_MAX_A))
    mask = _best(d for d in masks if _in_band(person_box, d, FACE_BAND, MASK_MIN_A, MASK_MAX_A))

    hand_gloves = _topk_distinct(
        [d for d in gloves if _in_band(person_box, d, HAND_BAND, GLOV_MIN_A, GLOV_MAX_A)], k=2
    )
    # subject faces the camera: their left hand shows on the image right
    mid_x = center(person_box)[0]
    left = _best(d for d in hand_gloves if center(d.box)[0] >= mid_x)
    right = _best(d for d in hand_gloves if center(d.box)[0] < mid_x)
    return PersonMatch(helmet=helmet, mask=mask, left_glove=left, right_glove=right)


# ───────────────────────── raw result building ─────────────────────────
_EQUIPMENT_TYPE = {
    BodyPart.FACE: "FACE_COVER",
    BodyPart.HEAD: "HEAD_COVER",
    BodyPart.LEFT_HAND: "HAND_COVER",
    BodyPart.RIGHT_HAND: "HAND_COVER",
}


def norm_box(b: Sequence[float], W: int, H: int) -> Dict[str, float]:
    x1, y1, x2, y2 = b
    W = max(1, W); H = max(1, H)
    return {
        "Width": max(0.0, x2 - x1) / W,
        "Height": max(0.0, y2 - y1) / H,
        "Left": x1 / W,
        "Top": y1 / H,
    }


def build_person(person_id: Any, person: Det, match: PersonMatch, W: int, H: int) -> Dict[str, Any]:
    """Raw person dict (Rekognition PPE shape) for one matched person."""
    body_parts = []
    for part, det in match.by_part().items():
        equipment = []
        if det is not None:
            equipment.append({
                "Type": _EQUIPMENT_TYPE[part],
                "Confidence": round(det.conf * 100.0, 2),
                "BoundingBox": norm_box(det.box, W, H),
                "CoversBodyPart": {"Value": True, "Confidence": round(det.conf * 100.0, 2)},
            })
        body_parts.append({
            "Name": part.value,
            "Confidence": round(person.conf * 100.0, 2),
            "EquipmentDetections": equipment,
        })
    return {
        "Id": person_id,
        "Confidence": round(person.conf * 100.0, 2),
        "BoundingBox": norm_box(person.box, W, H),
        "BodyParts": body_parts,
    }
