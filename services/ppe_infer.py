from __future__ import annotations
import threading
from typing import Any, Dict, List, Tuple

import numpy as np
import torch
from ultralytics import YOLO

from services import config
from services.logger import get_logger
from services.ppe_match import (
    GLOVE_NAMES,
    HELMET_NAMES,
    MASK_NAMES,
    Det,
    build_person,
    find_any_ids,
    make_maps,
    match_person,
)

log = get_logger("ppe_infer")


def _np(t) -> np.ndarray:
    return t.detach().cpu().numpy()


def pick_device(device: str) -> str:
    """cuda when asked for and available, otherwise cpu."""
    if str(device).startswith("cuda") and torch.cuda.is_available():
        return device if ":" in str(device) else "cuda:0"
    return "cpu"


class PPEDetector:
    """
    Frame -> raw PPE result, for the live loop and for recorded video.

    The person model runs in tracking mode so the same worker keeps the same
    "Id" from frame to frame; the PPE model supplies helmet / mask / glove
    boxes which are matched onto each person by position.
    """

    def __init__(
        self,
        ppe_model: str = config.PPE_MODEL_PATH,
        person_model: str = config.PERSON_MODEL_PATH,
        device: str = config.DETECTOR_DEVICE,
        imgsz: int = config.DETECTOR_IMGSZ,
        conf: float = config.DETECTOR_CONF,   # primary PPE confidence
        part_conf: float = 0.35,              # per-box filter after NMS
        person_conf: float = 0.25,
        iou: float = 0.70,
        track: bool = True,
        tracker: str = "bytetrack.yaml",
        half: bool = config.DETECTOR_HALF,
    ):
        self.imgsz = imgsz
        self.conf = conf
        self.part_conf = part_conf
        self.person_conf = person_conf
        self.iou = iou
        self.track = track
        self.tracker = tracker

        # load models
        self.ppe = YOLO(ppe_model)
        self.person = YOLO(person_model)

        self.device = pick_device(device)
        try:
            self.ppe.to(self.device); self.person.to(self.device)
        except (RuntimeError, AssertionError) as e:
            log.warning("could not move models to %s (%s); using cpu", self.device, e)
            self.device = "cpu"
        self.half = bool(half) and self.device.startswith("cuda")

        _, name2id = make_maps(self.ppe.names)
        self._helmet_ids = find_any_ids(name2id, *HELMET_NAMES)
        self._mask_ids = find_any_ids(name2id, *MASK_NAMES)
        self._glove_ids = find_any_ids(name2id, *GLOVE_NAMES)
        _, pname2id = make_maps(self.person.names)
        self._person_id = pname2id.get("person")

        if not (self._helmet_ids or self._mask_ids or self._glove_ids):
            log.warning("PPE model %s has no helmet/mask/glove classes: %s", ppe_model, sorted(name2id))

        # one frame at a time through the models (tracker state is sequential)
        self._lock = threading.Lock()
        log.info("detector ready: ppe=%s person=%s device=%s track=%s",
                 ppe_model, person_model, self.device, self.track)

    # ───────────────────────── parsing ─────────────────────────
    def _persons(self, res) -> List[Tuple[Any, Det]]:
        cls_ids = _np(res.boxes.cls).astype(int)
        xyxy = _np(res.boxes.xyxy)
        confs = _np(res.boxes.conf)
        track_ids = _np(res.boxes.id).astype(int) if getattr(res.boxes, "id", None) is not None else None

        out: List[Tuple[Any, Det]] = []
        for i, (c, b, cf) in enumerate(zip(cls_ids, xyxy, confs)):
            if self._person_id is not None and c != self._person_id:
                continue
            if cf < self.person_conf:
                continue
            pid = int(track_ids[i]) if track_ids is not None else f"f{i}"
            out.append((pid, Det(tuple(float(v) for v in b), float(cf))))
        return out

    def _parts(self, res) -> Tuple[List[Det], List[Det], List[Det]]:
        cls_ids = _np(res.boxes.cls).astype(int)
        xyxy = _np(res.boxes.xyxy)
        confs = _np(res.boxes.conf)

        helmets, masks, gloves = [], [], []
        for c, b, cf in zip(cls_ids, xyxy, confs):
            if cf < self.part_conf:
                continue
            d = Det(tuple(float(v) for v in b), float(cf))
            if c in self._helmet_ids:
                helmets.append(d)
            elif c in self._mask_ids:
                masks.append(d)
            elif c in self._glove_ids:
                gloves.append(d)
        return helmets, masks, gloves

    # ───────────────────────── main entry ─────────────────────────
    def detect(self, frame_bgr: np.ndarray) -> Dict[str, Any]:
        H, W = frame_bgr.shape[:2]
        with self._lock:
            common = dict(source=frame_bgr, imgsz=self.imgsz, iou=self.iou, verbose=False,
                          device=self.device, half=self.half)
            classes = [self._person_id] if self._person_id is not None else None
            if self.track:
                r_person = self.person.track(conf=self.person_conf, classes=classes, persist=True,
                                             tracker=self.tracker, **common)[0]
            else:
                r_person = self.person.predict(conf=self.person_conf, classes=classes, **common)[0]
            r_ppe = self.ppe.predict(conf=self.conf, agnostic_nms=True, **common)[0]

        persons = self._persons(r_person)
        helmets, masks, gloves = self._parts(r_ppe)
        log.debug("P:%d H:%d M:%d G:%d", len(persons), len(helmets), len(masks), len(gloves))

        return {
            "Persons": [
                build_person(pid, det, match_person(det.box, helmets, masks, gloves), W, H)
                for pid, det in persons
            ]
        }

    __call__ = detect
