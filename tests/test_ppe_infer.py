"""Tests for the YOLO-backed detector, with the models replaced by fakes."""

from __future__ import annotations

from types import SimpleNamespace

import numpy as np
import pytest

pytest.importorskip("ultralytics")
torch = pytest.importorskip("torch")

from services import ppe_infer  # noqa: E402
from services.ppe import BodyPart, map_persons  # noqa: E402


def _result(rows, ids=None):
    """rows: (cls, x1, y1, x2, y2, conf)"""
    t = torch.tensor(rows, dtype=torch.float32).reshape(-1, 6)
    boxes = SimpleNamespace(
        cls=t[:, 0], xyxy=t[:, 1:5], conf=t[:, 5],
        id=None if ids is None else torch.tensor(ids, dtype=torch.float32),
    )
    return SimpleNamespace(boxes=boxes)


class _FakeYOLO:
    def __init__(self, path):
        self.path = path
        self.calls = []
        if "person" in path:
            self.names = {0: "person", 1: "car"}
            self._res = _result([(0, 100, 100, 300, 500, 0.9), (1, 0, 0, 50, 50, 0.9)], ids=[7, 8])
        else:
            self.names = {0: "Helmet", 1: "Mask", 2: "Gloves"}
            self._res = _result([
                (0, 170, 100, 230, 140, 0.8),
                (1, 175, 150, 225, 190, 0.2),  # under part_conf
                (2, 250, 330, 290, 370, 0.7),
            ])

    def to(self, device):
        return self

    def track(self, **kw):
        self.calls.append(("track", kw))
        return [self._res]

    def predict(self, **kw):
        self.calls.append(("predict", kw))
        return [self._res]


@pytest.fixture
def detector(monkeypatch):
    monkeypatch.setattr(ppe_infer, "YOLO", _FakeYOLO)
    return ppe_infer.PPEDetector(ppe_model="ppe.pt", person_model="person.pt", device="cpu")


def test_detect_builds_raw_result(detector) -> None:
    frame = np.zeros((640, 640, 3), dtype=np.uint8)

    raw = detector.detect(frame)

    (person,) = raw["Persons"]
    assert person["Id"] == 7
    (mapped,) = map_persons(raw)
    assert mapped.present[BodyPart.HEAD] is True
    assert mapped.present[BodyPart.FACE] is False
    assert mapped.present[BodyPart.LEFT_HAND] is True
    assert mapped.present[BodyPart.RIGHT_HAND] is False


def test_person_model_runs_in_track_mode(detector) -> None:
    detector(np.zeros((64, 64, 3), dtype=np.uint8))
    mode, kw = detector.person.calls[0]
    assert mode == "track"
    assert kw["persist"] is True
    assert kw["classes"] == [0]
    assert detector.ppe.calls[0][0] == "predict"
    assert detector.half is False


def test_untracked_persons_get_frame_ids(monkeypatch) -> None:
    monkeypatch.setattr(ppe_infer, "YOLO", _FakeYOLO)
    det = ppe_infer.PPEDetector(ppe_model="ppe.pt", person_model="person.pt", device="cpu", track=False)
    det.person._res = _result([(0, 100, 100, 300, 500, 0.9)])

    raw = det.detect(np.zeros((640, 640, 3), dtype=np.uint8))

    assert [p["Id"] for p in raw["Persons"]] == ["f0"]
    assert det.person.calls[0][0] == "predict"


def test_pick_device_without_cuda(monkeypatch) -> None:
    monkeypatch.setattr(torch.cuda, "is_available", lambda: False)
    assert ppe_infer.pick_device("cuda:0") == "cpu"
    assert ppe_infer.pick_device("cpu") == "cpu"
