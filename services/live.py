# services/live.py
"""
Live trailing-window aggregation.

Each polled frame goes through LiveAggregator.step(): the scene, every person
and every body part get a new outcome, everything older than the retention
horizon is dropped, and verdicts are computed over [now - window, now].

State lives in a LiveState handed to step() by the caller (the poller owns
one per session); nothing is kept at module level.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from services.buffers import EntityBufferStore, FrameOutcome, RetentionBuffer
from services.logger import get_logger
from services.policy import (
    ComplianceVerdict,
    TrailingWindow,
    WindowConfig,
    decide,
    retention_horizon,
)
from services.ppe import REQUIRED_PARTS, BodyPart, MappedPerson, map_persons, scene_compliant

log = get_logger("live")


@dataclass
class LiveState:
    scene: RetentionBuffer = field(default_factory=RetentionBuffer)
    entities: EntityBufferStore = field(default_factory=EntityBufferStore)

    def reset(self) -> None:
        self.scene.clear()
        self.entities.clear()


@dataclass(frozen=True)
class PartCompliance:
    present: bool
    percent: float


@dataclass
class LivePerson:
    person: MappedPerson
    compliance_status: ComplianceVerdict
    ppe_compliance: Dict[BodyPart, PartCompliance]

    @property
    def person_id(self) -> Any:
        return self.person.person_id

    @property
    def missing_in_window(self) -> List[BodyPart]:
        return [part for part in REQUIRED_PARTS
                if not (self.ppe_compliance.get(part) and self.ppe_compliance[part].present)]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.person_id,
            "hasAlarm": self.person.has_alarm,
            "missingPPE": [p.value for p in self.person.missing_ppe],
            "complianceStatus": self.compliance_status.as_dict(),
            "ppeCompliance": {
                part.value: {"present": pc.present, "percent": round(pc.percent, 1)}
                for part, pc in self.ppe_compliance.items()
            },
        }


@dataclass
class LiveDecision:
    timestamp: Optional[float]
    scene: Optional[ComplianceVerdict]
    persons: List[LivePerson] = field(default_factory=list)

    @property
    def show_detections(self) -> bool:
        return bool(self.scene and self.scene.is_compliant)

    @classmethod
    def idle(cls) -> "LiveDecision":
        """No detections: what the display shows once polling stops."""
        return cls(timestamp=None, scene=None, persons=[])

    def as_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "scene": self.scene.as_dict() if self.scene else None,
            "showDetections": self.show_detections,
            "persons": [p.as_dict() for p in self.persons],
        }


class LiveAggregator:
    def step(self, state: LiveState, now: float, raw_result: Any, cfg: WindowConfig) -> LiveDecision:
        people = map_persons(raw_result)
        frame_ok = scene_compliant(people)

        # 1-2. scene outcome, then trim
        cutoff = now - retention_horizon(cfg)
        state.scene.push(FrameOutcome(now, frame_ok))
        state.scene.evict_before(cutoff)

        # 3. per person / per part; buffers appear on first sight
        for p in people:
            state.entities.record(p.person_id, now, p.compliant, p.present)
        dropped = state.entities.evict_before(cutoff)
        if dropped:
            log.debug("forgot %d person(s) not seen for %.1fs", dropped, now - cutoff)

        window = TrailingWindow(cfg.window_size_s)
        start, _ = window.bounds(now)

        # 4. scene verdict
        scene = decide(state.scene.values(start), cfg, fallback=frame_ok)

        # 5-6. everyone in the current frame is listed, whatever the scene verdict
        persons: List[LivePerson] = []
        for p in people:
            bufs = state.entities.get_or_create(p.person_id)
            # an empty window falls back to this person's own current frame
            status = decide(bufs.outcomes.values(start), cfg, fallback=p.compliant)
            parts = {}
            for part in REQUIRED_PARTS:
                v = decide(bufs.parts[part].values(start), cfg, fallback=p.present[part])
                parts[part] = PartCompliance(v.is_compliant, v.percent)
            persons.append(LivePerson(person=p, compliance_status=status, ppe_compliance=parts))

        log.debug("t=%.2f scene=%s (%.0f%% of %d) persons=%d",
                  now, scene.is_compliant, scene.percent, scene.total, len(persons))
        return LiveDecision(timestamp=now, scene=scene, persons=persons)
