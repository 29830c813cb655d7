"""Tests for the alarm summary."""

from __future__ import annotations

from services.batch import AnalyzedFrame, aggregate_bucket
from services.live import LiveAggregator, LiveState
from services.policy import WindowConfig, WindowMethod
from services.ppe import map_persons
from services.summary import summarize_alarms


def _raw(*part_lists):
    tags = {"FACE": "MASK", "HEAD": "HELMET", "LEFT_HAND": "GLOVE", "RIGHT_HAND": "GLOVE"}
    return {"Persons": [
        {"Id": i, "BodyParts": [{"Name": n, "EquipmentDetections": [{"Type": tags[n]}]} for n in parts]}
        for i, parts in enumerate(part_lists)
    ]}


def test_summary_of_mapped_persons() -> None:
    people = map_persons(_raw(("FACE", "HEAD", "LEFT_HAND", "RIGHT_HAND"), ("HEAD",), ()))
    s = summarize_alarms(people)
    assert s.missing_per_person == [0, 3, 4]
    assert s.people_with_alarms == 2
    assert s.total_missing == 7
    assert s.should_alarm is True


def test_live_persons_are_judged_on_their_window() -> None:
    cfg = WindowConfig(WindowMethod.ANY, 3.0, 50)
    agg, state = LiveAggregator(), LiveState()
    agg.step(state, 0.0, _raw(("FACE", "HEAD", "LEFT_HAND", "RIGHT_HAND")), cfg)
    d = agg.step(state, 1.0, _raw(("HEAD",)), cfg)

    s = summarize_alarms(d.persons)

    assert s.people_with_alarms == 0
    assert s.should_alarm is False


def test_bucket_persons() -> None:
    cfg = WindowConfig(WindowMethod.ANY, 2.0, 50)
    snap = aggregate_bucket([AnalyzedFrame(0.0, _raw(("FACE",)))], 0.0, cfg)
    assert summarize_alarms(snap.persons).total_missing == 3


def test_nobody() -> None:
    s = summarize_alarms([])
    assert (s.people_with_alarms, s.total_missing, s.should_alarm) == (0, 0, False)
