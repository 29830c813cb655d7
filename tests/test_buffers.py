"""Tests for the retention buffers."""

from __future__ import annotations

import pytest

from services.buffers import (
    BodyPartOutcome,
    EntityBufferStore,
    FrameOutcome,
    RetentionBuffer,
)
from services.ppe import REQUIRED_PARTS, BodyPart


def _buffer(*points):
    buf = RetentionBuffer()
    for ts, flag in points:
        buf.push(FrameOutcome(ts, flag))
    return buf


def test_evict_keeps_only_entries_inside_horizon() -> None:
    buf = _buffer((0.0, True), (10.0, False), (20.0, True), (35.0, True), (40.0, False))
    now, horizon = 40.0, 30.0

    removed = buf.evict_before(now - horizon)

    assert removed == 1
    assert all(o.timestamp >= now - horizon for o in buf)
    assert [o.timestamp for o in buf] == [10.0, 20.0, 35.0, 40.0]


def test_evict_boundary_entry_is_kept() -> None:
    buf = _buffer((5.0, True), (6.0, True))
    buf.evict_before(5.0)
    assert len(buf) == 2


def test_query_returns_window_oldest_first_without_mutating() -> None:
    buf = _buffer((0.0, False), (1.0, True), (2.0, False), (3.0, True))

    items = buf.query(1.0)

    assert [o.timestamp for o in items] == [1.0, 2.0, 3.0]
    assert buf.values(1.0) == [True, False, True]
    assert len(buf) == 4


def test_query_empty_buffer() -> None:
    assert RetentionBuffer().query(0.0) == []


def test_push_rejects_decreasing_timestamp() -> None:
    buf = _buffer((2.0, True))
    with pytest.raises(ValueError):
        buf.push(FrameOutcome(1.0, True))


def test_push_accepts_equal_timestamp() -> None:
    buf = _buffer((2.0, True))
    buf.push(FrameOutcome(2.0, False))
    assert buf.values(2.0) == [True, False]
    assert buf.last_timestamp == 2.0


def test_body_part_outcome_flag_is_presence() -> None:
    assert BodyPartOutcome(1.0, True).flag is True
    assert BodyPartOutcome(1.0, False).flag is False


def test_store_creates_person_buffers_on_first_sight() -> None:
    store = EntityBufferStore()
    present = {part: part is BodyPart.HEAD for part in REQUIRED_PARTS}

    bufs = store.record("a", 1.0, False, present)

    assert "a" in store and len(store) == 1
    assert bufs.outcomes.values(0.0) == [False]
    assert bufs.parts[BodyPart.HEAD].values(0.0) == [True]
    assert bufs.parts[BodyPart.FACE].values(0.0) == [False]


def test_store_forgets_people_with_no_history_left() -> None:
    store = EntityBufferStore()
    none = {part: False for part in REQUIRED_PARTS}
    store.record("old", 0.0, False, none)
    store.record("new", 50.0, False, none)

    dropped = store.evict_before(20.0)

    assert dropped == 1
    assert store.ids() == ["new"]
    assert store.get("old") is None
