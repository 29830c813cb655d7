"""Tests for the window decision policy."""

from __future__ import annotations

import pytest

from services.policy import (
    FixedBucketWindow,
    TrailingWindow,
    WindowConfig,
    WindowMethod,
    decide,
    retention_horizon,
)

ANY = WindowConfig(WindowMethod.ANY, 3.0, 50.0)


def _pct(threshold: float, ws: float = 3.0) -> WindowConfig:
    return WindowConfig(WindowMethod.PERCENTAGE, ws, threshold)


def test_any_one_positive_is_enough() -> None:
    v = decide([True, False, False], ANY)
    assert v.is_compliant is True
    assert v.positives == 1 and v.total == 3
    assert v.percent == pytest.approx(100.0 / 3)


def test_any_all_negative() -> None:
    assert decide([False, False], ANY).is_compliant is False


def test_percentage_tie_passes() -> None:
    v = decide([True, False, True, False], _pct(50))
    assert v.percent == 50.0
    assert v.is_compliant is True


def test_percentage_below_threshold_fails() -> None:
    assert decide([True, False, True, False], _pct(60)).is_compliant is False


def test_empty_window_without_fallback() -> None:
    v = decide([], ANY)
    assert (v.is_compliant, v.percent, v.total) == (False, 0.0, 0)


def test_empty_window_falls_back_to_current_frame() -> None:
    ok = decide([], _pct(80), fallback=True)
    bad = decide([], _pct(80), fallback=False)
    assert (ok.is_compliant, ok.percent, ok.total) == (True, 100.0, 1)
    assert (bad.is_compliant, bad.percent, bad.total) == (False, 0.0, 1)


def test_verdict_as_dict_keys() -> None:
    d = decide([True], _pct(50)).as_dict()
    assert d["isCompliant"] is True
    assert d["method"] == "percentage"
    assert d["windowSizeSeconds"] == 3.0


@pytest.mark.parametrize(
    "method, expected",
    [("percentage", WindowMethod.PERCENTAGE), ("ANY", WindowMethod.ANY), ("median", WindowMethod.ANY), (None, WindowMethod.ANY)],
)
def test_coerce_method(method, expected) -> None:
    assert WindowConfig.coerce(method, 3, 50).method is expected


def test_coerce_window_size() -> None:
    assert WindowConfig.coerce("any", "abc", 50).window_size_s > 0
    assert WindowConfig.coerce("any", 0, 50).window_size_s > 0
    assert WindowConfig.coerce("any", 0.1, 50).window_size_s == 0.5
    assert WindowConfig.coerce("any", "4.5", 50).window_size_s == 4.5


def test_coerce_threshold() -> None:
    assert WindowConfig.coerce("percentage", 3, "x").threshold == 0.0
    assert WindowConfig.coerce("percentage", 3, 150).threshold == 100.0
    assert WindowConfig.coerce("percentage", 3, -5).threshold == 0.0
    assert WindowConfig.coerce("percentage", 3, "75").threshold == 75.0


def test_retention_horizon() -> None:
    assert retention_horizon(WindowConfig(WindowMethod.ANY, 3.0, 50)) == 30.0
    assert retention_horizon(WindowConfig(WindowMethod.ANY, 20.0, 50)) == 40.0


def test_trailing_window_is_inclusive() -> None:
    w = TrailingWindow(3.0)
    assert w.bounds(10.0) == (7.0, 10.0)
    assert w.contains(7.0, 10.0) and w.contains(10.0, 10.0)
    assert not w.contains(6.99, 10.0)


def test_fixed_bucket_is_half_open() -> None:
    w = FixedBucketWindow(2.0)
    assert w.bounds(1.5) == (0.0, 2.0)
    assert w.contains(0.0, 1.5)
    assert not w.contains(2.0, 1.5)


def test_bucket_is_partition_consistent() -> None:
    w = FixedBucketWindow(2.0)
    samples = [(0.5, True), (1.0, False), (1.9, True), (2.1, False)]
    cfg = _pct(50, ws=2.0)
    verdicts = {w.decide(samples, t, cfg) for t in (0.0, 0.7, 1.5, 1.99)}
    assert len(verdicts) == 1
    assert w.decide(samples, 2.0, cfg) != w.decide(samples, 1.0, cfg)


def test_strategy_clamps_small_window() -> None:
    assert TrailingWindow(0.1).size_s == 0.5
