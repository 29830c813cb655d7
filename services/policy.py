# services/policy.py
"""
Window decision policy.

decide() turns the boolean outcomes that fall inside a window into a verdict:

  ANY         verdict when at least one outcome is True
  PERCENTAGE  verdict when 100 * trues / total >= threshold (ties pass)

The percentage and counts are always reported, whatever the method.

Which outcomes fall inside "the window" is the job of a WindowStrategy. Live
streams use a TrailingWindow that ends at "now"; recorded timelines use a
FixedBucketWindow so every scrub position inside a bucket sees the same frames.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Sequence, Tuple

from services import config


class WindowMethod(str, Enum):
    ANY = "any"
    PERCENTAGE = "percentage"


def _num(v: Any) -> Optional[float]:
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


@dataclass(frozen=True)
class WindowConfig:
    method: WindowMethod = WindowMethod.ANY
    window_size_s: float = 3.0
    threshold: float = 50.0

    @classmethod
    def coerce(cls, method: Any = None, window_size_s: Any = None, threshold: Any = None) -> "WindowConfig":
        """
        Build a config from loose input (form fields, env, CLI).

        Unknown method -> ANY. Non-numeric or zero window -> default size;
        anything below 0.5s is raised to 0.5s. Non-numeric threshold -> 0,
        clamped to 0..100.
        """
        try:
            m = WindowMethod(str(method.value if isinstance(method, WindowMethod) else method).strip().lower())
        except ValueError:
            m = WindowMethod.ANY

        ws = _num(window_size_s)
        if not ws:
            ws = config.WINDOW_SIZE_SECONDS if config.WINDOW_SIZE_SECONDS > 0 else 3.0
        ws = max(config.MIN_WINDOW_SECONDS, ws)

        th = _num(threshold)
        th = 0.0 if th is None else min(100.0, max(0.0, th))

        return cls(method=m, window_size_s=ws, threshold=th)


@dataclass(frozen=True)
class ComplianceVerdict:
    is_compliant: bool
    percent: float
    positives: int
    total: int
    method: WindowMethod
    window_size_s: float
    threshold: float

    def as_dict(self) -> dict:
        return {
            "isCompliant": self.is_compliant,
            "percent": round(self.percent, 1),
            "positives": self.positives,
            "total": self.total,
            "method": self.method.value,
            "windowSizeSeconds": self.window_size_s,
            "threshold": self.threshold,
        }


def decide(values: Sequence[bool], cfg: WindowConfig, fallback: Optional[bool] = None) -> ComplianceVerdict:
    total = len(values)
    if total == 0:
        if fallback is None:
            return ComplianceVerdict(False, 0.0, 0, 0, cfg.method, cfg.window_size_s, cfg.threshold)
        # degenerate one-frame window
        hit = bool(fallback)
        return ComplianceVerdict(hit, 100.0 if hit else 0.0, int(hit), 1,
                                 cfg.method, cfg.window_size_s, cfg.threshold)

    positives = sum(1 for v in values if v)
    percent = 100.0 * positives / total
    if cfg.method is WindowMethod.ANY:
        ok = positives > 0
    else:
        ok = percent >= cfg.threshold
    return ComplianceVerdict(ok, percent, positives, total, cfg.method, cfg.window_size_s, cfg.threshold)


def retention_horizon(cfg: WindowConfig) -> float:
    return max(config.RETENTION_MIN_SECONDS, 2.0 * cfg.window_size_s)


# ───────────────────────── window strategies ─────────────────────────
class WindowStrategy:
    """Maps a position on the timeline to the window of outcomes it is judged on."""

    def __init__(self, size_s: float):
        self.size_s = max(config.MIN_WINDOW_SECONDS, float(size_s))

    def bounds(self, position: float) -> Tuple[float, float]:
        raise NotImplementedError

    def contains(self, timestamp: float, position: float) -> bool:
        raise NotImplementedError

    def decide(self, samples: Sequence[Tuple[float, bool]], position: float, cfg: WindowConfig,
               fallback: Optional[bool] = None) -> ComplianceVerdict:
        return decide([flag for ts, flag in samples if self.contains(ts, position)], cfg, fallback)


class TrailingWindow(WindowStrategy):
    """[now - size, now], both ends included. Slides with every evaluation."""

    def bounds(self, position: float) -> Tuple[float, float]:
        return position - self.size_s, position

    def contains(self, timestamp: float, position: float) -> bool:
        start, end = self.bounds(position)
        return start <= timestamp <= end


class FixedBucketWindow(WindowStrategy):
    """[k * size, (k + 1) * size) for the bucket k holding the position."""

    def bounds(self, position: float) -> Tuple[float, float]:
        start = math.floor(position / self.size_s) * self.size_s
        return start, start + self.size_s

    def contains(self, timestamp: float, position: float) -> bool:
        start, end = self.bounds(position)
        return start <= timestamp < end
