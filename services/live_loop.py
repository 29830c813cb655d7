# services/live_loop.py
"""
Polling loop for live detection.

    IDLE --start()--> RUNNING --stop()--> IDLE
                         |
               evaluation raises
                         v
                       ERROR --start()--> RUNNING

One daemon worker thread runs: evaluate, then (if still running) wait the
inter-frame delay and evaluate again. stop() only clears a flag and wakes the
wait; an evaluation already in flight finishes, its buffers are updated, but
its decision is not delivered and nothing further is scheduled.
"""

from __future__ import annotations

import threading
import time
from enum import Enum
from typing import Any, Callable, Optional

from services import config
from services.live import LiveAggregator, LiveDecision, LiveState
from services.logger import get_logger
from services.policy import WindowConfig

log = get_logger("live_loop")


class LoopStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"


class LivePoller:
    """
    LivePoller(grab_frame, detect, ...)

    Args:
      grab_frame: () -> frame | None      # latest camera frame; None = nothing yet
      detect: (frame) -> raw result dict  # may block (model / network call)
      config_provider: () -> WindowConfig # read every cycle so edits apply live
      on_decision: (LiveDecision) -> None # called from the worker thread
      on_error: (Exception) -> None       # detection failure; loop is halted
      interval_s: delay between the end of one evaluation and the next
      clock: seconds, non-decreasing
    """

    def __init__(
        self,
        grab_frame: Callable[[], Any],
        detect: Callable[[Any], Any],
        config_provider: Optional[Callable[[], WindowConfig]] = None,
        on_decision: Optional[Callable[[LiveDecision], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        interval_s: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        aggregator: Optional[LiveAggregator] = None,
        state: Optional[LiveState] = None,
    ):
        self._grab_frame = grab_frame
        self._detect = detect
        self._config_provider = config_provider or config.default_window_config
        self._on_decision = on_decision
        self._on_error = on_error
        if interval_s is None:
            interval_s = config.POLL_INTERVAL_MS / 1000.0
        self.interval_s = max(0.0, float(interval_s))
        self._clock = clock
        self._aggregator = aggregator or LiveAggregator()
        self.state = state or LiveState()

        self._status = LoopStatus.IDLE
        self._transition = threading.Lock()
        self._running = threading.Event()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.last_error: Optional[str] = None
        self.last_decision: LiveDecision = LiveDecision.idle()
        self.cycles = 0

    # ───────────────────────── public API ─────────────────────────
    @property
    def status(self) -> LoopStatus:
        return self._status

    @property
    def running(self) -> bool:
        return self._status is LoopStatus.RUNNING

    def start(self) -> bool:
        """idle/error -> running. Returns False if already running."""
        if self._status is LoopStatus.RUNNING:
            return False

        # a worker from the previous session may still be finishing its evaluation
        prev = self._thread
        if prev is not None and prev.is_alive() and prev is not threading.current_thread():
            prev.join()

        with self._transition:
            if self._status is LoopStatus.RUNNING:
                return False
            self.last_error = None
            self._status = LoopStatus.RUNNING
            self._running = threading.Event()
            self._wake = threading.Event()
            self._running.set()
            self._thread = threading.Thread(target=self._run, args=(self._running, self._wake),
                                            daemon=True, name="LivePoller")
            self._thread.start()
        log.info("live detection started (every %.0f ms)", self.interval_s * 1000)
        return True

    def stop(self) -> bool:
        """running -> idle. Resets the display; keeps buffered history."""
        with self._transition:
            was = self._status
            if was is LoopStatus.IDLE:
                return False
            self._status = LoopStatus.IDLE
            self._running.clear()
            self._wake.set()
        if was is LoopStatus.RUNNING:
            log.info("live detection stopped after %d cycle(s)", self.cycles)
        self._deliver(LiveDecision.idle())
        return True

    def toggle(self) -> LoopStatus:
        if self._status is LoopStatus.RUNNING:
            self.stop()
        else:
            self.start()
        return self._status

    def join(self, timeout: Optional[float] = None) -> None:
        t = self._thread
        if t is not None and t is not threading.current_thread():
            t.join(timeout)

    def reset(self) -> None:
        """Discard buffered history (new camera / new session)."""
        if self._status is LoopStatus.RUNNING:
            raise RuntimeError("stop live detection before resetting its history")
        self.join()
        self.state.reset()
        self.last_decision = LiveDecision.idle()

    # ───────────────────────── worker ─────────────────────────
    def _run(self, running: threading.Event, wake: threading.Event) -> None:
        # each worker owns its flags; a restart from a callback never revives it
        while running.is_set():
            if not self._evaluate_once(running):
                break
            if not running.is_set():
                break
            wake.wait(self.interval_s)

    def _evaluate_once(self, running: threading.Event) -> bool:
        try:
            frame = self._grab_frame()
            if frame is None:
                return True
            cfg = self._config_provider()
            raw = self._detect(frame)
            now = self._clock()
            decision = self._aggregator.step(self.state, now, raw, cfg)
        except Exception as e:
            self._fail(e, running)
            return False

        self.cycles += 1

        # stopped while this evaluation was in flight: history kept, display untouched
        if running.is_set():
            self._deliver(decision)
        return True

    def _deliver(self, decision: LiveDecision) -> None:
        self.last_decision = decision
        if self._on_decision is None:
            return
        try:
            self._on_decision(decision)
        except Exception:
            log.exception("decision consumer raised; loop keeps running")

    def _fail(self, err: Exception, running: threading.Event) -> None:
        with self._transition:
            self.last_error = str(err) or err.__class__.__name__
            if not running.is_set():
                # stopped while the failing call was in flight
                log.warning("detection failed after stop: %s", self.last_error)
                return
            self._status = LoopStatus.ERROR
            running.clear()
        log.error("live detection halted: %s", self.last_error, exc_info=err)
        if self._on_error is not None:
            self._on_error(err)
