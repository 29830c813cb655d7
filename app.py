# app.py
from __future__ import annotations

import argparse
import json
import os
import sys
import threading
import time
from typing import List, Optional

import cv2

from services import config
from services.batch import aggregate_bucket, bucket_starts
from services.live import LiveDecision
from services.live_loop import LivePoller, LoopStatus
from services.logger import get_logger
from services.policy import WindowConfig
from services.summary import summarize_alarms
from services.video import VideoOpenError, analyze_video

log = get_logger("app")

CAMERA_OPEN_TIMEOUT_SEC = 6

# Lower-latency RTSP capture: keep TCP, drop internal buffering.
os.environ.setdefault(
    "OPENCV_FFMPEG_CAPTURE_OPTIONS",
    "rtsp_transport;tcp|fflags;nobuffer|flags;low_delay|reorder_queue_size;0",
)


# ───────────────────────── camera ─────────────────────────
class CameraOfflineError(RuntimeError):
    pass


class CameraReader:
    """Reads a camera / RTSP source on a daemon thread; latest frame wins."""

    def __init__(self, source: str):
        self.source = int(source) if str(source).isdigit() else source
        self._cap = None
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._last_frame = None
        self.online = False

    def open(self) -> None:
        cap = cv2.VideoCapture(self.source)
        t0 = time.time()
        while time.time() - t0 < CAMERA_OPEN_TIMEOUT_SEC and not cap.isOpened():
            time.sleep(0.2)
        if not cap.isOpened():
            cap.release()
            raise CameraOfflineError(f"camera offline: {self.source}")
        try:
            cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)  # keep queue small
        except cv2.error:
            pass
        self._cap = cap
        self._stop.clear()
        self._thread = threading.Thread(target=self._reader_loop, name="CameraReader", daemon=True)
        self._thread.start()

    def _reader_loop(self) -> None:
        while not self._stop.is_set():
            ok, frame = self._cap.read()
            if not ok:
                self.online = False
                time.sleep(0.01)
                continue
            self.online = True
            self._last_frame = frame

    def latest(self):
        return self._last_frame if self.online else None

    def close(self) -> None:
        self._stop.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)
        if self._cap is not None:
            self._cap.release()
        self._cap = None


def _window_config(args) -> WindowConfig:
    return WindowConfig.coerce(
        args.method or config.WINDOW_METHOD,
        args.window if args.window is not None else config.WINDOW_SIZE_SECONDS,
        args.threshold if args.threshold is not None else config.PERCENTAGE_THRESHOLD,
    )


def _load_detector():
    # heavy import (torch / ultralytics) only for commands that detect
    from services.ppe_infer import PPEDetector
    return PPEDetector()


# ───────────────────────── commands ─────────────────────────
def _log_decision(decision: LiveDecision) -> None:
    if decision.scene is None:
        log.info("no detections")
        return
    summary = summarize_alarms(decision.persons)
    log.info(
        "scene %s (%.0f%% of %d frames) | persons %d | missing PPE: %d person(s), %d item(s)",
        "OK" if decision.scene.is_compliant else "NOT OK",
        decision.scene.percent, decision.scene.total, len(decision.persons),
        summary.people_with_alarms, summary.total_missing,
    )
    log.debug("%s", json.dumps(decision.as_dict(), default=str))


def run_live(args) -> int:
    cfg = _window_config(args)
    detector = _load_detector()
    camera = CameraReader(args.source)
    camera.open()

    poller = LivePoller(
        grab_frame=camera.latest,
        detect=detector.detect,
        config_provider=lambda: cfg,
        on_decision=_log_decision,
    )
    log.info("live: source=%s method=%s window=%.1fs threshold=%.0f%%",
             args.source, cfg.method.value, cfg.window_size_s, cfg.threshold)
    poller.start()
    try:
        t0 = time.monotonic()
        while poller.status is LoopStatus.RUNNING:
            if args.seconds and time.monotonic() - t0 >= args.seconds:
                break
            time.sleep(0.2)
    except KeyboardInterrupt:
        pass
    finally:
        poller.stop()
        poller.join(timeout=5.0)
        camera.close()

    if poller.status is LoopStatus.ERROR:
        log.error("stopped on error: %s", poller.last_error)
        return 1
    return 0


def run_video(args) -> int:
    cfg = _window_config(args)
    detector = _load_detector()

    def _progress(done: int, total: int) -> None:
        if done == total or done % 10 == 0:
            log.info("analyzing frames: %d/%d (%.0f%%)", done, total, 100.0 * done / max(1, total))

    results = analyze_video(args.path, detector.detect, interval_s=args.interval, on_progress=_progress)

    positions: List[float] = args.at or bucket_starts(results, cfg)
    for t in positions:
        snap = aggregate_bucket(results, t, cfg)
        summary = summarize_alarms(snap.persons)
        out = snap.to_raw()
        out["at"] = t
        out["peopleWithAlarms"] = summary.people_with_alarms
        out["totalMissing"] = summary.total_missing
        print(json.dumps(out, default=str))
    return 0


def parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="app.py", description=f"{config.APP_NAME}: windowed PPE compliance.")
    sub = parser.add_subparsers(dest="command", required=True)

    def _window_args(p):
        p.add_argument("--method", choices=["any", "percentage"], default=None)
        p.add_argument("--window", type=float, default=None, help="window size in seconds (>= 0.5)")
        p.add_argument("--threshold", type=float, default=None, help="percentage threshold 1..100")

    live = sub.add_parser("live", help="poll a camera and judge over a trailing window")
    live.add_argument("--source", default="0", help="camera index or RTSP/HTTP url")
    live.add_argument("--seconds", type=float, default=0.0, help="stop after N seconds (0 = until Ctrl+C)")
    _window_args(live)
    live.set_defaults(func=run_live)

    video = sub.add_parser("video", help="analyze a recorded video and judge per fixed bucket")
    video.add_argument("path")
    video.add_argument("--at", type=float, action="append", help="scrub position in seconds (repeatable)")
    video.add_argument("--interval", type=float, default=config.FRAME_INTERVAL_SECONDS,
                       help="seconds between extracted frames")
    _window_args(video)
    video.set_defaults(func=run_video)

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    try:
        return args.func(args)
    except (CameraOfflineError, VideoOpenError) as e:
        log.error("%s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
