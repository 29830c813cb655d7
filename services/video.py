# services/video.py
"""
Recorded video -> analyzed timeline.

extract_frames() grabs one frame every interval_s seconds with OpenCV.
process_video_frames() runs the detector over them a few at a time:

  • at most batch_size detection calls in flight (thread pool),
  • a short pause between batches so the detector isn't flooded,
  • a frame whose detection fails becomes {"Persons": []}; the rest carry on.
"""

from __future__ import annotations

import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

import cv2
import numpy as np

from services import config
from services.batch import AnalyzedFrame
from services.logger import get_logger
from services.ppe import empty_result

log = get_logger("video")


class VideoOpenError(RuntimeError):
    pass


@dataclass
class VideoFrame:
    timestamp: float
    image: np.ndarray

    @property
    def time_ms(self) -> int:
        return int(round(self.timestamp * 1000))


def _duration_s(cap) -> float:
    fps = cap.get(cv2.CAP_PROP_FPS) or 0.0
    count = cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0.0
    if fps <= 0 or count <= 0:
        return 0.0
    return float(count) / float(fps)


def extract_frames(path: str, interval_s: float = config.FRAME_INTERVAL_SECONDS) -> List[VideoFrame]:
    """One frame per interval_s seconds, at 0, interval, 2*interval, ... below the duration."""
    interval_s = max(0.05, float(interval_s))
    cap = cv2.VideoCapture(path)
    if not cap or not cap.isOpened():
        raise VideoOpenError(f"could not open video: {path}")

    frames: List[VideoFrame] = []
    try:
        duration = _duration_s(cap)
        total = int(math.ceil(duration / interval_s)) if duration > 0 else 0
        for i in range(total):
            t = i * interval_s
            if t >= duration:
                break
            cap.set(cv2.CAP_PROP_POS_MSEC, t * 1000.0)
            ok, img = cap.read()
            if not ok or img is None:
                log.debug("no frame at %.2fs in %s", t, path)
                continue
            frames.append(VideoFrame(timestamp=t, image=img))
    finally:
        cap.release()

    log.info("extracted %d frame(s) from %s (%.1fs, every %.2fs)", len(frames), path, duration, interval_s)
    return frames


def process_video_frames(
    frames: Sequence[VideoFrame],
    detect: Callable[[np.ndarray], Any],
    batch_size: int = config.FRAME_BATCH_SIZE,
    batch_pause_s: float = config.FRAME_BATCH_PAUSE_MS / 1000.0,
    on_progress: Optional[Callable[[int, int], None]] = None,
) -> List[AnalyzedFrame]:
    """Analyze frames in batches; results come back in input order."""
    batch_size = max(1, int(batch_size))
    total = len(frames)
    done = 0
    results: List[AnalyzedFrame] = []

    def _one(frame: VideoFrame) -> AnalyzedFrame:
        try:
            return AnalyzedFrame(timestamp=frame.timestamp, result=detect(frame.image))
        except Exception as e:
            log.warning("detection failed for frame at %.2fs: %s", frame.timestamp, e)
            return AnalyzedFrame(timestamp=frame.timestamp, result=empty_result())

    with ThreadPoolExecutor(max_workers=batch_size, thread_name_prefix="frames") as pool:
        for i in range(0, total, batch_size):
            batch = frames[i:i + batch_size]
            futures = [pool.submit(_one, f) for f in batch]
            for fut in futures:
                results.append(fut.result())
                done += 1
                if on_progress is not None:
                    on_progress(done, total)
            if i + batch_size < total and batch_pause_s > 0:
                time.sleep(batch_pause_s)

    log.info("analyzed %d frame(s) in batches of %d", total, batch_size)
    return results


def analyze_video(
    path: str,
    detect: Callable[[np.ndarray], Any],
    interval_s: float = config.FRAME_INTERVAL_SECONDS,
    batch_size: int = config.FRAME_BATCH_SIZE,
    batch_pause_s: float = config.FRAME_BATCH_PAUSE_MS / 1000.0,
    on_progress: Optional[Callable[[int, int], None]] = None,
) -> List[AnalyzedFrame]:
    frames = extract_frames(path, interval_s)
    return process_video_frames(frames, detect, batch_size, batch_pause_s, on_progress)
