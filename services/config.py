# services/config.py
"""
Central app config. Sane defaults with .env / environment overrides.
"""

from __future__ import annotations
import logging
import os

# ──────────────────────────────────────────────
# Load .env (even if this module is imported early)
# ──────────────────────────────────────────────
def _load_env() -> None:
    from dotenv import load_dotenv, find_dotenv
    # Prefer a .env in the current working dir (project root).
    # Already-set OS env vars win.
    path = find_dotenv(filename=".env", usecwd=True)
    if path:
        load_dotenv(dotenv_path=path, override=False)

_load_env()


# ──────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────
def _strip_quotes(s: str) -> str:
    s = s.strip()
    if (s.startswith('"') and s.endswith('"')) or (s.startswith("'") and s.endswith("'")):
        return s[1:-1].strip()
    return s

def _env_str(key: str, default: str) -> str:
    v = os.getenv(key)
    if v is None:
        return default
    v = _strip_quotes(v)
    return v if v != "" else default

def _env_int(key: str, default: int) -> int:
    raw = _strip_quotes(os.getenv(key, ""))
    if raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default

def _env_float(key: str, default: float) -> float:
    raw = _strip_quotes(os.getenv(key, ""))
    if raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default

def _env_bool(key: str, default: bool) -> bool:
    v = os.getenv(key)
    if v is None:
        return default
    v = _strip_quotes(v).lower()
    return v in ("1", "true", "yes", "on")


# ──────────────────────────────────────────────
# Branding / App
# ──────────────────────────────────────────────
APP_NAME: str = _env_str("APP_NAME", "PPE Window")
LOG_LEVEL: str = _env_str("LOG_LEVEL", "INFO").upper()


# ──────────────────────────────────────────────
# Window decision defaults
#   WINDOW_METHOD=any          # any | percentage
#   WINDOW_SIZE_SECONDS=3      # >= 0.5
#   PERCENTAGE_THRESHOLD=50    # 1..100, only used by "percentage"
# ──────────────────────────────────────────────
WINDOW_METHOD: str = _env_str("WINDOW_METHOD", "any").lower()
WINDOW_SIZE_SECONDS: float = _env_float("WINDOW_SIZE_SECONDS", 3.0)
PERCENTAGE_THRESHOLD: float = _env_float("PERCENTAGE_THRESHOLD", 50.0)

MIN_WINDOW_SECONDS: float = 0.5
# Live buffers keep max(RETENTION_MIN_SECONDS, 2 * window) seconds of history.
RETENTION_MIN_SECONDS: float = _env_float("RETENTION_MIN_SECONDS", 30.0)


# ──────────────────────────────────────────────
# Live polling
# ──────────────────────────────────────────────
POLL_INTERVAL_MS: int = _env_int("POLL_INTERVAL_MS", 300)


# ──────────────────────────────────────────────
# Recorded video analysis
# ──────────────────────────────────────────────
FRAME_INTERVAL_SECONDS: float = _env_float("FRAME_INTERVAL_SECONDS", 1.0)
FRAME_BATCH_SIZE: int = _env_int("FRAME_BATCH_SIZE", 5)
FRAME_BATCH_PAUSE_MS: int = _env_int("FRAME_BATCH_PAUSE_MS", 50)
FRAME_MATCH_TOLERANCE_SECONDS: float = _env_float("FRAME_MATCH_TOLERANCE_SECONDS", 0.5)


# ──────────────────────────────────────────────
# Detector (Ultralytics YOLO)
#   PPE_MODEL_PATH=data/models/ppe.pt   # helmet / mask / gloves classes
#   PERSON_MODEL_PATH=yolov8n.pt        # COCO person, tracked
#   DETECTOR_DEVICE=cuda:0              # falls back to cpu when unavailable
# ──────────────────────────────────────────────
PPE_MODEL_PATH: str = _env_str("PPE_MODEL_PATH", os.path.join("data", "models", "ppe.pt"))
PERSON_MODEL_PATH: str = _env_str("PERSON_MODEL_PATH", "yolov8n.pt")
DETECTOR_DEVICE: str = _env_str("DETECTOR_DEVICE", "cpu")
DETECTOR_IMGSZ: int = _env_int("DETECTOR_IMGSZ", 832)
DETECTOR_CONF: float = _env_float("DETECTOR_CONF", 0.30)
DETECTOR_HALF: bool = _env_bool("DETECTOR_HALF", True)


# ──────────────────────────────────────────────
# Sanity checks (non-fatal)
# ──────────────────────────────────────────────
def _warn_if_out_of_range() -> None:
    log = logging.getLogger("ppe.config")
    if WINDOW_METHOD not in ("any", "percentage"):
        log.warning("WINDOW_METHOD=%r is not 'any' or 'percentage'; 'any' will be used.", WINDOW_METHOD)
    if WINDOW_SIZE_SECONDS < MIN_WINDOW_SECONDS:
        log.warning("WINDOW_SIZE_SECONDS=%s is below %ss; it will be raised.", WINDOW_SIZE_SECONDS, MIN_WINDOW_SECONDS)
    if not (1.0 <= PERCENTAGE_THRESHOLD <= 100.0):
        log.warning("PERCENTAGE_THRESHOLD=%s is outside 1..100; it will be clamped.", PERCENTAGE_THRESHOLD)
    if FRAME_BATCH_SIZE < 1:
        log.warning("FRAME_BATCH_SIZE=%s is below 1; 1 will be used.", FRAME_BATCH_SIZE)
    if POLL_INTERVAL_MS < 0:
        log.warning("POLL_INTERVAL_MS=%s is negative; 0 will be used.", POLL_INTERVAL_MS)

_warn_if_out_of_range()


def default_window_config():
    """WindowConfig built from the env defaults above (coerced, never raises)."""
    from services.policy import WindowConfig
    return WindowConfig.coerce(WINDOW_METHOD, WINDOW_SIZE_SECONDS, PERCENTAGE_THRESHOLD)
