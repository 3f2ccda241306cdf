from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CameraConfig:
    index: int = 0            # The index of the camera (0 is usually the default built-in or USB cam)
    video_path: str = ""      # If set, read from this file instead of the camera
    width: int = 1280
    height: int = 720
    fps: int = 30
    codec: str = "MJPG"       # Motion JPEG usually offers high frame rates at HD res
    v4l2_controls: bool = False  # Linux only: force exposure settings through v4l2-ctl


@dataclass(frozen=True)
class DetectorConfig:
    model_path: str = "holistic_landmarker.task"
    use_gpu: bool = True      # Try the GPU delegate first, fall back to CPU
    min_face_detection_confidence: float = 0.5
    min_pose_detection_confidence: float = 0.5
    min_hand_landmarks_confidence: float = 0.5
    min_pose_visibility: float = 0.5


@dataclass(frozen=True)
class GestureConfig:
    pinch_threshold: float = 0.08


@dataclass(frozen=True)
class PlacementConfig:
    snap_enabled: bool = False
    hit_radius_factor: float = 0.5
    snap_radius_factor: float = 1.0
    default_scale: float = 0.3
    chest_multiplier: float = 2.5
    face_ear_multiplier: float = 3.0
    face_eye_multiplier: float = 3.5


@dataclass(frozen=True)
class RenderConfig:
    # 1.0 disables landmark smoothing
    smoothing_alpha: float = 0.6
    show_window: bool = True
    window_name: str = "Sticker Placement"
    # Seconds to wait when no new frame is available
    idle_sleep_seconds: float = 0.005


@dataclass(frozen=True)
class ServerConfig:
    enabled: bool = True
    host: str = "localhost"
    port: int = 8765


@dataclass(frozen=True)
class EngineConfig:
    camera: CameraConfig = field(default_factory=CameraConfig)
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    gesture: GestureConfig = field(default_factory=GestureConfig)
    placement: PlacementConfig = field(default_factory=PlacementConfig)
    render: RenderConfig = field(default_factory=RenderConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def _as_int(v: Any, default: int) -> int:
    if isinstance(v, bool):
        return int(default)
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)


def _as_float(v: Any, default: float) -> float:
    if isinstance(v, bool):
        return float(default)
    try:
        return float(v)
    except (TypeError, ValueError):
        return float(default)


def _as_bool(v: Any, default: bool) -> bool:
    if isinstance(v, bool):
        return v
    if isinstance(v, (int, float)):
        return bool(v)
    if isinstance(v, str):
        return v.strip().lower() in ("1", "true", "yes", "on")
    return bool(default)


def _as_str(v: Any, default: str = "") -> str:
    return str(v) if v is not None else str(default)


_COERCE = {int: _as_int, float: _as_float, bool: _as_bool, str: _as_str}


def _positive(v: Any) -> bool:
    return math.isfinite(v) and v > 0


def _fraction(v: Any) -> bool:
    return 0.0 <= v <= 1.0


# Values outside these ranges keep their default
_VALID: Dict[str, Callable[[Any], bool]] = {
    "width": _positive,
    "height": _positive,
    "fps": _positive,
    "min_face_detection_confidence": _fraction,
    "min_pose_detection_confidence": _fraction,
    "min_hand_landmarks_confidence": _fraction,
    "min_pose_visibility": _fraction,
    "pinch_threshold": _positive,
    "hit_radius_factor": _positive,
    "snap_radius_factor": _positive,
    "default_scale": _positive,
    "chest_multiplier": _positive,
    "face_ear_multiplier": _positive,
    "face_eye_multiplier": _positive,
    "smoothing_alpha": lambda v: 0.0 < v <= 1.0,
    "idle_sleep_seconds": lambda v: math.isfinite(v) and v >= 0,
    "port": lambda v: 0 < v < 65536,
}


def _parse_section(cls: type, obj: Any) -> Any:
    """Builds a section dataclass from a dict, keeping defaults for missing, mistyped or out-of-range keys."""
    default = cls()
    if not isinstance(obj, dict):
        return default
    values: Dict[str, Any] = {}
    for f in fields(cls):
        if f.name not in obj:
            continue
        current = getattr(default, f.name)
        coerce = _COERCE.get(type(current))
        if coerce is None:
            continue
        value = coerce(obj[f.name], current)
        check = _VALID.get(f.name)
        if check is not None and not check(value):
            logger.warning("Config %s.%s=%r is out of range, using default %r",
                           cls.__name__, f.name, value, current)
            continue
        values[f.name] = value
    return cls(**values)


def load_config(path: Optional[str | Path] = None) -> EngineConfig:
    if path is None:
        return EngineConfig()
    p = Path(path).expanduser().resolve()
    if not p.exists():
        # Defaults-only config; engine can still run.
        logger.info("Config file %s not found, using defaults", p)
        return EngineConfig()
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Config file %s is unreadable (%s), using defaults", p, e)
        return EngineConfig()

    if not isinstance(raw, dict):
        logger.warning("Config file %s is not a JSON object, using defaults", p)
        return EngineConfig()

    return EngineConfig(
        camera=_parse_section(CameraConfig, raw.get("camera")),
        detector=_parse_section(DetectorConfig, raw.get("detector")),
        gesture=_parse_section(GestureConfig, raw.get("gesture")),
        placement=_parse_section(PlacementConfig, raw.get("placement")),
        render=_parse_section(RenderConfig, raw.get("render")),
        server=_parse_section(ServerConfig, raw.get("server")),
    )
