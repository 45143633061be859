from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from overlay_kit.runtime import PipelineConfig

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class OverlayConfig:
    input_size: int = 640
    conf_threshold: float = 0.5
    iou_threshold: float = 0.45
    frame_interval_ms: int = 100
    max_frames: int = 200
    pad_color: Tuple[int, int, int] = (0, 0, 0)
    layout: str = "auto"
    best_box_only: bool = False
    max_detections: Optional[int] = None
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.input_size < 32:
            raise ValueError("input_size must be >= 32")
        if not 0.0 <= self.conf_threshold <= 1.0:
            raise ValueError("conf_threshold must be in [0, 1]")
        if not 0.0 <= self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be in [0, 1]")
        if self.frame_interval_ms <= 0:
            raise ValueError("frame_interval_ms must be > 0")
        if self.max_frames < 0:
            raise ValueError("max_frames must be >= 0")
        if len(self.pad_color) != 3 or any(not 0 <= int(c) <= 255 for c in self.pad_color):
            raise ValueError("pad_color must be three values in [0, 255]")
        if self.layout not in ("auto", "flat", "anchors"):
            raise ValueError("layout must be one of auto/flat/anchors")
        if self.max_detections is not None and self.max_detections < 1:
            raise ValueError("max_detections must be >= 1 when set")
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {LOG_LEVELS}")

    @property
    def frame_interval_us(self) -> int:
        return int(self.frame_interval_ms) * 1000

    def pipeline_config(self) -> PipelineConfig:
        return PipelineConfig(
            input_size=self.input_size,
            conf_threshold=self.conf_threshold,
            iou_threshold=self.iou_threshold,
            pad_color=tuple(int(c) for c in self.pad_color),
            layout=self.layout,
            best_box_only=self.best_box_only,
            max_detections=self.max_detections,
        )


_INT_KEYS = {"input_size", "frame_interval_ms", "max_frames"}
_FLOAT_KEYS = {"conf_threshold", "iou_threshold"}


def overlay_config_from_dict(payload: Dict[str, Any]) -> OverlayConfig:
    allowed = set(OverlayConfig.__dataclass_fields__)
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown overlay config keys: {unknown}")

    kwargs: Dict[str, Any] = {}
    for key, value in payload.items():
        if key in _INT_KEYS:
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{key} must be an integer")
            kwargs[key] = int(value)
        elif key in _FLOAT_KEYS:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{key} must be a number")
            kwargs[key] = float(value)
        elif key == "max_detections":
            if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
                raise ValueError("max_detections must be an integer or null")
            kwargs[key] = value
        elif key == "best_box_only":
            if not isinstance(value, bool):
                raise ValueError("best_box_only must be a boolean")
            kwargs[key] = value
        elif key == "pad_color":
            if not isinstance(value, list) or not all(isinstance(c, int) and not isinstance(c, bool) for c in value):
                raise ValueError("pad_color must be a list of integers")
            kwargs[key] = tuple(value)
        else:
            if not isinstance(value, str):
                raise ValueError(f"{key} must be a string")
            kwargs[key] = value.upper() if key == "log_level" else value

    return OverlayConfig(**kwargs)


def load_overlay_config(path: Path) -> OverlayConfig:
    if not path.exists():
        raise FileNotFoundError(f"Overlay config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid overlay config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Overlay config must be a JSON object")
    return overlay_config_from_dict(payload)
