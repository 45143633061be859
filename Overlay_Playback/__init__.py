"""
Playback layer built on top of `overlay_kit`.

Detection runtime stays in `overlay_kit/`; this package owns:
- configuration (JSON file + CLI overrides)
- frame cadence scheduling (start / stop / pause / resume)
- the playback gate opened by the first detection
- the playback session tying them together

`ingest` and `render` need OpenCV at import time and are imported from their
modules directly, so the scheduling logic can be imported without cv2.
"""

from __future__ import annotations

from .config import OverlayConfig, load_overlay_config, overlay_config_from_dict
from .gate import EventPlaybackGate
from .logging_utils import setup_logging
from .run_config import apply_cli_overrides, collect_cli_dests
from .scheduler import CadenceConfig, FrameScheduler, IdleReason, SchedulerState
from .session import PlaybackSession, SessionSummary

__all__ = [
    "OverlayConfig",
    "load_overlay_config",
    "overlay_config_from_dict",
    "EventPlaybackGate",
    "setup_logging",
    "apply_cli_overrides",
    "collect_cli_dests",
    "CadenceConfig",
    "FrameScheduler",
    "IdleReason",
    "SchedulerState",
    "PlaybackSession",
    "SessionSummary",
]
