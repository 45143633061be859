from __future__ import annotations

import argparse
from dataclasses import replace
from typing import Any, Dict, Sequence

from .config import OverlayConfig

# argparse dest -> OverlayConfig field
CLI_FIELDS = {
    "imgsz": "input_size",
    "conf": "conf_threshold",
    "iou": "iou_threshold",
    "interval_ms": "frame_interval_ms",
    "max_frames": "max_frames",
    "layout": "layout",
    "best_box_only": "best_box_only",
    "max_det": "max_detections",
    "log_level": "log_level",
}


def collect_cli_dests(parser: argparse.ArgumentParser, argv: Sequence[str]) -> set[str]:
    dests: set[str] = set()
    for opt, action in parser._option_string_actions.items():
        for arg in argv:
            if arg == opt or arg.startswith(f"{opt}="):
                dests.add(action.dest)
                break
    return dests


def apply_cli_overrides(cfg: OverlayConfig, args: argparse.Namespace, cli_dests: set[str]) -> OverlayConfig:
    """
    Layer flags the user actually typed over a file-based config.

    Argparse defaults never override the config file; only dests present in
    `cli_dests` do.
    """

    changes: Dict[str, Any] = {}
    for dest, field_name in CLI_FIELDS.items():
        if dest not in cli_dests:
            continue
        value = getattr(args, dest, None)
        if value is None:
            continue
        if field_name == "log_level":
            value = str(value).upper()
        changes[field_name] = value
    if not changes:
        return cfg
    return replace(cfg, **changes)
