"""
Optional inference backends for overlay_kit.

Backends are kept in a separate module so core functionality (letterbox,
decode, NMS) stays lightweight and can be used without installing inference
runtimes.
"""

from __future__ import annotations

__all__ = []
