from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class EventPlaybackGate:
    """
    Playback gate that opens on the first detection of a session.

    `on_start` runs once, when the gate opens. `pause`/`resume` follow the
    host's lifecycle; resuming only plays again if the gate has opened.
    """

    def __init__(self, on_start: Optional[Callable[[], None]] = None) -> None:
        self._on_start = on_start
        self.opened = threading.Event()
        self.playing = False

    def on_first_detection(self) -> None:
        if self.opened.is_set():
            logger.warning("Playback gate already open, ignoring repeated signal")
            return
        self.opened.set()
        self.playing = True
        logger.info("Detected, starting video")
        if self._on_start is not None:
            self._on_start()

    def pause(self) -> None:
        self.playing = False

    def resume(self) -> None:
        if self.opened.is_set():
            self.playing = True
