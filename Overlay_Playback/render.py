from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional, Sequence, Union

import cv2
import numpy as np

from overlay_kit.types import Detection, Frame
from overlay_kit.visualize import draw_detections, draw_notice

logger = logging.getLogger(__name__)


def compose_overlay(frame: Frame, detections: Sequence[Detection], notice: Optional[str] = None) -> np.ndarray:
    out = draw_detections(frame.image, detections) if detections else frame.image
    if notice:
        out = draw_notice(out, notice)
    return out


class WindowRenderer:
    """Shows each processed frame in an OpenCV window; q/Esc calls `on_quit`."""

    def __init__(self, window_name: str = "detections", on_quit: Optional[Callable[[], None]] = None) -> None:
        self.window_name = window_name
        self._on_quit = on_quit

    def present(self, frame: Frame, detections: Sequence[Detection], notice: Optional[str] = None) -> None:
        cv2.imshow(self.window_name, compose_overlay(frame, detections, notice))
        key = cv2.waitKey(1) & 0xFF
        if key in (27, ord("q")) and self._on_quit is not None:
            self._on_quit()

    def close(self) -> None:
        cv2.destroyWindow(self.window_name)


class VideoFileRenderer:
    """Writes overlay frames to a video file, opening the writer lazily on the first frame."""

    def __init__(self, path: Union[str, Path], fps: float = 10.0) -> None:
        if fps <= 0:
            raise ValueError("fps must be > 0")
        self.path = Path(path)
        self.fps = float(fps)
        self._writer: Optional[cv2.VideoWriter] = None
        self.frames_written = 0

    def present(self, frame: Frame, detections: Sequence[Detection], notice: Optional[str] = None) -> None:
        vis = compose_overlay(frame, detections, notice)
        if self._writer is None:
            h, w = vis.shape[:2]
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fourcc = cv2.VideoWriter_fourcc(*"mp4v")
            writer = cv2.VideoWriter(str(self.path), fourcc, self.fps, (w, h))
            if not writer.isOpened():
                raise RuntimeError(f"Failed to open video writer: {self.path}")
            self._writer = writer
        self._writer.write(vis)
        self.frames_written += 1

    def close(self) -> None:
        if self._writer is not None:
            self._writer.release()
            self._writer = None
            logger.info("Wrote %d overlay frames to %s", self.frames_written, self.path)


class MultiRenderer:
    def __init__(self, *renderers) -> None:
        self.renderers = list(renderers)

    def present(self, frame: Frame, detections: Sequence[Detection], notice: Optional[str] = None) -> None:
        for r in self.renderers:
            r.present(frame, detections, notice)

    def close(self) -> None:
        for r in self.renderers:
            close = getattr(r, "close", None)
            if close is not None:
                close()


def play_video(path: Union[str, Path], window_name: str = "playback") -> int:
    """
    Plays the whole video in a window at its native frame rate. Returns the
    number of frames shown; q/Esc stops early.
    """

    cap = cv2.VideoCapture(str(path))
    if not cap.isOpened():
        raise FileNotFoundError(f"Could not open video: {path}")
    fps = cap.get(cv2.CAP_PROP_FPS)
    delay_ms = int(1000 / fps) if fps and fps > 0 else 33

    shown = 0
    try:
        while True:
            ok, image = cap.read()
            if not ok or image is None:
                break
            cv2.imshow(window_name, image)
            shown += 1
            key = cv2.waitKey(max(1, delay_ms)) & 0xFF
            if key in (27, ord("q")):
                break
    finally:
        cap.release()
        cv2.destroyWindow(window_name)
    logger.info("Video playback completed (%d frames)", shown)
    return shown
