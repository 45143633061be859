from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import cv2

from overlay_kit.types import Frame

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureInfo:
    fps: Optional[float]
    width: Optional[int]
    height: Optional[int]
    frame_count: Optional[int] = None

    @property
    def duration_us(self) -> Optional[int]:
        if not self.fps or not self.frame_count:
            return None
        return int(self.frame_count / self.fps * 1_000_000)


def open_capture(video: Union[str, Path]) -> cv2.VideoCapture:
    cap = cv2.VideoCapture(str(video))
    if not cap.isOpened():
        raise RuntimeError(f"Failed to open video: {video}")
    return cap


def get_capture_info(cap: cv2.VideoCapture) -> CaptureInfo:
    fps = cap.get(cv2.CAP_PROP_FPS)
    if fps is None or fps <= 0:
        fps_val = None
    else:
        fps_val = float(fps)

    w = cap.get(cv2.CAP_PROP_FRAME_WIDTH)
    h = cap.get(cv2.CAP_PROP_FRAME_HEIGHT)
    n = cap.get(cv2.CAP_PROP_FRAME_COUNT)
    w_val = int(w) if w and w > 0 else None
    h_val = int(h) if h and h > 0 else None
    n_val = int(n) if n and n > 0 else None

    return CaptureInfo(fps=fps_val, width=w_val, height=h_val, frame_count=n_val)


class VideoFrameSource:
    """
    Random-access frame source over a video file: `frame_at(timestamp_us)`
    seeks and decodes the closest frame, or returns None past the end.
    """

    def __init__(self, cap: cv2.VideoCapture) -> None:
        self._cap = cap
        self._next_index = 0
        self.info = get_capture_info(cap)

    @classmethod
    def open(cls, path: Union[str, Path]) -> "VideoFrameSource":
        return cls(open_capture(path))

    def frame_at(self, timestamp_us: int) -> Optional[Frame]:
        duration = self.info.duration_us
        if duration is not None and timestamp_us >= duration:
            logger.debug("Timestamp %dus is past the end of the video (%dus)", timestamp_us, duration)
            return None

        self._cap.set(cv2.CAP_PROP_POS_MSEC, timestamp_us / 1000.0)
        ok, image = self._cap.read()
        if not ok or image is None:
            return None

        frame = Frame(image=image, index=self._next_index, timestamp_us=int(timestamp_us))
        self._next_index += 1
        return frame

    def release(self) -> None:
        self._cap.release()

    def __enter__(self) -> "VideoFrameSource":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
