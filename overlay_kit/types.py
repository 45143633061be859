from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np


@dataclass
class Detection:
    """
    Box + confidence, in detector-input space until unmapped to the frame.
    """

    x1: float
    y1: float
    x2: float
    y2: float
    score: float
    class_id: Optional[int] = None

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x1, self.y1, self.x2, self.y2


@dataclass(frozen=True)
class Frame:
    """
    One decoded video frame (BGR, OpenCV-style) plus its capture index.
    """

    image: np.ndarray
    index: int
    timestamp_us: int = 0

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])


@dataclass(frozen=True)
class LetterboxParams:
    ratio: float
    pad_x: int
    pad_y: int
    input_size: int
    resized_w: int
    resized_h: int


@dataclass(frozen=True)
class RawOutput:
    """
    Flat float view of one inference result plus the shape the engine declared.
    """

    values: np.ndarray
    shape: Tuple[int, ...]

    @classmethod
    def from_array(cls, arr: np.ndarray) -> "RawOutput":
        a = np.asarray(arr)
        return cls(values=a.reshape(-1), shape=tuple(int(d) for d in a.shape))

    def __len__(self) -> int:
        return int(self.values.size)
