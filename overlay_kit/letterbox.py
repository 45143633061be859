from typing import Sequence, Tuple

import numpy as np

from .errors import PreconditionError
from .types import LetterboxParams

Box = Tuple[float, float, float, float]


def compute_letterbox_params(orig_w: int, orig_h: int, input_size: int = 640) -> LetterboxParams:
    """
    Uniform scale + symmetric padding that fits (orig_w, orig_h) into an
    input_size x input_size square.

    Padding is floored, so for odd leftovers the right/bottom border is one
    pixel wider than the left/top one.
    """

    if orig_w <= 0 or orig_h <= 0:
        raise PreconditionError(f"Frame dimensions must be > 0, got {orig_w}x{orig_h}")
    if input_size <= 0:
        raise PreconditionError(f"input_size must be > 0, got {input_size}")

    # Scale ratio (new / old)
    r = min(input_size / orig_w, input_size / orig_h)

    resized_w = max(1, int(round(orig_w * r)))
    resized_h = max(1, int(round(orig_h * r)))
    pad_x = max(0, (input_size - resized_w) // 2)
    pad_y = max(0, (input_size - resized_h) // 2)

    return LetterboxParams(
        ratio=r,
        pad_x=pad_x,
        pad_y=pad_y,
        input_size=input_size,
        resized_w=resized_w,
        resized_h=resized_h,
    )


def letterbox(
    image: np.ndarray,
    params: LetterboxParams,
    color: Tuple[int, int, int] = (0, 0, 0),
) -> np.ndarray:
    """
    Resize `image` to the letterboxed size and composite it onto a square
    canvas of `color`, offset by the params' padding.
    """
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for letterbox(). Install with `pip install opencv-python`.") from e

    if image is None or not hasattr(image, "shape") or image.ndim != 3 or image.shape[2] != 3:
        raise PreconditionError(f"Expected image shape (H, W, 3), got {getattr(image, 'shape', None)}")

    h, w = image.shape[:2]
    rw, rh = params.resized_w, params.resized_h
    if (w, h) != (rw, rh):
        image = cv2.resize(image, (rw, rh), interpolation=cv2.INTER_LINEAR)

    size = params.input_size
    canvas = np.empty((size, size, 3), dtype=image.dtype)
    canvas[:, :] = color
    canvas[params.pad_y : params.pad_y + rh, params.pad_x : params.pad_x + rw] = image
    return canvas


def map_box(box: Sequence[float], params: LetterboxParams) -> Box:
    """Original-frame box -> detector-input space."""

    x1, y1, x2, y2 = (float(v) for v in box)
    r = params.ratio
    return (
        x1 * r + params.pad_x,
        y1 * r + params.pad_y,
        x2 * r + params.pad_x,
        y2 * r + params.pad_y,
    )


def unmap_box(box: Sequence[float], params: LetterboxParams, orig_w: int, orig_h: int) -> Box:
    """
    Detector-input box -> original frame, clamped to [0, orig_w] x [0, orig_h].
    """

    if orig_w <= 0 or orig_h <= 0:
        raise PreconditionError(f"Frame dimensions must be > 0, got {orig_w}x{orig_h}")

    x1, y1, x2, y2 = (float(v) for v in box)
    r = params.ratio
    x1 = (x1 - params.pad_x) / r
    x2 = (x2 - params.pad_x) / r
    y1 = (y1 - params.pad_y) / r
    y2 = (y2 - params.pad_y) / r

    return (
        min(max(x1, 0.0), float(orig_w)),
        min(max(y1, 0.0), float(orig_h)),
        min(max(x2, 0.0), float(orig_w)),
        min(max(y2, 0.0), float(orig_h)),
    )
