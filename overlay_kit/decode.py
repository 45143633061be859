from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

import numpy as np

from .errors import OutputShapeError
from .types import Detection, RawOutput

logger = logging.getLogger(__name__)

# [x, y, w, h, confidence, class_id]
GROUP_SIZE = 6
# A leading value in [0, MAX_PREFIX_COUNT] is read as the detection count.
MAX_PREFIX_COUNT = 50


class OutputLayout(str, Enum):
    COUNT_PREFIXED = "count_prefixed"
    SCANNED = "scanned"
    ANCHORS = "anchors"
    EMPTY = "empty"


@dataclass(frozen=True)
class DecodeConfig:
    input_size: int = 640
    conf_threshold: float = 0.5
    # "auto" picks from the declared shape; "flat" / "anchors" force a path.
    layout: str = "auto"

    def __post_init__(self) -> None:
        if self.input_size <= 0:
            raise ValueError("input_size must be > 0")
        if not 0.0 <= self.conf_threshold <= 1.0:
            raise ValueError("conf_threshold must be in [0, 1]")
        if self.layout not in ("auto", "flat", "anchors"):
            raise ValueError(f"layout must be one of auto/flat/anchors, got {self.layout!r}")


@dataclass
class DecodeResult:
    layout: OutputLayout
    # Groups considered before confidence/geometry filtering.
    declared_count: int = 0
    detections: List[Detection] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.detections)


def max_flat_groups(length: int) -> int:
    if length <= 1:
        return 0
    return (length - 1) // GROUP_SIZE


def classify_flat_layout(values: Sequence[float]) -> OutputLayout:
    """
    Decide how a flat output should be walked.

    The leading value doubles as a count on some exports and as the first box
    coordinate on others, so a value in [0, 50] is taken as a count and
    anything else (negative, large, NaN) falls back to scanning.
    """

    v = np.asarray(values).reshape(-1)
    if max_flat_groups(int(v.size)) == 0:
        return OutputLayout.EMPTY
    first = float(v[0])
    if 0.0 <= first <= MAX_PREFIX_COUNT:
        return OutputLayout.COUNT_PREFIXED
    return OutputLayout.SCANNED


class TensorDecoder:
    """
    Turns one raw inference output into candidate detections in
    detector-input space (not NMS'd, not sorted).

    Supported outputs (per image):
    - flat (1, N): optional count prefix, then groups of
      [cx, cy, w, h, conf, class_id], normalized or in pixels
    - anchors (1, 4 + K, A): e.g. 1 x 5 x 8400; a single score row is the
      confidence, several rows are class scores reduced by argmax
    """

    def __init__(self, cfg: DecodeConfig = DecodeConfig()):
        self.cfg = cfg

    def decode(self, raw: RawOutput) -> DecodeResult:
        if self._is_anchors_layout(raw.shape):
            result = self._decode_anchors(raw)
        else:
            result = self._decode_flat(raw.values)
        logger.debug(
            "Decoded %d/%d candidates (layout=%s, shape=%s)",
            len(result.detections),
            result.declared_count,
            result.layout.value,
            raw.shape,
        )
        return result

    # ------------------------------------------------------------------ #
    # Layout selection
    # ------------------------------------------------------------------ #
    def _is_anchors_layout(self, shape: Sequence[int]) -> bool:
        if self.cfg.layout == "flat":
            return False
        if self.cfg.layout == "anchors":
            return True
        if len(shape) != 3:
            return False
        channels, anchors = int(shape[1]), int(shape[2])
        return channels >= 5 and anchors > channels

    # ------------------------------------------------------------------ #
    # Flat layout
    # ------------------------------------------------------------------ #
    def _decode_flat(self, values: np.ndarray) -> DecodeResult:
        # Own copy; the engine may reuse its buffer on the next call.
        v = np.array(values, dtype=np.float64).reshape(-1)
        n = int(v.size)
        cap = max_flat_groups(n)

        layout = classify_flat_layout(v)
        if layout is OutputLayout.EMPTY:
            logger.debug("Output too small to hold a detection (%d values)", n)
            return DecodeResult(layout=layout)

        if layout is OutputLayout.COUNT_PREFIXED:
            count = int(v[0])
            if count > cap:
                logger.warning("Detection count too high, limiting from %d to %d", count, cap)
                count = cap
            offsets = [1 + i * GROUP_SIZE for i in range(count)]
        else:
            offsets = [off for off in range(0, n - (GROUP_SIZE - 1), GROUP_SIZE) if 0.0 < v[off + 4] <= 1.0]
            if len(offsets) > cap:
                logger.warning("Scanned %d groups, limiting to %d", len(offsets), cap)
                offsets = offsets[:cap]
        logger.debug("Flat output: %s path, %d groups", layout.value, len(offsets))

        detections: List[Detection] = []
        for off in offsets:
            if off + GROUP_SIZE > n:
                break
            x, y, w, h, conf, cls = v[off : off + GROUP_SIZE]
            det = self._to_detection(x, y, w, h, conf, cls)
            if det is not None:
                detections.append(det)

        return DecodeResult(layout=layout, declared_count=len(offsets), detections=detections)

    # ------------------------------------------------------------------ #
    # Anchors layout
    # ------------------------------------------------------------------ #
    def _decode_anchors(self, raw: RawOutput) -> DecodeResult:
        shape = tuple(raw.shape)
        if len(shape) == 3:
            if shape[0] != 1:
                raise OutputShapeError(f"Batch > 1 is not supported (got shape {shape}). Pass one image at a time.")
            shape = shape[1:]
        if len(shape) != 2 or shape[0] < 5:
            raise OutputShapeError(f"Expected a (4 + K, anchors) output, got shape {tuple(raw.shape)}")

        p = np.array(raw.values, dtype=np.float64).reshape(shape)
        boxes = p[0:4, :].T  # (A, 4) as cx, cy, w, h
        rest = p[4:, :]

        if rest.shape[0] == 1:
            scores = rest[0, :]
            class_ids = np.zeros(scores.shape[0], dtype=np.int64)
        else:
            class_ids = np.argmax(rest, axis=0)
            scores = rest[class_ids, np.arange(rest.shape[1])]

        # NaN scores compare False here and drop out with the low ones.
        idx = np.nonzero(scores >= self.cfg.conf_threshold)[0]

        detections: List[Detection] = []
        for i in idx:
            cx, cy, w, h = boxes[i]
            det = self._to_detection(cx, cy, w, h, scores[i], class_ids[i])
            if det is not None:
                detections.append(det)

        return DecodeResult(layout=OutputLayout.ANCHORS, declared_count=int(boxes.shape[0]), detections=detections)

    # ------------------------------------------------------------------ #
    # Per-candidate checks
    # ------------------------------------------------------------------ #
    def _to_detection(self, x: float, y: float, w: float, h: float, conf: float, cls: float) -> Optional[Detection]:
        conf = float(conf)
        if math.isnan(conf) or conf < self.cfg.conf_threshold or conf > 1.0:
            return None

        coords = (float(x), float(y), float(w), float(h))
        if not all(math.isfinite(c) for c in coords):
            logger.debug("Skipping detection with non-finite values: %s", coords)
            return None
        x, y, w, h = coords

        size = float(self.cfg.input_size)
        normalized = abs(x) <= 1 and abs(y) <= 1 and abs(w) <= 1 and abs(h) <= 1
        scale = size if normalized else 1.0

        x1 = (x - w / 2) * scale
        y1 = (y - h / 2) * scale
        x2 = (x + w / 2) * scale
        y2 = (y + h / 2) * scale

        if x1 >= x2 or y1 >= y2 or x2 <= 0 or y2 <= 0 or x1 >= size or y1 >= size:
            logger.debug("Skipping invalid box: %.1f,%.1f,%.1f,%.1f", x1, y1, x2, y2)
            return None

        cls = float(cls)
        return Detection(
            x1=x1,
            y1=y1,
            x2=x2,
            y2=y2,
            score=conf,
            class_id=int(cls) if math.isfinite(cls) else None,
        )
