from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence, Tuple, Union

import numpy as np

from .decode import DecodeConfig, OutputLayout, TensorDecoder
from .errors import PreconditionError
from .letterbox import compute_letterbox_params, letterbox, unmap_box
from .nms import NMSConfig, nms
from .types import Detection, Frame, LetterboxParams, RawOutput

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class Renderer(Protocol):
    def present(self, frame: Frame, detections: Sequence[Detection], notice: Optional[str] = None) -> None:
        ...


class PlaybackGate(Protocol):
    def on_first_detection(self) -> None:
        ...


class DetectionState:
    """
    Per-session "has anything been detected yet" flag.

    Set at most once; only a new session (a new instance) starts over. The lock
    makes it safe to flip from a worker thread.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._detected = False

    @property
    def has_detected_once(self) -> bool:
        with self._lock:
            return self._detected

    def mark_detected(self) -> bool:
        """Returns True only for the call that flips the flag."""
        with self._lock:
            if self._detected:
                return False
            self._detected = True
            return True


@dataclass(frozen=True)
class PipelineConfig:
    input_size: int = 640
    conf_threshold: float = 0.5
    iou_threshold: float = 0.45
    pad_color: Tuple[int, int, int] = (0, 0, 0)
    layout: str = "auto"
    # Keep only the highest-scoring box after NMS.
    best_box_only: bool = False
    max_detections: Optional[int] = None
    # NHWC blobs (TFLite-style exports) instead of NCHW.
    channels_last: bool = False

    def __post_init__(self) -> None:
        if self.input_size <= 0:
            raise ValueError("input_size must be > 0")
        if not 0.0 <= self.conf_threshold <= 1.0:
            raise ValueError("conf_threshold must be in [0, 1]")
        if not 0.0 <= self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be in [0, 1]")
        if self.max_detections is not None and self.max_detections < 1:
            raise ValueError("max_detections must be >= 1 when set")

    def decode_config(self) -> DecodeConfig:
        return DecodeConfig(input_size=self.input_size, conf_threshold=self.conf_threshold, layout=self.layout)

    def nms_config(self) -> NMSConfig:
        return NMSConfig(iou_threshold=self.iou_threshold, max_detections=self.max_detections)


@dataclass(frozen=True)
class PreprocessResult:
    blob: np.ndarray
    params: LetterboxParams


@dataclass
class FrameResult:
    frame: Frame
    params: LetterboxParams
    # Final boxes in original frame coordinates.
    detections: List[Detection] = field(default_factory=list)
    layout: Optional[OutputLayout] = None
    failed: bool = False
    error: Optional[BaseException] = None


class DetectionPipeline:
    """
    Per-frame driver: letterbox -> inference -> decode -> NMS -> unmap -> render.

    `analyze` does the numeric work and may run on a worker thread;
    `deliver` renders and advances the session state and belongs on the
    thread that owns the renderer. `process_frame` does both in one go.
    """

    def __init__(
        self,
        infer_fn: Callable[[np.ndarray], np.ndarray],
        renderer: Renderer,
        gate: PlaybackGate,
        cfg: PipelineConfig = PipelineConfig(),
    ):
        self._infer_fn = infer_fn
        self.renderer = renderer
        self.gate = gate
        self.cfg = cfg
        self.decoder = TensorDecoder(cfg.decode_config())

    def preprocess(self, frame: Frame, params: Optional[LetterboxParams] = None) -> PreprocessResult:
        if params is None:
            params = compute_letterbox_params(frame.width, frame.height, self.cfg.input_size)
        img = letterbox(frame.image, params, color=self.cfg.pad_color)

        # BGR -> RGB, normalize, add batch (NCHW unless channels_last)
        blob = img[:, :, ::-1].astype(np.float32) / 255.0
        if not self.cfg.channels_last:
            blob = np.transpose(blob, (2, 0, 1))
        blob = np.ascontiguousarray(blob[None, ...])

        return PreprocessResult(blob=blob, params=params)

    def analyze(self, frame: Frame) -> FrameResult:
        # Bad frame dimensions end the session, so they stay outside the fallback.
        params = compute_letterbox_params(frame.width, frame.height, self.cfg.input_size)
        try:
            prep = self.preprocess(frame, params)
            raw = RawOutput.from_array(self._infer_fn(prep.blob))
            decoded = self.decoder.decode(raw)
            if not decoded.detections:
                return FrameResult(frame=frame, params=params, layout=decoded.layout)

            candidates = decoded.detections
            boxes = np.array([d.as_xyxy() for d in candidates], dtype=np.float64)
            scores = np.array([d.score for d in candidates], dtype=np.float64)
            keep = nms(boxes, scores, self.cfg.nms_config())
            if self.cfg.best_box_only:
                keep = keep[:1]

            final: List[Detection] = []
            for i in keep:
                det = candidates[i]
                x1, y1, x2, y2 = unmap_box(det.as_xyxy(), params, frame.width, frame.height)
                if x1 >= x2 or y1 >= y2:
                    logger.debug("Dropping box clamped to zero area: %.1f,%.1f,%.1f,%.1f", x1, y1, x2, y2)
                    continue
                final.append(Detection(x1=x1, y1=y1, x2=x2, y2=y2, score=det.score, class_id=det.class_id))

            return FrameResult(frame=frame, params=params, detections=final, layout=decoded.layout)
        except PreconditionError:
            raise
        except Exception as exc:
            logger.exception("Inference error on frame %d", frame.index)
            return FrameResult(frame=frame, params=params, failed=True, error=exc)

    def deliver(self, result: FrameResult, state: DetectionState) -> FrameResult:
        if result.failed:
            self.renderer.present(result.frame, [], notice=f"Inference error: {result.error}")
            return result

        self.renderer.present(result.frame, result.detections)
        if result.detections and state.mark_detected():
            logger.info("First detection on frame %d, starting playback", result.frame.index)
            self.gate.on_first_detection()
        return result

    def process_frame(self, frame: Frame, state: DetectionState) -> FrameResult:
        return self.deliver(self.analyze(frame), state)


def load_pipeline(
    model_path: PathLike,
    renderer: Renderer,
    gate: PlaybackGate,
    *,
    cfg: PipelineConfig = PipelineConfig(),
    onnx_providers: Optional[Sequence[str]] = None,
    onnx_input_name: Optional[str] = None,
    onnx_output_name: Optional[str] = None,
) -> DetectionPipeline:
    """
    Create a pipeline for an ONNX model on disk.

    The model's declared input shape is checked against `cfg.input_size`, and
    NHWC inputs switch the blob layout automatically.
    """

    from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

    backend = OnnxRuntimeBackend(
        Path(model_path),
        OnnxRuntimeBackendConfig(
            providers=onnx_providers,
            input_name=onnx_input_name,
            output_name=onnx_output_name,
        ),
    )
    channels_last = backend.check_input(cfg.input_size)
    if channels_last != cfg.channels_last:
        cfg = replace(cfg, channels_last=channels_last)
    logger.info(
        "Loaded %s (input=%s, output=%s, providers=%s)",
        backend.model_path.name,
        backend.input_shape,
        backend.output_shape,
        ",".join(backend.providers_in_use),
    )
    return DetectionPipeline(backend.infer, renderer, gate, cfg)
