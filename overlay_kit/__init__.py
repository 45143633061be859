"""
Detection core for the overlay player.

Letterbox geometry, raw-output decoding, NMS and the per-frame driver. Only
NumPy is needed at import time; OpenCV is imported lazily for resizing and
drawing, and inference runtimes live under `overlay_kit.backends`.
"""

from .types import Detection, Frame, LetterboxParams, RawOutput
from .errors import OutputShapeError, PreconditionError
from .letterbox import compute_letterbox_params, letterbox, map_box, unmap_box
from .nms import NMSConfig, iou, nms
from .decode import DecodeConfig, DecodeResult, OutputLayout, TensorDecoder, classify_flat_layout
from .runtime import DetectionPipeline, DetectionState, FrameResult, PipelineConfig, load_pipeline
from .visualize import draw_detections, draw_notice

__all__ = [
    "Detection",
    "Frame",
    "LetterboxParams",
    "RawOutput",
    "OutputShapeError",
    "PreconditionError",
    "compute_letterbox_params",
    "letterbox",
    "map_box",
    "unmap_box",
    "NMSConfig",
    "iou",
    "nms",
    "DecodeConfig",
    "DecodeResult",
    "OutputLayout",
    "TensorDecoder",
    "classify_flat_layout",
    "DetectionPipeline",
    "DetectionState",
    "FrameResult",
    "PipelineConfig",
    "load_pipeline",
    "draw_detections",
    "draw_notice",
]
