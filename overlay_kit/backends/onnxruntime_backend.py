from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from ..errors import OutputShapeError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
# Dynamic dims come back from ORT as strings (e.g. "batch") or None.
Dim = Union[int, str, None]


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers (e.g., ["CUDAExecutionProvider", "CPUExecutionProvider"])
    - input_name/output_name: override auto-selected I/O names if needed
    """

    providers: Optional[Sequence[str]] = None
    input_name: Optional[str] = None
    output_name: Optional[str] = None


def _static(dim: Dim) -> Optional[int]:
    return dim if isinstance(dim, int) and dim > 0 else None


class OnnxRuntimeBackend:
    """
    Minimal ONNX Runtime backend.

    Expects a float32 blob shaped (1, 3, S, S) or (1, S, S, 3) and returns the
    primary output as a NumPy array. Input/output shapes are read from the
    session so callers can validate them before the first frame.
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime` "
                "(or `onnxruntime-gpu`)."
            ) from e

        self._ort = ort
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        sess_opts = ort.SessionOptions()
        providers = list(cfg.providers) if cfg.providers is not None else None
        self.session = ort.InferenceSession(str(self.model_path), sess_options=sess_opts, providers=providers)

        inputs = {i.name: i for i in self.session.get_inputs()}
        outputs = {o.name: o for o in self.session.get_outputs()}
        self.input_name = cfg.input_name or self.session.get_inputs()[0].name
        # If output_name not provided, pick first output.
        self.output_name = cfg.output_name or self.session.get_outputs()[0].name
        if self.input_name not in inputs:
            raise ValueError(f"Unknown input name {self.input_name!r}; model has {sorted(inputs)}")
        if self.output_name not in outputs:
            raise ValueError(f"Unknown output name {self.output_name!r}; model has {sorted(outputs)}")

        self.input_shape: Tuple[Dim, ...] = tuple(inputs[self.input_name].shape)
        self.output_shape: Tuple[Dim, ...] = tuple(outputs[self.output_name].shape)

    @property
    def providers_in_use(self) -> Sequence[str]:
        # ORT returns providers in priority order for this session.
        return tuple(self.session.get_providers())

    def check_input(self, input_size: int) -> bool:
        """
        Validate the declared shapes against a square `input_size` input.

        Returns True when the model takes NHWC input, False for NCHW.
        """

        shape = self.input_shape
        if len(shape) != 4:
            raise OutputShapeError(f"Expected a 4-D image input, model declares {shape}")

        if _static(shape[1]) == 3:
            channels_last, spatial = False, shape[2:4]
        elif _static(shape[3]) == 3:
            channels_last, spatial = True, shape[1:3]
        else:
            raise OutputShapeError(f"Cannot find a 3-channel axis in input shape {shape}")

        for dim in spatial:
            size = _static(dim)
            if size is not None and size != input_size:
                raise OutputShapeError(f"Model input is {shape}, configured input_size is {input_size}")

        if len(self.output_shape) not in (2, 3):
            raise OutputShapeError(f"Expected a (1, N) or (1, C, A) output, model declares {self.output_shape}")
        batch = _static(self.output_shape[0])
        if batch is not None and batch != 1:
            raise OutputShapeError(f"Batch > 1 is not supported (output shape {self.output_shape})")

        logger.debug("ONNX input %s (%s), output %s", shape, "NHWC" if channels_last else "NCHW", self.output_shape)
        return channels_last

    def infer(self, blob: np.ndarray) -> np.ndarray:
        outputs = self.session.run([self.output_name], {self.input_name: blob})
        return outputs[0]
