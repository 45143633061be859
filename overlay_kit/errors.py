from __future__ import annotations


class PreconditionError(ValueError):
    """
    Invalid input that makes the whole session unusable (bad frame size,
    unusable engine shape). Never swallowed by the per-frame fallback.
    """


class OutputShapeError(PreconditionError):
    """Inference engine declared a tensor shape the decoder cannot consume."""
