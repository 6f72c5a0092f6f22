"""
EdgeLearn Core - Numeric Precision Helpers

Weights are always held as float32 arrays; a model's ``precision_bits``
says which grid those values are snapped to. 16-bit is an fp16 round trip,
8-bit is symmetric per-tensor int8.
"""

import numpy as np

from ..core.errors import ValidationError
from ..core.types import ModelWeights

SUPPORTED_PRECISIONS = (32, 16, 8)


def quantize_array(values: np.ndarray, bits: int) -> np.ndarray:
    values = np.asarray(values, dtype=np.float32)
    if bits == 32:
        return values.copy()
    if bits == 16:
        return values.astype(np.float16).astype(np.float32)
    if bits == 8:
        max_abs = float(np.max(np.abs(values))) if values.size else 0.0
        if max_abs == 0.0:
            return values.copy()
        scale = max_abs / 127.0
        return (np.clip(np.round(values / scale), -127, 127) * scale).astype(np.float32)
    raise ValidationError(f"Unsupported precision: {bits} bits")


def requantize(weights: ModelWeights) -> ModelWeights:
    """Snap every layer onto the model's precision grid (in place)."""
    if weights.precision_bits == 32:
        return weights
    for layer in weights.layers:
        layer.weights = quantize_array(layer.weights, weights.precision_bits)
        layer.biases = quantize_array(layer.biases, weights.precision_bits)
    return weights


__all__ = ['SUPPORTED_PRECISIONS', 'quantize_array', 'requantize']
