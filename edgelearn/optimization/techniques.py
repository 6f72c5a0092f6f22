"""
EdgeLearn Core - Optimization Techniques
Subsystem O: Hardware-Aware Optimization (Method O1)

Each technique takes a copy of the model and returns a TechniqueOutcome.

Real transforms (change the weights, deltas are measured):
    - model_pruning / aggressive_pruning: per-layer magnitude pruning
    - quantization / aggressive_quantization: fp16 / int8 grid
    - model_compression: drop near-zero values, CSR encoding when smaller
    - aggressive_compression: pruning + int8 + CSR
    - feature_selection: zero the weakest input rows of the first layer
    - architecture_optimization: remove dead hidden units
    - model_distillation: keep the most salient hidden units, fold the
      rest into the next layer's bias

Runtime techniques (no weight change). Their effect comes from the
deterministic table in SIMULATED_EFFECTS, scaled by the live snapshot:
    ensemble_methods, data_augmentation, hyperparameter_tuning,
    thermal_optimization, dynamic_inference, gradient_checkpointing,
    gpu_memory_optimization, tensor_fusion, power_optimization
"""

from typing import Callable, Dict, List
from dataclasses import dataclass
from enum import Enum

import numpy as np

from ..core.config import OptimizerConfig, PlatformLimits
from ..core.errors import ValidationError
from ..core.types import HardwareSnapshot, LayerWeights, ModelWeights
from ..learning.precision import quantize_array


class Technique(Enum):
    PRUNING = "model_pruning"
    QUANTIZATION = "quantization"
    ARCHITECTURE_OPTIMIZATION = "architecture_optimization"
    COMPRESSION = "model_compression"
    FEATURE_SELECTION = "feature_selection"
    ENSEMBLING = "ensemble_methods"
    AUGMENTATION = "data_augmentation"
    TUNING = "hyperparameter_tuning"
    THERMAL_OPTIMIZATION = "thermal_optimization"
    DYNAMIC_INFERENCE = "dynamic_inference"
    DISTILLATION = "model_distillation"
    AGGRESSIVE_COMPRESSION = "aggressive_compression"
    GRADIENT_CHECKPOINTING = "gradient_checkpointing"
    GPU_MEMORY_OPTIMIZATION = "gpu_memory_optimization"
    TENSOR_FUSION = "tensor_fusion"
    POWER_OPTIMIZATION = "power_optimization"
    AGGRESSIVE_PRUNING = "aggressive_pruning"
    AGGRESSIVE_QUANTIZATION = "aggressive_quantization"


# Substitutions applied when hardware state worsens mid-run
THERMAL_VARIANTS = {
    Technique.PRUNING: Technique.AGGRESSIVE_PRUNING,
    Technique.QUANTIZATION: Technique.AGGRESSIVE_QUANTIZATION,
}
MEMORY_VARIANTS = {
    Technique.COMPRESSION: Technique.AGGRESSIVE_COMPRESSION,
}

NEAR_ZERO_RATIO = 0.01  # Relative to the layer's max |w|


@dataclass
class TechniqueOutcome:
    weights: ModelWeights
    simulated: bool
    simulated_improvement_pct: float = 0.0


# =============================================================================
# Cost model
# =============================================================================

def compute_cost_ms(weights: ModelWeights, snapshot: HardwareSnapshot, limits: PlatformLimits) -> float:
    """Inference compute time: nonzero MACs, scaled by precision and clock."""
    macs = sum(int(np.count_nonzero(layer.weights)) for layer in weights.layers)
    precision_factor = weights.precision_bits / 32.0
    clock_factor = limits.nominal_clock_ghz / snapshot.clock_ghz if snapshot.clock_ghz > 0 else 1.0
    return macs / 1e6 * limits.ms_per_mmac * precision_factor * clock_factor


def estimate_latency_ms(weights: ModelWeights, snapshot: HardwareSnapshot, limits: PlatformLimits) -> float:
    return limits.inference_overhead_ms + compute_cost_ms(weights, snapshot, limits)


# =============================================================================
# Real transforms
# =============================================================================

def magnitude_prune(weights: ModelWeights, ratio: float) -> ModelWeights:
    """Zero the smallest ``ratio`` of each layer's remaining weights."""
    if not 0.0 <= ratio < 1.0:
        raise ValidationError(f"Pruning ratio must be in [0, 1): {ratio}")
    for layer in weights.layers:
        magnitudes = np.abs(layer.weights[layer.weights != 0])
        k = int(np.floor(ratio * magnitudes.size))
        if k == 0:
            continue
        threshold = np.partition(magnitudes, k - 1)[k - 1]
        layer.weights = np.where(np.abs(layer.weights) <= threshold, 0.0, layer.weights).astype(np.float32)
    return weights


def quantize(weights: ModelWeights, bits: int) -> ModelWeights:
    if bits >= weights.precision_bits:
        return weights
    weights.precision_bits = bits
    for layer in weights.layers:
        layer.weights = quantize_array(layer.weights, bits)
        layer.biases = quantize_array(layer.biases, bits)
    return weights


def drop_near_zero(weights: ModelWeights, ratio: float = NEAR_ZERO_RATIO) -> ModelWeights:
    for layer in weights.layers:
        max_abs = float(np.max(np.abs(layer.weights))) if layer.weights.size else 0.0
        if max_abs > 0:
            layer.weights = np.where(np.abs(layer.weights) < ratio * max_abs, 0.0, layer.weights).astype(np.float32)
    return weights


def encode_sparse_if_smaller(weights: ModelWeights) -> ModelWeights:
    weights.sparse = weights.footprint_bytes(sparse=True) < weights.footprint_bytes(sparse=False)
    return weights


def select_features(weights: ModelWeights, ratio: float) -> ModelWeights:
    """Zero the input rows of the first layer with the lowest L2 norm."""
    first = weights.layers[0]
    norms = np.linalg.norm(first.weights, axis=1)
    active = np.flatnonzero(norms > 0)
    k = int(np.floor(ratio * active.size))
    if k == 0:
        return weights
    weakest = active[np.argsort(norms[active])[:k]]
    first.weights = first.weights.copy()
    first.weights[weakest, :] = 0.0
    return weights


def _keep_units(weights: ModelWeights, index: int, keep: np.ndarray) -> None:
    """Restrict layer ``index`` outputs (and layer ``index+1`` inputs) to ``keep``."""
    layer, nxt = weights.layers[index], weights.layers[index + 1]
    weights.layers[index] = LayerWeights(
        weights=layer.weights[:, keep].astype(np.float32),
        biases=layer.biases[keep].astype(np.float32),
        kind=layer.kind,
        activation=layer.activation,
    )
    weights.layers[index + 1] = LayerWeights(
        weights=nxt.weights[keep, :].astype(np.float32),
        biases=nxt.biases.astype(np.float32),
        kind=nxt.kind,
        activation=nxt.activation,
    )


def remove_dead_units(weights: ModelWeights) -> ModelWeights:
    """
    Drop hidden units that can never influence the output: no incoming
    weights with a non-positive relu bias, or no outgoing weights.
    """
    for i in range(len(weights.layers) - 1):
        layer, nxt = weights.layers[i], weights.layers[i + 1]
        no_input = ~np.any(layer.weights != 0, axis=0)
        if layer.activation == "relu":
            no_input &= layer.biases <= 0
        else:
            no_input[:] = False
        no_output = ~np.any(nxt.weights != 0, axis=1)
        keep = np.flatnonzero(~(no_input | no_output))
        if keep.size == 0:
            keep = np.array([int(np.argmax(np.abs(layer.biases)))])
        if keep.size < layer.output_dim:
            _keep_units(weights, i, keep)
    return weights


def distill_width(weights: ModelWeights, keep_ratio: float) -> ModelWeights:
    """
    Structured width reduction. Units are ranked by ||w_in|| * ||w_out||;
    dropped relu units contribute relu(bias) * w_out to the next bias.
    """
    for i in range(len(weights.layers) - 1):
        layer, nxt = weights.layers[i], weights.layers[i + 1]
        width = layer.output_dim
        n_keep = max(1, int(np.ceil(keep_ratio * width)))
        if n_keep >= width:
            continue
        saliency = np.linalg.norm(layer.weights, axis=0) * np.linalg.norm(nxt.weights, axis=1)
        order = np.argsort(-saliency, kind="stable")
        keep = np.sort(order[:n_keep])
        dropped = np.sort(order[n_keep:])
        if layer.activation == "relu":
            resting = np.maximum(layer.biases[dropped], 0.0)
        elif layer.activation == "linear":
            resting = layer.biases[dropped]
        else:
            resting = np.zeros(dropped.size)
        folded_bias = nxt.biases + resting @ nxt.weights[dropped, :]
        _keep_units(weights, i, keep)
        weights.layers[i + 1].biases = folded_bias.astype(np.float32)
    return weights


def _aggressive_compression(weights: ModelWeights, config: OptimizerConfig) -> ModelWeights:
    magnitude_prune(weights, config.aggressive_compression_pruning)
    quantize(weights, 8)
    return encode_sparse_if_smaller(weights)


def _next_precision(weights: ModelWeights) -> int:
    return 16 if weights.precision_bits > 16 else 8


REAL_TECHNIQUES: Dict[Technique, Callable[[ModelWeights, OptimizerConfig], ModelWeights]] = {
    Technique.PRUNING: lambda w, c: magnitude_prune(w, c.pruning_ratio),
    Technique.AGGRESSIVE_PRUNING: lambda w, c: magnitude_prune(w, c.aggressive_pruning_ratio),
    Technique.QUANTIZATION: lambda w, c: quantize(w, _next_precision(w)),
    Technique.AGGRESSIVE_QUANTIZATION: lambda w, c: quantize(w, 8),
    Technique.COMPRESSION: lambda w, c: encode_sparse_if_smaller(drop_near_zero(w)),
    Technique.AGGRESSIVE_COMPRESSION: _aggressive_compression,
    Technique.FEATURE_SELECTION: lambda w, c: select_features(w, c.feature_selection_ratio),
    Technique.ARCHITECTURE_OPTIMIZATION: lambda w, c: remove_dead_units(w),
    Technique.DISTILLATION: lambda w, c: distill_width(w, c.distillation_keep_ratio),
}


# =============================================================================
# Runtime techniques (documented deterministic effects, percent)
# =============================================================================

SIMULATED_EFFECTS: Dict[Technique, Callable[[HardwareSnapshot, PlatformLimits], float]] = {
    Technique.ENSEMBLING: lambda s, l: 3.0,
    Technique.AUGMENTATION: lambda s, l: 2.0,
    Technique.TUNING: lambda s, l: 4.0,
    Technique.THERMAL_OPTIMIZATION: lambda s, l: 25.0 if s.thermal_throttling else 15.0,
    Technique.DYNAMIC_INFERENCE: lambda s, l: 10.0 + 10.0 * min(max(s.cpu_util, 0.0), 1.0),
    Technique.GRADIENT_CHECKPOINTING: lambda s, l: 5.0 + 10.0 * min(max(s.memory_pressure, 0.0), 1.0),
    Technique.GPU_MEMORY_OPTIMIZATION: lambda s, l: 10.0 + 20.0 * min(max(s.gpu_util, 0.0), 1.0),
    Technique.TENSOR_FUSION: lambda s, l: 8.0 + 7.0 * min(max(s.gpu_util, 0.0), 1.0),
    Technique.POWER_OPTIMIZATION: lambda s, l: 5.0 + 10.0 * min(s.power_w / l.power_budget_w, 1.0),
}


def run_technique(
    technique: Technique,
    weights: ModelWeights,
    snapshot: HardwareSnapshot,
    config: OptimizerConfig,
    limits: PlatformLimits,
) -> TechniqueOutcome:
    """Apply ``technique`` to a copy of ``weights``."""
    if technique in REAL_TECHNIQUES:
        return TechniqueOutcome(weights=REAL_TECHNIQUES[technique](weights.copy(), config), simulated=False)
    if technique in SIMULATED_EFFECTS:
        return TechniqueOutcome(
            weights=weights,
            simulated=True,
            simulated_improvement_pct=float(SIMULATED_EFFECTS[technique](snapshot, limits)),
        )
    raise ValidationError(f"Unknown optimization technique: {technique}")


def dedupe(techniques: List[Technique]) -> List[Technique]:
    seen = set()
    ordered = []
    for technique in techniques:
        if technique not in seen:
            seen.add(technique)
            ordered.append(technique)
    return ordered


__all__ = [
    'Technique',
    'THERMAL_VARIANTS',
    'MEMORY_VARIANTS',
    'TechniqueOutcome',
    'compute_cost_ms',
    'estimate_latency_ms',
    'magnitude_prune',
    'quantize',
    'drop_near_zero',
    'encode_sparse_if_smaller',
    'select_features',
    'remove_dead_units',
    'distill_width',
    'REAL_TECHNIQUES',
    'SIMULATED_EFFECTS',
    'run_technique',
    'dedupe',
]
