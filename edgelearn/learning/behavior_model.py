"""
EdgeLearn Core - Behavior Model
Subsystem L: Learning (Method L1)

Small dense network mapping an anonymized context to a score per pattern
type. Weights live in numpy (``ModelWeights``) so they can be persisted,
compressed and quantized directly; gradients come from torch autograd over
a functional forward pass on those arrays.
"""

from typing import List, Optional, Sequence, Tuple
import time

import numpy as np
import torch

from ..core.config import TrainerConfig, DEFAULT_TRAINER_CONFIG
from ..core.types import (
    AnonymizedContext,
    LayerKind,
    LayerWeights,
    ModelWeights,
    PATTERN_TYPES,
    PatternType,
    PerformanceMetrics,
    SanitizedPattern,
    TimeOfDay,
)

TIME_SLOTS: Tuple[TimeOfDay, ...] = tuple(TimeOfDay)
FLAG_FEATURES = (
    "is_weekend",
    "is_holiday",
    "has_natural_light",
    "is_quiet",
    "is_alone",
    "family_present",
    "guest_present",
    "voice_input",
    "is_online",
)
FEATURE_DIM = len(TIME_SLOTS) + len(FLAG_FEATURES)
OUTPUT_DIM = len(PATTERN_TYPES)

# Per-layer gradient: (dW, db)
LayerGradients = List[Tuple[np.ndarray, np.ndarray]]


# =============================================================================
# Encoding
# =============================================================================

def encode_context(context: AnonymizedContext) -> np.ndarray:
    x = np.zeros(FEATURE_DIM, dtype=np.float64)
    if context.time_of_day is not None:
        x[TIME_SLOTS.index(context.time_of_day)] = 1.0
    offset = len(TIME_SLOTS)
    for i, name in enumerate(FLAG_FEATURES):
        x[offset + i] = 1.0 if getattr(context, name) else 0.0
    return x


def target_vector(pattern_type: PatternType, value: float = 1.0) -> np.ndarray:
    y = np.zeros(OUTPUT_DIM, dtype=np.float64)
    y[PATTERN_TYPES.index(pattern_type)] = value
    return y


def encode_patterns(patterns: Sequence[SanitizedPattern]) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Features, one-hot targets and strength weights for a batch."""
    X = np.stack([encode_context(p.context) for p in patterns])
    Y = np.stack([target_vector(p.type) for p in patterns])
    S = np.array([p.strength for p in patterns], dtype=np.float64)
    return X, Y, S


# =============================================================================
# Architecture
# =============================================================================

def initialize_weights(config: Optional[TrainerConfig] = None) -> ModelWeights:
    """Default architecture: FEATURE_DIM -> hidden (relu) -> OUTPUT_DIM (linear)."""
    config = config or DEFAULT_TRAINER_CONFIG
    rng = np.random.default_rng(config.init_seed)
    hidden = LayerWeights(
        weights=rng.normal(0.0, config.init_scale, (FEATURE_DIM, config.hidden_units)).astype(np.float32),
        biases=np.zeros(config.hidden_units, dtype=np.float32),
        kind=LayerKind.DENSE,
        activation="relu",
    )
    output = LayerWeights(
        weights=rng.normal(0.0, config.init_scale, (config.hidden_units, OUTPUT_DIM)).astype(np.float32),
        biases=np.zeros(OUTPUT_DIM, dtype=np.float32),
        kind=LayerKind.DENSE,
        activation="linear",
    )
    return ModelWeights(layers=[hidden, output], version=0)


def _activate(h, activation: str):
    if activation == "relu":
        return np.maximum(h, 0.0)
    if activation == "sigmoid":
        return 1.0 / (1.0 + np.exp(-h))
    return h


def forward(weights: ModelWeights, X: np.ndarray) -> np.ndarray:
    h = np.asarray(X, dtype=np.float64)
    for layer in weights.layers:
        h = _activate(h @ layer.weights.astype(np.float64) + layer.biases.astype(np.float64), layer.activation)
    return h


def _torch_forward(params: List[Tuple[torch.Tensor, torch.Tensor]], activations: List[str], x: torch.Tensor):
    h = x
    for (W, b), activation in zip(params, activations):
        h = h @ W + b
        if activation == "relu":
            h = torch.relu(h)
        elif activation == "sigmoid":
            h = torch.sigmoid(h)
    return h


def loss_and_gradients(
    weights: ModelWeights,
    X: np.ndarray,
    Y: np.ndarray,
    S: np.ndarray,
) -> Tuple[float, LayerGradients]:
    """
    Strength-weighted mean of 0.5 * ||f(x) - y||^2 and its gradient per layer.

    Caller guarantees ``S.sum() > 0``.
    """
    params = []
    flat = []
    for layer in weights.layers:
        W = torch.tensor(layer.weights, dtype=torch.float64, requires_grad=True)
        b = torch.tensor(layer.biases, dtype=torch.float64, requires_grad=True)
        params.append((W, b))
        flat.extend([W, b])

    x = torch.as_tensor(X, dtype=torch.float64)
    y = torch.as_tensor(Y, dtype=torch.float64)
    s = torch.as_tensor(S, dtype=torch.float64)

    out = _torch_forward(params, [layer.activation for layer in weights.layers], x)
    per_sample = 0.5 * ((out - y) ** 2).sum(dim=1)
    loss = (s * per_sample).sum() / s.sum()

    grads = torch.autograd.grad(loss, flat)
    layer_grads = [
        (grads[2 * i].detach().numpy(), grads[2 * i + 1].detach().numpy())
        for i in range(len(weights.layers))
    ]
    return float(loss.item()), layer_grads


def gradient_norm(gradients: LayerGradients) -> float:
    return float(np.sqrt(sum(np.sum(dW ** 2) + np.sum(db ** 2) for dW, db in gradients)))


# =============================================================================
# Evaluation
# =============================================================================

def prediction_confidence(outputs: np.ndarray) -> np.ndarray:
    """Margin between the top two scores, clipped to [0, 1]."""
    if outputs.shape[1] < 2:
        return np.ones(outputs.shape[0])
    top2 = np.sort(outputs, axis=1)[:, -2:]
    return np.clip(top2[:, 1] - top2[:, 0], 0.0, 1.0)


def evaluate(weights: ModelWeights, X: np.ndarray, Y: np.ndarray, S: np.ndarray) -> PerformanceMetrics:
    """Strength-weighted classification metrics on a batch."""
    start = time.perf_counter()
    outputs = forward(weights, X)
    latency_ms = (time.perf_counter() - start) * 1000.0 / max(len(X), 1)

    w = S if S.sum() > 0 else np.ones_like(S)
    w = w / w.sum()
    predicted = outputs.argmax(axis=1)
    truth = Y.argmax(axis=1)
    correct = predicted == truth

    precisions, recalls, f1s = [], [], []
    for c in np.unique(truth):
        tp = w[(predicted == c) & correct].sum()
        predicted_mass = w[predicted == c].sum()
        actual_mass = w[truth == c].sum()
        precision = tp / predicted_mass if predicted_mass > 0 else 0.0
        recall = tp / actual_mass if actual_mass > 0 else 0.0
        f1 = 2 * precision * recall / (precision + recall) if precision + recall > 0 else 0.0
        precisions.append(precision)
        recalls.append(recall)
        f1s.append(f1)

    return PerformanceMetrics(
        accuracy=float(w[correct].sum()),
        precision=float(np.mean(precisions)),
        recall=float(np.mean(recalls)),
        f1_score=float(np.mean(f1s)),
        confidence=float(np.sum(w * prediction_confidence(outputs))),
        latency_ms=float(latency_ms),
        memory_usage_mb=weights.memory_footprint_mb,
    )


def probe_contexts() -> List[AnonymizedContext]:
    """Fixed grid of contexts used to inspect a model without user data."""
    grid = []
    for slot in TIME_SLOTS:
        for weekend in (False, True):
            for quiet in (False, True):
                for alone in (False, True):
                    grid.append(AnonymizedContext(
                        time_of_day=slot, is_weekend=weekend, is_quiet=quiet, is_alone=alone,
                    ))
    return grid


__all__ = [
    'FEATURE_DIM',
    'OUTPUT_DIM',
    'LayerGradients',
    'encode_context',
    'target_vector',
    'encode_patterns',
    'initialize_weights',
    'forward',
    'loss_and_gradients',
    'gradient_norm',
    'prediction_confidence',
    'evaluate',
    'probe_contexts',
]
