"""
EdgeLearn Core - Learning
Subsystem L: Elastic Weight Consolidation (Method L2)

Purpose:
    Protect parameters shaped by earlier cycles from being overwritten by
    new patterns (catastrophic forgetting).

Importance is a diagonal Fisher proxy computed per layer from the current
weights: the mean squared parameter magnitude. Layers that prior learning
has pushed far from their small initialization carry more importance, and
their gradients are shrunk by ``1 / (1 + lambda * F_l)``.
"""

from typing import List

import numpy as np
from loguru import logger

from ..core.errors import ValidationError
from ..core.types import ModelWeights
from .behavior_model import LayerGradients


class EWCRegularizer:
    """
    Per-layer EWC penalty.

    Example:
        >>> ewc = EWCRegularizer()
        >>> importance = ewc.compute_importance(weights)
        >>> penalized = ewc.penalize(gradients, importance, strength=1.0)
    """

    def compute_importance(self, weights: ModelWeights) -> np.ndarray:
        """One non-negative scalar per layer."""
        importance = np.array([
            (np.sum(layer.weights.astype(np.float64) ** 2) + np.sum(layer.biases.astype(np.float64) ** 2))
            / max(layer.size, 1)
            for layer in weights.layers
        ])
        return np.nan_to_num(importance, nan=0.0, posinf=0.0)

    def penalize(self, gradients: LayerGradients, importance: np.ndarray, strength: float) -> LayerGradients:
        """
        Subtract the consolidation correction ``g * lF / (1 + lF)`` per layer.

        The result has exactly the input shapes; strength 0 returns the
        gradients unchanged.
        """
        if len(gradients) != len(importance):
            raise ValidationError(
                "Importance length does not match layer count",
                context={"layers": len(gradients), "importance": len(importance)},
            )
        if strength < 0:
            raise ValidationError("Regularization strength must be non-negative", context={"strength": strength})
        if strength == 0:
            return [(dW.copy(), db.copy()) for dW, db in gradients]

        penalized = []
        for (dW, db), fisher in zip(gradients, importance):
            factor = 1.0 / (1.0 + strength * max(float(fisher), 0.0))
            penalized.append((dW * factor, db * factor))
        return penalized

    def consolidation_loss(self, before: ModelWeights, after: ModelWeights, importance: np.ndarray) -> float:
        """Sum over layers of F_l * ||w_after - w_before||^2."""
        self._check_compatible(before, after, importance)
        loss = 0.0
        for fisher, old, new in zip(importance, before.layers, after.layers):
            delta = np.sum((new.weights.astype(np.float64) - old.weights) ** 2)
            delta += np.sum((new.biases.astype(np.float64) - old.biases) ** 2)
            loss += float(fisher) * float(delta)
        return loss

    def _check_compatible(self, before: ModelWeights, after: ModelWeights, importance: np.ndarray) -> None:
        if not (len(before.layers) == len(after.layers) == len(importance)):
            raise ValidationError("Layer counts differ between weights and importance")
        for old, new in zip(before.layers, after.layers):
            if old.weights.shape != new.weights.shape or old.biases.shape != new.biases.shape:
                logger.error(f"EWC shape mismatch: {old.weights.shape} vs {new.weights.shape}")
                raise ValidationError("Layer shapes differ between weight sets")


def layer_update_norms(gradients: LayerGradients) -> List[float]:
    return [float(np.sqrt(np.sum(dW ** 2) + np.sum(db ** 2))) for dW, db in gradients]


__all__ = ['EWCRegularizer', 'layer_update_norms']
