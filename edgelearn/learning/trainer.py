"""
EdgeLearn Core - Learning
Subsystem L: Incremental Trainer (Method L3)

Purpose:
    Refine one user's behavior model from a batch of sanitized patterns
    while keeping earlier learning (EWC) and the memory ceiling intact.

Round:
    1. Load weights (or create the default architecture)
    2. Compute EWC importance on the current weights
    3. Strength-weighted gradients on deterministic mini-batches
    4. Clip on the raw gradient norm, EWC-penalize, step: w' = w - lr * c * g
    5. Repeat until ||g|| < tolerance or the step budget is spent
    6. Check the candidate footprint against the ceiling
    7. Persist the candidate with a single save

The candidate is built entirely in memory. A failed round never reaches
the store.
"""

from typing import List, Optional, Sequence, Tuple
import math
import time

import numpy as np
from loguru import logger

from ..core.config import TrainerConfig, PlatformLimits, DEFAULT_TRAINER_CONFIG, DEFAULT_PLATFORM_LIMITS
from ..core.errors import LearningEngineError, ResourceExhaustionError, TrainingError, ValidationError
from ..core.types import (
    AnonymizedContext,
    FederatedSession,
    IncrementalUpdate,
    ModelWeights,
    PatternContext,
    PatternType,
    SanitizedPattern,
)
from ..privacy.anonymize import pseudonymize, DEFAULT_SALT
from ..storage.store import WeightStore
from .behavior_model import (
    LayerGradients,
    encode_context,
    encode_patterns,
    evaluate,
    forward,
    gradient_norm,
    initialize_weights,
    loss_and_gradients,
)
from .ewc import EWCRegularizer
from .precision import requantize


def validate_patterns(patterns: Sequence, max_patterns: int) -> None:
    """Reject malformed batches before anything is mutated."""
    if not patterns:
        raise ValidationError("No patterns provided for training")
    if len(patterns) > max_patterns:
        raise ValidationError(
            f"Too many patterns: {len(patterns)} > {max_patterns}",
            context={"pattern_count": len(patterns), "max_patterns": max_patterns},
        )
    for i, pattern in enumerate(patterns):
        problems = []
        if not isinstance(getattr(pattern, "type", None), PatternType):
            problems.append("unknown pattern type")
        strength = getattr(pattern, "strength", None)
        if not isinstance(strength, (int, float)) or not math.isfinite(strength) or not 0.0 <= strength <= 1.0:
            problems.append("strength must be in [0, 1]")
        frequency = getattr(pattern, "frequency", None)
        if not isinstance(frequency, (int, float)) or not math.isfinite(frequency) or frequency < 0:
            problems.append("frequency must be >= 0")
        if hasattr(pattern, "id") and not pattern.id:
            problems.append("missing pattern id")
        context = getattr(pattern, "context", None)
        expected = AnonymizedContext if isinstance(pattern, SanitizedPattern) else PatternContext
        if not isinstance(context, expected):
            problems.append(f"context must be a {expected.__name__}")
        elif isinstance(context, PatternContext):
            problems.extend(context.validation_errors())
        if problems:
            raise ValidationError(
                f"Invalid pattern at index {i}: {', '.join(problems)}",
                context={"index": i, "problems": problems},
            )


class IncrementalTrainer:
    """
    EWC-regularized incremental trainer.

    Example:
        >>> trainer = IncrementalTrainer(InMemoryWeightStore())
        >>> update = trainer.update("user-1", sanitized, session)
        >>> update.convergence_score
    """

    def __init__(
        self,
        store: WeightStore,
        config: Optional[TrainerConfig] = None,
        platform: Optional[PlatformLimits] = None,
        ewc: Optional[EWCRegularizer] = None,
        salt: str = DEFAULT_SALT,
    ):
        self.store = store
        self.config = config or DEFAULT_TRAINER_CONFIG
        self.platform = platform or DEFAULT_PLATFORM_LIMITS
        self.ewc = ewc or EWCRegularizer()
        self._salt = salt

    def learning_rate(self, strengths: Sequence[float]) -> float:
        mean_strength = float(np.mean(strengths)) if len(strengths) else 0.0
        lr = self.config.base_learning_rate * (1.0 + self.config.strength_lr_gain * mean_strength)
        return min(lr, self.config.max_learning_rate)

    def load_or_initialize(self, user_id: str) -> ModelWeights:
        weights = self.store.load(user_id)
        if weights is None:
            weights = initialize_weights(self.config)
            logger.info(f"Initialized default model for {pseudonymize(user_id, self._salt)} ({weights.total_parameters} params)")
        return weights

    # =========================================================================
    # Public operations
    # =========================================================================

    def update(self, user_id: str, patterns: Sequence[SanitizedPattern], session: FederatedSession) -> IncrementalUpdate:
        validate_patterns(patterns, self.config.max_patterns)
        start = time.perf_counter()
        try:
            current = self.load_or_initialize(user_id)
            X, Y, S = encode_patterns(patterns)
            return self._train(user_id, current, X, Y, S, session, self.config.max_local_steps)
        except LearningEngineError:
            raise
        except Exception as exc:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            logger.error(f"Training failed for {pseudonymize(user_id, self._salt)} after {elapsed_ms:.1f}ms: {exc}")
            raise TrainingError(f"Training failed: {exc}", user_id, len(patterns), elapsed_ms, cause=exc) from exc

    def apply_feedback(
        self,
        user_id: str,
        context: AnonymizedContext,
        pattern_type: PatternType,
        target_score: float,
        session: FederatedSession,
    ) -> IncrementalUpdate:
        """
        One regularized step moving the score for ``pattern_type`` in
        ``context`` towards ``target_score``. Other outputs are held at
        their current values.
        """
        start = time.perf_counter()
        try:
            current = self.load_or_initialize(user_id)
            X = encode_context(context)[None, :]
            Y = forward(current, X)
            Y[0, list(PatternType).index(pattern_type)] = float(np.clip(target_score, 0.0, 1.0))
            S = np.ones(1)
            return self._train(user_id, current, X, Y, S, session, max_steps=1)
        except LearningEngineError:
            raise
        except Exception as exc:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            raise TrainingError(f"Feedback update failed: {exc}", user_id, 1, elapsed_ms, cause=exc) from exc

    # =========================================================================
    # Internals
    # =========================================================================

    def _train(
        self,
        user_id: str,
        current: ModelWeights,
        X: np.ndarray,
        Y: np.ndarray,
        S: np.ndarray,
        session: FederatedSession,
        max_steps: int,
    ) -> IncrementalUpdate:
        importance = self.ewc.compute_importance(current)
        candidate, trajectory = self._local_round(current, X, Y, S, importance, session, max_steps)

        if not trajectory:
            logger.warning(f"All pattern strengths were zero for {pseudonymize(user_id, self._salt)}; weights unchanged")
            return IncrementalUpdate(
                weights_updated=False,
                model_version=current.version,
                memory_usage_mb=current.memory_footprint_mb,
                convergence_score=0.0,
                score_trajectory=[],
                metrics=evaluate(current, X, Y, S),
                ewc_loss=0.0,
                local_steps=0,
            )

        requantize(candidate)
        candidate.version = current.version + 1

        footprint = candidate.memory_footprint_mb
        if footprint > self.platform.model_memory_ceiling_mb:
            logger.warning(
                f"Discarding candidate for {pseudonymize(user_id, self._salt)}: "
                f"{footprint:.3f}MB exceeds ceiling {self.platform.model_memory_ceiling_mb:.3f}MB"
            )
            raise ResourceExhaustionError(
                "Model memory ceiling exceeded",
                context={
                    "user_id": user_id,
                    "footprint_mb": footprint,
                    "ceiling_mb": self.platform.model_memory_ceiling_mb,
                },
            )

        ewc_loss = self.ewc.consolidation_loss(current, candidate, importance)
        metrics = evaluate(candidate, X, Y, S)
        self.store.save(user_id, candidate)

        logger.info(
            f"Trained {pseudonymize(user_id, self._salt)} v{candidate.version}: steps={len(trajectory)}, "
            f"score={trajectory[-1]:.2e}, accuracy={metrics.accuracy:.3f}, ewc_loss={ewc_loss:.2e}"
        )
        return IncrementalUpdate(
            weights_updated=True,
            model_version=candidate.version,
            memory_usage_mb=footprint,
            convergence_score=trajectory[-1],
            score_trajectory=trajectory,
            metrics=metrics,
            ewc_loss=ewc_loss,
            local_steps=len(trajectory),
        )

    def _local_round(
        self,
        current: ModelWeights,
        X: np.ndarray,
        Y: np.ndarray,
        S: np.ndarray,
        importance: np.ndarray,
        session: FederatedSession,
        max_steps: int,
    ) -> Tuple[ModelWeights, List[float]]:
        candidate = current.copy()
        masks = [layer.weights != 0 for layer in current.layers] if current.sparse else None

        n = len(X)
        batch = min(self.config.batch_size, n)
        trajectory: List[float] = []

        for step in range(max_steps):
            idx = (np.arange(batch) + step * batch) % n
            strengths = S[idx]
            if strengths.sum() <= 0:
                continue

            _, grads = loss_and_gradients(candidate, X[idx], Y[idx], strengths)
            score = gradient_norm(grads)
            trajectory.append(score)

            # Clip factor comes from the raw gradient so it never depends on lambda
            clip = min(1.0, self.config.max_grad_norm / score) if score > 0 else 1.0
            penalized = self.ewc.penalize(grads, importance, session.regularization_strength)
            self._apply_step(candidate, penalized, session.learning_rate * clip, masks)

            if score < self.config.convergence_tolerance:
                break

        return candidate, trajectory

    def _apply_step(self, candidate: ModelWeights, gradients: LayerGradients, lr: float, masks) -> None:
        for i, (layer, (dW, db)) in enumerate(zip(candidate.layers, gradients)):
            new_w = layer.weights - lr * dW
            new_b = layer.biases - lr * db
            if masks is not None:
                new_w = new_w * masks[i]
            layer.weights = new_w.astype(np.float32)
            layer.biases = new_b.astype(np.float32)


def create_trainer(store: WeightStore, config: Optional[TrainerConfig] = None,
                   platform: Optional[PlatformLimits] = None, salt: str = DEFAULT_SALT) -> IncrementalTrainer:
    """Factory function to create an incremental trainer."""
    return IncrementalTrainer(store, config=config, platform=platform, salt=salt)


__all__ = [
    'validate_patterns',
    'IncrementalTrainer',
    'create_trainer',
]
