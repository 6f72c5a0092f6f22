"""
EdgeLearn Core - Learning
Subsystem L: Convergence Classifier (Method L4)

Labels each training iteration from the gradient-norm trend. The label is
advisory: it is reported with the training result and never blocks
persistence.

Rules (first match wins):
    score < threshold                         -> CONVERGED
    score > divergence_ratio * previous score -> DIVERGED
    iterations since CONVERGED > stall cap    -> STALLED
    otherwise                                 -> CONVERGING
"""

from typing import Dict, List, Optional, Sequence
from dataclasses import dataclass, field
from collections import deque

from ..core.config import ConvergenceConfig, DEFAULT_CONVERGENCE_CONFIG
from ..core.types import ConvergenceStatus


@dataclass
class ConvergenceState:
    """Per-user classifier memory."""
    previous_score: Optional[float] = None
    iterations_since_converged: int = 0
    status: ConvergenceStatus = ConvergenceStatus.CONVERGING
    history: deque = field(default_factory=lambda: deque(maxlen=DEFAULT_CONVERGENCE_CONFIG.history_size))


class ConvergenceClassifier:
    def __init__(self, config: Optional[ConvergenceConfig] = None):
        self.config = config or DEFAULT_CONVERGENCE_CONFIG
        self._states: Dict[str, ConvergenceState] = {}

    def _state(self, user_id: str) -> ConvergenceState:
        if user_id not in self._states:
            self._states[user_id] = ConvergenceState(history=deque(maxlen=self.config.history_size))
        return self._states[user_id]

    def observe(self, user_id: str, score: float) -> ConvergenceStatus:
        state = self._state(user_id)
        state.iterations_since_converged += 1

        if score < self.config.threshold:
            status = ConvergenceStatus.CONVERGED
            state.iterations_since_converged = 0
        elif state.previous_score is not None and score > self.config.divergence_ratio * state.previous_score:
            status = ConvergenceStatus.DIVERGED
        elif state.iterations_since_converged > self.config.stall_iterations:
            status = ConvergenceStatus.STALLED
        else:
            status = ConvergenceStatus.CONVERGING

        state.previous_score = score
        state.status = status
        state.history.append((score, status))
        return status

    def observe_trajectory(self, user_id: str, scores: Sequence[float]) -> ConvergenceStatus:
        """Feed a training round's per-step scores; returns the final label."""
        status = self.status(user_id)
        for score in scores:
            status = self.observe(user_id, score)
        return status

    def status(self, user_id: str) -> ConvergenceStatus:
        state = self._states.get(user_id)
        return state.status if state else ConvergenceStatus.CONVERGING

    def history(self, user_id: str) -> List:
        state = self._states.get(user_id)
        return list(state.history) if state else []

    def reset(self, user_id: str) -> None:
        self._states.pop(user_id, None)


__all__ = ['ConvergenceState', 'ConvergenceClassifier']
