"""
EdgeLearn Core - Privacy Budget Accountant

Per-user lifetime epsilon ledger. Spending only ever increases; once the
remaining budget cannot cover a session the call is refused.
"""

from typing import Dict, List, Optional, Tuple
import time

from loguru import logger

from ..core.errors import PrivacyBudgetExhaustedError, ValidationError
from .anonymize import pseudonymize, DEFAULT_SALT

_TOLERANCE = 1e-9


class PrivacyAccountant:
    """Tracks epsilon spent per user under basic sequential composition."""

    def __init__(self, total_budget: float, salt: str = DEFAULT_SALT, history_size: int = 1000):
        if total_budget <= 0:
            raise ValidationError("total privacy budget must be positive")
        self.total_budget = total_budget
        self._salt = salt
        self._spent: Dict[str, float] = {}
        self._history: List[Tuple[float, str, float]] = []
        self._history_size = history_size

    def spent(self, user_id: str) -> float:
        return self._spent.get(user_id, 0.0)

    def remaining(self, user_id: str) -> float:
        return max(self.total_budget - self.spent(user_id), 0.0)

    def can_spend(self, user_id: str, epsilon: float) -> bool:
        return epsilon <= self.remaining(user_id) + _TOLERANCE

    def charge(self, user_id: str, epsilon: float) -> float:
        """Spend ``epsilon`` for ``user_id``; returns the remaining budget."""
        if not epsilon > 0:
            raise ValidationError("epsilon must be positive", context={"epsilon": epsilon})
        if not self.can_spend(user_id, epsilon):
            raise PrivacyBudgetExhaustedError(
                "Privacy budget exhausted; training refused",
                context={
                    "user_id": user_id,
                    "requested": epsilon,
                    "remaining": self.remaining(user_id),
                    "total_budget": self.total_budget,
                },
            )
        self._spent[user_id] = self.spent(user_id) + epsilon
        self._history.append((time.time(), pseudonymize(user_id, self._salt), epsilon))
        if len(self._history) > self._history_size:
            self._history = self._history[-self._history_size:]
        remaining = self.remaining(user_id)
        if remaining < epsilon:
            logger.warning(f"Privacy budget nearly spent for {pseudonymize(user_id, self._salt)}: {remaining:.3f} left")
        return remaining

    def ledger(self, user_id: Optional[str] = None) -> List[Tuple[float, str, float]]:
        if user_id is None:
            return list(self._history)
        token = pseudonymize(user_id, self._salt)
        return [entry for entry in self._history if entry[1] == token]


__all__ = ['PrivacyAccountant']
