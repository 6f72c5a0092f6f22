"""
EdgeLearn Core - Error Taxonomy

Propagation rules:
    - ValidationError / PrivacyBudgetExhaustedError: caller-visible, never retried
    - ResourceExhaustionError / HardwareConstrainedError: retryable after backoff
    - TrainingError: wraps unclassified pipeline failures
"""

from typing import Optional, Dict, List, Any
from enum import Enum
import time


class ErrorSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class LearningEngineError(Exception):
    """Base class for all engine failures."""

    code = "LEARNING_ENGINE_ERROR"
    default_severity = ErrorSeverity.MEDIUM
    retryable = False

    def __init__(
        self,
        message: str,
        severity: Optional[ErrorSeverity] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity or self.default_severity
        self.context = dict(context or {})
        self.cause = cause
        self.timestamp = time.time()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "context": dict(self.context),
            "timestamp": self.timestamp,
        }


class ValidationError(LearningEngineError):
    code = "VALIDATION_ERROR"
    default_severity = ErrorSeverity.MEDIUM


class ResourceExhaustionError(LearningEngineError):
    code = "RESOURCE_EXHAUSTION"
    default_severity = ErrorSeverity.HIGH
    retryable = True


class TrainingError(LearningEngineError):
    code = "TRAINING_ERROR"
    default_severity = ErrorSeverity.HIGH

    def __init__(
        self,
        message: str,
        user_id: str,
        pattern_count: int,
        elapsed_ms: float,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            message,
            context={"user_id": user_id, "pattern_count": pattern_count, "elapsed_ms": elapsed_ms},
            cause=cause,
        )
        self.user_id = user_id
        self.pattern_count = pattern_count
        self.elapsed_ms = elapsed_ms


class HardwareConstrainedError(LearningEngineError):
    """Optimization refused or aborted; carries the snapshot that tripped the gate."""

    code = "HARDWARE_CONSTRAINED"
    default_severity = ErrorSeverity.HIGH
    retryable = True

    def __init__(self, message: str, snapshot, violations: List[str], context: Optional[Dict[str, Any]] = None):
        merged = {"violations": list(violations)}
        merged.update(context or {})
        super().__init__(message, context=merged)
        self.snapshot = snapshot
        self.violations = list(violations)


class PrivacyBudgetExhaustedError(LearningEngineError):
    code = "PRIVACY_BUDGET_EXHAUSTED"
    default_severity = ErrorSeverity.HIGH


class EngineStateError(LearningEngineError):
    code = "ENGINE_STATE"
    default_severity = ErrorSeverity.CRITICAL


__all__ = [
    'ErrorSeverity',
    'LearningEngineError',
    'ValidationError',
    'ResourceExhaustionError',
    'TrainingError',
    'HardwareConstrainedError',
    'PrivacyBudgetExhaustedError',
    'EngineStateError',
]
