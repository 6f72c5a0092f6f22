"""
EdgeLearn Core - Shared Foundations

Components:
    - types: pattern, weight, hardware and result records
    - errors: LearningEngineError taxonomy
    - config: dataclass configuration with DEFAULT_* instances
"""

from .types import *  # noqa: F401,F403
from .errors import (
    ErrorSeverity,
    LearningEngineError,
    ValidationError,
    ResourceExhaustionError,
    TrainingError,
    HardwareConstrainedError,
    PrivacyBudgetExhaustedError,
    EngineStateError,
)
from .config import (
    PlatformLimits,
    PrivacyConfig,
    TrainerConfig,
    ConvergenceConfig,
    TelemetryConfig,
    OptimizerConfig,
    EngineConfig,
    load_config,
    DEFAULT_ENGINE_CONFIG,
)
