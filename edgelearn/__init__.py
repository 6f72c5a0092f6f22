"""
EdgeLearn Core - On-Device Adaptive Learning

Modules:
    - core: shared types, errors, configuration, logging, per-user locks
    - privacy: differential privacy sanitizer, anonymization, budget accounting
    - learning: behavior model, EWC regularizer, incremental trainer, convergence
    - hardware: telemetry sampler, alert channel, safety gate
    - optimization: techniques and the hardware-aware controller
    - storage: weight stores
    - events: lifecycle events and the in-memory bus
    - engine: AdaptiveLearningEngine orchestrator

Usage:
    from edgelearn import AdaptiveLearningEngine, EngineConfig, configure_logging

    configure_logging("INFO")
    async with AdaptiveLearningEngine(EngineConfig()) as engine:
        result = await engine.train_user_model("user-1", patterns)
"""

__version__ = "0.3.0"

from .core.types import *  # noqa: F401,F403
from .core.errors import (
    ErrorSeverity,
    LearningEngineError,
    ValidationError,
    ResourceExhaustionError,
    TrainingError,
    HardwareConstrainedError,
    PrivacyBudgetExhaustedError,
    EngineStateError,
)
from .core.config import (
    PlatformLimits,
    PrivacyConfig,
    TrainerConfig,
    ConvergenceConfig,
    TelemetryConfig,
    OptimizerConfig,
    EngineConfig,
    load_config,
)
from .core.log import configure_logging
from .events import LearningEventType, LearningEvent, InMemoryEventBus
from .storage import InMemoryWeightStore, FileWeightStore
from .hardware import ReplayProbe, SystemProbe
from .engine import AdaptiveLearningEngine, EngineState, create_engine
