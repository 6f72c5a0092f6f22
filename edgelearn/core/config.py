"""
EdgeLearn Core - Configuration

Dataclass configuration for every engine component. Each section has a
module-level default instance; ``EngineConfig.from_dict`` / ``load_config``
build a full configuration from a nested JSON mapping.
"""

from dataclasses import dataclass, field, fields, is_dataclass, asdict
from typing import Dict, Any, Optional
import json
import math
from pathlib import Path

from loguru import logger

from .errors import ValidationError


@dataclass
class PlatformLimits:
    """
    Hardware envelope of the target SoC.

    Defaults describe an 8 GB embedded module with a 15 W power budget.
    """
    # Thermal / power
    max_cpu_temp_c: float = 85.0
    max_gpu_temp_c: float = 90.0
    power_budget_w: float = 15.0

    # Memory
    total_memory_mb: float = 8192.0
    available_memory_mb: float = 6144.0
    model_memory_ceiling_mb: float = 1536.0  # Hard cap for one user's weights
    critical_memory_pressure: float = 0.95

    # Service targets
    min_latency_ms: float = 20.0  # Fastest achievable inference
    target_latency_ms: float = 100.0
    throttled_latency_ms: float = 80.0
    min_accuracy: float = 0.75
    max_accuracy: float = 0.98

    # Inference cost model
    inference_overhead_ms: float = 4.0
    ms_per_mmac: float = 2.0  # Milliseconds per million fp32 MACs at nominal clock
    nominal_clock_ghz: float = 1.5


@dataclass
class PrivacyConfig:
    """Differential privacy parameters."""
    session_epsilon: float = 2.0  # Budget charged per training/update call
    delta: float = 1e-5
    total_budget: float = 200.0  # Lifetime epsilon per user
    frequency_noise_ratio: float = 0.5  # Frequency noise scale relative to strength
    noise_enabled: bool = True
    seed: Optional[int] = None
    pseudonym_salt: str = "edgelearn"


@dataclass
class TrainerConfig:
    """Incremental trainer parameters."""
    base_learning_rate: float = 0.1
    max_learning_rate: float = 0.2
    strength_lr_gain: float = 0.5  # lr *= 1 + gain * mean strength
    regularization_strength: float = 1.0  # EWC lambda

    # Local round
    batch_size: int = 8
    max_local_steps: int = 200  # Above the stall cap so one round can stall
    convergence_tolerance: float = 1e-3
    max_grad_norm: float = 1.0

    # Default architecture
    hidden_units: int = 32
    init_scale: float = 0.1
    init_seed: int = 0

    # Validation
    max_patterns: int = 10000


@dataclass
class ConvergenceConfig:
    """Convergence classifier thresholds."""
    threshold: float = 1e-3
    divergence_ratio: float = 1.1
    stall_iterations: int = 100
    history_size: int = 200


@dataclass
class TelemetryConfig:
    """Hardware telemetry sampling."""
    interval_s: float = 5.0
    min_interval_s: float = 1.0
    max_interval_s: float = 10.0
    history_size: int = 100
    thermal_alert_ratio: float = 0.9  # Alert at 90% of max temperature
    memory_alert_pressure: float = 0.8
    proximity_ratio: float = 0.9  # Sample faster within 10% of a threshold
    autostart: bool = True

    # Optional sysfs sources (Jetson-style)
    gpu_load_path: Optional[str] = None
    power_rail_path: Optional[str] = None  # Milliwatts
    thermal_zone_root: str = "/sys/class/thermal"


@dataclass
class OptimizerConfig:
    """Optimization controller policy."""
    # Technique parameters
    pruning_ratio: float = 0.2
    aggressive_pruning_ratio: float = 0.4
    aggressive_compression_pruning: float = 0.3
    feature_selection_ratio: float = 0.25
    distillation_keep_ratio: float = 0.75

    # Execution
    cooldown_temp_ratio: float = 0.8
    cooldown_s: float = 2.0
    aggressive_memory_pressure: float = 0.9
    gpu_saturation_util: float = 0.9

    # Cache
    cache_ttl_s: float = 3600.0
    cache_max_entries: int = 256

    # Reactive recovery
    emergency_latency_ms: float = 50.0
    emergency_memory_ratio: float = 0.5
    memory_profile_ratio: float = 0.6
    recovery_queue_size: int = 32
    max_retries: int = 3
    retry_backoff_s: float = 5.0


@dataclass
class EngineConfig:
    """Top-level configuration."""
    platform: PlatformLimits = field(default_factory=PlatformLimits)
    privacy: PrivacyConfig = field(default_factory=PrivacyConfig)
    trainer: TrainerConfig = field(default_factory=TrainerConfig)
    convergence: ConvergenceConfig = field(default_factory=ConvergenceConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)

    min_system_memory_mb: float = 256.0
    check_system_memory: bool = True
    optimize_after_training: bool = False
    event_history_size: int = 1000

    def validate(self) -> None:
        problems = []
        if not 0 < self.privacy.session_epsilon < math.inf:
            problems.append("privacy.session_epsilon must be positive and finite")
        elif self.privacy.session_epsilon > self.privacy.total_budget:
            problems.append("privacy.session_epsilon exceeds privacy.total_budget")
        if self.trainer.batch_size < 1:
            problems.append("trainer.batch_size must be >= 1")
        if self.trainer.max_learning_rate < self.trainer.base_learning_rate:
            problems.append("trainer.max_learning_rate below base_learning_rate")
        if not (self.telemetry.min_interval_s <= self.telemetry.interval_s <= self.telemetry.max_interval_s):
            problems.append("telemetry.interval_s outside [min_interval_s, max_interval_s]")
        if self.platform.model_memory_ceiling_mb > self.platform.available_memory_mb:
            problems.append("platform.model_memory_ceiling_mb exceeds available memory")
        if problems:
            raise ValidationError("Invalid engine configuration", context={"problems": problems})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        return _build(cls, data, path="")


def _build(cls, data: Dict[str, Any], path: str):
    known = {f.name: f for f in fields(cls)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ValidationError(f"Unknown configuration keys: {unknown}", context={"section": path or "root"})

    defaults = cls()
    kwargs = {}
    for name, value in data.items():
        default = getattr(defaults, name)
        if is_dataclass(default) and isinstance(value, dict):
            kwargs[name] = _build(type(default), value, path=f"{path}{name}.")
        else:
            kwargs[name] = value
    return cls(**kwargs)


def load_config(path) -> EngineConfig:
    """Load an EngineConfig from a JSON file."""
    path = Path(path)
    with open(path, "r") as f:
        data = json.load(f)
    config = EngineConfig.from_dict(data)
    config.validate()
    logger.info(f"Loaded engine configuration from {path}")
    return config


DEFAULT_PLATFORM_LIMITS = PlatformLimits()
DEFAULT_PRIVACY_CONFIG = PrivacyConfig()
DEFAULT_TRAINER_CONFIG = TrainerConfig()
DEFAULT_CONVERGENCE_CONFIG = ConvergenceConfig()
DEFAULT_TELEMETRY_CONFIG = TelemetryConfig()
DEFAULT_OPTIMIZER_CONFIG = OptimizerConfig()
DEFAULT_ENGINE_CONFIG = EngineConfig()


__all__ = [
    'PlatformLimits',
    'PrivacyConfig',
    'TrainerConfig',
    'ConvergenceConfig',
    'TelemetryConfig',
    'OptimizerConfig',
    'EngineConfig',
    'load_config',
    'DEFAULT_PLATFORM_LIMITS',
    'DEFAULT_PRIVACY_CONFIG',
    'DEFAULT_TRAINER_CONFIG',
    'DEFAULT_CONVERGENCE_CONFIG',
    'DEFAULT_TELEMETRY_CONFIG',
    'DEFAULT_OPTIMIZER_CONFIG',
    'DEFAULT_ENGINE_CONFIG',
]
