"""
EdgeLearn Core - Shared Types

Components:
    - Pattern context: closed, versioned union of context facets
    - IdentifiedPattern / SanitizedPattern records
    - ModelWeights with footprint accounting
    - HardwareSnapshot and optimization records
    - Metrics and result records returned by the engine
"""

from typing import Optional, Dict, List, Tuple, Union
from dataclasses import dataclass, field, replace
from enum import Enum
import time

import numpy as np

CONTEXT_SCHEMA_VERSION = 1
BYTES_PER_MB = 1024 * 1024
SPARSE_INDEX_BYTES = 2  # uint16 column index per stored value
SPARSE_ROW_POINTER_BYTES = 4


# =============================================================================
# Enums
# =============================================================================

class PatternType(Enum):
    TEMPORAL = "temporal"
    CONTEXTUAL = "contextual"
    BEHAVIORAL = "behavioral"
    PREFERENCE = "preference"


PATTERN_TYPES: Tuple[PatternType, ...] = tuple(PatternType)


class TimeOfDay(Enum):
    EARLY_MORNING = "early_morning"
    MORNING = "morning"
    MIDDAY = "midday"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"
    LATE_NIGHT = "late_night"
    BEDTIME = "bedtime"


class DayOfWeek(Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @property
    def is_weekend(self) -> bool:
        return self in (DayOfWeek.SATURDAY, DayOfWeek.SUNDAY)


class ContextKind(Enum):
    TEMPORAL = "temporal"
    ENVIRONMENTAL = "environmental"
    SOCIAL = "social"
    DEVICE = "device"


class LayerKind(Enum):
    DENSE = "dense"


class ConvergenceStatus(Enum):
    CONVERGED = "converged"
    CONVERGING = "converging"
    STALLED = "stalled"
    DIVERGED = "diverged"


class OptimizationPriority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# =============================================================================
# Pattern context
# =============================================================================

@dataclass(frozen=True)
class TemporalContext:
    """When the pattern was observed."""
    time_of_day: Optional[TimeOfDay] = None
    day_of_week: Optional[DayOfWeek] = None
    season: Optional[str] = None
    is_holiday: bool = False
    time_zone: Optional[str] = None
    relative_to_schedule: Optional[str] = None  # e.g. "before_work"

    kind = ContextKind.TEMPORAL


@dataclass(frozen=True)
class EnvironmentalContext:
    """Where the pattern was observed."""
    location: Optional[str] = None
    noise_level_db: Optional[float] = None
    natural_light: Optional[bool] = None
    temperature_c: Optional[float] = None
    weather: Optional[str] = None

    kind = ContextKind.ENVIRONMENTAL


@dataclass(frozen=True)
class SocialContext:
    """Who was around."""
    present_users: Tuple[str, ...] = ()
    family_members: Tuple[str, ...] = ()
    guest_present: bool = False
    social_activity: Optional[str] = None  # e.g. "family_time", "alone"

    kind = ContextKind.SOCIAL


@dataclass(frozen=True)
class DeviceContext:
    """How the user interacted with the device."""
    device_type: Optional[str] = None
    input_method: Optional[str] = None  # "voice", "touch", ...
    connectivity: Optional[str] = None  # "online", "offline"

    kind = ContextKind.DEVICE


ContextFacet = Union[TemporalContext, EnvironmentalContext, SocialContext, DeviceContext]


@dataclass(frozen=True)
class PatternContext:
    """
    Versioned set of context facets, at most one per ContextKind.

    Example:
        >>> ctx = PatternContext.of(TemporalContext(time_of_day=TimeOfDay.MORNING))
        >>> ctx.temporal.time_of_day
        <TimeOfDay.MORNING: 'morning'>
    """
    facets: Tuple[ContextFacet, ...] = ()
    version: int = CONTEXT_SCHEMA_VERSION

    @classmethod
    def of(cls, *facets: ContextFacet, version: int = CONTEXT_SCHEMA_VERSION) -> "PatternContext":
        return cls(facets=tuple(facets), version=version)

    def get(self, kind: ContextKind) -> Optional[ContextFacet]:
        for facet in self.facets:
            if facet.kind is kind:
                return facet
        return None

    @property
    def temporal(self) -> Optional[TemporalContext]:
        return self.get(ContextKind.TEMPORAL)

    @property
    def environmental(self) -> Optional[EnvironmentalContext]:
        return self.get(ContextKind.ENVIRONMENTAL)

    @property
    def social(self) -> Optional[SocialContext]:
        return self.get(ContextKind.SOCIAL)

    @property
    def device(self) -> Optional[DeviceContext]:
        return self.get(ContextKind.DEVICE)

    def validation_errors(self) -> List[str]:
        errors = []
        if self.version != CONTEXT_SCHEMA_VERSION:
            errors.append(f"unsupported context version {self.version}")
        seen = set()
        for facet in self.facets:
            kind = getattr(facet, "kind", None)
            if not isinstance(kind, ContextKind):
                errors.append(f"unknown context facet {type(facet).__name__}")
                continue
            if kind in seen:
                errors.append(f"duplicate {kind.value} context facet")
            seen.add(kind)
        return errors


@dataclass(frozen=True)
class AnonymizedContext:
    """Non-identifying reduction of a PatternContext."""
    time_of_day: Optional[TimeOfDay] = None
    is_weekend: Optional[bool] = None
    is_holiday: bool = False
    has_natural_light: bool = False
    is_quiet: bool = False
    is_alone: bool = True
    family_present: bool = False
    guest_present: bool = False
    social_activity: Optional[str] = None
    voice_input: bool = False
    is_online: bool = False


# =============================================================================
# Patterns
# =============================================================================

@dataclass(frozen=True)
class IdentifiedPattern:
    """Behavioral pattern as delivered by the pattern-recognition collaborator."""
    id: str
    type: PatternType
    strength: float
    frequency: float
    context: PatternContext = field(default_factory=PatternContext)
    last_observed: float = field(default_factory=time.time)


@dataclass(frozen=True)
class SanitizedPattern:
    token: str
    type: PatternType
    strength: float
    frequency: float
    context: AnonymizedContext
    noise_added: float = 0.0


# =============================================================================
# Model weights
# =============================================================================

@dataclass
class LayerWeights:
    """Dense layer parameters. ``weights`` is an (in, out) matrix."""
    weights: np.ndarray
    biases: np.ndarray
    kind: LayerKind = LayerKind.DENSE
    activation: str = "relu"

    @property
    def size(self) -> int:
        return int(self.weights.size + self.biases.size)

    @property
    def input_dim(self) -> int:
        return int(self.weights.shape[0])

    @property
    def output_dim(self) -> int:
        return int(self.weights.shape[1])

    def copy(self) -> "LayerWeights":
        return LayerWeights(
            weights=self.weights.copy(),
            biases=self.biases.copy(),
            kind=self.kind,
            activation=self.activation,
        )


@dataclass
class ModelWeights:
    """
    Ordered layers plus storage encoding.

    The footprint is derived from the encoding: dense storage costs
    ``bits/8`` bytes per parameter, sparse (CSR) storage costs the value
    plus a column index per nonzero and a row pointer per matrix row.
    """
    layers: List[LayerWeights]
    version: int = 0
    precision_bits: int = 32
    sparse: bool = False

    @property
    def total_parameters(self) -> int:
        return sum(layer.size for layer in self.layers)

    @property
    def nonzero_parameters(self) -> int:
        return sum(
            int(np.count_nonzero(layer.weights) + np.count_nonzero(layer.biases))
            for layer in self.layers
        )

    @property
    def memory_footprint_mb(self) -> float:
        return self.footprint_bytes(self.sparse) / BYTES_PER_MB

    def footprint_bytes(self, sparse: bool) -> int:
        value_bytes = self.precision_bits / 8
        if not sparse:
            return int(np.ceil(self.total_parameters * value_bytes))
        total = 0.0
        for layer in self.layers:
            nnz = np.count_nonzero(layer.weights) + np.count_nonzero(layer.biases)
            # Biases are encoded as one extra row of the layer matrix
            rows = layer.weights.shape[0] + 1
            total += nnz * (value_bytes + SPARSE_INDEX_BYTES) + (rows + 1) * SPARSE_ROW_POINTER_BYTES
        return int(np.ceil(total))

    def parameters(self) -> List[np.ndarray]:
        """Flat [W0, b0, W1, b1, ...] view."""
        params = []
        for layer in self.layers:
            params.extend([layer.weights, layer.biases])
        return params

    def copy(self) -> "ModelWeights":
        return replace(self, layers=[layer.copy() for layer in self.layers])

    def is_finite(self) -> bool:
        return all(np.all(np.isfinite(p)) for p in self.parameters())


# =============================================================================
# Sessions and training results
# =============================================================================

@dataclass(frozen=True)
class PrivacyParams:
    epsilon: float
    delta: float
    sensitivity: float
    noise_scale: float


@dataclass(frozen=True)
class FederatedSession:
    session_id: str
    user_id: str
    start_time: float
    learning_rate: float
    regularization_strength: float
    privacy_budget: float
    privacy_params: PrivacyParams


@dataclass
class PerformanceMetrics:
    accuracy: float = 0.0
    precision: float = 0.0
    recall: float = 0.0
    f1_score: float = 0.0
    confidence: float = 0.0
    latency_ms: float = 0.0
    memory_usage_mb: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "accuracy": self.accuracy,
            "precision": self.precision,
            "recall": self.recall,
            "f1_score": self.f1_score,
            "confidence": self.confidence,
            "latency_ms": self.latency_ms,
            "memory_usage_mb": self.memory_usage_mb,
        }


@dataclass
class IncrementalUpdate:
    """Outcome of one trainer call."""
    weights_updated: bool
    model_version: int
    memory_usage_mb: float
    convergence_score: float
    score_trajectory: List[float]
    metrics: PerformanceMetrics
    ewc_loss: float
    local_steps: int


@dataclass
class TrainingResult:
    success: bool
    user_id: str
    model_version: int
    improvement_metrics: PerformanceMetrics
    convergence_status: ConvergenceStatus
    convergence_score: float
    training_time_ms: float
    memory_usage_mb: float
    ewc_loss: float
    local_steps: int
    privacy_budget_remaining: float


@dataclass(frozen=True)
class FeedbackRating:
    overall: int  # 1..5
    accuracy: float = 0.5
    helpfulness: float = 0.5
    appropriateness: float = 0.5


@dataclass(frozen=True)
class UserFeedback:
    pattern_type: PatternType
    rating: FeedbackRating
    context: PatternContext = field(default_factory=PatternContext)
    comment: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class ModelUpdateResult:
    success: bool
    model_version: int
    changes: List[str] = field(default_factory=list)
    fallback: bool = False


@dataclass
class ValidationIssue:
    type: str
    severity: str  # "low" | "medium" | "high" | "critical"
    description: str
    recommendation: str


@dataclass
class ModelValidationResult:
    is_valid: bool
    accuracy: float
    confidence: float
    issues: List[ValidationIssue] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    fallback: bool = False


@dataclass
class ModelMetrics:
    """Quality summary exposed to downstream consumers. Never carries weights."""
    user_id: str
    model_version: int
    accuracy: float
    confidence: float
    total_parameters: int
    memory_footprint_mb: float
    convergence_status: Optional[ConvergenceStatus]
    training_cycles: int
    last_updated: Optional[float]


# =============================================================================
# Hardware and optimization
# =============================================================================

@dataclass(frozen=True)
class HardwareSnapshot:
    cpu_temp_c: float = 45.0
    gpu_temp_c: float = 45.0
    cpu_util: float = 0.2
    gpu_util: float = 0.1
    memory_used_mb: float = 2048.0
    memory_pressure: float = 0.3
    gpu_memory_used_mb: float = 0.0
    power_w: float = 5.0
    thermal_throttling: bool = False
    clock_ghz: float = 1.5
    fan_rpm: float = 0.0
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class OptimizationGoals:
    max_latency_ms: float = 100.0
    max_memory_mb: float = 512.0
    min_accuracy: float = 0.75
    energy_efficient: bool = False

    def fingerprint(self) -> str:
        return (
            f"lat={self.max_latency_ms:.3f}|mem={self.max_memory_mb:.3f}|"
            f"acc={self.min_accuracy:.4f}|eco={int(self.energy_efficient)}"
        )


@dataclass(frozen=True)
class PerformanceProfile:
    """Current cost of serving a model."""
    latency_ms: float
    memory_mb: float
    accuracy: Optional[float] = None


@dataclass
class OptimizationStrategy:
    techniques: List[str]
    priority: OptimizationPriority
    estimated_duration_ms: float
    resource_requirements: Dict[str, float] = field(default_factory=dict)
    thermal_constraints: Dict[str, float] = field(default_factory=dict)
    power_constraints: Dict[str, float] = field(default_factory=dict)


@dataclass
class OptimizationStep:
    technique: str
    requested: str
    size_reduction_mb: float
    performance_improvement_pct: float
    duration_ms: float
    simulated: bool
    cpu_temp_c: float
    memory_pressure: float


@dataclass
class OptimizationResult:
    user_id: str
    size_before_mb: float
    size_after_mb: float
    performance_improvement_pct: float
    memory_reduction_mb: float
    execution_time_ms: float
    hardware_impact: Dict[str, float]
    steps: List[OptimizationStep]
    goals: OptimizationGoals
    strategy: Optional[OptimizationStrategy] = None
    model_version: int = 0
    aborted: bool = False
    abort_reason: Optional[str] = None
    unmet_goals: List[str] = field(default_factory=list)
    from_cache: bool = False
    fallback: bool = False

    @property
    def techniques_applied(self) -> List[str]:
        return [step.technique for step in self.steps]


__all__ = [
    'CONTEXT_SCHEMA_VERSION',
    'BYTES_PER_MB',
    'PatternType',
    'PATTERN_TYPES',
    'TimeOfDay',
    'DayOfWeek',
    'ContextKind',
    'LayerKind',
    'ConvergenceStatus',
    'OptimizationPriority',
    'TemporalContext',
    'EnvironmentalContext',
    'SocialContext',
    'DeviceContext',
    'ContextFacet',
    'PatternContext',
    'AnonymizedContext',
    'IdentifiedPattern',
    'SanitizedPattern',
    'LayerWeights',
    'ModelWeights',
    'PrivacyParams',
    'FederatedSession',
    'PerformanceMetrics',
    'IncrementalUpdate',
    'TrainingResult',
    'FeedbackRating',
    'UserFeedback',
    'ModelUpdateResult',
    'ValidationIssue',
    'ModelValidationResult',
    'ModelMetrics',
    'HardwareSnapshot',
    'OptimizationGoals',
    'PerformanceProfile',
    'OptimizationStrategy',
    'OptimizationStep',
    'OptimizationResult',
]
