"""
EdgeLearn Core - Adaptive Learning Engine
Subsystem E: Orchestration (Methods E1-E4)

Purpose:
    Own every component, expose the public per-user operations and react
    to hardware alerts without blocking the telemetry loop.

Methods:
    E1: Lifecycle gate - CREATED -> INITIALIZED -> STOPPED
    E2: Training pipeline - budget, sanitize, train, classify, record
    E3: Degraded operations - update/validate/optimize fall back on
        unclassified failures, classified failures always propagate
    E4: Recovery worker - drains queued alert, feedback and post-training
        work with per-user isolation and exponential backoff

Example:
    >>> async with AdaptiveLearningEngine(EngineConfig()) as engine:
    ...     result = await engine.train_user_model("user-1", patterns)
    ...     metrics = engine.get_model_metrics("user-1")
"""

from typing import Any, Dict, List, Optional, Sequence, Set
from dataclasses import dataclass, field
from enum import Enum
import asyncio
import time
import uuid

import numpy as np
import psutil
from loguru import logger

from .core.config import EngineConfig
from .core.errors import (
    EngineStateError,
    HardwareConstrainedError,
    LearningEngineError,
    PrivacyBudgetExhaustedError,
    ResourceExhaustionError,
    TrainingError,
    ValidationError,
)
from .core.locks import UserLocks
from .core.types import (
    ConvergenceStatus,
    FederatedSession,
    HardwareSnapshot,
    IdentifiedPattern,
    IncrementalUpdate,
    ModelMetrics,
    ModelUpdateResult,
    ModelValidationResult,
    OptimizationGoals,
    OptimizationResult,
    PerformanceMetrics,
    PrivacyParams,
    TrainingResult,
    UserFeedback,
    ValidationIssue,
)
from .events import EventBus, InMemoryEventBus, LearningEvent, LearningEventType
from .hardware.alerts import AlertChannel, AlertKind, HardwareAlert
from .hardware.telemetry import HardwareProbe, HardwareTelemetrySampler, SystemProbe
from .learning.behavior_model import encode_context, forward, prediction_confidence, probe_contexts
from .learning.convergence import ConvergenceClassifier
from .learning.ewc import EWCRegularizer
from .learning.trainer import IncrementalTrainer, validate_patterns
from .optimization.controller import HardwareAwareOptimizationController
from .privacy.accountant import PrivacyAccountant
from .privacy.anonymize import pseudonymize
from .privacy.sanitizer import DifferentialPrivacySanitizer, create_sanitizer
from .storage.store import InMemoryWeightStore, WeightStore

# Failures that are never masked by a fallback result
PROPAGATED_ERRORS = (
    ValidationError,
    PrivacyBudgetExhaustedError,
    ResourceExhaustionError,
    HardwareConstrainedError,
    EngineStateError,
)

# Validation thresholds
LOW_CONFIDENCE = 0.05
DEGENERATE_SPREAD = 1e-6
FOOTPRINT_WARNING_RATIO = 0.9


class EngineState(Enum):
    CREATED = "created"
    INITIALIZED = "initialized"
    STOPPED = "stopped"


class JobKind(Enum):
    THERMAL = "thermal"
    MEMORY_PRESSURE = "memory_pressure"
    POST_TRAINING = "post_training"
    FEEDBACK = "feedback"


@dataclass
class UserModelState:
    """Registry entry for one user's model."""
    model_version: int
    metrics: PerformanceMetrics
    convergence_status: ConvergenceStatus
    convergence_score: float
    training_cycles: int = 0
    last_updated: float = field(default_factory=time.time)


@dataclass
class RecoveryJob:
    kind: JobKind
    user_ids: Optional[List[str]] = None  # None = every stored user at run time
    goals: Optional[OptimizationGoals] = None
    feedback: Optional[UserFeedback] = None


class AdaptiveLearningEngine:
    """
    Orchestrator for per-user incremental learning on an edge device.

    Components are created here and owned for the engine's lifetime; only
    the weight store, event bus and hardware probe are injectable.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        store: Optional[WeightStore] = None,
        event_bus: Optional[EventBus] = None,
        probe: Optional[HardwareProbe] = None,
        sanitizer: Optional[DifferentialPrivacySanitizer] = None,
    ):
        self.config = config or EngineConfig()
        self.config.validate()
        self._salt = self.config.privacy.pseudonym_salt

        self.store = store if store is not None else InMemoryWeightStore()
        self.events = event_bus if event_bus is not None else InMemoryEventBus(self.config.event_history_size)
        self.locks = UserLocks()

        # Learning pipeline
        self.accountant = PrivacyAccountant(self.config.privacy.total_budget, salt=self._salt)
        self.sanitizer = sanitizer or create_sanitizer(self.config.privacy)
        self.ewc = EWCRegularizer()
        self.trainer = IncrementalTrainer(
            self.store, self.config.trainer, self.config.platform, self.ewc, salt=self._salt
        )
        self.convergence = ConvergenceClassifier(self.config.convergence)

        # Hardware side
        self.alerts = AlertChannel()
        self.sampler = HardwareTelemetrySampler(
            probe or SystemProbe(self.config.telemetry, self.config.platform),
            self.alerts,
            self.config.platform,
            self.config.telemetry,
        )
        self.optimizer = HardwareAwareOptimizationController(
            self.store,
            self.sampler,
            limits=self.config.platform,
            config=self.config.optimizer,
            locks=self.locks,
            accuracy_lookup=self._last_accuracy,
            salt=self._salt,
        )

        self.state = EngineState.CREATED
        self._registry: Dict[str, UserModelState] = {}
        self._queue: Optional[asyncio.Queue] = None
        self._pending: Set[JobKind] = set()
        self._worker: Optional[asyncio.Task] = None
        self._unsubscribe = []

        self.recoveries_completed = 0
        self.recoveries_failed = 0
        self.fallbacks = 0

    # =========================================================================
    # Lifecycle (E1)
    # =========================================================================

    async def initialize(self) -> None:
        if self.state is EngineState.INITIALIZED:
            return
        if self.state is EngineState.STOPPED:
            raise EngineStateError("Engine was shut down and cannot be restarted")

        self._check_system_requirements()

        self._queue = asyncio.Queue(maxsize=self.config.optimizer.recovery_queue_size)
        self._worker = asyncio.create_task(self._recovery_worker(), name="edgelearn-recovery")
        self._unsubscribe.append(self.alerts.subscribe(self._on_hardware_alert))

        await self.sampler.sample_now()
        if self.config.telemetry.autostart:
            await self.sampler.start()

        self.state = EngineState.INITIALIZED
        self._emit(LearningEventType.SYSTEM_STARTED, payload={"autostart": self.config.telemetry.autostart})
        logger.info("Adaptive learning engine initialized")

    async def shutdown(self) -> None:
        if self.state is not EngineState.INITIALIZED:
            self.state = EngineState.STOPPED
            return

        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()

        await self.sampler.stop()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        self.state = EngineState.STOPPED
        self._emit(LearningEventType.SYSTEM_STOPPED, payload=self.get_statistics())
        logger.info("Adaptive learning engine stopped")

    async def __aenter__(self) -> "AdaptiveLearningEngine":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    def _check_system_requirements(self) -> None:
        if not self.config.check_system_memory:
            return
        available_mb = psutil.virtual_memory().available / (1024 * 1024)
        if available_mb < self.config.min_system_memory_mb:
            raise ResourceExhaustionError(
                "Insufficient system memory to start the engine",
                context={"available_mb": available_mb, "required_mb": self.config.min_system_memory_mb},
            )

    def _require_ready(self) -> None:
        if self.state is not EngineState.INITIALIZED:
            raise EngineStateError(
                f"Engine is {self.state.value}; call initialize() first",
                context={"state": self.state.value},
            )

    def _emit(self, event_type: LearningEventType, user_id: Optional[str] = None, payload: Optional[dict] = None) -> None:
        self.events.publish(LearningEvent.create(event_type, user_id, payload, salt=self._salt))

    # =========================================================================
    # Training (E2)
    # =========================================================================

    async def train_user_model(self, user_id: str, patterns: Sequence[IdentifiedPattern]) -> TrainingResult:
        self._require_ready()
        start = time.perf_counter()
        self._emit(LearningEventType.TRAINING_STARTED, user_id, {"pattern_count": len(patterns)})

        try:
            validate_patterns(patterns, self.config.trainer.max_patterns)
            async with self.locks.hold(user_id):
                params = self.sanitizer.privacy_params(patterns, self.config.privacy.session_epsilon)
                remaining = self.accountant.charge(user_id, params.epsilon)
                sanitized = self.sanitizer.sanitize(patterns, user_id, params)
                session = self._open_session(user_id, [p.strength for p in sanitized], params)

                # Local round runs off the loop so the sampler keeps its period
                update = await asyncio.to_thread(self.trainer.update, user_id, sanitized, session)
                status = self.convergence.observe_trajectory(user_id, update.score_trajectory)
                elapsed_ms = (time.perf_counter() - start) * 1000.0
                self._record(user_id, update, status, count_cycle=True)
                self.optimizer.cache.invalidate(user_id)
        except LearningEngineError as exc:
            self._emit(LearningEventType.TRAINING_FAILED, user_id, {"error": exc.to_dict()})
            raise
        except Exception as exc:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            wrapped = TrainingError(f"Training failed: {exc}", user_id, len(patterns), elapsed_ms, cause=exc)
            logger.error(f"Training failed for {pseudonymize(user_id, self._salt)}: {exc}")
            self._emit(LearningEventType.TRAINING_FAILED, user_id, {"error": wrapped.to_dict()})
            raise wrapped from exc

        result = TrainingResult(
            success=update.weights_updated,
            user_id=user_id,
            model_version=update.model_version,
            improvement_metrics=update.metrics,
            convergence_status=status,
            convergence_score=update.convergence_score,
            training_time_ms=elapsed_ms,
            memory_usage_mb=update.memory_usage_mb,
            ewc_loss=update.ewc_loss,
            local_steps=update.local_steps,
            privacy_budget_remaining=remaining,
        )
        self._emit(LearningEventType.TRAINING_COMPLETED, user_id, {
            "model_version": result.model_version,
            "convergence_status": status.value,
            "accuracy": update.metrics.accuracy,
            "local_steps": update.local_steps,
            "training_time_ms": elapsed_ms,
        })

        if self.config.optimize_after_training and update.weights_updated:
            self._enqueue(RecoveryJob(JobKind.POST_TRAINING, user_ids=[user_id], goals=self.optimizer.default_goals()))
        return result

    def _open_session(self, user_id: str, strengths: Sequence[float], params: PrivacyParams) -> FederatedSession:
        return FederatedSession(
            session_id=uuid.uuid4().hex,
            user_id=user_id,
            start_time=time.time(),
            learning_rate=self.trainer.learning_rate(strengths),
            regularization_strength=self.config.trainer.regularization_strength,
            privacy_budget=params.epsilon,
            privacy_params=params,
        )

    def _record(self, user_id: str, update: IncrementalUpdate, status: ConvergenceStatus, count_cycle: bool) -> None:
        previous = self._registry.get(user_id)
        cycles = previous.training_cycles if previous else 0
        self._registry[user_id] = UserModelState(
            model_version=update.model_version,
            metrics=update.metrics if count_cycle or previous is None else previous.metrics,
            convergence_status=status,
            convergence_score=update.convergence_score,
            training_cycles=cycles + 1 if count_cycle else cycles,
        )

    def _last_accuracy(self, user_id: str) -> Optional[float]:
        state = self._registry.get(user_id)
        return state.metrics.accuracy if state else None

    # =========================================================================
    # Degraded operations (E3)
    # =========================================================================

    def _fallback(self, failed: LearningEventType, operation: str, user_id: str, exc: Exception) -> None:
        self.fallbacks += 1
        logger.warning(f"{operation} failed for {pseudonymize(user_id, self._salt)}; using fallback: {exc}")
        self._emit(failed, user_id, {"error": str(exc), "fallback": True})
        self._emit(LearningEventType.FALLBACK_MODE_ACTIVATED, user_id, {"operation": operation})

    async def update_model(self, user_id: str, feedback: UserFeedback) -> ModelUpdateResult:
        """Apply explicit user feedback as one regularized step."""
        self._require_ready()
        self._emit(LearningEventType.MODEL_UPDATE_STARTED, user_id, {"pattern_type": feedback.pattern_type.value})

        try:
            rating = feedback.rating.overall
            if not isinstance(rating, (int, float)) or not 1 <= rating <= 5:
                raise ValidationError("Feedback rating must be within 1..5", context={"overall": rating})
            target = (float(rating) - 1.0) / 4.0
            pattern = IdentifiedPattern(
                id=f"feedback-{feedback.timestamp}",
                type=feedback.pattern_type,
                strength=target,
                frequency=1.0,
                context=feedback.context,
            )
            validate_patterns([pattern], 1)

            async with self.locks.hold(user_id):
                params = self.sanitizer.privacy_params([pattern], self.config.privacy.session_epsilon)
                self.accountant.charge(user_id, params.epsilon)
                sanitized = self.sanitizer.sanitize([pattern], user_id, params)[0]
                session = self._open_session(user_id, [sanitized.strength], params)

                update = await asyncio.to_thread(
                    self.trainer.apply_feedback, user_id, sanitized.context, sanitized.type, sanitized.strength, session
                )
                status = self.convergence.observe_trajectory(user_id, update.score_trajectory)
                self._record(user_id, update, status, count_cycle=False)
                self.optimizer.cache.invalidate(user_id)
        except PROPAGATED_ERRORS as exc:
            self._emit(LearningEventType.MODEL_UPDATE_FAILED, user_id, {"error": exc.to_dict()})
            raise
        except Exception as exc:
            self._fallback(LearningEventType.MODEL_UPDATE_FAILED, "update_model", user_id, exc)
            state = self._registry.get(user_id)
            return ModelUpdateResult(
                success=False,
                model_version=state.model_version if state else 0,
                fallback=True,
            )

        changes = [f"{feedback.pattern_type.value} score moved towards {target:.2f}"] if update.weights_updated else []
        self._emit(LearningEventType.MODEL_UPDATE_COMPLETED, user_id, {
            "model_version": update.model_version,
            "changes": len(changes),
        })
        return ModelUpdateResult(success=update.weights_updated, model_version=update.model_version, changes=changes)

    async def validate_model(self, user_id: str) -> ModelValidationResult:
        """Inspect the stored model on a fixed grid of anonymized contexts."""
        self._require_ready()
        self._emit(LearningEventType.VALIDATION_STARTED, user_id)

        try:
            weights = self.store.load(user_id)
            if weights is None:
                raise ValidationError("No model to validate", context={"user_id": user_id})

            issues: List[ValidationIssue] = []
            confidence = 0.0
            if not weights.is_finite():
                issues.append(ValidationIssue(
                    type="numerical_instability",
                    severity="critical",
                    description="Model parameters contain NaN or infinite values",
                    recommendation="Reset the user model and retrain",
                ))
            else:
                X = np.stack([encode_context(ctx) for ctx in probe_contexts()])
                outputs = forward(weights, X)
                confidence = float(np.mean(prediction_confidence(outputs)))
                if float(np.max(np.ptp(outputs, axis=0))) < DEGENERATE_SPREAD:
                    issues.append(ValidationIssue(
                        type="degenerate_output",
                        severity="high",
                        description="Model output does not depend on context",
                        recommendation="Retrain with more varied patterns",
                    ))
                if confidence < LOW_CONFIDENCE:
                    issues.append(ValidationIssue(
                        type="low_confidence",
                        severity="medium",
                        description=f"Mean prediction margin {confidence:.3f} below {LOW_CONFIDENCE}",
                        recommendation="Collect more consistent patterns",
                    ))

            ceiling = self.config.platform.model_memory_ceiling_mb
            if weights.memory_footprint_mb > FOOTPRINT_WARNING_RATIO * ceiling:
                issues.append(ValidationIssue(
                    type="memory_footprint",
                    severity="high",
                    description=f"Footprint {weights.memory_footprint_mb:.3f}MB is close to the {ceiling:.0f}MB ceiling",
                    recommendation="Run optimize_model with a tighter memory goal",
                ))

            state = self._registry.get(user_id)
            accuracy = state.metrics.accuracy if state else 0.0
            if state is not None and accuracy < self.config.platform.min_accuracy:
                issues.append(ValidationIssue(
                    type="low_accuracy",
                    severity="medium",
                    description=f"Accuracy {accuracy:.3f} below floor {self.config.platform.min_accuracy}",
                    recommendation="Train on additional patterns",
                ))
        except PROPAGATED_ERRORS as exc:
            self._emit(LearningEventType.VALIDATION_FAILED, user_id, {"error": exc.to_dict()})
            raise
        except Exception as exc:
            self._fallback(LearningEventType.VALIDATION_FAILED, "validate_model", user_id, exc)
            return ModelValidationResult(
                is_valid=False,
                accuracy=0.5,
                confidence=0.5,
                recommendations=["Retry validation once the engine is healthy"],
                fallback=True,
            )

        result = ModelValidationResult(
            is_valid=not any(issue.severity in ("high", "critical") for issue in issues),
            accuracy=accuracy,
            confidence=confidence,
            issues=issues,
            recommendations=[issue.recommendation for issue in issues],
        )
        self._emit(LearningEventType.VALIDATION_COMPLETED, user_id, {
            "is_valid": result.is_valid,
            "issues": [issue.type for issue in issues],
        })
        return result

    async def optimize_model(
        self,
        user_id: str,
        goals: Optional[OptimizationGoals] = None,
        snapshot: Optional[HardwareSnapshot] = None,
    ) -> OptimizationResult:
        self._require_ready()
        self._emit(LearningEventType.OPTIMIZATION_STARTED, user_id)

        try:
            result = await self.optimizer.optimize(user_id, goals, snapshot)
        except PROPAGATED_ERRORS as exc:
            self._emit(LearningEventType.OPTIMIZATION_FAILED, user_id, {"error": exc.to_dict()})
            raise
        except Exception as exc:
            self._fallback(LearningEventType.OPTIMIZATION_FAILED, "optimize_model", user_id, exc)
            weights = self.store.load(user_id)
            size = weights.memory_footprint_mb if weights is not None else 0.0
            return OptimizationResult(
                user_id=user_id,
                size_before_mb=size,
                size_after_mb=size,
                performance_improvement_pct=0.0,
                memory_reduction_mb=0.0,
                execution_time_ms=0.0,
                hardware_impact={},
                steps=[],
                goals=goals or self.optimizer.default_goals(),
                model_version=weights.version if weights is not None else 0,
                fallback=True,
            )

        if result.model_version:
            state = self._registry.get(user_id)
            if state is not None:
                state.model_version = result.model_version
                state.last_updated = time.time()

        self._emit(LearningEventType.OPTIMIZATION_COMPLETED, user_id, {
            "techniques": result.techniques_applied,
            "aborted": result.aborted,
            "unmet_goals": result.unmet_goals,
            "from_cache": result.from_cache,
            "memory_reduction_mb": result.memory_reduction_mb,
        })
        return result

    # =========================================================================
    # Model management
    # =========================================================================

    async def reset_user_model(self, user_id: str) -> bool:
        """Forget a user's model; the privacy ledger is kept."""
        self._require_ready()
        self._emit(LearningEventType.MODEL_RESET_STARTED, user_id)
        try:
            async with self.locks.hold(user_id):
                existed = self.store.delete(user_id)
                self.convergence.reset(user_id)
                self._registry.pop(user_id, None)
                self.optimizer.cache.invalidate(user_id)
        except Exception as exc:
            self._emit(LearningEventType.MODEL_RESET_FAILED, user_id, {"error": str(exc)})
            raise
        self._emit(LearningEventType.MODEL_RESET_COMPLETED, user_id, {"existed": existed})
        logger.info(f"Reset model for {pseudonymize(user_id, self._salt)}")
        return existed

    def get_model_metrics(self, user_id: str) -> ModelMetrics:
        self._require_ready()
        weights = self.store.load(user_id)
        if weights is None:
            raise ValidationError("No model for user", context={"user_id": user_id})
        state = self._registry.get(user_id)
        return ModelMetrics(
            user_id=user_id,
            model_version=weights.version,
            accuracy=state.metrics.accuracy if state else 0.0,
            confidence=state.metrics.confidence if state else 0.0,
            total_parameters=weights.total_parameters,
            memory_footprint_mb=weights.memory_footprint_mb,
            convergence_status=self.convergence.status(user_id) if state else None,
            training_cycles=state.training_cycles if state else 0,
            last_updated=state.last_updated if state else None,
        )

    def privacy_budget_remaining(self, user_id: str) -> float:
        return self.accountant.remaining(user_id)

    # =========================================================================
    # Recovery worker (E4)
    # =========================================================================

    def submit_feedback(self, user_id: str, feedback: UserFeedback) -> bool:
        """Queue feedback for the worker; returns False when the queue is full."""
        self._require_ready()
        self._emit(LearningEventType.FEEDBACK_RECEIVED, user_id, {
            "pattern_type": feedback.pattern_type.value,
            "overall": feedback.rating.overall,
        })
        return self._enqueue(RecoveryJob(JobKind.FEEDBACK, user_ids=[user_id], feedback=feedback))

    def _on_hardware_alert(self, alert: HardwareAlert) -> None:
        if alert.kind is AlertKind.THERMAL:
            self._emit(LearningEventType.THERMAL_ALERT, payload={
                "reasons": list(alert.reasons),
                "cpu_temp_c": alert.snapshot.cpu_temp_c,
                "gpu_temp_c": alert.snapshot.gpu_temp_c,
            })
            job = RecoveryJob(JobKind.THERMAL, goals=self.optimizer.emergency_goals())
        else:
            self._emit(LearningEventType.MEMORY_PRESSURE_ALERT, payload={"memory_pressure": alert.pressure})
            job = RecoveryJob(JobKind.MEMORY_PRESSURE, goals=self.optimizer.memory_goals())

        if job.kind in self._pending:
            logger.debug(f"Coalesced {job.kind.value} alert into pending recovery")
            return
        if self._enqueue(job):
            self._pending.add(job.kind)

    def _enqueue(self, job: RecoveryJob) -> bool:
        if self._queue is None:
            return False
        try:
            self._queue.put_nowait(job)
            return True
        except asyncio.QueueFull:
            logger.warning(f"Recovery queue full; dropping {job.kind.value} job")
            return False

    async def wait_for_recovery(self) -> None:
        """Block until every queued job has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def _recovery_worker(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._run_job(job)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(f"Recovery job {job.kind.value} failed: {exc}")
            finally:
                # Alerts raised by this job's own sampling were coalesced into it
                self._pending.discard(job.kind)
                self._queue.task_done()

    async def _run_job(self, job: RecoveryJob) -> None:
        if job.kind is JobKind.FEEDBACK:
            for user_id in job.user_ids or []:
                await self.update_model(user_id, job.feedback)
            return

        user_ids = job.user_ids if job.user_ids is not None else self.store.users()
        if not user_ids:
            return
        logger.info(f"Running {job.kind.value} recovery for {len(user_ids)} users")
        await asyncio.gather(*(self._recover_user(user_id, job) for user_id in user_ids))

    async def _recover_user(self, user_id: str, job: RecoveryJob) -> bool:
        config = self.config.optimizer
        for attempt in range(config.max_retries + 1):
            try:
                # Hardware state changed since any cached result
                self.optimizer.cache.invalidate(user_id)
                result = await self.optimizer.optimize(user_id, job.goals)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                retryable = isinstance(exc, LearningEngineError) and exc.retryable
                if retryable and attempt < config.max_retries:
                    delay = config.retry_backoff_s * (2 ** attempt)
                    logger.debug(f"Retrying {job.kind.value} recovery in {delay:.1f}s: {exc}")
                    await asyncio.sleep(delay)
                    continue
                self.recoveries_failed += 1
                logger.error(f"{job.kind.value} recovery failed for {pseudonymize(user_id, self._salt)}: {exc}")
                self._emit(LearningEventType.RECOVERY_FAILED, user_id, {
                    "trigger": job.kind.value,
                    "attempts": attempt + 1,
                    "error": str(exc),
                })
                return False

            self.recoveries_completed += 1
            self._emit(LearningEventType.RECOVERY_COMPLETED, user_id, {
                "trigger": job.kind.value,
                "attempts": attempt + 1,
                "techniques": result.techniques_applied,
                "aborted": result.aborted,
            })
            return True
        return False

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "users": len(self._registry),
            "recoveries_completed": self.recoveries_completed,
            "recoveries_failed": self.recoveries_failed,
            "fallbacks": self.fallbacks,
            "queued_jobs": self._queue.qsize() if self._queue is not None else 0,
            **{f"optimizer_{k}": v for k, v in self.optimizer.get_statistics().items()},
            **{f"telemetry_{k}": v for k, v in self.sampler.get_statistics().items()},
        }


def create_engine(config: Optional[EngineConfig] = None, **kwargs) -> AdaptiveLearningEngine:
    """Factory function to create an engine."""
    return AdaptiveLearningEngine(config, **kwargs)


__all__ = [
    'EngineState',
    'JobKind',
    'UserModelState',
    'RecoveryJob',
    'AdaptiveLearningEngine',
    'create_engine',
]
