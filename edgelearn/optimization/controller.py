"""
EdgeLearn Core - Hardware-Aware Optimization Controller
Subsystem O: Hardware-Aware Optimization (Methods O2-O5)

Purpose:
    Shrink and speed up a user's model within live thermal, power and
    memory limits.

Methods:
    O2: Goal clamping - fit caller goals into the platform envelope and
        tighten them under throttling, memory pressure or power draw
    O3: Strategy selection - techniques from latency/memory/accuracy gaps
        plus hardware-driven additions; weighted priority score
    O4: Safety-gated execution - re-sample between techniques, substitute
        aggressive variants, cool down, abort on a hard-limit breach
    O5: Result cache - (user, goal fingerprint) with a bounded TTL

Impossible goals are clamped and the strategy still runs; the result lists
which clamped goals remain unmet.
"""

from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union
from collections import OrderedDict
from dataclasses import replace
import asyncio
import time

from loguru import logger

from ..core.config import OptimizerConfig, PlatformLimits, DEFAULT_OPTIMIZER_CONFIG, DEFAULT_PLATFORM_LIMITS
from ..core.errors import ValidationError
from ..core.locks import UserLocks
from ..core.types import (
    HardwareSnapshot,
    ModelWeights,
    OptimizationGoals,
    OptimizationPriority,
    OptimizationResult,
    OptimizationStep,
    OptimizationStrategy,
    PerformanceProfile,
)
from ..hardware.safety import HardwareSafetyGate
from ..hardware.telemetry import HardwareTelemetrySampler
from ..privacy.anonymize import pseudonymize, DEFAULT_SALT
from ..storage.store import WeightStore
from .techniques import (
    MEMORY_VARIANTS,
    THERMAL_VARIANTS,
    Technique,
    compute_cost_ms,
    dedupe,
    estimate_latency_ms,
    run_technique,
)

# Strategy tables
LATENCY_TECHNIQUES = [Technique.PRUNING, Technique.QUANTIZATION, Technique.ARCHITECTURE_OPTIMIZATION]
MEMORY_TECHNIQUES = [Technique.COMPRESSION, Technique.QUANTIZATION, Technique.FEATURE_SELECTION]
ACCURACY_TECHNIQUES = [Technique.ENSEMBLING, Technique.AUGMENTATION, Technique.TUNING]
ENERGY_TECHNIQUES = [Technique.QUANTIZATION, Technique.DYNAMIC_INFERENCE, Technique.POWER_OPTIMIZATION]
THERMAL_TECHNIQUES = [Technique.THERMAL_OPTIMIZATION, Technique.DYNAMIC_INFERENCE, Technique.DISTILLATION]
PRESSURE_TECHNIQUES = [Technique.AGGRESSIVE_COMPRESSION, Technique.GRADIENT_CHECKPOINTING]
GPU_TECHNIQUES = [Technique.GPU_MEMORY_OPTIMIZATION, Technique.TENSOR_FUSION]

# Priority scoring
PRIORITY_THRESHOLDS = [
    (8, OptimizationPriority.CRITICAL),
    (6, OptimizationPriority.HIGH),
    (3, OptimizationPriority.MEDIUM),
]
BASE_DURATION_MS = 30_000.0
PER_TECHNIQUE_DURATION_MS = 15_000.0

AccuracyLookup = Callable[[str], Optional[float]]


class OptimizationCache:
    """TTL cache of results keyed by (user, goal fingerprint)."""

    def __init__(self, ttl_s: float, max_entries: int, clock: Callable[[], float] = time.monotonic):
        self.ttl_s = ttl_s
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[Tuple[str, str], Tuple[float, OptimizationResult]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, user_id: str, fingerprint: str) -> Optional[OptimizationResult]:
        key = (user_id, fingerprint)
        entry = self._entries.get(key)
        if entry is None or self._clock() - entry[0] > self.ttl_s:
            if entry is not None:
                del self._entries[key]
            self.misses += 1
            return None
        self.hits += 1
        self._entries.move_to_end(key)
        return entry[1]

    def put(self, user_id: str, fingerprint: str, result: OptimizationResult) -> None:
        self._entries[(user_id, fingerprint)] = (self._clock(), result)
        self._entries.move_to_end((user_id, fingerprint))
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def invalidate(self, user_id: str) -> None:
        for key in [k for k in self._entries if k[0] == user_id]:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


class HardwareAwareOptimizationController:
    """
    Example:
        >>> controller = HardwareAwareOptimizationController(store, sampler)
        >>> result = await controller.optimize("user-1", OptimizationGoals(max_latency_ms=50))
        >>> result.techniques_applied
    """

    def __init__(
        self,
        store: WeightStore,
        sampler: HardwareTelemetrySampler,
        limits: Optional[PlatformLimits] = None,
        config: Optional[OptimizerConfig] = None,
        locks: Optional[UserLocks] = None,
        gate: Optional[HardwareSafetyGate] = None,
        accuracy_lookup: Optional[AccuracyLookup] = None,
        sleep: Callable[[float], "asyncio.Future"] = asyncio.sleep,
        salt: str = DEFAULT_SALT,
    ):
        self.store = store
        self.sampler = sampler
        self.limits = limits or DEFAULT_PLATFORM_LIMITS
        self.config = config or DEFAULT_OPTIMIZER_CONFIG
        self.locks = locks or UserLocks()
        self.gate = gate or HardwareSafetyGate(self.limits)
        self.accuracy_lookup = accuracy_lookup or (lambda user_id: None)
        self._sleep = sleep
        self._salt = salt
        self.cache = OptimizationCache(self.config.cache_ttl_s, self.config.cache_max_entries)

        self.optimizations_run = 0
        self.optimizations_aborted = 0
        self.cooldowns = 0

    # =========================================================================
    # Goals
    # =========================================================================

    def default_goals(self) -> OptimizationGoals:
        return OptimizationGoals(
            max_latency_ms=self.limits.target_latency_ms,
            max_memory_mb=self.limits.model_memory_ceiling_mb,
            min_accuracy=self.limits.min_accuracy,
        )

    def emergency_goals(self) -> OptimizationGoals:
        return OptimizationGoals(
            max_latency_ms=self.config.emergency_latency_ms,
            max_memory_mb=self.limits.available_memory_mb * self.config.emergency_memory_ratio,
            min_accuracy=self.limits.min_accuracy,
            energy_efficient=True,
        )

    def memory_goals(self) -> OptimizationGoals:
        return OptimizationGoals(
            max_latency_ms=self.limits.target_latency_ms,
            max_memory_mb=self.limits.available_memory_mb * self.config.memory_profile_ratio,
            min_accuracy=self.limits.min_accuracy,
            energy_efficient=False,
        )

    def clamp_goals(self, goals: OptimizationGoals, snapshot: HardwareSnapshot) -> OptimizationGoals:
        limits = self.limits
        latency = max(goals.max_latency_ms, limits.min_latency_ms)
        memory = min(max(goals.max_memory_mb, 0.0), limits.available_memory_mb)
        accuracy = min(max(goals.min_accuracy, limits.min_accuracy), limits.max_accuracy)
        energy = goals.energy_efficient

        if snapshot.thermal_throttling:
            energy = True
            latency = min(latency, limits.throttled_latency_ms)
        if snapshot.memory_pressure > 0.8:
            memory *= 0.7
        if snapshot.power_w > 0.8 * limits.power_budget_w:
            energy = True

        return OptimizationGoals(
            max_latency_ms=latency,
            max_memory_mb=memory,
            min_accuracy=accuracy,
            energy_efficient=energy,
        )

    # =========================================================================
    # Strategy
    # =========================================================================

    def profile(self, user_id: str, weights: ModelWeights, snapshot: HardwareSnapshot) -> PerformanceProfile:
        return PerformanceProfile(
            latency_ms=estimate_latency_ms(weights, snapshot, self.limits),
            memory_mb=weights.memory_footprint_mb,
            accuracy=self.accuracy_lookup(user_id),
        )

    def select_strategy(
        self,
        profile: PerformanceProfile,
        goals: OptimizationGoals,
        snapshot: HardwareSnapshot,
    ) -> OptimizationStrategy:
        limits = self.limits
        techniques: List[Technique] = []
        points = 0

        latency_ratio = profile.latency_ms / goals.max_latency_ms if goals.max_latency_ms > 0 else float("inf")
        if latency_ratio > 1.0:
            techniques += LATENCY_TECHNIQUES
            points += 3 if latency_ratio > 1.5 else 2

        memory_ratio = profile.memory_mb / goals.max_memory_mb if goals.max_memory_mb > 0 else float("inf")
        if memory_ratio > 1.0:
            techniques += MEMORY_TECHNIQUES
            points += 3 if memory_ratio > 1.2 else 2

        if profile.accuracy is not None and profile.accuracy < goals.min_accuracy:
            techniques += ACCURACY_TECHNIQUES
            points += 4

        if goals.energy_efficient:
            techniques += ENERGY_TECHNIQUES

        if snapshot.thermal_throttling or snapshot.cpu_temp_c > 0.8 * limits.max_cpu_temp_c:
            techniques += THERMAL_TECHNIQUES
        if snapshot.memory_pressure > 0.8:
            techniques += PRESSURE_TECHNIQUES
        if snapshot.gpu_util > self.config.gpu_saturation_util:
            techniques += GPU_TECHNIQUES

        if snapshot.thermal_throttling:
            points += 4
        if snapshot.cpu_temp_c > 0.9 * limits.max_cpu_temp_c:
            points += 3
        if snapshot.memory_pressure > 0.9:
            points += 3
        if snapshot.power_w > 0.9 * limits.power_budget_w:
            points += 2

        ordered = dedupe(techniques)
        return OptimizationStrategy(
            techniques=[t.value for t in ordered],
            priority=self.priority_for(points),
            estimated_duration_ms=self.estimate_duration(len(ordered), snapshot),
            resource_requirements={
                "memory_mb": profile.memory_mb * 2.0,  # candidate + original
                "cpu_util": min(0.3 + 0.1 * len(ordered), 1.0),
            },
            thermal_constraints={
                "max_cpu_temp_c": limits.max_cpu_temp_c,
                "max_gpu_temp_c": limits.max_gpu_temp_c,
                "cooldown_temp_c": self.config.cooldown_temp_ratio * limits.max_cpu_temp_c,
            },
            power_constraints={
                "power_budget_w": limits.power_budget_w,
                "energy_efficient": float(goals.energy_efficient),
            },
        )

    @staticmethod
    def priority_for(points: int) -> OptimizationPriority:
        for threshold, level in PRIORITY_THRESHOLDS:
            if points >= threshold:
                return level
        return OptimizationPriority.LOW

    def estimate_duration(self, technique_count: int, snapshot: HardwareSnapshot) -> float:
        duration = BASE_DURATION_MS + PER_TECHNIQUE_DURATION_MS * technique_count
        if snapshot.thermal_throttling:
            duration *= 1.5
        if snapshot.cpu_temp_c > 0.8 * self.limits.max_cpu_temp_c:
            duration *= 1.2
        if snapshot.memory_pressure > 0.8:
            duration *= 1.3
        return duration

    def unmet_goals(self, profile: PerformanceProfile, goals: OptimizationGoals) -> List[str]:
        unmet = []
        if profile.latency_ms > goals.max_latency_ms:
            unmet.append("latency")
        if profile.memory_mb > goals.max_memory_mb:
            unmet.append("memory")
        if profile.accuracy is not None and profile.accuracy < goals.min_accuracy:
            unmet.append("accuracy")
        return unmet

    # =========================================================================
    # Execution
    # =========================================================================

    async def _sample(self) -> HardwareSnapshot:
        return await self.sampler.sample_now()

    def _substitute(self, technique: Technique, snapshot: HardwareSnapshot) -> Technique:
        hot = (
            snapshot.thermal_throttling
            or snapshot.cpu_temp_c >= self.config.cooldown_temp_ratio * self.limits.max_cpu_temp_c
            or snapshot.gpu_temp_c >= self.config.cooldown_temp_ratio * self.limits.max_gpu_temp_c
        )
        if hot and technique in THERMAL_VARIANTS:
            return THERMAL_VARIANTS[technique]
        if snapshot.memory_pressure > self.config.aggressive_memory_pressure and technique in MEMORY_VARIANTS:
            return MEMORY_VARIANTS[technique]
        return technique

    async def optimize(
        self,
        user_id: str,
        goals: Optional[OptimizationGoals] = None,
        snapshot: Optional[HardwareSnapshot] = None,
    ) -> OptimizationResult:
        goals = goals or self.default_goals()
        fingerprint = goals.fingerprint()
        cached = self.cache.get(user_id, fingerprint)
        if cached is not None:
            logger.debug(f"Optimization cache hit for {pseudonymize(user_id, self._salt)}")
            return replace(cached, from_cache=True)

        start = time.perf_counter()
        pre = snapshot or self.sampler.latest() or await self._sample()
        clamped = self.clamp_goals(goals, pre)

        async with self.locks.hold(user_id):
            weights = self.store.load(user_id)
            if weights is None:
                raise ValidationError("No model to optimize", context={"user_id": user_id})

            profile = self.profile(user_id, weights, pre)
            strategy = self.select_strategy(profile, clamped, pre)
            self.gate.enforce(pre, stage="pre-flight")

            logger.info(
                f"Optimizing {pseudonymize(user_id, self._salt)}: priority={strategy.priority.value}, "
                f"techniques={strategy.techniques}"
            )
            optimized, steps, abort_reason = await self._execute(weights, strategy)

            changed = any(not step.simulated for step in steps)
            if changed:
                optimized.version = weights.version + 1
                self.store.save(user_id, optimized)
                self.cache.invalidate(user_id)

        post = await self._sample()
        final_profile = self.profile(user_id, optimized, post)
        result = OptimizationResult(
            user_id=user_id,
            size_before_mb=weights.memory_footprint_mb,
            size_after_mb=optimized.memory_footprint_mb,
            performance_improvement_pct=sum(step.performance_improvement_pct for step in steps),
            memory_reduction_mb=weights.memory_footprint_mb - optimized.memory_footprint_mb,
            execution_time_ms=(time.perf_counter() - start) * 1000.0,
            hardware_impact={
                "thermal_delta_c": post.cpu_temp_c - pre.cpu_temp_c,
                "gpu_thermal_delta_c": post.gpu_temp_c - pre.gpu_temp_c,
                "power_delta_w": post.power_w - pre.power_w,
                "memory_delta_mb": post.memory_used_mb - pre.memory_used_mb,
            },
            steps=steps,
            goals=clamped,
            strategy=strategy,
            model_version=optimized.version,
            aborted=abort_reason is not None,
            abort_reason=abort_reason,
            unmet_goals=self.unmet_goals(final_profile, clamped),
        )

        self.optimizations_run += 1
        if result.aborted:
            self.optimizations_aborted += 1
        else:
            self.cache.put(user_id, fingerprint, result)

        logger.info(
            f"Optimization for {pseudonymize(user_id, self._salt)} {'aborted' if result.aborted else 'completed'}: "
            f"{len(steps)}/{len(strategy.techniques)} techniques, "
            f"{result.size_before_mb:.4f}MB -> {result.size_after_mb:.4f}MB, "
            f"+{result.performance_improvement_pct:.1f}%"
        )
        return result

    async def _execute(
        self,
        weights: ModelWeights,
        strategy: OptimizationStrategy,
    ) -> Tuple[ModelWeights, List[OptimizationStep], Optional[str]]:
        current = weights
        steps: List[OptimizationStep] = []
        techniques = [Technique(name) for name in strategy.techniques]

        for index, requested in enumerate(techniques):
            snapshot = await self._sample()
            violations = self.gate.check(snapshot)
            if violations:
                reason = ", ".join(v.value for v in violations)
                logger.warning(f"Aborting optimization before {requested.value}: {reason}")
                return current, steps, reason

            technique = self._substitute(requested, snapshot)
            step_start = time.perf_counter()
            cost_before = compute_cost_ms(current, snapshot, self.limits)
            outcome = run_technique(technique, current, snapshot, self.config, self.limits)

            if outcome.simulated:
                improvement = outcome.simulated_improvement_pct
            else:
                cost_after = compute_cost_ms(outcome.weights, snapshot, self.limits)
                improvement = (cost_before - cost_after) / cost_before * 100.0 if cost_before > 0 else 0.0

            steps.append(OptimizationStep(
                technique=technique.value,
                requested=requested.value,
                size_reduction_mb=current.memory_footprint_mb - outcome.weights.memory_footprint_mb,
                performance_improvement_pct=improvement,
                duration_ms=(time.perf_counter() - step_start) * 1000.0,
                simulated=outcome.simulated,
                cpu_temp_c=snapshot.cpu_temp_c,
                memory_pressure=snapshot.memory_pressure,
            ))
            current = outcome.weights

            remaining = index < len(techniques) - 1
            if remaining and snapshot.cpu_temp_c >= self.config.cooldown_temp_ratio * self.limits.max_cpu_temp_c:
                self.cooldowns += 1
                logger.debug(f"Cooling down {self.config.cooldown_s}s at {snapshot.cpu_temp_c:.1f}C")
                await self._sleep(self.config.cooldown_s)

        return current, steps, None

    async def optimize_many(
        self,
        user_ids: Sequence[str],
        goals: Optional[OptimizationGoals] = None,
    ) -> Dict[str, Union[OptimizationResult, Exception]]:
        """Optimize several users concurrently; one failure never affects the others."""
        outcomes = await asyncio.gather(
            *(self.optimize(user_id, goals) for user_id in user_ids),
            return_exceptions=True,
        )
        return dict(zip(user_ids, outcomes))

    def get_statistics(self) -> Dict[str, float]:
        return {
            "optimizations_run": self.optimizations_run,
            "optimizations_aborted": self.optimizations_aborted,
            "cooldowns": self.cooldowns,
            "cache_entries": len(self.cache),
            "cache_hits": self.cache.hits,
            "cache_misses": self.cache.misses,
        }


def create_controller(
    store: WeightStore,
    sampler: HardwareTelemetrySampler,
    limits: Optional[PlatformLimits] = None,
    config: Optional[OptimizerConfig] = None,
    **kwargs,
) -> HardwareAwareOptimizationController:
    """Factory function to create an optimization controller."""
    return HardwareAwareOptimizationController(store, sampler, limits=limits, config=config, **kwargs)


__all__ = [
    'OptimizationCache',
    'HardwareAwareOptimizationController',
    'create_controller',
]
