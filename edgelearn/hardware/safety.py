"""
EdgeLearn Core - Hardware Safety Gate
Subsystem H: Hardware Awareness (Method H3)

Purpose:
    Hard limits that must hold before and between optimization techniques.

Invariants:
    - CPU temperature below platform max
    - GPU temperature below platform max
    - Power draw below budget
    - Memory pressure below the critical level
    - No thermal throttling

Any violation refuses (or aborts) optimization with
HardwareConstrainedError carrying the triggering snapshot.
"""

from typing import List, Optional
from collections import deque
from enum import Enum

from loguru import logger

from ..core.config import PlatformLimits, DEFAULT_PLATFORM_LIMITS
from ..core.errors import HardwareConstrainedError
from ..core.types import HardwareSnapshot


class HardwareViolation(Enum):
    """Types of hard-limit violations"""
    CPU_TEMPERATURE = "cpu_temperature"
    GPU_TEMPERATURE = "gpu_temperature"
    POWER = "power"
    MEMORY_PRESSURE = "memory_pressure"
    THERMAL_THROTTLING = "thermal_throttling"


class HardwareSafetyGate:
    """
    Example:
        >>> gate = HardwareSafetyGate(PlatformLimits())
        >>> gate.check(snapshot)
        []
        >>> gate.enforce(hot_snapshot)  # raises HardwareConstrainedError
    """

    def __init__(self, limits: Optional[PlatformLimits] = None, history_size: int = 100):
        self.limits = limits or DEFAULT_PLATFORM_LIMITS
        self.violation_history: deque = deque(maxlen=history_size)

    def check(self, snapshot: HardwareSnapshot) -> List[HardwareViolation]:
        violations = []
        if snapshot.cpu_temp_c >= self.limits.max_cpu_temp_c:
            violations.append(HardwareViolation.CPU_TEMPERATURE)
        if snapshot.gpu_temp_c >= self.limits.max_gpu_temp_c:
            violations.append(HardwareViolation.GPU_TEMPERATURE)
        if snapshot.power_w >= self.limits.power_budget_w:
            violations.append(HardwareViolation.POWER)
        if snapshot.memory_pressure >= self.limits.critical_memory_pressure:
            violations.append(HardwareViolation.MEMORY_PRESSURE)
        if snapshot.thermal_throttling:
            violations.append(HardwareViolation.THERMAL_THROTTLING)
        return violations

    def is_safe(self, snapshot: HardwareSnapshot) -> bool:
        return not self.check(snapshot)

    def enforce(self, snapshot: HardwareSnapshot, stage: str = "pre-flight") -> None:
        violations = self.check(snapshot)
        if not violations:
            return
        names = [v.value for v in violations]
        self.violation_history.append((snapshot.timestamp, stage, tuple(names)))
        logger.warning(
            f"Hardware gate tripped ({stage}): {names} "
            f"cpu={snapshot.cpu_temp_c:.1f}C gpu={snapshot.gpu_temp_c:.1f}C "
            f"power={snapshot.power_w:.1f}W pressure={snapshot.memory_pressure:.2f}"
        )
        raise HardwareConstrainedError(
            f"Hardware limits violated ({stage}): {', '.join(names)}",
            snapshot=snapshot,
            violations=names,
            context={"stage": stage},
        )


def create_safety_gate(limits: Optional[PlatformLimits] = None) -> HardwareSafetyGate:
    """Factory function to create a hardware safety gate."""
    return HardwareSafetyGate(limits)


__all__ = ['HardwareViolation', 'HardwareSafetyGate', 'create_safety_gate']
