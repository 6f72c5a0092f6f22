"""
EdgeLearn Core - Hardware Module
Subsystem H: Hardware Awareness (3 Methods)

Components:
    - H1: Probes (SystemProbe, ReplayProbe)
    - H2: HardwareTelemetrySampler + AlertChannel
    - H3: HardwareSafetyGate
"""

from .alerts import AlertKind, ThermalAlert, MemoryPressureAlert, AlertChannel
from .telemetry import SystemProbe, ReplayProbe, HardwareTelemetrySampler, create_sampler
from .safety import HardwareViolation, HardwareSafetyGate, create_safety_gate

__all__ = [
    'AlertKind',
    'ThermalAlert',
    'MemoryPressureAlert',
    'AlertChannel',
    'SystemProbe',
    'ReplayProbe',
    'HardwareTelemetrySampler',
    'create_sampler',
    'HardwareViolation',
    'HardwareSafetyGate',
    'create_safety_gate',
]
