"""
EdgeLearn Core - Hardware Telemetry
Subsystem H: Hardware Awareness (Methods H1-H2)

Purpose:
    Periodic snapshot of thermal, power, memory and utilization state.

Methods:
    H1: Probes - psutil + Linux sysfs thermal zones (SystemProbe), or a
        scripted sequence (ReplayProbe) for tests and simulation
    H2: Sampler - adaptive-period async loop, bounded snapshot ring with
        strictly increasing timestamps, threshold alerts

The sampler is the only writer of snapshots. Alert handlers run on the
event loop through the AlertChannel; the sampling loop never waits on them.
"""

from typing import Dict, List, Optional, Protocol, Sequence
from collections import deque
from dataclasses import replace
from pathlib import Path
import asyncio
import time

import psutil
import torch
from loguru import logger

from ..core.config import PlatformLimits, TelemetryConfig, DEFAULT_PLATFORM_LIMITS, DEFAULT_TELEMETRY_CONFIG
from ..core.types import BYTES_PER_MB, HardwareSnapshot
from .alerts import AlertChannel, HardwareAlert, MemoryPressureAlert, ThermalAlert

TIMESTAMP_EPSILON = 1e-6


# =============================================================================
# Probes
# =============================================================================

class HardwareProbe(Protocol):
    async def read(self) -> HardwareSnapshot: ...


class SystemProbe:
    """
    Reads the host through psutil and sysfs.

    Sensors that do not exist on the host read as 0. GPU load and power
    rail paths are optional (Jetson boards expose them under /sys).
    """

    CPU_SENSOR_KEYS = ("coretemp", "k10temp", "cpu_thermal", "cpu-thermal", "soc_thermal", "acpitz")
    GPU_ZONE_MARKERS = ("gpu",)
    THROTTLE_CLOCK_RATIO = 0.6

    def __init__(self, config: Optional[TelemetryConfig] = None, limits: Optional[PlatformLimits] = None):
        self.config = config or DEFAULT_TELEMETRY_CONFIG
        self.limits = limits or DEFAULT_PLATFORM_LIMITS
        self.zone_paths = self._discover_thermal_zones()
        psutil.cpu_percent(interval=None)  # prime the utilization counter
        logger.info(f"Discovered {len(self.zone_paths)} thermal zones")

    def _discover_thermal_zones(self) -> Dict[str, Path]:
        zones = {}
        base = Path(self.config.thermal_zone_root)
        if not base.exists():
            return zones
        for zone in sorted(base.glob("thermal_zone*")):
            try:
                name = (zone / "type").read_text().strip().lower()
            except OSError:
                continue
            if (zone / "temp").exists():
                zones[name] = zone / "temp"
        return zones

    @staticmethod
    def _read_number(path: Path) -> Optional[float]:
        try:
            return float(path.read_text().strip())
        except (OSError, ValueError):
            return None

    def _zone_temperature(self, markers: Sequence[str]) -> float:
        for name, path in self.zone_paths.items():
            if any(marker in name for marker in markers):
                value = self._read_number(path)
                if value is not None:
                    return value / 1000.0  # millidegrees
        return 0.0

    def _cpu_temperature(self) -> float:
        if hasattr(psutil, "sensors_temperatures"):
            try:
                temps = psutil.sensors_temperatures() or {}
            except (OSError, RuntimeError):
                temps = {}
            for key in self.CPU_SENSOR_KEYS:
                entries = temps.get(key)
                if entries:
                    return max(entry.current for entry in entries)
        return self._zone_temperature(("cpu", "soc"))

    @staticmethod
    def _fan_rpm() -> float:
        if not hasattr(psutil, "sensors_fans"):
            return 0.0
        try:
            fans = psutil.sensors_fans() or {}
        except (OSError, RuntimeError):
            return 0.0
        speeds = [entry.current for entries in fans.values() for entry in entries]
        return float(max(speeds)) if speeds else 0.0

    def _gpu_util(self) -> float:
        if self.config.gpu_load_path:
            value = self._read_number(Path(self.config.gpu_load_path))
            if value is not None:
                return min(max(value / 1000.0, 0.0), 1.0)  # per mille
        return 0.0

    @staticmethod
    def _gpu_memory_mb() -> float:
        if torch.cuda.is_available():
            return torch.cuda.memory_allocated() / BYTES_PER_MB
        return 0.0

    def _power_w(self) -> float:
        if self.config.power_rail_path:
            value = self._read_number(Path(self.config.power_rail_path))
            if value is not None:
                return value / 1000.0  # milliwatts
        return 0.0

    def read_sync(self) -> HardwareSnapshot:
        memory = psutil.virtual_memory()
        freq = psutil.cpu_freq()
        cpu_temp = self._cpu_temperature()
        clock_ghz = freq.current / 1000.0 if freq else 0.0
        throttling = bool(
            freq
            and freq.max
            and freq.current < self.THROTTLE_CLOCK_RATIO * freq.max
            and cpu_temp >= self.config.thermal_alert_ratio * self.limits.max_cpu_temp_c
        )
        return HardwareSnapshot(
            cpu_temp_c=cpu_temp,
            gpu_temp_c=self._zone_temperature(self.GPU_ZONE_MARKERS),
            cpu_util=psutil.cpu_percent(interval=None) / 100.0,
            gpu_util=self._gpu_util(),
            memory_used_mb=(memory.total - memory.available) / BYTES_PER_MB,
            memory_pressure=memory.percent / 100.0,
            gpu_memory_used_mb=self._gpu_memory_mb(),
            power_w=self._power_w(),
            thermal_throttling=throttling,
            clock_ghz=clock_ghz,
            fan_rpm=self._fan_rpm(),
            timestamp=time.time(),
        )

    async def read(self) -> HardwareSnapshot:
        # psutil and sysfs reads block
        return await asyncio.to_thread(self.read_sync)


class ReplayProbe:
    """
    Replays scripted snapshots in order, then keeps returning the last one.
    Each returned snapshot is stamped with the current time.
    """

    def __init__(self, snapshots: Optional[Sequence[HardwareSnapshot]] = None):
        self._queue = deque(snapshots or [HardwareSnapshot()])
        self._last = self._queue[0]
        self.reads = 0

    def push(self, *snapshots: HardwareSnapshot) -> None:
        self._queue.extend(snapshots)

    def set(self, snapshot: HardwareSnapshot) -> None:
        self._queue.clear()
        self._queue.append(snapshot)

    async def read(self) -> HardwareSnapshot:
        self.reads += 1
        if self._queue:
            self._last = self._queue.popleft()
        return replace(self._last, timestamp=time.time())


# =============================================================================
# Sampler
# =============================================================================

class HardwareTelemetrySampler:
    """
    Adaptive-period telemetry loop.

    Example:
        >>> sampler = HardwareTelemetrySampler(SystemProbe(), AlertChannel())
        >>> await sampler.start()
        >>> sampler.latest()
    """

    def __init__(
        self,
        probe: HardwareProbe,
        channel: Optional[AlertChannel] = None,
        limits: Optional[PlatformLimits] = None,
        config: Optional[TelemetryConfig] = None,
    ):
        self.probe = probe
        self.channel = channel or AlertChannel()
        self.limits = limits or DEFAULT_PLATFORM_LIMITS
        self.config = config or DEFAULT_TELEMETRY_CONFIG

        self._ring: deque = deque(maxlen=self.config.history_size)
        self._task: Optional[asyncio.Task] = None
        self.samples_taken = 0
        self.probe_failures = 0
        self.alerts_raised = 0

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="edgelearn-telemetry")
        logger.info(f"Telemetry sampler started (interval={self.config.interval_s}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"Telemetry sampler stopped after {self.samples_taken} samples")

    async def _run(self) -> None:
        while True:
            interval = self.config.interval_s
            try:
                snapshot = await self.sample_now()
                interval = self.next_interval(snapshot)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.probe_failures += 1
                logger.error(f"Telemetry probe failed: {exc}")
            await asyncio.sleep(interval)

    # -------------------------------------------------------------------------
    # Sampling
    # -------------------------------------------------------------------------

    async def sample_now(self) -> HardwareSnapshot:
        snapshot = self._record(await self.probe.read())
        for alert in self.evaluate_alerts(snapshot):
            self.alerts_raised += 1
            self.channel.publish(alert)
        return snapshot

    def _record(self, snapshot: HardwareSnapshot) -> HardwareSnapshot:
        if self._ring and snapshot.timestamp <= self._ring[-1].timestamp:
            snapshot = replace(snapshot, timestamp=self._ring[-1].timestamp + TIMESTAMP_EPSILON)
        self._ring.append(snapshot)
        self.samples_taken += 1
        return snapshot

    def evaluate_alerts(self, snapshot: HardwareSnapshot) -> List[HardwareAlert]:
        alerts: List[HardwareAlert] = []
        ratio = self.config.thermal_alert_ratio
        reasons = []
        if snapshot.cpu_temp_c >= ratio * self.limits.max_cpu_temp_c:
            reasons.append("cpu_temperature")
        if snapshot.gpu_temp_c >= ratio * self.limits.max_gpu_temp_c:
            reasons.append("gpu_temperature")
        if snapshot.thermal_throttling:
            reasons.append("thermal_throttling")
        if reasons:
            alerts.append(ThermalAlert(snapshot=snapshot, reasons=tuple(reasons)))
        if snapshot.memory_pressure > self.config.memory_alert_pressure:
            alerts.append(MemoryPressureAlert(snapshot=snapshot, pressure=snapshot.memory_pressure))
        return alerts

    def next_interval(self, snapshot: HardwareSnapshot) -> float:
        """Sample faster when any reading is close to an alert threshold."""
        proximity = self.config.proximity_ratio
        ratio = self.config.thermal_alert_ratio
        near = (
            snapshot.thermal_throttling
            or snapshot.cpu_temp_c >= proximity * ratio * self.limits.max_cpu_temp_c
            or snapshot.gpu_temp_c >= proximity * ratio * self.limits.max_gpu_temp_c
            or snapshot.memory_pressure >= proximity * self.config.memory_alert_pressure
        )
        interval = self.config.min_interval_s if near else self.config.interval_s
        return min(max(interval, self.config.min_interval_s), self.config.max_interval_s)

    # -------------------------------------------------------------------------
    # Read access
    # -------------------------------------------------------------------------

    def latest(self) -> Optional[HardwareSnapshot]:
        return self._ring[-1] if self._ring else None

    def history(self, limit: Optional[int] = None) -> List[HardwareSnapshot]:
        snapshots = list(self._ring)
        return snapshots[-limit:] if limit else snapshots

    def get_statistics(self) -> Dict[str, float]:
        return {
            "samples_taken": self.samples_taken,
            "probe_failures": self.probe_failures,
            "alerts_raised": self.alerts_raised,
            "ring_size": len(self._ring),
        }


def create_sampler(
    probe: Optional[HardwareProbe] = None,
    channel: Optional[AlertChannel] = None,
    limits: Optional[PlatformLimits] = None,
    config: Optional[TelemetryConfig] = None,
) -> HardwareTelemetrySampler:
    """Factory function; defaults to reading the host."""
    probe = probe or SystemProbe(config, limits)
    return HardwareTelemetrySampler(probe, channel, limits, config)


__all__ = [
    'HardwareProbe',
    'SystemProbe',
    'ReplayProbe',
    'HardwareTelemetrySampler',
    'create_sampler',
]
