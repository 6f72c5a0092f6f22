"""
EdgeLearn - Hardware Telemetry Tests
Tests for the sampler ring, alert dispatch and the safety gate

Run with: python -m pytest tests/test_telemetry.py -v
"""

import asyncio

import pytest

from conftest import cool_snapshot


class FixedClockProbe:
    """Always reports the same timestamp."""

    def __init__(self, snapshot):
        self.snapshot = snapshot

    async def read(self):
        return self.snapshot


class FailingProbe:
    async def read(self):
        raise OSError("sensor unavailable")


# =============================================================================
# Test H2: Sampler
# =============================================================================

class TestHardwareTelemetrySampler:
    """Tests for the sampling ring and adaptive period"""

    def test_ring_is_bounded(self):
        """The ring keeps only the configured number of snapshots"""
        from edgelearn.core.config import TelemetryConfig
        from edgelearn.hardware import HardwareTelemetrySampler, ReplayProbe

        sampler = HardwareTelemetrySampler(ReplayProbe([cool_snapshot()]), config=TelemetryConfig(history_size=5))

        async def run():
            for _ in range(12):
                await sampler.sample_now()

        asyncio.run(run())

        assert len(sampler.history()) == 5
        assert sampler.samples_taken == 12
        assert len(sampler.history(limit=2)) == 2

    def test_default_ring_holds_100(self):
        from edgelearn.hardware import HardwareTelemetrySampler, ReplayProbe

        sampler = HardwareTelemetrySampler(ReplayProbe())

        async def run():
            for _ in range(130):
                await sampler.sample_now()

        asyncio.run(run())
        assert len(sampler.history()) == 100

    def test_timestamps_strictly_increase(self):
        """Equal probe timestamps are nudged forward"""
        from edgelearn.hardware import HardwareTelemetrySampler

        sampler = HardwareTelemetrySampler(FixedClockProbe(cool_snapshot(timestamp=100.0)))

        async def run():
            for _ in range(10):
                await sampler.sample_now()

        asyncio.run(run())

        stamps = [s.timestamp for s in sampler.history()]
        assert all(b > a for a, b in zip(stamps, stamps[1:]))
        assert sampler.latest().timestamp == stamps[-1]

    def test_latest_before_sampling(self):
        from edgelearn.hardware import HardwareTelemetrySampler, ReplayProbe

        assert HardwareTelemetrySampler(ReplayProbe()).latest() is None

    def test_interval_shortens_near_thresholds(self):
        from edgelearn.hardware import HardwareTelemetrySampler, ReplayProbe

        sampler = HardwareTelemetrySampler(ReplayProbe())

        assert sampler.next_interval(cool_snapshot()) == 5.0
        assert sampler.next_interval(cool_snapshot(cpu_temp_c=70.0)) == 1.0
        assert sampler.next_interval(cool_snapshot(memory_pressure=0.75)) == 1.0
        assert sampler.next_interval(cool_snapshot(thermal_throttling=True)) == 1.0

    def test_loop_starts_and_stops(self):
        from edgelearn.hardware import HardwareTelemetrySampler, ReplayProbe

        sampler = HardwareTelemetrySampler(ReplayProbe())

        async def run():
            await sampler.start()
            assert sampler.is_running
            await asyncio.sleep(0.05)
            await sampler.stop()

        asyncio.run(run())

        assert not sampler.is_running
        assert sampler.samples_taken >= 1

    def test_probe_failure_keeps_loop_alive(self):
        """A failing probe is counted, not raised out of the loop"""
        from edgelearn.hardware import HardwareTelemetrySampler

        sampler = HardwareTelemetrySampler(FailingProbe())

        async def run():
            await sampler.start()
            await asyncio.sleep(0.05)
            running = sampler.is_running
            await sampler.stop()
            return running

        assert asyncio.run(run())
        assert sampler.probe_failures >= 1

    def test_system_probe_reads_host(self):
        """The host probe returns a plausible snapshot"""
        from edgelearn.hardware import SystemProbe

        snapshot = SystemProbe().read_sync()

        assert 0.0 <= snapshot.memory_pressure <= 1.0
        assert snapshot.memory_used_mb > 0
        assert snapshot.cpu_temp_c >= 0.0

    def test_system_probe_reads_off_the_event_loop(self, monkeypatch):
        """Blocking host reads run in a worker thread"""
        import threading
        from edgelearn.core.types import HardwareSnapshot
        from edgelearn.hardware import SystemProbe

        probe = SystemProbe()
        threads = []

        def read_sync():
            threads.append(threading.get_ident())
            return HardwareSnapshot()

        monkeypatch.setattr(probe, "read_sync", read_sync)

        async def run():
            await probe.read()
            return threading.get_ident()

        loop_thread = asyncio.run(run())

        assert len(threads) == 1
        assert threads[0] != loop_thread


# =============================================================================
# Test H2: Alerts
# =============================================================================

class TestAlerts:
    """Tests for the typed alert channel"""

    def test_thermal_alert_at_ninety_percent(self):
        from edgelearn.hardware import AlertKind, HardwareTelemetrySampler, ReplayProbe

        sampler = HardwareTelemetrySampler(ReplayProbe())

        assert sampler.evaluate_alerts(cool_snapshot(cpu_temp_c=76.0)) == []
        alerts = sampler.evaluate_alerts(cool_snapshot(cpu_temp_c=77.0))
        assert [a.kind for a in alerts] == [AlertKind.THERMAL]
        assert alerts[0].reasons == ("cpu_temperature",)

    def test_throttling_and_memory_alerts(self):
        from edgelearn.hardware import AlertKind, HardwareTelemetrySampler, ReplayProbe

        sampler = HardwareTelemetrySampler(ReplayProbe())
        alerts = sampler.evaluate_alerts(cool_snapshot(thermal_throttling=True, memory_pressure=0.85))

        assert [a.kind for a in alerts] == [AlertKind.THERMAL, AlertKind.MEMORY_PRESSURE]
        assert alerts[1].pressure == 0.85

    def test_alerts_delivered_to_subscribers(self):
        from edgelearn.hardware import AlertChannel, HardwareTelemetrySampler, ReplayProbe

        channel = AlertChannel()
        received = []
        channel.subscribe(received.append)
        sampler = HardwareTelemetrySampler(ReplayProbe([cool_snapshot(gpu_temp_c=85.0)]), channel)

        async def run():
            await sampler.sample_now()
            await asyncio.sleep(0)

        asyncio.run(run())

        assert len(received) == 1
        assert received[0].reasons == ("gpu_temperature",)
        assert sampler.alerts_raised == 1

    def test_publisher_never_waits_for_handlers(self):
        """A slow subscriber does not delay sampling"""
        from edgelearn.hardware import AlertChannel, HardwareTelemetrySampler, ReplayProbe

        channel = AlertChannel()
        started = []

        async def slow_handler(alert):
            started.append(alert)
            await asyncio.sleep(30)

        channel.subscribe(slow_handler)
        sampler = HardwareTelemetrySampler(ReplayProbe([cool_snapshot(cpu_temp_c=80.0)]), channel)

        async def run():
            await asyncio.wait_for(sampler.sample_now(), timeout=1.0)
            await asyncio.sleep(0)

        asyncio.run(run())
        assert len(started) == 1

    def test_failing_handler_isolated(self):
        """One handler raising does not stop delivery to the others"""
        from edgelearn.hardware import AlertChannel, ThermalAlert

        channel = AlertChannel()
        received = []

        def broken(alert):
            raise RuntimeError("boom")

        channel.subscribe(broken)
        channel.subscribe(received.append)
        channel.publish(ThermalAlert(snapshot=cool_snapshot(), reasons=("cpu_temperature",)))

        assert len(received) == 1
        assert channel.published == 1

    def test_unsubscribe(self):
        from edgelearn.hardware import AlertChannel, ThermalAlert

        channel = AlertChannel()
        received = []
        unsubscribe = channel.subscribe(received.append)
        unsubscribe()
        channel.publish(ThermalAlert(snapshot=cool_snapshot()))

        assert received == []
        assert channel.subscriber_count == 0


# =============================================================================
# Test H3: Safety gate
# =============================================================================

class TestHardwareSafetyGate:
    """Tests for hard-limit checks"""

    def test_cool_snapshot_is_safe(self):
        from edgelearn.hardware import HardwareSafetyGate

        assert HardwareSafetyGate().check(cool_snapshot()) == []

    @pytest.mark.parametrize("overrides,violation", [
        ({"cpu_temp_c": 85.0}, "cpu_temperature"),
        ({"gpu_temp_c": 90.0}, "gpu_temperature"),
        ({"power_w": 15.0}, "power"),
        ({"memory_pressure": 0.95}, "memory_pressure"),
        ({"thermal_throttling": True}, "thermal_throttling"),
    ])
    def test_each_limit(self, overrides, violation):
        from edgelearn.hardware import HardwareSafetyGate

        assert [v.value for v in HardwareSafetyGate().check(cool_snapshot(**overrides))] == [violation]

    def test_enforce_raises_with_snapshot(self):
        from edgelearn.core.errors import HardwareConstrainedError
        from edgelearn.hardware import HardwareSafetyGate

        gate = HardwareSafetyGate()
        hot = cool_snapshot(cpu_temp_c=86.0)

        with pytest.raises(HardwareConstrainedError) as info:
            gate.enforce(hot)

        assert info.value.snapshot is hot
        assert info.value.violations == ["cpu_temperature"]
        assert info.value.retryable
        assert len(gate.violation_history) == 1
