"""
Shared builders for the EdgeLearn test suite.

Run with: python -m pytest tests/ -v
"""

import pytest

from edgelearn.core.config import EngineConfig
from edgelearn.core.types import (
    DayOfWeek,
    DeviceContext,
    EnvironmentalContext,
    HardwareSnapshot,
    IdentifiedPattern,
    PatternContext,
    PatternType,
    SocialContext,
    TemporalContext,
    TimeOfDay,
)


def home_context(time_of_day=TimeOfDay.MORNING, day=DayOfWeek.MONDAY):
    """A fully populated context including identifying fields."""
    return PatternContext.of(
        TemporalContext(time_of_day=time_of_day, day_of_week=day, time_zone="Europe/Berlin"),
        EnvironmentalContext(location="kitchen", noise_level_db=25.0, natural_light=True, temperature_c=21.5),
        SocialContext(present_users=("alice",)),
        DeviceContext(device_type="hub", input_method="voice", connectivity="online"),
    )


def make_patterns(count, pattern_type=PatternType.TEMPORAL, strength=0.8, context=None, prefix="p"):
    context = context or home_context()
    return [
        IdentifiedPattern(
            id=f"{prefix}-{i}",
            type=pattern_type,
            strength=strength,
            frequency=3.0,
            context=context,
        )
        for i in range(count)
    ]


def consistent_patterns(count=50):
    """Identical context and type with strengths cycling 0.8..0.96."""
    context = home_context()
    return [
        IdentifiedPattern(
            id=f"consistent-{i}",
            type=PatternType.TEMPORAL,
            strength=0.8 + (i % 5) * 0.04,
            frequency=5.0,
            context=context,
        )
        for i in range(count)
    ]


def conflicting_patterns(count=32, seed=11):
    """
    Identical context, random strengths, and a type majority that flips
    every 8 patterns (7 of one type, 1 of the other).
    """
    import numpy as np

    rng = np.random.default_rng(seed)
    context = home_context()
    types = (PatternType.BEHAVIORAL, PatternType.CONTEXTUAL)
    return [
        IdentifiedPattern(
            id=f"conflict-{i}",
            type=types[(i // 8 + (i % 8 == 0)) % 2],
            strength=float(rng.uniform(0.5, 1.0)),
            frequency=float(rng.uniform(0.0, 5.0)),
            context=context,
        )
        for i in range(count)
    ]


def cool_snapshot(**overrides):
    values = dict(cpu_temp_c=45.0, gpu_temp_c=45.0, memory_pressure=0.3, power_w=5.0)
    values.update(overrides)
    return HardwareSnapshot(**values)


@pytest.fixture
def engine_config():
    """Engine configuration without background loops or real waits."""
    config = EngineConfig()
    config.telemetry.autostart = False
    config.check_system_memory = False
    config.optimizer.cooldown_s = 0.0
    config.optimizer.retry_backoff_s = 0.0
    config.privacy.seed = 7
    return config


@pytest.fixture
def noiseless_config(engine_config):
    engine_config.privacy.noise_enabled = False
    return engine_config
