"""
EdgeLearn - Adaptive Learning Engine Tests
End-to-end tests for the orchestrator: lifecycle, training, degraded
operations and the recovery worker

Run with: python -m pytest tests/test_engine.py -v
"""

import asyncio

import pytest
import numpy as np

from conftest import conflicting_patterns, consistent_patterns, cool_snapshot, home_context, make_patterns


def _engine(config, snapshots=None):
    from edgelearn.engine import AdaptiveLearningEngine
    from edgelearn.hardware import ReplayProbe

    probe = ReplayProbe(snapshots or [cool_snapshot()])
    return AdaptiveLearningEngine(config, probe=probe), probe


def _feedback(overall=5):
    from edgelearn.core.types import FeedbackRating, PatternType, UserFeedback

    return UserFeedback(pattern_type=PatternType.PREFERENCE, rating=FeedbackRating(overall=overall), context=home_context())


# =============================================================================
# Test E1: Lifecycle
# =============================================================================

class TestEngineLifecycle:
    """Operations are gated on the engine state"""

    def test_operations_require_initialize(self, engine_config):
        from edgelearn.core.errors import EngineStateError

        engine, _ = _engine(engine_config)

        with pytest.raises(EngineStateError):
            asyncio.run(engine.train_user_model("user-1", make_patterns(3)))
        with pytest.raises(EngineStateError):
            engine.get_model_metrics("user-1")

    def test_cannot_restart_after_shutdown(self, engine_config):
        from edgelearn.core.errors import EngineStateError
        from edgelearn.engine import EngineState

        engine, _ = _engine(engine_config)

        async def run():
            await engine.initialize()
            await engine.shutdown()
            with pytest.raises(EngineStateError):
                await engine.train_user_model("user-1", make_patterns(3))
            with pytest.raises(EngineStateError):
                await engine.initialize()

        asyncio.run(run())
        assert engine.state is EngineState.STOPPED

    def test_context_manager_emits_lifecycle_events(self, engine_config):
        from edgelearn.engine import AdaptiveLearningEngine, EngineState
        from edgelearn.events import LearningEventType
        from edgelearn.hardware import ReplayProbe

        async def run():
            async with AdaptiveLearningEngine(engine_config, probe=ReplayProbe()) as engine:
                assert engine.state is EngineState.INITIALIZED
                assert engine.sampler.samples_taken == 1
            return engine

        engine = asyncio.run(run())

        assert engine.state is EngineState.STOPPED
        types = engine.events.types()
        assert types[0] is LearningEventType.SYSTEM_STARTED
        assert types[-1] is LearningEventType.SYSTEM_STOPPED

    def test_invalid_config_rejected(self, engine_config):
        from edgelearn.core.errors import ValidationError
        from edgelearn.engine import AdaptiveLearningEngine

        engine_config.privacy.session_epsilon = 500.0
        with pytest.raises(ValidationError):
            AdaptiveLearningEngine(engine_config)


# =============================================================================
# Test E2: Training
# =============================================================================

class TestTraining:
    """Full training pipeline through the engine"""

    def test_consistent_patterns_converge(self, noiseless_config):
        """Same context, same type: the model converges with high accuracy"""
        from edgelearn.core.types import ConvergenceStatus

        engine, _ = _engine(noiseless_config)

        async def run():
            async with engine:
                return await engine.train_user_model("user-1", consistent_patterns(50))

        result = asyncio.run(run())

        assert result.success
        assert result.model_version == 1
        assert result.convergence_status is ConvergenceStatus.CONVERGED
        assert result.improvement_metrics.accuracy > 0.7
        assert result.privacy_budget_remaining == pytest.approx(198.0)

    def test_conflicting_patterns_do_not_converge(self, noiseless_config):
        """Flipping type majorities keep the gradient large"""
        from edgelearn.core.types import ConvergenceStatus

        engine, _ = _engine(noiseless_config)

        async def run():
            async with engine:
                return await engine.train_user_model("user-1", conflicting_patterns())

        result = asyncio.run(run())

        assert result.success
        assert result.convergence_status in (ConvergenceStatus.DIVERGED, ConvergenceStatus.STALLED)

    def test_noisy_training_succeeds(self, engine_config):
        engine, _ = _engine(engine_config)

        async def run():
            async with engine:
                return await engine.train_user_model("user-1", make_patterns(16))

        result = asyncio.run(run())
        assert result.model_version == 1
        assert np.isfinite(result.convergence_score)

    def test_events_carry_pseudonymized_user(self, engine_config):
        from edgelearn.events import LearningEventType
        from edgelearn.privacy import pseudonymize

        engine, _ = _engine(engine_config)

        async def run():
            async with engine:
                await engine.train_user_model("user-1", make_patterns(8))

        asyncio.run(run())

        started = engine.events.history(LearningEventType.TRAINING_STARTED)
        completed = engine.events.history(LearningEventType.TRAINING_COMPLETED)
        token = pseudonymize("user-1", engine_config.privacy.pseudonym_salt)

        assert len(started) == len(completed) == 1
        assert completed[0].user_id == token
        assert "user-1" not in str(completed[0].to_dict())
        assert completed[0].payload["model_version"] == 1

    def test_validation_error_propagates(self, engine_config):
        from edgelearn.core.errors import ValidationError
        from edgelearn.events import LearningEventType

        engine, _ = _engine(engine_config)

        async def run():
            async with engine:
                with pytest.raises(ValidationError):
                    await engine.train_user_model("user-1", [])

        asyncio.run(run())

        failed = engine.events.history(LearningEventType.TRAINING_FAILED)
        assert len(failed) == 1
        assert failed[0].payload["error"]["code"] == "VALIDATION_ERROR"
        assert engine.privacy_budget_remaining("user-1") == engine_config.privacy.total_budget

    @pytest.mark.parametrize("context", [None, {"location": "home"}])
    def test_untyped_context_rejected_before_charge(self, engine_config, context):
        """A context that is not a PatternContext never reaches the accountant"""
        from edgelearn.core.errors import ValidationError
        from edgelearn.core.types import IdentifiedPattern, PatternType

        engine, _ = _engine(engine_config)
        bad = IdentifiedPattern(id="x", type=PatternType.TEMPORAL, strength=0.5, frequency=1.0, context=context)

        async def run():
            async with engine:
                with pytest.raises(ValidationError):
                    await engine.train_user_model("user-1", [bad])

        asyncio.run(run())

        assert engine.privacy_budget_remaining("user-1") == engine_config.privacy.total_budget
        assert engine.store.load("user-1") is None

    def test_configured_salt_used_in_logs(self, engine_config):
        """Trainer and optimizer log lines carry pseudonyms under the configured salt"""
        from loguru import logger
        from edgelearn.privacy import pseudonymize

        engine_config.privacy.pseudonym_salt = "secret-salt"
        engine, _ = _engine(engine_config)
        lines = []
        handler_id = logger.add(lines.append, level="DEBUG", format="{message}")

        async def run():
            async with engine:
                await engine.train_user_model("alice", make_patterns(8))
                await engine.optimize_model("alice")

        try:
            asyncio.run(run())
        finally:
            logger.remove(handler_id)

        text = "".join(lines)
        assert f"Trained {pseudonymize('alice', 'secret-salt')}" in text
        assert f"Optimizing {pseudonymize('alice', 'secret-salt')}" in text
        assert pseudonymize("alice") not in text
        assert "alice" not in text

    def test_local_round_runs_off_the_event_loop(self, engine_config, monkeypatch):
        """The local round does not block the event loop"""
        import threading

        engine, _ = _engine(engine_config)
        real_update = engine.trainer.update
        threads = []

        def update(*args):
            threads.append(threading.get_ident())
            return real_update(*args)

        monkeypatch.setattr(engine.trainer, "update", update)

        async def run():
            async with engine:
                result = await engine.train_user_model("user-1", make_patterns(8))
                return result, threading.get_ident()

        result, loop_thread = asyncio.run(run())

        assert result.model_version == 1
        assert threads and threads[0] != loop_thread

    def test_privacy_budget_exhaustion(self, engine_config):
        """Training is refused once the lifetime budget is spent"""
        from edgelearn.core.errors import PrivacyBudgetExhaustedError

        engine_config.privacy.total_budget = 4.0
        engine, _ = _engine(engine_config)

        async def run():
            async with engine:
                await engine.train_user_model("user-1", make_patterns(8))
                await engine.train_user_model("user-1", make_patterns(8))
                with pytest.raises(PrivacyBudgetExhaustedError):
                    await engine.train_user_model("user-1", make_patterns(8))
                await engine.train_user_model("user-2", make_patterns(8))

        asyncio.run(run())

        assert engine.privacy_budget_remaining("user-1") == 0.0
        assert engine.privacy_budget_remaining("user-2") == pytest.approx(2.0)
        assert engine.get_model_metrics("user-1").model_version == 2

    def test_same_user_calls_serialized(self, engine_config):
        """Concurrent calls for one user apply one after the other"""
        engine, _ = _engine(engine_config)

        async def run():
            async with engine:
                return await asyncio.gather(
                    engine.train_user_model("user-1", make_patterns(8)),
                    engine.train_user_model("user-1", make_patterns(8)),
                )

        results = asyncio.run(run())

        assert sorted(r.model_version for r in results) == [1, 2]
        assert engine.store.load("user-1").version == 2

    def test_metrics_after_training(self, noiseless_config):
        from edgelearn.core.types import ConvergenceStatus

        engine, _ = _engine(noiseless_config)

        async def run():
            async with engine:
                await engine.train_user_model("user-1", consistent_patterns(50))
                return engine.get_model_metrics("user-1")

        metrics = asyncio.run(run())

        assert metrics.model_version == 1
        assert metrics.training_cycles == 1
        assert metrics.total_parameters == 708
        assert metrics.convergence_status is ConvergenceStatus.CONVERGED
        assert metrics.memory_footprint_mb < 0.01

    def test_optimize_after_training(self, engine_config):
        from edgelearn.events import LearningEventType

        engine_config.optimize_after_training = True
        engine, _ = _engine(engine_config)

        async def run():
            async with engine:
                await engine.train_user_model("user-1", make_patterns(8))
                await engine.wait_for_recovery()

        asyncio.run(run())

        recovered = engine.events.history(LearningEventType.RECOVERY_COMPLETED)
        assert len(recovered) == 1
        assert recovered[0].payload["trigger"] == "post_training"


# =============================================================================
# Test E3: Updates, validation, optimization, reset
# =============================================================================

class TestModelOperations:
    """Public per-user operations and their fallback behavior"""

    def test_update_model_applies_feedback(self, engine_config):
        engine, _ = _engine(engine_config)

        async def run():
            async with engine:
                await engine.train_user_model("user-1", make_patterns(8))
                return await engine.update_model("user-1", _feedback(5))

        result = asyncio.run(run())

        assert result.success
        assert not result.fallback
        assert result.model_version == 2
        assert result.changes
        assert engine.get_model_metrics("user-1").training_cycles == 1

    @pytest.mark.parametrize("overall", [0, 6])
    def test_update_rejects_bad_rating(self, engine_config, overall):
        from edgelearn.core.errors import ValidationError

        engine, _ = _engine(engine_config)

        async def run():
            async with engine:
                with pytest.raises(ValidationError):
                    await engine.update_model("user-1", _feedback(overall))

        asyncio.run(run())

    def test_update_falls_back_on_unexpected_error(self, engine_config):
        """Unclassified failures produce a fallback result, not an exception"""
        from edgelearn.events import LearningEventType

        engine, _ = _engine(engine_config)

        def broken(*args, **kwargs):
            raise RuntimeError("numerical library crashed")

        async def run():
            async with engine:
                await engine.train_user_model("user-1", make_patterns(8))
                engine.trainer.apply_feedback = broken
                return await engine.update_model("user-1", _feedback(4))

        result = asyncio.run(run())

        assert result.fallback
        assert not result.success
        assert result.model_version == 1
        assert engine.events.history(LearningEventType.MODEL_UPDATE_FAILED)
        assert engine.events.history(LearningEventType.FALLBACK_MODE_ACTIVATED)
        assert engine.fallbacks == 1

    def test_validate_trained_model(self, noiseless_config):
        engine, _ = _engine(noiseless_config)

        async def run():
            async with engine:
                await engine.train_user_model("user-1", consistent_patterns(50))
                return await engine.validate_model("user-1")

        result = asyncio.run(run())

        assert result.is_valid
        assert not result.fallback
        assert result.accuracy > 0.7
        assert all(issue.severity not in ("high", "critical") for issue in result.issues)

    def test_validate_flags_non_finite_weights(self, engine_config):
        from edgelearn.learning import initialize_weights

        engine, _ = _engine(engine_config)
        weights = initialize_weights()
        weights.layers[0].weights[0, 0] = np.nan
        engine.store.save("user-1", weights)

        async def run():
            async with engine:
                return await engine.validate_model("user-1")

        result = asyncio.run(run())

        assert not result.is_valid
        assert [issue.type for issue in result.issues] == ["numerical_instability"]
        assert result.issues[0].severity == "critical"

    def test_validate_flags_degenerate_model(self, engine_config):
        """A model whose output ignores its input is invalid"""
        from edgelearn.learning import initialize_weights

        engine, _ = _engine(engine_config)
        weights = initialize_weights()
        for layer in weights.layers:
            layer.weights = np.zeros_like(layer.weights)
            layer.biases = np.zeros_like(layer.biases)
        engine.store.save("user-1", weights)

        async def run():
            async with engine:
                return await engine.validate_model("user-1")

        result = asyncio.run(run())
        kinds = [issue.type for issue in result.issues]

        assert not result.is_valid
        assert "degenerate_output" in kinds
        assert "low_confidence" in kinds

    def test_validate_missing_model(self, engine_config):
        from edgelearn.core.errors import ValidationError
        from edgelearn.events import LearningEventType

        engine, _ = _engine(engine_config)

        async def run():
            async with engine:
                with pytest.raises(ValidationError):
                    await engine.validate_model("nobody")

        asyncio.run(run())
        assert engine.events.history(LearningEventType.VALIDATION_FAILED)

    def test_validate_falls_back(self, engine_config, monkeypatch):
        import edgelearn.engine as engine_module

        engine, _ = _engine(engine_config)

        def broken(*args, **kwargs):
            raise RuntimeError("forward pass failed")

        async def run():
            async with engine:
                await engine.train_user_model("user-1", make_patterns(8))
                monkeypatch.setattr(engine_module, "forward", broken)
                return await engine.validate_model("user-1")

        result = asyncio.run(run())

        assert result.fallback
        assert result.accuracy == 0.5
        assert result.confidence == 0.5

    def test_optimize_model_shrinks_and_bumps_version(self, engine_config):
        from edgelearn.core.types import OptimizationGoals

        engine, _ = _engine(engine_config)

        async def run():
            async with engine:
                await engine.train_user_model("user-1", make_patterns(8))
                result = await engine.optimize_model("user-1", OptimizationGoals(max_memory_mb=0.001))
                return result, engine.get_model_metrics("user-1")

        result, metrics = asyncio.run(run())

        assert result.size_after_mb < result.size_before_mb
        assert result.model_version == 2
        assert metrics.model_version == 2

    def test_optimize_model_falls_back(self, engine_config):
        from edgelearn.events import LearningEventType

        engine, _ = _engine(engine_config)

        async def broken(*args, **kwargs):
            raise RuntimeError("technique crashed")

        async def run():
            async with engine:
                await engine.train_user_model("user-1", make_patterns(8))
                engine.optimizer.optimize = broken
                return await engine.optimize_model("user-1")

        result = asyncio.run(run())

        assert result.fallback
        assert result.size_after_mb == result.size_before_mb
        assert result.model_version == 1
        assert engine.events.history(LearningEventType.FALLBACK_MODE_ACTIVATED)

    def test_optimize_hardware_error_propagates(self, engine_config):
        from edgelearn.core.errors import HardwareConstrainedError

        engine, _ = _engine(engine_config)

        async def run():
            async with engine:
                await engine.train_user_model("user-1", make_patterns(8))
                with pytest.raises(HardwareConstrainedError):
                    await engine.optimize_model("user-1", snapshot=cool_snapshot(power_w=20.0))

        asyncio.run(run())
        assert engine.fallbacks == 0

    def test_reset_keeps_privacy_ledger(self, engine_config):
        """Forgetting a model never refunds spent privacy budget"""
        from edgelearn.core.errors import ValidationError

        engine, _ = _engine(engine_config)

        async def run():
            async with engine:
                await engine.train_user_model("user-1", make_patterns(8))
                first = await engine.reset_user_model("user-1")
                second = await engine.reset_user_model("user-1")
                with pytest.raises(ValidationError):
                    engine.get_model_metrics("user-1")
                return first, second

        first, second = asyncio.run(run())

        assert first is True
        assert second is False
        assert engine.privacy_budget_remaining("user-1") == pytest.approx(198.0)
        assert engine.convergence.history("user-1") == []


# =============================================================================
# Test E4: Recovery worker
# =============================================================================

class TestRecovery:
    """Alerts and queued feedback are handled off the caller's path"""

    def test_thermal_alert_triggers_recovery(self, engine_config):
        from edgelearn.events import LearningEventType

        engine, probe = _engine(engine_config)

        async def run():
            async with engine:
                await engine.train_user_model("user-1", make_patterns(8))
                await engine.train_user_model("user-2", make_patterns(8))
                probe.set(cool_snapshot(cpu_temp_c=80.0))
                await engine.sampler.sample_now()
                await asyncio.sleep(0)
                await engine.wait_for_recovery()

        asyncio.run(run())

        assert engine.events.history(LearningEventType.THERMAL_ALERT)
        recovered = engine.events.history(LearningEventType.RECOVERY_COMPLETED)
        assert len(recovered) == 2
        assert all(event.payload["trigger"] == "thermal" for event in recovered)
        assert engine.recoveries_completed == 2
        assert engine.store.load("user-1").version == 2

    def test_memory_pressure_alert_triggers_recovery(self, engine_config):
        from edgelearn.events import LearningEventType

        engine, probe = _engine(engine_config)

        async def run():
            async with engine:
                await engine.train_user_model("user-1", make_patterns(8))
                probe.set(cool_snapshot(memory_pressure=0.85))
                await engine.sampler.sample_now()
                await asyncio.sleep(0)
                await engine.wait_for_recovery()

        asyncio.run(run())

        assert engine.events.history(LearningEventType.MEMORY_PRESSURE_ALERT)
        recovered = engine.events.history(LearningEventType.RECOVERY_COMPLETED)
        assert [event.payload["trigger"] for event in recovered] == ["memory_pressure"]

    def test_recovery_failure_is_isolated(self, engine_config):
        """A user that keeps failing does not block the others"""
        from edgelearn.core.errors import HardwareConstrainedError
        from edgelearn.events import LearningEventType

        engine, probe = _engine(engine_config)
        real_optimize = engine.optimizer.optimize

        async def flaky(user_id, goals=None, snapshot=None):
            if user_id == "user-2":
                raise HardwareConstrainedError("still hot", snapshot=cool_snapshot(), violations=["cpu_temperature"])
            return await real_optimize(user_id, goals, snapshot)

        async def run():
            async with engine:
                await engine.train_user_model("user-1", make_patterns(8))
                await engine.train_user_model("user-2", make_patterns(8))
                engine.optimizer.optimize = flaky
                probe.set(cool_snapshot(cpu_temp_c=80.0))
                await engine.sampler.sample_now()
                await asyncio.sleep(0)
                await engine.wait_for_recovery()

        asyncio.run(run())

        failed = engine.events.history(LearningEventType.RECOVERY_FAILED)
        assert len(failed) == 1
        assert failed[0].payload["attempts"] == engine_config.optimizer.max_retries + 1
        assert engine.recoveries_completed == 1
        assert engine.recoveries_failed == 1

    def test_submitted_feedback_processed_by_worker(self, engine_config):
        from edgelearn.events import LearningEventType

        engine, _ = _engine(engine_config)

        async def run():
            async with engine:
                await engine.train_user_model("user-1", make_patterns(8))
                queued = engine.submit_feedback("user-1", _feedback(2))
                await engine.wait_for_recovery()
                return queued

        assert asyncio.run(run())
        assert engine.events.history(LearningEventType.FEEDBACK_RECEIVED)
        assert engine.events.history(LearningEventType.MODEL_UPDATE_COMPLETED)
        assert engine.store.load("user-1").version == 2

    def test_statistics(self, engine_config):
        engine, _ = _engine(engine_config)

        async def run():
            async with engine:
                await engine.train_user_model("user-1", make_patterns(8))
                return engine.get_statistics()

        stats = asyncio.run(run())

        assert stats["state"] == "initialized"
        assert stats["users"] == 1
        assert stats["queued_jobs"] == 0
        assert "optimizer_cache_hits" in stats
        assert stats["telemetry_samples_taken"] >= 1
