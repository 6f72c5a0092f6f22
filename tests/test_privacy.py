"""
EdgeLearn - Privacy Tests
Tests for the Laplace sanitizer, context anonymization and budget accounting

Run with: python -m pytest tests/test_privacy.py -v
"""

import math

import pytest
import numpy as np

from conftest import home_context, make_patterns


# =============================================================================
# Test P1-P2: Laplace mechanism
# =============================================================================

class TestDifferentialPrivacySanitizer:
    """Tests for the pattern sanitizer"""

    def test_noise_disabled_is_idempotent(self):
        """With noise off, repeated sanitization gives identical output"""
        from edgelearn.core.config import PrivacyConfig
        from edgelearn.privacy import DifferentialPrivacySanitizer

        sanitizer = DifferentialPrivacySanitizer(PrivacyConfig(noise_enabled=False))
        patterns = make_patterns(5, strength=0.6)

        first = sanitizer.sanitize(patterns, "user-1")
        second = sanitizer.sanitize(patterns, "user-1")

        assert first == second
        assert all(p.strength == 0.6 for p in first)
        assert all(p.frequency == 3.0 for p in first)
        assert all(p.noise_added == 0.0 for p in first)

    def test_infinite_epsilon_adds_no_noise(self):
        """An infinite epsilon yields a zero noise scale"""
        from edgelearn.privacy import DifferentialPrivacySanitizer

        sanitizer = DifferentialPrivacySanitizer()
        patterns = make_patterns(4, strength=0.9)
        params = sanitizer.privacy_params(patterns, math.inf)

        assert params.noise_scale == 0.0
        assert [p.strength for p in sanitizer.sanitize(patterns, "user-1", params)] == [0.9] * 4

    def test_sensitivity_is_max_strength(self):
        """Noise scale follows sensitivity / epsilon"""
        from edgelearn.core.types import IdentifiedPattern, PatternType
        from edgelearn.privacy import DifferentialPrivacySanitizer

        sanitizer = DifferentialPrivacySanitizer()
        patterns = [
            IdentifiedPattern(id="a", type=PatternType.TEMPORAL, strength=0.3, frequency=1.0),
            IdentifiedPattern(id="b", type=PatternType.TEMPORAL, strength=0.7, frequency=1.0),
        ]
        params = sanitizer.privacy_params(patterns, epsilon=2.0)

        assert params.sensitivity == pytest.approx(0.7)
        assert params.noise_scale == pytest.approx(0.35)

    @pytest.mark.parametrize("seed", range(10))
    def test_outputs_stay_in_bounds(self, seed):
        """Strength stays in [0, 1] and frequency >= 0 under extreme noise"""
        from edgelearn.core.config import PrivacyConfig
        from edgelearn.privacy import create_sanitizer

        sanitizer = create_sanitizer(PrivacyConfig(seed=seed))
        patterns = make_patterns(40, strength=0.5)
        params = sanitizer.privacy_params(patterns, epsilon=0.01)

        sanitized = sanitizer.sanitize(patterns, "user-1", params)

        assert len(sanitized) == 40
        assert all(0.0 <= p.strength <= 1.0 for p in sanitized)
        assert all(p.frequency >= 0.0 for p in sanitized)

    def test_seeded_noise_is_reproducible(self):
        """Same seed, same noise"""
        from edgelearn.core.config import PrivacyConfig
        from edgelearn.privacy import create_sanitizer

        patterns = make_patterns(10, strength=0.5)
        a = create_sanitizer(PrivacyConfig(seed=3)).sanitize(patterns, "user-1")
        b = create_sanitizer(PrivacyConfig(seed=3)).sanitize(patterns, "user-1")

        assert [p.strength for p in a] == [p.strength for p in b]

    def test_empty_batch(self):
        """Empty input sanitizes to an empty list"""
        from edgelearn.privacy import DifferentialPrivacySanitizer

        assert DifferentialPrivacySanitizer().sanitize([], "user-1") == []

    def test_tokens_are_pseudonyms(self):
        """Pattern ids are replaced by stable salted tokens"""
        from edgelearn.core.config import PrivacyConfig
        from edgelearn.privacy import DifferentialPrivacySanitizer

        sanitizer = DifferentialPrivacySanitizer(PrivacyConfig(noise_enabled=False))
        patterns = make_patterns(3)
        tokens = [p.token for p in sanitizer.sanitize(patterns, "user-1")]

        assert len(set(tokens)) == 3
        assert all(t.startswith("p_") for t in tokens)
        assert not any(p.id in t for p, t in zip(patterns, tokens))
        assert tokens == [p.token for p in sanitizer.sanitize(patterns, "user-1")]


# =============================================================================
# Test P3: Context reduction
# =============================================================================

class TestAnonymization:
    """Tests for context anonymization and payload scrubbing"""

    def test_context_reduced_to_flags(self):
        """Identifying fields never survive anonymization"""
        from dataclasses import asdict
        from edgelearn.core.types import TimeOfDay
        from edgelearn.privacy import anonymize_context

        anon = anonymize_context(home_context())

        assert anon.time_of_day is TimeOfDay.MORNING
        assert anon.is_weekend is False
        assert anon.has_natural_light is True
        assert anon.is_quiet is True
        assert anon.is_alone is True
        assert anon.voice_input is True
        assert anon.is_online is True

        flat = str(asdict(anon))
        for secret in ("kitchen", "Europe/Berlin", "alice", "21.5"):
            assert secret not in flat

    def test_social_flags(self):
        """Family and crowd detection"""
        from edgelearn.core.types import PatternContext, SocialContext
        from edgelearn.privacy import anonymize_context

        ctx = PatternContext.of(SocialContext(present_users=("a", "b"), family_members=("b",), guest_present=True))
        anon = anonymize_context(ctx)

        assert anon.is_alone is False
        assert anon.family_present is True
        assert anon.guest_present is True

    def test_empty_context_defaults(self):
        """Missing facets produce neutral flags"""
        from edgelearn.core.types import AnonymizedContext, PatternContext
        from edgelearn.privacy import anonymize_context

        assert anonymize_context(PatternContext()) == AnonymizedContext()

    def test_scrub_nested_payload(self):
        """User ids are pseudonymized and identifying keys dropped at any depth"""
        from edgelearn.privacy import pseudonymize, scrub

        payload = {
            "user_id": "user-1",
            "location": "kitchen",
            "error": {"context": {"user_id": "user-1", "pattern_count": 3, "comment": "hi"}},
            "items": [{"name": "alice", "value": 1}],
        }
        clean = scrub(payload)

        token = pseudonymize("user-1")
        assert clean["user_id"] == token
        assert "location" not in clean
        assert clean["error"]["context"] == {"user_id": token, "pattern_count": 3}
        assert clean["items"] == [{"value": 1}]
        assert scrub(clean) == clean

    def test_pseudonym_depends_on_salt(self):
        from edgelearn.privacy import pseudonymize

        assert pseudonymize("user-1", "a") != pseudonymize("user-1", "b")
        assert pseudonymize("user-1", "a") == pseudonymize("user-1", "a")


# =============================================================================
# Test: Privacy budget
# =============================================================================

class TestPrivacyAccountant:
    """Tests for the per-user epsilon ledger"""

    def test_charge_until_exhausted(self):
        """Spending is monotonic and refused once the budget is gone"""
        from edgelearn.core.errors import PrivacyBudgetExhaustedError
        from edgelearn.privacy import PrivacyAccountant

        accountant = PrivacyAccountant(total_budget=5.0)
        spent = []
        for _ in range(2):
            accountant.charge("user-1", 2.0)
            spent.append(accountant.spent("user-1"))

        assert spent == [2.0, 4.0]
        assert accountant.remaining("user-1") == pytest.approx(1.0)

        with pytest.raises(PrivacyBudgetExhaustedError):
            accountant.charge("user-1", 2.0)
        assert accountant.spent("user-1") == 4.0

    def test_users_are_independent(self):
        from edgelearn.privacy import PrivacyAccountant

        accountant = PrivacyAccountant(total_budget=2.0)
        accountant.charge("user-1", 2.0)

        assert accountant.can_spend("user-2", 2.0)
        assert not accountant.can_spend("user-1", 0.5)

    def test_rejects_non_positive_epsilon(self):
        from edgelearn.core.errors import ValidationError
        from edgelearn.privacy import PrivacyAccountant

        with pytest.raises(ValidationError):
            PrivacyAccountant(total_budget=2.0).charge("user-1", 0.0)

    def test_ledger_is_pseudonymized(self):
        """The ledger never holds raw user ids"""
        from edgelearn.privacy import PrivacyAccountant, pseudonymize

        accountant = PrivacyAccountant(total_budget=10.0)
        accountant.charge("user-1", 1.0)
        accountant.charge("user-2", 1.5)

        entries = accountant.ledger("user-1")
        assert len(entries) == 1
        assert entries[0][1] == pseudonymize("user-1")
        assert all("user-" not in entry[1] for entry in accountant.ledger())
        assert np.isclose(sum(e[2] for e in accountant.ledger()), 2.5)
