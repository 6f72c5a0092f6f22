"""
EdgeLearn Core - Privacy
Subsystem P: Differential Privacy Sanitizer (Methods P1-P3)

Purpose:
    Noise and anonymize raw behavioral patterns before they reach a model.

Methods:
    P1: Laplace mechanism on strength (scale = sensitivity / epsilon)
    P2: Reduced-scale Laplace noise on frequency
    P3: Context reduction to non-identifying flags

Noise is drawn from ``scipy.stats.laplace`` with an injectable numpy
Generator, so runs are reproducible when a seed is configured.
"""

from typing import List, Optional, Sequence
import math

import numpy as np
from scipy.stats import laplace
from loguru import logger

from ..core.config import PrivacyConfig, DEFAULT_PRIVACY_CONFIG
from ..core.types import IdentifiedPattern, SanitizedPattern, PrivacyParams
from .anonymize import anonymize_context, pseudonymize


class DifferentialPrivacySanitizer:
    """
    Pattern-level Laplace mechanism.

    Sanitization is a pure transform: it never fails, and extreme noise is
    an accepted quality trade-off. With noise disabled (config flag or an
    infinite epsilon) the output depends only on the input.

    Example:
        >>> sanitizer = DifferentialPrivacySanitizer(PrivacyConfig(seed=7))
        >>> clean = sanitizer.sanitize(patterns, "user-1")
    """

    def __init__(self, config: Optional[PrivacyConfig] = None, rng: Optional[np.random.Generator] = None):
        self.config = config or DEFAULT_PRIVACY_CONFIG
        self._rng = rng if rng is not None else np.random.default_rng(self.config.seed)

    def privacy_params(self, patterns: Sequence[IdentifiedPattern], epsilon: Optional[float] = None) -> PrivacyParams:
        """Derive Laplace parameters for a batch; sensitivity is the max strength."""
        epsilon = self.config.session_epsilon if epsilon is None else epsilon
        sensitivity = max((min(max(p.strength, 0.0), 1.0) for p in patterns), default=0.0)
        noise_scale = 0.0 if math.isinf(epsilon) else sensitivity / epsilon
        return PrivacyParams(
            epsilon=epsilon,
            delta=self.config.delta,
            sensitivity=sensitivity,
            noise_scale=noise_scale,
        )

    def sanitize(
        self,
        patterns: Sequence[IdentifiedPattern],
        user_id: str,
        params: Optional[PrivacyParams] = None,
    ) -> List[SanitizedPattern]:
        if not patterns:
            return []
        params = params or self.privacy_params(patterns)

        n = len(patterns)
        strength_noise = self._draw(params.noise_scale, n)
        frequency_noise = self._draw(params.noise_scale * self.config.frequency_noise_ratio, n)

        sanitized = []
        for pattern, s_noise, f_noise in zip(patterns, strength_noise, frequency_noise):
            strength = float(np.clip(pattern.strength + s_noise, 0.0, 1.0))
            frequency = float(max(pattern.frequency + f_noise, 0.0))
            sanitized.append(SanitizedPattern(
                token=pseudonymize(pattern.id, self.config.pseudonym_salt, prefix="p_"),
                type=pattern.type,
                strength=strength,
                frequency=frequency,
                context=anonymize_context(pattern.context),
                noise_added=float(abs(s_noise)),
            ))

        logger.debug(
            f"Sanitized {n} patterns for {pseudonymize(user_id, self.config.pseudonym_salt)} "
            f"(epsilon={params.epsilon}, scale={params.noise_scale:.4f})"
        )
        return sanitized

    def _draw(self, scale: float, size: int) -> np.ndarray:
        if not self.config.noise_enabled or scale <= 0.0 or not math.isfinite(scale):
            return np.zeros(size)
        return laplace.rvs(loc=0.0, scale=scale, size=size, random_state=self._rng)


def create_sanitizer(config: Optional[PrivacyConfig] = None, seed: Optional[int] = None) -> DifferentialPrivacySanitizer:
    """Factory function to create a sanitizer."""
    config = config or DEFAULT_PRIVACY_CONFIG
    rng = np.random.default_rng(config.seed if seed is None else seed)
    return DifferentialPrivacySanitizer(config, rng=rng)


__all__ = [
    'DifferentialPrivacySanitizer',
    'create_sanitizer',
]
