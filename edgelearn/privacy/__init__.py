"""
EdgeLearn Core - Privacy Module
Subsystem P: Differential Privacy

Components:
    - P1-P3: DifferentialPrivacySanitizer
    - Anonymization policy (context reduction, pseudonyms, scrubbing)
    - PrivacyAccountant (per-user epsilon ledger)
"""

from .anonymize import anonymize_context, pseudonymize, scrub
from .sanitizer import DifferentialPrivacySanitizer, create_sanitizer
from .accountant import PrivacyAccountant

__all__ = [
    'anonymize_context',
    'pseudonymize',
    'scrub',
    'DifferentialPrivacySanitizer',
    'create_sanitizer',
    'PrivacyAccountant',
]
