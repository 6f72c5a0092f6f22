"""
EdgeLearn Core - Optimization Module
Subsystem O: Hardware-Aware Optimization (5 Methods)

Components:
    - O1: Techniques (real transforms + runtime effect table)
    - O2-O5: HardwareAwareOptimizationController
"""

from .techniques import Technique, run_technique, estimate_latency_ms
from .controller import OptimizationCache, HardwareAwareOptimizationController, create_controller

__all__ = [
    'Technique',
    'run_technique',
    'estimate_latency_ms',
    'OptimizationCache',
    'HardwareAwareOptimizationController',
    'create_controller',
]
