"""
EdgeLearn Core - Learning Module
Subsystem L: Incremental Learning (4 Methods)

Components:
    - L1: Behavior model (encoding, forward pass, gradients, metrics)
    - L2: EWCRegularizer
    - L3: IncrementalTrainer
    - L4: ConvergenceClassifier
"""

from .behavior_model import FEATURE_DIM, OUTPUT_DIM, initialize_weights, encode_patterns, evaluate
from .ewc import EWCRegularizer
from .trainer import IncrementalTrainer, create_trainer, validate_patterns
from .convergence import ConvergenceClassifier

__all__ = [
    'FEATURE_DIM',
    'OUTPUT_DIM',
    'initialize_weights',
    'encode_patterns',
    'evaluate',
    'EWCRegularizer',
    'IncrementalTrainer',
    'create_trainer',
    'validate_patterns',
    'ConvergenceClassifier',
]
