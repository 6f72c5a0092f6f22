"""
EdgeLearn Core - Storage Module

Components:
    - WeightStore protocol
    - InMemoryWeightStore
    - FileWeightStore
"""

from .store import WeightStore, InMemoryWeightStore, FileWeightStore

__all__ = ['WeightStore', 'InMemoryWeightStore', 'FileWeightStore']
