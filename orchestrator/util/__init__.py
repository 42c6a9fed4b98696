"""
Orchestrator Utils
==================

Graph helpers shared by the spec normalizer and resolution scopes.

Classes:
- IncrementalDependencyGraph: Directed dependency graph with cycle detection on insert
"""

from .cycle_detector import IncrementalDependencyGraph

__all__ = [
    "IncrementalDependencyGraph",
]
