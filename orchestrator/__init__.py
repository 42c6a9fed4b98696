"""
Orchestrator - Lazy, Memoized, Cost-Adaptive Data Source Resolution

Declare how every value in a data source can be derived from other values,
possibly in several alternative ways, and let the orchestrator fetch only what
a request actually needs, once per request, along the cheapest known path.
"""

from .engine import Orchestrator, TimingEvent
from .errors import (
    CircularDependencyError,
    MalformedSpecError,
    OrchestratorError,
    ProducerError,
    UndefinedKeyError,
)
from .producers import Convention, Producer, no_args, with_callback, with_deps
from .scope import Scope, ScopeCache
from .spec import Path, normalize
from .stats import FAILURE_COST, CostTable, Stats

__all__ = [
    # Engine
    "Orchestrator",
    "TimingEvent",
    # Scopes
    "Scope",
    "ScopeCache",
    # Spec
    "Path",
    "normalize",
    # Producers
    "Convention",
    "Producer",
    "no_args",
    "with_deps",
    "with_callback",
    # Cost statistics
    "CostTable",
    "Stats",
    "FAILURE_COST",
    # Exceptions
    "OrchestratorError",
    "UndefinedKeyError",
    "MalformedSpecError",
    "CircularDependencyError",
    "ProducerError",
]
