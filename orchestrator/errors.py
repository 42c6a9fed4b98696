"""
Orchestrator Exceptions
=======================

Errors raised while building a data source or resolving values from it.
"""

from typing import Any, Optional


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""

    pass


class UndefinedKeyError(OrchestratorError, LookupError):
    """Raised when a key has neither a spec entry nor a seed value."""

    def __init__(self, key: str):
        super().__init__(f"{key} is not defined in the data source")
        self.key = key


class MalformedSpecError(OrchestratorError, ValueError):
    """Raised at construction time for an invalid spec entry."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class CircularDependencyError(MalformedSpecError):
    """Raised when dependencies form a cycle."""

    pass


class ProducerError(OrchestratorError):
    """Wraps a non-exception error reported through a producer callback."""

    def __init__(self, error: Any):
        super().__init__(f"Producer reported an error: {error!r}")
        self.error = error
