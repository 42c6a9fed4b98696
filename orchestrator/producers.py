"""
Orchestrator Producers - Calling Conventions
============================================

A producer is the user function that computes a key's value. Every producer is
called in exactly one of three ways, declared up front rather than guessed from
its signature:

- ``NO_ARGS``: ``fn()``
- ``DEPS``: ``fn(dependencies)``, where ``dependencies`` maps each declared
  dependency key to its resolved value
- ``CALLBACK``: ``fn(dependencies, done)``, where ``done(error=None, *values)``
  settles the producer Node-style

``NO_ARGS`` and ``DEPS`` producers may return a plain value or an awaitable
(coroutine, future); awaitables are awaited.

Usage:
    @with_callback
    def load_user(deps, done):
        client.fetch(deps["user_id"], on_complete=done)

    spec = {
        "now": no_args(time.time),
        "user": ["user_id", load_user],
    }
"""

import asyncio
import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Tuple

from .errors import ProducerError


class Convention(Enum):
    """How a producer is invoked."""

    NO_ARGS = "no_args"
    DEPS = "deps"
    CALLBACK = "callback"


@dataclass(frozen=True)
class Producer:
    """A user function tagged with its calling convention."""

    fn: Callable
    convention: Convention

    def __call__(self, *args, **kwargs):
        return self.fn(*args, **kwargs)

    def __repr__(self) -> str:
        name = getattr(self.fn, "__qualname__", repr(self.fn))
        return f"Producer({name}, {self.convention.value})"

    async def invoke(self, dependencies: Dict[str, Any]) -> Any:
        """
        Run the producer against resolved dependency values.

        Args:
            dependencies: Mapping of dependency key to resolved value

        Returns:
            The produced value

        Raises:
            Whatever the producer raises, or the error it reports via ``done``
        """
        if self.convention is Convention.CALLBACK:
            return await _from_callback(self.fn, dependencies)

        if self.convention is Convention.NO_ARGS:
            result = self.fn()
        else:
            result = self.fn(dependencies)

        if inspect.isawaitable(result):
            result = await result
        return result


def as_producer(fn: Callable, default: Convention) -> Producer:
    """Return ``fn`` unchanged if already tagged, else tag it with ``default``."""
    if isinstance(fn, Producer):
        return fn
    return Producer(fn, default)


def no_args(fn: Callable) -> Producer:
    """Tag ``fn`` to be called with no arguments."""
    return Producer(_unwrap(fn), Convention.NO_ARGS)


def with_deps(fn: Callable) -> Producer:
    """Tag ``fn`` to be called with the dependency mapping."""
    return Producer(_unwrap(fn), Convention.DEPS)


def with_callback(fn: Callable) -> Producer:
    """Tag ``fn`` to be called with the dependency mapping and a ``done`` callback."""
    return Producer(_unwrap(fn), Convention.CALLBACK)


def _unwrap(fn: Callable) -> Callable:
    if isinstance(fn, Producer):
        return fn.fn
    if not callable(fn):
        raise TypeError(f"Producer must be callable, got {fn!r}")
    return fn


async def _from_callback(fn: Callable, dependencies: Dict[str, Any]) -> Any:
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def done(error: Any = None, *values: Any) -> None:
        # May be called from a worker thread
        loop.call_soon_threadsafe(_settle, future, error, values)

    fn(dependencies, done)
    return await future


def _settle(future: asyncio.Future, error: Any, values: Tuple[Any, ...]) -> None:
    if future.done():
        return  # only the first call counts
    if error is not None:
        if not isinstance(error, BaseException):
            error = ProducerError(error)
        future.set_exception(error)
    else:
        future.set_result(values[0] if values else None)
