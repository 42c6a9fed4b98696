"""
Orchestrator Scope - Per-Session Resolution Facade
==================================================

A scope is one resolution session, typically one per inbound request. It owns
a private cache of key -> future, optionally seeded with values that are
already known, and exposes the orchestrator's keys as accessors:

    scope = orchestrator.scope({"profile": profile})

    account_id = await scope.account_id()
    values = await scope.get("account", "settings")

    # Node-style callbacks are accepted alongside the returned future
    scope.account(lambda error, account: ...)

Accessors return ``asyncio`` futures and must be called while an event loop is
running.
"""

import asyncio
from typing import TYPE_CHECKING, Any, Callable, Dict, Hashable, List, Mapping, Optional

from .util.cycle_detector import IncrementalDependencyGraph

if TYPE_CHECKING:
    from .engine import Callback, Orchestrator


class ScopeCache:
    """
    Key -> future cache for a single scope.

    Seed values count as cached from the start; their completed futures are
    created lazily because a future can only be made inside a running loop.
    Seeds are never evicted or replaced.

    Attributes:
        waits: In-flight wait graph, edge ``dep -> key`` while ``key`` waits on ``dep``
        preemptible: Abort futures of waiting attempts that have untried paths left
    """

    def __init__(self, values: Optional[Mapping[str, Any]] = None):
        self._values: Dict[str, Any] = dict(values or {})
        self._futures: Dict[str, asyncio.Future] = {}
        self.waits: IncrementalDependencyGraph = IncrementalDependencyGraph()
        self.preemptible: Dict[Hashable, asyncio.Future] = {}

    def get(self, key: str) -> Optional[asyncio.Future]:
        future = self._futures.get(key)
        if future is None and key in self._values:
            future = asyncio.get_running_loop().create_future()
            future.set_result(self._values[key])
            self._futures[key] = future
        return future

    def put(self, key: str, future: asyncio.Future) -> None:
        self._futures[key] = future

    def evict(self, key: str, future: Optional[asyncio.Future] = None) -> None:
        """Drop a resolved entry, only if it is still ``future`` when one is given."""
        if key in self._values:
            return
        if future is None or self._futures.get(key) is future:
            self._futures.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._values.keys() | self._futures.keys())

    def __contains__(self, key: str) -> bool:
        return key in self._futures or key in self._values

    def __len__(self) -> int:
        return len(self.keys())


class Scope:
    """
    Resolution session bound to one orchestrator.

    Every key in the orchestrator's spec is available as a method of the same
    name (``scope.account()``). Keys that are not valid identifiers, that
    clash with a method here, or that only exist as seed values are reached
    through ``resolve``.
    """

    def __init__(
        self, orchestrator: "Orchestrator", values: Optional[Mapping[str, Any]] = None
    ):
        self._orchestrator = orchestrator
        self._cache = ScopeCache(values)

    @property
    def orchestrator(self) -> "Orchestrator":
        return self._orchestrator

    @property
    def cache(self) -> ScopeCache:
        return self._cache

    def resolve(self, key: str, callback: Optional["Callback"] = None) -> asyncio.Future:
        """
        Resolve a single key.

        Args:
            key: The key to resolve
            callback: Optional ``callback(error, value)`` invoked once settled

        Returns:
            Future of the key's value
        """
        return self._orchestrator.resolve(key, self._cache, callback)

    def get(self, *keys: Any, callback: Optional["Callback"] = None) -> asyncio.Future:
        """
        Resolve an arbitrary set of keys together.

        A trailing callable positional argument is treated as the callback, so
        ``scope.get("a", "b", on_done)`` and
        ``scope.get("a", "b", callback=on_done)`` are equivalent.

        Returns:
            Future of a ``{key: value}`` dict
        """
        if keys and callable(keys[-1]):
            if callback is not None:
                raise TypeError("get() received two callbacks")
            keys, callback = keys[:-1], keys[-1]
        return self._orchestrator.gather(keys, self._cache, callback)

    def __getattr__(self, name: str) -> Callable[..., asyncio.Future]:
        if name.startswith("_") or name not in self._orchestrator:
            raise AttributeError(
                f"'{type(self).__name__}' object has no attribute '{name}'"
            )

        def accessor(callback: Optional["Callback"] = None) -> asyncio.Future:
            return self.resolve(name, callback)

        accessor.__name__ = name
        return accessor

    def __contains__(self, key: str) -> bool:
        return key in self._cache

    def __dir__(self) -> List[str]:
        keys = {key for key in self._orchestrator.keys() if key.isidentifier()}
        return sorted(set(super().__dir__()) | keys)

    def __repr__(self) -> str:
        return f"Scope(cached={len(self._cache)}, keys={len(self._orchestrator.keys())})"
