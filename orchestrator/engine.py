"""
Orchestrator Resolution Engine
==============================

Resolves keys of a data source lazily, caching every value within a scope and
choosing among alternative derivation paths by estimated cost.

For each key that isn't cached yet the engine:

1. Estimates a cost for every path of the key: the producer's running-average
   execution time plus, for each dependency that is not cached, the cheapest
   estimate among that dependency's own paths.
2. Tries the cheapest path first. A path resolves its dependencies concurrently
   through the same scope cache, then runs its producer.
3. On failure, tries the next cheapest path, until one succeeds or all have
   failed, in which case the last failure propagates and the key is evicted
   from the cache so a later request can retry.

Waits within a scope are tracked in a wait graph. A wait that would close a
cycle fails fast; when the waiter has no alternative left, a waiter on the
cycle that still has untried paths is preempted instead and falls back.

Producers that have never run are estimated at a negligible cost so they get
tried and measured. A failed run is recorded at ``FAILURE_COST``, which sinks
that path below its alternatives for the rest of the process lifetime.

Example:
    orchestrator = Orchestrator({
        "user_id": lambda: 42,
        "user": ["user_id", lambda deps: load_user(deps["user_id"])],
    })
    orchestrator.on_timing(print)

    async def handler():
        scope = orchestrator.scope()
        user = await scope.user()
"""

import asyncio
import logging
import math
import threading
import time
from dataclasses import dataclass
from functools import partial
from types import MappingProxyType
from typing import (
    Any,
    Callable,
    Dict,
    FrozenSet,
    Hashable,
    Iterable,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
)

from .errors import CircularDependencyError, UndefinedKeyError
from .producers import Convention, Producer
from .scope import Scope, ScopeCache
from .spec import Path, normalize
from .stats import FAILURE_COST, CostTable
from .util.cycle_detector import IncrementalDependencyGraph

Callback = Callable[[Optional[BaseException], Any], None]


@dataclass(frozen=True)
class TimingEvent:
    """
    Timing of one successful producer execution.

    ``request_start`` and ``fetch_start`` are wall-clock timestamps
    (``time.time()``); durations are in seconds. ``name`` is None for
    ad-hoc ``Scope.get`` requests.
    """

    name: Optional[str]
    dependencies: Tuple[str, ...]
    request_start: float
    wait_duration: float
    fetch_start: float
    fetch_duration: float
    total_duration: float


def _collect(dependencies: Dict[str, Any]) -> Dict[str, Any]:
    return dict(dependencies)


_COLLECT = Producer(_collect, Convention.DEPS)


class Orchestrator:
    """
    Resolution engine for one data source spec.

    The orchestrator owns the normalized spec, the cost table, and the timing
    observers. It is safe to share across requests: each request gets its own
    ``Scope`` and therefore its own cache, while cost estimates accumulate in
    the shared table.

    Args:
        spec: Raw spec, see ``orchestrator.spec``
        failure_cost: Cost recorded for a failed producer run
    """

    def __init__(self, spec: Mapping[str, Any], *, failure_cost: float = FAILURE_COST):
        self._spec = normalize(spec)
        self._stats = CostTable()
        self._failure_cost = failure_cost
        self._timing_observers: List[Callable[[TimingEvent], None]] = []
        self._lock = threading.RLock()

    @property
    def spec(self) -> Mapping[str, Tuple[Path, ...]]:
        return MappingProxyType(self._spec)

    @property
    def stats(self) -> CostTable:
        return self._stats

    def keys(self) -> List[str]:
        return list(self._spec.keys())

    def scope(self, values: Optional[Mapping[str, Any]] = None) -> Scope:
        """Start a resolution session, optionally seeded with known values."""
        return Scope(self, values)

    # ========================================================================
    # SUBSCRIPTION
    # ========================================================================

    def on_timing(self, callback: Callable[[TimingEvent], None]) -> Callable[[], None]:
        """Subscribe to timing events. Returns an unsubscribe function."""
        with self._lock:
            self._timing_observers.append(callback)

            def unsubscribe():
                with self._lock:
                    if callback in self._timing_observers:
                        self._timing_observers.remove(callback)

            return unsubscribe

    def _emit(self, event: TimingEvent) -> None:
        with self._lock:
            observers = list(self._timing_observers)

        for observer in observers:
            try:
                observer(event)
            except Exception as e:
                logging.error(f"Error in timing observer {observer!r}: {e}")

    # ========================================================================
    # RESOLUTION
    # ========================================================================

    def resolve(
        self, key: str, cache: ScopeCache, callback: Optional[Callback] = None
    ) -> asyncio.Future:
        """
        Return the future for ``key`` in ``cache``, starting resolution if needed.

        Must be called with a running event loop.

        Args:
            key: The key to resolve
            cache: The scope's cache
            callback: Optional ``callback(error, value)``

        Returns:
            Future of the key's value. Fails with ``UndefinedKeyError`` if the
            key is neither cached nor declared. Every call gets its own shield
            around the cached task, so cancelling it (for example through
            ``asyncio.wait_for``) leaves the shared resolution running. As with
            any asyncio future, a failure nobody awaits is reported by asyncio
            when the future is garbage collected.
        """
        future = cache.get(key)
        if future is None:
            loop = asyncio.get_running_loop()
            if key not in self._spec:
                future = loop.create_future()
                future.set_exception(UndefinedKeyError(key))
                return _attach(future, callback)

            future = loop.create_task(self.fetch_result(key, cache))
            future.add_done_callback(partial(_evict_unless_resolved, cache, key))
            cache.put(key, future)

        return _attach(asyncio.shield(future), callback)

    def gather(
        self, keys: Iterable[str], cache: ScopeCache, callback: Optional[Callback] = None
    ) -> asyncio.Future:
        """
        Resolve an ad-hoc set of keys as if they were one path's dependencies.

        Returns:
            Future of a ``{key: value}`` dict
        """
        path = Path(tuple(keys), _COLLECT)
        task = asyncio.get_running_loop().create_task(
            self.resolve_path(None, path, cache, node=object())
        )
        return _attach(task, callback)

    async def fetch_result(self, key: str, cache: ScopeCache) -> Any:
        """Try the paths of ``key`` cheapest first until one succeeds."""
        error: Optional[Exception] = None
        paths = self.prioritized_paths(key, cache)
        for index, (cost, path) in enumerate(paths):
            try:
                return await self.resolve_path(
                    key, path, cache, preemptible=index < len(paths) - 1
                )
            except Exception as e:
                logging.debug(
                    f"Path {list(path.dependencies)} for '{key}' "
                    f"(estimated cost {cost:.6g}) failed: {e!r}"
                )
                error = e

        raise error

    async def resolve_path(
        self,
        key: Optional[str],
        path: Path,
        cache: ScopeCache,
        node: Optional[Hashable] = None,
        preemptible: bool = False,
    ) -> Any:
        """
        Resolve the dependencies of ``path`` and run its producer.

        Args:
            key: Key being produced, reported as the timing event's name
            path: The path to execute
            cache: The scope's cache
            node: Identity of the waiter in the scope's wait graph, defaults to ``key``
            preemptible: Whether the key has untried paths left, in which case
                this attempt gives way when another waiter would close a cycle
                through it
        """
        request_start = time.time()
        started = time.perf_counter()
        fetch_start, fetch_started = request_start, started

        values: Dict[str, Any] = {}
        if path.dependencies:
            values = await self._resolve_dependencies(
                key if node is None else node, path.dependencies, cache, preemptible
            )
            fetch_start = time.time()
            fetch_started = time.perf_counter()

        producer = path.producer
        try:
            result = await producer.invoke(values)
        except Exception:
            self._stats.record(producer.fn, self._failure_cost)
            raise

        finished = time.perf_counter()
        fetch_duration = finished - fetch_started
        self._stats.record(producer.fn, fetch_duration)
        self._emit(
            TimingEvent(
                name=key,
                dependencies=path.dependencies,
                request_start=request_start,
                wait_duration=fetch_started - started,
                fetch_start=fetch_start,
                fetch_duration=fetch_duration,
                total_duration=finished - started,
            )
        )
        return result

    async def _resolve_dependencies(
        self,
        node: Hashable,
        dependencies: Tuple[str, ...],
        cache: ScopeCache,
        preemptible: bool = False,
    ) -> Dict[str, Any]:
        waits = cache.waits
        abort = asyncio.get_running_loop().create_future()
        if preemptible:
            cache.preemptible[node] = abort

        added: List[str] = []
        futures: List[asyncio.Future] = []
        pending: Set[asyncio.Future] = set()
        try:
            for dep in dependencies:
                if self._add_wait(dep, node, cache):
                    added.append(dep)

            futures = [self.resolve(dep, cache) for dep in dependencies]
            for dep, future in zip(dependencies, futures):
                future.add_done_callback(partial(_release_wait, waits, dep, node, abort))

            pending = set(futures)
            while pending and not abort.done():
                _, pending = await asyncio.wait(
                    pending | {abort}, return_when=asyncio.FIRST_COMPLETED
                )
                pending.discard(abort)

            if abort.done():
                raise abort.exception()
        finally:
            if cache.preemptible.get(node) is abort:
                del cache.preemptible[node]
            for dep in added:
                waits.remove_edge(dep, node)
            for future in pending:
                future.cancel()
            abort.cancel()

        # Retrieve every error so none are reported as unhandled, raise the first
        errors = [future.exception() for future in futures]
        for error in errors:
            if error is not None:
                raise error

        return {dep: future.result() for dep, future in zip(dependencies, futures)}

    def _add_wait(self, dep: str, node: Hashable, cache: ScopeCache) -> bool:
        """
        Record that ``node`` waits on ``dep``.

        When the wait would close a cycle and ``node`` has no alternative left,
        a waiter on the cycle that does have one is preempted instead.

        Raises:
            CircularDependencyError: If no waiter on the cycle can give way
        """
        waits = cache.waits
        while True:
            try:
                return waits.add_edge(dep, node)
            except CircularDependencyError:
                if node in cache.preemptible:
                    raise
                cycle = waits.find_path(node, dep) or [node]
                victim = next((n for n in cycle[1:] if n in cache.preemptible), None)
                if victim is None:
                    raise
                self._preempt(victim, cycle, cache)

    def _preempt(self, victim: Hashable, cycle: List[Hashable], cache: ScopeCache) -> None:
        abort = cache.preemptible.pop(victim)
        for dep in cache.waits.get_dependencies(victim):
            cache.waits.remove_edge(dep, victim)

        chain = " -> ".join(repr(node) for node in cycle + cycle[:1])
        logging.debug(f"Preempting current path of {victim!r} to break wait cycle {chain}")
        abort.set_exception(
            CircularDependencyError(
                f"Path of {victim!r} abandoned to break the wait cycle {chain}", victim
            )
        )

    # ========================================================================
    # COST ESTIMATION
    # ========================================================================

    def prioritized_paths(self, key: str, cache: ScopeCache) -> List[Tuple[float, Path]]:
        """Paths of ``key`` with their estimated costs, cheapest first.

        The sort is stable, so equal estimates keep declaration order.
        """
        costed = self.costed_paths(key, cache, frozenset([key]))
        return sorted(costed, key=lambda costed_path: costed_path[0])

    def costed_paths(
        self, key: str, cache: ScopeCache, visiting: FrozenSet[str] = frozenset()
    ) -> List[Tuple[float, Path]]:
        return [
            (self.estimate_cost(path, cache, visiting), path) for path in self._spec[key]
        ]

    def estimate_cost(
        self, path: Path, cache: ScopeCache, visiting: FrozenSet[str] = frozenset()
    ) -> float:
        """
        Heuristic cost of executing ``path`` given what ``cache`` already holds.

        Cached dependencies are free. Uncached ones add the minimum estimate
        over their own paths, recomputed for every query. A dependency that is
        already being estimated further up (a cycle) makes the path infinitely
        expensive.
        """
        total = self._stats.estimate(path.producer.fn)
        for dep in path.dependencies:
            if dep in cache or dep not in self._spec:
                continue
            if dep in visiting:
                return math.inf
            total += min(
                cost for cost, _ in self.costed_paths(dep, cache, visiting | {dep})
            )
        return total

    def __contains__(self, key: str) -> bool:
        return key in self._spec

    def __repr__(self) -> str:
        return f"Orchestrator(keys={len(self._spec)}, observers={len(self._timing_observers)})"


def _attach(future: asyncio.Future, callback: Optional[Callback]) -> asyncio.Future:
    if callback is not None:
        future.add_done_callback(partial(_notify_callback, callback))
    return future


def _notify_callback(callback: Callback, future: asyncio.Future) -> None:
    if future.cancelled():
        callback(asyncio.CancelledError(), None)
        return

    error = future.exception()
    if error is None:
        callback(None, future.result())
    else:
        callback(error, None)


def _evict_unless_resolved(cache: ScopeCache, key: str, task: asyncio.Task) -> None:
    if task.cancelled() or task.exception() is not None:
        cache.evict(key, task)


def _release_wait(
    waits: IncrementalDependencyGraph,
    dep: str,
    node: Hashable,
    abort: asyncio.Future,
    future: asyncio.Future,
) -> None:
    # A settled abort means the attempt already dropped its edges
    if not abort.done():
        waits.remove_edge(dep, node)
