"""
Orchestrator Spec Normalizer
============================

Converts the flexible spec syntax into one uniform shape: every key maps to a
non-empty tuple of ``Path`` objects, each naming its dependency keys and the
producer that turns their values into the key's value.

Accepted entry forms:

    spec = {
        # A callable: no dependencies, called with no arguments
        "config": load_config,

        # One path: dependency keys followed by one producer
        "account": ["account_id", lambda deps: fetch_account(deps["account_id"])],

        # Several alternative paths for the same key
        "account_id": [
            ["account", lambda deps: deps["account"].id],
            ["profile", lambda deps: deps["profile"].account_id],
        ],
    }

Everything is validated here, so a bad spec fails when the orchestrator is
built and never halfway through a resolution.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Set, Tuple

from .errors import CircularDependencyError, MalformedSpecError
from .producers import Convention, Producer, as_producer
from .util.cycle_detector import IncrementalDependencyGraph


@dataclass(frozen=True)
class Path:
    """One way to derive a key: resolve ``dependencies``, then run ``producer``."""

    dependencies: Tuple[str, ...]
    producer: Producer


NormalizedSpec = Dict[str, Tuple[Path, ...]]


def normalize(raw_spec: Mapping[str, Any]) -> NormalizedSpec:
    """
    Normalize a raw spec and reject unresolvable cycles.

    Args:
        raw_spec: Mapping of key to callable, path list, or list of path lists

    Returns:
        Mapping of key to its non-empty tuple of paths, in declaration order

    Raises:
        MalformedSpecError: If an entry is not a valid declaration
        CircularDependencyError: If some key can only be derived through a cycle
    """
    spec = {}
    for key, entry in raw_spec.items():
        if not isinstance(key, str):
            raise MalformedSpecError(f"Spec keys must be strings, got {key!r}")
        spec[key] = normalize_entry(key, entry)

    check_cycles(spec)
    return spec


def normalize_entry(key: str, entry: Any) -> Tuple[Path, ...]:
    """Normalize one spec entry into its tuple of paths."""
    if callable(entry):
        return (Path((), as_producer(entry, Convention.NO_ARGS)),)

    if not isinstance(entry, (list, tuple)) or not entry:
        raise MalformedSpecError(
            f"Invalid specification for '{key}': expected a function or a "
            f"dependency list, got {entry!r}",
            key,
        )

    if isinstance(entry[0], (list, tuple)):
        return tuple(normalize_path(key, path) for path in entry)

    return (normalize_path(key, entry),)


def normalize_path(key: str, path: Any) -> Path:
    """Normalize ``[dep1, ..., depN, producer]`` into a ``Path``."""
    if not isinstance(path, (list, tuple)) or not path or not callable(path[-1]):
        raise MalformedSpecError(
            f"Invalid dependent function specification {path!r} for '{key}'.", key
        )

    dependencies = tuple(path[:-1])
    for dep in dependencies:
        if not isinstance(dep, str):
            raise MalformedSpecError(
                f"Invalid dependency {dep!r} for '{key}': dependency keys must be strings",
                key,
            )

    producer: Callable = path[-1]
    return Path(dependencies, as_producer(producer, Convention.DEPS))


def check_cycles(spec: NormalizedSpec) -> None:
    """
    Reject cycles that no alternative path can break.

    Edges out of keys with exactly one path are fed to the cycle detector
    first. A key with several paths may legitimately sit on a cycle through one
    of them (``account_id`` from ``account`` while ``account`` needs
    ``account_id``) as long as another path can supply it; those cases are
    caught per attempt at resolution time.

    Keys are then marked derivable bottom-up: a key is derivable once one of
    its paths only needs derivable or undeclared keys (undeclared keys may be
    seeded). Whatever is left over can only be derived through a cycle.
    """
    graph: IncrementalDependencyGraph[str] = IncrementalDependencyGraph()
    for key, paths in spec.items():
        if len(paths) != 1:
            continue
        for dep in paths[0].dependencies:
            graph.add_edge(dep, key)

    derivable: Set[str] = set()
    changed = True
    while changed:
        changed = False
        for key, paths in spec.items():
            if key not in derivable and any(
                all(dep in derivable or dep not in spec for dep in path.dependencies)
                for path in paths
            ):
                derivable.add(key)
                changed = True

    stuck = [key for key in spec if key not in derivable]
    if stuck:
        cycle = _find_cycle(stuck[0], spec, derivable)
        chain = " -> ".join(repr(key) for key in cycle)
        raise CircularDependencyError(
            f"Every path of {stuck[0]!r} runs into the dependency cycle {chain}",
            stuck[0],
        )


def _find_cycle(key: str, spec: NormalizedSpec, derivable: Set[str]) -> List[str]:
    # Every path of an underivable key needs another underivable key
    seen: List[str] = []
    while key not in seen:
        seen.append(key)
        key = next(
            dep
            for path in spec[key]
            for dep in path.dependencies
            if dep in spec and dep not in derivable
        )
    return seen[seen.index(key):] + [key]
