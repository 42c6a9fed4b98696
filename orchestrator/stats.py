"""
Orchestrator Cost Statistics
============================

Running-average execution cost per producer. One table belongs to one
orchestrator and is shared by every scope it creates, so estimates keep
improving for the lifetime of the process. Entries are only ever updated.
"""

import sys
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional

# Cost recorded for a failed execution; keeps failing paths at the back of the queue
FAILURE_COST = float(2**53 - 1)

DEFAULT_COST = sys.float_info.epsilon


@dataclass(frozen=True)
class Stats:
    count: int = 0
    avg: float = 0.0


class CostTable:
    """
    Thread-safe map of producer -> ``Stats``.

    Producers that have never run (or have only ever run instantly) are
    estimated at ``default_cost``, which is small enough that they are tried
    eagerly and real timings get collected.
    """

    def __init__(self, default_cost: float = DEFAULT_COST):
        self._stats: Dict[Callable, Stats] = {}
        self._lock = threading.RLock()
        self._default_cost = default_cost

    def record(self, producer: Callable, amount: float) -> Stats:
        """
        Fold one execution cost into the producer's running average.

        Args:
            producer: The producer's underlying callable
            amount: Seconds taken, or ``FAILURE_COST`` for a failed run

        Returns:
            The updated stats
        """
        with self._lock:
            prior = self._stats.get(producer, Stats())
            count = prior.count + 1
            updated = Stats(count, (prior.avg * prior.count + amount) / count)
            self._stats[producer] = updated
            return updated

    def get(self, producer: Callable) -> Optional[Stats]:
        with self._lock:
            return self._stats.get(producer)

    def estimate(self, producer: Callable) -> float:
        """Expected cost of running ``producer`` once."""
        stats = self.get(producer)
        return (stats and stats.avg) or self._default_cost

    def __len__(self) -> int:
        with self._lock:
            return len(self._stats)

    def __contains__(self, producer: Callable) -> bool:
        with self._lock:
            return producer in self._stats

    def __repr__(self) -> str:
        return f"CostTable(producers={len(self)})"
