"""Formula result cache with dependency-aware invalidation."""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Iterable, NamedTuple, Optional, Set

from formula_engine.types import Value

DEFAULT_MAX_AGE_MS = 5 * 60 * 1000


def _now_ms() -> float:
    return time.time() * 1000


@dataclass
class CacheEntry:
    value: Value
    timestamp: float
    dependencies: frozenset[str] = field(default_factory=frozenset)


class CacheStats(NamedTuple):
    size: int
    dependencies: int
    oldest_entry: Optional[float]


class FormulaCache:
    """Computed values per cell, plus the reverse edges needed to invalidate
    everything downstream of a change.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        # clock returns milliseconds
        self.clock = clock or _now_ms
        self.entries: dict[str, CacheEntry] = {}
        # cell -> cells that depend on it
        self.dependency_graph: dict[str, Set[str]] = {}

    def get(self, cell_id: str) -> Optional[Value]:
        entry = self.entries.get(cell_id)
        return entry.value if entry is not None else None

    def has(self, cell_id: str) -> bool:
        return cell_id in self.entries

    def __contains__(self, cell_id: object) -> bool:
        return cell_id in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def get_dependencies(self, cell_id: str) -> frozenset[str]:
        entry = self.entries.get(cell_id)
        return entry.dependencies if entry is not None else frozenset()

    def set(self, cell_id: str, value: Value, dependencies: Iterable[str] = ()) -> None:
        deps = frozenset(dependencies)
        # Edges from the previous entry may no longer hold
        self._drop_entry(cell_id)
        self.entries[cell_id] = CacheEntry(
            value=value, timestamp=self.clock(), dependencies=deps
        )
        for dep in deps:
            self.dependency_graph.setdefault(dep, set()).add(cell_id)

    def _drop_entry(self, cell_id: str) -> None:
        """Remove an entry and the reverse edges it registered."""
        entry = self.entries.pop(cell_id, None)
        if entry is None:
            return
        for dep in entry.dependencies:
            readers = self.dependency_graph.get(dep)
            if readers is None:
                continue
            readers.discard(cell_id)
            if not readers:
                del self.dependency_graph[dep]

    def invalidate(self, cell_id: str) -> None:
        """Drop a single entry."""
        self._drop_entry(cell_id)

    def invalidate_cascade(self, cell_id: str) -> Set[str]:
        """Drop the entry of a cell and of everything that depends on it.

        Returns the ids that were visited.
        """
        to_invalidate = self._cascade_dependents(cell_id)
        for cid in to_invalidate:
            self._drop_entry(cid)
        logging.debug("Invalidated %d cache entries from %s", len(to_invalidate), cell_id)
        return to_invalidate

    def _cascade_dependents(self, cell_id: str) -> Set[str]:
        visited: Set[str] = set()
        queue: deque[str] = deque([cell_id])

        while queue:
            current = queue.popleft()
            if current in visited:
                continue
            visited.add(current)
            for dep in self.dependency_graph.get(current, ()):
                if dep not in visited:
                    queue.append(dep)

        return visited

    def clear(self) -> None:
        self.entries.clear()
        self.dependency_graph.clear()

    def get_stats(self) -> CacheStats:
        """Size and age summary, for diagnostics only."""
        oldest = min((e.timestamp for e in self.entries.values()), default=None)
        return CacheStats(
            size=len(self.entries),
            dependencies=len(self.dependency_graph),
            oldest_entry=oldest,
        )

    def evict_old_entries(self, max_age_ms: float = DEFAULT_MAX_AGE_MS) -> list[str]:
        """Drop entries older than ``max_age_ms`` along with their graph edges."""
        now = self.clock()
        expired = [
            cid for cid, entry in self.entries.items() if now - entry.timestamp > max_age_ms
        ]

        for cid in expired:
            self._drop_entry(cid)

        if expired:
            logging.debug("Evicted %d stale cache entries", len(expired))
        return expired

    def batch_recalculate(
        self, cell_ids: Iterable[str], compute: Callable[[str], Value]
    ) -> dict[str, Value]:
        """Recompute cells in dependency order and store the results.

        Each cell keeps the dependency set recorded by its previous entry.
        """
        results: dict[str, Value] = {}
        for cid in self._topological_sort(cell_ids):
            value = compute(cid)
            self.set(cid, value, self.get_dependencies(cid))
            results[cid] = value
        return results

    def _topological_sort(self, cell_ids: Iterable[str]) -> list[str]:
        """Order ``cell_ids`` dependencies first.

        Cells outside ``cell_ids`` are walked through to respect indirect
        orderings but are not returned.
        """
        wanted = list(dict.fromkeys(cell_ids))
        wanted_set = set(wanted)
        visited: Set[str] = set()
        result: list[str] = []

        for root in wanted:
            if root in visited:
                continue
            visited.add(root)
            stack = [(root, iter(sorted(self.get_dependencies(root))))]
            while stack:
                cid, children = stack[-1]
                for child in children:
                    if child not in visited:
                        visited.add(child)
                        stack.append((child, iter(sorted(self.get_dependencies(child)))))
                        break
                else:
                    stack.pop()
                    if cid in wanted_set:
                        result.append(cid)

        return result
