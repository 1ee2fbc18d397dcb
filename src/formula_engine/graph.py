"""Dependency graph between formula cells."""

from collections import deque
from typing import Iterable, Optional


class DependencyGraph:
    """Tracks which cells each formula reads, in both directions.

    ``dependencies`` is the forward map (cell -> cells it reads from) and
    ``dependents`` its exact transpose (cell -> cells that read from it).
    Empty sets are pruned so both maps only hold live edges.
    """

    __slots__ = ("dependencies", "dependents", "formulas")

    def __init__(self) -> None:
        # cell -> set of cells it reads from
        self.dependencies: dict[str, set[str]] = {}
        # cell -> set of cells that read from it (reverse edges)
        self.dependents: dict[str, set[str]] = {}
        # cell -> formula string
        self.formulas: dict[str, str] = {}

    def set_dependencies(
        self, cell_ref: str, refs: Iterable[str], formula: Optional[str] = None
    ) -> None:
        """Replace every forward edge of a cell with ``refs``."""
        self._drop_forward_edges(cell_ref)

        new_refs = set(refs)
        if new_refs:
            self.dependencies[cell_ref] = new_refs
        for ref in new_refs:
            self.dependents.setdefault(ref, set()).add(cell_ref)

        if formula is not None:
            self.formulas[cell_ref] = formula

    def remove_cell(self, cell_ref: str) -> None:
        """Forget a cell's formula and forward edges.

        Edges pointing *to* the cell are kept: other formulas still read it.
        """
        self._drop_forward_edges(cell_ref)
        self.formulas.pop(cell_ref, None)

    def _drop_forward_edges(self, cell_ref: str) -> None:
        for ref in self.dependencies.pop(cell_ref, set()):
            readers = self.dependents.get(ref)
            if readers is None:
                continue
            readers.discard(cell_ref)
            if not readers:
                del self.dependents[ref]

    def dependencies_of(self, cell_ref: str) -> set[str]:
        return set(self.dependencies.get(cell_ref, ()))

    def dependents_of(self, cell_ref: str) -> set[str]:
        return set(self.dependents.get(cell_ref, ()))

    def formula_of(self, cell_ref: str) -> Optional[str]:
        return self.formulas.get(cell_ref)

    def transitive_dependents(self, changed_cells: Iterable[str]) -> set[str]:
        """Every cell that directly or indirectly reads one of ``changed_cells``.

        The changed cells themselves are only included if a cycle leads back
        to them.
        """
        affected: set[str] = set()
        queue: deque[str] = deque(changed_cells)

        while queue:
            cell = queue.popleft()
            for dep in self.dependents.get(cell, ()):
                if dep not in affected:
                    affected.add(dep)
                    queue.append(dep)

        return affected

    def find_cycle(self, start: str) -> Optional[list[str]]:
        """Depth-first search for a cycle reachable from ``start``.

        Walks the forward edges of the whole graph, tracking the recursion
        stack. Returns the cycle as a path of cell ids (first and last
        element equal), or None.
        """
        visited: set[str] = set()
        on_stack: set[str] = set()
        path: list[str] = []

        # Iterative so long reference chains can't hit the recursion limit
        stack: list[tuple[str, Iterable[str]]] = [
            (start, iter(self.dependencies.get(start, ())))
        ]
        visited.add(start)
        on_stack.add(start)
        path.append(start)

        while stack:
            cell, children = stack[-1]
            advanced = False
            for child in children:
                if child in on_stack:
                    return path[path.index(child) :] + [child]
                if child not in visited:
                    visited.add(child)
                    on_stack.add(child)
                    path.append(child)
                    stack.append((child, iter(self.dependencies.get(child, ()))))
                    advanced = True
                    break
            if not advanced:
                stack.pop()
                on_stack.discard(cell)
                path.pop()

        return None

    def has_cycle_from(self, start: str) -> bool:
        return self.find_cycle(start) is not None

    def topological_order(self, cell_refs: Iterable[str]) -> list[str]:
        """Order ``cell_refs`` so every cell comes after the cells it reads.

        Only the given cells are returned; other cells are traversed to
        respect indirect orderings. Cycles are broken arbitrarily.
        """
        wanted = list(dict.fromkeys(cell_refs))
        wanted_set = set(wanted)
        visited: set[str] = set()
        order: list[str] = []

        for root in wanted:
            if root in visited:
                continue
            visited.add(root)
            stack: list[tuple[str, Iterable[str]]] = [
                (root, iter(sorted(self.dependencies.get(root, ()))))
            ]
            while stack:
                cell, children = stack[-1]
                for child in children:
                    if child not in visited:
                        visited.add(child)
                        stack.append(
                            (child, iter(sorted(self.dependencies.get(child, ()))))
                        )
                        break
                else:
                    stack.pop()
                    if cell in wanted_set:
                        order.append(cell)

        return order

    def clear(self) -> None:
        self.dependencies.clear()
        self.dependents.clear()
        self.formulas.clear()

    def __contains__(self, cell_ref: object) -> bool:
        return cell_ref in self.dependencies or cell_ref in self.formulas

    def __len__(self) -> int:
        return len(self.dependencies)
