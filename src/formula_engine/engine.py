"""Session-level entry point tying the evaluator and the cache together.

Each sheet session owns one ``CalculationEngine``; engines share nothing, so
several sheets (or tests) can run side by side.

Two recalculation paths coexist:

- pull: evaluating a formula recursively evaluates every formula cell it
  references, ignoring the cache;
- push: after a raw value changes, ``recalculate_dependents`` re-evaluates
  every transitive dependent in dependency order.

A push recalculation therefore recomputes a dependent once for itself and
again each time a later dependent pulls it. That repetition is accepted:
collapsing it would change the order in which errors and sentinel values
surface.
"""

import logging
from typing import Any, Callable, Mapping, Optional

from formula_engine.cache import DEFAULT_MAX_AGE_MS, CacheStats, FormulaCache
from formula_engine.errors import FormulaError, format_error
from formula_engine.evaluator import DEFAULT_MAX_DEPTH, FormulaEvaluator
from formula_engine.functions import FormulaFunction
from formula_engine.sheet import GridSheet, Sheet, cell_type_of
from formula_engine.types import Value, is_error
from formula_engine.utils import split_cell_reference


class CalculationEngine:
    def __init__(
        self,
        max_depth: int = DEFAULT_MAX_DEPTH,
        cache_max_age_ms: float = DEFAULT_MAX_AGE_MS,
        clock: Optional[Callable[[], float]] = None,
        functions: Optional[Mapping[str, FormulaFunction]] = None,
    ):
        self.evaluator = FormulaEvaluator(max_depth=max_depth, functions=functions)
        self.cache = FormulaCache(clock=clock)
        self.cache_max_age_ms = cache_max_age_ms

    @property
    def graph(self):
        return self.evaluator.graph

    def evaluate(self, cell_id: str, formula: str, sheet: Sheet) -> Value:
        """Evaluate a formula and cache the result with its dependencies."""
        cell_id = cell_id.upper()
        value = self.evaluator.evaluate(cell_id, formula, sheet)
        self.cache.set(cell_id, value, self.evaluator.get_dependencies(cell_id))
        return value

    def evaluate_or_error(self, cell_id: str, formula: str, sheet: Sheet) -> Value:
        """Like ``evaluate``, but a failure becomes an ``#ERROR:`` value."""
        cell_id = cell_id.upper()
        try:
            return self.evaluate(cell_id, formula, sheet)
        except FormulaError as e:
            value = format_error(e)
            logging.warning("Formula in %s failed: %s", cell_id, e)
            self.cache.set(cell_id, value, self.evaluator.get_dependencies(cell_id))
            return value

    def get_cached(self, cell_id: str) -> Optional[Value]:
        return self.cache.get(cell_id.upper())

    def get_dependents(self, cell_id: str) -> set[str]:
        """Cells whose formulas read ``cell_id`` directly."""
        return self.evaluator.get_dependents(cell_id)

    def get_all_dependents(self, cell_id: str) -> set[str]:
        return self.evaluator.get_all_dependents(cell_id)

    def recalculate_dependents(self, cell_id: str, sheet: Sheet) -> dict[str, Value]:
        """Re-evaluate everything downstream of ``cell_id``.

        Each dependent is evaluated from the formula its cell holds in
        ``sheet``; a dependent whose cell no longer holds a formula keeps
        its raw value. A failing dependent turns into an ``#ERROR:`` value;
        its siblings still run.
        """
        cell_id = cell_id.upper()
        affected = self.evaluator.get_all_dependents(cell_id)
        affected.discard(cell_id)
        if not affected:
            return {}

        ordered = self.graph.topological_order(affected)
        logging.debug("Recalculating %d dependents of %s", len(ordered), cell_id)

        def compute(dependent: str) -> Value:
            cell = sheet.get_cell_at(*split_cell_reference(dependent))
            if cell is None or not cell.formula:
                self.evaluator.forget(dependent)
                return cell.value if cell is not None else None
            return self.evaluate_or_error(dependent, cell.formula, sheet)

        results = self.cache.batch_recalculate(ordered, compute)
        failed = [cid for cid, value in results.items() if is_error(value)]
        if failed:
            logging.debug("Dependents of %s holding errors: %s", cell_id, failed)
        return results

    def apply_edit(self, sheet: GridSheet, cell_id: str, raw: Any) -> dict[str, Value]:
        """Write ``raw`` into ``sheet`` and recalculate what it affects.

        Returns the new value of the edited cell and of every recalculated
        dependent.
        """
        cell_id = cell_id.upper()
        cell = sheet.set(cell_id, raw)
        changes: dict[str, Value] = {}
        if cell.formula:
            value = self.evaluate_or_error(cell_id, cell.formula, sheet)
            cell.value = value
            cell.type = cell_type_of(value)
        else:
            self.forget(cell_id)
            value = cell.value
        changes[cell_id] = value

        for dependent, new_value in self.recalculate_dependents(cell_id, sheet).items():
            target = sheet.get(dependent)
            if target is not None:
                target.value = new_value
                target.type = cell_type_of(new_value)
            changes[dependent] = new_value
        return changes

    def forget(self, cell_id: str) -> None:
        """Drop a cell's formula bookkeeping, e.g. when a raw value replaces it."""
        cell_id = cell_id.upper()
        self.evaluator.forget(cell_id)
        self.cache.invalidate_cascade(cell_id)

    def invalidate(self, cell_id: str) -> None:
        self.cache.invalidate(cell_id.upper())

    def invalidate_cascade(self, cell_id: str) -> set[str]:
        return self.cache.invalidate_cascade(cell_id.upper())

    def register_function(self, name: str, fn: FormulaFunction) -> None:
        self.evaluator.register_function(name, fn)

    def evict_old_entries(self, max_age_ms: Optional[float] = None) -> list[str]:
        if max_age_ms is None:
            max_age_ms = self.cache_max_age_ms
        return self.cache.evict_old_entries(max_age_ms)

    def get_stats(self) -> CacheStats:
        return self.cache.get_stats()

    def reset(self) -> None:
        self.evaluator.clear_dependencies()
        self.cache.clear()
