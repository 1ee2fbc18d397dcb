import pytest
from formula_engine.engine import CalculationEngine
from formula_engine.errors import DivisionByZeroError
from formula_engine.sheet import GridSheet


class FakeClock:
    def __init__(self, now: float = 0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def sheet():
    return GridSheet({"A1": 10, "A2": 20, "A3": "=A1+A2"})


@pytest.fixture
def engine():
    return CalculationEngine()


class TestEvaluate:
    def test_result_is_cached(self, engine, sheet):
        assert engine.evaluate("A3", "=A1+A2", sheet) == 30
        assert engine.get_cached("A3") == 30
        assert engine.cache.get_dependencies("A3") == frozenset({"A1", "A2"})

    def test_cell_ids_are_case_insensitive(self, engine, sheet):
        engine.evaluate("a3", "=A1+A2", sheet)
        assert engine.get_cached("A3") == 30
        assert engine.get_dependents("a1") == {"A3"}

    def test_evaluate_raises(self, engine, sheet):
        with pytest.raises(DivisionByZeroError):
            engine.evaluate("B1", "=A1/0", sheet)
        assert engine.get_cached("B1") is None

    def test_evaluate_or_error(self, engine, sheet):
        assert engine.evaluate_or_error("B1", "=A1/0", sheet) == "#ERROR: Division by zero"
        assert engine.get_cached("B1") == "#ERROR: Division by zero"

    def test_error_keeps_dependencies(self, engine, sheet):
        engine.evaluate_or_error("B1", "=NOPE(A1)", sheet)
        assert engine.get_cached("B1") == "#ERROR: Unknown function: NOPE"
        assert engine.get_dependents("A1") == {"B1"}

    def test_sentinels_are_values(self, engine, sheet):
        assert engine.evaluate_or_error("B1", "=DAMAGE_CALC(A1, -100)", sheet) == "#VALUE!"

    def test_register_function(self, engine, sheet):
        engine.register_function("HALF", lambda x: x / 2)
        assert engine.evaluate("B1", "=HALF(A2)", sheet) == 10

    def test_engines_are_independent(self, sheet):
        first = CalculationEngine()
        second = CalculationEngine()
        first.evaluate("A3", "=A1+A2", sheet)
        assert second.get_cached("A3") is None
        assert second.get_dependents("A1") == set()


class TestRecalculation:
    def test_edit_updates_dependents(self, engine, sheet):
        assert engine.evaluate("A3", "=A1+A2", sheet) == 30
        changes = engine.apply_edit(sheet, "A1", 15)
        assert changes == {"A1": 15, "A3": 35}
        assert engine.get_cached("A3") == 35
        assert sheet.get("A3").value == 35
        assert sheet.get("A3").type == "number"

    def test_transitive_chain(self, engine):
        sheet = GridSheet({"A1": 1, "B1": "=A1*2", "C1": "=B1+1"})
        engine.evaluate("C1", "=B1+1", sheet)
        changes = engine.apply_edit(sheet, "A1", 5)
        assert list(changes) == ["A1", "B1", "C1"]
        assert changes["B1"] == 10
        assert changes["C1"] == 11

    def test_diamond(self, engine):
        sheet = GridSheet({"A1": 1, "B1": "=A1+1", "C1": "=A1*10", "D1": "=B1+C1"})
        engine.evaluate("D1", "=B1+C1", sheet)
        changes = engine.apply_edit(sheet, "A1", 2)
        assert changes["D1"] == 23
        assert list(changes).index("D1") == 3

    def test_editing_a_formula(self, engine, sheet):
        engine.evaluate("A3", "=A1+A2", sheet)
        changes = engine.apply_edit(sheet, "A3", "=A1*A2")
        assert changes == {"A3": 200}
        assert sheet.get("A3").value == 200

    def test_error_propagates_to_dependents(self, engine):
        sheet = GridSheet({"A1": 1, "B1": "=A1", "C1": "=B1+1"})
        engine.evaluate("C1", "=B1+1", sheet)
        changes = engine.apply_edit(sheet, "B1", "=1/0")
        assert changes["B1"] == "#ERROR: Division by zero"
        assert changes["C1"] == "#ERROR: Division by zero"
        assert sheet.get("B1").type == "text"

    def test_cycle_created_by_edit(self, engine):
        sheet = GridSheet({"A1": 1, "B1": "=A1"})
        engine.evaluate("B1", "=A1", sheet)
        changes = engine.apply_edit(sheet, "A1", "=B1")
        assert changes["A1"].startswith("#ERROR: Circular reference detected")
        assert changes["B1"].startswith("#ERROR: Circular reference detected")

    def test_raw_value_replaces_formula(self, engine, sheet):
        engine.evaluate("A3", "=A1+A2", sheet)
        engine.apply_edit(sheet, "A3", 5)
        assert engine.get_dependents("A1") == set()
        assert engine.get_cached("A3") is None
        assert engine.apply_edit(sheet, "A1", 1) == {"A1": 1}

    def test_unparsable_edit_drops_old_dependencies(self):
        engine = CalculationEngine()
        sheet = GridSheet({"A1": 1, "A2": "=A1*2"})
        engine.evaluate("A2", "=A1*2", sheet)
        changes = engine.apply_edit(sheet, "A2", "=A1*")
        assert changes == {"A2": "#ERROR: Unexpected end of formula"}
        assert engine.graph.formula_of("A2") == "=A1*"
        assert engine.evaluator.get_dependencies("A2") == set()
        assert engine.apply_edit(sheet, "A1", 5) == {"A1": 5}
        assert sheet.get("A2").value == "#ERROR: Unexpected end of formula"

    def test_overflow_does_not_stop_siblings(self, engine):
        sheet = GridSheet({"A1": 1, "B1": "=10^A1/3", "C1": "=A1+1"})
        engine.evaluate("B1", "=10^A1/3", sheet)
        engine.evaluate("C1", "=A1+1", sheet)
        changes = engine.apply_edit(sheet, "A1", 400)
        assert changes == {"A1": 400, "B1": "#NUM!", "C1": 401}

    def test_failing_function_does_not_stop_siblings(self, engine):
        engine.register_function("AS_FLOAT", lambda x: float(x))
        sheet = GridSheet({"A1": 1, "B1": "=AS_FLOAT(10^A1)", "C1": "=A1+1"})
        engine.evaluate("B1", "=AS_FLOAT(10^A1)", sheet)
        engine.evaluate("C1", "=A1+1", sheet)
        changes = engine.apply_edit(sheet, "A1", 400)
        assert changes["B1"].startswith("#ERROR: Numeric error in AS_FLOAT")
        assert changes["C1"] == 401

    def test_dependent_overwritten_with_raw_value(self, engine, sheet):
        engine.evaluate("A3", "=A1+A2", sheet)
        sheet.set("A3", 7)
        sheet.set("A1", 1)
        assert engine.recalculate_dependents("A1", sheet) == {"A3": 7}
        assert engine.get_dependents("A1") == set()

    def test_recalculate_without_dependents(self, engine, sheet):
        assert engine.recalculate_dependents("A1", sheet) == {}

    def test_recalculate_dependents(self, engine, sheet):
        engine.evaluate("A3", "=A1+A2", sheet)
        sheet.set("A2", 100)
        assert engine.recalculate_dependents("a2", sheet) == {"A3": 110}

    def test_all_dependents(self, engine):
        sheet = GridSheet({"A1": 1, "B1": "=A1", "C1": "=B1"})
        engine.evaluate("C1", "=B1", sheet)
        assert engine.get_dependents("A1") == {"B1"}
        assert engine.get_all_dependents("A1") == {"B1", "C1"}


class TestCacheManagement:
    def test_invalidate(self, engine, sheet):
        engine.evaluate("A3", "=A1+A2", sheet)
        engine.invalidate("a3")
        assert engine.get_cached("A3") is None

    def test_invalidate_cascade(self, engine, sheet):
        engine.evaluate("A3", "=A1+A2", sheet)
        engine.evaluate("B1", "=A3*2", sheet)
        assert engine.invalidate_cascade("A1") == {"A1", "A3", "B1"}
        assert engine.get_cached("B1") is None

    def test_evict_old_entries(self, sheet):
        clock = FakeClock()
        engine = CalculationEngine(cache_max_age_ms=1000, clock=clock)
        engine.evaluate("A3", "=A1+A2", sheet)
        clock.now = 500
        assert engine.evict_old_entries() == []
        clock.now = 1001
        assert engine.evict_old_entries() == ["A3"]
        assert engine.get_stats().size == 0

    def test_stats(self, sheet):
        engine = CalculationEngine(clock=FakeClock(42))
        engine.evaluate("A3", "=A1+A2", sheet)
        stats = engine.get_stats()
        assert stats.size == 1
        assert stats.dependencies == 2
        assert stats.oldest_entry == 42

    def test_reset(self, engine, sheet):
        engine.evaluate("A3", "=A1+A2", sheet)
        engine.reset()
        assert engine.get_cached("A3") is None
        assert engine.get_dependents("A1") == set()
        assert len(engine.graph) == 0

    def test_max_depth(self):
        engine = CalculationEngine(max_depth=3)
        sheet = GridSheet({"A1": 1, "A2": "=A1", "A3": "=A2", "A4": "=A3"})
        value = engine.evaluate_or_error("A5", "=A4", sheet)
        assert value.startswith("#ERROR: Maximum evaluation depth")
