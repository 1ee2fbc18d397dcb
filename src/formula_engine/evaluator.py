import inspect
import logging
from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator, List, Mapping, Optional

from formula_engine.ast import (
    ASTNode,
    BinaryOp,
    CellRef,
    FunctionCall,
    Literal,
    RangeRef,
    UnaryOp,
)
from formula_engine.errors import (
    CircularReferenceError,
    EvaluationDepthError,
    FormulaError,
    FunctionArgumentError,
    InvalidRangeUsageError,
    LexError,
    NumericError,
    ParseError,
    UnknownFunctionError,
)
from formula_engine.functions import FORMULA_FUNCTIONS, FormulaFunction
from formula_engine.graph import DependencyGraph
from formula_engine.operators import apply_binary, apply_unary
from formula_engine.parser import extract_references, parse_formula
from formula_engine.sheet import Sheet
from formula_engine.types import Value

# Each nested cell costs several Python frames; stay well under the
# interpreter recursion limit.
DEFAULT_MAX_DEPTH = 100


@lru_cache(maxsize=None)
def _signature_of(fn: FormulaFunction) -> Optional[inspect.Signature]:
    try:
        return inspect.signature(fn)
    except ValueError:
        # Some builtins don't expose a signature
        return None


class EvaluationStack:
    """Cells currently being evaluated, outermost first."""

    def __init__(self):
        self.stack: List[str] = []

    def push(self, cell_id: str) -> None:
        self.stack.append(cell_id)

    def pop(self) -> None:
        self.stack.pop()

    def contains(self, cell_id: str) -> bool:
        return cell_id in self.stack

    def format_cycle_path(self, cell_id: str) -> str:
        """Format the evaluation stack into a readable cycle path."""
        start = self.stack.index(cell_id) if cell_id in self.stack else 0
        return " -> ".join([*self.stack[start:], cell_id])

    def __len__(self) -> int:
        return len(self.stack)


class FormulaEvaluator:
    """Evaluates formulas against a sheet while tracking dependencies.

    The evaluator owns its dependency graph and function registry, so
    separate instances never share state.
    """

    def __init__(
        self,
        max_depth: int = DEFAULT_MAX_DEPTH,
        functions: Optional[Mapping[str, FormulaFunction]] = None,
    ):
        self.max_depth = max_depth
        self.graph = DependencyGraph()
        self.functions: dict[str, FormulaFunction] = dict(FORMULA_FUNCTIONS)
        if functions:
            for name, fn in functions.items():
                self.register_function(name, fn)
        self.evaluation_stack = EvaluationStack()

    def register_function(self, name: str, fn: FormulaFunction) -> None:
        self.functions[name.upper()] = fn

    @contextmanager
    def _evaluating(self, cell_id: str) -> Iterator[None]:
        # Reentrancy guard: the cell is already being computed further up
        if self.evaluation_stack.contains(cell_id):
            cycle_path = self.evaluation_stack.format_cycle_path(cell_id)
            logging.warning("Circular reference: %s", cycle_path)
            raise CircularReferenceError(f"Circular reference detected: {cycle_path}")
        if len(self.evaluation_stack) >= self.max_depth:
            raise EvaluationDepthError(
                f"Maximum evaluation depth of {self.max_depth} exceeded at {cell_id}"
            )
        self.evaluation_stack.push(cell_id)
        try:
            yield
        finally:
            self.evaluation_stack.pop()

    def evaluate(self, cell_id: str, formula: str, sheet: Sheet) -> Value:
        """Evaluate the formula of ``cell_id`` against ``sheet``.

        Raises one of the FormulaError subclasses when the formula can't be
        evaluated; nothing is returned in that case.
        """
        cell_id = cell_id.upper()
        with self._evaluating(cell_id):
            try:
                node = parse_formula(formula)
            except (LexError, ParseError):
                # A formula that doesn't parse reads no cells; keep its text so
                # recalculation reports the same error instead of an old value.
                self.graph.set_dependencies(cell_id, (), formula)
                raise

            # Edges are rebuilt from scratch on every evaluation
            refs = extract_references(node)
            self.graph.set_dependencies(cell_id, refs, formula)

            # The stack guard above only sees the live call chain; this catches
            # cycles the new edges close elsewhere in the graph.
            cycle = self.graph.find_cycle(cell_id)
            if cycle is not None:
                cycle_path = " -> ".join(cycle)
                logging.warning("Circular reference: %s", cycle_path)
                raise CircularReferenceError(
                    f"Circular reference detected: {cycle_path}"
                )

            result = self._evaluate_node(node, sheet)

            # Ranges are only valid within function arguments
            if isinstance(result, list):
                raise InvalidRangeUsageError(
                    "Range cannot be used as a standalone expression"
                )

            logging.debug("Evaluated %s (%s) = %r", cell_id, formula, result)
            return result

    def _evaluate_node(self, node: ASTNode, sheet: Sheet) -> Value:
        """Evaluate an AST node against the sheet."""
        match node:
            case Literal(value=value):
                return value
            case CellRef():
                return self._evaluate_cell_ref(node, sheet)
            case RangeRef():
                return self._evaluate_range(node, sheet)
            case BinaryOp(left=left, operator=operator, right=right):
                return apply_binary(
                    operator,
                    self._evaluate_node(left, sheet),
                    self._evaluate_node(right, sheet),
                )
            case UnaryOp(operator=operator, operand=operand):
                return apply_unary(operator, self._evaluate_node(operand, sheet))
            case FunctionCall():
                return self._evaluate_function(node, sheet)
            case _:
                raise ValueError(f"Unknown node type: {type(node)}")

    def _evaluate_cell_ref(self, node: CellRef, sheet: Sheet) -> Value:
        """Resolve a reference, recursing into formula cells."""
        cell = sheet.get_cell_at(node.column, node.row)
        if cell is None:
            return None

        # Always recompute: a cached value may be stale when resolving a live
        # reference.
        if cell.formula:
            return self.evaluate(node.coords(), cell.formula, sheet)

        return cell.value

    def _evaluate_range(self, node: RangeRef, sheet: Sheet) -> list[Value]:
        return [self._evaluate_cell_ref(ref, sheet) for ref in node.cells()]

    def _evaluate_function(self, node: FunctionCall, sheet: Sheet) -> Value:
        name = node.name.upper()
        fn = self.functions.get(name)
        if fn is None:
            raise UnknownFunctionError(f"Unknown function: {name}")

        args = [self._evaluate_node(arg, sheet) for arg in node.arguments]
        signature = _signature_of(fn)
        try:
            if signature is not None:
                signature.bind(*args)
        except TypeError as e:
            raise FunctionArgumentError(f"Invalid arguments for {name}: {e}") from e
        try:
            return fn(*args)
        except (ArithmeticError, ValueError) as e:
            if isinstance(e, FormulaError):
                raise
            # e.g. converting an infinite float to int
            raise NumericError(f"Numeric error in {name}: {e}") from e

    def get_dependents(self, cell_id: str) -> set[str]:
        """Cells whose formulas read ``cell_id`` directly."""
        return self.graph.dependents_of(cell_id.upper())

    def get_all_dependents(self, cell_id: str) -> set[str]:
        return self.graph.transitive_dependents([cell_id.upper()])

    def get_dependencies(self, cell_id: str) -> set[str]:
        return self.graph.dependencies_of(cell_id.upper())

    def forget(self, cell_id: str) -> None:
        self.graph.remove_cell(cell_id.upper())

    def clear_dependencies(self) -> None:
        self.graph.clear()
