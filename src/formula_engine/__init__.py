"""formula_engine - spreadsheet formula parsing, evaluation and recalculation."""

from formula_engine.cache import CacheEntry, CacheStats, FormulaCache
from formula_engine.engine import CalculationEngine
from formula_engine.errors import (
    CircularReferenceError,
    DivisionByZeroError,
    EvaluationDepthError,
    FormulaError,
    FunctionArgumentError,
    InvalidRangeUsageError,
    LexError,
    ParseError,
    UnknownFunctionError,
    format_error,
)
from formula_engine.evaluator import FormulaEvaluator
from formula_engine.functions import FORMULA_FUNCTIONS, formula_fn
from formula_engine.graph import DependencyGraph
from formula_engine.parser import FormulaParser, extract_references, parse_formula
from formula_engine.sheet import Cell, GridSheet, Sheet, WorksheetSheet
from formula_engine.tokenizer import FormulaTokenizer, Token, TokenType

__all__ = [
    "CacheEntry",
    "CacheStats",
    "CalculationEngine",
    "Cell",
    "CircularReferenceError",
    "DependencyGraph",
    "DivisionByZeroError",
    "EvaluationDepthError",
    "FORMULA_FUNCTIONS",
    "FormulaCache",
    "FormulaError",
    "FormulaEvaluator",
    "FormulaParser",
    "FormulaTokenizer",
    "FunctionArgumentError",
    "GridSheet",
    "InvalidRangeUsageError",
    "LexError",
    "ParseError",
    "Sheet",
    "Token",
    "TokenType",
    "UnknownFunctionError",
    "WorksheetSheet",
    "extract_references",
    "format_error",
    "formula_fn",
    "parse_formula",
]
