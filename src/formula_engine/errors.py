class FormulaError(Exception):
    """Base class for every error raised while evaluating a formula."""


class LexError(FormulaError):
    pass


class ParseError(FormulaError):
    pass


class CoercionError(FormulaError, ValueError):
    pass


class UnknownFunctionError(FormulaError):
    pass


class FunctionArgumentError(FormulaError):
    pass


class DivisionByZeroError(FormulaError, ZeroDivisionError):
    pass


class NumericError(FormulaError, ArithmeticError):
    pass


class CircularReferenceError(FormulaError):
    pass


class InvalidRangeUsageError(FormulaError):
    pass


class EvaluationDepthError(FormulaError):
    pass


ERROR_PREFIX = "#ERROR: "


def format_error(error: BaseException) -> str:
    """Render an exception as the text value shown in a failed cell."""
    message = str(error) or type(error).__name__
    return f"{ERROR_PREFIX}{message}"
