import logging
from typing import Callable

from formula_engine.errors import DivisionByZeroError, InvalidRangeUsageError
from formula_engine.types import (
    SENTINEL_NUM_ERROR,
    Value,
    coerce_to_number,
    coerce_to_text,
    value_type,
)


def check_is_scalar(x: Value) -> Value:
    if isinstance(x, list):
        raise InvalidRangeUsageError("Cannot use range in this context")
    return x


def add(left: Value, right: Value) -> Value:
    return coerce_to_number(left) + coerce_to_number(right)


def subtract(left: Value, right: Value) -> Value:
    return coerce_to_number(left) - coerce_to_number(right)


def multiply(left: Value, right: Value) -> Value:
    return coerce_to_number(left) * coerce_to_number(right)


def divide(left: Value, right: Value) -> Value:
    divisor = coerce_to_number(right)
    # Checked after coercion so "0", FALSE and empty cells also count as zero
    if divisor == 0:
        raise DivisionByZeroError("Division by zero")
    return coerce_to_number(left) / divisor


def power(left: Value, right: Value) -> Value:
    base = coerce_to_number(left)
    exponent = coerce_to_number(right)
    try:
        result = base**exponent
    except ZeroDivisionError:
        raise DivisionByZeroError("Division by zero")
    if isinstance(result, complex):
        logging.debug("%s ^ %s has no real result", base, exponent)
        return SENTINEL_NUM_ERROR
    return result


def concatenate(left: Value, right: Value) -> Value:
    return coerce_to_text(check_is_scalar(left)) + coerce_to_text(
        check_is_scalar(right)
    )


def eq(left: Value, right: Value) -> Value:
    """Strict equality: values of different types are never equal."""
    check_is_scalar(left)
    check_is_scalar(right)
    return value_type(left) == value_type(right) and left == right


def neq(left: Value, right: Value) -> Value:
    return not eq(left, right)


def lt(left: Value, right: Value) -> Value:
    return coerce_to_number(left) < coerce_to_number(right)


def gt(left: Value, right: Value) -> Value:
    return coerce_to_number(left) > coerce_to_number(right)


def lte(left: Value, right: Value) -> Value:
    return coerce_to_number(left) <= coerce_to_number(right)


def gte(left: Value, right: Value) -> Value:
    return coerce_to_number(left) >= coerce_to_number(right)


BINARY_OPERATORS: dict[str, Callable[[Value, Value], Value]] = {
    "+": add,
    "-": subtract,
    "*": multiply,
    "/": divide,
    "^": power,
    "&": concatenate,
    "=": eq,
    "<>": neq,
    "<": lt,
    ">": gt,
    "<=": lte,
    ">=": gte,
}


def apply_binary(operator: str, left: Value, right: Value) -> Value:
    try:
        op = BINARY_OPERATORS[operator]
    except KeyError:
        raise ValueError(f"Unknown operator: {operator}")
    try:
        return op(left, right)
    except OverflowError:
        # Exact ints can outgrow what a float holds, e.g. 10^400/3
        logging.debug("%r %s %r overflows", left, operator, right)
        return SENTINEL_NUM_ERROR


def apply_unary(operator: str, operand: Value) -> Value:
    match operator:
        case "+":
            return coerce_to_number(operand)
        case "-":
            return -coerce_to_number(operand)
        case _:
            raise ValueError(f"Unknown unary operator: {operator}")
