"""Built-in formula functions.

Every function receives already-evaluated arguments: scalars, or lists for
range arguments. Lists may be nested and are always flattened before use.

Two conventions signal an invalid input without raising, so that one bad
cell does not stop its neighbours from recalculating:

- math, statistics and text functions return ``None`` (an empty cell) when
  there is nothing numeric to work with;
- game-data functions return the ``"#VALUE!"`` sentinel text.
"""

import math
from typing import Any, Callable, Optional, ParamSpec, overload

import numpy as np

from formula_engine.types import (
    SENTINEL_VALUE_ERROR,
    Value,
    ScalarValue,
    aggregate_numbers,
    coerce_to_bool,
    coerce_to_text,
    normalize_number,
    to_number_or_none,
)

P = ParamSpec("P")

FormulaFunction = Callable[..., Value]

FORMULA_FUNCTIONS: dict[str, FormulaFunction] = {}


@overload
def formula_fn(
    fn: Callable[P, Value], *, name: Optional[str] = None
) -> Callable[P, Value]: ...
@overload
def formula_fn(
    fn: None = None, *, name: Optional[str] = None
) -> Callable[[Callable[P, Value]], Callable[P, Value]]: ...


def formula_fn(
    fn: Callable[P, Value] | None = None,
    *,
    name: Optional[str] = None,
) -> Any:
    """Decorator to register a function in the formula function registry."""

    def decorator(fn: Callable[P, Value]) -> Callable[P, Value]:
        reg_name = (name or fn.__name__).upper()
        FORMULA_FUNCTIONS[reg_name] = fn
        return fn

    if fn:
        return decorator(fn)
    else:
        return decorator


def flatten_args(*args: Value) -> list[ScalarValue]:
    """Flatten multiple function arguments into a single list of non-array values."""
    result: list[ScalarValue] = []
    for arg in args:
        if isinstance(arg, list):
            result.extend(flatten_args(*arg))
        else:
            # Flat arg
            result.append(arg)
    return result


def numbers_of(*args: Value) -> list[float]:
    return aggregate_numbers(flatten_args(*args))


def _finite_number(value: Value) -> Optional[int | float]:
    """Like to_number_or_none, but infinities and NaN read as no number."""
    num = to_number_or_none(value)
    if isinstance(num, float) and not math.isfinite(num):
        return None
    return num


def _scalar_text(value: Value) -> str:
    # A single-cell range reads as its only value; longer ranges as nothing
    if isinstance(value, list):
        return coerce_to_text(value[0]) if len(value) == 1 else ""
    return coerce_to_text(value)


def _round_half_away(num: float, decimals: int = 0) -> float:
    factor = 10**decimals
    return math.floor(abs(num) * factor + 0.5) / factor * (1 if num >= 0 else -1)


class FormulaFunctions:
    """Collection of built-in function implementations."""

    # ============ Aggregates ============

    @staticmethod
    def SUM(*args: Value) -> Value:
        """Sum of arguments, handling arrays and ranges."""
        return normalize_number(sum(numbers_of(*args)))

    @staticmethod
    def AVERAGE(*args: Value) -> Value:
        """Average of the numeric arguments; 0 when there are none."""
        nums = numbers_of(*args)
        return normalize_number(sum(nums) / len(nums)) if nums else 0

    @staticmethod
    def MIN(*args: Value) -> Value:
        nums = numbers_of(*args)
        return min(nums) if nums else 0

    @staticmethod
    def MAX(*args: Value) -> Value:
        nums = numbers_of(*args)
        return max(nums) if nums else 0

    @staticmethod
    def COUNT(*args: Value) -> Value:
        """Count the arguments that read as numbers."""
        return len(numbers_of(*args))

    @staticmethod
    def COUNTA(*args: Value) -> Value:
        """Count the non-empty arguments, whatever their type."""
        return sum(1 for v in flatten_args(*args) if v is not None and v != "")

    # ============ Numeric ============

    @staticmethod
    def ROUND(value: Value, decimals: Value = 0) -> Value:
        """Round half away from zero to the given number of decimals."""
        num = _finite_number(value)
        dec = _finite_number(decimals)
        if num is None or dec is None:
            return None
        return normalize_number(_round_half_away(num, int(dec)))

    @staticmethod
    def CEILING(value: Value) -> Value:
        num = _finite_number(value)
        return math.ceil(num) if num is not None else None

    @staticmethod
    def FLOOR(value: Value) -> Value:
        num = _finite_number(value)
        return math.floor(num) if num is not None else None

    @staticmethod
    def ABS(value: Value) -> Value:
        num = to_number_or_none(value)
        return abs(num) if num is not None else None

    @staticmethod
    def SQRT(value: Value) -> Value:
        """Square root; negative input gives an empty result."""
        num = to_number_or_none(value)
        if num is None or num < 0:
            return None
        return normalize_number(math.sqrt(num))

    @staticmethod
    def POWER(base: Value, exponent: Value) -> Value:
        b = to_number_or_none(base)
        e = to_number_or_none(exponent)
        if b is None or e is None:
            return None
        try:
            result = b**e
        except (ZeroDivisionError, OverflowError):
            return None
        return None if isinstance(result, complex) else result

    # ============ Statistics ============

    @staticmethod
    def MEDIAN(*args: Value) -> Value:
        nums = numbers_of(*args)
        if not nums:
            return None
        return normalize_number(float(np.median(nums)))

    @staticmethod
    def MODE(*args: Value) -> Value:
        """Most frequent value; the first to reach the top count wins.

        Returns an empty result when no value repeats.
        """
        nums = numbers_of(*args)
        counts: dict[float, int] = {}
        mode = None
        max_count = 0
        for num in nums:
            counts[num] = counts.get(num, 0) + 1
            if counts[num] > max_count:
                max_count = counts[num]
                mode = num
        return mode if max_count > 1 else None

    @staticmethod
    def STDEV(*args: Value) -> Value:
        """Sample standard deviation (n - 1)."""
        nums = numbers_of(*args)
        if len(nums) < 2:
            return None
        return float(np.std(nums, ddof=1))

    @staticmethod
    def STDEVP(*args: Value) -> Value:
        """Population standard deviation (n)."""
        nums = numbers_of(*args)
        if not nums:
            return None
        return float(np.std(nums, ddof=0))

    @staticmethod
    def VAR(*args: Value) -> Value:
        nums = numbers_of(*args)
        if len(nums) < 2:
            return None
        return normalize_number(float(np.var(nums, ddof=1)))

    @staticmethod
    def VARP(*args: Value) -> Value:
        nums = numbers_of(*args)
        if not nums:
            return None
        return normalize_number(float(np.var(nums, ddof=0)))

    # ============ Logical ============

    @staticmethod
    def IF(
        condition: Value, true_value: Value = True, false_value: Value = False
    ) -> Value:
        """Return true_value if condition is truthy, false_value otherwise.

        Both branches are already evaluated by the time we get here.
        """
        return true_value if coerce_to_bool(condition) else false_value

    @staticmethod
    def AND(*args: Value) -> Value:
        return all(coerce_to_bool(v) for v in flatten_args(*args))

    @staticmethod
    def OR(*args: Value) -> Value:
        return any(coerce_to_bool(v) for v in flatten_args(*args))

    @staticmethod
    def NOT(value: Value) -> Value:
        return not coerce_to_bool(value)

    # ============ Text ============

    @staticmethod
    def CONCATENATE(*args: Value) -> Value:
        return "".join(coerce_to_text(val) for val in flatten_args(*args))

    @staticmethod
    def LEFT(text: Value, num_chars: Value = 1) -> Value:
        n = _finite_number(num_chars)
        n = 1 if n is None else max(int(n), 0)
        return _scalar_text(text)[:n]

    @staticmethod
    def RIGHT(text: Value, num_chars: Value = 1) -> Value:
        s = _scalar_text(text)
        n = _finite_number(num_chars)
        n = 1 if n is None else max(int(n), 0)
        return s[len(s) - n :] if n else ""

    @staticmethod
    def MID(text: Value, start_num: Value, num_chars: Value = 0) -> Value:
        """Substring starting at a 1-based position."""
        s = _scalar_text(text)
        start = _finite_number(start_num)
        start = max(int(start if start is not None else 1) - 1, 0)
        length = _finite_number(num_chars)
        length = max(int(length if length is not None else 0), 0)
        return s[start : start + length]

    @staticmethod
    def UPPER(text: Value) -> Value:
        return _scalar_text(text).upper()

    @staticmethod
    def LOWER(text: Value) -> Value:
        return _scalar_text(text).lower()

    @staticmethod
    def LEN(text: Value) -> Value:
        return len(_scalar_text(text))


# ============ Game data ============
#
# Fixed balance formulas. Invalid input yields the "#VALUE!" sentinel.

RARITY_BONUSES = {
    "common": 1.0,
    "uncommon": 1.1,
    "rare": 1.25,
    "epic": 1.5,
    "legendary": 2.0,
    "mythic": 3.0,
}

# Default gacha rates (%) for rarity tiers 1 (common) to 6 (mythic)
GACHA_DEFAULT_RATES = [40, 25, 15, 10, 5, 0.6]
GACHA_SOFT_PITY_START = 0.75
GACHA_SOFT_PITY_MAX_MULTIPLIER = 10


@formula_fn
def DAMAGE_CALC(attack: Value, defense: Value) -> Value:
    """floor(attack * 100 / (100 + defense))"""
    atk = _finite_number(attack)
    dfn = _finite_number(defense)
    if atk is None or dfn is None:
        return None
    if dfn == -100:
        return SENTINEL_VALUE_ERROR
    return math.floor(atk * (100 / (100 + dfn)))


@formula_fn
def STAT_TOTAL(*stats: Value) -> Value:
    return FormulaFunctions.SUM(*stats)


@formula_fn
def RARITY_BONUS(rarity: Value) -> Value:
    """Multiplier for a rarity name, 1.0 for unknown names."""
    return RARITY_BONUSES.get(_scalar_text(rarity).lower(), 1.0)


@formula_fn
def STAT_SCALE(
    level: Value, base_value: Value, growth_rate: Value = None, formula: Value = None
) -> Value:
    """Scale a base stat by level.

    Curves, with ``growth_rate`` defaulting to 10:

    - linear:      base + (level - 1) * growth
    - exponential: base * (1 + growth / 100) ^ (level - 1)
    - logarithmic: base + growth * ln(level)
    - quadratic:   base + growth * (level - 1) ^ 2

    Level below 1 or an unknown curve gives "#VALUE!".
    """
    lvl = to_number_or_none(level)
    base = to_number_or_none(base_value)
    growth = to_number_or_none(growth_rate)
    growth = 10 if growth is None else growth
    mode = _scalar_text(formula).lower() or "linear"

    if lvl is None or base is None or lvl < 1:
        return SENTINEL_VALUE_ERROR

    match mode:
        case "linear":
            return normalize_number(base + (lvl - 1) * growth)
        case "exponential":
            return base * (1 + growth / 100) ** (lvl - 1)
        case "logarithmic":
            return base + growth * math.log(lvl)
        case "quadratic":
            return normalize_number(base + growth * (lvl - 1) ** 2)
        case _:
            return SENTINEL_VALUE_ERROR


@formula_fn
def DROP_RATE(
    base_rate: Value,
    luck_stat: Value = None,
    enemy_level: Value = None,
    player_level: Value = None,
) -> Value:
    """Drop chance (%) with luck and level bonuses, capped at 100.

    +0.1 per luck point, +2.5 per level the player is above the enemy (only
    when both levels are given).
    """
    base = to_number_or_none(base_rate)
    luck = to_number_or_none(luck_stat) or 0
    enemy = to_number_or_none(enemy_level)
    player = to_number_or_none(player_level)

    if base is None:
        return SENTINEL_VALUE_ERROR

    rate = base
    if luck > 0:
        rate += luck * 0.1
    if enemy is not None and player is not None and player > enemy:
        rate += (player - enemy) * 2.5
    return normalize_number(min(rate, 100))


@formula_fn
def EXP_CURVE(
    level: Value,
    base_exp: Value = None,
    multiplier: Value = None,
    exponent: Value = None,
) -> Value:
    """Experience needed for a level: round(base * multiplier * level ^ exponent)."""
    lvl = _finite_number(level)
    base = _finite_number(base_exp)
    mult = _finite_number(multiplier)
    exp = _finite_number(exponent)
    base = 100 if base is None else base
    mult = 1.5 if mult is None else mult
    exp = 1.5 if exp is None else exp

    if lvl is None or lvl < 1:
        return SENTINEL_VALUE_ERROR
    return int(_round_half_away(base * mult * lvl**exp))


@formula_fn
def GACHA_RATE(
    rarity: Value,
    pity_counter: Value = None,
    base_rate: Value = None,
    pity_threshold: Value = None,
) -> Value:
    """Pull rate (%) for a rarity tier, with hard and soft pity.

    At ``pity >= threshold`` the pull is guaranteed (100). From 75% of the
    threshold on, the rate ramps linearly up to 10x the base, capped at 99.
    """
    tier = to_number_or_none(rarity)
    pity = to_number_or_none(pity_counter) or 0
    base = to_number_or_none(base_rate)
    threshold = to_number_or_none(pity_threshold)
    threshold = 90 if threshold is None else threshold

    if tier is None or tier < 1 or tier > 6:
        return SENTINEL_VALUE_ERROR
    if base is None:
        base = GACHA_DEFAULT_RATES[int(tier) - 1]

    if pity >= threshold:
        return 100

    soft_pity_start = math.floor(threshold * GACHA_SOFT_PITY_START)
    if pity >= soft_pity_start:
        progress = (pity - soft_pity_start) / (threshold - soft_pity_start)
        multiplier = 1 + progress * (GACHA_SOFT_PITY_MAX_MULTIPLIER - 1)
        return normalize_number(min(base * multiplier, 99))

    return base


@formula_fn
def BETWEEN(value: Value, bounds: Value) -> Value:
    """TRUE when min <= value <= max for a two-cell ``bounds`` range.

    Bounds that don't hold exactly two numbers give "#VALUE!" rather than a
    silent FALSE.
    """
    num = to_number_or_none(value)
    limits = flatten_args(bounds)
    if num is None or len(limits) != 2:
        return SENTINEL_VALUE_ERROR
    low, high = (to_number_or_none(v) for v in limits)
    if low is None or high is None:
        return SENTINEL_VALUE_ERROR
    return low <= num <= high


# Register the static methods of FormulaFunctions by their method names
for _name, _member in FormulaFunctions.__dict__.items():
    if _name.startswith("_") or not isinstance(_member, staticmethod):
        continue
    FORMULA_FUNCTIONS.setdefault(_name, _member.__func__)
