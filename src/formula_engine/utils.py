import re

from openpyxl.utils import column_index_from_string, get_column_letter

from formula_engine.errors import ParseError

# Constants
CELL_REF_REGEX = re.compile(r"^([A-Z]+)([0-9]+)$", re.IGNORECASE)


def column_as_int(column: int | str) -> int:
    """Convert column letters to a 0-based index (A=0, Z=25, AA=26)."""
    if isinstance(column, int):
        return column
    try:
        return column_index_from_string(column.upper()) - 1
    except ValueError as e:
        raise ParseError(f"Invalid column: {column}") from e


def column_as_str(column: int | str) -> str:
    """Convert a 0-based column index back to letters."""
    if isinstance(column, str):
        return column.upper()
    if column < 0:
        raise ValueError(f"Invalid column index: {column}")
    return get_column_letter(column + 1)


def is_cell_reference(text: str) -> bool:
    return CELL_REF_REGEX.match(text) is not None


def split_cell_reference(ref: str) -> tuple[int, int] | None:
    """Parse "B12" into 0-based (column, row), returning None if invalid."""
    match = CELL_REF_REGEX.match(ref)
    if not match:
        return None
    letters, digits = match.groups()
    row = int(digits)
    if row < 1:
        return None
    return column_as_int(letters), row - 1


def cell_id(column: int, row: int) -> str:
    """Format 0-based coordinates as the canonical A1 cell id."""
    return f"{column_as_str(column)}{row + 1}"


def expand_range(start: tuple[int, int], end: tuple[int, int]) -> list[str]:
    """List every cell id of a rectangular range.

    Expansion is column-major: the outer loop walks columns, the inner loop
    walks rows. Reversed bounds (e.g. B2:A1) are normalized.
    """
    start_col, end_col = sorted((start[0], end[0]))
    start_row, end_row = sorted((start[1], end[1]))
    return [
        cell_id(col, row)
        for col in range(start_col, end_col + 1)
        for row in range(start_row, end_row + 1)
    ]
