"""Sheet snapshots the evaluator reads cells from.

The evaluator only needs ``get_cell_at(column_index, row_index)`` with
0-based indices (column A is 0). Two implementations are provided: an
in-memory grid, and a read-only view over an openpyxl worksheet.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Protocol, runtime_checkable

from openpyxl.cell.rich_text import CellRichText
from openpyxl.worksheet.formula import ArrayFormula
from openpyxl.worksheet.worksheet import Worksheet

from formula_engine.errors import ParseError
from formula_engine.types import ScalarValue, ValueType, value_type
from formula_engine.utils import cell_id, split_cell_reference


@dataclass
class Cell:
    value: ScalarValue = None
    formula: Optional[str] = None
    type: str = "text"

    @classmethod
    def from_input(cls, raw: Any) -> "Cell":
        """Build a cell from what a user typed: "=..." strings are formulas."""
        if isinstance(raw, str) and raw.startswith("="):
            return cls(value=None, formula=raw, type="text")
        return cls(value=raw, type=cell_type_of(raw))


def cell_type_of(value: ScalarValue) -> str:
    match value_type(value):
        case ValueType.NUMBER:
            return "number"
        case ValueType.BOOLEAN:
            return "boolean"
        case ValueType.DATE:
            return "date"
        case _:
            return "text"


@runtime_checkable
class Sheet(Protocol):
    def get_cell_at(self, column: int, row: int) -> Optional[Cell]:
        """Return the cell at 0-based coordinates, or None if there is none."""
        ...


class GridSheet:
    """In-memory sheet keyed by A1 coordinates."""

    def __init__(self, cells: Optional[Mapping[str, Any]] = None):
        self.cells: dict[tuple[int, int], Cell] = {}
        for ref, raw in (cells or {}).items():
            self.set(ref, raw)

    @classmethod
    def from_rows(cls, rows: Iterable[Iterable[Any]]) -> "GridSheet":
        """Build a sheet from row-major values starting at A1."""
        sheet = cls()
        for r, row in enumerate(rows):
            for c, raw in enumerate(row):
                if raw is not None:
                    sheet.set_at(c, r, raw)
        return sheet

    def set(self, ref: str, raw: Any) -> Cell:
        return self.set_at(*self._coords(ref), raw)

    def set_at(self, column: int, row: int, raw: Any) -> Cell:
        cell = raw if isinstance(raw, Cell) else Cell.from_input(raw)
        self.cells[(column, row)] = cell
        return cell

    def get(self, ref: str) -> Optional[Cell]:
        return self.get_cell_at(*self._coords(ref))

    def get_cell_at(self, column: int, row: int) -> Optional[Cell]:
        return self.cells.get((column, row))

    def clear(self, ref: str) -> None:
        self.cells.pop(self._coords(ref), None)

    def formula_cells(self) -> dict[str, str]:
        """Map of cell id to formula text for every formula cell."""
        return {
            cell_id(col, row): cell.formula
            for (col, row), cell in self.cells.items()
            if cell.formula
        }

    def _coords(self, ref: str) -> tuple[int, int]:
        coords = split_cell_reference(ref)
        if coords is None:
            raise ParseError(f"Invalid cell reference: {ref}")
        return coords

    def __len__(self) -> int:
        return len(self.cells)


class WorksheetSheet:
    """Read-only view of an openpyxl worksheet.

    The sheet bounds are read once: cells written to the worksheet after the
    view is created, outside those bounds, are not seen.
    """

    def __init__(self, worksheet: Worksheet):
        self.worksheet = worksheet
        # openpyxl computes these by scanning every cell
        self.max_row = worksheet.max_row
        self.max_column = worksheet.max_column

    def get_cell_at(self, column: int, row: int) -> Optional[Cell]:
        # openpyxl is 1-based
        if row + 1 > self.max_row or column + 1 > self.max_column:
            return None
        return self._convert(self.worksheet.cell(row=row + 1, column=column + 1).value)

    def _convert(self, value: Any) -> Optional[Cell]:
        if value is None:
            return None
        if isinstance(value, ArrayFormula):
            value = value.text
        if isinstance(value, Decimal):
            value = float(value)
        if isinstance(value, date) and not isinstance(value, datetime):
            value = datetime(value.year, value.month, value.day)
        if isinstance(value, CellRichText):
            value = str(value)
        if isinstance(value, (time, timedelta)):
            # Durations and times of day have no Value counterpart
            value = str(value)
        return Cell.from_input(value)
