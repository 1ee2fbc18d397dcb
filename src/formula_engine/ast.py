from typing import NamedTuple

from formula_engine.types import ScalarValue


class Literal(NamedTuple):
    value: ScalarValue


class CellRef(NamedTuple):
    # 0-based; "B3" is CellRef(column=1, row=2)
    column: int
    row: int

    def coords(self) -> str:
        # Avoid circular imports
        from formula_engine.utils import cell_id

        return cell_id(self.column, self.row)


class RangeRef(NamedTuple):
    start: CellRef
    end: CellRef

    def cells(self) -> list[CellRef]:
        """Cells of the range, column-major."""
        start_col, end_col = sorted((self.start.column, self.end.column))
        start_row, end_row = sorted((self.start.row, self.end.row))
        return [
            CellRef(col, row)
            for col in range(start_col, end_col + 1)
            for row in range(start_row, end_row + 1)
        ]


class UnaryOp(NamedTuple):
    operator: str
    operand: "ASTNode"


class BinaryOp(NamedTuple):
    left: "ASTNode"
    operator: str
    right: "ASTNode"


class FunctionCall(NamedTuple):
    name: str
    arguments: "tuple[ASTNode, ...]"


# Type alias for all possible AST nodes
ASTNode = Literal | CellRef | RangeRef | UnaryOp | BinaryOp | FunctionCall
