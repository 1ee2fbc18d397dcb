import pytest
from formula_engine.ast import (
    BinaryOp,
    CellRef,
    FunctionCall,
    Literal,
    RangeRef,
    UnaryOp,
)
from formula_engine.errors import LexError, ParseError
from formula_engine.parser import extract_references, parse_formula


class TestLiterals:
    def test_numbers(self):
        assert parse_formula("=42") == Literal(42)
        assert parse_formula("=3.5") == Literal(3.5)
        assert parse_formula("=.5") == Literal(0.5)

    def test_integer_literal_stays_int(self):
        node = parse_formula("=7")
        assert isinstance(node.value, int)

    def test_trailing_decimal_point(self):
        assert parse_formula("=5.") == Literal(5)

    def test_strings_and_booleans(self):
        assert parse_formula('="abc"') == Literal("abc")
        assert parse_formula("=TRUE") == Literal(True)
        assert parse_formula("=false") == Literal(False)


class TestReferences:
    def test_cell_reference(self):
        assert parse_formula("=B3") == CellRef(column=1, row=2)
        assert parse_formula("=B3").coords() == "B3"

    def test_lowercase_reference(self):
        assert parse_formula("=aa10") == CellRef(column=26, row=9)

    def test_range(self):
        node = parse_formula("=A1:B2")
        assert node == RangeRef(CellRef(0, 0), CellRef(1, 1))
        assert [c.coords() for c in node.cells()] == ["A1", "A2", "B1", "B2"]

    def test_row_zero_is_invalid(self):
        with pytest.raises(ParseError, match="Invalid cell reference"):
            parse_formula("=A0")

    def test_incomplete_range(self):
        with pytest.raises(ParseError, match="Invalid cell reference"):
            parse_formula("=A1:")


class TestOperators:
    def test_precedence(self):
        """Multiplication binds tighter than addition."""
        assert parse_formula("=2+3*4") == BinaryOp(
            Literal(2), "+", BinaryOp(Literal(3), "*", Literal(4))
        )

    def test_parentheses(self):
        assert parse_formula("=(2+3)*4") == BinaryOp(
            BinaryOp(Literal(2), "+", Literal(3)), "*", Literal(4)
        )

    def test_left_associativity(self):
        assert parse_formula("=10-4-3") == BinaryOp(
            BinaryOp(Literal(10), "-", Literal(4)), "-", Literal(3)
        )
        assert parse_formula("=2^3^2") == BinaryOp(
            BinaryOp(Literal(2), "^", Literal(3)), "^", Literal(2)
        )

    def test_power_binds_tighter_than_multiplication(self):
        assert parse_formula("=2*3^2") == BinaryOp(
            Literal(2), "*", BinaryOp(Literal(3), "^", Literal(2))
        )

    def test_unary_binds_tighter_than_power(self):
        assert parse_formula("=-2^2") == BinaryOp(
            UnaryOp("-", Literal(2)), "^", Literal(2)
        )

    def test_nested_unary(self):
        assert parse_formula("=--A1") == UnaryOp("-", UnaryOp("-", CellRef(0, 0)))
        assert parse_formula("=+1") == UnaryOp("+", Literal(1))

    def test_concat_between_additive_and_comparison(self):
        assert parse_formula('=1+2&"x"="3x"') == BinaryOp(
            BinaryOp(BinaryOp(Literal(1), "+", Literal(2)), "&", Literal("x")),
            "=",
            Literal("3x"),
        )

    @pytest.mark.parametrize("op", ["=", "<>", "<", ">", "<=", ">="])
    def test_comparisons(self, op):
        assert parse_formula(f"=A1{op}1") == BinaryOp(CellRef(0, 0), op, Literal(1))


class TestFunctionCalls:
    def test_no_arguments(self):
        assert parse_formula("=NOW()") == FunctionCall("NOW", ())

    def test_arguments(self):
        assert parse_formula("=SUM(A1:A3, 5)") == FunctionCall(
            "SUM",
            (RangeRef(CellRef(0, 0), CellRef(0, 2)), Literal(5)),
        )

    def test_name_is_uppercased(self):
        assert parse_formula("=sum(1)").name == "SUM"

    def test_nested_calls(self):
        assert parse_formula("=IF(A1>1, MAX(1,2), 0)") == FunctionCall(
            "IF",
            (
                BinaryOp(CellRef(0, 0), ">", Literal(1)),
                FunctionCall("MAX", (Literal(1), Literal(2))),
                Literal(0),
            ),
        )

    def test_missing_parenthesis_after_name(self):
        with pytest.raises(ParseError, match=r"Expected '\(' after function FOO"):
            parse_formula("=FOO")

    def test_unclosed_arguments(self):
        with pytest.raises(ParseError, match=r"Expected '\)' after function arguments"):
            parse_formula("=SUM(1, 2")


class TestParseErrors:
    def test_empty_formula(self):
        with pytest.raises(ParseError, match="Unexpected end of formula"):
            parse_formula("=")

    def test_dangling_operator(self):
        with pytest.raises(ParseError, match="Unexpected end of formula"):
            parse_formula("=1+")

    def test_unclosed_parenthesis(self):
        with pytest.raises(ParseError, match=r"Expected '\)'"):
            parse_formula("=(1+2")

    def test_unmatched_closing_parenthesis(self):
        with pytest.raises(ParseError, match="Unmatched closing parenthesis"):
            parse_formula("=1+2)")

    def test_leftover_tokens(self):
        with pytest.raises(ParseError, match="Unexpected token: 2"):
            parse_formula("=1 2")

    def test_unexpected_operator(self):
        with pytest.raises(ParseError, match=r"Unexpected token: \*"):
            parse_formula("=*2")

    def test_lex_errors_propagate(self):
        with pytest.raises(LexError):
            parse_formula("=1 % 2")


class TestExtractReferences:
    def test_literal_has_no_references(self):
        assert extract_references(parse_formula("=1+2")) == set()

    def test_cells_and_ranges(self):
        node = parse_formula("=SUM(A1:B2) + C3 * -D4")
        assert extract_references(node) == {"A1", "A2", "B1", "B2", "C3", "D4"}

    def test_reversed_range(self):
        node = parse_formula("=SUM(B2:A1)")
        assert extract_references(node) == {"A1", "A2", "B1", "B2"}

    def test_duplicates_collapse(self):
        assert extract_references(parse_formula("=A1+A1+a1")) == {"A1"}
