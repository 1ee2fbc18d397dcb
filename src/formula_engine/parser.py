import logging
from typing import Callable, List, Optional

from formula_engine.errors import ParseError
from formula_engine.types import parse_number
from formula_engine.utils import expand_range, split_cell_reference
from .tokenizer import Token, TokenType, FormulaTokenizer
from .ast import (
    ASTNode,
    BinaryOp,
    CellRef,
    FunctionCall,
    Literal,
    RangeRef,
    UnaryOp,
)


# Helper function to parse a formula string into an AST.
def parse_formula(formula: str) -> ASTNode:
    """Helper function to parse a formula string into an AST."""
    tokens = FormulaTokenizer(formula).tokenize()
    return FormulaParser(tokens).parse()


class FormulaParser:
    COMPARISON_OPERATORS = {"=", "<>", "<", ">", "<=", ">="}

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.current = 0

    def parse(self) -> ASTNode:
        """Parse tokens into an AST."""
        self.current = 0
        if not self.tokens:
            raise ParseError("Unexpected end of formula")

        node = self.parse_expression()

        leftover = self.peek()
        if leftover is not None:
            if leftover.type == TokenType.RPAREN:
                raise ParseError("Unmatched closing parenthesis ')'")
            raise ParseError(f"Unexpected token: {leftover.value}")
        logging.debug("Parsed formula into %s", node)
        return node

    # We call .peek() and .read() very often, so we duplicate code to avoid
    # unnecessary function calls.
    def peek(self) -> Optional[Token]:
        """Look at the current token without consuming it."""
        if self.current >= len(self.tokens):
            return None
        return self.tokens[self.current]

    def read(self) -> Token:
        """Consume and return the current token."""
        if self.current >= len(self.tokens):
            raise ParseError("Unexpected end of formula")
        tok = self.tokens[self.current]
        self.current += 1
        return tok

    def read_if_match(self, *types: TokenType) -> Optional[Token]:
        """Consume and return current token if it matches any of the given types."""
        token = self.peek()
        if token is not None and token.type in types:
            self.current += 1
            return token
        return None

    def _parse_binary_operation(
        self, parse_operand: Callable[[], ASTNode], valid_operators: set[str]
    ) -> ASTNode:
        """Parse a left-associative chain of the given operators."""
        left = parse_operand()

        while True:
            next_tok = self.peek()
            if (
                not next_tok
                or next_tok.type != TokenType.OPERATOR
                or next_tok.value not in valid_operators
            ):
                break

            self.read()  # consume operator
            right = parse_operand()
            left = BinaryOp(left=left, operator=next_tok.value, right=right)

        return left

    def parse_expression(self) -> ASTNode:
        """Parse an expression (lowest precedence: comparisons)."""
        return self._parse_binary_operation(
            self.parse_concat, self.COMPARISON_OPERATORS
        )

    def parse_concat(self) -> ASTNode:
        """Parse string concatenation (&)."""
        return self._parse_binary_operation(self.parse_additive, {"&"})

    def parse_additive(self) -> ASTNode:
        """Parse addition/subtraction (+, -)."""
        return self._parse_binary_operation(self.parse_term, {"+", "-"})

    def parse_term(self) -> ASTNode:
        """Parse multiplication/division (*, /)."""
        return self._parse_binary_operation(self.parse_power, {"*", "/"})

    def parse_power(self) -> ASTNode:
        """Parse exponentiation (^)."""
        return self._parse_binary_operation(self.parse_unary, {"^"})

    def parse_unary(self) -> ASTNode:
        """Parse prefix + and -."""
        token = self.peek()
        if (
            token is not None
            and token.type == TokenType.OPERATOR
            and token.value in ("+", "-")
        ):
            self.read()
            return UnaryOp(operator=token.value, operand=self.parse_unary())
        return self.parse_primary()

    def parse_primary(self) -> ASTNode:
        """Parse a primary: literal, reference, function call or parentheses."""
        token = self.peek()
        if token is None:
            raise ParseError("Unexpected end of formula")

        if token.type == TokenType.NUMBER:
            self.read()
            return Literal(parse_number(token.value))

        elif token.type == TokenType.STRING:
            self.read()
            return Literal(token.value)

        elif token.type == TokenType.BOOLEAN:
            self.read()
            return Literal(token.value == "TRUE")

        elif token.type == TokenType.CELL:
            self.read()
            return self.parse_cell_reference(token.value)

        elif token.type == TokenType.RANGE:
            self.read()
            return self.parse_range(token.value)

        elif token.type == TokenType.FUNCTION:
            self.read()
            return self.parse_function_call(token.value)

        elif token.type == TokenType.LPAREN:
            self.read()  # consume '('
            expr = self.parse_expression()
            if not self.read_if_match(TokenType.RPAREN):
                raise ParseError("Expected ')'")
            return expr

        raise ParseError(f"Unexpected token: {token.value}")

    def parse_cell_reference(self, ref: str) -> CellRef:
        coords = split_cell_reference(ref)
        if coords is None:
            raise ParseError(f"Invalid cell reference: {ref}")
        return CellRef(*coords)

    def parse_range(self, text: str) -> RangeRef:
        start, _, end = text.partition(":")
        return RangeRef(
            start=self.parse_cell_reference(start),
            end=self.parse_cell_reference(end),
        )

    def parse_function_call(self, name: str) -> FunctionCall:
        """Parse a function call with its arguments."""
        if not self.read_if_match(TokenType.LPAREN):
            raise ParseError(f"Expected '(' after function {name}")

        # Handle empty argument list
        if self.read_if_match(TokenType.RPAREN):
            return FunctionCall(name=name, arguments=())

        args = [self.parse_expression()]
        while self.read_if_match(TokenType.COMMA):
            args.append(self.parse_expression())

        if not self.read_if_match(TokenType.RPAREN):
            raise ParseError("Expected ')' after function arguments")

        return FunctionCall(name=name, arguments=tuple(args))


def extract_references(node: ASTNode) -> set[str]:
    """Collect the ids of every cell an AST reads, ranges expanded."""
    refs: set[str] = set()

    def traverse(node: ASTNode) -> None:
        match node:
            case CellRef():
                refs.add(node.coords())
            case RangeRef(start=start, end=end):
                refs.update(
                    expand_range((start.column, start.row), (end.column, end.row))
                )
            case UnaryOp(operand=operand):
                traverse(operand)
            case BinaryOp(left=left, right=right):
                traverse(left)
                traverse(right)
            case FunctionCall(arguments=arguments):
                for arg in arguments:
                    traverse(arg)
            case Literal():
                pass
            case _:
                raise ValueError(f"Unknown node type: {type(node)}")

    traverse(node)
    return refs
