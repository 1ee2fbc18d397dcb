from enum import Enum, auto
from typing import List, NamedTuple

from formula_engine.errors import LexError
from formula_engine.utils import is_cell_reference


class TokenType(Enum):
    NUMBER = auto()
    STRING = auto()
    BOOLEAN = auto()
    OPERATOR = auto()
    LPAREN = auto()
    RPAREN = auto()
    COMMA = auto()
    CELL = auto()
    RANGE = auto()
    FUNCTION = auto()


class Token(NamedTuple):
    type: TokenType
    value: str


class FormulaTokenizer:
    OPERATOR_CHARS = "+-*/^&=<>"
    TWO_CHAR_OPERATORS = {"<": {"=", ">"}, ">": {"="}}

    def __init__(self, formula: str):
        formula = formula.strip()
        if formula.startswith("="):
            formula = formula[1:]
        self.formula = formula
        self.pos = 0
        self.length = len(self.formula)

    def tokenize(self) -> List[Token]:
        """Tokenize the formula and return list of tokens."""
        tokens = []
        while self.pos < self.length:
            char = self.formula[self.pos]

            if char.isspace():
                self.pos += 1
                continue
            elif char == '"':
                tokens.append(self._tokenize_string())
            elif char.isdigit() or (char == "." and self._next_is_digit()):
                tokens.append(self._tokenize_number())
            elif char.isascii() and char.isalpha():
                tokens.append(self._tokenize_identifier())
            elif char in self.OPERATOR_CHARS:
                tokens.append(self._tokenize_operator())
            elif char == "(":
                tokens.append(Token(TokenType.LPAREN, char))
                self.pos += 1
            elif char == ")":
                tokens.append(Token(TokenType.RPAREN, char))
                self.pos += 1
            elif char == ",":
                tokens.append(Token(TokenType.COMMA, char))
                self.pos += 1
            else:
                raise LexError(f"Unexpected character: {char}")

        return tokens

    def _next_is_digit(self) -> bool:
        nxt = self.pos + 1
        return nxt < self.length and self.formula[nxt].isdigit()

    def _tokenize_number(self) -> Token:
        """Tokenize a number: digits with at most one decimal point."""
        start = self.pos
        seen_decimal = False

        while self.pos < self.length:
            char = self.formula[self.pos]
            if char.isdigit():
                self.pos += 1
            elif char == "." and not seen_decimal:
                seen_decimal = True
                self.pos += 1
            elif char == ".":
                raise LexError(
                    f"Invalid number '{self.formula[start:self.pos + 1]}': "
                    "multiple decimal points"
                )
            else:
                break

        value = self.formula[start : self.pos]
        if value.endswith("."):
            # "5." reads as 5
            value = value[:-1]
        return Token(TokenType.NUMBER, value)

    def _tokenize_string(self) -> Token:
        """Tokenize a string literal.

        There is no escape syntax: the next double quote always closes the
        string. An unterminated string runs to the end of the formula.
        """
        self.pos += 1  # Skip opening quote
        end = self.formula.find('"', self.pos)
        if end == -1:
            end = self.length
        value = self.formula[self.pos : end]
        self.pos = end + 1
        return Token(TokenType.STRING, value)

    def _read_word(self) -> str:
        start = self.pos
        while self.pos < self.length and (
            self.formula[self.pos].isascii()
            and (self.formula[self.pos].isalnum() or self.formula[self.pos] == "_")
        ):
            self.pos += 1
        return self.formula[start : self.pos]

    def _tokenize_identifier(self) -> Token:
        """Tokenize a boolean, function name, cell reference or range."""
        identifier = self._read_word()
        upper = identifier.upper()

        if upper in ("TRUE", "FALSE"):
            return Token(TokenType.BOOLEAN, upper)

        next_char = self.formula[self.pos] if self.pos < self.length else None
        if next_char == "(":
            return Token(TokenType.FUNCTION, upper)

        if next_char == ":":
            self.pos += 1  # consume ':'
            end = self._read_word()
            return Token(TokenType.RANGE, f"{upper}:{end.upper()}")

        if is_cell_reference(identifier):
            return Token(TokenType.CELL, upper)
        return Token(TokenType.FUNCTION, upper)

    def _tokenize_operator(self) -> Token:
        """Tokenize an operator (+, -, *, /, ^, &, =, <, >, <=, >=, <>)."""
        start = self.pos
        current_char = self.formula[self.pos]
        next_char = self.formula[self.pos + 1] if self.pos + 1 < self.length else None

        if (
            next_char
            and current_char in self.TWO_CHAR_OPERATORS
            and next_char in self.TWO_CHAR_OPERATORS[current_char]
        ):
            self.pos += 2
        else:
            self.pos += 1
        return Token(TokenType.OPERATOR, self.formula[start : self.pos])


def tokenize(formula: str) -> List[Token]:
    return FormulaTokenizer(formula).tokenize()
