"""
Parser for the reference evaluator syntax (text -> AST).

Syntax Notes:
    - Literals: 1, 2.5, 'text', "text", true, false, null
    - Answer references: height, `link-id.with.dots`
    - Variable references: %bmi
    - Operators, lowest precedence first:
          or
          and
          not
          = == != < > <= >=
          + -
          * /
          unary -
    - Function calls: name(arg, ...)
"""

import re
from functools import lru_cache
from typing import List, Tuple

from formstate.errors import EvaluationError
from formstate.expressions import (
    Node,
    BinaryExpression,
    BinaryOperator,
    Reference,
    Literal,
    UnaryExpression,
    UnaryOperator,
    FunctionCall,
)


class ExpressionSyntaxError(EvaluationError):
    """Raised when expression text cannot be parsed."""
    pass


_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<number>\d+(?:\.\d+)?)
      | (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
      | (?P<quoted>`[^`]+`)
      | (?P<variable>%[A-Za-z_][A-Za-z0-9_]*)
      | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
      | (?P<op>!=|<=|>=|==|=|<|>|\+|-|\*|/|\(|\)|,)
    )
    """,
    re.VERBOSE,
)

_COMPARISONS = {
    "=": BinaryOperator.EQUALS,
    "==": BinaryOperator.EQUALS,
    "!=": BinaryOperator.NOT_EQUALS,
    "<": BinaryOperator.LESS_THAN,
    ">": BinaryOperator.GREATER_THAN,
    "<=": BinaryOperator.LESS_EQUAL,
    ">=": BinaryOperator.GREATER_EQUAL,
}

_ADDITIVE = {"+": BinaryOperator.ADD, "-": BinaryOperator.SUBTRACT}
_MULTIPLICATIVE = {"*": BinaryOperator.MULTIPLY, "/": BinaryOperator.DIVIDE}

Token = Tuple[str, str]


def _tokenize(text: str) -> List[Token]:
    """Tokenize expression text into (kind, value) pairs."""
    tokens: List[Token] = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None or match.end() == pos:
            raise ExpressionSyntaxError(f"Unexpected character {text[pos]!r} at {pos} in '{text}'")
        kind = match.lastgroup
        tokens.append((kind, match.group(kind)))
        pos = match.end()
    if not tokens:
        raise ExpressionSyntaxError(f"No valid tokens in expression: '{text}'")
    return tokens


def _is_keyword(token: Token, keyword: str) -> bool:
    return token[0] == "name" and token[1].lower() == keyword


def _parse_or_expression(tokens: List[Token], pos: int) -> Tuple[Node, int]:
    """Parse OR expression (lowest precedence)."""
    left, pos = _parse_and_expression(tokens, pos)

    while pos < len(tokens) and _is_keyword(tokens[pos], "or"):
        right, pos = _parse_and_expression(tokens, pos + 1)
        left = BinaryExpression(BinaryOperator.OR, left, right)

    return left, pos


def _parse_and_expression(tokens: List[Token], pos: int) -> Tuple[Node, int]:
    """Parse AND expression."""
    left, pos = _parse_not_expression(tokens, pos)

    while pos < len(tokens) and _is_keyword(tokens[pos], "and"):
        right, pos = _parse_not_expression(tokens, pos + 1)
        left = BinaryExpression(BinaryOperator.AND, left, right)

    return left, pos


def _parse_not_expression(tokens: List[Token], pos: int) -> Tuple[Node, int]:
    """Parse NOT expression."""
    if pos < len(tokens) and _is_keyword(tokens[pos], "not"):
        operand, pos = _parse_not_expression(tokens, pos + 1)
        return UnaryExpression(UnaryOperator.NOT, operand), pos

    return _parse_comparison_expression(tokens, pos)


def _parse_comparison_expression(tokens: List[Token], pos: int) -> Tuple[Node, int]:
    """Parse comparison expression (=, !=, <, >, <=, >=)."""
    left, pos = _parse_additive_expression(tokens, pos)

    if pos < len(tokens) and tokens[pos][0] == "op" and tokens[pos][1] in _COMPARISONS:
        operator = _COMPARISONS[tokens[pos][1]]
        right, pos = _parse_additive_expression(tokens, pos + 1)
        left = BinaryExpression(operator, left, right)

    return left, pos


def _parse_additive_expression(tokens: List[Token], pos: int) -> Tuple[Node, int]:
    left, pos = _parse_multiplicative_expression(tokens, pos)

    while pos < len(tokens) and tokens[pos][0] == "op" and tokens[pos][1] in _ADDITIVE:
        operator = _ADDITIVE[tokens[pos][1]]
        right, pos = _parse_multiplicative_expression(tokens, pos + 1)
        left = BinaryExpression(operator, left, right)

    return left, pos


def _parse_multiplicative_expression(tokens: List[Token], pos: int) -> Tuple[Node, int]:
    left, pos = _parse_unary_expression(tokens, pos)

    while pos < len(tokens) and tokens[pos][0] == "op" and tokens[pos][1] in _MULTIPLICATIVE:
        operator = _MULTIPLICATIVE[tokens[pos][1]]
        right, pos = _parse_unary_expression(tokens, pos + 1)
        left = BinaryExpression(operator, left, right)

    return left, pos


def _parse_unary_expression(tokens: List[Token], pos: int) -> Tuple[Node, int]:
    """Parse unary minus."""
    if pos < len(tokens) and tokens[pos] == ("op", "-"):
        operand, pos = _parse_unary_expression(tokens, pos + 1)
        if isinstance(operand, Literal) and isinstance(operand.value, (int, float)) \
                and not isinstance(operand.value, bool):
            return Literal(-operand.value), pos
        return UnaryExpression(UnaryOperator.NEGATE, operand), pos

    return _parse_primary_expression(tokens, pos)


def _parse_primary_expression(tokens: List[Token], pos: int) -> Tuple[Node, int]:
    """Parse primary expression (literal, reference, function call, or parenthesized)."""
    if pos >= len(tokens):
        raise ExpressionSyntaxError("Unexpected end of expression")

    kind, value = tokens[pos]

    # Parenthesized expression
    if (kind, value) == ("op", "("):
        expr, pos = _parse_or_expression(tokens, pos + 1)
        if pos >= len(tokens) or tokens[pos] != ("op", ")"):
            raise ExpressionSyntaxError("Missing closing parenthesis")
        return expr, pos + 1

    if kind == "number":
        return Literal(float(value) if "." in value else int(value)), pos + 1

    if kind == "string":
        body = value[1:-1]
        return Literal(re.sub(r"\\(.)", r"\1", body)), pos + 1

    if kind == "quoted":
        return Reference(value[1:-1]), pos + 1

    if kind == "variable":
        return Reference(value[1:], variable=True), pos + 1

    if kind == "name":
        lowered = value.lower()
        if lowered == "true":
            return Literal(True), pos + 1
        if lowered == "false":
            return Literal(False), pos + 1
        if lowered == "null":
            return Literal(None), pos + 1
        if lowered in ("and", "or", "not"):
            raise ExpressionSyntaxError(f"Unexpected keyword '{value}'")

        next_pos = pos + 1
        if next_pos < len(tokens) and tokens[next_pos] == ("op", "("):
            return _parse_function_call(value, tokens, next_pos + 1)

        return Reference(value), next_pos

    raise ExpressionSyntaxError(f"Unexpected token: {value}")


def _parse_function_call(name: str, tokens: List[Token], pos: int) -> Tuple[Node, int]:
    arguments = []

    # Check if the next token is a closing paren (no arguments)
    if pos < len(tokens) and tokens[pos] == ("op", ")"):
        return FunctionCall(name, ()), pos + 1

    # Parse comma-separated arguments
    while True:
        argument, pos = _parse_or_expression(tokens, pos)
        arguments.append(argument)

        if pos >= len(tokens):
            raise ExpressionSyntaxError("Missing closing parenthesis in function call")
        if tokens[pos] == ("op", ")"):
            return FunctionCall(name, tuple(arguments)), pos + 1
        if tokens[pos] == ("op", ","):
            pos += 1
            continue
        raise ExpressionSyntaxError(f"Expected ',' or ')' in function call, got '{tokens[pos][1]}'")


@lru_cache(maxsize=1024)
def parse_expression(text: str) -> Node:
    """
    Parse expression text into an AST.

    Results are cached; nodes are immutable so sharing them is safe.

    Raises:
        ExpressionSyntaxError: If the text is empty or invalid
    """
    if text is None or not text.strip():
        raise ExpressionSyntaxError("Empty expression")

    tokens = _tokenize(text)
    ast, remaining = _parse_or_expression(tokens, 0)

    if remaining < len(tokens):
        raise ExpressionSyntaxError(
            f"Unexpected tokens after parsing: {[t[1] for t in tokens[remaining:]]}"
        )

    return ast


__all__ = [
    "parse_expression",
    "ExpressionSyntaxError",
]
