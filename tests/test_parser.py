"""
Tests for the reference syntax parser (text -> AST).
"""

import pytest
from formstate.errors import EvaluationError
from formstate.expressions import (
    BinaryExpression,
    BinaryOperator,
    FunctionCall,
    Literal,
    Reference,
    UnaryExpression,
    UnaryOperator,
)
from formstate.parser import ExpressionSyntaxError, parse_expression


class TestLiterals:
    """Test literal parsing."""

    def test_integer(self):
        assert parse_expression("42") == Literal(42)

    def test_decimal(self):
        assert parse_expression("2.5") == Literal(2.5)

    def test_negative_number_folds_into_literal(self):
        assert parse_expression("-8") == Literal(-8)

    def test_strings_with_either_quote(self):
        assert parse_expression("'yes'") == Literal("yes")
        assert parse_expression('"no"') == Literal("no")

    def test_keywords(self):
        assert parse_expression("true") == Literal(True)
        assert parse_expression("FALSE") == Literal(False)
        assert parse_expression("null") == Literal(None)


class TestReferences:
    """Test reference parsing."""

    def test_bare_name(self):
        assert parse_expression("height") == Reference("height")

    def test_back_quoted_link_id(self):
        """Link ids that are not identifiers are back-quoted."""
        assert parse_expression("`1.2-a`") == Reference("1.2-a")

    def test_variable(self):
        assert parse_expression("%bmi") == Reference("bmi", variable=True)


class TestOperators:
    """Test precedence and associativity."""

    def test_multiplication_binds_tighter_than_addition(self):
        expr = parse_expression("1 + 2 * height")
        assert expr.operator == BinaryOperator.ADD
        assert expr.right == BinaryExpression(BinaryOperator.MULTIPLY, Literal(2), Reference("height"))

    def test_and_binds_tighter_than_or(self):
        expr = parse_expression("a = 1 or b = 2 and c = 3")
        assert expr.operator == BinaryOperator.OR
        assert expr.right.operator == BinaryOperator.AND

    def test_double_equals_is_equality(self):
        assert parse_expression("a == 1").operator == BinaryOperator.EQUALS

    def test_not(self):
        expr = parse_expression("not smoker")
        assert expr == UnaryExpression(UnaryOperator.NOT, Reference("smoker"))

    def test_unary_minus_on_reference(self):
        assert parse_expression("-height") == UnaryExpression(UnaryOperator.NEGATE, Reference("height"))

    def test_parentheses(self):
        expr = parse_expression("(1 + 2) * 3")
        assert expr.operator == BinaryOperator.MULTIPLY
        assert expr.left.operator == BinaryOperator.ADD


class TestFunctionCalls:
    """Test function call parsing."""

    def test_no_arguments(self):
        assert parse_expression("today()") == FunctionCall("today", ())

    def test_arguments(self):
        expr = parse_expression("iif(%adult, 'A', 'C')")
        assert expr == FunctionCall("iif", (Reference("adult", variable=True), Literal("A"), Literal("C")))


class TestErrors:
    """Test syntax errors."""

    def test_empty_expression(self):
        with pytest.raises(ExpressionSyntaxError):
            parse_expression("   ")

    def test_missing_parenthesis(self):
        with pytest.raises(ExpressionSyntaxError):
            parse_expression("(1 + 2")

    def test_trailing_tokens(self):
        with pytest.raises(ExpressionSyntaxError):
            parse_expression("1 2")

    def test_unexpected_character(self):
        with pytest.raises(ExpressionSyntaxError):
            parse_expression("height # 2")

    def test_syntax_error_is_evaluation_error(self):
        """Evaluators report parse failures as evaluation failures."""
        assert issubclass(ExpressionSyntaxError, EvaluationError)
