"""
Expression Evaluator boundary.

The engine makes exactly one outward call per expression:

    evaluator.evaluate(expression_text, context) -> value

An evaluator raises EvaluationError (or any exception, which the engine
wraps) on failure. It MAY return an awaitable; only AsyncFormSession can
resolve those.

Dependency discovery uses `evaluator.references(expression_text)` when the
evaluator offers it, and `scan_references` otherwise.

ReferenceEvaluator is the evaluator shipped with the package. It is a small
interpreter over formstate.expressions, enough for calculated values,
enable conditions and constraints. Swap in any object with the same
`evaluate` signature to use a different language.
"""

import datetime
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, List, Optional, Protocol

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
    References,
    collect_references,
)
from formstate.parser import parse_expression


@dataclass(frozen=True, eq=False)
class EvaluationContext(Mapping):
    """
    Variables and answers visible to one expression on one response node.

    Behaves as a read-only mapping of variable name -> value. Variables
    declared on ancestors and on the form are visible; sibling variables are
    not.

    Properties:
        key: Instance key of the response node ("" for form-level variables)
        link_id: Link id of the item the expression belongs to
        variables: Visible variables
        answer_lookup: link id -> answer values in scope, or None when no
            item has that link id
    """

    key: str = ""
    link_id: Optional[str] = None
    variables: Mapping = field(default_factory=dict)
    answer_lookup: Callable[[str], Optional[List[Any]]] = field(default=lambda link_id: None, repr=False)

    def __getitem__(self, name: str) -> Any:
        return self.variables[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self.variables)

    def __len__(self) -> int:
        return len(self.variables)

    def has_item(self, link_id: str) -> bool:
        return self.answer_lookup(link_id) is not None

    def answers(self, link_id: str) -> List[Any]:
        return self.answer_lookup(link_id) or []


class Evaluator(Protocol):
    def evaluate(self, expression: str, context: EvaluationContext) -> Any:
        ...


_STRING_LITERAL_RE = re.compile(r"'(?:[^'\\]|\\.)*'|\"(?:[^\"\\]|\\.)*\"")
_VARIABLE_RE = re.compile(r"%([A-Za-z_][A-Za-z0-9_]*)")
_QUOTED_RE = re.compile(r"`([^`]+)`")
_IDENTIFIER_RE = re.compile(r"(?<![%A-Za-z0-9_.])([A-Za-z_][A-Za-z0-9_]*)\b(?!\s*\()")
_KEYWORDS = {"and", "or", "not", "true", "false", "null"}


def scan_references(expression: str) -> References:
    """
    Best-effort reference extraction for evaluators without `references()`.

    Strategy:
    - Drop string literals
    - %name is a variable reference
    - `quoted` and bare identifiers (not keywords, not function names) are
      answer references
    """
    if not expression:
        return References()

    text = _STRING_LITERAL_RE.sub(" ", expression)
    variables = set(_VARIABLE_RE.findall(text))
    answers = set(_QUOTED_RE.findall(text))
    text = _QUOTED_RE.sub(" ", _VARIABLE_RE.sub(" ", text))
    for ident in _IDENTIFIER_RE.findall(text):
        if ident.lower() not in _KEYWORDS:
            answers.add(ident)
    return References(answers=frozenset(answers), variables=frozenset(variables))


def references_of(evaluator: Any, expression: str) -> References:
    """Static references of an expression, asking the evaluator first."""
    extract = getattr(evaluator, "references", None)
    if extract is not None:
        try:
            return extract(expression)
        except EvaluationError:
            # Unparseable expressions fail again at evaluation time, where
            # the failure is recorded against the expression.
            return scan_references(expression)
    return scan_references(expression)


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _collapse(values: List[Any]) -> Any:
    if not values:
        return None
    if len(values) == 1:
        return values[0]
    return list(values)


def _truthy(value: Any) -> bool:
    if isinstance(value, list):
        return bool(value) and all(_truthy(v) for v in value)
    return bool(value)


class ReferenceEvaluator:
    """
    Interpreter for the reference syntax (see formstate.parser).

    Empty operands (None) propagate through arithmetic and comparisons, so
    "2 * height" is None while height is unanswered.
    """

    def evaluate(self, expression: str, context: EvaluationContext) -> Any:
        return self._eval(parse_expression(expression), context)

    def references(self, expression: str) -> References:
        return collect_references(parse_expression(expression))

    def _eval(self, node: Node, context: EvaluationContext) -> Any:
        if isinstance(node, Literal):
            return node.value

        if isinstance(node, Reference):
            return self._eval_reference(node, context)

        if isinstance(node, UnaryExpression):
            value = self._eval(node.operand, context)
            if value is None:
                return None
            if node.operator == UnaryOperator.NOT:
                return not _truthy(value)
            try:
                return -value
            except TypeError as e:
                raise EvaluationError(f"Cannot negate {value!r}") from e

        if isinstance(node, BinaryExpression):
            return self._eval_binary(node, context)

        if isinstance(node, FunctionCall):
            return self._eval_function(node, context)

        raise EvaluationError(f"Unsupported node type: {type(node).__name__}")

    def _eval_reference(self, node: Reference, context: EvaluationContext) -> Any:
        if not node.variable and context.has_item(node.name):
            return _collapse(context.answers(node.name))
        if node.name in context:
            return context[node.name]
        prefix = "%" if node.variable else ""
        raise EvaluationError(f"Undefined reference {prefix}{node.name}")

    def _eval_binary(self, node: BinaryExpression, context: EvaluationContext) -> Any:
        op = node.operator

        if op == BinaryOperator.AND:
            return _truthy(self._eval(node.left, context)) and _truthy(self._eval(node.right, context))
        if op == BinaryOperator.OR:
            return _truthy(self._eval(node.left, context)) or _truthy(self._eval(node.right, context))

        left = self._eval(node.left, context)
        right = self._eval(node.right, context)
        if left is None or right is None:
            return None

        try:
            if op == BinaryOperator.EQUALS:
                return left == right
            if op == BinaryOperator.NOT_EQUALS:
                return left != right
            if op == BinaryOperator.GREATER_THAN:
                return left > right
            if op == BinaryOperator.GREATER_EQUAL:
                return left >= right
            if op == BinaryOperator.LESS_THAN:
                return left < right
            if op == BinaryOperator.LESS_EQUAL:
                return left <= right
            if op == BinaryOperator.ADD:
                return left + right
            if op == BinaryOperator.SUBTRACT:
                return left - right
            if op == BinaryOperator.MULTIPLY:
                return left * right
            if op == BinaryOperator.DIVIDE:
                return left / right
        except ZeroDivisionError as e:
            raise EvaluationError("Division by zero") from e
        except TypeError as e:
            raise EvaluationError(f"Cannot apply '{op.value}' to {left!r} and {right!r}") from e

        raise EvaluationError(f"Unsupported operator: {op}")

    def _eval_function(self, node: FunctionCall, context: EvaluationContext) -> Any:
        name = node.name.lower()

        if name == "iif":
            if len(node.arguments) not in (2, 3):
                raise EvaluationError("iif() takes 2 or 3 arguments")
            if _truthy(self._eval(node.arguments[0], context)):
                return self._eval(node.arguments[1], context)
            return self._eval(node.arguments[2], context) if len(node.arguments) == 3 else None

        args = [self._eval(argument, context) for argument in node.arguments]
        flat = [v for arg in args for v in _as_list(arg)]

        if name == "today":
            return datetime.date.today()
        if name == "count":
            return len(flat)
        if name == "exists":
            return bool(flat)
        if name == "empty":
            return not flat
        try:
            if name == "sum":
                return sum(flat)
            if name == "min":
                return min(flat) if flat else None
            if name == "max":
                return max(flat) if flat else None
            if name == "abs":
                return abs(args[0]) if args and args[0] is not None else None
            if name == "round":
                if not args or args[0] is None:
                    return None
                digits = int(args[1]) if len(args) > 1 and args[1] is not None else 0
                return round(args[0], digits)
        except TypeError as e:
            raise EvaluationError(f"Invalid arguments for {node.name}(): {args!r}") from e

        raise EvaluationError(f"Unknown function: {node.name}()")
