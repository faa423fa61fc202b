"""
Expression AST of the reference evaluator.

Expressions arrive as text (see formstate.model.Expression). The reference
evaluator parses them into the frozen node classes below and interprets the
tree. The engine itself never looks inside an expression; it only needs the
References a text makes, which `collect_references` derives from the tree.

ARCHITECTURAL RULE:
    Nodes are structure only. Evaluation belongs in formstate.evaluator,
    parsing in formstate.parser.
"""

from abc import ABC
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Tuple, Union


class Node(ABC):
    """
    Base class for all AST nodes.

    This is intentionally minimal.
    It exists to provide type-safety for the node hierarchy.
    """
    pass


class BinaryOperator(Enum):
    """Binary operators of the reference syntax."""

    # Logical operators
    AND = "and"
    OR = "or"

    # Comparison operators
    EQUALS = "="
    NOT_EQUALS = "!="
    GREATER_THAN = ">"
    GREATER_EQUAL = ">="
    LESS_THAN = "<"
    LESS_EQUAL = "<="

    # Arithmetic operators
    ADD = "+"
    SUBTRACT = "-"
    MULTIPLY = "*"
    DIVIDE = "/"


@dataclass(frozen=True)
class BinaryExpression(Node):
    """
    Binary logical, comparison or arithmetic expression.

    Example:
        2 * height

    Becomes:
        BinaryExpression(
            operator=BinaryOperator.MULTIPLY,
            left=Literal(2),
            right=Reference("height"),
        )
    """

    operator: BinaryOperator
    left: Node
    right: Node


@dataclass(frozen=True)
class Reference(Node):
    """
    Reference to an answer or a variable.

    Examples:
        height          answers of the item with link id "height"
        `1.2`           back-quoted link id
        %bmi            variable "bmi" (declared on an ancestor or the form)

    Properties:
        name: Link id or variable name
        variable: True for %-prefixed variable references

    IMPORTANT:
        A bare name that matches no item falls back to a variable of the
        same name at evaluation time.
    """

    name: str
    variable: bool = False


@dataclass(frozen=True)
class Literal(Node):
    """
    Literal constant value.

    Examples:
        - 1
        - 2.5
        - 'yes'
        - true
        - null  (value None)
    """

    value: Union[int, float, str, bool, None]


class UnaryOperator(Enum):
    NOT = "not"
    NEGATE = "-"


@dataclass(frozen=True)
class UnaryExpression(Node):
    """
    Unary operation.

    Example:
        not (smoker = true)
    """

    operator: UnaryOperator
    operand: Node


@dataclass(frozen=True)
class FunctionCall(Node):
    """
    Function call such as count(members) or iif(%adult, 'A', 'C').
    """

    name: str
    arguments: Tuple[Node, ...] = ()


@dataclass(frozen=True)
class References:
    """
    Static references of one expression.

    Properties:
        answers: link ids whose answers are read
        variables: variable names read (%name)
    """

    answers: FrozenSet[str] = field(default_factory=frozenset)
    variables: FrozenSet[str] = field(default_factory=frozenset)

    def __or__(self, other: "References") -> "References":
        return References(self.answers | other.answers, self.variables | other.variables)

    @property
    def empty(self) -> bool:
        return not self.answers and not self.variables


def collect_references(node: Node) -> References:
    """Recursively collect answer and variable references of a tree."""
    if isinstance(node, Reference):
        if node.variable:
            return References(variables=frozenset([node.name]))
        return References(answers=frozenset([node.name]))

    if isinstance(node, BinaryExpression):
        return collect_references(node.left) | collect_references(node.right)

    if isinstance(node, UnaryExpression):
        return collect_references(node.operand)

    if isinstance(node, FunctionCall):
        refs = References()
        for argument in node.arguments:
            refs = refs | collect_references(argument)
        return refs

    # Literals don't reference anything
    return References()
