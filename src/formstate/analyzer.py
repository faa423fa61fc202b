"""
Form Analyzer: early diagnostics and inventory of form definitions.

This module provides lightweight analysis of Form objects:
    - Item and expression inventory
    - Variable usage, undefined references and unused variables
    - Dependency cycles
    - Expression complexity metrics (reference syntax only)
    - Warning flags for authoring risk

IMPORTANT: The analyzer does NOT modify the form and evaluates nothing.
It only produces read-only reports from the dependency graph.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from formstate.dependencies import ExpressionKind, resolve
from formstate.errors import EvaluationError
from formstate.evaluator import references_of
from formstate.expressions import (
    BinaryExpression,
    FunctionCall,
    Literal,
    Node,
    Reference,
    UnaryExpression,
)
from formstate.model import Form
from formstate.parser import parse_expression


@dataclass
class ExpressionMetrics:
    """Metrics about a single expression tree."""
    depth: int = 0
    node_count: int = 0
    references: Set[str] = field(default_factory=set)

    def add(self, other: ExpressionMetrics) -> None:
        self.depth = max(self.depth, other.depth)
        self.node_count += other.node_count
        self.references.update(other.references)


def _analyze_expression(expr: Optional[Node]) -> ExpressionMetrics:
    """Recursively analyze an expression tree."""
    if expr is None:
        return ExpressionMetrics(depth=0, node_count=0)

    metrics = ExpressionMetrics(node_count=1)

    if isinstance(expr, BinaryExpression):
        left = _analyze_expression(expr.left)
        right = _analyze_expression(expr.right)
        metrics.depth = 1 + max(left.depth, right.depth)
        metrics.node_count += left.node_count + right.node_count
        metrics.references.update(left.references)
        metrics.references.update(right.references)

    elif isinstance(expr, UnaryExpression):
        operand = _analyze_expression(expr.operand)
        metrics.depth = 1 + operand.depth
        metrics.node_count += operand.node_count
        metrics.references.update(operand.references)

    elif isinstance(expr, FunctionCall):
        arguments = ExpressionMetrics()
        for argument in expr.arguments:
            arguments.add(_analyze_expression(argument))
        metrics.depth = 1 + arguments.depth
        metrics.node_count += arguments.node_count
        metrics.references.update(arguments.references)

    elif isinstance(expr, Reference):
        metrics.references.add(("%" if expr.variable else "") + expr.name)

    elif isinstance(expr, Literal):
        pass

    return metrics


@dataclass
class FormReport:
    """Analysis report for a form."""

    form_name: str
    total_items: int = 0
    total_questions: int = 0
    total_groups: int = 0
    total_pages: int = 0
    total_variables: int = 0
    total_expressions: int = 0
    expressions_by_kind: Dict[str, int] = field(default_factory=dict)

    # Variable usage
    variable_usage: Dict[str, int] = field(default_factory=dict)
    undefined_references: Set[str] = field(default_factory=set)
    unused_variables: Set[str] = field(default_factory=set)

    # Dependency graph
    has_cycles: bool = False
    cycles: List[List[str]] = field(default_factory=list)

    # Expression complexity
    max_expression_depth: int = 0
    avg_expression_depth: float = 0.0
    total_expression_nodes: int = 0
    unparsed_expressions: List[str] = field(default_factory=list)

    # Coverage
    required_items: int = 0
    items_with_constraints: int = 0

    warnings: List[str] = field(default_factory=list)

    def add_warning(self, msg: str) -> None:
        """Add a warning to the report."""
        if msg not in self.warnings:
            self.warnings.append(msg)


def analyze_form(form: Form, evaluator: Any = None, max_depth: int = 5) -> FormReport:
    """
    Perform static analysis of a Form.

    Args:
        form: Form definition
        evaluator: Evaluator used for reference extraction (optional)
        max_depth: Expression depth above which a complexity warning is raised

    Returns:
        FormReport with metrics and warnings
    """
    report = FormReport(form_name=form.name)
    order = resolve(form, evaluator)

    # =========================================================================
    # 1. INVENTORY
    # =========================================================================

    items = form.flattened()
    report.total_items = len(items)
    report.total_questions = sum(1 for item in items if item.is_question)
    report.total_groups = sum(1 for item in items if item.is_group)
    report.total_pages = len(form.pages())
    report.required_items = sum(1 for item in items if item.required)
    report.items_with_constraints = sum(1 for item in items if item.constraints)

    by_kind: Dict[str, int] = defaultdict(int)
    for key in order.nodes:
        by_kind[key.kind.value] += 1
    report.expressions_by_kind = dict(by_kind)
    report.total_variables = by_kind.get(ExpressionKind.VARIABLE.value, 0)
    report.total_expressions = len(order.nodes)

    # =========================================================================
    # 2. VARIABLE ANALYSIS
    # =========================================================================

    # Constraints are evaluated at validation time and are not graph nodes
    constraint_names: Set[str] = set()
    for item in items:
        for constraint in item.constraints:
            refs = references_of(evaluator, constraint.expression.expression)
            constraint_names |= refs.variables | refs.answers

    usage: Dict[str, int] = defaultdict(int)
    for key, node in order.nodes.items():
        if key.kind != ExpressionKind.VARIABLE:
            continue
        usage[node.name] += len(order.edges.get(key, ()))
        if node.name in constraint_names:
            usage[node.name] += 1
        elif not order.edges.get(key):
            report.unused_variables.add(node.name)
    report.variable_usage = dict(usage)

    for names in order.unresolved.values():
        report.undefined_references.update(names)

    # =========================================================================
    # 3. CYCLES
    # =========================================================================

    report.cycles = [[str(key) for key in component] for component in order.cycles]
    report.has_cycles = bool(report.cycles)

    # =========================================================================
    # 4. EXPRESSION COMPLEXITY
    # =========================================================================

    depths = []
    for node in order.nodes.values():
        if node.text is None:
            continue
        try:
            metrics = _analyze_expression(parse_expression(node.text))
        except EvaluationError:
            report.unparsed_expressions.append(node.text)
            continue
        depths.append(metrics.depth)
        report.total_expression_nodes += metrics.node_count

    if depths:
        report.max_expression_depth = max(depths)
        report.avg_expression_depth = sum(depths) / len(depths)

    # =========================================================================
    # 5. WARNING FLAGS
    # =========================================================================

    if report.undefined_references:
        report.add_warning(
            f"Undefined references: {', '.join(sorted(report.undefined_references))}"
        )

    if report.unused_variables:
        report.add_warning(
            f"Unused variables: {', '.join(sorted(report.unused_variables))}"
        )

    for cycle in report.cycles:
        report.add_warning(f"Cycle detected: {' -> '.join(cycle)}")

    if report.unparsed_expressions:
        report.add_warning(
            f"{len(report.unparsed_expressions)} expression(s) not in the reference syntax"
        )

    if report.max_expression_depth > max_depth:
        report.add_warning(
            f"High expression complexity: max depth {report.max_expression_depth}"
        )

    return report
