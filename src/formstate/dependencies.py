"""
Dependency Resolver.

Builds the expression dependency graph of a form and a deterministic
evaluation order over it.

    - A node is one expression of one definition item:
      (definition path, expression kind, index)
    - An edge runs from every producer of a value to every expression that
      reads it
    - The order is a topological order; ties are broken by tree pre-order,
      then expression-kind priority, then index

Dependencies are discovered statically from each expression's references
(the evaluator's `references()` when it has one, a text scan otherwise).
Nothing is evaluated here.

Cycle policy:
    Every expression that takes part in a cycle gets a CycleError and is
    left out of the order. Expressions outside the cycle are ordered and
    evaluated as usual.
"""

import heapq
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from formstate.errors import CycleError
from formstate.evaluator import references_of
from formstate.expressions import References
from formstate.model import Expression, Form, Item
from formstate.paths import parse_path

logger = logging.getLogger(__name__)


Path = Tuple[str, ...]


class ExpressionKind(Enum):
    """Expression kinds, declared in tie-break priority order."""

    VARIABLE = "variable"
    INITIAL = "initial"
    ENABLE_WHEN = "enable-when"
    CALCULATED = "calculated"
    ANSWER_OPTIONS = "answer-options"
    ANSWER_OPTIONS_TOGGLE = "answer-options-toggle"

    @property
    def priority(self) -> int:
        return list(ExpressionKind).index(self)


# Kinds whose results change the answers of their item
PRODUCERS = frozenset(
    [
        ExpressionKind.INITIAL,
        ExpressionKind.CALCULATED,
        ExpressionKind.ANSWER_OPTIONS,
        ExpressionKind.ANSWER_OPTIONS_TOGGLE,
    ]
)


@dataclass(frozen=True)
class NodeKey:
    """
    Identity of one expression in the graph.

    `path` is the chain of definition link ids from the top of the form;
    root variables have the empty path.
    """

    path: Path
    kind: ExpressionKind
    index: int = 0

    def __str__(self) -> str:
        where = "/".join(self.path) or "<form>"
        suffix = f"[{self.index}]" if self.kind in (ExpressionKind.VARIABLE, ExpressionKind.ANSWER_OPTIONS_TOGGLE) else ""
        return f"{where}:{self.kind.value}{suffix}"


@dataclass(frozen=True)
class ExpressionNode:
    """
    One expression of the graph.

    Properties:
        key: NodeKey
        item: Owning item (None for root variables)
        expression: The expression; None for structured enableWhen
            conditions, which are evaluated by the engine directly
        references: Static references of the expression
    """

    key: NodeKey
    item: Optional[Item]
    expression: Optional[Expression]
    references: References = field(default_factory=References)

    @property
    def name(self) -> Optional[str]:
        """Variable name of VARIABLE nodes."""
        return self.expression.name if self.expression is not None else None

    @property
    def text(self) -> Optional[str]:
        return self.expression.expression if self.expression is not None else None


def definition_path(key: str) -> Path:
    """Definition path of an instance key: "members[1]/name" -> ("members", "name")."""
    return tuple(segment.link_id for segment in parse_path(key))


def _common_prefix(a: Path, b: Path) -> int:
    n = 0
    for x, y in zip(a, b):
        if x != y:
            break
        n += 1
    return n


def _walk(items: List[Item], parent: Path = ()) -> Iterator[Tuple[Path, Item]]:
    for item in items:
        path = parent + (item.link_id,)
        yield path, item
        yield from _walk(item.items, path)


@dataclass
class EvaluationOrder:
    """
    Result of `resolve`.

    Properties:
        nodes: Every expression node by key
        order: Acyclic nodes in evaluation order
        edges: producer key -> reader keys
        dependencies: reader key -> producer keys
        answer_readers: definition path -> keys of nodes reading its answers
        errors: CycleError per cyclic node
        cycles: Strongly connected components that form cycles
        unresolved: Names that resolve to neither an item nor a variable
    """

    nodes: Dict[NodeKey, ExpressionNode] = field(default_factory=dict)
    order: List[ExpressionNode] = field(default_factory=list)
    edges: Dict[NodeKey, Set[NodeKey]] = field(default_factory=lambda: defaultdict(set))
    dependencies: Dict[NodeKey, Set[NodeKey]] = field(default_factory=lambda: defaultdict(set))
    answer_readers: Dict[Path, Set[NodeKey]] = field(default_factory=lambda: defaultdict(set))
    errors: Dict[NodeKey, CycleError] = field(default_factory=dict)
    cycles: List[List[NodeKey]] = field(default_factory=list)
    unresolved: Dict[NodeKey, Set[str]] = field(default_factory=dict)
    paths: Dict[str, List[Path]] = field(default_factory=lambda: defaultdict(list))
    preorder: Dict[Path, int] = field(default_factory=dict)

    def __iter__(self) -> Iterator[ExpressionNode]:
        return iter(self.order)

    def __len__(self) -> int:
        return len(self.order)

    def paths_for(self, link_id: str) -> List[Path]:
        """Definition paths of every item with this link id, in document order."""
        return list(self.paths.get(link_id, []))

    def resolve_answer(self, reader: Path, link_id: str) -> Optional[Path]:
        """
        Definition path a reader at `reader` means by `link_id`.

        The candidate sharing the longest prefix with the reader wins; ties
        go to the first in document order.
        """
        candidates = self.paths.get(link_id)
        if not candidates:
            return None
        return max(candidates, key=lambda p: (_common_prefix(p, reader), -self.preorder[p]))

    def _closure(self, start: Iterable[NodeKey]) -> Set[NodeKey]:
        seen: Set[NodeKey] = set()
        stack = list(start)
        while stack:
            key = stack.pop()
            if key in seen:
                continue
            seen.add(key)
            stack.extend(self.edges.get(key, ()))
        return seen

    def _ordered(self, keys: Set[NodeKey]) -> List[ExpressionNode]:
        return [node for node in self.order if node.key in keys]

    def readers_of(self, path: Path) -> Set[NodeKey]:
        """Nodes reading the answers at `path` or at any of its ancestors."""
        readers: Set[NodeKey] = set()
        for n in range(1, len(path) + 1):
            readers |= self.answer_readers.get(path[:n], set())
        return readers

    def affected_by(self, paths: Iterable[Path]) -> List[ExpressionNode]:
        """Ordered transitive readers of answer changes at `paths`."""
        start: Set[NodeKey] = set()
        for path in paths:
            start |= self.readers_of(path)
        return self._ordered(self._closure(start))

    def affected_within(self, paths: Iterable[Path]) -> List[ExpressionNode]:
        """
        Ordered nodes for a structural change at `paths`.

        Expressions under the changed subtrees and readers of those subtrees,
        plus their transitive dependents.
        """
        paths = list(paths)
        start: Set[NodeKey] = set()
        for path in paths:
            start |= self.readers_of(path)
            for target, readers in self.answer_readers.items():
                if target[: len(path)] == path:
                    start |= readers
            start |= {key for key in self.nodes if key.path[: len(path)] == path}
        return self._ordered(self._closure(start))


def _expression_nodes(form: Form, evaluator: Any) -> Iterator[ExpressionNode]:
    def node(path: Path, item: Optional[Item], kind: ExpressionKind, expression: Expression, index: int = 0):
        return ExpressionNode(
            NodeKey(path, kind, index), item, expression, references_of(evaluator, expression.expression)
        )

    for i, variable in enumerate(form.variables):
        yield node((), None, ExpressionKind.VARIABLE, variable, i)

    for path, item in _walk(form.items):
        for i, variable in enumerate(item.variables):
            yield node(path, item, ExpressionKind.VARIABLE, variable, i)

        if item.initial_expression is not None:
            yield node(path, item, ExpressionKind.INITIAL, item.initial_expression)

        if item.enable_when_expression is not None:
            yield node(path, item, ExpressionKind.ENABLE_WHEN, item.enable_when_expression)
        elif item.enable_when:
            refs = References(answers=frozenset(c.question for c in item.enable_when))
            yield ExpressionNode(NodeKey(path, ExpressionKind.ENABLE_WHEN), item, None, refs)

        if item.calculated_expression is not None:
            yield node(path, item, ExpressionKind.CALCULATED, item.calculated_expression)

        options = item.answer_expression or item.candidate_expression
        if options is not None:
            yield node(path, item, ExpressionKind.ANSWER_OPTIONS, options)

        for i, toggle in enumerate(item.answer_options_toggle):
            yield node(path, item, ExpressionKind.ANSWER_OPTIONS_TOGGLE, toggle.expression, i)


def _visible_variable(
    variables: Dict[Path, Dict[str, NodeKey]],
    reader: NodeKey,
    name: str,
) -> Optional[NodeKey]:
    # Nearest declaration wins: own item, then ancestors, then the form
    for n in range(len(reader.path), -1, -1):
        key = variables.get(reader.path[:n], {}).get(name)
        if key is not None and key != reader:
            return key
    return None


def _find_cycles(keys: List[NodeKey], edges: Dict[NodeKey, Set[NodeKey]]) -> List[List[NodeKey]]:
    """Tarjan's strongly connected components, keeping only cycles."""
    index: Dict[NodeKey, int] = {}
    low: Dict[NodeKey, int] = {}
    on_stack: Set[NodeKey] = set()
    stack: List[NodeKey] = []
    cycles: List[List[NodeKey]] = []
    position = {key: i for i, key in enumerate(keys)}

    def visit(v: NodeKey) -> Iterator[NodeKey]:
        index[v] = low[v] = len(index)
        stack.append(v)
        on_stack.add(v)
        return iter(sorted(edges.get(v, ()), key=position.get))

    # Depth-first search with an explicit call stack of (node, successors)
    for root in keys:
        if root in index:
            continue
        calls = [(root, visit(root))]
        while calls:
            v, successors = calls[-1]
            descended = False
            for w in successors:
                if w not in index:
                    calls.append((w, visit(w)))
                    descended = True
                    break
                if w in on_stack:
                    low[v] = min(low[v], index[w])
            if descended:
                continue

            calls.pop()
            if calls:
                parent = calls[-1][0]
                low[parent] = min(low[parent], low[v])

            if low[v] == index[v]:
                component = []
                while True:
                    w = stack.pop()
                    on_stack.discard(w)
                    component.append(w)
                    if w == v:
                        break
                if len(component) > 1 or v in edges.get(v, ()):
                    cycles.append(sorted(component, key=position.get))
    return cycles


def resolve(form: Form, evaluator: Any = None) -> EvaluationOrder:
    """
    Build the dependency graph and evaluation order of a form.

    Args:
        form: The form definition
        evaluator: Evaluator used for static reference extraction (optional)

    Returns:
        EvaluationOrder
    """
    order = EvaluationOrder()

    order.preorder[()] = -1
    for i, (path, item) in enumerate(_walk(form.items)):
        order.preorder[path] = i
        order.paths[item.link_id].append(path)

    variables: Dict[Path, Dict[str, NodeKey]] = defaultdict(dict)
    producers: Dict[Path, List[NodeKey]] = defaultdict(list)
    for expression_node in _expression_nodes(form, evaluator):
        key = expression_node.key
        order.nodes[key] = expression_node
        if key.kind == ExpressionKind.VARIABLE:
            variables[key.path].setdefault(expression_node.name, key)
        elif key.kind in PRODUCERS:
            producers[key.path].append(key)

    def sort_key(key: NodeKey) -> Tuple[int, int, int]:
        return order.preorder[key.path], key.kind.priority, key.index

    keys = sorted(order.nodes, key=sort_key)

    def add_edge(source: NodeKey, target: NodeKey) -> None:
        order.edges[source].add(target)
        order.dependencies[target].add(source)

    for key in keys:
        refs = order.nodes[key].references
        missing: Set[str] = set()

        for name in refs.variables:
            source = _visible_variable(variables, key, name)
            if source is not None:
                add_edge(source, key)
            else:
                missing.add(name)

        for link_id in refs.answers:
            target = order.resolve_answer(key.path, link_id)
            if target is None:
                # Bare names that match no item may name a variable
                source = _visible_variable(variables, key, link_id)
                if source is not None:
                    add_edge(source, key)
                else:
                    missing.add(link_id)
                continue

            order.answer_readers[target].add(key)
            for path, sources in producers.items():
                if path[: len(target)] == target:
                    for source in sources:
                        add_edge(source, key)

        if missing:
            order.unresolved[key] = missing

    # Dynamic options are filtered by the toggles of the same item
    for key in keys:
        if key.kind == ExpressionKind.ANSWER_OPTIONS_TOGGLE:
            options = NodeKey(key.path, ExpressionKind.ANSWER_OPTIONS)
            if options in order.nodes:
                add_edge(options, key)

    order.cycles = _find_cycles(keys, order.edges)
    cyclic: Set[NodeKey] = set()
    for component in order.cycles:
        members = " -> ".join(str(k) for k in component)
        for key in component:
            node = order.nodes[key]
            order.errors[key] = CycleError(
                f"Dependency cycle: {members}",
                key="/".join(key.path),
                kind=key.kind.value,
                expression=node.text,
            )
        cyclic.update(component)
        logger.warning("Dependency cycle in form %s: %s", form.name, members)

    # Kahn's algorithm; cyclic nodes and their edges are ignored
    in_degree = {key: 0 for key in keys if key not in cyclic}
    for source, targets in order.edges.items():
        if source in cyclic:
            continue
        for target in targets:
            if target in in_degree:
                in_degree[target] += 1

    heap = [(sort_key(key), key) for key, degree in in_degree.items() if degree == 0]
    heapq.heapify(heap)
    while heap:
        _, key = heapq.heappop(heap)
        order.order.append(order.nodes[key])
        for target in order.edges.get(key, ()):
            if target not in in_degree:
                continue
            in_degree[target] -= 1
            if in_degree[target] == 0:
                heapq.heappush(heap, (sort_key(target), target))

    logger.debug(
        "Resolved %d expression(s) of form %s, %d in cycles", len(order.nodes), form.name, len(cyclic)
    )
    return order
