"""
Evaluation Engine.

Runs the expressions of a form over a response tree in dependency order and
produces an immutable EvaluationSnapshot.

    engine = EvaluationEngine(form, evaluator, config)
    snapshot = engine.evaluate(items)                                 # full pass
    snapshot = engine.evaluate(items, snapshot, changed={"height"})   # incremental

IMPORTANT:
    `evaluate` writes answers (initial, calculated, pruned options) into the
    response tree it is given and nothing else. All results of earlier
    passes travel inside the previous snapshot, so a pass over a private
    copy of the tree can run on a worker thread.

Failure policy:
    Every evaluator failure becomes an ExpressionError recorded against the
    instance key of the response node. The pass always completes:
        - failing enable conditions leave the item enabled
        - failing calculated expressions keep the last computed value
        - failing option toggles leave their options available
        - failing answer expressions keep the last option list; options that
          were never computed are unknown and answers are not pruned
"""

import inspect
import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from formstate.config import EngineConfig
from formstate.dependencies import (
    EvaluationOrder,
    ExpressionKind,
    ExpressionNode,
    NodeKey,
    Path,
    definition_path,
    resolve,
)
from formstate.errors import EvaluationError, ExpressionError
from formstate.evaluator import EvaluationContext, Evaluator, ReferenceEvaluator
from formstate.model import EnableBehavior, EnableWhen, EnableWhenOperator, Form, Item, ItemType, ResponseNode
from formstate.paths import child_key
from formstate.sync import prune_answers, set_answers

logger = logging.getLogger(__name__)


_EMPTY: Mapping = MappingProxyType({})


@dataclass(frozen=True)
class Outcome:
    """Result of one expression on one response node."""

    value: Any = None
    error: Optional[ExpressionError] = None


@dataclass(frozen=True)
class EvaluationSnapshot:
    """
    Read-only result of one evaluation pass.

    All mappings are keyed by instance key ("members[0]/age"); form-level
    variables are stored under "".

    Properties:
        generation: Pass counter; a higher generation supersedes a lower one
        enabled: Effective enablement (own condition AND every ancestor's)
        variables: Variable values declared on each node
        options: Currently available answer options of option items
        calculated: Value of calculated expressions applied as the answer
            (absent while the user overrides the answer)
        errors: Expression errors (evaluator failures and cycles)
        validation: Validation results, filled in by the session
        mode: Display mode, filled in by the session
        page: Current page index, None when not paginated
    """

    generation: int = 0
    enabled: Mapping[str, bool] = field(default_factory=lambda: _EMPTY)
    variables: Mapping[str, Mapping[str, Any]] = field(default_factory=lambda: _EMPTY)
    options: Mapping[str, Tuple[Any, ...]] = field(default_factory=lambda: _EMPTY)
    calculated: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)
    errors: Mapping[str, Tuple[ExpressionError, ...]] = field(default_factory=lambda: _EMPTY)
    validation: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)
    mode: Any = None
    page: Optional[int] = None
    results: Mapping[Tuple[str, NodeKey], Outcome] = field(default_factory=lambda: _EMPTY, repr=False, compare=False)

    def is_enabled(self, key: str) -> bool:
        return self.enabled.get(key, True)

    def errors_for(self, key: str) -> Tuple[ExpressionError, ...]:
        return self.errors.get(key, ())

    @property
    def all_errors(self) -> List[ExpressionError]:
        return [error for errors in self.errors.values() for error in errors]

    def evolve(self, **changes: Any) -> "EvaluationSnapshot":
        return replace(self, **changes)


# ============================================================================
# INSTANCE INDEX
# ============================================================================


@dataclass
class Instance:
    """
    One response node located in the tree.

    `indices[j]` is the answer index taken below the ancestor at depth j
    (None when the child sits directly under a non-repeating group).
    """

    key: str
    path: Path
    item: Item
    node: ResponseNode
    parent: Optional["Instance"] = None
    indices: Tuple[Optional[int], ...] = ()


def _in_scope(reader: Tuple[Path, Tuple[Optional[int], ...]], target: Instance) -> bool:
    path, indices = reader
    common = 0
    for a, b in zip(path, target.path):
        if a != b:
            break
        common += 1
    for j in range(min(common, len(indices), len(target.indices))):
        if indices[j] != target.indices[j]:
            return False
    return True


class InstanceIndex:
    """Pre-order index of every response node of a tree."""

    def __init__(self, items: Sequence[Item], nodes: Sequence[ResponseNode]):
        self.instances: List[Instance] = []
        self.by_key: Dict[str, Instance] = {}
        self.by_path: Dict[Path, List[Instance]] = {}
        self._add(items, nodes, None, "", None)

    def _add(self, items, nodes, parent: Optional[Instance], parent_key: str, answer_index: Optional[int]):
        by_link_id = {node.link_id: node for node in nodes}
        for item in items:
            node = by_link_id.get(item.link_id)
            if node is None:
                continue
            key = child_key(parent_key, item.link_id, answer_index)
            if parent is None:
                path, indices = (item.link_id,), ()
            else:
                path, indices = parent.path + (item.link_id,), parent.indices + (answer_index,)
            instance = Instance(key, path, item, node, parent, indices)
            self.instances.append(instance)
            self.by_key[key] = instance
            self.by_path.setdefault(path, []).append(instance)

            if item.nests_under_answers:
                for i, answer in enumerate(node.answers):
                    self._add(item.items, answer.items, instance, key, i)
            else:
                self._add(item.items, node.items, instance, key, None)

    def in_scope(self, reader: Optional[Instance], target: Path) -> List[Instance]:
        """Instances of `target` that belong to the same instances as `reader`."""
        scope = (reader.path, reader.indices) if reader is not None else ((), ())
        return [instance for instance in self.by_path.get(target, []) if _in_scope(scope, instance)]


def _group_value(nodes: Sequence[ResponseNode]) -> Dict[str, Any]:
    value = {}
    for node in nodes:
        values = node.values()
        value[node.link_id] = values[0] if len(values) == 1 else (values or None)
    return value


def _answers_of(instance: Instance) -> List[Any]:
    item, node = instance.item, instance.node
    if item.is_repeated_group:
        return [_group_value(answer.items) for answer in node.answers]
    if item.is_group:
        return [_group_value(node.items)]
    return node.values()


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [v for v in value if v is not None]
    return [value]


def _as_bool(value: Any) -> bool:
    if isinstance(value, (list, tuple)):
        return bool(value) and all(_as_bool(v) for v in value)
    return bool(value)


def _compare(operator: EnableWhenOperator, actual: Any, expected: Any) -> bool:
    if operator == EnableWhenOperator.EQUALS:
        return actual == expected
    if operator == EnableWhenOperator.NOT_EQUALS:
        return actual != expected
    if operator == EnableWhenOperator.GREATER_THAN:
        return actual > expected
    if operator == EnableWhenOperator.LESS_THAN:
        return actual < expected
    if operator == EnableWhenOperator.GREATER_EQUAL:
        return actual >= expected
    if operator == EnableWhenOperator.LESS_EQUAL:
        return actual <= expected
    raise EvaluationError(f"Unsupported enableWhen operator: {operator}")


def check_condition(condition: EnableWhen, answers: List[Any]) -> bool:
    """
    Evaluate one structured enableWhen condition against the answers of its
    question.

    `exists` compares answer presence with the expected boolean; `!=` holds
    when no answer equals the expected value; every other operator holds
    when at least one answer satisfies it.
    """
    if condition.operator == EnableWhenOperator.EXISTS:
        return bool(answers) == bool(condition.answer)
    if condition.operator == EnableWhenOperator.NOT_EQUALS:
        return all(answer != condition.answer for answer in answers)
    try:
        return any(_compare(condition.operator, answer, condition.answer) for answer in answers)
    except TypeError as e:
        raise EvaluationError(
            f"Cannot compare answers of '{condition.question}' with {condition.answer!r}"
        ) from e


# ============================================================================
# ENGINE
# ============================================================================


class EvaluationEngine:
    """
    Evaluates a form's expressions over response trees.

    The engine holds the form, the dependency order and the evaluator. It
    holds no per-session state: everything a pass needs besides the tree
    comes from the previous snapshot.

    Args:
        form: The form definition
        evaluator: Expression evaluator (ReferenceEvaluator by default)
        config: Engine configuration (launch context)
        await_result: Resolves awaitables returned by an async evaluator;
            without it awaitable results are evaluation failures
    """

    def __init__(
        self,
        form: Form,
        evaluator: Optional[Evaluator] = None,
        config: Optional[EngineConfig] = None,
        await_result: Optional[Callable[[Any], Any]] = None,
    ):
        self.form = form
        self.evaluator = evaluator if evaluator is not None else ReferenceEvaluator()
        self.config = config if config is not None else EngineConfig()
        self.await_result = await_result
        self.order: EvaluationOrder = resolve(form, self.evaluator)

    # ------------------------------------------------------------------
    # Evaluator boundary
    # ------------------------------------------------------------------

    def call(self, expression: str, context: EvaluationContext) -> Any:
        """
        Evaluate one expression.

        Raises:
            EvaluationError: On any evaluator failure
        """
        try:
            value = self.evaluator.evaluate(expression, context)
        except EvaluationError:
            raise
        except Exception as e:
            raise EvaluationError(f"{type(e).__name__}: {e}") from e

        if inspect.isawaitable(value):
            if self.await_result is None:
                if inspect.iscoroutine(value):
                    value.close()
                raise EvaluationError("Evaluator returned an awaitable outside an async session")
            try:
                value = self.await_result(value)
            except EvaluationError:
                raise
            except Exception as e:
                raise EvaluationError(f"{type(e).__name__}: {e}") from e
        return value

    # ------------------------------------------------------------------
    # Contexts
    # ------------------------------------------------------------------

    def _visible_variables(
        self,
        instance: Optional[Instance],
        variables: Mapping[str, Mapping[str, Any]],
    ) -> Dict[str, Any]:
        visible: Dict[str, Any] = dict(self.config.launch_context)
        visible.update(variables.get("", {}))
        chain = []
        while instance is not None:
            chain.append(instance.key)
            instance = instance.parent
        for key in reversed(chain):
            visible.update(variables.get(key, {}))
        return visible

    def _context(
        self,
        index: InstanceIndex,
        instance: Optional[Instance],
        variables: Mapping[str, Mapping[str, Any]],
    ) -> EvaluationContext:
        reader_path = instance.path if instance is not None else ()

        def lookup(link_id: str) -> Optional[List[Any]]:
            target = self.order.resolve_answer(reader_path, link_id)
            if target is None:
                return None
            values: List[Any] = []
            for found in index.in_scope(instance, target):
                values.extend(_answers_of(found))
            return values

        return EvaluationContext(
            key=instance.key if instance is not None else "",
            link_id=instance.item.link_id if instance is not None else None,
            variables=MappingProxyType(self._visible_variables(instance, variables)),
            answer_lookup=lookup,
        )

    def contexts(self, items: Sequence[ResponseNode], snapshot: EvaluationSnapshot) -> Callable[[str], EvaluationContext]:
        """Context factory (instance key -> EvaluationContext) over a tree."""
        index = InstanceIndex(self.form.items, items)

        def context_for(key: str) -> EvaluationContext:
            return self._context(index, index.by_key.get(key), snapshot.variables)

        return context_for

    # ------------------------------------------------------------------
    # Pass
    # ------------------------------------------------------------------

    def _to_run(
        self,
        previous: Optional[EvaluationSnapshot],
        changed: Optional[Iterable[str]],
        structural: Iterable[str],
    ) -> Optional[Set[NodeKey]]:
        if previous is None or changed is None:
            return None
        paths = {definition_path(key) for key in changed}
        structural_paths = {definition_path(key) for key in structural}
        nodes = self.order.affected_by(paths) + self.order.affected_within(structural_paths)
        return {node.key for node in nodes}

    def evaluate(
        self,
        items: List[ResponseNode],
        previous: Optional[EvaluationSnapshot] = None,
        changed: Optional[Iterable[str]] = None,
        structural: Iterable[str] = (),
        generation: int = 0,
    ) -> EvaluationSnapshot:
        """
        Run one evaluation pass.

        Args:
            items: Top-level response nodes; answers are written in place
            previous: Snapshot of the previous pass
            changed: Instance keys whose answers changed; None for a full pass
            structural: Instance keys whose subtree changed shape
            generation: Generation stamped on the new snapshot

        Returns:
            EvaluationSnapshot
        """
        index = InstanceIndex(self.form.items, items)
        run = self._to_run(previous, changed, structural)
        old = previous.results if previous is not None else _EMPTY

        # Carry results of expressions outside the affected set, for
        # instances that still exist
        results: Dict[Tuple[str, NodeKey], Outcome] = {}
        if run is not None:
            for (key, node_key), outcome in old.items():
                if node_key not in run and (key == "" or key in index.by_key):
                    results[(key, node_key)] = outcome

        variables: Dict[str, Dict[str, Any]] = {}
        for (key, node_key), outcome in results.items():
            if node_key.kind == ExpressionKind.VARIABLE:
                name = self.order.nodes[node_key].name
                variables.setdefault(key, {})[name] = outcome.value

        # Cyclic expressions yield nothing
        for node_key, error in self.order.errors.items():
            for instance in self._instances(index, node_key.path):
                key = instance.key if instance is not None else ""
                results[(key, node_key)] = Outcome(error=_at(error, key))
                if node_key.kind == ExpressionKind.VARIABLE:
                    name = self.order.nodes[node_key].name
                    variables.setdefault(key, {})[name] = None

        prune_after = self._last_option_nodes(run)
        evaluated = 0
        for node in self.order:
            for instance in self._instances(index, node.key.path):
                key = instance.key if instance is not None else ""
                if run is not None and node.key not in run and (key, node.key) in results:
                    continue
                outcome = self._run(node, index, instance, variables, old.get((key, node.key)))
                results[(key, node.key)] = outcome
                evaluated += 1
                if outcome.error is not None:
                    logger.warning("%s", outcome.error)
                if node.key.kind == ExpressionKind.VARIABLE:
                    variables.setdefault(key, {})[node.name] = outcome.value
                if prune_after.get(node.key.path) == node.key and instance is not None:
                    self._prune(instance, results)

        snapshot = self._snapshot(index, results, variables, generation)
        logger.debug(
            "Pass %d over form %s: %d evaluation(s), %d error(s)",
            generation,
            self.form.name,
            evaluated,
            len(snapshot.all_errors),
        )
        return snapshot

    def _instances(self, index: InstanceIndex, path: Path) -> List[Optional[Instance]]:
        if not path:
            return [None]
        return list(index.by_path.get(path, []))

    def _last_option_nodes(self, run: Optional[Set[NodeKey]]) -> Dict[Path, NodeKey]:
        last: Dict[Path, NodeKey] = {}
        for node in self.order:
            if run is not None and node.key not in run:
                continue
            if node.key.kind in (ExpressionKind.ANSWER_OPTIONS, ExpressionKind.ANSWER_OPTIONS_TOGGLE):
                last[node.key.path] = node.key
        return last

    def _run(
        self,
        node: ExpressionNode,
        index: InstanceIndex,
        instance: Optional[Instance],
        variables: Mapping[str, Mapping[str, Any]],
        previous: Optional[Outcome],
    ) -> Outcome:
        kind = node.key.kind
        key = instance.key if instance is not None else ""
        context = self._context(index, instance, variables)

        if kind == ExpressionKind.INITIAL:
            return self._run_initial(node, instance, context, previous)

        if kind == ExpressionKind.ENABLE_WHEN and node.expression is None:
            try:
                results = [check_condition(c, context.answers(c.question)) for c in instance.item.enable_when]
            except EvaluationError as e:
                return Outcome(value=True, error=self._error(e, node, key))
            if instance.item.enable_behavior == EnableBehavior.ANY:
                return Outcome(value=any(results))
            return Outcome(value=all(results))

        try:
            value = self.call(node.text, context)
        except EvaluationError as e:
            error = self._error(e, node, key)
            if kind == ExpressionKind.ENABLE_WHEN:
                return Outcome(value=True, error=error)
            if kind in (ExpressionKind.CALCULATED, ExpressionKind.ANSWER_OPTIONS):
                return Outcome(value=previous.value if previous is not None else None, error=error)
            return Outcome(error=error)

        if kind == ExpressionKind.ENABLE_WHEN or kind == ExpressionKind.ANSWER_OPTIONS_TOGGLE:
            return Outcome(value=_as_bool(value))

        if kind == ExpressionKind.ANSWER_OPTIONS:
            return Outcome(value=tuple(_as_list(value)))

        if kind == ExpressionKind.CALCULATED:
            self._write_calculated(instance, value)

        return Outcome(value=value)

    def _run_initial(
        self,
        node: ExpressionNode,
        instance: Instance,
        context: EvaluationContext,
        previous: Optional[Outcome],
    ) -> Outcome:
        response = instance.node
        # Static initial values take precedence over the initial expression
        if response.seeded or response.answers or instance.item.initial:
            response.seeded = True
            return previous if previous is not None else Outcome()

        try:
            value = self.call(node.text, context)
        except EvaluationError as e:
            return Outcome(error=self._error(e, node, instance.key))

        values = _as_list(value)
        if values:
            if not instance.item.repeats:
                values = values[:1]
            set_answers(instance.item, response, values, user_edited=False)
        response.seeded = True
        return Outcome(value=value)

    def _write_calculated(self, instance: Instance, value: Any) -> None:
        response = instance.node
        if any(answer.user_edited for answer in response.answers):
            return
        values = _as_list(value)
        if not instance.item.repeats:
            values = values[:1]
        if response.values() != values:
            set_answers(instance.item, response, values, user_edited=False)

    def _error(self, error: EvaluationError, node: ExpressionNode, key: str) -> ExpressionError:
        what = f"{node.key.kind.value} expression"
        if node.text:
            what += f" '{node.text}'"
        return ExpressionError(
            f"{what} failed on '{key or '<form>'}': {error}",
            key=key,
            kind=node.key.kind.value,
            expression=node.text,
        )

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    def _options(
        self,
        instance: Instance,
        results: Mapping[Tuple[str, NodeKey], Outcome],
    ) -> Tuple[Optional[List[Any]], List[Any]]:
        """
        Return (available, toggled off) option values of an instance.

        `available` is None while the options are unknown: the answer
        expression has never produced a value (it failed on its first run,
        or sits on a cycle).
        """
        item, key = instance.item, instance.key
        options_key = NodeKey(instance.path, ExpressionKind.ANSWER_OPTIONS)
        if options_key in self.order.nodes:
            outcome = results.get((key, options_key))
            if outcome is None or outcome.value is None:
                return None, []
            base = list(outcome.value)
        else:
            base = [option.value for option in item.answer_options]

        if not item.answer_options_toggle:
            return base, []

        switched_on: List[Any] = []
        toggled: List[Any] = []
        for i, toggle in enumerate(item.answer_options_toggle):
            toggled.extend(toggle.options)
            outcome = results.get((key, NodeKey(instance.path, ExpressionKind.ANSWER_OPTIONS_TOGGLE, i)))
            if outcome is None or outcome.error is not None or outcome.value:
                switched_on.extend(toggle.options)

        available = [v for v in base if v not in toggled or v in switched_on]
        off = [v for v in base if v not in available]
        return available, off

    def _has_options(self, instance: Instance) -> bool:
        item = instance.item
        return bool(item.answer_options) or NodeKey(instance.path, ExpressionKind.ANSWER_OPTIONS) in self.order.nodes

    def _prune(self, instance: Instance, results: Mapping[Tuple[str, NodeKey], Outcome]) -> None:
        available, off = self._options(instance, results)
        if available is None:
            logger.debug("Options of %s are unknown, answers kept", instance.key)
            return
        if instance.item.type == ItemType.OPEN_CHOICE:
            removed = prune_answers(instance.node, lambda v: v not in off)
        else:
            removed = prune_answers(instance.node, lambda v: v in available)
        if removed:
            logger.debug("Removed unavailable answer(s) %r of %s", removed, instance.key)

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def _snapshot(
        self,
        index: InstanceIndex,
        results: Dict[Tuple[str, NodeKey], Outcome],
        variables: Dict[str, Dict[str, Any]],
        generation: int,
    ) -> EvaluationSnapshot:
        enabled: Dict[str, bool] = {}
        options: Dict[str, Tuple[Any, ...]] = {}
        calculated: Dict[str, Any] = {}
        errors: Dict[str, List[ExpressionError]] = {}

        for instance in index.instances:
            own = results.get((instance.key, NodeKey(instance.path, ExpressionKind.ENABLE_WHEN)))
            local = own.value if own is not None and own.value is not None else True
            parent = enabled[instance.parent.key] if instance.parent is not None else True
            enabled[instance.key] = bool(local) and parent

            if self._has_options(instance):
                available = self._options(instance, results)[0]
                if available is not None:
                    options[instance.key] = tuple(available)

        for (key, node_key), outcome in results.items():
            if node_key.kind == ExpressionKind.CALCULATED and outcome.value is not None:
                instance = index.by_key.get(key)
                # Left out while a user override is the answer
                if instance is None or not any(a.user_edited for a in instance.node.answers):
                    calculated[key] = outcome.value
            if outcome.error is not None:
                errors.setdefault(key, []).append(outcome.error)

        declared = {
            key: MappingProxyType(dict(values))
            for key, values in variables.items()
            if key == "" or key in index.by_key
        }

        return EvaluationSnapshot(
            generation=generation,
            enabled=MappingProxyType(enabled),
            variables=MappingProxyType(declared),
            options=MappingProxyType(options),
            calculated=MappingProxyType(calculated),
            errors=MappingProxyType({key: tuple(e) for key, e in errors.items()}),
            results=MappingProxyType(results),
        )


def _at(error: ExpressionError, key: str) -> ExpressionError:
    """Copy of a definition-level error attached to one instance."""
    return type(error)(str(error), key=key, kind=error.kind, expression=error.expression)
