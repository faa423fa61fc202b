"""
Validator.

Produces one ValidationResult per response node instance:

    Valid(warnings)             nothing blocks submission
    Invalid(messages, warnings) at least one rule failed
    NotValidated()              display items

Rules, applied to enabled nodes only (disabled nodes are vacuously Valid):
    - required: questions need a value, non-repeating groups an answered
      descendant, repeating groups at least one instance
    - non-repeating questions hold at most one answer
    - min_occurs / max_occurs on repeating items
    - answer type (config.type_checks first, then BUILTIN_TYPE_CHECKS)
    - choice answers must be available options
    - min_value / max_value / max_length
    - constraint expressions: ERROR severity -> Invalid, WARNING -> warning

Validation never raises and never mutates the tree, so running it twice on
unchanged state gives identical results.
"""

import datetime
import decimal
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from formstate.config import EngineConfig, TypeCheck
from formstate.engine import EvaluationEngine, EvaluationSnapshot, Instance, InstanceIndex
from formstate.errors import EvaluationError
from formstate.evaluator import EvaluationContext
from formstate.model import Item, ItemType, Quantity, ResponseNode, Severity
from formstate.registry import StrategyRegistry

logger = logging.getLogger(__name__)


REQUIRED_MESSAGE = "Missing answer for required field."


@dataclass(frozen=True)
class Valid:
    warnings: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Invalid:
    messages: Tuple[str, ...]
    warnings: Tuple[str, ...] = ()


@dataclass(frozen=True)
class NotValidated:
    pass


ValidationResult = Union[Valid, Invalid, NotValidated]


# ============================================================================
# BUILT-IN TYPE CHECKS
# ============================================================================


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, decimal.Decimal)) and not isinstance(value, bool)


def _check_boolean(item: Item, value: Any) -> Optional[str]:
    return None if isinstance(value, bool) else f"'{item.link_id}' expects a boolean, got {value!r}"


def _check_integer(item: Item, value: Any) -> Optional[str]:
    if isinstance(value, int) and not isinstance(value, bool):
        return None
    return f"'{item.link_id}' expects an integer, got {value!r}"


def _check_decimal(item: Item, value: Any) -> Optional[str]:
    return None if _is_number(value) else f"'{item.link_id}' expects a number, got {value!r}"


def _check_string(item: Item, value: Any) -> Optional[str]:
    return None if isinstance(value, str) else f"'{item.link_id}' expects text, got {value!r}"


def _check_date(item: Item, value: Any) -> Optional[str]:
    if isinstance(value, datetime.date) and not isinstance(value, datetime.datetime):
        return None
    return f"'{item.link_id}' expects a date, got {value!r}"


def _check_datetime(item: Item, value: Any) -> Optional[str]:
    if isinstance(value, datetime.datetime):
        return None
    return f"'{item.link_id}' expects a date and time, got {value!r}"


def _check_time(item: Item, value: Any) -> Optional[str]:
    return None if isinstance(value, datetime.time) else f"'{item.link_id}' expects a time, got {value!r}"


def _check_quantity(item: Item, value: Any) -> Optional[str]:
    if isinstance(value, Quantity) and (value.value is None or _is_number(value.value)):
        return None
    return f"'{item.link_id}' expects a quantity, got {value!r}"


def _of_type(*types: ItemType) -> Callable[[Item], bool]:
    return lambda item: item.type in types


BUILTIN_TYPE_CHECKS: StrategyRegistry[TypeCheck] = StrategyRegistry(
    [
        (_of_type(ItemType.BOOLEAN), _check_boolean),
        (_of_type(ItemType.INTEGER), _check_integer),
        (_of_type(ItemType.DECIMAL), _check_decimal),
        (_of_type(ItemType.STRING, ItemType.TEXT, ItemType.URL), _check_string),
        (_of_type(ItemType.DATE), _check_date),
        (_of_type(ItemType.DATETIME), _check_datetime),
        (_of_type(ItemType.TIME), _check_time),
        (_of_type(ItemType.QUANTITY), _check_quantity),
    ]
)


def _has_answered_descendant(nodes: Sequence[ResponseNode]) -> bool:
    for node in nodes:
        if node.has_answer or _has_answered_descendant(node.items):
            return True
        if any(_has_answered_descendant(answer.items) for answer in node.answers):
            return True
    return False


def _compare_bound(value: Any, bound: Any) -> int:
    if isinstance(value, Quantity):
        value = value.value
    if value < bound:
        return -1
    if value > bound:
        return 1
    return 0


def _truthy(value: Any) -> bool:
    if isinstance(value, (list, tuple)):
        return bool(value) and all(_truthy(v) for v in value)
    return bool(value)


# ============================================================================
# VALIDATOR
# ============================================================================


class Validator:
    """
    Validates response trees of one form.

    Constraint expressions go through the engine's evaluator boundary so
    they see the same variables and answers as every other expression.
    """

    def __init__(self, engine: EvaluationEngine, config: Optional[EngineConfig] = None):
        self.engine = engine
        self.config = config if config is not None else engine.config

    def validate(self, items: Sequence[ResponseNode], snapshot: EvaluationSnapshot) -> Dict[str, ValidationResult]:
        """
        Validate every response node of a tree.

        Returns:
            Instance key -> ValidationResult, in document order
        """
        index = InstanceIndex(self.engine.form.items, items)
        context_for = self.engine.contexts(items, snapshot)
        return {
            instance.key: self.validate_instance(instance, snapshot, context_for)
            for instance in index.instances
        }

    def validate_instance(
        self,
        instance: Instance,
        snapshot: EvaluationSnapshot,
        context_for: Callable[[str], EvaluationContext],
    ) -> ValidationResult:
        item, node, key = instance.item, instance.node, instance.key

        if not snapshot.is_enabled(key):
            return Valid()
        if item.is_display:
            return NotValidated()

        messages: List[str] = []
        warnings: List[str] = []

        if item.required and not self._answered(item, node):
            messages.append(REQUIRED_MESSAGE)

        if item.is_question:
            values = node.values()
            if len(values) > 1 and not item.repeats:
                messages.append(f"'{item.link_id}' accepts a single answer, got {len(values)}")
            self._check_occurrences(item, len(values), messages)
            for value in values:
                messages.extend(self._check_value(item, value, snapshot.options.get(key)))
        elif item.is_repeated_group:
            self._check_occurrences(item, len(node.answers), messages)

        for constraint in item.constraints:
            if self._holds(constraint.expression.expression, context_for(key), key):
                continue
            text = constraint.human or f"Constraint '{constraint.key}' failed"
            if constraint.severity == Severity.ERROR:
                messages.append(text)
            else:
                warnings.append(text)

        if messages:
            return Invalid(tuple(messages), tuple(warnings))
        return Valid(tuple(warnings))

    def _answered(self, item: Item, node: ResponseNode) -> bool:
        if item.is_repeated_group:
            return bool(node.answers)
        if item.is_group:
            return _has_answered_descendant(node.items)
        return node.has_answer

    def _check_occurrences(self, item: Item, count: int, messages: List[str]) -> None:
        if item.min_occurs is not None and count < item.min_occurs:
            messages.append(f"'{item.link_id}' needs at least {item.min_occurs} answer(s), got {count}")
        if item.max_occurs is not None and count > item.max_occurs:
            messages.append(f"'{item.link_id}' allows at most {item.max_occurs} answer(s), got {count}")

    def _check_value(self, item: Item, value: Any, options: Optional[Tuple[Any, ...]]) -> List[str]:
        check = self.config.type_checks.resolve(item) or BUILTIN_TYPE_CHECKS.resolve(item)
        if check is not None:
            message = check(item, value)
            if message:
                return [message]

        messages = []
        if item.type == ItemType.CHOICE and options is not None and value not in options:
            messages.append(f"{value!r} is not an available option of '{item.link_id}'")

        try:
            if item.min_value is not None and _compare_bound(value, item.min_value) < 0:
                messages.append(f"Minimum value allowed is {item.min_value}")
            if item.max_value is not None and _compare_bound(value, item.max_value) > 0:
                messages.append(f"Maximum value allowed is {item.max_value}")
        except TypeError:
            messages.append(f"{value!r} cannot be compared with the bounds of '{item.link_id}'")

        if item.max_length is not None and isinstance(value, str) and len(value) > item.max_length:
            messages.append(f"The maximum number of characters that are permitted is {item.max_length}")
        return messages

    def _holds(self, expression: str, context: EvaluationContext, key: str) -> bool:
        try:
            return _truthy(self.engine.call(expression, context))
        except EvaluationError as e:
            logger.warning("Constraint '%s' on '%s' failed to evaluate: %s", expression, key, e)
            return False


def has_errors(results: Dict[str, ValidationResult]) -> bool:
    return any(isinstance(result, Invalid) for result in results.values())
