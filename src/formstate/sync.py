"""
Response Tree Synchronizer.

Keeps the response tree in structural correspondence with the item tree:

    - Non-repeating items: exactly one ResponseNode per item
    - Non-repeating groups: children directly under the node
    - Questions with nested items: the nested template cloned under every
      answer
    - Repeating groups: one Answer per instance, the instance's children
      under that Answer

`sync` and `sync_items` build NEW nodes; their inputs are never mutated, so
`sync(item, sync(item, None)) == sync(item, None)`.

The remaining helpers (add_instance, remove_instance, set_answers,
prune_answers) mutate a node in place and are called only from the
session's serialized mutation path.
"""

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from formstate.errors import PathError, SynchronizationError
from formstate.model import Answer, Item, ItemType, Quantity, ResponseNode
from formstate.paths import child_key, parse_path

logger = logging.getLogger(__name__)


def _initial_answers(item: Item) -> List[Answer]:
    values = list(item.initial) + [option.value for option in item.answer_options if option.initial_selected]

    # A quantity initial without a value only declares the unit
    if item.type == ItemType.QUANTITY and values and all(
        isinstance(v, Quantity) and v.value is None for v in values
    ):
        return []

    return [Answer(value=v) for v in values]


def create_nested_items(item: Item) -> List[ResponseNode]:
    """Fresh response nodes for one answer / instance of `item`."""
    return [create_response_node(child) for child in item.items]


def create_response_node(item: Item) -> ResponseNode:
    """
    Create the ResponseNode for a newly seen item.

    The node carries:
        - initial answers from `initial` or initially selected options
        - the nested template under each initial answer (questions with
          nested items)
        - child nodes (non-repeating groups)
    Repeating groups start with zero instances.
    """
    node = ResponseNode(link_id=item.link_id)

    if item.is_display:
        return node

    if item.is_group:
        if not item.repeats:
            node.items = create_nested_items(item)
        return node

    node.answers = _initial_answers(item)
    if item.items:
        for answer in node.answers:
            answer.items = create_nested_items(item)
    return node


def _discard(message: str) -> None:
    logger.warning("%s", SynchronizationError(message))


def sync(item: Item, node: Optional[ResponseNode] = None) -> ResponseNode:
    """
    Return a ResponseNode for `item` that respects the item's structure.

    Args:
        item: Definition item
        node: Existing response node, or None to create one

    Raises:
        SynchronizationError: If `node` belongs to a different link id
    """
    if node is None:
        return create_response_node(item)

    if node.link_id != item.link_id:
        raise SynchronizationError(
            f"Response node '{node.link_id}' does not belong to item '{item.link_id}'"
        )

    synced = ResponseNode(link_id=item.link_id, seeded=node.seeded)

    if item.is_display:
        if node.answers or node.items:
            _discard(f"Discarding answers of display item '{item.link_id}'")
        return synced

    if item.is_group and not item.repeats:
        if node.answers:
            _discard(f"Discarding answers of group '{item.link_id}'")
        synced.items = sync_items(item.items, node.items, owner=item.link_id)
        return synced

    answers = list(node.answers)

    if item.is_repeated_group:
        # A node with direct children is one instance in flattened form
        if node.items:
            answers.append(Answer(items=node.items))
        for answer in answers:
            synced.answers.append(Answer(items=sync_items(item.items, answer.items, owner=item.link_id)))
        return synced

    if len(answers) > 1 and not item.repeats:
        _discard(f"Discarding {len(answers) - 1} extra answer(s) of non-repeating item '{item.link_id}'")
        answers = answers[:1]

    for answer in answers:
        copied = Answer(value=answer.value, user_edited=answer.user_edited)
        if item.items:
            copied.items = sync_items(item.items, answer.items, owner=item.link_id)
        elif answer.items:
            _discard(f"Discarding nested items under answer of '{item.link_id}'")
        synced.answers.append(copied)

    if node.items:
        _discard(f"Discarding items placed directly under question '{item.link_id}'")

    return synced


def sync_items(
    items: Sequence[Item],
    nodes: Sequence[ResponseNode],
    owner: str = "",
) -> List[ResponseNode]:
    """
    Zip sibling response nodes with sibling items by link id.

    Orphaned link ids are dropped; duplicates of a repeating group are
    merged into instances; duplicates of anything else are dropped. The
    result follows definition order.
    """
    by_link_id: Dict[str, List[ResponseNode]] = defaultdict(list)
    for node in nodes:
        by_link_id[node.link_id].append(node)

    known = {item.link_id for item in items}
    for link_id in by_link_id:
        if link_id not in known:
            _discard(f"Discarding orphaned response node '{link_id}' under '{owner or '<root>'}'")

    result = []
    for item in items:
        group = by_link_id.get(item.link_id, [])
        if not group:
            result.append(create_response_node(item))
            continue

        if len(group) > 1:
            if item.is_repeated_group:
                merged = ResponseNode(link_id=item.link_id)
                for node in group:
                    merged.answers.extend(node.answers)
                    if node.items:
                        merged.answers.append(Answer(items=node.items))
                group = [merged]
            else:
                _discard(f"Discarding {len(group) - 1} duplicate response node(s) '{item.link_id}'")

        result.append(sync(item, group[0]))

    return result


# ============================================================================
# In-place structural mutations
# ============================================================================


def add_instance(item: Item, node: ResponseNode) -> int:
    """
    Append a fresh instance to a repeating group.

    Returns:
        Index of the new instance
    """
    if not item.is_repeated_group:
        raise PathError(f"'{item.link_id}' is not a repeating group")
    node.answers.append(Answer(items=create_nested_items(item)))
    return len(node.answers) - 1


def remove_instance(item: Item, node: ResponseNode, index: int) -> Answer:
    """Remove one instance (and all nested state) from a repeating group."""
    if not item.is_repeated_group:
        raise PathError(f"'{item.link_id}' is not a repeating group")
    if index < 0 or index >= len(node.answers):
        raise PathError(f"'{item.link_id}' has no instance {index}")
    return node.answers.pop(index)


def set_answers(item: Item, node: ResponseNode, values: Sequence[Any], user_edited: bool = True) -> None:
    """
    Replace the answers of a question.

    Nested children of an answer survive when the same value is still
    answered; new values get a fresh copy of the nested template.
    """
    previous = list(node.answers)
    answers = []
    for value in values:
        answer = Answer(value=value, user_edited=user_edited)
        if item.items:
            match = next((i for i, old in enumerate(previous) if old.value == value), None)
            if match is not None:
                answer.items = previous.pop(match).items
            else:
                answer.items = create_nested_items(item)
        answers.append(answer)
    node.answers = answers


def clear_answers(items: Sequence[Item]) -> List[ResponseNode]:
    """
    Fresh response nodes for `items`, discarding every answer and instance.

    Initial values are re-seeded the same way as on first load.
    """
    return [create_response_node(item) for item in items]


def prune_answers(node: ResponseNode, keep: Callable[[Any], bool]) -> List[Any]:
    """
    Drop answers whose value fails `keep`.

    Returns:
        The removed values
    """
    removed = [a.value for a in node.answers if a.value is not None and not keep(a.value)]
    if removed:
        node.answers = [a for a in node.answers if a.value is None or keep(a.value)]
    return removed


def find_node(
    items: Sequence[Item],
    nodes: Sequence[ResponseNode],
    path: str,
) -> Tuple[Item, ResponseNode, str]:
    """
    Resolve a link-id path to (item, response node, instance key).

    Raises:
        PathError: If the path does not address an existing node
    """
    segments = parse_path(path)
    if segments[-1].index is not None:
        raise PathError(f"Path '{path}' must end at a response node, not an answer")

    current_items, current_nodes = list(items), list(nodes)
    key = ""
    answer_index = None
    item = node = None

    for depth, segment in enumerate(segments):
        if depth > 0:
            previous = segments[depth - 1]
            if item.nests_under_answers:
                answer_index = previous.index if previous.index is not None else 0
                if answer_index >= len(node.answers):
                    raise PathError(f"'{previous.link_id}' has no answer {answer_index} in '{path}'")
                current_items, current_nodes = item.items, node.answers[answer_index].items
            else:
                if previous.index is not None:
                    raise PathError(f"'{previous.link_id}' has no answer instances in '{path}'")
                answer_index = None
                current_items, current_nodes = item.items, node.items

        item = next((i for i in current_items if i.link_id == segment.link_id), None)
        node = next((n for n in current_nodes if n.link_id == segment.link_id), None)
        if item is None or node is None:
            raise PathError(f"No response node '{segment.link_id}' in '{path}'")
        key = child_key(key, segment.link_id, answer_index)

    return item, node, key
