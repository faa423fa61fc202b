"""
FormSession: the single owner of one form-editing session.

    session = FormSession(form)
    session.set_answer("height", 10)
    session.snapshot.calculated["weight"]      # 20
    session.validate_all()
    session.submit()

Every mutation (answer edits, repeating-group instances, mode and page
changes) goes through one FIFO mutation queue. A mutation issued while
another one is being applied, e.g. from a snapshot listener, is queued and
applied right after it; queued calls return None.

After each mutation the engine runs an incremental pass, the validator
recomputes results, and a new EvaluationSnapshot replaces the old one in a
single assignment. Readers see either the old or the new snapshot.
"""

import logging
from collections import deque
from types import MappingProxyType
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Sequence, Tuple

from formstate.config import EngineConfig
from formstate.definition import validate_definition
from formstate.display import DisplayMode, DisplayStateMachine, Listener
from formstate.engine import EvaluationEngine, EvaluationSnapshot
from formstate.errors import PathError, ReadOnlyError
from formstate.evaluator import Evaluator
from formstate.model import Answer, Form, FormResponse, Item, ResponseNode
from formstate.paths import child_key
from formstate.sync import (
    add_instance,
    clear_answers,
    find_node,
    remove_instance,
    set_answers,
    sync_items,
)
from formstate.validation import ValidationResult, Validator

logger = logging.getLogger(__name__)


SnapshotListener = Callable[[EvaluationSnapshot], None]


def answer_values(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [v for v in value if v is not None]
    return [value]


class FormSession:
    """
    Editing session over one form and its response tree.

    Args:
        form: Form definition (checked with validate_definition)
        evaluator: Expression evaluator (ReferenceEvaluator by default)
        config: EngineConfig
        response: Existing response to resume; it is synchronized with the
            definition and never mutated

    Raises:
        DefinitionError: If the form definition is malformed
    """

    def __init__(
        self,
        form: Form,
        evaluator: Optional[Evaluator] = None,
        config: Optional[EngineConfig] = None,
        response: Optional[FormResponse] = None,
    ):
        validate_definition(form)

        self.form = form
        self.config = config if config is not None else EngineConfig()
        self.engine = EvaluationEngine(form, evaluator, self.config)
        self.display = DisplayStateMachine(form, self.config)
        self.listeners: List[SnapshotListener] = []

        self.validator = Validator(self.engine, self.config)

        if response is not None and response.form not in (form.name, form.url):
            logger.warning("Response for '%s' loaded into form '%s'", response.form, form.name)
        self.status = response.status if response is not None else "in-progress"
        self._items: List[ResponseNode] = sync_items(form.items, response.items if response else [])

        self._queue: Deque[Callable[[], Any]] = deque()
        self._applying = False
        self._generation = 0

        snapshot = self.engine.evaluate(self._items, generation=self._generation)
        self.display.start(snapshot.enabled)
        self._snapshot = self._finish(snapshot)

    # ------------------------------------------------------------------
    # Mutation queue
    # ------------------------------------------------------------------

    def _enqueue(self, mutation: Callable[[], Any]) -> Any:
        if self._applying:
            self._queue.append(mutation)
            return None

        self._applying = True
        try:
            return mutation()
        finally:
            try:
                self._drain()
            finally:
                self._applying = False

    def _drain(self) -> None:
        # Queued mutations have no caller left to raise to
        while self._queue:
            queued = self._queue.popleft()
            try:
                queued()
            except Exception:
                logger.exception("Queued mutation on form %s failed", self.form.name)

    def _finish(self, snapshot: EvaluationSnapshot) -> EvaluationSnapshot:
        self.display.reconcile(snapshot.enabled)
        results = self.validator.validate(self._items, snapshot)
        return snapshot.evolve(
            validation=MappingProxyType(results),
            mode=self.display.mode,
            page=self.display.page,
        )

    def _publish(self, snapshot: EvaluationSnapshot) -> None:
        self._snapshot = snapshot
        for listener in list(self.listeners):
            listener(snapshot)

    def _pass(self, changed: Iterable[str] = (), structural: Iterable[str] = ()) -> None:
        self._generation += 1
        snapshot = self.engine.evaluate(
            self._items,
            self._snapshot,
            changed=set(changed),
            structural=tuple(structural),
            generation=self._generation,
        )
        self._publish(self._finish(snapshot))

    def _full_pass(self) -> None:
        self._generation += 1
        snapshot = self.engine.evaluate(self._items, generation=self._generation)
        self._publish(self._finish(snapshot))

    def _refresh_display(self) -> None:
        self._publish(self._snapshot.evolve(mode=self.display.mode, page=self.display.page))

    def _ensure_editable(self) -> None:
        if self.config.read_only:
            raise ReadOnlyError(f"Form {self.form.name} is read-only")
        if self.display.mode != DisplayMode.EDIT:
            raise ReadOnlyError(f"Answers cannot be edited in {self.display.mode.value} mode")

    def _find(self, path: str) -> Tuple[Item, ResponseNode, str]:
        return find_node(self.form.items, self._items, path)

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    def set_answer(self, path: str, value: Any) -> None:
        """
        Set the answer(s) of the question at `path`.

        A list sets several answers of a repeating question; None clears the
        answers. The answers are marked as user edited.
        """

        def mutation():
            self._ensure_editable()
            item, node, key = self._find(path)
            if not item.is_question:
                raise PathError(f"'{path}' is a {item.type.value} item, not a question")
            if item.read_only:
                raise ReadOnlyError(f"'{path}' is read-only")
            set_answers(item, node, answer_values(value), user_edited=True)
            self._pass(changed={key}, structural={key} if item.items else ())

        self._enqueue(mutation)

    def clear_user_edit(self, path: str) -> None:
        """Clear the user-edited flag so the calculated expression applies again."""

        def mutation():
            self._ensure_editable()
            _, node, key = self._find(path)
            for answer in node.answers:
                answer.user_edited = False
            self._pass(changed={key}, structural={key})

        self._enqueue(mutation)

    def clear_all_answers(self) -> None:
        """Discard every answer and instance; initial values are seeded again."""

        def mutation():
            self._ensure_editable()
            self._items = clear_answers(self.form.items)
            self._full_pass()

        self._enqueue(mutation)

    def add_repeated_instance(self, path: str) -> Optional[int]:
        """
        Append an instance to the repeating group at `path`.

        Returns:
            Index of the new instance (None when queued behind another
            mutation)
        """

        def mutation():
            self._ensure_editable()
            item, node, key = self._find(path)
            index = add_instance(item, node)
            self._pass(changed={key}, structural={key})
            return index

        return self._enqueue(mutation)

    def remove_repeated_instance(self, path: str, index: int) -> None:
        """Remove instance `index` of the repeating group at `path`, with all nested state."""

        def mutation():
            self._ensure_editable()
            item, node, key = self._find(path)
            remove_instance(item, node, index)
            self._pass(changed={key}, structural={key})

        self._enqueue(mutation)

    # ------------------------------------------------------------------
    # Mode and pages
    # ------------------------------------------------------------------

    def set_mode(self, mode: DisplayMode) -> None:
        def mutation():
            self.display.set_mode(mode)
            self._refresh_display()

        self._enqueue(mutation)

    def go_to_page(self, index: int) -> Optional[bool]:
        """Returns False when the navigation policy blocks the move."""

        def mutation():
            moved = self.display.go_to_page(index, self._snapshot.enabled, self._snapshot.validation)
            self._refresh_display()
            return moved

        return self._enqueue(mutation)

    def next_page(self) -> Optional[bool]:
        def mutation():
            moved = self.display.next_page(self._snapshot.enabled, self._snapshot.validation)
            self._refresh_display()
            return moved

        return self._enqueue(mutation)

    def previous_page(self) -> Optional[bool]:
        def mutation():
            moved = self.display.previous_page(self._snapshot.enabled, self._snapshot.validation)
            self._refresh_display()
            return moved

        return self._enqueue(mutation)

    # ------------------------------------------------------------------
    # Validation and submission
    # ------------------------------------------------------------------

    def validate_all(self) -> Dict[str, ValidationResult]:
        """Validation result of every response node, keyed by instance key."""
        return self.validator.validate(self._items, self._snapshot)

    def submit(self, anyway: bool = False) -> Optional[bool]:
        """
        Validate and submit.

        Returns:
            True when submitted. With Invalid results nothing changes and
            False is returned (see EngineConfig.allow_submit_anyway).
        """

        def mutation():
            results = self.validate_all()
            submitted = self.display.submit(results, anyway)
            if submitted:
                self.status = "completed"
            return submitted

        return self._enqueue(mutation)

    def cancel(self) -> None:
        self._enqueue(self.display.cancel)

    def on_event(self, listener: Listener) -> None:
        """Register a listener for SUBMITTED / CANCELLED."""
        self.display.listeners.append(listener)

    def subscribe(self, listener: SnapshotListener) -> None:
        """Register a listener called with every new snapshot."""
        self.listeners.append(listener)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> EvaluationSnapshot:
        return self._snapshot

    @property
    def mode(self) -> DisplayMode:
        return self.display.mode

    @property
    def page(self) -> Optional[int]:
        return self.display.page

    def progress(self) -> float:
        return self.display.progress()

    def answers(self, path: str) -> List[Any]:
        return self._find(path)[1].values()

    def is_enabled(self, path: str) -> bool:
        return self._snapshot.is_enabled(self._find(path)[2])

    def options(self, path: str) -> Tuple[Any, ...]:
        item, _, key = self._find(path)
        return self._snapshot.options.get(key, tuple(option.value for option in item.answer_options))

    def visible_items(self) -> List[Item]:
        """Top-level items to render: enabled, not hidden, on the current page."""
        if self.display.paginated:
            if self.display.page is None:
                return []
            candidates = [self.display.pages[self.display.page]]
        else:
            candidates = self.form.items
        return [item for item in candidates if not item.hidden and self._snapshot.is_enabled(item.link_id)]

    def renderer_for(self, item: Item) -> Any:
        """Rendering factory registered for `item` in config.renderers, if any."""
        return self.config.renderers.resolve(item)

    def get_response(self, include_disabled: bool = False) -> FormResponse:
        """
        Copy of the response document.

        Disabled nodes (and their subtrees) are left out unless
        `include_disabled` is set.
        """
        return extract_response(self.form, self._items, self._snapshot, self.status, include_disabled)


def _copy_nodes(
    items: Sequence[Item],
    nodes: Sequence[ResponseNode],
    snapshot: EvaluationSnapshot,
    parent_key: str,
    answer_index: Optional[int],
    include_disabled: bool,
) -> List[ResponseNode]:
    by_link_id = {node.link_id: node for node in nodes}
    copied = []
    for item in items:
        node = by_link_id.get(item.link_id)
        if node is None:
            continue
        key = child_key(parent_key, item.link_id, answer_index)
        if not include_disabled and not snapshot.is_enabled(key):
            continue
        clone = ResponseNode(link_id=node.link_id, seeded=node.seeded)
        if item.nests_under_answers:
            for i, answer in enumerate(node.answers):
                clone.answers.append(
                    Answer(
                        value=answer.value,
                        items=_copy_nodes(item.items, answer.items, snapshot, key, i, include_disabled),
                        user_edited=answer.user_edited,
                    )
                )
        else:
            clone.answers = [Answer(value=a.value, user_edited=a.user_edited) for a in node.answers]
            clone.items = _copy_nodes(item.items, node.items, snapshot, key, None, include_disabled)
        copied.append(clone)
    return copied


def extract_response(
    form: Form,
    items: Sequence[ResponseNode],
    snapshot: EvaluationSnapshot,
    status: str = "in-progress",
    include_disabled: bool = False,
) -> FormResponse:
    """Detached FormResponse of a response tree, leaving out disabled nodes."""
    return FormResponse(
        form=form.url or form.name,
        items=_copy_nodes(form.items, items, snapshot, "", None, include_disabled),
        status=status,
    )
