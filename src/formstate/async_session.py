"""
AsyncFormSession: FormSession for asyncio applications and async evaluators.

    session = await AsyncFormSession.create(form, evaluator=remote_evaluator)
    await session.set_answer("height", 10)
    snapshot = session.snapshot
    await session.close()

Mutations enter an asyncio.Queue consumed by a single worker task, so they
are applied one at a time on the event loop thread. Each answer or
structure mutation:

    1. is applied to the working tree
    2. bumps the generation
    3. starts an evaluation pass over a deep copy of the working tree in the
       default thread-pool executor

When a pass finishes, its tree and snapshot replace the committed ones in
one assignment on the loop thread, but only if its generation is still the
latest. A pass overtaken by a newer mutation is discarded; the newer pass
re-evaluates everything changed since the last commit.

Awaitable evaluator results are resolved on the event loop with
asyncio.run_coroutine_threadsafe while the pass waits on its worker thread.
"""

import asyncio
import copy
import logging
from types import MappingProxyType
from typing import Any, Awaitable, Callable, List, Optional, Set, Tuple

from formstate.config import EngineConfig
from formstate.definition import validate_definition
from formstate.display import DisplayMode, DisplayStateMachine, Listener
from formstate.engine import EvaluationEngine, EvaluationSnapshot
from formstate.errors import FormStateError, PathError, ReadOnlyError
from formstate.evaluator import Evaluator
from formstate.model import Form, FormResponse, ResponseNode
from formstate.session import SnapshotListener, answer_values, extract_response
from formstate.sync import add_instance, clear_answers, find_node, remove_instance, set_answers, sync_items
from formstate.validation import Validator

logger = logging.getLogger(__name__)


Operation = Callable[[asyncio.Future], Awaitable[None]]


async def _resolve(awaitable: Awaitable) -> Any:
    return await awaitable


class AsyncFormSession:
    """
    Asyncio editing session.

    Construct with `await AsyncFormSession.create(...)`, or construct and
    `await session.start()` inside a running loop. Use `close()` (or
    `async with`) to stop the worker.
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
        self.engine = EvaluationEngine(form, evaluator, self.config, await_result=self._await_on_loop)
        self.validator = Validator(self.engine, self.config)
        self.display = DisplayStateMachine(form, self.config)
        self.listeners: List[SnapshotListener] = []
        self.status = response.status if response is not None else "in-progress"

        # Committed tree (read by consumers) and working tree (mutated)
        self._items: List[ResponseNode] = sync_items(form.items, response.items if response else [])
        self._working: List[ResponseNode] = copy.deepcopy(self._items)
        self._snapshot = EvaluationSnapshot()

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._passes: Set[asyncio.Task] = set()
        self._idle: Optional[asyncio.Event] = None

        self._generation = 0
        self._pending_changed: Set[str] = set()
        self._pending_structural: Set[str] = set()
        self._pending_full = False
        self._waiters: List[Tuple[asyncio.Future, Any]] = []

    @classmethod
    async def create(
        cls,
        form: Form,
        evaluator: Optional[Evaluator] = None,
        config: Optional[EngineConfig] = None,
        response: Optional[FormResponse] = None,
    ) -> "AsyncFormSession":
        session = cls(form, evaluator, config, response)
        await session.start()
        return session

    async def start(self) -> None:
        """Run the first full pass and start the mutation worker."""
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._idle = asyncio.Event()

        tree = copy.deepcopy(self._working)
        snapshot = await self._loop.run_in_executor(None, self._evaluate, tree, None, None, (), 0)
        self.display.start(snapshot.enabled)
        self._commit(tree, snapshot)
        self._worker = self._loop.create_task(self._work())

    async def close(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        if self._passes:
            await asyncio.gather(*self._passes, return_exceptions=True)

    async def __aenter__(self) -> "AsyncFormSession":
        if self._worker is None:
            await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Worker and passes
    # ------------------------------------------------------------------

    def _await_on_loop(self, awaitable: Awaitable) -> Any:
        return asyncio.run_coroutine_threadsafe(_resolve(awaitable), self._loop).result()

    async def _work(self) -> None:
        while True:
            operation, done = await self._queue.get()
            try:
                await operation(done)
            except Exception as e:
                if not done.done():
                    done.set_exception(e)
            finally:
                self._queue.task_done()

    async def _enqueue(self, operation: Operation) -> Any:
        if self._worker is None:
            raise FormStateError("Session not started; use AsyncFormSession.create()")
        done = self._loop.create_future()
        await self._queue.put((operation, done))
        return await done

    def _evaluate(
        self,
        tree: List[ResponseNode],
        previous: Optional[EvaluationSnapshot],
        changed: Optional[Set[str]],
        structural: Tuple[str, ...],
        generation: int,
    ) -> EvaluationSnapshot:
        # Runs on an executor thread over a private tree
        snapshot = self.engine.evaluate(tree, previous, changed, structural, generation)
        return snapshot.evolve(validation=MappingProxyType(self.validator.validate(tree, snapshot)))

    def _begin_pass(self, done: asyncio.Future, value: Any, changed=(), structural=(), full=False) -> None:
        self._generation += 1
        self._pending_changed.update(changed)
        self._pending_structural.update(structural)
        self._pending_full = self._pending_full or full
        self._waiters.append((done, value))
        self._idle.clear()

        generation = self._generation
        tree = copy.deepcopy(self._working)
        if self._pending_full:
            args = (tree, None, None, (), generation)
        else:
            args = (
                tree,
                self._snapshot,
                set(self._pending_changed),
                tuple(self._pending_structural),
                generation,
            )
        task = self._loop.create_task(self._run_pass(generation, tree, args))
        self._passes.add(task)
        task.add_done_callback(self._passes.discard)

    async def _run_pass(self, generation: int, tree: List[ResponseNode], args: tuple) -> None:
        try:
            snapshot = await self._loop.run_in_executor(None, self._evaluate, *args)
        except Exception as e:
            # Unexpected failure of the pass itself; expression failures are
            # recorded on the snapshot and never reach here
            if generation == self._generation:
                logger.exception("Evaluation pass %d failed", generation)
                waiters, self._waiters = self._waiters, []
                for done, _ in waiters:
                    if not done.done():
                        done.set_exception(e)
                self._idle.set()
            return

        if generation != self._generation:
            logger.debug("Discarding superseded pass %d (latest is %d)", generation, self._generation)
            return
        self._commit(tree, snapshot)

    def _commit(self, tree: List[ResponseNode], snapshot: EvaluationSnapshot) -> None:
        self.display.reconcile(snapshot.enabled)
        self._items = tree
        self._working = copy.deepcopy(tree)
        self._pending_changed.clear()
        self._pending_structural.clear()
        self._pending_full = False
        self._publish(snapshot.evolve(mode=self.display.mode, page=self.display.page))

        waiters, self._waiters = self._waiters, []
        for done, value in waiters:
            if not done.done():
                done.set_result(value)
        if self._idle is not None:
            self._idle.set()

    def _publish(self, snapshot: EvaluationSnapshot) -> None:
        self._snapshot = snapshot
        for listener in list(self.listeners):
            listener(snapshot)

    def _refresh_display(self) -> None:
        self._publish(self._snapshot.evolve(mode=self.display.mode, page=self.display.page))

    def _ensure_editable(self) -> None:
        if self.config.read_only:
            raise ReadOnlyError(f"Form {self.form.name} is read-only")
        if self.display.mode != DisplayMode.EDIT:
            raise ReadOnlyError(f"Answers cannot be edited in {self.display.mode.value} mode")

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    async def set_answer(self, path: str, value: Any) -> None:
        async def operation(done):
            self._ensure_editable()
            item, node, key = find_node(self.form.items, self._working, path)
            if not item.is_question:
                raise PathError(f"'{path}' is a {item.type.value} item, not a question")
            if item.read_only:
                raise ReadOnlyError(f"'{path}' is read-only")
            set_answers(item, node, answer_values(value), user_edited=True)
            self._begin_pass(done, None, changed={key}, structural={key} if item.items else ())

        await self._enqueue(operation)

    async def clear_user_edit(self, path: str) -> None:
        async def operation(done):
            self._ensure_editable()
            _, node, key = find_node(self.form.items, self._working, path)
            for answer in node.answers:
                answer.user_edited = False
            self._begin_pass(done, None, changed={key}, structural={key})

        await self._enqueue(operation)

    async def clear_all_answers(self) -> None:
        async def operation(done):
            self._ensure_editable()
            self._working = clear_answers(self.form.items)
            self._begin_pass(done, None, full=True)

        await self._enqueue(operation)

    async def add_repeated_instance(self, path: str) -> int:
        async def operation(done):
            self._ensure_editable()
            item, node, key = find_node(self.form.items, self._working, path)
            index = add_instance(item, node)
            self._begin_pass(done, index, changed={key}, structural={key})

        return await self._enqueue(operation)

    async def remove_repeated_instance(self, path: str, index: int) -> None:
        async def operation(done):
            self._ensure_editable()
            item, node, key = find_node(self.form.items, self._working, path)
            remove_instance(item, node, index)
            self._begin_pass(done, None, changed={key}, structural={key})

        await self._enqueue(operation)

    # ------------------------------------------------------------------
    # Mode and pages
    # ------------------------------------------------------------------

    def _display_operation(self, apply: Callable[[], Any]) -> Operation:
        async def operation(done):
            value = apply()
            self._refresh_display()
            done.set_result(value)

        return operation

    async def set_mode(self, mode: DisplayMode) -> None:
        await self._enqueue(self._display_operation(lambda: self.display.set_mode(mode)))

    async def go_to_page(self, index: int) -> bool:
        return await self._enqueue(
            self._display_operation(
                lambda: self.display.go_to_page(index, self._snapshot.enabled, self._snapshot.validation)
            )
        )

    async def next_page(self) -> bool:
        return await self._enqueue(
            self._display_operation(lambda: self.display.next_page(self._snapshot.enabled, self._snapshot.validation))
        )

    async def previous_page(self) -> bool:
        return await self._enqueue(
            self._display_operation(
                lambda: self.display.previous_page(self._snapshot.enabled, self._snapshot.validation)
            )
        )

    # ------------------------------------------------------------------
    # Validation and submission
    # ------------------------------------------------------------------

    async def _validate_committed(self):
        await self._idle.wait()
        tree = copy.deepcopy(self._items)
        snapshot = self._snapshot
        return await self._loop.run_in_executor(None, self.validator.validate, tree, snapshot)

    async def settled(self) -> EvaluationSnapshot:
        """Wait until every started pass has committed or been discarded."""
        await self._idle.wait()
        return self._snapshot

    async def validate_all(self):
        async def operation(done):
            done.set_result(await self._validate_committed())

        return await self._enqueue(operation)

    async def submit(self, anyway: bool = False) -> bool:
        async def operation(done):
            results = await self._validate_committed()
            submitted = self.display.submit(results, anyway)
            if submitted:
                self.status = "completed"
            done.set_result(submitted)

        return await self._enqueue(operation)

    async def cancel(self) -> None:
        await self._enqueue(self._display_operation(self.display.cancel))

    def on_event(self, listener: Listener) -> None:
        self.display.listeners.append(listener)

    def subscribe(self, listener: SnapshotListener) -> None:
        self.listeners.append(listener)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> EvaluationSnapshot:
        return self._snapshot

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def mode(self) -> DisplayMode:
        return self.display.mode

    def answers(self, path: str) -> List[Any]:
        """Committed answers at `path`."""
        return find_node(self.form.items, self._items, path)[1].values()

    def get_response(self, include_disabled: bool = False) -> FormResponse:
        return extract_response(self.form, self._items, self._snapshot, self.status, include_disabled)
