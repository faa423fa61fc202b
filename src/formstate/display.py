"""
Pagination / Display-Mode State Machine.

Modes:
    INIT    form loaded, first evaluation pass not finished
    EDIT    answers editable (paginated or long-scroll)
    REVIEW  read-only summary

Submission and cancellation are not modes; they are SessionEvents handed
to listeners.

ARCHITECTURAL RULE:
    Mode transitions must be explicit. Every permitted transition is listed
    in TRANSITIONS together with the configuration it requires. A transition
    not in the table is rejected.

Pages are top-level groups with item_control "page". A form with pages is
paginated unless `long_scroll` is configured. Under the LINEAR navigation
policy a page is reachable only when no earlier enabled page holds an
Invalid result.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Mapping, Optional, Tuple

from formstate.config import EngineConfig, NavigationPolicy
from formstate.errors import ModeTransitionError, NavigationError
from formstate.model import Form, Item
from formstate.paths import top_level_link_id
from formstate.validation import Invalid, ValidationResult, has_errors

logger = logging.getLogger(__name__)


class DisplayMode(Enum):
    INIT = "init"
    EDIT = "edit"
    REVIEW = "review"


class SessionEvent(Enum):
    """Terminal events emitted to listeners; the session itself stays usable."""

    SUBMITTED = "submitted"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ModeTransition:
    """
    A permitted mode change.

    Properties:
        from_mode: Origin mode
        to_mode: Destination mode
        guard: Configuration predicate; the transition is allowed only when
            it holds
        requirement: Human readable form of the guard
    """

    from_mode: DisplayMode
    to_mode: DisplayMode
    guard: Callable[[EngineConfig], bool]
    requirement: str


TRANSITIONS: Tuple[ModeTransition, ...] = (
    ModeTransition(
        DisplayMode.INIT,
        DisplayMode.EDIT,
        lambda c: not (c.review_first or c.read_only),
        "neither review_first nor read_only",
    ),
    ModeTransition(
        DisplayMode.INIT,
        DisplayMode.REVIEW,
        lambda c: c.review_first or c.read_only,
        "review_first or read_only",
    ),
    ModeTransition(DisplayMode.EDIT, DisplayMode.REVIEW, lambda c: c.review_enabled, "review_enabled"),
    ModeTransition(DisplayMode.REVIEW, DisplayMode.EDIT, lambda c: not c.read_only, "not read_only"),
)


Listener = Callable[[SessionEvent, Mapping[str, ValidationResult]], None]


class DisplayStateMachine:
    """
    Current mode and page of one session.

    Enablement and validation results are passed in by the caller; the
    machine keeps no reference to the response tree.
    """

    def __init__(self, form: Form, config: Optional[EngineConfig] = None):
        self.form = form
        self.config = config if config is not None else EngineConfig()
        self.mode = DisplayMode.INIT
        self.page: Optional[int] = None
        self.listeners: List[Listener] = []
        self._pages: List[Item] = form.pages()

    @property
    def pages(self) -> List[Item]:
        return list(self._pages)

    @property
    def paginated(self) -> bool:
        return bool(self._pages) and not self.config.long_scroll

    @property
    def editable(self) -> bool:
        return self.mode == DisplayMode.EDIT and not self.config.read_only

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    def _transition(self, to_mode: DisplayMode) -> ModeTransition:
        for transition in TRANSITIONS:
            if transition.from_mode == self.mode and transition.to_mode == to_mode:
                if not transition.guard(self.config):
                    raise ModeTransitionError(
                        f"{self.mode.value} -> {to_mode.value} requires {transition.requirement}"
                    )
                return transition
        raise ModeTransitionError(f"No transition from {self.mode.value} to {to_mode.value}")

    def start(self, enabled: Mapping[str, bool]) -> DisplayMode:
        """Leave INIT once the first evaluation pass is done."""
        if self.mode != DisplayMode.INIT:
            raise ModeTransitionError(f"Session already started in {self.mode.value}")
        target = DisplayMode.REVIEW if (self.config.review_first or self.config.read_only) else DisplayMode.EDIT
        self._transition(target)
        self.mode = target
        if self.paginated:
            self.page = self._first_enabled(range(len(self._pages)), enabled)
        logger.debug("Form %s started in %s mode", self.form.name, self.mode.value)
        return self.mode

    def set_mode(self, mode: DisplayMode) -> None:
        if mode == self.mode:
            return
        self._transition(mode)
        logger.debug("Form %s: %s -> %s", self.form.name, self.mode.value, mode.value)
        self.mode = mode

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    def _page_enabled(self, index: int, enabled: Mapping[str, bool]) -> bool:
        return enabled.get(self._pages[index].link_id, True)

    def _first_enabled(self, indices, enabled: Mapping[str, bool]) -> Optional[int]:
        for index in indices:
            if self._page_enabled(index, enabled):
                return index
        return None

    def page_has_errors(self, index: int, results: Mapping[str, ValidationResult]) -> bool:
        link_id = self._pages[index].link_id
        return any(
            isinstance(result, Invalid) and top_level_link_id(key) == link_id
            for key, result in results.items()
        )

    def can_navigate(
        self,
        index: int,
        enabled: Mapping[str, bool],
        results: Mapping[str, ValidationResult],
    ) -> bool:
        """Whether the navigation policy lets the user reach page `index`."""
        if self.config.navigation_policy == NavigationPolicy.NON_LINEAR:
            return True
        return not any(
            self._page_enabled(earlier, enabled) and self.page_has_errors(earlier, results)
            for earlier in range(index)
        )

    def go_to_page(
        self,
        index: int,
        enabled: Mapping[str, bool],
        results: Mapping[str, ValidationResult],
    ) -> bool:
        """
        Move to page `index`.

        Returns:
            False when the navigation policy blocks the move

        Raises:
            NavigationError: If the form is not paginated, or the page does
                not exist or is disabled
        """
        if not self.paginated:
            raise NavigationError(f"Form {self.form.name} is not paginated")
        if index < 0 or index >= len(self._pages):
            raise NavigationError(f"No page {index}; the form has {len(self._pages)}")
        if not self._page_enabled(index, enabled):
            raise NavigationError(f"Page {index} ('{self._pages[index].link_id}') is disabled")
        if not self.can_navigate(index, enabled, results):
            logger.debug("Page %d blocked by invalid answers on an earlier page", index)
            return False
        self.page = index
        return True

    def next_page(self, enabled: Mapping[str, bool], results: Mapping[str, ValidationResult]) -> bool:
        if not self.paginated:
            raise NavigationError(f"Form {self.form.name} is not paginated")
        start = -1 if self.page is None else self.page
        target = self._first_enabled(range(start + 1, len(self._pages)), enabled)
        if target is None:
            return False
        return self.go_to_page(target, enabled, results)

    def previous_page(self, enabled: Mapping[str, bool], results: Mapping[str, ValidationResult]) -> bool:
        if not self.paginated:
            raise NavigationError(f"Form {self.form.name} is not paginated")
        start = len(self._pages) if self.page is None else self.page
        target = self._first_enabled(range(start - 1, -1, -1), enabled)
        if target is None:
            return False
        return self.go_to_page(target, enabled, results)

    def reconcile(self, enabled: Mapping[str, bool]) -> None:
        """Move off the current page when it became disabled."""
        if not self.paginated or self.mode == DisplayMode.INIT:
            return
        if self.page is not None and self._page_enabled(self.page, enabled):
            return
        current = self.page if self.page is not None else 0
        target = self._first_enabled(range(current + 1, len(self._pages)), enabled)
        if target is None:
            target = self._first_enabled(range(current - 1, -1, -1), enabled)
        self.page = target

    def has_next_page(self, enabled: Mapping[str, bool]) -> bool:
        if not self.paginated or self.page is None:
            return False
        return self._first_enabled(range(self.page + 1, len(self._pages)), enabled) is not None

    def has_previous_page(self, enabled: Mapping[str, bool]) -> bool:
        if not self.paginated or self.page is None:
            return False
        return self._first_enabled(range(self.page - 1, -1, -1), enabled) is not None

    def progress(self) -> float:
        """Percentage of the way through the pages (100 when not paginated)."""
        if not self.paginated or self.page is None:
            return 100.0
        return (self.page + 1) * 100.0 / len(self._pages)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _emit(self, event: SessionEvent, results: Mapping[str, ValidationResult]) -> None:
        for listener in list(self.listeners):
            listener(event, results)

    def submit(self, results: Mapping[str, ValidationResult], anyway: bool = False) -> bool:
        """
        Attempt submission with fresh validation results.

        Returns:
            True when SUBMITTED was emitted. With Invalid results the mode is
            left unchanged and False is returned, unless `anyway` is passed
            and the configuration allows submitting anyway.
        """
        if self.mode == DisplayMode.INIT:
            raise ModeTransitionError("Cannot submit before the session started")
        if has_errors(results) and not (anyway and self.config.allow_submit_anyway):
            logger.info("Submission of form %s blocked by invalid answers", self.form.name)
            return False
        self._emit(SessionEvent.SUBMITTED, results)
        return True

    def cancel(self) -> None:
        self._emit(SessionEvent.CANCELLED, {})
