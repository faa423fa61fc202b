"""
Tests for the display-mode state machine.

These tests verify:
    - Start-up mode selection
    - Explicit transition table with configuration guards
    - Page navigation under both navigation policies
    - Submission gating and listener events
"""

import pytest
from formstate.config import EngineConfig, NavigationPolicy
from formstate.display import TRANSITIONS, DisplayMode, DisplayStateMachine, SessionEvent
from formstate.errors import ModeTransitionError, NavigationError
from formstate.examples import build_household_form, build_vitals_form
from formstate.model import Form, Item, ItemType
from formstate.validation import Invalid, Valid


def paged_form(count=3):
    return Form(
        name="paged",
        items=[
            Item(link_id=f"p{i}", type=ItemType.GROUP, item_control="page", items=[Item(link_id=f"q{i}")])
            for i in range(count)
        ],
    )


ALL_ENABLED = {}


class TestModes:
    """Test start-up and mode transitions."""

    def test_starts_in_edit(self):
        machine = DisplayStateMachine(build_vitals_form())
        assert machine.mode == DisplayMode.INIT
        assert machine.start(ALL_ENABLED) == DisplayMode.EDIT
        assert machine.editable

    def test_review_first(self):
        machine = DisplayStateMachine(build_vitals_form(), EngineConfig(review_enabled=True, review_first=True))
        assert machine.start(ALL_ENABLED) == DisplayMode.REVIEW

    def test_read_only_starts_in_review_and_stays(self):
        machine = DisplayStateMachine(build_vitals_form(), EngineConfig(read_only=True))
        machine.start(ALL_ENABLED)
        assert machine.mode == DisplayMode.REVIEW
        with pytest.raises(ModeTransitionError):
            machine.set_mode(DisplayMode.EDIT)

    def test_review_requires_review_enabled(self):
        machine = DisplayStateMachine(build_vitals_form())
        machine.start(ALL_ENABLED)
        with pytest.raises(ModeTransitionError):
            machine.set_mode(DisplayMode.REVIEW)

    def test_edit_review_round_trip(self):
        machine = DisplayStateMachine(build_vitals_form(), EngineConfig(review_enabled=True))
        machine.start(ALL_ENABLED)
        machine.set_mode(DisplayMode.REVIEW)
        assert not machine.editable
        machine.set_mode(DisplayMode.EDIT)
        assert machine.mode == DisplayMode.EDIT

    def test_no_way_back_to_init(self):
        machine = DisplayStateMachine(build_vitals_form())
        machine.start(ALL_ENABLED)
        with pytest.raises(ModeTransitionError):
            machine.set_mode(DisplayMode.INIT)

    def test_start_twice(self):
        machine = DisplayStateMachine(build_vitals_form())
        machine.start(ALL_ENABLED)
        with pytest.raises(ModeTransitionError):
            machine.start(ALL_ENABLED)

    def test_transition_table_never_returns_to_init(self):
        assert all(t.to_mode != DisplayMode.INIT for t in TRANSITIONS)


class TestPages:
    """Test pagination."""

    def start(self, form=None, **config):
        machine = DisplayStateMachine(form or paged_form(), EngineConfig(**config))
        machine.start(ALL_ENABLED)
        return machine

    def test_first_page(self):
        machine = self.start()
        assert machine.paginated
        assert machine.page == 0
        assert machine.progress() == pytest.approx(100 / 3)

    def test_long_scroll_is_not_paginated(self):
        machine = self.start(long_scroll=True)
        assert not machine.paginated
        assert machine.page is None
        assert machine.progress() == 100.0
        with pytest.raises(NavigationError):
            machine.next_page(ALL_ENABLED, {})

    def test_form_without_pages(self):
        machine = self.start(build_vitals_form())
        assert not machine.paginated

    def test_next_and_previous_skip_disabled_pages(self):
        machine = self.start()
        enabled = {"p1": False}
        assert machine.next_page(enabled, {})
        assert machine.page == 2
        assert not machine.has_next_page(enabled)
        assert machine.previous_page(enabled, {})
        assert machine.page == 0
        assert not machine.has_previous_page(enabled)

    def test_disabled_page_cannot_be_reached(self):
        machine = self.start()
        with pytest.raises(NavigationError):
            machine.go_to_page(1, {"p1": False}, {})

    def test_unknown_page(self):
        with pytest.raises(NavigationError):
            self.start().go_to_page(7, ALL_ENABLED, {})

    def test_first_enabled_page_at_start(self):
        machine = DisplayStateMachine(paged_form())
        machine.start({"p0": False})
        assert machine.page == 1

    def test_non_linear_ignores_errors(self):
        machine = self.start()
        assert machine.go_to_page(2, ALL_ENABLED, {"p0/q0": Invalid(("bad",))})

    def test_linear_blocks_pages_after_errors(self):
        machine = self.start(navigation_policy=NavigationPolicy.LINEAR)
        results = {"p0/q0": Invalid(("bad",)), "p1/q1": Valid()}
        assert machine.go_to_page(2, ALL_ENABLED, results) is False
        assert machine.page == 0
        assert machine.go_to_page(0, ALL_ENABLED, results)

    def test_linear_ignores_errors_on_disabled_pages(self):
        machine = self.start(navigation_policy=NavigationPolicy.LINEAR)
        results = {"p1/q1": Invalid(("bad",))}
        assert machine.go_to_page(2, {"p1": False}, results)

    def test_reconcile_moves_off_disabled_page(self):
        machine = self.start()
        machine.go_to_page(1, ALL_ENABLED, {})
        machine.reconcile({"p1": False})
        assert machine.page == 2
        machine.reconcile({"p1": False, "p2": False})
        assert machine.page == 0

    def test_reconcile_with_every_page_disabled(self):
        machine = self.start()
        machine.reconcile({"p0": False, "p1": False, "p2": False})
        assert machine.page is None

    def test_household_pages(self):
        machine = self.start(build_household_form())
        assert [page.link_id for page in machine.pages] == ["personal", "household"]


class TestSubmission:
    """Test submit / cancel events."""

    def start(self, **config):
        machine = DisplayStateMachine(build_vitals_form(), EngineConfig(**config))
        events = []
        machine.listeners.append(lambda event, results: events.append(event))
        machine.start(ALL_ENABLED)
        return machine, events

    def test_submit_valid(self):
        machine, events = self.start()
        assert machine.submit({"height": Valid()})
        assert events == [SessionEvent.SUBMITTED]
        assert machine.mode == DisplayMode.EDIT

    def test_submit_blocked_by_invalid(self):
        machine, events = self.start()
        assert machine.submit({"height": Invalid(("bad",))}) is False
        assert events == []

    def test_submit_anyway_needs_configuration(self):
        machine, events = self.start()
        assert machine.submit({"height": Invalid(("bad",))}, anyway=True) is False
        machine, events = self.start(allow_submit_anyway=True)
        assert machine.submit({"height": Invalid(("bad",))}, anyway=True)
        assert events == [SessionEvent.SUBMITTED]

    def test_submit_from_review(self):
        machine, events = self.start(review_enabled=True)
        machine.set_mode(DisplayMode.REVIEW)
        assert machine.submit({})
        assert events == [SessionEvent.SUBMITTED]

    def test_submit_before_start(self):
        machine = DisplayStateMachine(build_vitals_form())
        with pytest.raises(ModeTransitionError):
            machine.submit({})

    def test_cancel(self):
        machine, events = self.start()
        machine.cancel()
        assert events == [SessionEvent.CANCELLED]
