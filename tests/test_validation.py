"""
Tests for the validator.
"""

import datetime

import pytest
from formstate.config import EngineConfig
from formstate.engine import EvaluationEngine
from formstate.examples import build_household_form, build_triage_form
from formstate.model import AnswerOption, Constraint, Expression, Form, Item, ItemType, Quantity
from formstate.registry import StrategyRegistry
from formstate.sync import add_instance, find_node, set_answers, sync_items
from formstate.validation import (
    BUILTIN_TYPE_CHECKS,
    REQUIRED_MESSAGE,
    Invalid,
    NotValidated,
    Valid,
    Validator,
    has_errors,
)


class Checker:
    """Engine, tree and validator over one form."""

    def __init__(self, form, config=None):
        self.form = form
        self.engine = EvaluationEngine(form, config=config)
        self.validator = Validator(self.engine)
        self.items = sync_items(form.items, [])

    def answer(self, path, *values):
        item, node, _ = find_node(self.form.items, self.items, path)
        set_answers(item, node, list(values))

    def add(self, path):
        item, node, _ = find_node(self.form.items, self.items, path)
        add_instance(item, node)

    def results(self):
        snapshot = self.engine.evaluate(self.items)
        return self.validator.validate(self.items, snapshot)


def single(item, *values, config=None):
    checker = Checker(Form(name="f", items=[item]), config)
    if values:
        checker.answer(item.link_id, *values)
    return checker.results()[item.link_id]


class TestRequired:
    """Required questions and groups."""

    def test_missing_required_answer(self):
        assert single(Item(link_id="q", required=True)) == Invalid((REQUIRED_MESSAGE,))

    def test_answered(self):
        assert single(Item(link_id="q", required=True), "x") == Valid()

    def test_required_group_needs_an_answered_descendant(self):
        group = Item(link_id="g", type=ItemType.GROUP, required=True, items=[Item(link_id="a")])
        checker = Checker(Form(name="f", items=[group]))
        assert isinstance(checker.results()["g"], Invalid)
        checker.answer("g/a", "x")
        assert checker.results()["g"] == Valid()

    def test_required_repeating_group_needs_an_instance(self):
        checker = Checker(build_household_form())
        assert checker.results()["household/members"] == Invalid((REQUIRED_MESSAGE,))
        checker.add("household/members")
        results = checker.results()
        assert results["household/members"] == Valid()
        assert results["household/members[0]/memberName"] == Invalid((REQUIRED_MESSAGE,))

    def test_disabled_nodes_are_valid(self):
        checker = Checker(build_household_form())
        checker.answer("personal/hasAddress", False)
        results = checker.results()
        assert results["personal/address"] == Valid()
        assert results["personal/address/street"] == Valid()

    def test_enabled_subtree_is_checked(self):
        checker = Checker(build_household_form())
        checker.answer("personal/hasAddress", True)
        assert checker.results()["personal/address/street"] == Invalid((REQUIRED_MESSAGE,))

    def test_display_items_are_not_validated(self):
        assert single(Item(link_id="d", type=ItemType.DISPLAY, text="Hello")) == NotValidated()


class TestValues:
    """Type, bound and option checks."""

    @pytest.mark.parametrize(
        "item_type, value",
        [
            (ItemType.INTEGER, "12"),
            (ItemType.INTEGER, True),
            (ItemType.DECIMAL, "1.5"),
            (ItemType.BOOLEAN, 1),
            (ItemType.DATE, datetime.datetime(2024, 1, 1, 12)),
            (ItemType.QUANTITY, 70),
        ],
    )
    def test_wrong_type(self, item_type, value):
        assert isinstance(single(Item(link_id="q", type=item_type), value), Invalid)

    @pytest.mark.parametrize(
        "item_type, value",
        [
            (ItemType.INTEGER, 12),
            (ItemType.DECIMAL, 3),
            (ItemType.DATE, datetime.date(2024, 1, 1)),
            (ItemType.TIME, datetime.time(9, 30)),
            (ItemType.QUANTITY, Quantity(70, "kg")),
        ],
    )
    def test_right_type(self, item_type, value):
        assert single(Item(link_id="q", type=item_type), value) == Valid()

    def test_bounds(self):
        item = Item(link_id="age", type=ItemType.INTEGER, min_value=0, max_value=130)
        assert single(item, -1) == Invalid(("Minimum value allowed is 0",))
        assert single(item, 131) == Invalid(("Maximum value allowed is 130",))
        assert single(item, 40) == Valid()

    def test_quantity_bounds_use_the_value(self):
        item = Item(link_id="w", type=ItemType.QUANTITY, max_value=200)
        assert isinstance(single(item, Quantity(250, "kg")), Invalid)

    def test_max_length(self):
        item = Item(link_id="name", max_length=3)
        assert single(item, "abcd") == Invalid(("The maximum number of characters that are permitted is 3",))

    def test_choice_must_be_available(self):
        item = Item(link_id="c", type=ItemType.CHOICE, answer_options=[AnswerOption("a")])
        assert isinstance(single(item, "z"), Invalid)
        assert single(item, "a") == Valid()

    def test_open_choice_accepts_free_text(self):
        item = Item(link_id="c", type=ItemType.OPEN_CHOICE, answer_options=[AnswerOption("a")])
        assert single(item, "anything") == Valid()

    def test_single_answer_for_non_repeating(self):
        result = single(Item(link_id="q"), "a", "b")
        assert isinstance(result, Invalid)
        assert "single answer" in result.messages[0]

    def test_occurrences(self):
        item = Item(link_id="q", repeats=True, min_occurs=2, max_occurs=3)
        assert isinstance(single(item, "a"), Invalid)
        assert single(item, "a", "b") == Valid()
        assert isinstance(single(item, "a", "b", "c", "d"), Invalid)

    def test_custom_type_check_wins(self):
        checks = StrategyRegistry()
        checks.register(lambda item: item.link_id == "code", lambda item, value: None if value.isupper() else "upper case only")
        config = EngineConfig(type_checks=checks)
        assert single(Item(link_id="code"), "abc", config=config) == Invalid(("upper case only",))
        assert single(Item(link_id="code"), "ABC", config=config) == Valid()

    def test_builtin_checks_cover_strings(self):
        check = BUILTIN_TYPE_CHECKS.resolve(Item(link_id="t", type=ItemType.TEXT))
        assert check(Item(link_id="t"), 5) is not None


class TestConstraints:
    """Expression constraints."""

    def test_error_and_warning(self):
        checker = Checker(build_triage_form())
        checker.answer("pain", 11)
        result = checker.results()["pain"]
        assert result == Invalid(
            ("Pain score must be between 0 and 10",),
            ("Severe pain: consider urgent referral",),
        )

    def test_warning_alone_is_valid(self):
        checker = Checker(build_triage_form())
        checker.answer("pain", 9)
        assert checker.results()["pain"] == Valid(("Severe pain: consider urgent referral",))

    def test_unanswered_passes(self):
        assert Checker(build_triage_form()).results()["pain"] == Valid()

    def test_constraint_that_fails_to_evaluate_counts_as_failed(self):
        item = Item(link_id="q", constraints=[Constraint("c1", Expression("%nothing"), "broken")])
        assert single(item, "x") == Invalid(("broken",))


class TestHelpers:
    def test_has_errors(self):
        assert has_errors({"a": Valid(), "b": Invalid(("x",))})
        assert not has_errors({"a": Valid(), "b": NotValidated()})

    def test_validation_is_repeatable(self):
        checker = Checker(build_household_form())
        snapshot = checker.engine.evaluate(checker.items)
        assert checker.validator.validate(checker.items, snapshot) == checker.validator.validate(checker.items, snapshot)
