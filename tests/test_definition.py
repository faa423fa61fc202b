"""
Tests for load-time definition checks.
"""

import pytest
from formstate.definition import validate_definition
from formstate.errors import DefinitionError
from formstate.examples import build_household_form, build_triage_form, build_vitals_form
from formstate.model import (
    AnswerOption,
    EnableWhen,
    EnableWhenOperator,
    Expression,
    Form,
    Item,
    ItemType,
    OptionToggle,
)


def form_of(*items, variables=None):
    return Form(name="f", items=list(items), variables=variables or [])


class TestValidForms:
    """Example forms pass the checks."""

    @pytest.mark.parametrize("build", [build_vitals_form, build_household_form, build_triage_form])
    def test_examples(self, build):
        validate_definition(build())

    def test_initial_with_options_allowed_with_initial_expression(self):
        item = Item(
            link_id="c",
            type=ItemType.CHOICE,
            initial=["a"],
            answer_options=[AnswerOption("a")],
            initial_expression=Expression("'a'"),
        )
        validate_definition(form_of(item))


class TestInvalidForms:
    """Each malformed definition raises DefinitionError naming the item."""

    def test_initial_and_answer_options(self):
        item = Item(link_id="c", type=ItemType.CHOICE, initial=["a"], answer_options=[AnswerOption("a")])
        with pytest.raises(DefinitionError) as info:
            validate_definition(form_of(item))
        assert info.value.link_id == "c"

    def test_initial_on_group(self):
        with pytest.raises(DefinitionError):
            validate_definition(form_of(Item(link_id="g", type=ItemType.GROUP, initial=[1])))

    def test_multiple_initial_values_on_non_repeating_item(self):
        with pytest.raises(DefinitionError):
            validate_definition(form_of(Item(link_id="q", type=ItemType.INTEGER, initial=[1, 2])))

    def test_multiple_initial_values_on_repeating_item(self):
        validate_definition(form_of(Item(link_id="q", type=ItemType.INTEGER, repeats=True, initial=[1, 2])))

    def test_multiple_initially_selected_options(self):
        item = Item(
            link_id="c",
            type=ItemType.CHOICE,
            answer_options=[AnswerOption("a", True), AnswerOption("b", True)],
        )
        with pytest.raises(DefinitionError):
            validate_definition(form_of(item))

    def test_enable_when_with_enable_when_expression(self):
        item = Item(
            link_id="q",
            enable_when=[EnableWhen("q0", EnableWhenOperator.EXISTS, True)],
            enable_when_expression=Expression("true"),
        )
        with pytest.raises(DefinitionError):
            validate_definition(form_of(Item(link_id="q0"), item))

    def test_enable_when_on_unknown_question(self):
        item = Item(link_id="q", enable_when=[EnableWhen("nope", EnableWhenOperator.EXISTS, True)])
        with pytest.raises(DefinitionError):
            validate_definition(form_of(item))

    def test_toggle_without_options(self):
        item = Item(
            link_id="c",
            type=ItemType.CHOICE,
            answer_options=[AnswerOption("a")],
            answer_options_toggle=[OptionToggle(Expression("true"), [])],
        )
        with pytest.raises(DefinitionError):
            validate_definition(form_of(item))

    def test_duplicate_sibling_link_ids(self):
        with pytest.raises(DefinitionError):
            validate_definition(form_of(Item(link_id="a"), Item(link_id="a")))

    def test_same_link_id_under_different_parents(self):
        """Link ids only need to be unique among siblings."""
        validate_definition(
            form_of(
                Item(link_id="g1", type=ItemType.GROUP, items=[Item(link_id="name")]),
                Item(link_id="g2", type=ItemType.GROUP, items=[Item(link_id="name")]),
            )
        )

    def test_unnamed_variable(self):
        with pytest.raises(DefinitionError):
            validate_definition(form_of(Item(link_id="a"), variables=[Expression("1")]))

    def test_duplicate_variable_names(self):
        item = Item(link_id="a", variables=[Expression("1", name="x"), Expression("2", name="x")])
        with pytest.raises(DefinitionError):
            validate_definition(form_of(item))

    def test_occurrence_bounds_on_non_repeating_item(self):
        with pytest.raises(DefinitionError):
            validate_definition(form_of(Item(link_id="a", min_occurs=1)))

    def test_min_occurs_above_max_occurs(self):
        with pytest.raises(DefinitionError):
            validate_definition(form_of(Item(link_id="a", repeats=True, min_occurs=3, max_occurs=1)))
