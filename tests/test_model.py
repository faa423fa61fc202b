"""
Tests for the core form model objects.

These tests verify:
    - Item classification (question / group / display / page)
    - Where response children live (nests_under_answers)
    - Form traversal and lookup
    - Response node helpers
"""

import pytest
from formstate.model import (
    Answer,
    Expression,
    Form,
    Item,
    ItemType,
    ResponseNode,
)


class TestItemClassification:
    """Test item type helpers."""

    def test_question(self):
        item = Item(link_id="age", type=ItemType.INTEGER)
        assert item.is_question
        assert not item.is_group
        assert not item.is_display

    def test_display_is_not_a_question(self):
        assert not Item(link_id="intro", type=ItemType.DISPLAY).is_question

    def test_repeated_group(self):
        item = Item(link_id="members", type=ItemType.GROUP, repeats=True)
        assert item.is_repeated_group
        assert not Item(link_id="address", type=ItemType.GROUP).is_repeated_group

    def test_page_is_a_group_with_page_control(self):
        assert Item(link_id="p1", type=ItemType.GROUP, item_control="page").is_page
        assert not Item(link_id="q", type=ItemType.STRING, item_control="page").is_page


class TestNestsUnderAnswers:
    """Children of a response node live under answers or directly under the node."""

    def test_plain_group_holds_children_directly(self):
        group = Item(link_id="g", type=ItemType.GROUP, items=[Item(link_id="a")])
        assert group.nests_under_answers is False

    def test_repeating_group_nests_under_answers(self):
        group = Item(link_id="g", type=ItemType.GROUP, repeats=True, items=[Item(link_id="a")])
        assert group.nests_under_answers is True

    def test_question_with_nested_items(self):
        question = Item(link_id="q", type=ItemType.BOOLEAN, items=[Item(link_id="why")])
        assert question.nests_under_answers is True

    def test_leaf_question(self):
        assert Item(link_id="q").nests_under_answers is False


class TestForm:
    """Test Form traversal."""

    def build(self):
        return Form(
            name="f",
            items=[
                Item(link_id="a", type=ItemType.GROUP, items=[Item(link_id="a1"), Item(link_id="a2")]),
                Item(link_id="b"),
            ],
        )

    def test_walk_is_preorder(self):
        assert [item.link_id for item in self.build().walk()] == ["a", "a1", "a2", "b"]

    def test_get_item(self):
        form = self.build()
        assert form.get_item("a2").link_id == "a2"
        assert form.get_item("zzz") is None

    def test_get_child(self):
        form = self.build()
        assert form.items[0].get_child("a1") is not None
        assert form.items[0].get_child("b") is None

    def test_pages(self):
        form = Form(
            name="f",
            items=[
                Item(link_id="p1", type=ItemType.GROUP, item_control="page"),
                Item(link_id="q"),
                Item(link_id="p2", type=ItemType.GROUP, item_control="page"),
            ],
        )
        assert [page.link_id for page in form.pages()] == ["p1", "p2"]

    def test_expression_is_immutable(self):
        expression = Expression("1 + 1", name="two")
        with pytest.raises(AttributeError):
            expression.name = "three"


class TestResponseNode:
    """Test response node helpers."""

    def test_values_skip_empty_answers(self):
        node = ResponseNode(link_id="members", answers=[Answer(), Answer(value=3)])
        assert node.values() == [3]
        assert node.has_answer

    def test_seeded_is_ignored_by_equality(self):
        assert ResponseNode(link_id="a", seeded=True) == ResponseNode(link_id="a")

    def test_get_child(self):
        node = ResponseNode(link_id="g", items=[ResponseNode(link_id="x")])
        assert node.get_child("x").link_id == "x"
        assert node.get_child("y") is None
