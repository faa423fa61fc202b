"""
Tests for the evaluator boundary and the reference evaluator.
"""

import datetime

import pytest
from formstate.errors import EvaluationError
from formstate.evaluator import (
    EvaluationContext,
    ReferenceEvaluator,
    references_of,
    scan_references,
)
from formstate.expressions import References


def make_context(answers=None, variables=None):
    answers = answers or {}
    return EvaluationContext(
        key="q",
        link_id="q",
        variables=variables or {},
        answer_lookup=lambda link_id: answers.get(link_id),
    )


@pytest.fixture
def evaluator():
    return ReferenceEvaluator()


class TestEvaluationContext:
    """Test the read-only context handed to evaluators."""

    def test_behaves_as_variable_mapping(self):
        context = make_context(variables={"bmi": 22.5})
        assert context["bmi"] == 22.5
        assert list(context) == ["bmi"]
        assert len(context) == 1

    def test_answers_of_unknown_item(self):
        context = make_context()
        assert context.has_item("nothing") is False
        assert context.answers("nothing") == []


class TestReferenceEvaluator:
    """Test interpretation of the reference syntax."""

    def test_arithmetic_over_answers(self, evaluator):
        assert evaluator.evaluate("2 * height", make_context({"height": [10]})) == 20

    def test_unanswered_operand_is_empty(self, evaluator):
        """Empty answers propagate as None instead of failing."""
        assert evaluator.evaluate("2 * height", make_context({"height": []})) is None

    def test_repeating_answers_collapse_to_list(self, evaluator):
        assert evaluator.evaluate("colors", make_context({"colors": ["red", "blue"]})) == ["red", "blue"]

    def test_variable_reference(self, evaluator):
        assert evaluator.evaluate("%risk + 1", make_context(variables={"risk": 2})) == 3

    def test_bare_name_falls_back_to_variable(self, evaluator):
        assert evaluator.evaluate("risk", make_context(variables={"risk": 2})) == 2

    def test_undefined_reference_fails(self, evaluator):
        with pytest.raises(EvaluationError):
            evaluator.evaluate("%missing", make_context())

    def test_boolean_logic(self, evaluator):
        context = make_context({"hasAddress": [True], "age": [70]})
        assert evaluator.evaluate("hasAddress = true and age > 65", context) is True
        assert evaluator.evaluate("not hasAddress", context) is False

    def test_division_by_zero_fails(self, evaluator):
        with pytest.raises(EvaluationError):
            evaluator.evaluate("1 / 0", make_context())

    def test_type_mismatch_fails(self, evaluator):
        with pytest.raises(EvaluationError):
            evaluator.evaluate("name * 2.5", make_context({"name": ["Ada"]}))

    def test_count_and_sum(self, evaluator):
        context = make_context({"ages": [10, 20, 30]})
        assert evaluator.evaluate("count(ages)", context) == 3
        assert evaluator.evaluate("sum(ages)", context) == 60
        assert evaluator.evaluate("max(ages)", context) == 30

    def test_count_of_nothing_is_zero(self, evaluator):
        assert evaluator.evaluate("count(ages)", make_context({"ages": []})) == 0

    def test_exists_and_empty(self, evaluator):
        context = make_context({"a": [1], "b": []})
        assert evaluator.evaluate("exists(a)", context) is True
        assert evaluator.evaluate("empty(b)", context) is True

    def test_iif(self, evaluator):
        context = make_context({"age": [70]})
        assert evaluator.evaluate("iif(age > 65, 2, 0)", context) == 2
        assert evaluator.evaluate("iif(age < 65, 2)", context) is None

    def test_round(self, evaluator):
        assert evaluator.evaluate("round(3.14159, 2)", make_context()) == 3.14
        assert evaluator.evaluate("round(2.6)", make_context()) == 3

    def test_today(self, evaluator):
        assert evaluator.evaluate("today()", make_context()) == datetime.date.today()

    def test_unknown_function_fails(self, evaluator):
        with pytest.raises(EvaluationError):
            evaluator.evaluate("frobnicate(1)", make_context())


class TestReferenceDiscovery:
    """Test static reference extraction."""

    def test_scan_skips_strings_keywords_and_functions(self):
        refs = scan_references("iif(age > 65 and true, 'old person', %label)")
        assert refs.answers == frozenset(["age"])
        assert refs.variables == frozenset(["label"])

    def test_scan_back_quoted(self):
        assert scan_references("`1.2` + x").answers == frozenset(["1.2", "x"])

    def test_scan_empty(self):
        assert scan_references("").empty

    def test_references_of_prefers_evaluator(self, evaluator):
        assert references_of(evaluator, "2 * height").answers == frozenset(["height"])

    def test_references_of_falls_back_on_parse_failure(self, evaluator):
        """Unparseable text still yields its scanned references."""
        refs = references_of(evaluator, "height # 2")
        assert "height" in refs.answers

    def test_references_of_evaluator_without_references(self):
        class Opaque:
            def evaluate(self, expression, context):
                return None

        assert references_of(Opaque(), "%a + b") == References(frozenset(["b"]), frozenset(["a"]))
