"""
Tests for DOT diagram generator.

These tests verify that form dependency graphs are correctly converted to
Graphviz DOT format.

Tests cover:
    - Expression nodes and dependency edges
    - Cycle highlighting
    - Special character escaping
    - Simple, detailed and clustered modes
"""

from formstate.backends.dot_generator import DotMode, _escape_dot_string, generate_dot, save_dot_file
from formstate.examples import build_household_form, build_triage_form, build_vitals_form
from formstate.model import Expression, Form, Item


def cyclic_form():
    return Form(
        name="cyclic",
        items=[
            Item(link_id="a", calculated_expression=Expression("b + 1")),
            Item(link_id="b", calculated_expression=Expression("a + 1")),
        ],
    )


class TestDotBasicStructure:
    """Test basic DOT graph structure."""

    def test_empty_form_generates_valid_dot(self):
        """Should generate valid DOT even for an empty form."""
        dot = generate_dot(Form(name="Empty"))
        assert dot.startswith("digraph form {")
        assert dot.endswith("}")

    def test_expression_becomes_node(self):
        """Each expression should become a node."""
        dot = generate_dot(build_vitals_form())
        assert '"weight:calculated"' in dot

    def test_dependency_becomes_edge(self):
        """A variable read by a calculated expression is an edge."""
        dot = generate_dot(build_household_form())
        assert '"<form>:variable[0]" -> "household/householdSize:calculated";' in dot

    def test_every_reader_gets_an_edge(self):
        dot = generate_dot(build_triage_form())
        source = '"assessment:variable[0]"'
        assert f'{source} -> "assessment/referral:answer-options-toggle[0]";' in dot
        assert f'{source} -> "assessment/referral:answer-options-toggle[1]";' in dot
        assert f'{source} -> "assessment/riskScore:calculated";' in dot

    def test_balanced_braces(self):
        dot = generate_dot(build_triage_form(), mode=DotMode.CLUSTERED)
        assert dot.count("{") == dot.count("}")


class TestDotCycles:
    """Test cycle highlighting."""

    def test_cyclic_nodes_are_red(self):
        dot = generate_dot(cyclic_form())
        assert '"a:calculated" [label="a:calculated", fillcolor=red];' in dot
        assert '"a:calculated" -> "b:calculated" [color=red];' in dot

    def test_acyclic_nodes_are_not_red(self):
        assert "red" not in generate_dot(build_household_form())


class TestDotModes:
    """Test the visualization modes."""

    def test_simple_labels_are_keys(self):
        dot = generate_dot(build_vitals_form(), mode=DotMode.SIMPLE)
        assert "2 * height" not in dot

    def test_detailed_shows_expression_and_position(self):
        """Detailed labels carry the expression text and evaluation position."""
        dot = generate_dot(build_vitals_form(), mode=DotMode.DETAILED)
        assert "2 * height" in dot
        assert "#0" in dot

    def test_detailed_names_variables(self):
        dot = generate_dot(build_triage_form(), mode=DotMode.DETAILED)
        assert "%risk" in dot

    def test_detailed_structured_conditions(self):
        dot = generate_dot(build_household_form(), mode=DotMode.DETAILED)
        assert "enableWhen conditions" in dot

    def test_detailed_truncates_long_expressions(self):
        dot = generate_dot(build_triage_form(), mode=DotMode.DETAILED)
        assert "iif(age > 65, 2, 0) + iif(pain > 6, 3, 0)" not in dot
        assert "..." in dot

    def test_clustered_groups_by_item(self):
        dot = generate_dot(build_triage_form(), mode=DotMode.CLUSTERED)
        assert 'subgraph "cluster_assessment/referral" {' in dot
        assert 'subgraph "cluster_assessment" {' in dot


class TestDotEscaping:
    """Test special character escaping."""

    def test_quotes_are_escaped(self):
        assert _escape_dot_string('say "hi"') == '"say \\"hi\\""'

    def test_newlines_are_escaped(self):
        assert _escape_dot_string("a\nb") == '"a\\nb"'

    def test_empty_string(self):
        assert _escape_dot_string("") == '""'


class TestDotFile:
    def test_save_dot_file(self, tmp_path):
        path = tmp_path / "vitals.dot"
        save_dot_file(build_vitals_form(), str(path), mode=DotMode.DETAILED)
        assert path.read_text() == generate_dot(build_vitals_form(), mode=DotMode.DETAILED)
