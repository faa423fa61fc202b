"""
Test the example forms used by the demos and the CLI.

Validates that each builder produces a well-formed definition and that a
session over it starts cleanly.
"""

import pytest
from formstate.definition import validate_definition
from formstate.examples import build_household_form, build_triage_form, build_vitals_form
from formstate.session import FormSession


@pytest.mark.parametrize("build", [build_vitals_form, build_household_form, build_triage_form])
def test_example_forms_are_well_formed(build):
    form = build()
    validate_definition(form)
    session = FormSession(form)
    assert session.snapshot.all_errors == []


def test_household_structure():
    form = build_household_form()

    # Two pages: personal details and household members
    assert [page.link_id for page in form.pages()] == ["personal", "household"]

    members = form.get_item("members")
    assert members.is_repeated_group
    assert [child.link_id for child in members.items] == ["memberName", "age", "guardian"]

    assert form.get_item("householdSize").calculated_expression.expression == "%memberCount"


def test_triage_referral_scenario():
    session = FormSession(build_triage_form())
    session.set_answer("age", 72)
    session.set_answer("pain", 4)
    assert session.answers("assessment/riskScore") == [2]
    session.set_answer("assessment/referral", "home-care")

    # A higher pain score switches home care off and emergency on
    session.set_answer("pain", 8)
    assert session.answers("assessment/riskScore") == [5]
    assert session.answers("assessment/referral") == []
    assert session.options("assessment/referral") == ("gp", "emergency")
