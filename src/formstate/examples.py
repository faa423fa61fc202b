"""
Example forms used by the demos, the CLI smoke tests and the test suite.

    build_vitals_form()     calculated answer over another answer
    build_household_form()  pages, enable conditions, a repeating group
    build_triage_form()     variables, option toggles, constraints
"""

from formstate.model import (
    AnswerOption,
    Constraint,
    EnableWhen,
    EnableWhenOperator,
    Expression,
    Form,
    Item,
    ItemType,
    OptionToggle,
    Severity,
)


def build_vitals_form() -> Form:
    return Form(
        name="vitals",
        url="http://example.org/forms/vitals",
        items=[
            Item(link_id="height", type=ItemType.DECIMAL, text="Height (m)"),
            Item(
                link_id="weight",
                type=ItemType.DECIMAL,
                text="Weight (kg)",
                calculated_expression=Expression("2 * height"),
            ),
        ],
    )


def build_household_form() -> Form:
    """
    Two pages. The address group is enabled once hasAddress is true, and
    every member instance needs a name.
    """
    personal = Item(
        link_id="personal",
        type=ItemType.GROUP,
        text="About you",
        item_control="page",
        items=[
            Item(link_id="name", type=ItemType.STRING, text="Name", required=True, max_length=80),
            Item(link_id="hasAddress", type=ItemType.BOOLEAN, text="Do you have a fixed address?"),
            Item(
                link_id="address",
                type=ItemType.GROUP,
                text="Address",
                enable_when_expression=Expression("hasAddress = true"),
                items=[
                    Item(link_id="street", type=ItemType.STRING, text="Street", required=True),
                    Item(link_id="city", type=ItemType.STRING, text="City"),
                ],
            ),
        ],
    )

    household = Item(
        link_id="household",
        type=ItemType.GROUP,
        text="Household",
        item_control="page",
        items=[
            Item(
                link_id="members",
                type=ItemType.GROUP,
                text="Members",
                repeats=True,
                required=True,
                items=[
                    Item(link_id="memberName", type=ItemType.STRING, text="Name", required=True),
                    Item(link_id="age", type=ItemType.INTEGER, text="Age", min_value=0, max_value=130),
                    Item(
                        link_id="guardian",
                        type=ItemType.STRING,
                        text="Guardian",
                        enable_when=[EnableWhen("age", EnableWhenOperator.LESS_THAN, 18)],
                    ),
                ],
            ),
            Item(
                link_id="householdSize",
                type=ItemType.INTEGER,
                text="Household size",
                read_only=True,
                calculated_expression=Expression("%memberCount"),
            ),
        ],
    )

    return Form(
        name="household",
        items=[personal, household],
        variables=[Expression("count(memberName)", name="memberCount")],
    )


def build_triage_form() -> Form:
    """
    The referral options depend on the computed risk score; the pain score
    carries an error constraint and a warning constraint.
    """
    return Form(
        name="triage",
        items=[
            Item(link_id="age", type=ItemType.INTEGER, text="Age", required=True),
            Item(
                link_id="pain",
                type=ItemType.INTEGER,
                text="Pain score (0-10)",
                constraints=[
                    Constraint(
                        key="pain-range",
                        expression=Expression("empty(pain) or (pain >= 0 and pain <= 10)"),
                        human="Pain score must be between 0 and 10",
                    ),
                    Constraint(
                        key="pain-high",
                        expression=Expression("empty(pain) or pain < 8"),
                        human="Severe pain: consider urgent referral",
                        severity=Severity.WARNING,
                    ),
                ],
            ),
            Item(
                link_id="assessment",
                type=ItemType.GROUP,
                text="Assessment",
                variables=[Expression("iif(age > 65, 2, 0) + iif(pain > 6, 3, 0)", name="risk")],
                items=[
                    Item(
                        link_id="riskScore",
                        type=ItemType.INTEGER,
                        text="Risk score",
                        read_only=True,
                        calculated_expression=Expression("%risk"),
                    ),
                    Item(
                        link_id="referral",
                        type=ItemType.CHOICE,
                        text="Referral",
                        answer_options=[
                            AnswerOption("home-care"),
                            AnswerOption("gp"),
                            AnswerOption("emergency"),
                        ],
                        answer_options_toggle=[
                            OptionToggle(Expression("%risk < 3"), ["home-care"]),
                            OptionToggle(Expression("%risk >= 3"), ["emergency"]),
                        ],
                    ),
                ],
            ),
        ],
    )
