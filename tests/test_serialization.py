"""
Tests for form and response serialization.
"""

import datetime
import json

import pytest
import yaml
from formstate.errors import DefinitionError
from formstate.examples import build_household_form, build_triage_form, build_vitals_form
from formstate.model import (
    Answer,
    EnableWhenOperator,
    FormResponse,
    ItemType,
    Quantity,
    ResponseNode,
    Severity,
)
from formstate.serialization import (
    CALCULATED_EXPRESSION_URL,
    ITEM_CONTROL_URL,
    form_from_dict,
    form_from_json,
    form_from_yaml,
    form_to_dict,
    form_to_json,
    form_to_yaml,
    item_from_dict,
    load_form,
    load_response,
    response_from_dict,
    response_to_dict,
    response_to_json,
    value_from_dict,
    value_to_dict,
)
from formstate.sync import add_instance, find_node, set_answers, sync_items


class TestValues:
    """Test value encoding."""

    @pytest.mark.parametrize(
        "value, item_type, expected",
        [
            (True, None, {"valueBoolean": True}),
            (3, None, {"valueInteger": 3}),
            (1.5, None, {"valueDecimal": 1.5}),
            ("x", None, {"valueString": "x"}),
            ("gp", ItemType.CHOICE, {"valueCoding": {"code": "gp"}}),
            ("http://a", ItemType.URL, {"valueUri": "http://a"}),
            (datetime.date(2024, 1, 31), None, {"valueDate": "2024-01-31"}),
            (Quantity(70, "kg"), None, {"valueQuantity": {"value": 70, "unit": "kg"}}),
        ],
    )
    def test_value_to_dict(self, value, item_type, expected):
        assert value_to_dict(value, item_type) == expected

    def test_bool_is_not_an_integer(self):
        assert value_to_dict(False) == {"valueBoolean": False}

    def test_unsupported_value(self):
        with pytest.raises(TypeError):
            value_to_dict(object())

    def test_decode_dates(self):
        assert value_from_dict({"valueDate": "2024-01-31"}) == datetime.date(2024, 1, 31)
        assert value_from_dict({"valueDateTime": "2024-01-31T10:00:00"}) == datetime.datetime(2024, 1, 31, 10)

    def test_decode_coding_to_code(self):
        assert value_from_dict({"valueCoding": {"code": "gp", "display": "GP"}}) == "gp"

    def test_decode_with_prefix(self):
        assert value_from_dict({"question": "a", "answerBoolean": True}, prefix="answer") is True

    def test_no_value(self):
        assert value_from_dict({"linkId": "a"}) is None


class TestForms:
    """Test form encoding and decoding."""

    def test_calculated_expression_extension(self):
        d = form_to_dict(build_vitals_form())
        weight = d["item"][1]
        assert weight["extension"][0]["url"] == CALCULATED_EXPRESSION_URL
        assert weight["extension"][0]["valueExpression"]["expression"] == "2 * height"

    def test_decoded_fields(self):
        form = form_from_dict(form_to_dict(build_triage_form()))
        pain = form.get_item("pain")
        assert [c.key for c in pain.constraints] == ["pain-range", "pain-high"]
        assert pain.constraints[1].severity == Severity.WARNING
        referral = form.get_item("referral")
        assert referral.type == ItemType.CHOICE
        assert [t.options for t in referral.answer_options_toggle] == [["home-care"], ["emergency"]]
        assert form.get_item("assessment").variables[0].name == "risk"

    def test_structured_enable_when(self):
        form = form_from_dict(form_to_dict(build_household_form()))
        condition = form.get_item("guardian").enable_when[0]
        assert condition.question == "age"
        assert condition.operator == EnableWhenOperator.LESS_THAN
        assert condition.answer == 18

    def test_pages_and_form_variables(self):
        form = form_from_dict(form_to_dict(build_household_form()))
        assert [page.link_id for page in form.pages()] == ["personal", "household"]
        assert form.variables[0].name == "memberCount"

    @pytest.mark.parametrize("build", [build_vitals_form, build_household_form, build_triage_form])
    def test_dict_is_stable(self, build):
        d = form_to_dict(build())
        assert form_to_dict(form_from_dict(d)) == d

    def test_json_and_yaml(self):
        form = build_triage_form()
        assert form_to_dict(form_from_json(form_to_json(form))) == form_to_dict(form)
        assert form_to_dict(form_from_yaml(form_to_yaml(form))) == form_to_dict(form)

    def test_item_control(self):
        item = item_from_dict(
            {
                "linkId": "p",
                "type": "group",
                "extension": [{"url": ITEM_CONTROL_URL, "valueCodeableConcept": {"coding": [{"code": "page"}]}}],
            }
        )
        assert item.is_page

    def test_unknown_extension_is_ignored(self):
        item = item_from_dict({"linkId": "a", "extension": [{"url": "http://example.org/x", "valueString": "?"}]})
        assert item.link_id == "a"

    def test_missing_link_id(self):
        with pytest.raises(DefinitionError):
            item_from_dict({"type": "string"})

    def test_unknown_type(self):
        with pytest.raises(DefinitionError):
            item_from_dict({"linkId": "a", "type": "hologram"})

    def test_form_must_be_mapping(self):
        with pytest.raises(DefinitionError):
            form_from_dict(["not", "a", "form"])


class TestResponses:
    """Test response encoding and decoding."""

    def household_response(self):
        form = build_household_form()
        items = sync_items(form.items, [])
        members_item, members, _ = find_node(form.items, items, "household/members")
        add_instance(members_item, members)
        add_instance(members_item, members)
        for path, value in (("household/members[0]/memberName", "Ada"), ("household/members[1]/memberName", "Bob")):
            item, node, _ = find_node(form.items, items, path)
            set_answers(item, node, [value])
        return form, FormResponse(form=form.url, items=items)

    def test_repeated_group_instances_are_flattened(self):
        form, response = self.household_response()
        d = response_to_dict(response, form)
        household = d["item"][1]
        members = [node for node in household["item"] if node["linkId"] == "members"]
        assert len(members) == 2
        assert members[1]["item"][0] == {"linkId": "memberName", "answer": [{"valueString": "Bob"}]}

    def test_loaded_response_merges_back(self):
        form, response = self.household_response()
        loaded = response_from_dict(json.loads(response_to_json(response, form)))
        items = sync_items(form.items, loaded.items)
        members = find_node(form.items, items, "household/members")[1]
        assert len(members.answers) == 2
        assert response_to_dict(FormResponse(form=form.url, items=items), form) == response_to_dict(response, form)

    def test_choice_answers_are_codings(self):
        form = build_triage_form()
        response = FormResponse(
            form="triage",
            items=[
                ResponseNode(
                    link_id="assessment",
                    items=[ResponseNode(link_id="referral", answers=[Answer(value="gp")])],
                )
            ],
        )
        d = response_to_dict(response, form)
        assert d["item"][0]["item"][0]["answer"] == [{"valueCoding": {"code": "gp"}}]
        assert response_from_dict(d).items[0].items[0].values() == ["gp"]

    def test_user_edited_is_not_serialized(self):
        response = FormResponse(form="f", items=[ResponseNode(link_id="a", answers=[Answer(1, user_edited=True)])])
        assert response_to_dict(response)["item"] == [{"linkId": "a", "answer": [{"valueInteger": 1}]}]

    def test_header(self):
        d = response_to_dict(FormResponse(form="vitals", status="completed"))
        assert d["resourceType"] == "QuestionnaireResponse"
        assert d["questionnaire"] == "vitals"
        assert d["status"] == "completed"


class TestFiles:
    """Test loading from disk."""

    def test_load_yaml_form(self, tmp_path):
        path = tmp_path / "vitals.yaml"
        path.write_text(yaml.safe_dump(form_to_dict(build_vitals_form())))
        assert load_form(str(path)).get_item("weight").calculated_expression.expression == "2 * height"

    def test_load_json_response(self, tmp_path):
        path = tmp_path / "response.json"
        path.write_text(json.dumps({"questionnaire": "vitals", "item": [{"linkId": "height", "answer": [{"valueDecimal": 1.8}]}]}))
        response = load_response(str(path))
        assert response.form == "vitals"
        assert response.items[0].values() == [1.8]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_form(str(tmp_path / "missing.yaml"))
