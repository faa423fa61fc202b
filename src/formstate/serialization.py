"""
Serialization helpers for forms and responses.

Forms and responses travel as FHIR-style camelCase dicts (Questionnaire /
QuestionnaireResponse shaped), with JSON and YAML variants.

Extensions on items and forms are decoded into the typed fields of
formstate.model at load time and encoded back on dump. Unknown extensions
are ignored.

Response documents list each instance of a repeating group as a sibling
node; `response_to_dict` flattens instances that way and loading a session
merges them back (see formstate.sync.sync_items).
"""

import datetime
import json
import logging
from typing import Any, Dict, List, Optional

import yaml

from formstate.errors import DefinitionError
from formstate.model import (
    Answer,
    AnswerOption,
    Constraint,
    EnableBehavior,
    EnableWhen,
    EnableWhenOperator,
    Expression,
    Form,
    FormResponse,
    Item,
    ItemType,
    OptionToggle,
    Quantity,
    ResponseNode,
    Severity,
)

logger = logging.getLogger(__name__)


SDC = "http://hl7.org/fhir/uv/sdc/StructureDefinition/"
CORE = "http://hl7.org/fhir/StructureDefinition/"

VARIABLE_URL = CORE + "variable"
ENABLE_WHEN_EXPRESSION_URL = SDC + "sdc-questionnaire-enableWhenExpression"
CALCULATED_EXPRESSION_URL = SDC + "sdc-questionnaire-calculatedExpression"
INITIAL_EXPRESSION_URL = SDC + "sdc-questionnaire-initialExpression"
ANSWER_EXPRESSION_URL = SDC + "sdc-questionnaire-answerExpression"
CANDIDATE_EXPRESSION_URL = SDC + "sdc-questionnaire-candidateExpression"
ANSWER_OPTIONS_TOGGLE_URL = SDC + "sdc-questionnaire-answerOptionsToggleExpression"
CONSTRAINT_URL = CORE + "questionnaire-constraint"
HIDDEN_URL = CORE + "questionnaire-hidden"
ITEM_CONTROL_URL = CORE + "questionnaire-itemControl"
ITEM_CONTROL_SYSTEM = "http://hl7.org/fhir/questionnaire-item-control"
MIN_OCCURS_URL = CORE + "questionnaire-minOccurs"
MAX_OCCURS_URL = CORE + "questionnaire-maxOccurs"
MIN_VALUE_URL = CORE + "minValue"
MAX_VALUE_URL = CORE + "maxValue"

DEFAULT_LANGUAGE = "text/fhirpath"


# ============================================================================
# Values
# ============================================================================


def value_to_dict(value: Any, item_type: Optional[ItemType] = None, prefix: str = "value") -> Dict[str, Any]:
    """Encode a value as {"value<Type>": ...}."""
    if isinstance(value, bool):
        return {prefix + "Boolean": value}
    if isinstance(value, int):
        return {prefix + "Integer": value}
    if isinstance(value, float):
        return {prefix + "Decimal": value}
    if isinstance(value, datetime.datetime):
        return {prefix + "DateTime": value.isoformat()}
    if isinstance(value, datetime.date):
        return {prefix + "Date": value.isoformat()}
    if isinstance(value, datetime.time):
        return {prefix + "Time": value.isoformat()}
    if isinstance(value, Quantity):
        return {prefix + "Quantity": {k: v for k, v in (("value", value.value), ("unit", value.unit)) if v is not None}}
    if isinstance(value, str):
        if item_type in (ItemType.CHOICE, ItemType.OPEN_CHOICE):
            return {prefix + "Coding": {"code": value}}
        if item_type == ItemType.URL:
            return {prefix + "Uri": value}
        return {prefix + "String": value}
    if isinstance(value, dict):
        if item_type == ItemType.ATTACHMENT:
            return {prefix + "Attachment": value}
        return {prefix + "Reference": value}
    raise TypeError(f"Unsupported value type: {type(value)}")


def value_from_dict(d: Dict[str, Any], prefix: str = "value") -> Any:
    """Decode the first "value<Type>" entry of a dict, or None."""
    for key, raw in d.items():
        if not key.startswith(prefix) or key == prefix:
            continue
        kind = key[len(prefix):]
        if kind == "Date":
            return datetime.date.fromisoformat(raw)
        if kind == "DateTime":
            return datetime.datetime.fromisoformat(raw)
        if kind == "Time":
            return datetime.time.fromisoformat(raw)
        if kind == "Coding":
            return raw.get("code")
        if kind == "Quantity":
            return Quantity(value=raw.get("value"), unit=raw.get("unit", raw.get("code")))
        if kind == "Expression":
            continue
        return raw
    return None


# ============================================================================
# Expressions and extensions
# ============================================================================


def expression_to_dict(e: Expression) -> Dict[str, Any]:
    d = {"language": e.language or DEFAULT_LANGUAGE, "expression": e.expression}
    if e.name:
        d["name"] = e.name
    return d


def expression_from_dict(d: Dict[str, Any]) -> Expression:
    return Expression(expression=d["expression"], name=d.get("name"), language=d.get("language"))


def _extension(url: str, **value: Any) -> Dict[str, Any]:
    return {"url": url, **value}


def _expression_extension(url: str, e: Optional[Expression]) -> List[Dict[str, Any]]:
    if e is None:
        return []
    return [_extension(url, valueExpression=expression_to_dict(e))]


def _sub_extensions(ext: Dict[str, Any], url: str) -> List[Dict[str, Any]]:
    return [sub for sub in ext.get("extension", []) if sub.get("url") == url]


def _constraint_from_extension(ext: Dict[str, Any]) -> Constraint:
    fields = {sub["url"]: sub for sub in ext.get("extension", [])}
    try:
        key = fields["key"]["valueId"]
        expression = fields["expression"]["valueString"]
    except KeyError as e:
        raise DefinitionError(f"Constraint extension without {e}")
    severity = fields.get("severity", {}).get("valueCode", "error")
    human = fields.get("human", {}).get("valueString", "")
    return Constraint(key=key, expression=Expression(expression), human=human, severity=Severity(severity))


def _constraint_to_extension(c: Constraint) -> Dict[str, Any]:
    return _extension(
        CONSTRAINT_URL,
        extension=[
            {"url": "key", "valueId": c.key},
            {"url": "severity", "valueCode": c.severity.value},
            {"url": "expression", "valueString": c.expression.expression},
            {"url": "human", "valueString": c.human},
        ],
    )


def _toggle_from_extension(ext: Dict[str, Any]) -> OptionToggle:
    options = [value_from_dict(sub) for sub in _sub_extensions(ext, "option")]
    expressions = _sub_extensions(ext, "expression")
    if not expressions:
        raise DefinitionError("answerOptionsToggleExpression without expression")
    return OptionToggle(expression=expression_from_dict(expressions[0]["valueExpression"]), options=options)


def _toggle_to_extension(t: OptionToggle, item_type: ItemType) -> Dict[str, Any]:
    subs = [{"url": "option", **value_to_dict(v, item_type)} for v in t.options]
    subs.append({"url": "expression", "valueExpression": expression_to_dict(t.expression)})
    return _extension(ANSWER_OPTIONS_TOGGLE_URL, extension=subs)


def _item_control_from_extension(ext: Dict[str, Any]) -> Optional[str]:
    codings = ext.get("valueCodeableConcept", {}).get("coding", [])
    return codings[0].get("code") if codings else None


def _apply_extensions(item: Item, extensions: List[Dict[str, Any]]) -> None:
    for ext in extensions:
        url = ext.get("url")
        if url == VARIABLE_URL:
            item.variables.append(expression_from_dict(ext["valueExpression"]))
        elif url == ENABLE_WHEN_EXPRESSION_URL:
            item.enable_when_expression = expression_from_dict(ext["valueExpression"])
        elif url == CALCULATED_EXPRESSION_URL:
            item.calculated_expression = expression_from_dict(ext["valueExpression"])
        elif url == INITIAL_EXPRESSION_URL:
            item.initial_expression = expression_from_dict(ext["valueExpression"])
        elif url == ANSWER_EXPRESSION_URL:
            item.answer_expression = expression_from_dict(ext["valueExpression"])
        elif url == CANDIDATE_EXPRESSION_URL:
            item.candidate_expression = expression_from_dict(ext["valueExpression"])
        elif url == ANSWER_OPTIONS_TOGGLE_URL:
            item.answer_options_toggle.append(_toggle_from_extension(ext))
        elif url == CONSTRAINT_URL:
            item.constraints.append(_constraint_from_extension(ext))
        elif url == HIDDEN_URL:
            item.hidden = bool(ext.get("valueBoolean"))
        elif url == ITEM_CONTROL_URL:
            item.item_control = _item_control_from_extension(ext)
        elif url == MIN_OCCURS_URL:
            item.min_occurs = ext.get("valueInteger")
        elif url == MAX_OCCURS_URL:
            item.max_occurs = ext.get("valueInteger")
        elif url == MIN_VALUE_URL:
            item.min_value = value_from_dict(ext)
        elif url == MAX_VALUE_URL:
            item.max_value = value_from_dict(ext)
        else:
            logger.debug("Ignoring extension %s on item %s", url, item.link_id)


def _item_extensions(item: Item) -> List[Dict[str, Any]]:
    extensions = [_extension(VARIABLE_URL, valueExpression=expression_to_dict(v)) for v in item.variables]
    extensions += _expression_extension(ENABLE_WHEN_EXPRESSION_URL, item.enable_when_expression)
    extensions += _expression_extension(CALCULATED_EXPRESSION_URL, item.calculated_expression)
    extensions += _expression_extension(INITIAL_EXPRESSION_URL, item.initial_expression)
    extensions += _expression_extension(ANSWER_EXPRESSION_URL, item.answer_expression)
    extensions += _expression_extension(CANDIDATE_EXPRESSION_URL, item.candidate_expression)
    extensions += [_toggle_to_extension(t, item.type) for t in item.answer_options_toggle]
    extensions += [_constraint_to_extension(c) for c in item.constraints]
    if item.hidden:
        extensions.append(_extension(HIDDEN_URL, valueBoolean=True))
    if item.item_control:
        extensions.append(
            _extension(
                ITEM_CONTROL_URL,
                valueCodeableConcept={"coding": [{"system": ITEM_CONTROL_SYSTEM, "code": item.item_control}]},
            )
        )
    if item.min_occurs is not None:
        extensions.append(_extension(MIN_OCCURS_URL, valueInteger=item.min_occurs))
    if item.max_occurs is not None:
        extensions.append(_extension(MAX_OCCURS_URL, valueInteger=item.max_occurs))
    if item.min_value is not None:
        extensions.append({"url": MIN_VALUE_URL, **value_to_dict(item.min_value, item.type)})
    if item.max_value is not None:
        extensions.append({"url": MAX_VALUE_URL, **value_to_dict(item.max_value, item.type)})
    return extensions


# ============================================================================
# Items and forms
# ============================================================================


def enable_when_to_dict(e: EnableWhen, item_type: Optional[ItemType] = None) -> Dict[str, Any]:
    d = {"question": e.question, "operator": e.operator.value}
    d.update(value_to_dict(e.answer, item_type, prefix="answer"))
    return d


def enable_when_from_dict(d: Dict[str, Any]) -> EnableWhen:
    try:
        operator = EnableWhenOperator(d["operator"])
    except ValueError:
        raise DefinitionError(f"Unknown enableWhen operator: {d['operator']}")
    return EnableWhen(question=d["question"], operator=operator, answer=value_from_dict(d, prefix="answer"))


def item_to_dict(item: Item, types: Optional[Dict[str, ItemType]] = None) -> Dict[str, Any]:
    d: Dict[str, Any] = {"linkId": item.link_id, "type": item.type.value}
    if item.text:
        d["text"] = item.text
    if item.repeats:
        d["repeats"] = True
    if item.required:
        d["required"] = True
    if item.read_only:
        d["readOnly"] = True
    if item.max_length is not None:
        d["maxLength"] = item.max_length
    if item.initial:
        d["initial"] = [value_to_dict(v, item.type) for v in item.initial]
    if item.answer_options:
        d["answerOption"] = [
            {**value_to_dict(o.value, item.type), **({"initialSelected": True} if o.initial_selected else {})}
            for o in item.answer_options
        ]
    if item.enable_when:
        types = types or {}
        d["enableWhen"] = [enable_when_to_dict(e, types.get(e.question)) for e in item.enable_when]
        if len(item.enable_when) > 1:
            d["enableBehavior"] = item.enable_behavior.value
    extensions = _item_extensions(item)
    if extensions:
        d["extension"] = extensions
    if item.items:
        d["item"] = [item_to_dict(child, types) for child in item.items]
    return d


def item_from_dict(d: Dict[str, Any]) -> Item:
    if "linkId" not in d:
        raise DefinitionError(f"Item without linkId: {d}")
    try:
        item_type = ItemType(d.get("type", "string"))
    except ValueError:
        raise DefinitionError(f"Item {d['linkId']} has unknown type {d.get('type')!r}", d["linkId"])

    item = Item(
        link_id=d["linkId"],
        type=item_type,
        text=d.get("text", ""),
        repeats=d.get("repeats", False),
        required=d.get("required", False),
        read_only=d.get("readOnly", False),
        max_length=d.get("maxLength"),
        initial=[value_from_dict(v) for v in d.get("initial", [])],
        answer_options=[
            AnswerOption(value=value_from_dict(o), initial_selected=o.get("initialSelected", False))
            for o in d.get("answerOption", [])
        ],
        enable_when=[enable_when_from_dict(e) for e in d.get("enableWhen", [])],
        enable_behavior=EnableBehavior(d.get("enableBehavior", "all")),
        items=[item_from_dict(child) for child in d.get("item", [])],
    )
    _apply_extensions(item, d.get("extension", []))
    return item


def form_to_dict(form: Form) -> Dict[str, Any]:
    types = {item.link_id: item.type for item in form.walk()}
    d: Dict[str, Any] = {"resourceType": "Questionnaire", "name": form.name}
    if form.url:
        d["url"] = form.url
    if form.variables:
        d["extension"] = [_extension(VARIABLE_URL, valueExpression=expression_to_dict(v)) for v in form.variables]
    d["item"] = [item_to_dict(item, types) for item in form.items]
    if form.metadata:
        d["metadata"] = form.metadata
    return d


def form_from_dict(d: Dict[str, Any]) -> Form:
    if not isinstance(d, dict):
        raise DefinitionError("Form document must be a mapping")
    variables = [
        expression_from_dict(ext["valueExpression"])
        for ext in d.get("extension", [])
        if ext.get("url") == VARIABLE_URL
    ]
    return Form(
        name=d.get("name") or d.get("id") or "",
        url=d.get("url"),
        items=[item_from_dict(item) for item in d.get("item", [])],
        variables=variables,
        metadata=d.get("metadata", {}),
    )


# ============================================================================
# Responses
# ============================================================================


def _node_to_dicts(node: ResponseNode, item: Optional[Item]) -> List[Dict[str, Any]]:
    children = {child.link_id: child for child in item.items} if item is not None else {}
    item_type = item.type if item is not None else None

    if item is not None and item.is_repeated_group:
        return [
            {"linkId": node.link_id, "item": _nodes_to_dicts(answer.items, children)}
            for answer in node.answers
        ]

    d: Dict[str, Any] = {"linkId": node.link_id}
    answers = []
    for answer in node.answers:
        a = value_to_dict(answer.value, item_type) if answer.value is not None else {}
        if answer.items:
            a["item"] = _nodes_to_dicts(answer.items, children)
        answers.append(a)
    if answers:
        d["answer"] = answers
    if node.items:
        d["item"] = _nodes_to_dicts(node.items, children)
    return [d]


def _nodes_to_dicts(nodes: List[ResponseNode], items: Dict[str, Item]) -> List[Dict[str, Any]]:
    result = []
    for node in nodes:
        result.extend(_node_to_dicts(node, items.get(node.link_id)))
    return result


def response_to_dict(response: FormResponse, form: Optional[Form] = None) -> Dict[str, Any]:
    """
    Encode a response. With the form definition, repeating-group instances
    are flattened into sibling nodes and values are encoded per item type.
    """
    items = {item.link_id: item for item in form.items} if form is not None else {}
    return {
        "resourceType": "QuestionnaireResponse",
        "questionnaire": response.form,
        "status": response.status,
        "item": _nodes_to_dicts(response.items, items),
    }


def node_from_dict(d: Dict[str, Any]) -> ResponseNode:
    answers = []
    for a in d.get("answer", []):
        answers.append(Answer(value=value_from_dict(a), items=[node_from_dict(i) for i in a.get("item", [])]))
    return ResponseNode(
        link_id=d["linkId"],
        answers=answers,
        items=[node_from_dict(i) for i in d.get("item", [])],
    )


def response_from_dict(d: Dict[str, Any]) -> FormResponse:
    return FormResponse(
        form=d.get("questionnaire", ""),
        items=[node_from_dict(i) for i in d.get("item", [])],
        status=d.get("status", "in-progress"),
    )


# ============================================================================
# JSON / YAML
# ============================================================================


def form_to_json(form: Form) -> str:
    return json.dumps(form_to_dict(form), sort_keys=True)


def form_from_json(s: str) -> Form:
    return form_from_dict(json.loads(s))


def form_to_yaml(form: Form) -> str:
    return yaml.safe_dump(form_to_dict(form), sort_keys=False)


def form_from_yaml(s: str) -> Form:
    return form_from_dict(yaml.safe_load(s))


def response_to_json(response: FormResponse, form: Optional[Form] = None) -> str:
    return json.dumps(response_to_dict(response, form), sort_keys=True)


def response_from_json(s: str) -> FormResponse:
    return response_from_dict(json.loads(s))


def response_to_yaml(response: FormResponse, form: Optional[Form] = None) -> str:
    return yaml.safe_dump(response_to_dict(response, form), sort_keys=False)


def response_from_yaml(s: str) -> FormResponse:
    return response_from_dict(yaml.safe_load(s))


def _read(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        text = f.read()
    if path.endswith(".json"):
        return json.loads(text)
    return yaml.safe_load(text)


def load_form(path: str) -> Form:
    """Load a form from a .json or .yaml/.yml file."""
    return form_from_dict(_read(path))


def load_response(path: str) -> FormResponse:
    """Load a response from a .json or .yaml/.yml file."""
    return response_from_dict(_read(path))
