"""
Load-time checks of a form definition.

`validate_definition` raises DefinitionError on the first malformed item.
A form that fails here is never evaluated or rendered.

Rules:
    - Link ids are unique among siblings
    - `initial` and `answer_options` exclude each other unless an
      initial expression is present
    - Groups and display items carry no initial values
    - Only repeating items carry more than one initial value
    - enable_when and enable_when_expression exclude each other
    - enable_when questions exist in the form
    - Variables are named, names unique per item
    - Option toggles name at least one option
    - Occurrence bounds apply to repeating items only and are ordered
"""

from typing import List, Set

from formstate.errors import DefinitionError
from formstate.model import Expression, Form, Item


def _check_variables(variables: List[Expression], owner: str) -> None:
    seen: Set[str] = set()
    for variable in variables:
        if not variable.name:
            raise DefinitionError(f"Variable '{variable.expression}' on {owner} has no name", owner)
        if variable.name in seen:
            raise DefinitionError(f"Duplicate variable '{variable.name}' on {owner}", owner)
        seen.add(variable.name)


def _check_siblings(items: List[Item], owner: str) -> None:
    seen: Set[str] = set()
    for item in items:
        if not item.link_id:
            raise DefinitionError(f"Item without link id under {owner}")
        if item.link_id in seen:
            raise DefinitionError(f"Duplicate link id '{item.link_id}' under {owner}", item.link_id)
        seen.add(item.link_id)


def _check_item(item: Item, link_ids: Set[str]) -> None:
    link_id = item.link_id
    initial_selected = [option for option in item.answer_options if option.initial_selected]

    if item.initial and item.answer_options and item.initial_expression is None:
        raise DefinitionError(
            f"Item {link_id} has both initial value(s) and answer options", link_id
        )

    if (item.initial or initial_selected) and (item.is_group or item.is_display):
        raise DefinitionError(
            f"Item {link_id} has initial value(s) and is a {item.type.value} item", link_id
        )

    if (len(item.initial) > 1 or len(initial_selected) > 1) and not item.repeats:
        raise DefinitionError(
            f"Item {link_id} can only have multiple initial values if it repeats", link_id
        )

    if item.enable_when and item.enable_when_expression is not None:
        raise DefinitionError(
            f"Item {link_id} has both enableWhen and enableWhenExpression", link_id
        )

    for condition in item.enable_when:
        if condition.question not in link_ids:
            raise DefinitionError(
                f"Item {link_id} has enableWhen on unknown question '{condition.question}'", link_id
            )

    for toggle in item.answer_options_toggle:
        if not toggle.options:
            raise DefinitionError(
                f"Item {link_id} has an answer options toggle expression without options", link_id
            )

    if (item.min_occurs is not None or item.max_occurs is not None) and not item.repeats:
        raise DefinitionError(f"Item {link_id} has occurrence bounds but does not repeat", link_id)

    if item.min_occurs is not None and item.max_occurs is not None and item.min_occurs > item.max_occurs:
        raise DefinitionError(f"Item {link_id} has min occurs greater than max occurs", link_id)

    _check_variables(item.variables, f"item {link_id}")
    _check_siblings(item.items, f"item {link_id}")


def validate_definition(form: Form) -> None:
    """
    Check a form definition.

    Raises:
        DefinitionError: On the first malformed item
    """
    _check_variables(form.variables, f"form {form.name}")
    _check_siblings(form.items, f"form {form.name}")

    link_ids = {item.link_id for item in form.walk()}
    for item in form.walk():
        _check_item(item, link_ids)
