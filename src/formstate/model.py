"""
Core Form Model Objects

Defines the two trees the engine works on:

    Definition side (read-only after load):
        - Expression, EnableWhen, AnswerOption, OptionToggle, Constraint
        - Item (question, group, or display text)
        - Form (root container)

    Response side (mutated during an editing session):
        - Answer
        - ResponseNode
        - FormResponse

ARCHITECTURAL RULE:
    These objects:
        - Know nothing about rendering or the expression language
        - Hold typed fields only (no open extension bags)
        - Represent structure, not behavior
    Evaluation lives in formstate.engine, structure changes in formstate.sync.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional


class ItemType(Enum):
    """Item types of the form definition format."""

    GROUP = "group"
    DISPLAY = "display"
    BOOLEAN = "boolean"
    DECIMAL = "decimal"
    INTEGER = "integer"
    DATE = "date"
    DATETIME = "dateTime"
    TIME = "time"
    STRING = "string"
    TEXT = "text"
    URL = "url"
    CHOICE = "choice"
    OPEN_CHOICE = "open-choice"
    ATTACHMENT = "attachment"
    REFERENCE = "reference"
    QUANTITY = "quantity"


class EnableWhenOperator(Enum):
    """Operators of structured enableWhen conditions."""

    EXISTS = "exists"
    EQUALS = "="
    NOT_EQUALS = "!="
    GREATER_THAN = ">"
    LESS_THAN = "<"
    GREATER_EQUAL = ">="
    LESS_EQUAL = "<="


class EnableBehavior(Enum):
    """How multiple enableWhen conditions combine."""

    ALL = "all"
    ANY = "any"


class Severity(Enum):
    """Constraint severity. Only ERROR blocks submission."""

    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class Expression:
    """
    A declarative formula evaluated by the external evaluator.

    Properties:
        expression: The expression text handed to the evaluator
        name: Variable name (required for variables, optional otherwise)
        language: Media type of the expression language (informational)
    """

    expression: str
    name: Optional[str] = None
    language: Optional[str] = None


@dataclass(frozen=True)
class Quantity:
    """Value of a quantity item."""

    value: Optional[float] = None
    unit: Optional[str] = None


@dataclass(frozen=True)
class EnableWhen:
    """
    Structured enable condition.

    Example:
        EnableWhen(question="hasAddress", operator=EnableWhenOperator.EQUALS, answer=True)

    With EXISTS, `answer` is the expected boolean: True means "has an answer".
    """

    question: str
    operator: EnableWhenOperator
    answer: Any = None


@dataclass(frozen=True)
class AnswerOption:
    """A permitted answer value, optionally selected initially."""

    value: Any
    initial_selected: bool = False


@dataclass(frozen=True)
class OptionToggle:
    """
    Enables `options` while `expression` evaluates to true.

    Options named by at least one toggle are unavailable unless one of their
    toggles is on. Options named by no toggle are always available.
    """

    expression: Expression
    options: List[Any] = field(default_factory=list)


@dataclass(frozen=True)
class Constraint:
    """
    Expression-based validation rule.

    Properties:
        key: Constraint identifier
        severity: ERROR yields Invalid, WARNING a non-blocking warning
        expression: Must evaluate to true for the answer to be accepted
        human: Message shown when the rule fails
    """

    key: str
    expression: Expression
    human: str = ""
    severity: Severity = Severity.ERROR


@dataclass
class Item:
    """
    One node of the form definition tree.

    Properties:
        link_id:
            Identifier, unique among siblings. Not globally unique once
            nested under repeated groups in the response tree.

        type:
            ItemType

        repeats:
            Repeating question (many answers) or repeating group (many instances)

        items:
            Ordered child items

        initial / answer_options[].initial_selected / initial_expression:
            Initial answer declarations. `initial` and initially selected
            options are mutually exclusive (see formstate.definition).

        enable_when / enable_behavior / enable_when_expression:
            Enable conditions (structured OR expression, never both)

        variables:
            Named expressions visible to this item and its descendants

        calculated_expression:
            Computed answer, written unless the user edited the answer

        answer_expression / candidate_expression:
            Dynamic answer-option set

        answer_options_toggle:
            Expression-controlled availability of answer options

        constraints:
            Expression-based validation rules

        min_occurs / max_occurs:
            Occurrence bounds for repeating items

        item_control:
            Rendering hint code. "page" on a top-level group marks a page.

    ARCHITECTURAL RULE:
        Items are read-only once a form is loaded. Definition edits are
        unsupported; load a new Form instead.
    """

    link_id: str
    type: ItemType = ItemType.STRING
    text: str = ""
    repeats: bool = False
    required: bool = False
    read_only: bool = False
    hidden: bool = False
    item_control: Optional[str] = None
    items: List["Item"] = field(default_factory=list)
    initial: List[Any] = field(default_factory=list)
    answer_options: List[AnswerOption] = field(default_factory=list)
    enable_when: List[EnableWhen] = field(default_factory=list)
    enable_behavior: EnableBehavior = EnableBehavior.ALL
    enable_when_expression: Optional[Expression] = None
    variables: List[Expression] = field(default_factory=list)
    calculated_expression: Optional[Expression] = None
    initial_expression: Optional[Expression] = None
    answer_expression: Optional[Expression] = None
    candidate_expression: Optional[Expression] = None
    answer_options_toggle: List[OptionToggle] = field(default_factory=list)
    constraints: List[Constraint] = field(default_factory=list)
    min_occurs: Optional[int] = None
    max_occurs: Optional[int] = None
    min_value: Any = None
    max_value: Any = None
    max_length: Optional[int] = None

    @property
    def is_group(self) -> bool:
        return self.type == ItemType.GROUP

    @property
    def is_display(self) -> bool:
        return self.type == ItemType.DISPLAY

    @property
    def is_question(self) -> bool:
        return self.type not in (ItemType.GROUP, ItemType.DISPLAY)

    @property
    def is_repeated_group(self) -> bool:
        return self.type == ItemType.GROUP and self.repeats

    @property
    def is_page(self) -> bool:
        return self.type == ItemType.GROUP and self.item_control == "page"

    @property
    def nests_under_answers(self) -> bool:
        """
        Whether response children live under each Answer.

        True for questions with nested items and for repeating groups (each
        Answer is one instance). Non-repeating groups hold their children
        directly.
        """
        return bool(self.items) and (self.type != ItemType.GROUP or self.repeats)

    def get_child(self, link_id: str) -> Optional["Item"]:
        for child in self.items:
            if child.link_id == link_id:
                return child
        return None


@dataclass
class Form:
    """
    Root container of a form definition.

    Properties:
        name: Form identifier
        items: Top-level items
        variables: Root variables, visible to every item
        url: Canonical URL of the definition (optional)
        metadata: Arbitrary key-value pairs (use sparingly)
    """

    name: str
    items: List[Item] = field(default_factory=list)
    variables: List[Expression] = field(default_factory=list)
    url: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    def walk(self) -> Iterator[Item]:
        """Yield every item in document (pre-)order."""
        stack = list(reversed(self.items))
        while stack:
            item = stack.pop()
            yield item
            stack.extend(reversed(item.items))

    def flattened(self) -> List[Item]:
        return list(self.walk())

    def get_item(self, link_id: str) -> Optional[Item]:
        """
        Retrieve the first item (document order) with this link id.

        Returns:
            Item or None if not found
        """
        for item in self.walk():
            if item.link_id == link_id:
                return item
        return None

    def pages(self) -> List[Item]:
        return [item for item in self.items if item.is_page]


@dataclass
class Answer:
    """
    One answer of a response node.

    For repeating groups an Answer is one group instance (value stays None
    and `items` holds the instance's children).

    `user_edited` marks answers set by the user; calculated expressions do
    not overwrite them.
    """

    value: Any = None
    items: List["ResponseNode"] = field(default_factory=list)
    user_edited: bool = False


@dataclass
class ResponseNode:
    """
    Answer-bearing counterpart of one Item instance.

    INVARIANTS:
        - At most one ResponseNode per link id among siblings
        - Child link ids exist among the Item's children
        - Children live under `items` for non-repeating groups and under
          each Answer otherwise (see Item.nests_under_answers)

    `seeded` records that initial expressions were applied; it is session
    bookkeeping and excluded from comparisons.
    """

    link_id: str
    answers: List[Answer] = field(default_factory=list)
    items: List["ResponseNode"] = field(default_factory=list)
    seeded: bool = field(default=False, compare=False, repr=False)

    def values(self) -> List[Any]:
        return [answer.value for answer in self.answers if answer.value is not None]

    @property
    def has_answer(self) -> bool:
        return bool(self.values())

    def get_child(self, link_id: str) -> Optional["ResponseNode"]:
        for child in self.items:
            if child.link_id == link_id:
                return child
        return None


@dataclass
class FormResponse:
    """The response document: answers for one Form."""

    form: str
    items: List[ResponseNode] = field(default_factory=list)
    status: str = "in-progress"
