"""
formstate: Expression-Driven Form State Engine

Keeps a response tree consistent with a form definition while answers
change: enablement, calculated answers, initial values, answer options,
validation and the display mode are derived in dependency order after
every mutation.

ARCHITECTURAL GUARANTEE:
------------------------
This package contains ZERO knowledge of:
    - Rendering toolkits or widgets
    - Any particular expression language (evaluators are plugged in)
    - Storage or transport of responses

One FormSession (or AsyncFormSession) owns one response tree.
Readers only ever see immutable EvaluationSnapshots.
"""

from formstate.async_session import AsyncFormSession
from formstate.config import EngineConfig, NavigationPolicy, load_config
from formstate.display import DisplayMode, SessionEvent
from formstate.engine import EvaluationEngine, EvaluationSnapshot
from formstate.errors import (
    ConfigError,
    CycleError,
    DefinitionError,
    EvaluationError,
    ExpressionError,
    FormStateError,
    ModeTransitionError,
    NavigationError,
    PathError,
    ReadOnlyError,
    SynchronizationError,
)
from formstate.evaluator import EvaluationContext, ReferenceEvaluator
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
from formstate.session import FormSession
from formstate.validation import Invalid, NotValidated, Valid

__version__ = "0.1.0"

__all__ = [
    "Answer",
    "AnswerOption",
    "AsyncFormSession",
    "ConfigError",
    "Constraint",
    "CycleError",
    "DefinitionError",
    "DisplayMode",
    "EnableBehavior",
    "EnableWhen",
    "EnableWhenOperator",
    "EngineConfig",
    "EvaluationContext",
    "EvaluationEngine",
    "EvaluationError",
    "EvaluationSnapshot",
    "Expression",
    "ExpressionError",
    "Form",
    "FormResponse",
    "FormSession",
    "FormStateError",
    "Invalid",
    "Item",
    "ItemType",
    "ModeTransitionError",
    "NavigationError",
    "NavigationPolicy",
    "NotValidated",
    "OptionToggle",
    "PathError",
    "Quantity",
    "ReadOnlyError",
    "ReferenceEvaluator",
    "ResponseNode",
    "SessionEvent",
    "Severity",
    "SynchronizationError",
    "Valid",
    "load_config",
]
