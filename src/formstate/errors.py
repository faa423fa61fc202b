"""
Error taxonomy for the form state engine.

Only DefinitionError is fatal: it aborts loading a form before anything is
evaluated. Everything else degrades locally:

    - ExpressionError / CycleError are RECORDED on the snapshot, never raised
      by the engine. They describe one expression on one response node.
    - SynchronizationError is logged when an orphaned response subtree is
      discarded.
    - Validation outcomes are values (see formstate.validation), not
      exceptions.
"""

from typing import Optional


class FormStateError(Exception):
    """Base class for every error raised by formstate."""
    pass


class DefinitionError(FormStateError):
    """The item tree is malformed. Raised at load time; the load aborts."""

    def __init__(self, message: str, link_id: Optional[str] = None):
        super().__init__(message)
        self.link_id = link_id


class SynchronizationError(FormStateError):
    """A response tree diverges from the item tree."""
    pass


class EvaluationError(FormStateError):
    """Raised by an evaluator when an expression cannot be evaluated."""
    pass


class ExpressionError(FormStateError):
    """
    A failed expression, attached to the response node it was evaluated for.

    Properties:
        key: instance key of the response node (e.g. "members[0]/age")
        kind: expression kind value ("variable", "calculated", ...)
        expression: expression text, if any
    """

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        kind: Optional[str] = None,
        expression: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.key = key
        self.kind = kind
        self.expression = expression

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ExpressionError):
            return NotImplemented
        return (
            type(self) is type(other)
            and self.message == other.message
            and self.key == other.key
            and self.kind == other.kind
            and self.expression == other.expression
        )

    def __hash__(self) -> int:
        return hash((type(self), self.message, self.key, self.kind, self.expression))


class CycleError(ExpressionError):
    """The expression takes part in a dependency cycle."""
    pass


class PathError(FormStateError):
    """A link-id path does not address an existing response node."""
    pass


class NavigationError(FormStateError):
    """Requested page does not exist, is disabled, or the form is not paginated."""
    pass


class ModeTransitionError(FormStateError):
    """The display mode transition is not permitted."""
    pass


class ReadOnlyError(FormStateError):
    """A mutation was attempted while answers are not editable."""
    pass


class ConfigError(FormStateError):
    """Engine configuration is invalid."""
    pass
