"""
Engine configuration.

One EngineConfig is passed to a FormSession at construction. Nothing is
read from ambient/global state.

YAML layout (all keys optional):

    review_enabled: true
    review_first: false
    read_only: false
    long_scroll: false
    navigation_policy: linear        # or non-linear
    allow_submit_anyway: false
    launch_context:
      practitioner: Dr Who
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

import yaml

from formstate.errors import ConfigError
from formstate.model import Item
from formstate.registry import StrategyRegistry


TypeCheck = Callable[[Item, Any], Optional[str]]


class NavigationPolicy(Enum):
    """
    Page navigation policy of paginated forms.

    LINEAR: a page is reachable only when no earlier page holds an Invalid
            result.
    NON_LINEAR: any enabled page is reachable.
    """

    LINEAR = "linear"
    NON_LINEAR = "non-linear"


@dataclass
class EngineConfig:
    """
    Properties:
        review_enabled: Review mode is reachable
        review_first: Start in review mode (requires review_enabled)
        read_only: Answers cannot be edited; the session starts in review
        long_scroll: Render as one long page even if the form has pages
        navigation_policy: See NavigationPolicy
        allow_submit_anyway: submit(anyway=True) bypasses Invalid results
        launch_context: Values exposed to expressions as form-level
            variables (%name); form variables of the same name win
        type_checks: Answer type checks tried before the built-in ones
        renderers: Rendering factories for the UI layer
    """

    review_enabled: bool = False
    review_first: bool = False
    read_only: bool = False
    long_scroll: bool = False
    navigation_policy: NavigationPolicy = NavigationPolicy.NON_LINEAR
    allow_submit_anyway: bool = False
    launch_context: Dict[str, Any] = field(default_factory=dict)
    type_checks: StrategyRegistry = field(default_factory=StrategyRegistry)
    renderers: StrategyRegistry = field(default_factory=StrategyRegistry)

    def __post_init__(self):
        if isinstance(self.navigation_policy, str):
            try:
                self.navigation_policy = NavigationPolicy(self.navigation_policy)
            except ValueError:
                raise ConfigError(f"Unknown navigation policy: {self.navigation_policy}")
        if self.review_first and not self.review_enabled:
            raise ConfigError("review_first requires review_enabled")
        if not isinstance(self.launch_context, dict):
            raise ConfigError("launch_context must be a mapping")


_KEYS = (
    "review_enabled",
    "review_first",
    "read_only",
    "long_scroll",
    "navigation_policy",
    "allow_submit_anyway",
    "launch_context",
)


def config_from_dict(d: Optional[Dict[str, Any]]) -> EngineConfig:
    d = d or {}
    if not isinstance(d, dict):
        raise ConfigError("Configuration must be a mapping")
    unknown = sorted(set(d) - set(_KEYS))
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {unknown}")
    return EngineConfig(**{key: d[key] for key in _KEYS if key in d})


def config_from_yaml(s: str) -> EngineConfig:
    try:
        d = yaml.safe_load(s)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid configuration YAML: {e}")
    return config_from_dict(d)


def load_config(path: str) -> EngineConfig:
    """
    Load an EngineConfig from a YAML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ConfigError: If the content is invalid
    """
    with open(path, "r", encoding="utf-8") as f:
        return config_from_yaml(f.read())
