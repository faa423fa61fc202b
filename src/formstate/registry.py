"""
Strategy registry: prioritized (predicate, handler) pairs.

Used for item-keyed lookups that callers customise, e.g. answer type checks
in the validator or rendering factories in a UI layer.

ARCHITECTURAL RULE:
    Resolution is deterministic. Entries are tried in registration order and
    the first matching predicate wins. A registry is a plain object handed
    to the engine through EngineConfig; there is no process-wide registry.
"""

from typing import Callable, Generic, Iterator, List, Optional, Tuple, TypeVar

from formstate.model import Item


H = TypeVar("H")
Predicate = Callable[[Item], bool]


class StrategyRegistry(Generic[H]):
    """Ordered list of (predicate, handler) pairs."""

    def __init__(self, entries: Optional[List[Tuple[Predicate, H]]] = None):
        self._entries: List[Tuple[Predicate, H]] = list(entries or [])

    def register(self, predicate: Predicate, handler: H) -> None:
        """Append an entry. Earlier entries keep precedence."""
        self._entries.append((predicate, handler))

    def resolve(self, item: Item) -> Optional[H]:
        """Return the handler of the first entry whose predicate matches."""
        for predicate, handler in self._entries:
            if predicate(item):
                return handler
        return None

    def resolve_all(self, item: Item) -> List[H]:
        return [handler for predicate, handler in self._entries if predicate(item)]

    def __iter__(self) -> Iterator[Tuple[Predicate, H]]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
