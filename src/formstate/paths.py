"""
Link-id paths.

A path addresses one response node from the top of the response tree:

    "name"              top-level question
    "address/street"    child of a non-repeating group
    "members[1]/age"    child of the second instance of a repeating group
    "allergy[0]/note"   nested question under the first answer of "allergy"

The index selects an Answer (question answer or repeating-group instance)
before descending. It may be omitted when the node has exactly one answer
slot in play; the first answer is used.

Instance keys (used to key snapshot entries) are the canonical form of a
path: every answer-scoped step carries its index.
"""

import re
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from formstate.errors import PathError


_SEGMENT_RE = re.compile(r"^(?P<link_id>[^\[\]/]+)(?:\[(?P<index>\d+)\])?$")


@dataclass(frozen=True)
class PathSegment:
    link_id: str
    index: Optional[int] = None

    def __str__(self) -> str:
        if self.index is None:
            return self.link_id
        return f"{self.link_id}[{self.index}]"


def parse_path(path: str) -> Tuple[PathSegment, ...]:
    """Parse "a/b[2]/c" into segments. Raises PathError on malformed input."""
    if not path or not path.strip():
        raise PathError("Empty path")

    segments = []
    for raw in path.strip().split("/"):
        match = _SEGMENT_RE.match(raw.strip())
        if match is None:
            raise PathError(f"Malformed path segment '{raw}' in '{path}'")
        index = match.group("index")
        segments.append(PathSegment(match.group("link_id"), int(index) if index is not None else None))
    return tuple(segments)


def format_path(segments: Sequence[PathSegment]) -> str:
    return "/".join(str(s) for s in segments)


def child_key(parent_key: str, link_id: str, answer_index: Optional[int] = None) -> str:
    """
    Instance key of a child node.

    Args:
        parent_key: Key of the parent response node ("" at the top)
        link_id: Child link id
        answer_index: Index of the parent's Answer the child sits under,
            None when the child sits directly under the parent node
    """
    if not parent_key:
        return link_id
    if answer_index is None:
        return f"{parent_key}/{link_id}"
    return f"{parent_key}[{answer_index}]/{link_id}"


def top_level_link_id(key: str) -> str:
    """Link id of the top-level node a key belongs to."""
    return parse_path(key)[0].link_id
