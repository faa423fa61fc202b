"""
Graphviz DOT diagram generator for form dependency graphs.

Converts the EvaluationOrder of a Form into Graphviz DOT format.

Supports multiple modes:
    - SIMPLE: Expression nodes and dependency edges
    - DETAILED: Expression text and evaluation position in the labels
    - CLUSTERED: Nodes grouped into one cluster per item

Expressions caught in a dependency cycle are drawn red.
"""

from enum import Enum
from typing import Any, Dict, List

from formstate.dependencies import EvaluationOrder, NodeKey, resolve
from formstate.model import Form


class DotMode(Enum):
    """Visualization modes for DOT output."""
    SIMPLE = "simple"
    DETAILED = "detailed"
    CLUSTERED = "clustered"


def _escape_dot_string(s: str) -> str:
    """Escape special characters for DOT labels."""
    if not s:
        return '""'
    s = s.replace('\\', '\\\\')
    s = s.replace('"', '\\"')
    s = s.replace('\n', '\\n')
    return f'"{s}"'


def _node_id(key: NodeKey) -> str:
    return _escape_dot_string(str(key))


def _node_label(order: EvaluationOrder, key: NodeKey, position: Dict[NodeKey, int], mode: DotMode) -> str:
    node = order.nodes[key]
    label = str(key)
    if mode != DotMode.DETAILED:
        return label

    info = []
    if node.name:
        info.append(f"%{node.name}")
    text = node.text if node.text is not None else "enableWhen conditions"
    if len(text) > 40:
        text = text[:37] + "..."
    info.append(text)
    if key in position:
        info.append(f"#{position[key]}")
    return label + "\n(" + "\n".join(info) + ")"


def generate_dot(form: Form, mode: DotMode = DotMode.SIMPLE, evaluator: Any = None) -> str:
    """
    Generate Graphviz DOT format for the dependency graph of a form.

    Args:
        form: Form to visualize
        mode: Visualization mode (SIMPLE, DETAILED, CLUSTERED)
        evaluator: Evaluator used for reference extraction (optional)

    Returns:
        String containing DOT graph definition
    """
    order = resolve(form, evaluator)
    position = {node.key: i for i, node in enumerate(order.order)}
    cyclic = set(order.errors)

    lines = []

    lines.append("digraph form {")
    lines.append("  rankdir=LR;")
    lines.append("  node [shape=box, style=filled, fillcolor=lightblue];")

    # =========================================================================
    # NODES
    # =========================================================================

    def node_line(key: NodeKey, indent: str = "  ") -> str:
        attrs = [f"label={_escape_dot_string(_node_label(order, key, position, mode))}"]
        if key in cyclic:
            attrs.append("fillcolor=red")
        return f"{indent}{_node_id(key)} [{', '.join(attrs)}];"

    if mode == DotMode.CLUSTERED:
        by_item: Dict[str, List[NodeKey]] = {}
        for key in order.nodes:
            by_item.setdefault("/".join(key.path) or "<form>", []).append(key)
        for name, keys in by_item.items():
            lines.append(f"  subgraph {_escape_dot_string('cluster_' + name)} {{")
            lines.append(f"    label={_escape_dot_string(name)};")
            lines.append("    style=filled;")
            lines.append("    color=lightgrey;")
            for key in keys:
                lines.append(node_line(key, "    "))
            lines.append("  }")
    else:
        for key in order.nodes:
            lines.append(node_line(key))

    # =========================================================================
    # EDGES (DEPENDENCIES)
    # =========================================================================

    for source in order.nodes:
        for target in sorted(order.edges.get(source, ()), key=str):
            attr = " [color=red]" if source in cyclic and target in cyclic else ""
            lines.append(f"  {_node_id(source)} -> {_node_id(target)}{attr};")

    lines.append("}")

    return "\n".join(lines)


def save_dot_file(form: Form, filename: str, mode: DotMode = DotMode.SIMPLE, evaluator: Any = None) -> None:
    """
    Generate DOT and save to file.

    Args:
        form: Form to visualize
        filename: Output file path (.dot extension recommended)
        mode: Visualization mode
    """
    dot = generate_dot(form, mode=mode, evaluator=evaluator)
    with open(filename, 'w') as f:
        f.write(dot)


__all__ = ["DotMode", "generate_dot", "save_dot_file"]
