from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(slots=True)
class ContactNode:
    """Place of one infected agent in the transmission tree.

    ``parent`` is the node of the agent that infected this one; ``children``
    are the nodes this agent went on to infect.
    """

    index: int
    agent_handle: int
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)

    @property
    def degree(self) -> int:
        return len(self.children) + (1 if self.parent is not None else 0)


class ContactGraph:
    """Append-only record of who infected whom, keyed by agent handle."""

    def __init__(self) -> None:
        self._nodes: List[ContactNode] = []
        self._by_handle: Dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, handle: object) -> bool:
        return handle in self._by_handle

    def add_node(self, agent_handle: int, parent_handle: Optional[int] = None) -> int:
        parent_index = self._by_handle.get(parent_handle) if parent_handle is not None else None
        node = ContactNode(index=len(self._nodes), agent_handle=agent_handle, parent=parent_index)
        if parent_index is not None:
            self._nodes[parent_index].children.append(node.index)
        self._by_handle[agent_handle] = node.index
        self._nodes.append(node)
        return node.index

    def parent_of(self, agent_handle: int) -> Optional[int]:
        index = self._by_handle.get(agent_handle)
        if index is None:
            return None
        parent = self._nodes[index].parent
        return None if parent is None else self._nodes[parent].agent_handle

    def children_of(self, agent_handle: int) -> List[int]:
        index = self._by_handle.get(agent_handle)
        if index is None:
            return []
        return [self._nodes[child].agent_handle for child in self._nodes[index].children]

    def average_degree(self) -> float:
        if not self._nodes:
            return 0.0
        return sum(node.degree for node in self._nodes) / len(self._nodes)

    def clear(self) -> None:
        self._nodes.clear()
        self._by_handle.clear()

    def to_dot(self) -> str:
        lines = ["digraph ContactGraph {"]
        for node in self._nodes:
            lines.append(f'    ContactNode{node.index} [label="Agent {node.agent_handle}"];')
            for child in node.children:
                lines.append(f"    ContactNode{node.index} -> ContactNode{child};")
        lines.append("}")
        return "\n".join(lines) + "\n"
