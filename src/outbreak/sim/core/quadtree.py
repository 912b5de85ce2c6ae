from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, Iterable, Iterator, List, Optional, Tuple
from xml.etree import ElementTree

from pygame.math import Vector2

from ..utils.geometry import Rect

if TYPE_CHECKING:
    from .agent import Agent

logger = logging.getLogger(__name__)

ROOT_ID = 0


class QuadtreeCorruptionError(RuntimeError):
    """Raised when the index finds its own bookkeeping inconsistent."""


class NodeKind(str, Enum):
    LEAF = "Leaf"
    INNER = "Inner"


@dataclass(slots=True)
class Node:
    """One slot of the node table.

    For a leaf, ``children`` holds agent handles in insertion order. For an
    inner node it holds exactly four node ids indexed by ``Rect.quadrant``.
    """

    kind: NodeKind
    parent: Optional[int]
    bounds: Rect
    children: List[int] = field(default_factory=list)

    @classmethod
    def leaf(cls, parent: Optional[int], bounds: Rect, agents: Optional[List[int]] = None) -> "Node":
        return cls(NodeKind.LEAF, parent, bounds, agents if agents is not None else [])

    @classmethod
    def inner(cls, parent: Optional[int], bounds: Rect, children: List[int]) -> "Node":
        return cls(NodeKind.INNER, parent, bounds, children)

    @property
    def is_leaf(self) -> bool:
        return self.kind is NodeKind.LEAF


class Quadtree:
    """Region quadtree owning agent records behind permanent integer handles.

    Leaves split once they hold more than ``leaf_capacity`` agents and are
    wider than ``min_leaf_width``. Merging is deferred to :meth:`clean`, which
    the simulation calls once per step.

    Node ids are slots in a reusable table and may be handed to an unrelated
    node after any structural change, so callers must never hold on to them.
    Agent handles stay valid until the agent is removed.
    """

    def __init__(
        self,
        bounds: Rect,
        agents: Optional[Iterable["Agent"]] = None,
        leaf_capacity: int = 4,
        min_leaf_width: float = 2.0,
    ) -> None:
        if leaf_capacity < 1:
            raise ValueError(f"leaf_capacity must be at least 1, got {leaf_capacity}")
        self._bounds = bounds
        self._leaf_capacity = leaf_capacity
        self._min_leaf_width = min_leaf_width
        self._next_handle = 0
        self._nodes: List[Optional[Node]] = []
        self._free_ids: List[int] = []
        self._owner: Dict[int, int] = {}
        self._agents: Dict[int, "Agent"] = {}
        self._add_node(Node.leaf(None, bounds))
        if agents is not None:
            for agent in agents:
                if self.add(agent) is None:
                    raise ValueError(f"agent position {tuple(agent.position)} lies outside {bounds.as_tuple()}")

    @property
    def bounds(self) -> Rect:
        return self._bounds

    @property
    def leaf_capacity(self) -> int:
        return self._leaf_capacity

    @property
    def min_leaf_width(self) -> float:
        return self._min_leaf_width

    @property
    def node_count(self) -> int:
        return len(self._nodes) - len(self._free_ids)

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, handle: object) -> bool:
        return handle in self._agents

    def __iter__(self) -> Iterator["Agent"]:
        return iter(self._agents.values())

    def handles(self) -> List[int]:
        return list(self._agents.keys())

    def items(self) -> Iterator[Tuple[int, "Agent"]]:
        return iter(self._agents.items())

    def get(self, handle: int) -> Optional["Agent"]:
        return self._agents.get(handle)

    def owner_of(self, handle: int) -> Optional[int]:
        return self._owner.get(handle)

    def node(self, node_id: int) -> Optional[Node]:
        if 0 <= node_id < len(self._nodes):
            return self._nodes[node_id]
        return None

    def nodes(self) -> Iterator[Tuple[int, Node]]:
        for node_id, node in enumerate(self._nodes):
            if node is not None:
                yield node_id, node

    def leaves(self) -> Iterator[Tuple[int, Node]]:
        for node_id, node in self.nodes():
            if node.is_leaf:
                yield node_id, node

    # -- node table ---------------------------------------------------------

    def _add_node(self, node: Node) -> int:
        if self._free_ids:
            node_id = self._free_ids.pop()
            self._nodes[node_id] = node
            return node_id
        self._nodes.append(node)
        return len(self._nodes) - 1

    def _remove_node(self, node_id: int) -> None:
        if node_id == len(self._nodes) - 1:
            self._nodes.pop()
        else:
            self._nodes[node_id] = None
            self._free_ids.append(node_id)

    def _leaf(self, node_id: int) -> Optional[Node]:
        node = self.node(node_id)
        if node is None or not node.is_leaf:
            return None
        return node

    def _owned_leaf(self, handle: int, node_id: int) -> Node:
        leaf = self._leaf(node_id)
        if leaf is None:
            self._corrupted(f"owner of agent {handle} points at node {node_id}, which is not a leaf")
        return leaf

    def _corrupted(self, message: str) -> None:
        logger.critical("Quadtree corrupted: %s", message)
        raise QuadtreeCorruptionError(message)

    # -- lookups ------------------------------------------------------------

    def leaf_for(self, position: Vector2) -> Optional[int]:
        """Id of the leaf a full descent from the root assigns to `position`."""
        if not self._bounds.contains(position):
            return None
        current = ROOT_ID
        nodes = self._nodes
        while True:
            node = nodes[current]
            if node is None:
                self._corrupted(f"descent reached freed slot {current}")
            if node.is_leaf:
                return current
            current = node.children[node.bounds.quadrant(position)]

    def find_leaves_in(self, bounds: Rect) -> List[int]:
        leaves: List[int] = []
        to_visit = [ROOT_ID]
        nodes = self._nodes
        while to_visit:
            current = to_visit.pop()
            node = nodes[current]
            if node is None:
                self._corrupted(f"query reached freed slot {current}")
            if not node.bounds.intersects(bounds):
                continue
            if node.is_leaf:
                leaves.append(current)
            else:
                to_visit.extend(node.children)
        return leaves

    def find_agents_in(self, bounds: Rect) -> List[int]:
        """Handles of agents whose leaf overlaps `bounds`.

        Matching is at leaf granularity, so the result can include agents
        outside `bounds`. It never misses one inside.
        """
        found: List[int] = []
        nodes = self._nodes
        for leaf_id in self.find_leaves_in(bounds):
            found.extend(nodes[leaf_id].children)
        return found

    # -- mutation -----------------------------------------------------------

    def add(self, agent: "Agent") -> Optional[int]:
        leaf_id = self.leaf_for(agent.position)
        if leaf_id is None:
            return None
        handle = self._next_handle
        self._next_handle += 1
        self._agents[handle] = agent
        self._owner[handle] = leaf_id
        self._nodes[leaf_id].children.append(handle)
        self._check_capacity(leaf_id)
        return handle

    def remove(self, handle: int) -> Optional["Agent"]:
        leaf_id = self._owner.get(handle)
        if leaf_id is None:
            return None
        leaf = self._owned_leaf(handle, leaf_id)
        try:
            leaf.children.remove(handle)
        except ValueError:
            self._corrupted(f"agent {handle} is missing from its owner leaf {leaf_id}")
        del self._owner[handle]
        return self._agents.pop(handle)

    def move(self, handle: int, position: Vector2) -> bool:
        leaf_id = self._owner.get(handle)
        if leaf_id is None:
            return False
        leaf = self._owned_leaf(handle, leaf_id)
        agent = self._agents[handle]
        if leaf.bounds.contains(position):
            agent.position = Vector2(position)
            return True

        new_leaf_id = self.leaf_for(position)
        if new_leaf_id is None:
            return False
        try:
            leaf.children.remove(handle)
        except ValueError:
            self._corrupted(f"agent {handle} is missing from its owner leaf {leaf_id}")
        self._nodes[new_leaf_id].children.append(handle)
        self._owner[handle] = new_leaf_id
        agent.position = Vector2(position)
        self._check_capacity(new_leaf_id)
        return True

    def _check_capacity(self, leaf_id: int) -> None:
        leaf = self._nodes[leaf_id]
        if len(leaf.children) > self._leaf_capacity and leaf.bounds.width > self._min_leaf_width:
            self._split(leaf_id)

    def _split(self, node_id: int) -> None:
        node = self._nodes[node_id]
        bounds = node.bounds
        new_leaves = [Node.leaf(node_id, quarter) for quarter in bounds.quarter()]
        for handle in node.children:
            position = self._agents[handle].position
            new_leaves[bounds.quadrant(position)].children.append(handle)

        children = [self._add_node(leaf) for leaf in new_leaves]
        owner = self._owner
        for child_id, leaf in zip(children, new_leaves):
            for handle in leaf.children:
                owner[handle] = child_id

        self._nodes[node_id] = Node.inner(node.parent, bounds, children)
        logger.debug("split node %d into %s", node_id, children)

    def _join(self, node_id: int) -> None:
        node = self._nodes[node_id]
        gathered: List[int] = []
        for child_id in node.children:
            gathered.extend(self._nodes[child_id].children)
        owner = self._owner
        for handle in gathered:
            owner[handle] = node_id
        for child_id in node.children:
            self._remove_node(child_id)
        self._nodes[node_id] = Node.leaf(node.parent, node.bounds, gathered)
        logger.debug("joined children of node %d (%d agents)", node_id, len(gathered))

    def _depth(self, node_id: int) -> int:
        depth = 0
        parent = self._nodes[node_id].parent
        while parent is not None:
            depth += 1
            parent = self._nodes[parent].parent
        return depth

    def clean(self, until_stable: bool = False) -> int:
        """Merge every inner node whose four leaf children fit in one leaf.

        A single pass only inspects the parents of the current leaves, so a
        grandparent that becomes mergeable after its child merges may need a
        further pass. With ``until_stable`` passes repeat until none merges.
        Returns the number of joins performed.
        """
        joins = 0
        while True:
            parents = {node.parent for _, node in self.leaves() if node.parent is not None}
            passed = 0
            for parent_id in sorted(parents, key=self._depth, reverse=True):
                if self._can_join(parent_id):
                    self._join(parent_id)
                    passed += 1
            joins += passed
            if not until_stable or passed == 0:
                return joins

    def _can_join(self, node_id: int) -> bool:
        node = self.node(node_id)
        if node is None or node.is_leaf:
            return False
        total = 0
        for child_id in node.children:
            child = self._nodes[child_id]
            if child is None or not child.is_leaf:
                return False
            total += len(child.children)
        return total <= self._leaf_capacity

    # -- diagnostics --------------------------------------------------------

    def check_invariants(self) -> None:
        """Walk the whole structure and raise on the first inconsistency."""
        root = self.node(ROOT_ID)
        if root is None or root.parent is not None:
            self._corrupted("node 0 must exist and have no parent")
        free = set(self._free_ids)
        if len(free) != len(self._free_ids):
            self._corrupted("free list contains duplicate ids")
        for node_id in free:
            if node_id >= len(self._nodes) or self._nodes[node_id] is not None:
                self._corrupted(f"free id {node_id} does not designate an empty slot")

        seen: Dict[int, int] = {}
        for node_id, node in self.nodes():
            if node_id in free:
                self._corrupted(f"live node {node_id} is on the free list")
            if node_id != ROOT_ID:
                parent = self.node(node.parent) if node.parent is not None else None
                if parent is None or parent.is_leaf or node_id not in parent.children:
                    self._corrupted(f"node {node_id} is not a child of its parent {node.parent}")
            if node.is_leaf:
                for handle in node.children:
                    if handle in seen:
                        self._corrupted(f"agent {handle} appears in leaves {seen[handle]} and {node_id}")
                    seen[handle] = node_id
                    if self._owner.get(handle) != node_id:
                        self._corrupted(f"agent {handle} in leaf {node_id} is owned by {self._owner.get(handle)}")
            elif len(node.children) != 4:
                self._corrupted(f"inner node {node_id} has {len(node.children)} children")
            else:
                for child_id in node.children:
                    child = self.node(child_id)
                    if child is None or child.parent != node_id:
                        self._corrupted(f"child {child_id} of node {node_id} does not point back")

        if set(seen) != set(self._agents) or set(self._owner) != set(self._agents):
            self._corrupted("owner map, leaf contents and agent records disagree")

    def render_svg(self) -> str:
        bounds = self._bounds
        doc = ElementTree.Element(
            "svg",
            {
                "xmlns": "http://www.w3.org/2000/svg",
                "viewBox": f"{bounds.bl.x} {bounds.bl.y} {bounds.width} {bounds.height}",
            },
        )
        for _, node in self.nodes():
            ElementTree.SubElement(
                doc,
                "rect",
                {
                    "x": f"{node.bounds.bl.x}",
                    "y": f"{node.bounds.bl.y}",
                    "width": f"{node.bounds.width}",
                    "height": f"{node.bounds.height}",
                    "fill": "none",
                    "stroke": "black",
                },
            )
        return ElementTree.tostring(doc, encoding="unicode")
