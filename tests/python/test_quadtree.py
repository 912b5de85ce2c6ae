from __future__ import annotations

import logging
import math
import random
from xml.etree import ElementTree

import pytest
from pygame.math import Vector2

from outbreak.sim.core.agent import Agent
from outbreak.sim.core.quadtree import NodeKind, Quadtree, QuadtreeCorruptionError
from outbreak.sim.utils.geometry import Rect


def _agent(x: float, y: float) -> Agent:
    return Agent(position=Vector2(x, y), speed=1.0)


def _tree(size: float = 8.0, **kwargs) -> Quadtree:
    return Quadtree(Rect(Vector2(0, 0), Vector2(size, size)), **kwargs)


def _column_tree() -> tuple[Quadtree, list[int]]:
    tree = _tree()
    handles = [tree.add(_agent(1, y)) for y in range(1, 6)]
    return tree, handles


def test_empty_tree_has_single_root_leaf():
    tree = _tree()
    assert len(tree) == 0
    assert tree.node_count == 1
    root = tree.node(0)
    assert root.kind is NodeKind.LEAF
    assert root.parent is None
    assert tree.leaf_capacity == 4
    assert tree.min_leaf_width == 2.0
    tree.check_invariants()


def test_add_returns_fresh_handles_and_stores_payload():
    tree = _tree()
    agent = _agent(2, 2)
    handle = tree.add(agent)
    assert handle == 0
    assert tree.get(handle) is agent
    assert handle in tree
    assert tree.owner_of(handle) == 0
    assert tree.add(_agent(3, 3)) == 1
    assert sorted(tree.handles()) == [0, 1]
    assert list(tree) == [agent, tree.get(1)]


def test_add_outside_bounds_is_rejected_without_side_effects():
    tree = _tree()
    assert tree.add(_agent(9, 1)) is None
    assert tree.add(_agent(-0.1, 1)) is None
    assert tree.add(Agent(position=Vector2(math.nan, math.nan), speed=1.0)) is None
    assert len(tree) == 0
    # The rejected adds must not consume handles.
    assert tree.add(_agent(1, 1)) == 0


def test_points_on_world_edges_are_accepted():
    tree = _tree()
    for x, y in [(0, 0), (8, 8), (0, 8), (8, 0)]:
        assert tree.add(_agent(x, y)) is not None
    tree.check_invariants()


def test_seeded_construction():
    tree = Quadtree(Rect(Vector2(0, 0), Vector2(8, 8)), agents=[_agent(1, 1), _agent(7, 7)])
    assert len(tree) == 2
    with pytest.raises(ValueError):
        Quadtree(Rect(Vector2(0, 0), Vector2(8, 8)), agents=[_agent(10, 10)])


def test_scenario_column_of_five_splits_root_once():
    tree, handles = _column_tree()

    root = tree.node(0)
    assert root.kind is NodeKind.INNER
    assert len(root.children) == 4
    assert tree.node_count == 5
    children = [tree.node(child) for child in root.children]
    assert all(child.is_leaf and child.parent == 0 for child in children)

    lower_left = root.children[2]
    upper_left = root.children[0]
    assert tree.node(lower_left).children == handles[:3]
    assert tree.node(upper_left).children == handles[3:]
    assert tree.node(root.children[1]).children == []
    assert tree.node(root.children[3]).children == []
    for handle in handles[:3]:
        assert tree.owner_of(handle) == lower_left
    for handle in handles[3:]:
        assert tree.owner_of(handle) == upper_left
    tree.check_invariants()


def test_split_partitions_agents_without_duplicates():
    tree = _tree(size=16.0)
    handles = [tree.add(_agent(x, y)) for x, y in [(1, 1), (15, 15), (8, 8), (1, 15), (15, 1)]]
    root = tree.node(0)
    assert root.kind is NodeKind.INNER
    gathered = [h for child in root.children for h in tree.node(child).children]
    assert sorted(gathered) == sorted(handles)
    # The center point belongs to the upper-right quarter.
    assert tree.owner_of(handles[2]) == root.children[1]


def test_split_floor_prevents_narrow_leaves_from_splitting():
    tree = _tree(size=2.0)
    for _ in range(20):
        assert tree.add(_agent(1, 1)) is not None
    assert tree.node_count == 1
    assert len(tree.node(0).children) == 20
    tree.check_invariants()


def test_coincident_agents_stop_splitting_at_min_width():
    tree = _tree(size=16.0)
    for _ in range(40):
        tree.add(_agent(3, 3))
    leaf = tree.node(tree.owner_of(0))
    assert leaf.is_leaf
    assert leaf.bounds.width <= tree.min_leaf_width
    assert len(leaf.children) == 40
    tree.check_invariants()


def test_remove_returns_payload_and_invalidates_handle():
    tree = _tree()
    agent = _agent(2, 2)
    handle = tree.add(agent)
    assert tree.remove(handle) is agent
    assert tree.get(handle) is None
    assert tree.owner_of(handle) is None
    assert tree.remove(handle) is None
    assert handle not in tree
    assert tree.move(handle, Vector2(1, 1)) is False
    # Handles are never reused.
    assert tree.add(_agent(3, 3)) == handle + 1


def test_remove_does_not_merge_until_clean():
    tree, handles = _column_tree()
    for handle in handles[:3]:
        tree.remove(handle)
    assert tree.node(0).kind is NodeKind.INNER
    tree.check_invariants()


def test_scenario_clean_joins_and_reuses_freed_slots():
    tree, handles = _column_tree()
    for handle in handles[:3]:
        tree.remove(handle)

    assert tree.clean() == 1
    root = tree.node(0)
    assert root.kind is NodeKind.LEAF
    assert root.parent is None
    assert sorted(root.children) == handles[3:]
    assert all(tree.owner_of(h) == 0 for h in handles[3:])
    # Slot 4 was the table's last entry, so it shrank the table; 1-3 wait on the free list.
    assert tree.node_count == 1
    assert tree._free_ids == [1, 2, 3]
    assert len(tree._nodes) == 4
    tree.check_invariants()

    for x, y in [(6, 6), (6, 7), (7, 6)]:
        tree.add(_agent(x, y))
    root = tree.node(0)
    assert root.kind is NodeKind.INNER
    assert root.children[:3] == [3, 2, 1]
    assert sorted(root.children) == [1, 2, 3, 4]
    assert tree._free_ids == []
    tree.check_invariants()


def test_clean_leaves_crowded_nodes_alone():
    tree, _ = _column_tree()
    assert tree.clean() == 0
    assert tree.node(0).kind is NodeKind.INNER


def _nested_tree() -> tuple[Quadtree, list[int]]:
    # Every quarter of the root is itself split, so the root has no leaf children.
    tree = _tree(leaf_capacity=1)
    points = [(1, 1), (3, 3), (1, 3), (5, 5), (7, 7), (1, 5), (3, 7), (5, 1), (7, 3)]
    handles = [tree.add(_agent(x, y)) for x, y in points]
    root = tree.node(0)
    assert all(not tree.node(child).is_leaf for child in root.children)
    return tree, handles


def test_single_clean_pass_lags_on_cascading_merges():
    tree, handles = _nested_tree()
    for handle in handles[1:]:
        tree.remove(handle)

    assert tree.clean() == 4
    root = tree.node(0)
    assert root.kind is NodeKind.INNER
    assert all(tree.node(child).is_leaf for child in root.children)
    tree.check_invariants()

    assert tree.clean() == 1
    assert tree.node(0).kind is NodeKind.LEAF
    assert tree.node(0).children == [handles[0]]
    assert tree.node_count == 1
    tree.check_invariants()


def test_clean_until_stable_collapses_fully():
    tree, handles = _nested_tree()
    for handle in handles[1:]:
        tree.remove(handle)
    assert tree.clean(until_stable=True) == 5
    assert tree.node(0).kind is NodeKind.LEAF
    assert tree.owner_of(handles[0]) == 0
    tree.check_invariants()


def test_move_within_leaf_only_updates_position():
    tree, handles = _column_tree()
    owner = tree.owner_of(handles[0])
    assert tree.move(handles[0], Vector2(2, 2)) is True
    assert tree.owner_of(handles[0]) == owner
    assert tree.get(handles[0]).position == Vector2(2, 2)


def test_move_across_leaves_keeps_handle():
    tree, handles = _column_tree()
    agent = tree.get(handles[0])
    assert tree.move(handles[0], Vector2(7, 7)) is True
    upper_right = tree.node(0).children[1]
    assert tree.owner_of(handles[0]) == upper_right
    assert tree.get(handles[0]) is agent
    assert agent.position == Vector2(7, 7)
    assert handles[0] not in tree.node(tree.node(0).children[2]).children
    tree.check_invariants()


def test_move_out_of_bounds_changes_nothing():
    tree, handles = _column_tree()
    owner = tree.owner_of(handles[0])
    assert tree.move(handles[0], Vector2(20, 1)) is False
    assert tree.move(handles[0], Vector2(math.nan, 1)) is False
    assert tree.get(handles[0]).position == Vector2(1, 1)
    assert tree.owner_of(handles[0]) == owner
    tree.check_invariants()


def test_move_into_full_leaf_triggers_split():
    tree, handles = _column_tree()
    lower_left = tree.node(0).children[2]
    assert tree.move(handles[4], Vector2(2, 2))
    assert tree.node(lower_left).is_leaf
    assert len(tree.node(lower_left).children) == 4

    assert tree.move(handles[3], Vector2(3, 1))
    node = tree.node(lower_left)
    assert node.kind is NodeKind.INNER
    assert all(tree.node(child).parent == lower_left for child in node.children)
    tree.check_invariants()


def test_scenario_corner_agents_query_is_leaf_granular():
    tree = _tree()
    handles = [tree.add(_agent(x, y)) for x, y in [(0, 0), (7, 0), (0, 7), (7, 7)]]
    center = Rect(Vector2(3, 3), Vector2(5, 5))
    # No split yet, so the single root leaf overlaps the query.
    assert tree.node_count == 1
    assert sorted(tree.find_agents_in(center)) == handles

    tree.add(_agent(6, 6))
    assert tree.node(0).kind is NodeKind.INNER
    # All four quarters touch the center point.
    assert len(tree.find_leaves_in(center)) == 4
    corner = Rect(Vector2(0.5, 0.5), Vector2(1, 1))
    assert tree.find_leaves_in(corner) == [tree.node(0).children[2]]
    assert tree.find_agents_in(corner) == [handles[0]]
    assert tree.find_agents_in(Rect(Vector2(10, 10), Vector2(12, 12))) == []


def test_leaf_for_matches_owner():
    tree, handles = _column_tree()
    for handle in handles:
        assert tree.leaf_for(tree.get(handle).position) == tree.owner_of(handle)
    assert tree.leaf_for(Vector2(-1, -1)) is None


def test_lookups_by_unknown_ids_return_none():
    tree = _tree()
    assert tree.get(99) is None
    assert tree.owner_of(99) is None
    assert tree.node(99) is None
    assert tree.node(-1) is None


def test_random_operations_preserve_invariants_and_query_soundness():
    rng = random.Random(7)
    tree = _tree(size=64.0)
    live: list[int] = []
    issued: list[int] = []

    for _ in range(600):
        roll = rng.random()
        if roll < 0.45 or not live:
            handle = tree.add(_agent(rng.uniform(0, 64), rng.uniform(0, 64)))
            assert handle is not None
            live.append(handle)
            issued.append(handle)
        elif roll < 0.6:
            handle = live.pop(rng.randrange(len(live)))
            assert tree.remove(handle) is not None
        elif roll < 0.95:
            handle = rng.choice(live)
            target = Vector2(rng.uniform(0, 64), rng.uniform(0, 64))
            assert tree.move(handle, target)
            assert tree.get(handle).position == target
        else:
            tree.clean()
        tree.check_invariants()

    assert issued == sorted(issued)
    assert len(set(issued)) == len(issued)
    assert len(tree) == len(live)

    for _ in range(50):
        query = Rect(
            Vector2(rng.uniform(0, 64), rng.uniform(0, 64)),
            Vector2(rng.uniform(0, 64), rng.uniform(0, 64)),
        )
        found = set(tree.find_agents_in(query))
        exact = {handle for handle, agent in tree.items() if query.contains(agent.position)}
        assert exact <= found


def test_invariant_violation_is_fatal_and_logged(caplog):
    tree, handles = _column_tree()
    # Point the owner map at the inner root node.
    tree._owner[handles[0]] = 0
    with caplog.at_level(logging.CRITICAL, logger="outbreak.sim.core.quadtree"):
        with pytest.raises(QuadtreeCorruptionError):
            tree.move(handles[0], Vector2(7, 7))
    assert "not a leaf" in caplog.text
    with pytest.raises(QuadtreeCorruptionError):
        tree.remove(handles[0])


def test_check_invariants_detects_missing_handle():
    tree, handles = _column_tree()
    leaf = tree.node(tree.owner_of(handles[1]))
    leaf.children.remove(handles[1])
    with pytest.raises(QuadtreeCorruptionError):
        tree.check_invariants()


def test_render_svg_draws_every_live_node():
    tree, _ = _column_tree()
    doc = ElementTree.fromstring(tree.render_svg())
    assert doc.tag.endswith("svg")
    assert doc.get("viewBox") == "0.0 0.0 8.0 8.0"
    rects = [child for child in doc if child.tag.endswith("rect")]
    assert len(rects) == tree.node_count
    assert all(rect.get("fill") == "none" for rect in rects)


def test_invalid_capacity_is_rejected():
    with pytest.raises(ValueError):
        _tree(leaf_capacity=0)


def test_query_through_dangling_child_is_fatal():
    tree, _ = _column_tree()
    # Free a child slot while the root still lists it.
    dangling = tree.node(0).children[1]
    tree._nodes[dangling] = None
    with pytest.raises(QuadtreeCorruptionError):
        tree.find_leaves_in(Rect(Vector2(0, 0), Vector2(8, 8)))
