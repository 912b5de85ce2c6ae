#!/usr/bin/env python3
"""Seed a quadtree with random agents and write its leaf layout as SVG."""
from __future__ import annotations

import argparse
import random
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
src_root = ROOT / "src"
if str(src_root) not in sys.path:
    sys.path.insert(0, str(src_root))

from pygame.math import Vector2  # noqa: E402

from outbreak.sim.core.agent import Agent  # noqa: E402
from outbreak.sim.core.quadtree import Quadtree  # noqa: E402
from outbreak.sim.utils.geometry import Rect  # noqa: E402


def build_tree(count: int, size: float, seed: int, leaf_capacity: int, min_leaf_width: float) -> Quadtree:
    rng = random.Random(seed)
    tree = Quadtree(Rect(Vector2(0.0, 0.0), Vector2(size, size)), leaf_capacity=leaf_capacity, min_leaf_width=min_leaf_width)
    for _ in range(count):
        # Gaussian clusters make the adaptive subdivision visible.
        center = Vector2(rng.choice((0.25, 0.75)) * size, rng.choice((0.25, 0.75)) * size)
        position = Vector2(rng.gauss(center.x, size * 0.08), rng.gauss(center.y, size * 0.08))
        tree.add(Agent(position=tree.bounds.clip(position), speed=0.0))
    return tree


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Render a random quadtree layout as SVG.")
    parser.add_argument("--output", type=Path, default=Path("quadtree.svg"), help="SVG file to write.")
    parser.add_argument("--agents", type=int, default=500)
    parser.add_argument("--size", type=float, default=100.0)
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument("--leaf-capacity", type=int, default=4)
    parser.add_argument("--min-leaf-width", type=float, default=2.0)
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    tree = build_tree(args.agents, args.size, args.seed, args.leaf_capacity, args.min_leaf_width)
    tree.check_invariants()
    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_text(tree.render_svg())
    leaves = sum(1 for _ in tree.leaves())
    print(f"Wrote {leaves} leaves for {len(tree)} agents to {args.output}")


if __name__ == "__main__":
    main()
