from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

from pygame.math import Vector2


def nan_vector() -> Vector2:
    """Sentinel for a destination that has not been assigned yet."""
    return Vector2(math.nan, math.nan)


def is_nan(vector: Vector2) -> bool:
    return math.isnan(vector.x) or math.isnan(vector.y)


def normalize(vector: Vector2) -> Vector2:
    """Unit vector in the direction of `vector`.

    The caller must guarantee a nonzero magnitude; pygame raises ValueError
    for the zero vector.
    """
    return vector.normalize()


def clamp_mag(vector: Vector2, limit: float) -> Vector2:
    if limit <= 0:
        return Vector2()
    magnitude_sq = vector.length_squared()
    if magnitude_sq <= limit * limit:
        return Vector2(vector)
    inv = limit / math.sqrt(magnitude_sq)
    return Vector2(vector.x * inv, vector.y * inv)


def hadamard_mul(a: Vector2, b: Vector2) -> Vector2:
    return Vector2(a.x * b.x, a.y * b.y)


def hadamard_div(a: Vector2, b: Vector2) -> Vector2:
    return Vector2(a.x / b.x, a.y / b.y)


def distance(a: Vector2, b: Vector2) -> float:
    return math.hypot(a.x - b.x, a.y - b.y)


def _clamp_value(value: float, min_value: float, max_value: float) -> float:
    return max(min_value, min(max_value, value))


@dataclass(slots=True, init=False)
class Rect:
    """Axis-aligned rectangle stored as bottom-left and top-right corners.

    The corners may be passed in any order; they are normalised so that
    ``bl`` holds the minimum x/y and ``tr`` the maximum x/y.

    Quadrants are numbered relative to the center::

        +---+---+
        | 0 | 1 |
        +---+---+
        | 2 | 3 |
        +---+---+
    """

    bl: Vector2
    tr: Vector2

    def __init__(self, corner1: Vector2 | Tuple[float, float], corner2: Vector2 | Tuple[float, float]) -> None:
        a = Vector2(corner1)
        b = Vector2(corner2)
        self.bl = Vector2(min(a.x, b.x), min(a.y, b.y))
        self.tr = Vector2(max(a.x, b.x), max(a.y, b.y))

    @classmethod
    def from_center(cls, center: Vector2, side_lengths: Vector2) -> "Rect":
        half = Vector2(side_lengths) / 2.0
        return cls(center - half, center + half)

    @property
    def center(self) -> Vector2:
        return (self.bl + self.tr) / 2.0

    @property
    def width(self) -> float:
        return self.tr.x - self.bl.x

    @property
    def height(self) -> float:
        return self.tr.y - self.bl.y

    def contains(self, point: Vector2) -> bool:
        return self.bl.x <= point.x <= self.tr.x and self.bl.y <= point.y <= self.tr.y

    def intersects(self, other: "Rect") -> bool:
        return not (
            self.bl.x > other.tr.x
            or other.bl.x > self.tr.x
            or self.bl.y > other.tr.y
            or other.bl.y > self.tr.y
        )

    def quadrant(self, point: Vector2) -> int:
        # Points outside the rectangle are classified as if the quadrants
        # extended to infinity.
        center_x = (self.bl.x + self.tr.x) / 2.0
        center_y = (self.bl.y + self.tr.y) / 2.0
        x = 0 if point.x < center_x else 1
        y = 0 if point.y < center_y else 1
        return 2 - 2 * y + x

    def quarter(self) -> Tuple["Rect", "Rect", "Rect", "Rect"]:
        center = self.center
        return (
            Rect(Vector2(self.bl.x, center.y), Vector2(center.x, self.tr.y)),
            Rect(center, self.tr),
            Rect(self.bl, center),
            Rect(Vector2(center.x, self.bl.y), Vector2(self.tr.x, center.y)),
        )

    def clip(self, point: Vector2) -> Vector2:
        return Vector2(
            _clamp_value(point.x, self.bl.x, self.tr.x),
            _clamp_value(point.y, self.bl.y, self.tr.y),
        )

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.bl.x, self.bl.y, self.tr.x, self.tr.y)
