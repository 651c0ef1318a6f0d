from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple
import math

import numpy as np


# Row/column grouping tolerance at the native capture resolution.
DEFAULT_TOLERANCE_PX = 20.0
NATIVE_SIZE_PX = 700.0

SECTIONS = ("studentId", "section1", "section2", "section3")


@dataclass(frozen=True)
class Point:
    x: float
    y: float

    def as_tuple(self) -> Tuple[float, float]:
        return (self.x, self.y)


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        if self.width < 0 or self.height < 0:
            raise ValueError(f"negative rect size: {self.width}x{self.height}")

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def center(self) -> Point:
        return Point(self.x + self.width / 2.0, self.y + self.height / 2.0)

    def contains(self, point: Point) -> bool:
        return self.x <= point.x <= self.right and self.y <= point.y <= self.bottom

    def contains_rect(self, other: "Rect") -> bool:
        return (
            other.x >= self.x
            and other.y >= self.y
            and other.right <= self.right
            and other.bottom <= self.bottom
        )

    def sub_rect(self, x0: float, x1: float, y0: float, y1: float) -> "Rect":
        """Band of this rect given as fractions of its width/height."""
        return Rect(
            self.x + self.width * x0,
            self.y + self.height * y0,
            self.width * (x1 - x0),
            self.height * (y1 - y0),
        )


@dataclass(frozen=True)
class BubbleRegion:
    """One candidate mark location on the working (rectified) image."""

    x: int
    y: int
    width: int
    height: int
    section: str
    question: Optional[int] = None
    option: Optional[str] = None
    sub_option: Optional[str] = None
    value: Optional[bool] = None
    digit: Optional[int] = None
    column: Optional[int] = None
    row: Optional[int] = None
    symbol: Optional[str] = None

    def __post_init__(self) -> None:
        if self.width < 0 or self.height < 0:
            raise ValueError(f"negative bubble size: {self.width}x{self.height}")
        if self.section not in SECTIONS:
            raise ValueError(f"unknown section: {self.section}")

    @property
    def rect(self) -> Rect:
        return Rect(self.x, self.y, self.width, self.height)

    def center(self) -> Point:
        return self.rect.center()


def distance(a: Point, b: Point) -> float:
    return math.hypot(a.x - b.x, a.y - b.y)


def scaled_tolerance(
    actual_size: float,
    native_size: float = NATIVE_SIZE_PX,
    base: float = DEFAULT_TOLERANCE_PX,
) -> float:
    if native_size <= 0:
        raise ValueError("native_size must be positive")
    return base * (float(actual_size) / float(native_size))


def group_by_proximity(values: Iterable[float], tolerance: float = DEFAULT_TOLERANCE_PX) -> List[List[float]]:
    """
    Cluster 1-D coordinates: sorted values closer than `tolerance` to the
    previous member join the same group.
    """
    ordered = sorted(float(v) for v in values)
    if not ordered:
        return []
    groups = [[ordered[0]]]
    for value in ordered[1:]:
        if value - groups[-1][-1] > tolerance:
            groups.append([value])
        else:
            groups[-1].append(value)
    return groups


def order_corners(points: Sequence[Sequence[float]]) -> np.ndarray:
    """
    Order 4 points as [top-left, top-right, bottom-left, bottom-right].

    TL has the smallest x+y, BR the largest; TR has the smallest y-x and
    BL the largest. Ties resolve to the first point in input order.
    """
    pts = np.asarray(points, dtype="float32").reshape(-1, 2)
    if pts.shape != (4, 2):
        raise ValueError(f"expected 4 points, got shape {pts.shape}")
    s = pts.sum(axis=1)
    diff = pts[:, 1] - pts[:, 0]
    rect = np.zeros((4, 2), dtype="float32")
    rect[0] = pts[np.argmin(s)]
    rect[1] = pts[np.argmin(diff)]
    rect[2] = pts[np.argmax(diff)]
    rect[3] = pts[np.argmax(s)]
    return rect


def bounding_rect(points: Iterable[Point]) -> Rect:
    pts = list(points)
    if not pts:
        raise ValueError("no points")
    xs = [p.x for p in pts]
    ys = [p.y for p in pts]
    return Rect(min(xs), min(ys), max(xs) - min(xs), max(ys) - min(ys))
