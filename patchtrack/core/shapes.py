"""
Region shapes used to mask templates.

Each shape satisfies the RegionMask protocol (contains(x, y)) and also
offers a vectorized contains_points(xs, ys) that the template builder
uses when available.
"""

from dataclasses import dataclass, field

import cv2
import numpy as np


@dataclass(frozen=True)
class RectMask:
    """Axis-aligned rectangle; edges are inclusive."""
    x: float
    y: float
    width: float
    height: float

    def contains(self, x: float, y: float) -> bool:
        return bool(self.contains_points(np.asarray(x), np.asarray(y)))

    def contains_points(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        return (
            (xs >= self.x) & (xs <= self.x + self.width) &
            (ys >= self.y) & (ys <= self.y + self.height)
        )


@dataclass(frozen=True)
class EllipseMask:
    """Ellipse inscribed in the rectangle (x, y, width, height)."""
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def circle(cls, cx: float, cy: float, radius: float) -> "EllipseMask":
        return cls(cx - radius, cy - radius, 2 * radius, 2 * radius)

    def contains(self, x: float, y: float) -> bool:
        return bool(self.contains_points(np.asarray(x), np.asarray(y)))

    def contains_points(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        rx = self.width / 2
        ry = self.height / 2
        if rx <= 0 or ry <= 0:
            return np.zeros(np.broadcast(xs, ys).shape, dtype=bool)
        nx = (xs - (self.x + rx)) / rx
        ny = (ys - (self.y + ry)) / ry
        return nx * nx + ny * ny <= 1.0


@dataclass(frozen=True)
class PolygonMask:
    """
    Closed polygon given by its vertices.

    Points on the boundary count as inside.
    """
    vertices: tuple[tuple[float, float], ...]
    _contour: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if len(self.vertices) < 3:
            raise ValueError("A polygon needs at least 3 vertices")
        object.__setattr__(self, "vertices", tuple((float(x), float(y)) for x, y in self.vertices))
        contour = np.asarray(self.vertices, dtype=np.float32).reshape(-1, 1, 2)
        object.__setattr__(self, "_contour", contour)

    def contains(self, x: float, y: float) -> bool:
        return cv2.pointPolygonTest(self._contour, (float(x), float(y)), False) >= 0

    def contains_points(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        xs, ys = np.broadcast_arrays(np.asarray(xs, dtype=float), np.asarray(ys, dtype=float))
        inside = [self.contains(px, py) for px, py in zip(xs.ravel(), ys.ravel())]
        return np.array(inside, dtype=bool).reshape(xs.shape)


def corner_grid(mask, width: int, height: int) -> np.ndarray:
    """
    Evaluate a region test at every pixel corner of a width x height image.

    Args:
        mask: Any object with contains(x, y); contains_points(xs, ys) is used
            if present
        width: Image width in pixels
        height: Image height in pixels

    Returns:
        Boolean array of shape (height + 1, width + 1); entry [y, x] tells
        whether the corner point (x, y) is inside
    """
    ys, xs = np.mgrid[0:height + 1, 0:width + 1]
    vectorized = getattr(mask, "contains_points", None)
    if vectorized is not None:
        return np.asarray(vectorized(xs, ys), dtype=bool).reshape(xs.shape)
    inside = np.zeros(xs.shape, dtype=bool)
    for y in range(height + 1):
        for x in range(width + 1):
            inside[y, x] = bool(mask.contains(x, y))
    return inside


def pixels_inside(mask, width: int, height: int) -> np.ndarray:
    """
    Boolean (height, width) array, True for pixels entirely inside the mask.

    A pixel cell is inside only if all four of its corners are inside.
    """
    corners = corner_grid(mask, width, height)
    return corners[:-1, :-1] & corners[:-1, 1:] & corners[1:, :-1] & corners[1:, 1:]
