"""
Exhaustive template searches.

GridSearch scores every integer offset of a (clamped) search rectangle;
PathSearch scores one candidate per pixel cell crossed by a line through
the rectangle. Offsets are relative to the top-left of the target window,
which starts at (rect.x - insets.left, rect.y - insets.top).
"""

import logging
import math
from dataclasses import dataclass, field

import numpy as np

from patchtrack.core.base import Insets, SearchRect
from patchtrack.core.buffer import PixelBuffer
from patchtrack.matching.scoring import SimilarityScorer

logger = logging.getLogger(__name__)

# slopes beyond this are treated as vertical, below its inverse as horizontal
LARGE_SLOPE = 1.0e10

# crossings closer than this (in segment parameter) are the same point
CROSSING_EPS = 1.0e-9


@dataclass
class SearchWindow:
    """The clamped search rectangle and the target pixels it needs."""
    rect: SearchRect
    insets: Insets
    x_min: int
    y_min: int
    rgb: np.ndarray


def prepare_window(
    target: PixelBuffer,
    rect: SearchRect,
    insets: Insets,
) -> SearchWindow | None:
    """
    Clamp a search rectangle and copy the target pixels it covers.

    Target pixels are composited over black, so transparent target
    pixels score as black.

    Returns:
        The search window, or None if the clamped rectangle is empty
    """
    clamped = rect.clamp(target.width, target.height, insets)
    if clamped.is_empty:
        logger.debug("Search rectangle %s is empty after clamping to %s", rect, clamped)
        return None
    x_min = max(0, clamped.x - insets.left)
    x_max = min(target.width, clamped.x + clamped.width + insets.right)
    y_min = max(0, clamped.y - insets.top)
    y_max = min(target.height, clamped.y + clamped.height + insets.bottom)
    region = target.data[y_min:y_max, x_min:x_max]
    rgb = region[:, :, :3].astype(np.int64)
    alpha = region[:, :, 3:4]
    if np.any(alpha != 255):
        rgb = np.rint(rgb * (alpha / 255.0)).astype(np.int64)
    return SearchWindow(clamped, insets, x_min, y_min, rgb)


@dataclass
class GridSearchResult:
    """Best offset of a rectangular search."""
    offset: tuple[int, int]
    min_score: float
    average: float
    scores: np.ndarray = field(repr=False)


class GridSearch:
    """
    Scores every offset 0 <= x <= width, 0 <= y <= height of a rectangle.

    Both bounds are inclusive, so a w x h rectangle evaluates
    (w + 1) x (h + 1) offsets.
    """

    def __init__(self, scorer: SimilarityScorer):
        self.scorer = scorer

    def find_best_offset(self, rect: SearchRect) -> GridSearchResult:
        nx, ny = rect.width + 1, rect.height + 1
        scores = self.scorer.score_grid(nx, ny)
        # first minimum scanning x outer, y inner
        flat = int(np.argmin(scores.T))
        x, y = divmod(flat, ny)
        return GridSearchResult(
            offset=(x, y),
            min_score=float(scores[y, x]),
            # mean over all (w + 1) x (h + 1) offsets, not sum / (w * h)
            average=float(scores.mean()),
            scores=scores,
        )

    def score_at(self, result: GridSearchResult, x: int, y: int) -> float:
        """Score at an offset, reusing the grid where possible (nan outside the window)."""
        ny, nx = result.scores.shape
        if 0 <= x < nx and 0 <= y < ny:
            return float(result.scores[y, x])
        return self.scorer.score(x, y)


def line_segment(
    rect: SearchRect,
    x0: float,
    y0: float,
    theta: float,
) -> tuple[tuple[float, float], tuple[float, float]] | None:
    """
    Clip the line through (x0, y0) at angle theta to a rectangle.

    The angle is counterclockwise from the +x axis with y pointing down,
    so the line direction is (1, -tan(theta)).

    Returns:
        The two boundary crossings ordered by x (then y), or None if the
        line does not cross the boundary at two distinct points
    """
    slope = -math.tan(theta)
    if abs(slope) > LARGE_SLOPE:
        dx, dy = 0.0, 1.0
    elif abs(slope) < 1 / LARGE_SLOPE:
        dx, dy = 1.0, 0.0
    else:
        dx, dy = 1.0, slope

    left, right = rect.x, rect.x + rect.width
    top, bottom = rect.y, rect.y + rect.height
    crossings: list[tuple[float, float]] = []
    if dx != 0:
        for edge in (left, right):
            y = y0 + (edge - x0) / dx * dy
            if top <= y <= bottom:
                crossings.append((float(edge), y))
    if dy != 0:
        for edge in (top, bottom):
            x = x0 + (edge - y0) / dy * dx
            if left <= x <= right:
                crossings.append((x, float(edge)))

    distinct: list[tuple[float, float]] = []
    for p in crossings:
        if all(math.hypot(p[0] - q[0], p[1] - q[1]) > CROSSING_EPS for q in distinct):
            distinct.append(p)
    if len(distinct) < 2:
        return None
    if len(distinct) > 2:
        # rounding near a corner; keep the farthest pair
        pairs = [(a, b) for i, a in enumerate(distinct) for b in distinct[i + 1:]]
        distinct = list(max(pairs, key=lambda ab: math.dist(ab[0], ab[1])))
    p1, p2 = sorted(distinct)
    return p1, p2


def grid_crossings(
    p1: tuple[float, float],
    p2: tuple[float, float],
) -> list[tuple[float, float]]:
    """
    Points where a segment crosses integer grid lines, in order along it.

    Coincident crossings (a lattice point hit by both a vertical and a
    horizontal grid line) appear once.
    """
    (x1, y1), (x2, y2) = p1, p2
    found: list[tuple[float, tuple[float, float]]] = []
    if x2 != x1:
        for x in range(math.ceil(min(x1, x2)), math.floor(max(x1, x2)) + 1):
            u = (x - x1) / (x2 - x1)
            found.append((u, (float(x), y1 + u * (y2 - y1))))
    if y2 != y1:
        for y in range(math.ceil(min(y1, y2)), math.floor(max(y1, y2)) + 1):
            u = (y - y1) / (y2 - y1)
            found.append((u, (x1 + u * (x2 - x1), float(y))))
    found.sort(key=lambda item: item[0])
    points: list[tuple[float, float]] = []
    last_u = None
    for u, point in found:
        if last_u is not None and u - last_u <= CROSSING_EPS:
            continue
        points.append(point)
        last_u = u
    return points


def search_points(
    rect: SearchRect,
    x0: float,
    y0: float,
    theta: float,
) -> list[tuple[float, float]] | None:
    """
    Candidate points along a line, one per pixel cell the line crosses.

    Each candidate is the midpoint between consecutive grid crossings,
    expressed relative to the rectangle origin.

    Returns:
        Candidates in order along the line, or None if the line misses
    """
    segment = line_segment(rect, x0, y0, theta)
    if segment is None:
        return None
    return _midpoints(rect, segment)


def _midpoints(rect: SearchRect, segment) -> list[tuple[float, float]]:
    crossings = grid_crossings(*segment)
    return [
        ((ax + bx) / 2 - rect.x, (ay + by) / 2 - rect.y)
        for (ax, ay), (bx, by) in zip(crossings, crossings[1:])
    ]


@dataclass
class PathSearchResult:
    """Best candidate of a line-constrained search."""
    points: list[tuple[float, float]]
    scores: list[float]
    index: int
    average: float
    direction: tuple[float, float]

    @property
    def offset(self) -> tuple[int, int]:
        x, y = self.points[self.index]
        return (int(x), int(y))

    @property
    def min_score(self) -> float:
        return self.scores[self.index]

    def neighbor(self, step: int) -> tuple[float, float] | None:
        """(distance, score) of the candidate step places away, or None."""
        i = self.index + step
        if i < 0 or i >= len(self.points):
            return None
        return math.dist(self.points[i], self.points[self.index]), self.scores[i]


class PathSearch:
    """Scores candidate offsets along a line through the search rectangle."""

    def __init__(self, scorer: SimilarityScorer):
        self.scorer = scorer

    def find_best_offset_along_line(
        self,
        rect: SearchRect,
        x0: float,
        y0: float,
        theta: float,
        spread: int = 0,
    ) -> PathSearchResult | None:
        """
        Search along the line through (x0, y0) at angle theta.

        Args:
            rect: Clamped search rectangle
            x0: x-component of a point on the line (target coordinates)
            y0: y-component of a point on the line
            theta: Angle of the line in radians
            spread: Half-width of the search band; only 0 is searched

        Returns:
            The result, or None if the line does not cross the rectangle
        """
        if spread:
            logger.debug("Line spread %s requested; searching a 1-pixel line", spread)
        segment = line_segment(rect, x0, y0, theta)
        points = _midpoints(rect, segment) if segment is not None else None
        if not points:
            logger.debug("Line through (%s, %s) misses search rectangle %s", x0, y0, rect)
            return None
        scores = [self.scorer.score(int(x), int(y)) for x, y in points]
        index = int(np.argmin(scores))
        (x1, y1), (x2, y2) = segment
        length = math.hypot(x2 - x1, y2 - y1)
        return PathSearchResult(
            points=points,
            scores=scores,
            index=index,
            average=float(np.mean(scores)),
            direction=((x2 - x1) / length, (y2 - y1) / length),
        )
