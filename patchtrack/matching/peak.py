"""
Sub-pixel peak location from three peak heights.

The heights at the best offset and its two neighbors along one direction
are fitted with a Gaussian a*exp(-(d-b)^2/c) (or a parabola
a*(1-(d-b)^2/c)). The peak offset b is the sub-pixel correction and c is
reported as the peak width.
"""

import logging
from dataclasses import dataclass

import numpy as np

from patchtrack.core.config import MatcherConfig, PeakModel

logger = logging.getLogger(__name__)

# stands in for an undefined pull/push ratio
LARGE_NUMBER = 1.0e10


@dataclass
class PeakFit:
    """Parameters of a fitted peak."""
    height: float
    offset: float
    width: float
    rms: float


def peak_height(average: float, score: float) -> float:
    """
    Transform a score into a peak height: average / score - 1.

    Infinite for an exact match (score 0), nan for a missing score.
    """
    with np.errstate(divide="ignore", invalid="ignore"):
        return float(np.float64(average) / np.float64(score) - 1.0)


def warm_start(offsets: np.ndarray, heights: np.ndarray) -> tuple[float, float]:
    """
    Estimate the peak offset and width from the pull/push of the neighbors.

    Args:
        offsets: (x0, 0, x2) with x0 < 0 < x2
        heights: Peak heights at the offsets

    Returns:
        (offset, width) estimates; the width may be nan or negative
    """
    x0, _, x2 = (float(v) for v in offsets)
    h0, h1, h2 = (np.float64(v) for v in heights)
    with np.errstate(divide="ignore", invalid="ignore"):
        pull = -x0 / (h1 - h0)
        push = x2 / (h1 - h2)
        if np.isnan(pull):
            pull = LARGE_NUMBER
        if np.isnan(push):
            push = LARGE_NUMBER
        offset = 0.3 * (x2 - x0) * (push - pull) / (push + pull)
        ratio = h1 / h0 if offset > 0 else h1 / h2
        width = offset - x0 if offset > 0 else offset - x2
        width = width * width / np.log(ratio)
    return float(offset), float(width)


def _gaussian(params: np.ndarray, x: np.ndarray) -> np.ndarray:
    a, b, c = params
    return a * np.exp(-(x - b) ** 2 / c)


def _rms(residuals: np.ndarray) -> float:
    return float(np.sqrt(np.mean(residuals * residuals)))


class PeakLocator:
    """
    Fits 3-point peaks for sub-pixel refinement.

    Example:
        >>> locator = PeakLocator()
        >>> fit = locator.fit([-1, 0, 1], [4.0, 9.0, 6.0])
        >>> fit.offset
        0.16...
    """

    def __init__(self, config: MatcherConfig | None = None):
        self.config = config or MatcherConfig()

    def fit(self, offsets, heights) -> PeakFit | None:
        """
        Fit the configured peak model through three points.

        Args:
            offsets: Three increasing offsets, the middle one 0
            heights: Peak heights at the offsets

        Returns:
            The fit, or None if no acceptable fit exists
        """
        x = np.asarray(offsets, dtype=np.float64)
        y = np.asarray(heights, dtype=np.float64)
        if not np.all(np.isfinite(y)) or not np.all(np.isfinite(x)):
            return None
        if self.config.peak_model is PeakModel.PARABOLA:
            return self._fit_parabola(x, y)
        return self._fit_gaussian(x, y)

    def _fit_parabola(self, x: np.ndarray, y: np.ndarray) -> PeakFit | None:
        try:
            p2, p1, p0 = np.linalg.solve(np.vander(x, 3), y)
        except np.linalg.LinAlgError:
            return None
        if not p2 < 0:
            return None
        offset = -p1 / (2 * p2)
        height = p0 - p1 * p1 / (4 * p2)
        if height <= 0:
            return None
        width = height / -p2
        rms = _rms(height * (1 - (x - offset) ** 2 / width) - y)
        if not rms < self.config.fit_tolerance:
            return None
        return PeakFit(float(height), float(offset), float(width), rms)

    def _fit_gaussian(self, x: np.ndarray, y: np.ndarray) -> PeakFit | None:
        if np.any(y <= 0):
            return None
        # exact solution: ln(y) is a parabola through the three points
        try:
            p2, p1, p0 = np.linalg.solve(np.vander(x, 3), np.log(y))
        except np.linalg.LinAlgError:
            p2 = np.nan
        if p2 < 0:
            with np.errstate(over="ignore"):
                params = np.array([np.exp(p0 - p1 * p1 / (4 * p2)), -p1 / (2 * p2), -1 / p2])
            rms = _rms(_gaussian(params, x) - y)
            if np.all(np.isfinite(params)) and rms < self.config.fit_tolerance:
                return PeakFit(*(float(v) for v in params), rms)
        return self.polish_gaussian(x, y)

    def polish_gaussian(self, x, y) -> PeakFit | None:
        """Newton iterations from the warm start, trying three widths."""
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        b0, c0 = warm_start(x, y)
        if not np.isfinite(c0) or c0 <= 0:
            c0 = 1.0
        if not np.isfinite(b0):
            b0 = 0.0
        for c in (c0, c0 / 3, c0 * 3):
            params = np.array([y[1], b0, c], dtype=np.float64)
            for _ in range(self.config.max_iterations):
                a, b, c = params
                e = np.exp(-(x - b) ** 2 / c)
                residuals = a * e - y
                rms = _rms(residuals)
                if rms < self.config.fit_tolerance:
                    return PeakFit(float(a), float(b), float(c), rms)
                jacobian = np.column_stack([
                    e,
                    a * e * 2 * (x - b) / c,
                    a * e * (x - b) ** 2 / (c * c),
                ])
                try:
                    step = np.linalg.solve(jacobian, -residuals)
                except np.linalg.LinAlgError:
                    break
                params = params + step
                if not np.all(np.isfinite(params)) or params[2] <= 0:
                    break
        logger.debug("Peak fit did not converge for heights %s", y)
        return None

    def refine_axes(
        self,
        height: float,
        x_neighbors: tuple[float, float],
        y_neighbors: tuple[float, float],
    ) -> tuple[float, float, float]:
        """
        Refine a grid match independently along x and y.

        Args:
            height: Peak height at the match
            x_neighbors: Heights at x-1 and x+1
            y_neighbors: Heights at y-1 and y+1

        Returns:
            (dx, dy, width). A failed axis gives a zero delta and a nan width.
        """
        offsets = (-1.0, 0.0, 1.0)
        fit_x = self.fit(offsets, (x_neighbors[0], height, x_neighbors[1]))
        fit_y = self.fit(offsets, (y_neighbors[0], height, y_neighbors[1]))
        dx = fit_x.offset if fit_x is not None else 0.0
        dy = fit_y.offset if fit_y is not None else 0.0
        if fit_x is None or fit_y is None:
            return dx, dy, float("nan")
        return dx, dy, (fit_x.width + fit_y.width) / 2

    def refine_path(
        self,
        height: float,
        before: tuple[float, float],
        after: tuple[float, float],
    ) -> tuple[float, float]:
        """
        Refine a path match along the path.

        Args:
            height: Peak height at the match
            before: (distance, height) of the previous candidate
            after: (distance, height) of the next candidate

        Returns:
            (delta along the path, width); (0, nan) if the fit failed
        """
        fit = self.fit((-before[0], 0.0, after[0]), (before[1], height, after[1]))
        if fit is None:
            return 0.0, float("nan")
        return fit.offset, fit.width
