"""
Template matching with sub-pixel peak location.

Matching process:
    1. At each test position in the search area, compute the RGB square
       deviation (sum of squared RGB differences over the template's
       non-transparent pixels) between the template and the target.
       It is zero for a perfect match and larger for poorer matches.
    2. Average the deviations of all test positions.
    3. The position with the minimum deviation is the integer best match.
       Its peak height is PH = average / minimum - 1, from zero to infinity.
    4. Callers treat a match as good when PH exceeds a threshold (about 5).
    5. For sub-pixel accuracy, fit a Gaussian to the PHs of the best match
       and its neighbors (horizontal and vertical, or along the search
       line). Three-point fits are exact.
    6. The peak of the fit is the sub-pixel best match; its width is kept
       as a diagnostic.
"""

import logging
import math

import numpy as np

from patchtrack.core.base import Insets, RegionMask, SearchRect
from patchtrack.core.buffer import PixelBuffer, as_pixel_buffer
from patchtrack.core.config import MatcherConfig
from patchtrack.matching.peak import PeakLocator, peak_height
from patchtrack.matching.result import MatchResult
from patchtrack.matching.scoring import SimilarityScorer
from patchtrack.matching.search import (
    GridSearch,
    PathSearch,
    SearchWindow,
    prepare_window,
)
from patchtrack.matching.template import Template, TemplateBuilder

logger = logging.getLogger(__name__)


class TemplateMatcher:
    """
    Finds the best match of a template image in target images.

    Attributes:
        config: Matcher settings
        index: Frame index owned by the caller; not used internally
        match_image: Preview of the most recent match, if any
        peak_width: Peak width of the most recent match
        peak_height: Peak height of the most recent match

    Example:
        >>> matcher = TemplateMatcher(sample, mask=EllipseMask(0, 0, 20, 20))
        >>> result = matcher.match_location(frame, SearchRect(100, 80, 30, 30))
        >>> if result.is_good():
        ...     print(result.location)
    """

    def __init__(
        self,
        image: "PixelBuffer | np.ndarray",
        mask: RegionMask | None = None,
        config: MatcherConfig | None = None,
    ):
        """
        Create a matcher. If a mask is given, only pixels entirely inside
        it are included in the template.

        Args:
            image: The image to match
            mask: Region defining the inside pixels (may be None)
            config: Matcher settings (defaults if None)
        """
        self.config = config or MatcherConfig()
        self.builder = TemplateBuilder(image, mask)
        self.scorer = SimilarityScorer(self.builder.arena)
        self.grid_search = GridSearch(self.scorer)
        self.path_search = PathSearch(self.scorer)
        self.locator = PeakLocator(self.config)
        self.index = 0
        self.match_image: PixelBuffer | None = None
        self.peak_width = math.nan
        self.peak_height = math.nan

    @property
    def mask(self) -> RegionMask | None:
        return self.builder.mask

    @property
    def template(self) -> Template:
        """The current template; includes only pixels inside the mask."""
        return self.builder.template

    @property
    def alphas(self) -> tuple[int, int]:
        """Opacities (input, original) used to build the most recent template."""
        return self.builder.alphas

    def set_template(self, image: "PixelBuffer | np.ndarray") -> Template:
        """
        Set the template used for the next search.

        An image with the current template's dimensions replaces it in
        place; any other image becomes the new original.
        """
        return self.builder.adopt(image)

    def build_template(
        self,
        image: "PixelBuffer | np.ndarray",
        alpha_input: int,
        alpha_original: int,
    ) -> Template:
        """
        Build the template from an input image the size of the original.

        Raises:
            DimensionMismatchError: If the image size differs from the original
        """
        return self.builder.build(image, alpha_input, alpha_original)

    def evolve(self, image: "PixelBuffer | np.ndarray", alpha: int | None = None) -> Template:
        """Blend a new sample into the template at the evolve opacity."""
        if alpha is None:
            alpha = self.config.evolve_alpha
        return self.builder.build(image, alpha, 0)

    def get_working_pixels(self) -> np.ndarray:
        return self.builder.get_working_pixels()

    def set_working_pixels(self, pixels: np.ndarray) -> bool:
        return self.builder.set_working_pixels(pixels)

    def width_and_height(self) -> tuple[float, float]:
        """(peak_width, peak_height) of the most recent match."""
        return (self.peak_width, self.peak_height)

    def _record(self, result: MatchResult) -> MatchResult:
        result.good_match_threshold = self.config.good_match_threshold
        self.peak_width = result.peak_width
        self.peak_height = result.peak_height
        if result.preview is not None:
            self.match_image = result.preview
        return result

    def _prepare(self, target, rect) -> SearchWindow | None:
        target = as_pixel_buffer(target)
        rect = SearchRect.from_any(rect)
        template = self.template
        insets = Insets.for_template(template.width, template.height)
        window = prepare_window(target, rect, insets)
        if window is not None:
            self.scorer.set_target_window(window.rgb)
        return window

    def match_location(
        self,
        target: "PixelBuffer | np.ndarray",
        rect: "SearchRect | tuple[int, int, int, int]",
    ) -> MatchResult:
        """
        Find the template location of the best match in a rectangle.

        Args:
            target: The image to search
            rect: The rectangle of template anchor positions to search

        Returns:
            The match; check result.found and result.peak_height
        """
        window = self._prepare(target, rect)
        if window is None:
            return self._record(MatchResult.no_match(math.nan))

        best = self.grid_search.find_best_offset(window.rect)
        height = peak_height(best.average, best.min_score)
        width = math.nan
        dx = dy = 0.0
        # an exact match has no sub-pixel peak to fit
        if not math.isinf(height):
            x, y = best.offset
            heights = [
                peak_height(best.average, self.grid_search.score_at(best, x + i, y + j))
                for i, j in ((-1, 0), (1, 0), (0, -1), (0, 1))
            ]
            dx, dy, width = self.locator.refine_axes(height, heights[0:2], heights[2:4])
        return self._record(self._assemble(window, best.offset, height, width, dx, dy))

    def match_location_along_line(
        self,
        target: "PixelBuffer | np.ndarray",
        rect: "SearchRect | tuple[int, int, int, int]",
        x0: float,
        y0: float,
        theta: float,
        spread: int = 0,
    ) -> MatchResult:
        """
        Find the template location of the best match in a rectangle and
        along a line.

        Args:
            target: The image to search
            rect: The rectangle of template anchor positions to search
            x0: x-component of a point on the line
            y0: y-component of a point on the line
            theta: Angle of the line in radians (counterclockwise, y down)
            spread: Half-width of the line; only 0 is searched

        Returns:
            The match; a line that misses the rectangle gives peak_width -1
        """
        window = self._prepare(target, rect)
        if window is None:
            return self._record(MatchResult.no_match(math.nan))

        best = self.path_search.find_best_offset_along_line(window.rect, x0, y0, theta, spread)
        if best is None:
            return self._record(MatchResult.no_match(-1.0, window.rect))

        height = peak_height(best.average, best.min_score)
        width = math.nan
        delta = 0.0
        before, after = best.neighbor(-1), best.neighbor(1)
        if not math.isinf(height) and before is not None and after is not None:
            delta, width = self.locator.refine_path(
                height,
                (before[0], peak_height(best.average, before[1])),
                (after[0], peak_height(best.average, after[1])),
            )
        dx = delta * best.direction[0]
        dy = delta * best.direction[1]
        return self._record(self._assemble(window, best.offset, height, width, dx, dy))

    def _assemble(
        self,
        window: SearchWindow,
        offset: tuple[int, int],
        height: float,
        width: float,
        dx: float,
        dy: float,
    ) -> MatchResult:
        """Translate a window offset to target coordinates and render the preview."""
        template = self.template
        left = window.x_min + offset[0]
        top = window.y_min + offset[1]
        # the composited pixels that were scored
        scored = window.rgb[offset[1]:offset[1] + template.height, offset[0]:offset[0] + template.width]
        preview = PixelBuffer.from_rgb(scored.astype(np.uint8))
        preview.data[:, :, 3] = np.where(template.transparent, 0, 255).astype(np.uint8)
        x = left - template.trim_left
        y = top - template.trim_top
        return MatchResult(
            location=(x + dx, y + dy),
            peak_height=height,
            peak_width=width,
            preview=preview,
            match_offset=(x, y),
            search_rect=window.rect,
        )
