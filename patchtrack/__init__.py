"""
patchtrack - Template matching for video point tracking
=======================================================

Finds a masked template patch in video frames and locates the best match
to sub-pixel accuracy.

Main modules:
- patchtrack.core: Pixel buffers, mask shapes and configuration
- patchtrack.matching: Template building, search and peak fitting

Quick start:
    >>> from patchtrack import TemplateMatcher, EllipseMask
    >>> matcher = TemplateMatcher(sample, mask=EllipseMask(0, 0, 21, 21))
    >>> result = matcher.match_location(frame, (120, 80, 20, 20))
    >>> result.location, result.peak_height
"""

__version__ = "0.1.0"

# Convenience imports
from patchtrack.matching import TemplateMatcher, MatchResult
from patchtrack.core import (
    DimensionMismatchError,
    EllipseMask,
    MatcherConfig,
    PixelBuffer,
    PolygonMask,
    RectMask,
    SearchRect,
)

__all__ = [
    "__version__",
    "TemplateMatcher",
    "MatchResult",
    "DimensionMismatchError",
    "EllipseMask",
    "MatcherConfig",
    "PixelBuffer",
    "PolygonMask",
    "RectMask",
    "SearchRect",
]
