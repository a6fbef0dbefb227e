"""
Matching module - Template building, similarity search and sub-pixel peaks.

This module provides:
- TemplateMatcher: Builds a masked template and finds it in target images
- TemplateBuilder: Template compositing, masking and edge trimming
- GridSearch / PathSearch: Exhaustive rectangular and line-constrained search
- PeakLocator: 3-point Gaussian/parabola fits for sub-pixel refinement

Example:
    >>> from patchtrack.matching import TemplateMatcher
    >>> matcher = TemplateMatcher(sample)
    >>> for frame in frames:
    ...     result = matcher.match_location(frame, (x, y, 20, 20))
    ...     if result.is_good():
    ...         x, y = result.location
"""

from patchtrack.matching.matcher import TemplateMatcher
from patchtrack.matching.peak import PeakFit, PeakLocator, peak_height, warm_start
from patchtrack.matching.result import GOOD_MATCH_THRESHOLD, MatchResult
from patchtrack.matching.scoring import SimilarityScorer
from patchtrack.matching.search import (
    GridSearch,
    PathSearch,
    line_segment,
    search_points,
)
from patchtrack.matching.template import Template, TemplateBuilder, trim_bounds

__all__ = [
    "TemplateMatcher",
    "PeakFit",
    "PeakLocator",
    "peak_height",
    "warm_start",
    "GOOD_MATCH_THRESHOLD",
    "MatchResult",
    "SimilarityScorer",
    "GridSearch",
    "PathSearch",
    "line_segment",
    "search_points",
    "Template",
    "TemplateBuilder",
    "trim_bounds",
]
