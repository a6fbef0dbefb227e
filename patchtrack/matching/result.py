"""
Match results.
"""

import math
from dataclasses import dataclass
from typing import Any

from patchtrack.core.base import SearchRect
from patchtrack.core.buffer import PixelBuffer

# peak heights above this are conventionally good enough to auto-mark
GOOD_MATCH_THRESHOLD = 5.0


@dataclass
class MatchResult:
    """
    Outcome of one template search.

    Attributes:
        location: Sub-pixel template location (top-left of the untrimmed
            template, target coordinates), or None when no match was possible
        peak_height: average / best score - 1; inf for an exact match,
            nan when no search was possible
        peak_width: Fitted peak width; nan when no fit was possible, -1
            when a line search had no points to search
        preview: Scored target pixels under the matched template, with the
            template's transparent pixels made transparent
        match_offset: Integer-resolution location, same frame as location
        search_rect: The clamped rectangle that was searched
        good_match_threshold: Default threshold for is_good()

    Special cases:
        1. Exact match: peak_height is inf and peak_width is nan.
        2. The search rectangle fell outside the target: both are nan.
        3. A line search found no points: peak_height nan, peak_width < 0.
        4. The sub-pixel fit failed: peak_height finite, peak_width nan.
    """
    location: tuple[float, float] | None
    peak_height: float
    peak_width: float
    preview: PixelBuffer | None = None
    match_offset: tuple[int, int] | None = None
    search_rect: SearchRect | None = None
    good_match_threshold: float = GOOD_MATCH_THRESHOLD

    @classmethod
    def no_match(cls, peak_width: float = math.nan, search_rect: SearchRect | None = None) -> "MatchResult":
        return cls(None, math.nan, peak_width, search_rect=search_rect)

    @property
    def found(self) -> bool:
        """True if a location was produced."""
        return self.location is not None

    @property
    def is_exact(self) -> bool:
        return math.isinf(self.peak_height)

    @property
    def x(self) -> float | None:
        return None if self.location is None else self.location[0]

    @property
    def y(self) -> float | None:
        return None if self.location is None else self.location[1]

    def is_good(self, threshold: float | None = None) -> bool:
        """
        True if a match was found with a peak height above the threshold.

        The threshold defaults to good_match_threshold, which the matcher
        sets from its configuration.
        """
        if threshold is None:
            threshold = self.good_match_threshold
        return self.found and self.peak_height > threshold

    def width_and_height(self) -> tuple[float, float]:
        """(peak_width, peak_height)"""
        return (self.peak_width, self.peak_height)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary (preview omitted)."""
        return {
            "location": self.location,
            "peak_height": self.peak_height,
            "peak_width": self.peak_width,
            "match_offset": self.match_offset,
            "search_rect": None if self.search_rect is None else self.search_rect.to_tuple(),
        }
