"""
Base types and protocols for the patchtrack framework.

This module defines the small value types and capabilities that the
matching engine builds upon.
"""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


class DimensionMismatchError(ValueError):
    """Raised when a template rebuild is given a sample of the wrong size."""

    def __init__(self, expected: tuple[int, int], actual: tuple[int, int]):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Sample is {actual[0]}x{actual[1]}, "
            f"expected {expected[0]}x{expected[1]}"
        )


@runtime_checkable
class RegionMask(Protocol):
    """Protocol for point-in-region tests used to mask a template."""

    def contains(self, x: float, y: float) -> bool:
        """Return True if the point (x, y) lies inside the region."""
        ...


@dataclass(frozen=True)
class SearchRect:
    """
    Integer search rectangle in target pixel coordinates.

    The rectangle addresses template anchor positions, so it is inset by
    half the template size on each side before a search (see clamp()).
    """
    x: int
    y: int
    width: int
    height: int

    @classmethod
    def from_any(cls, rect: "SearchRect | tuple[int, int, int, int]") -> "SearchRect":
        """Create a SearchRect from another rect or an (x, y, w, h) tuple."""
        if isinstance(rect, SearchRect):
            return rect
        x, y, w, h = rect
        return cls(int(x), int(y), int(w), int(h))

    @classmethod
    def centered(cls, cx: float, cy: float, width: int, height: int) -> "SearchRect":
        """Create a rectangle of the given size centered on (cx, cy)."""
        return cls(int(round(cx - width / 2)), int(round(cy - height / 2)), width, height)

    @property
    def is_empty(self) -> bool:
        """True if the rectangle has no searchable extent."""
        return self.width <= 0 or self.height <= 0

    def clamp(
        self,
        target_width: int,
        target_height: int,
        insets: "Insets",
    ) -> "SearchRect":
        """
        Clamp the rectangle so a template-sized window fits at every offset.

        Args:
            target_width: Width of the target image
            target_height: Height of the target image
            insets: Template insets (see Insets.for_template)

        Returns:
            The clamped rectangle, possibly empty (check is_empty)
        """
        x = max(insets.left, min(target_width - insets.right, self.x))
        y = max(insets.top, min(target_height - insets.bottom, self.y))
        width = min(target_width - x - insets.right, self.width)
        height = min(target_height - y - insets.bottom, self.height)
        return SearchRect(x, y, width, height)

    def to_tuple(self) -> tuple[int, int, int, int]:
        return (self.x, self.y, self.width, self.height)


@dataclass(frozen=True)
class Insets:
    """Margins needed around a search rectangle to fit a template."""
    left: int
    right: int
    top: int
    bottom: int

    @classmethod
    def for_template(cls, width: int, height: int) -> "Insets":
        """Half the template size on each side, the extra pixel trailing."""
        left = width // 2
        top = height // 2
        return cls(left, left + width % 2, top, top + height % 2)
