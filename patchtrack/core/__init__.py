"""
Core module - Pixel buffers, region shapes, configuration and shared types.
"""

from patchtrack.core.base import DimensionMismatchError, Insets, RegionMask, SearchRect
from patchtrack.core.buffer import ChannelArena, PixelBuffer, as_pixel_buffer
from patchtrack.core.config import (
    MatcherConfig,
    PeakModel,
    load_config,
    save_config,
    get_env_config,
)
from patchtrack.core.shapes import EllipseMask, PolygonMask, RectMask, pixels_inside

__all__ = [
    "DimensionMismatchError",
    "Insets",
    "RegionMask",
    "SearchRect",
    "ChannelArena",
    "PixelBuffer",
    "as_pixel_buffer",
    "MatcherConfig",
    "PeakModel",
    "load_config",
    "save_config",
    "get_env_config",
    "EllipseMask",
    "PolygonMask",
    "RectMask",
    "pixels_inside",
]
