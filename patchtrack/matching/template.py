"""
Template building from sample images.

A template is built by compositing a new sample and the stored original
onto a persistent working image, masking out pixels that are not entirely
inside the region mask, and trimming fully transparent edges. The trim
offsets are kept so match locations can be reported in sample coordinates.
"""

import logging
from dataclasses import dataclass

import numpy as np

from patchtrack.core.base import DimensionMismatchError, RegionMask
from patchtrack.core.buffer import ChannelArena, PixelBuffer, as_pixel_buffer
from patchtrack.core.shapes import pixels_inside

logger = logging.getLogger(__name__)


@dataclass
class Template:
    """
    A trimmed, masked reference patch.

    Attributes:
        image: Trimmed RGBA pixels; alpha 0 marks excluded pixels
        trim_left: Columns removed from the left edge of the sample
        trim_top: Rows removed from the top edge of the sample
    """
    image: PixelBuffer
    trim_left: int = 0
    trim_top: int = 0

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def transparent(self) -> np.ndarray:
        return self.image.transparent_mask


def composite_over(dst: np.ndarray, src: np.ndarray, opacity: int) -> None:
    """
    Draw src over dst in place (Porter-Duff SRC_OVER).

    Both arrays are non-premultiplied RGBA uint8 of the same shape; the
    source alpha is scaled by opacity / 255.
    """
    a_s = src[..., 3:4] / 255.0 * (opacity / 255.0)
    a_d = dst[..., 3:4] / 255.0
    a_r = a_s + a_d * (1.0 - a_s)
    with np.errstate(divide="ignore", invalid="ignore"):
        color = (src[..., :3] * a_s + dst[..., :3] * a_d * (1.0 - a_s)) / a_r
    color = np.where(a_r > 0, color, 0.0)
    dst[..., :3] = np.clip(np.rint(color), 0, 255).astype(np.uint8)
    dst[..., 3:4] = np.clip(np.rint(a_r * 255.0), 0, 255).astype(np.uint8)


def trim_bounds(transparent: np.ndarray) -> tuple[int, int, int, int]:
    """
    Count fully transparent outer columns/rows on each edge.

    Args:
        transparent: (H, W) boolean array

    Returns:
        (left, right, top, bottom). A fully transparent image reports its
        whole width as left and its whole height as top.
    """
    h, w = transparent.shape
    opaque_cols = np.flatnonzero(~transparent.all(axis=0))
    opaque_rows = np.flatnonzero(~transparent.all(axis=1))
    if opaque_cols.size == 0:
        return w, 0, h, 0
    left = int(opaque_cols[0])
    right = w - 1 - int(opaque_cols[-1])
    top = int(opaque_rows[0])
    bottom = h - 1 - int(opaque_rows[-1])
    return left, right, top, bottom


class TemplateBuilder:
    """
    Builds and owns the template for one tracked feature.

    The builder keeps the original sample, the working image that new
    samples are blended into, and the channel arena the scorer reads.

    Example:
        >>> builder = TemplateBuilder(sample, mask=EllipseMask(2, 2, 16, 16))
        >>> template = builder.template
        >>> evolved = builder.build(next_sample, 63, 0)
    """

    def __init__(self, image: "PixelBuffer | np.ndarray", mask: RegionMask | None = None):
        self.mask = mask
        self.arena = ChannelArena()
        self.alphas: tuple[int, int] = (0, 0)
        self._template: Template | None = None
        self.reset(image)

    def reset(self, image: "PixelBuffer | np.ndarray") -> Template:
        """Replace the original image and build a template from scratch."""
        self.original = as_pixel_buffer(image).copy()
        self.working = PixelBuffer.transparent(self.original.width, self.original.height)
        self._template = None
        if self.mask is not None:
            self._inside = pixels_inside(self.mask, self.original.width, self.original.height)
        else:
            self._inside = None
        return self.build(self.original, 255, 0)

    @property
    def template(self) -> Template:
        if self._template is None:
            self.build(self.original, 255, 0)
        return self._template

    def build(
        self,
        image: "PixelBuffer | np.ndarray",
        alpha_input: int,
        alpha_original: int,
    ) -> Template:
        """
        Build the template from an input image.

        The input and the original are drawn onto the working image with
        the given opacities, pixels outside the mask become transparent,
        and transparent edges are trimmed.

        Args:
            image: Input image, same size as the original
            alpha_input: Opacity (0-255) of the input image
            alpha_original: Opacity (0-255) of the original image

        Returns:
            The new template (the current one if both opacities are zero)

        Raises:
            DimensionMismatchError: If the image size differs from the original
        """
        image = as_pixel_buffer(image)
        if image.size != self.original.size:
            raise DimensionMismatchError(self.original.size, image.size)
        if alpha_input == 0 and alpha_original == 0 and self._template is not None:
            return self._template
        self.alphas = (alpha_input, alpha_original)

        alpha_input = max(0, min(255, alpha_input))
        alpha_original = max(0, min(255, alpha_original))
        working = self.working.data
        if alpha_input > 0:
            composite_over(working, image.data, alpha_input)
        if alpha_original > 0:
            composite_over(working, self.original.data, alpha_original)

        pixels = working.copy()
        if self._inside is not None:
            pixels[~self._inside, 3] = 0

        left, right, top, bottom = trim_bounds(pixels[:, :, 3] == 0)
        width = max(image.width - left - right, 1)
        height = max(image.height - top - bottom, 1)
        trimmed = PixelBuffer(pixels).window(left, top, width, height)
        if left or right or top or bottom:
            logger.debug(
                "Trimmed template to %dx%d (left=%d, right=%d, top=%d, bottom=%d)",
                width, height, left, right, top, bottom,
            )

        self._template = Template(trimmed, left, top)
        self.arena.load(trimmed)
        return self._template

    def adopt(self, image: "PixelBuffer | np.ndarray") -> Template:
        """
        Use an image as the template.

        An image the size of the current template replaces its pixels in
        place, keeping the trim offsets and arena storage. Any other image
        becomes the new original and the template is rebuilt from scratch.
        """
        image = as_pixel_buffer(image)
        current = self._template
        if current is not None and image.size == current.image.size:
            self._template = Template(image.copy(), current.trim_left, current.trim_top)
            self.arena.load(self._template.image)
            return self._template
        return self.reset(image)

    def get_working_pixels(self) -> np.ndarray:
        """Copy of the working image (RGBA) used to generate the template."""
        return self.working.data.copy()

    def set_working_pixels(self, pixels: np.ndarray) -> bool:
        """
        Restore the working image.

        Returns:
            False (and changes nothing) if the shape does not match
        """
        if pixels is None:
            return False
        pixels = np.asarray(pixels)
        if pixels.shape != self.working.data.shape:
            return False
        np.copyto(self.working.data, pixels.astype(np.uint8, copy=False))
        return True
