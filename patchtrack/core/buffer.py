"""
Pixel buffers and template channel storage.

PixelBuffer wraps an RGBA uint8 array and handles the conversions from the
array layouts that image providers hand us (OpenCV BGR, RGB, grayscale).
ChannelArena owns the flat per-channel arrays the scorer reads from.
"""

import logging

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class PixelBuffer:
    """
    A rectangular grid of RGBA samples.

    A pixel whose alpha is zero is transparent. The underlying array has
    shape (height, width, 4) and dtype uint8.

    Example:
        >>> buf = PixelBuffer.from_bgr(cv2.imread("frame.png"))
        >>> buf.width, buf.height
        (640, 480)
    """

    def __init__(self, rgba: np.ndarray):
        rgba = np.asarray(rgba)
        if rgba.ndim != 3 or rgba.shape[2] != 4:
            raise ValueError(f"Expected an (H, W, 4) array, got shape {rgba.shape}")
        if rgba.shape[0] == 0 or rgba.shape[1] == 0:
            raise ValueError("PixelBuffer cannot be empty")
        self.data = np.ascontiguousarray(rgba, dtype=np.uint8)

    @classmethod
    def from_array(cls, array: np.ndarray) -> "PixelBuffer":
        """
        Create a buffer from an RGB, RGBA or grayscale array.

        RGB and grayscale inputs are fully opaque.
        """
        array = np.asarray(array)
        if array.ndim == 2:
            return cls.from_gray(array)
        if array.ndim == 3 and array.shape[2] == 4:
            return cls(array)
        if array.ndim == 3 and array.shape[2] == 3:
            return cls.from_rgb(array)
        raise ValueError(f"Unsupported image shape {array.shape}")

    @classmethod
    def from_rgb(cls, rgb: np.ndarray) -> "PixelBuffer":
        """Create an opaque buffer from an (H, W, 3) RGB array."""
        rgb = np.asarray(rgb, dtype=np.uint8)
        alpha = np.full(rgb.shape[:2] + (1,), 255, dtype=np.uint8)
        return cls(np.concatenate([rgb, alpha], axis=2))

    @classmethod
    def from_gray(cls, gray: np.ndarray) -> "PixelBuffer":
        """Create an opaque buffer from a single-channel image."""
        gray = np.ascontiguousarray(gray, dtype=np.uint8)
        return cls(cv2.cvtColor(gray, cv2.COLOR_GRAY2RGBA))

    @classmethod
    def from_bgr(cls, image: np.ndarray) -> "PixelBuffer":
        """Create a buffer from an OpenCV BGR, BGRA or grayscale image."""
        image = np.ascontiguousarray(image, dtype=np.uint8)
        if image.ndim == 2:
            return cls.from_gray(image)
        if image.shape[2] == 4:
            return cls(cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA))
        return cls(cv2.cvtColor(image, cv2.COLOR_BGR2RGBA))

    @classmethod
    def transparent(cls, width: int, height: int) -> "PixelBuffer":
        """Create a fully transparent black buffer."""
        return cls(np.zeros((height, width, 4), dtype=np.uint8))

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def size(self) -> tuple[int, int]:
        """(width, height)"""
        return (self.width, self.height)

    @property
    def rgb(self) -> np.ndarray:
        """View of the color channels, shape (H, W, 3)."""
        return self.data[:, :, :3]

    @property
    def alpha(self) -> np.ndarray:
        """View of the alpha channel, shape (H, W)."""
        return self.data[:, :, 3]

    @property
    def transparent_mask(self) -> np.ndarray:
        """Boolean array, True where the pixel is excluded (alpha == 0)."""
        return self.alpha == 0

    def window(self, x: int, y: int, width: int, height: int) -> "PixelBuffer":
        """
        Copy a window of the buffer.

        Parts of the window falling outside the buffer are transparent.
        """
        out = np.zeros((height, width, 4), dtype=np.uint8)
        x0, y0 = max(0, x), max(0, y)
        x1, y1 = min(self.width, x + width), min(self.height, y + height)
        if x1 > x0 and y1 > y0:
            out[y0 - y:y1 - y, x0 - x:x1 - x] = self.data[y0:y1, x0:x1]
        return PixelBuffer(out)

    def to_bgra(self) -> np.ndarray:
        """Convert to an OpenCV BGRA array (for cv2.imwrite)."""
        return cv2.cvtColor(self.data, cv2.COLOR_RGBA2BGRA)

    def copy(self) -> "PixelBuffer":
        return PixelBuffer(self.data.copy())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PixelBuffer):
            return NotImplemented
        return self.data.shape == other.data.shape and bool(np.array_equal(self.data, other.data))

    def __repr__(self) -> str:
        return f"PixelBuffer({self.width}x{self.height})"


def as_pixel_buffer(image: "PixelBuffer | np.ndarray") -> PixelBuffer:
    """Coerce an RGB/RGBA/grayscale array (or a PixelBuffer) to a PixelBuffer."""
    if isinstance(image, PixelBuffer):
        return image
    return PixelBuffer.from_array(image)


class ChannelArena:
    """
    Owned storage for a template's color channels and transparency flags.

    The R, G and B arrays are rows of a single (3, area) block so they can
    be indexed by flat offset (j * width + i) or reshaped to planes for
    vectorized scoring. Storage is reused while the template area stays the
    same and reallocated otherwise.

    Invariant: len(r) == len(g) == len(b) == len(transparent) == width * height
    """

    def __init__(self):
        self.width = 0
        self.height = 0
        self._channels = np.zeros((3, 0), dtype=np.int64)
        self._transparent = np.zeros(0, dtype=bool)

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def r(self) -> np.ndarray:
        return self._channels[0]

    @property
    def g(self) -> np.ndarray:
        return self._channels[1]

    @property
    def b(self) -> np.ndarray:
        return self._channels[2]

    @property
    def transparent(self) -> np.ndarray:
        return self._transparent

    def resize(self, width: int, height: int) -> bool:
        """
        Make room for a width x height template.

        Returns:
            True if new storage was allocated, False if it was reused
        """
        area = width * height
        self.width = width
        self.height = height
        if area == self._transparent.size:
            return False
        logger.debug("Reallocating template arena for %dx%d", width, height)
        self._channels = np.zeros((3, area), dtype=np.int64)
        self._transparent = np.zeros(area, dtype=bool)
        return True

    def load(self, buffer: PixelBuffer) -> bool:
        """
        Fill the arena from a template buffer, resizing as needed.

        Returns:
            True if new storage was allocated
        """
        reallocated = self.resize(buffer.width, buffer.height)
        flat = buffer.data.reshape(-1, 4)
        np.copyto(self._channels, flat[:, :3].T)
        np.copyto(self._transparent, flat[:, 3] == 0)
        return reallocated

    def planes(self) -> np.ndarray:
        """Channel planes as a (3, height, width) view."""
        return self._channels.reshape(3, self.height, self.width)

    def opaque_weights(self) -> np.ndarray:
        """(height, width) int64 array, 1 where the pixel is scored."""
        return (~self._transparent).astype(np.int64).reshape(self.height, self.width)
