"""
Sum-of-squared-differences scoring of a template against a target window.

Scores are computed in int64 so an exact match scores exactly zero.
"""

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from patchtrack.core.buffer import ChannelArena


class SimilarityScorer:
    """
    Scores the template at integer offsets inside a pre-fetched target window.

    The score at offset (x, y) is the sum, over non-transparent template
    pixels (i, j), of the squared RGB differences against the window pixel
    (x + i, y + j). Lower is better; zero is an exact match.
    """

    def __init__(self, arena: ChannelArena):
        self.arena = arena
        self._window: np.ndarray | None = None

    def set_target_window(self, rgb: np.ndarray) -> None:
        """
        Set the target pixels to score against.

        Args:
            rgb: (H, W, 3) array covering the search rectangle plus margins
        """
        self._window = np.ascontiguousarray(np.moveaxis(rgb, 2, 0), dtype=np.int64)

    @property
    def window_size(self) -> tuple[int, int]:
        """(width, height) of the current target window."""
        if self._window is None:
            return (0, 0)
        return (self._window.shape[2], self._window.shape[1])

    def score(self, x: int, y: int) -> float:
        """
        Score the template with its top-left corner at (x, y).

        Returns:
            The score, or nan if the template does not fit in the window
        """
        if self._window is None:
            raise RuntimeError("No target window set")
        w, h = self.arena.width, self.arena.height
        win_w, win_h = self.window_size
        if x < 0 or y < 0 or x + w > win_w or y + h > win_h:
            return float("nan")
        diff = self._window[:, y:y + h, x:x + w] - self.arena.planes()
        return float(np.einsum("cij,ij->", diff * diff, self.arena.opaque_weights()))

    def score_grid(self, nx: int, ny: int) -> np.ndarray:
        """
        Score every offset 0 <= x < nx, 0 <= y < ny.

        Returns:
            (ny, nx) float64 array of scores
        """
        if self._window is None:
            raise RuntimeError("No target window set")
        w, h = self.arena.width, self.arena.height
        windows = sliding_window_view(self._window, (h, w), axis=(1, 2))
        if windows.shape[1] < ny or windows.shape[2] < nx:
            raise ValueError(
                f"Target window too small for a {nx}x{ny} grid of "
                f"{w}x{h} template positions"
            )
        template = self.arena.planes()[:, None, :, :]
        weights = self.arena.opaque_weights()
        scores = np.empty((ny, nx), dtype=np.float64)
        for y in range(ny):
            diff = windows[:, y, :nx] - template
            scores[y] = np.einsum("cxij,ij->x", diff * diff, weights)
        return scores
