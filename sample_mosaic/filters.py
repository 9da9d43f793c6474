"""Pre-processing stages: edge-preserving smoothing and palette quantisation.

These run before synthesis and are deliberately simple wrappers around
scipy and Pillow.  Their contracts are what matters to the compositor:

- :func:`smooth` keeps the shape and dtype of its input.
- :func:`quantize` keeps the shape and limits the image to at most
  ``max_colors`` distinct values, producing flat regions.
"""

from __future__ import annotations

import logging

import numpy as np
from PIL import Image
from scipy.ndimage import gaussian_filter, median_filter

logger = logging.getLogger(__name__)


def smooth(
    image: np.ndarray,
    sigma: float = 2.0,
    median_radius: int = 2,
) -> np.ndarray:
    """Gaussian blur followed by a median filter.

    Args:
        image:  (H, W, 3) uint8.
        sigma:  Gaussian standard deviation in pixels (0 disables the blur).
        median_radius: Median window is ``(2r + 1) x (2r + 1)`` (0 disables it).

    Returns:
        (H, W, 3) uint8.
    """
    out = image.astype(np.float32)
    if sigma > 0:
        # No blurring across channels.
        out = gaussian_filter(out, sigma=(sigma, sigma, 0), mode="nearest")
    out = np.clip(np.rint(out), 0, 255).astype(np.uint8)
    if median_radius > 0:
        size = 2 * median_radius + 1
        out = median_filter(out, size=(size, size, 1), mode="nearest")
    return out


def quantize(image: np.ndarray, max_colors: int = 256) -> np.ndarray:
    """Reduce *image* to at most *max_colors* colours (median cut).

    Returns:
        (H, W, 3) uint8 with at most *max_colors* distinct pixels.
    """
    img = Image.fromarray(image.astype(np.uint8))
    reduced = img.quantize(colors=max_colors, method=Image.Quantize.MEDIANCUT)
    out = np.array(reduced.convert("RGB"), dtype=np.uint8)
    logger.debug(
        "Quantised to %d colours (limit %d)",
        len(np.unique(out.reshape(-1, 3), axis=0)), max_colors,
    )
    return out
