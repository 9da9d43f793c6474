"""Colour proximity, distances and anchor-key conversion."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
from skimage.color import rgb2lab

Color = tuple[int, int, int]

DEFAULT_TOLERANCE = 4


def as_color(pixel: Sequence[int] | np.ndarray) -> Color:
    """Normalise a pixel (tuple, list or uint8 row) to an ``(r, g, b)`` tuple."""
    r, g, b = (int(c) for c in pixel[:3])
    return r, g, b


def within_tolerance(
    p1: Sequence[int] | np.ndarray,
    p2: Sequence[int] | np.ndarray,
    tolerance: int = DEFAULT_TOLERANCE,
) -> bool:
    """True iff every channel of *p1* and *p2* differs by less than *tolerance*.

    Channels are compared independently (not as a combined distance) and
    as Python ints, so uint8 inputs cannot wrap around.
    """
    return (
        abs(int(p1[0]) - int(p2[0])) < tolerance
        and abs(int(p1[1]) - int(p2[1])) < tolerance
        and abs(int(p1[2]) - int(p2[2])) < tolerance
    )


def rgb_to_lab(rgb: np.ndarray) -> np.ndarray:
    """Convert flat (N, 3) uint8 RGB → (N, 3) float64 CIELAB."""
    return rgb2lab(rgb.astype(np.float64).reshape(1, -1, 3) / 255.0).reshape(-1, 3)


def color_distances(
    color: Sequence[int] | np.ndarray,
    anchors: np.ndarray,
    color_space: str = "rgb",
) -> np.ndarray:
    """Euclidean distance from *color* to every row of *anchors*.

    Args:
        color:   A single RGB pixel.
        anchors: (K, 3) uint8 RGB.
        color_space: ``"rgb"`` or ``"lab"``.

    Returns:
        (K,) float64 distances.
    """
    query = np.asarray(color, dtype=np.uint8).reshape(1, 3)
    if color_space == "lab":
        q = rgb_to_lab(query)
        a = rgb_to_lab(anchors)
    else:
        q = query.astype(np.float64)
        a = anchors.astype(np.float64)
    return np.sqrt(np.sum((a - q) ** 2, axis=1))


def anchor_to_key(anchor: Sequence[int]) -> str:
    """``(200, 30, 30)`` → ``"c81e1e"``, the stable sample identifier."""
    r, g, b = as_color(anchor)
    return f"{r:02x}{g:02x}{b:02x}"


def key_to_anchor(key: str) -> Color:
    """Parse ``'RRGGBB'`` (optionally ``#``-prefixed) to an ``(r, g, b)`` tuple."""
    h = key.lstrip("#")
    if len(h) != 6:
        msg = f"Anchor key must have 6 hex digits, got '{key}'"
        raise ValueError(msg)
    r, g, b = (int(h[i : i + 2], 16) for i in (0, 2, 4))
    return r, g, b


def mean_color(image: np.ndarray) -> Color:
    """Average colour of an (H, W, 3) image, rounded to uint8 channels."""
    avg = image.reshape(-1, 3).astype(np.float64).mean(axis=0)
    return as_color(np.clip(np.rint(avg), 0, 255).astype(np.uint8))
