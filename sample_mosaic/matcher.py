"""Nearest-anchor search over the sample palette."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

import numpy as np

from sample_mosaic.color_utils import Color, as_color, color_distances
from sample_mosaic.config import COLOR_SPACES
from sample_mosaic.errors import NoMatchingSample


def find_closest(
    color: Sequence[int] | np.ndarray,
    anchors: np.ndarray,
    color_space: str = "rgb",
) -> int | None:
    """Index of the anchor nearest to *color*, or ``None`` if there are none.

    Ties keep the earliest anchor: ``np.argmin`` returns the first index of
    the minimum, so a later anchor at the same distance never wins.
    """
    if len(anchors) == 0:
        return None
    return int(np.argmin(color_distances(color, anchors, color_space)))


class RegionMatcher:
    """Ordered set of sample anchors answering nearest-colour queries.

    Enumeration order is the order the anchors were given in; duplicates
    are dropped so the first occurrence keeps its position.  With
    *max_distance* set, an anchor farther than that from the query is no
    match at all.
    """

    def __init__(
        self,
        anchors: Iterable[Sequence[int]],
        color_space: str = "rgb",
        max_distance: float | None = None,
    ) -> None:
        if color_space not in COLOR_SPACES:
            available = ", ".join(COLOR_SPACES)
            msg = f"Unknown colour space '{color_space}'. Available: {available}"
            raise ValueError(msg)
        self.color_space = color_space
        self.max_distance = max_distance
        self.anchors: list[Color] = list(dict.fromkeys(as_color(a) for a in anchors))
        self._array = np.array(self.anchors, dtype=np.uint8).reshape(-1, 3)

    def __len__(self) -> int:
        return len(self.anchors)

    def match(self, color: Sequence[int] | np.ndarray) -> Color | None:
        if not self.anchors:
            return None
        dists = color_distances(color, self._array, self.color_space)
        idx = int(np.argmin(dists))
        if self.max_distance is not None and dists[idx] > self.max_distance:
            return None
        return self.anchors[idx]

    def best_match(self, color: Sequence[int] | np.ndarray) -> Color:
        """Like :meth:`match` but raises :class:`NoMatchingSample` instead of returning None."""
        anchor = self.match(color)
        if anchor is None:
            if not self.anchors:
                msg = f"no sample anchors to match {as_color(color)}"
            else:
                msg = f"no sample anchor within {self.max_distance:g} of {as_color(color)}"
            raise NoMatchingSample(msg)
        return anchor

    def distance(self, color: Sequence[int] | np.ndarray, anchor: Sequence[int]) -> float:
        single = np.array([as_color(anchor)], dtype=np.uint8)
        return float(color_distances(color, single, self.color_space)[0])
