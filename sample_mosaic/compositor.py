"""Flood-fill compositor: quantised image + sample library → mosaic.

The quantised image is scanned row-major.  Every pixel not yet written
seeds a fill: the nearest sample anchor is matched, its tile resolved
(the only point where synthesis can suspend), and the connected region
of pixels within tolerance of the seed colour is painted with the tile,
repeated from the image origin.

Consumed source pixels are tracked in a separate boolean grid rather than
by overwriting them with a marker colour, so genuinely black pixels are
handled like any other colour.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from sample_mosaic.color_utils import DEFAULT_TOLERANCE, Color, as_color, within_tolerance
from sample_mosaic.errors import InvalidImageDimensions, NoMatchingSample, SampleAcquisitionFailed
from sample_mosaic.matcher import RegionMatcher
from sample_mosaic.samples import SampleLibrary

logger = logging.getLogger(__name__)


@dataclass
class SynthesisResult:
    """Output of :func:`synthesize`.

    Attributes:
        image:    (H, W, 3) uint8; only meaningful where ``filled`` is set.
        filled:   (H, W) bool; ``False`` marks an unfilled pixel.
        regions:  Number of flood fills performed.
        failures: ``(anchor, reason)`` per anchor that could not be used
                  (anchor is None for colours with no match), in the
                  order they were first met.
    """

    image: np.ndarray
    filled: np.ndarray
    regions: int = 0
    failures: list[tuple[Color | None, str]] = field(default_factory=list)

    @property
    def width(self) -> int:
        return self.image.shape[1]

    @property
    def height(self) -> int:
        return self.image.shape[0]

    @property
    def unfilled_count(self) -> int:
        return int(self.filled.size - np.count_nonzero(self.filled))

    @property
    def complete(self) -> bool:
        return bool(self.filled.all())

    @property
    def coverage(self) -> float:
        """Fraction of pixels written, in [0, 1]."""
        return float(np.count_nonzero(self.filled)) / self.filled.size

    def flatten(self, background: Sequence[int] = (0, 0, 0)) -> np.ndarray:
        """Plain RGB copy with unfilled pixels set to *background*."""
        out = self.image.copy()
        out[~self.filled] = np.asarray(as_color(background), dtype=np.uint8)
        return out


def _validate(quantized: np.ndarray) -> np.ndarray:
    arr = np.asarray(quantized)
    if arr.ndim != 3 or arr.shape[2] != 3:
        msg = f"expected an (H, W, 3) image, got shape {arr.shape}"
        raise InvalidImageDimensions(msg)
    if arr.shape[0] == 0 or arr.shape[1] == 0:
        msg = f"image has zero area ({arr.shape[1]}x{arr.shape[0]})"
        raise InvalidImageDimensions(msg)
    return arr.astype(np.uint8, copy=True)


def flood_fill(
    source: np.ndarray,
    consumed: np.ndarray,
    dest: np.ndarray,
    filled: np.ndarray,
    seed: tuple[int, int],
    tile: np.ndarray,
    tolerance: int = DEFAULT_TOLERANCE,
    skip_edge_neighbors: bool = False,
) -> int:
    """Paint the region connected to *seed* with *tile*.

    Pixels join the region when they are within *tolerance* of the seed
    colour (4-connectivity).  Each accepted pixel receives
    ``tile[y % th, x % tw]`` and is marked in *consumed* and *filled*.

    Args:
        source:   (H, W, 3) quantised pixels; read only.
        consumed: (H, W) bool, updated in place.
        dest:     (H, W, 3) output pixels, updated in place.
        filled:   (H, W) bool, updated in place.
        seed:     ``(x, y)`` start coordinate.
        tile:     (th, tw, 3) sample tile.
        tolerance: Per-channel proximity bound.
        skip_edge_neighbors: Only push left/up neighbours when ``x > 1`` /
            ``y > 1``, so column 0 is never entered from the right nor row 0
            from below.

    Returns:
        Number of pixels written.
    """
    height, width = source.shape[:2]
    tile_h, tile_w = tile.shape[:2]
    min_index = 1 if skip_edge_neighbors else 0
    sx, sy = seed
    seed_color = as_color(source[sy, sx])

    written = 0
    stack = [(sx, sy)]
    while stack:
        x, y = stack.pop()
        if consumed[y, x]:
            continue
        if not within_tolerance(source[y, x], seed_color, tolerance):
            continue

        dest[y, x] = tile[y % tile_h, x % tile_w]
        filled[y, x] = True
        consumed[y, x] = True
        written += 1

        if x > min_index:
            stack.append((x - 1, y))
        if y > min_index:
            stack.append((x, y - 1))
        if x < width - 1:
            stack.append((x + 1, y))
        if y < height - 1:
            stack.append((x, y + 1))
    return written


async def synthesize(
    quantized: np.ndarray,
    library: SampleLibrary,
    matcher: RegionMatcher | None = None,
    *,
    tolerance: int = DEFAULT_TOLERANCE,
    skip_edge_neighbors: bool = False,
) -> SynthesisResult:
    """Replace every flat region of *quantized* with its nearest sample tile.

    Args:
        quantized: (H, W, 3) uint8 palette-reduced image.  Not modified.
        library:   Tiles, fetched on demand for anchors not yet resident.
        matcher:   Anchor set to match against; defaults to the anchors
                   already resident in *library*.
        tolerance: Per-channel proximity bound for region membership.
        skip_edge_neighbors: See :func:`flood_fill`.

    Returns:
        A :class:`SynthesisResult`; regions without a usable sample stay
        unfilled and are listed in ``failures``.

    Raises:
        InvalidImageDimensions: *quantized* is empty or not RGB.
    """
    source = _validate(quantized)
    if matcher is None:
        matcher = RegionMatcher(library.anchors)

    height, width = source.shape[:2]
    consumed = np.zeros((height, width), dtype=bool)
    dest = np.zeros((height, width, 3), dtype=np.uint8)
    filled = np.zeros((height, width), dtype=bool)
    result = SynthesisResult(image=dest, filled=filled)
    reported: set[tuple[Color | None, str]] = set()

    def _report(anchor: Color | None, reason: str) -> None:
        if (anchor, reason) in reported:
            return
        reported.add((anchor, reason))
        result.failures.append((anchor, reason))
        logger.warning("Leaving region unfilled: %s", reason)

    logger.info(
        "Synthesising %dx%d image from %d sample anchor(s)", width, height, len(matcher),
    )
    t0 = time.perf_counter()
    try:
        for y in range(height):
            for x in range(width):
                if filled[y, x] or consumed[y, x]:
                    continue
                color = source[y, x]
                try:
                    anchor = matcher.best_match(color)
                    tile = await library.resolve(anchor)
                except NoMatchingSample as exc:
                    _report(None, str(exc))
                    continue
                except SampleAcquisitionFailed as exc:
                    _report(exc.anchor, str(exc))
                    continue

                n = flood_fill(
                    source, consumed, dest, filled, (x, y), tile,
                    tolerance=tolerance,
                    skip_edge_neighbors=skip_edge_neighbors,
                )
                result.regions += 1
                logger.debug(
                    "Region %d at (%d, %d): %s → %s, %d px",
                    result.regions, x, y, as_color(color), anchor, n,
                )
    except asyncio.CancelledError:
        library.cancel_pending()
        logger.info("Synthesis cancelled; partial result discarded")
        raise

    logger.info(
        "Synthesis done  | regions=%d  coverage=%.1f%%  (%.1f s)",
        result.regions, result.coverage * 100, time.perf_counter() - t0,
    )
    return result
