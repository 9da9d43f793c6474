"""Sample library: anchor colour → tile image, populated lazily.

Tiles are acquired through an injected asynchronous *fetcher*
(``await fetcher("c81e1e") -> (H, W, 3) uint8``).  The library is the
only state shared between fills, and every mutation happens on the event
loop thread, so insert-if-absent needs no lock.  A miss starts exactly
one acquisition task per anchor; every concurrent caller awaits that same
task.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
from PIL import Image, ImageOps

from sample_mosaic.color_utils import Color, anchor_to_key, as_color, key_to_anchor, mean_color
from sample_mosaic.errors import SampleAcquisitionFailed
from sample_mosaic.image_io import load_tile, save_image

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], Awaitable[np.ndarray]]


@dataclass(frozen=True, eq=False)
class ColorSample:
    """A tile whose dominant colour is *anchor*.

    Identity is the anchor alone; two samples with the same anchor are
    equal whatever their tiles contain.
    """

    anchor: Color
    tile: np.ndarray = field(repr=False)

    @property
    def key(self) -> str:
        return anchor_to_key(self.anchor)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ColorSample):
            return NotImplemented
        return self.anchor == other.anchor

    def __hash__(self) -> int:
        return hash(self.anchor)


def _validate_tile(tile: np.ndarray) -> np.ndarray:
    arr = np.asarray(tile)
    if arr.ndim != 3 or arr.shape[2] < 3 or arr.shape[0] == 0 or arr.shape[1] == 0:
        msg = f"tile must be a non-empty (H, W, 3) array, got shape {arr.shape}"
        raise ValueError(msg)
    return np.ascontiguousarray(arr[:, :, :3], dtype=np.uint8)


class SampleLibrary:
    """Keyed store of colour samples with lazy, de-duplicated acquisition."""

    def __init__(
        self,
        fetcher: Fetcher,
        samples: Iterable[ColorSample] = (),
    ) -> None:
        self._fetcher = fetcher
        self._samples: dict[Color, ColorSample] = {}
        self._pending: dict[Color, asyncio.Task[np.ndarray]] = {}
        self._failed: dict[Color, str] = {}
        for sample in samples:
            self.add(sample)

    def __len__(self) -> int:
        return len(self._samples)

    def __contains__(self, anchor: object) -> bool:
        try:
            return as_color(anchor) in self._samples  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return False

    def add(self, sample: ColorSample) -> bool:
        """Insert *sample* unless its anchor is already present.

        Returns:
            ``True`` if the sample was inserted.
        """
        if sample.anchor in self._samples:
            return False
        tile = _validate_tile(sample.tile)
        self._samples[sample.anchor] = ColorSample(sample.anchor, tile)
        return True

    def get(self, anchor: Sequence[int]) -> ColorSample | None:
        return self._samples.get(as_color(anchor))

    @property
    def anchors(self) -> list[Color]:
        return list(self._samples)

    @property
    def failures(self) -> dict[Color, str]:
        """Anchors whose acquisition failed, with the reason."""
        return dict(self._failed)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def resolve(self, anchor: Sequence[int]) -> np.ndarray:
        """Return the tile for *anchor*, acquiring it on first use.

        A cache hit returns without suspending.  Anchors that failed before
        raise :class:`SampleAcquisitionFailed` immediately; they are never
        refetched within the life of this library.
        """
        anchor = as_color(anchor)
        sample = self._samples.get(anchor)
        if sample is not None:
            return sample.tile
        if anchor in self._failed:
            raise SampleAcquisitionFailed(anchor, self._failed[anchor])

        task = self._pending.get(anchor)
        if task is None:
            task = asyncio.create_task(self._acquire(anchor))
            self._pending[anchor] = task
        # One waiter being cancelled must not cancel the shared acquisition.
        return await asyncio.shield(task)

    async def preload(self, anchors: Iterable[Sequence[int]]) -> int:
        """Acquire several anchors concurrently; failures are recorded, not raised.

        Returns:
            Number of anchors resident afterwards out of those requested.
        """
        wanted = list(dict.fromkeys(as_color(a) for a in anchors))
        await asyncio.gather(*(self.resolve(a) for a in wanted), return_exceptions=True)
        return sum(1 for a in wanted if a in self._samples)

    def cancel_pending(self) -> int:
        """Cancel every outstanding acquisition; returns how many were cancelled."""
        tasks = list(self._pending.values())
        for task in tasks:
            task.cancel()
        self._pending.clear()
        if tasks:
            logger.debug("Cancelled %d pending sample acquisition(s)", len(tasks))
        return len(tasks)

    async def _acquire(self, anchor: Color) -> np.ndarray:
        key = anchor_to_key(anchor)
        logger.debug("Fetching sample %s", key)
        try:
            tile = _validate_tile(await self._fetcher(key))
        except Exception as exc:
            reason = f"{type(exc).__name__}: {exc}"
            self._failed[anchor] = reason
            logger.warning("Sample %s unavailable (%s)", key, reason)
            raise SampleAcquisitionFailed(anchor, reason) from exc
        finally:
            self._pending.pop(anchor, None)

        self.add(ColorSample(anchor, tile))
        h, w = tile.shape[:2]
        logger.debug("Sample %s loaded (%dx%d)", key, w, h)
        return self._samples[anchor].tile


# -- Directory-backed samples ------------------------------------------


class DirectorySampleFetcher:
    """Load ``<root>/<RRGGBB><extension>`` tiles without blocking the event loop."""

    def __init__(self, root: str | Path, extension: str = ".jpg") -> None:
        self.root = Path(root)
        self.extension = extension

    def path_for(self, key: str) -> Path:
        return self.root / f"{key}{self.extension}"

    async def __call__(self, key: str) -> np.ndarray:
        return await asyncio.to_thread(load_tile, self.path_for(key))


def scan_sample_directory(root: str | Path, extension: str = ".jpg") -> list[Color]:
    """List the anchors available in *root*, sorted by file name.

    File stems must be six hex digits (``c81e1e.jpg``); anything else is
    ignored.
    """
    root = Path(root)
    if not root.is_dir():
        return []
    anchors: list[Color] = []
    for f in sorted(root.iterdir()):
        if not f.is_file() or f.suffix.lower() != extension.lower():
            continue
        try:
            anchors.append(key_to_anchor(f.stem))
        except ValueError:
            logger.debug("Skipping %s: stem is not an RRGGBB key", f.name)
    return anchors


def index_samples(
    photos: Iterable[Path],
    dest_dir: str | Path,
    tile_size: int = 64,
    extension: str = ".jpg",
) -> list[Color]:
    """Turn arbitrary photos into a sample folder.

    Each photo is centre-cropped to a *tile_size* square and saved under its
    mean colour.  The first photo for a given colour wins; later photos
    with the same mean colour are skipped.

    Returns:
        Anchors written, in input order.
    """
    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    written: list[Color] = []
    for photo in photos:
        with Image.open(photo) as src:
            tile = ImageOps.fit(src.convert("RGB"), (tile_size, tile_size), Image.LANCZOS)
        arr = np.array(tile, dtype=np.uint8)
        anchor = mean_color(arr)
        out = dest_dir / f"{anchor_to_key(anchor)}{extension}"
        if out.exists():
            logger.debug("Skipping %s: %s already present", photo.name, out.name)
            continue
        save_image(arr, out)
        written.append(anchor)
        logger.info("Indexed %s → %s", photo.name, out.name)
    return written
