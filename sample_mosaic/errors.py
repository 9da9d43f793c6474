"""Exceptions raised by the synthesis engine."""

from __future__ import annotations


class MosaicError(Exception):
    """Base class for all sample-mosaic errors."""


class NoMatchingSample(MosaicError):
    """No sample anchor is available for a colour.

    Pixel-local: the region is left unfilled and synthesis continues.
    """


class SampleAcquisitionFailed(MosaicError):
    """Fetching or decoding the tile for *anchor* failed.

    Pixel-local: the anchor is unusable for the rest of the session and
    every region that needs it is left unfilled.
    """

    def __init__(self, anchor: tuple[int, int, int], reason: str) -> None:
        self.anchor = anchor
        self.reason = reason
        super().__init__(f"sample {anchor} unavailable: {reason}")


class InvalidImageDimensions(MosaicError, ValueError):
    """The input image has zero area or is not an (H, W, 3) grid."""
