"""
Sample Mosaic
=============

Rebuild a photograph as a mosaic of small reference photos ("samples").
The photo is smoothed and reduced to a small palette, then every flat
region is flood-filled with the tile of the sample whose anchor colour
is nearest to the region's colour.

Sample tiles are loaded lazily through an asynchronous fetcher, one
acquisition per anchor however many regions need it.
"""

__version__ = "0.3.0"

from sample_mosaic.color_utils import anchor_to_key, key_to_anchor, within_tolerance
from sample_mosaic.compositor import SynthesisResult, flood_fill, synthesize
from sample_mosaic.config import MosaicConfig
from sample_mosaic.errors import (
    InvalidImageDimensions,
    MosaicError,
    NoMatchingSample,
    SampleAcquisitionFailed,
)
from sample_mosaic.filters import quantize, smooth
from sample_mosaic.matcher import RegionMatcher, find_closest
from sample_mosaic.pipeline import render_mosaic
from sample_mosaic.samples import (
    ColorSample,
    DirectorySampleFetcher,
    SampleLibrary,
    scan_sample_directory,
)

__all__ = [
    "ColorSample",
    "DirectorySampleFetcher",
    "InvalidImageDimensions",
    "MosaicConfig",
    "MosaicError",
    "NoMatchingSample",
    "RegionMatcher",
    "SampleAcquisitionFailed",
    "SampleLibrary",
    "SynthesisResult",
    "anchor_to_key",
    "find_closest",
    "flood_fill",
    "key_to_anchor",
    "quantize",
    "render_mosaic",
    "scan_sample_directory",
    "smooth",
    "synthesize",
    "within_tolerance",
]
