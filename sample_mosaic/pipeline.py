"""End-to-end run for one photograph."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path

from sample_mosaic.compositor import SynthesisResult, synthesize
from sample_mosaic.config import MosaicConfig
from sample_mosaic.filters import quantize, smooth
from sample_mosaic.image_io import load_image, make_comparison_grid, save_image
from sample_mosaic.matcher import RegionMatcher
from sample_mosaic.samples import DirectorySampleFetcher, SampleLibrary, scan_sample_directory

logger = logging.getLogger(__name__)


def build_library(cfg: MosaicConfig) -> tuple[SampleLibrary, RegionMatcher]:
    """Sample library and matcher backed by ``cfg.samples_dir``.

    Only the anchor list is read up front; tiles are loaded on first use.
    """
    anchors = scan_sample_directory(cfg.samples_dir, cfg.sample_extension)
    logger.info("Found %d sample anchor(s) in %s", len(anchors), cfg.samples_dir)
    fetcher = DirectorySampleFetcher(cfg.samples_dir, cfg.sample_extension)
    return SampleLibrary(fetcher), RegionMatcher(
        anchors, color_space=cfg.color_space, max_distance=cfg.max_match_distance,
    )


def render_mosaic(
    image_path: str | Path,
    output_path: str | Path,
    cfg: MosaicConfig | None = None,
    library: SampleLibrary | None = None,
    matcher: RegionMatcher | None = None,
) -> SynthesisResult:
    """Smooth, quantise and synthesise *image_path*, saving to *output_path*.

    Passing the same *library* to several calls shares loaded tiles between
    runs; otherwise a fresh one is built from ``cfg.samples_dir``.
    """
    cfg = cfg or MosaicConfig()
    output_path = Path(output_path)
    if library is None or matcher is None:
        built_library, built_matcher = build_library(cfg)
        # Both define __len__, so an empty one is falsy.
        library = built_library if library is None else library
        matcher = built_matcher if matcher is None else matcher

    src = load_image(image_path, cfg.max_side)
    h, w = src.shape[:2]
    logger.info("Source: %dx%d", w, h)

    t0 = time.perf_counter()
    logger.info("Applying gaussian blur and median filter ...")
    smoothed = smooth(src, sigma=cfg.blur_sigma, median_radius=cfg.median_radius)
    logger.info("Applying colour quantisation (%d colours) ...", cfg.max_colors)
    quantized = quantize(smoothed, cfg.max_colors)
    logger.info("Pre-processing done  (%.1f s)", time.perf_counter() - t0)

    result = asyncio.run(
        synthesize(
            quantized, library, matcher,
            tolerance=cfg.tolerance,
            skip_edge_neighbors=cfg.skip_edge_neighbors,
        )
    )
    if not result.complete:
        logger.warning(
            "%d pixel(s) left unfilled (%d unusable anchor(s))",
            result.unfilled_count, len(result.failures),
        )

    mosaic = result.flatten(cfg.unfilled_color)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    save_image(mosaic, output_path, quality=cfg.jpeg_quality)
    logger.info("Saved %s", output_path)

    stem = output_path.stem
    if cfg.save_quantized:
        save_image(
            quantized,
            output_path.with_name(f"{stem}_quantized.{cfg.output_format}"),
            quality=cfg.jpeg_quality,
        )
    if cfg.save_comparison:
        make_comparison_grid(
            src, quantized, mosaic,
            output_path.with_name(f"{stem}_comparison.png"),
        )
    return result
