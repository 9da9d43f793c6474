"""Centralised configuration via a frozen dataclass."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

COLOR_SPACES = ("rgb", "lab")


@dataclass(frozen=True)
class MosaicConfig:
    """All tuneable parameters for a mosaic run.

    Attributes:
        tolerance:       Per-channel difference (exclusive) under which two
                         pixels belong to the same region.
        max_colors:      Palette size handed to the quantiser.
        blur_sigma:      Gaussian blur sigma of the smoothing stage.
        median_radius:   Median filter radius (window is 2r+1 square).
        max_side:        Optional downscale of the source (None = keep size).
        color_space:     Matcher distance - "rgb" (Euclidean) or "lab".
        max_match_distance: Anchors farther than this from a region colour
                         are not used (None = always take the nearest).
        skip_edge_neighbors: Use the historical ``x > 1`` / ``y > 1`` rule:
                         column 0 is never entered from the right, nor
                         row 0 from below.
        unfilled_color:  Colour written for unfilled pixels when saving.
        samples_dir:     Folder of ``RRGGBB`` named sample tiles.
        sample_extension: File extension of the sample tiles.
        output_format:   Image format for saved files.
        jpeg_quality:    Quality used when saving JPEG output.
        save_quantized:  Persist the smoothed + quantised intermediate.
        save_comparison: Generate a side-by-side comparison strip.
        input_dir:       Folder to scan for source images.
        output_dir:      Folder for results.
    """

    # Synthesis
    tolerance: int = 4
    color_space: str = "rgb"
    max_match_distance: float | None = None
    skip_edge_neighbors: bool = False

    # Pre-processing
    max_colors: int = 256
    blur_sigma: float = 2.0
    median_radius: int = 2
    max_side: int | None = None

    # Samples
    samples_dir: Path = field(default_factory=lambda: Path("samples"))
    sample_extension: str = ".jpg"

    # Output
    unfilled_color: tuple[int, int, int] = (0, 0, 0)
    output_format: str = "jpg"
    jpeg_quality: int = 90
    save_quantized: bool = False
    save_comparison: bool = False

    # Paths
    input_dir: Path = field(default_factory=lambda: Path("images"))
    output_dir: Path = field(default_factory=lambda: Path("output"))

    SUPPORTED_EXTENSIONS: frozenset[str] = frozenset(
        {".jpg", ".jpeg", ".png", ".bmp", ".tiff", ".tif", ".webp", ".jfif"}
    )

    def __post_init__(self) -> None:
        if self.tolerance < 1:
            msg = f"tolerance must be >= 1, got {self.tolerance}"
            raise ValueError(msg)
        if not 1 <= self.max_colors <= 256:
            msg = f"max_colors must be in [1, 256], got {self.max_colors}"
            raise ValueError(msg)
        if self.color_space not in COLOR_SPACES:
            available = ", ".join(COLOR_SPACES)
            msg = f"Unknown colour space '{self.color_space}'. Available: {available}"
            raise ValueError(msg)
