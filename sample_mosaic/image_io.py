"""Image loading, saving, and comparison-strip generation."""

from __future__ import annotations

from pathlib import Path

import numpy as np
from PIL import Image, ImageDraw, ImageFont

_FORMATS = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "bmp": "BMP",
    "tif": "TIFF",
    "tiff": "TIFF",
    "webp": "WEBP",
}


def compute_target_size(
    original_width: int,
    original_height: int,
    max_side: int,
) -> tuple[int, int]:
    """Compute downscaled (w, h) preserving aspect ratio.

    The longest side becomes *max_side*; the other is scaled
    proportionally (rounded to the nearest integer, minimum 1).
    """
    if original_width >= original_height:
        w = max_side
        h = max(1, round(original_height * max_side / original_width))
    else:
        h = max_side
        w = max(1, round(original_width * max_side / original_height))
    return w, h


def load_image(path: str | Path, max_side: int | None = None) -> np.ndarray:
    """Load an image as RGB, optionally shrinking it so its longest side is *max_side*.

    Images already smaller than *max_side* are never upscaled.

    Returns:
        (H, W, 3) uint8 array.
    """
    with Image.open(path) as src:
        img = src.convert("RGB")
    if max_side is not None and max(img.width, img.height) > max_side:
        w, h = compute_target_size(img.width, img.height, max_side)
        img = img.resize((w, h), Image.LANCZOS)
    return np.array(img, dtype=np.uint8)


def load_tile(path: str | Path) -> np.ndarray:
    """Decode a sample tile to an (H, W, 3) uint8 array."""
    with Image.open(path) as src:
        src.load()
        return np.array(src.convert("RGB"), dtype=np.uint8)


def save_image(
    array: np.ndarray,
    path: str | Path,
    quality: int = 90,
) -> None:
    """Save an (H, W, 3) array; the format follows the file suffix."""
    path = Path(path)
    fmt = _FORMATS.get(path.suffix.lower().lstrip("."))
    if fmt is None:
        msg = f"Unsupported output format '{path.suffix}'"
        raise ValueError(msg)
    img = Image.fromarray(array.astype(np.uint8))
    if fmt == "JPEG":
        img.save(path, format=fmt, quality=quality)
    else:
        img.save(path, format=fmt)


def make_comparison_grid(
    original: np.ndarray,
    quantized: np.ndarray,
    mosaic: np.ndarray,
    output_path: str | Path,
) -> None:
    """Create a 3-panel strip: Original | Quantized | Mosaic.

    All panels share the mosaic's pixel dimensions.
    """
    panel_h, panel_w = mosaic.shape[:2]
    label_height = 36

    panels = [
        Image.fromarray(original).resize((panel_w, panel_h), Image.LANCZOS),
        Image.fromarray(quantized).resize((panel_w, panel_h), Image.NEAREST),
        Image.fromarray(mosaic),
    ]
    labels = ["Original", "Quantized", f"Mosaic {panel_w}x{panel_h}"]

    gap = 8
    total_w = len(panels) * panel_w + (len(panels) - 1) * gap
    total_h = panel_h + label_height

    canvas = Image.new("RGB", (total_w, total_h), (30, 30, 30))
    draw = ImageDraw.Draw(canvas)

    try:
        font = ImageFont.truetype(
            "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf", 18,
        )
    except OSError:
        font = ImageFont.load_default()

    for i, (panel, label) in enumerate(zip(panels, labels, strict=False)):
        x = i * (panel_w + gap)
        canvas.paste(panel, (x, label_height))

        bbox = draw.textbbox((0, 0), label, font=font)
        text_w = bbox[2] - bbox[0]
        tx = x + (panel_w - text_w) // 2
        draw.text((tx, 6), label, fill=(220, 220, 220), font=font)

    canvas.save(output_path)
