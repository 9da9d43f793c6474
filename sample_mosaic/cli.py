"""Rich command-line interface powered by Typer."""

from __future__ import annotations

import logging
import time
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from sample_mosaic.color_utils import anchor_to_key
from sample_mosaic.config import MosaicConfig
from sample_mosaic.pipeline import build_library, render_mosaic
from sample_mosaic.samples import index_samples, scan_sample_directory

app = typer.Typer(
    name="sample-mosaic",
    help="Rebuild photos as mosaics of colour-matched sample tiles.",
    add_completion=False,
    rich_markup_mode="rich",
)
console = Console()


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=True)],
    )


def _collect_images(folder: Path, extensions: frozenset[str]) -> list[Path]:
    if not folder.exists():
        return []
    return sorted(
        f for f in folder.iterdir()
        if f.is_file() and f.suffix.lower() in extensions
    )


def _check_samples(samples_dir: Path, extension: str) -> None:
    if not scan_sample_directory(samples_dir, extension):
        console.print(f"\n[red]No RRGGBB{extension} samples found in {samples_dir}/[/red]")
        console.print("Build some with [bold]sample-mosaic index PHOTOS_DIR[/bold].\n")
        raise typer.Exit(1)


# Defaults come from MosaicConfig - single source of truth
_DEFAULTS = MosaicConfig()


# -- batch command -----------------------------------------------------

@app.command()
def batch(
    input_dir: Path = typer.Option(
        _DEFAULTS.input_dir, "--input", "-i", help="Folder with source images",
    ),
    output_dir: Path = typer.Option(
        _DEFAULTS.output_dir, "--output", "-o", help="Results folder",
    ),
    samples_dir: Path = typer.Option(
        _DEFAULTS.samples_dir, "--samples", "-s", help="Folder of RRGGBB sample tiles",
    ),
    max_colors: int = typer.Option(
        _DEFAULTS.max_colors, "--colors", "-c", help="Quantiser palette size",
    ),
    tolerance: int = typer.Option(
        _DEFAULTS.tolerance, "--tolerance", "-t",
        help="Per-channel difference under which pixels share a region",
    ),
    max_side: int | None = typer.Option(
        _DEFAULTS.max_side, "--max-side", "-m",
        help="Shrink sources so the longest side is at most this",
    ),
    color_space: str = typer.Option(
        _DEFAULTS.color_space, "--color-space", help="'rgb' or 'lab'",
    ),
    max_distance: float | None = typer.Option(
        _DEFAULTS.max_match_distance, "--max-distance",
        help="Leave regions unfilled when no sample is this close",
    ),
    blur: float = typer.Option(_DEFAULTS.blur_sigma, "--blur", help="Gaussian sigma"),
    median: int = typer.Option(_DEFAULTS.median_radius, "--median", help="Median radius"),
    output_format: str = typer.Option(
        _DEFAULTS.output_format, "--format", "-f", help="Output image format",
    ),
    comparison: bool = typer.Option(
        _DEFAULTS.save_comparison, "--comparison/--no-comparison",
        help="Save Original | Quantized | Mosaic strip",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Process all images in INPUT_DIR and write results to OUTPUT_DIR."""
    _setup_logging(verbose)

    try:
        cfg = MosaicConfig(
            tolerance=tolerance,
            max_colors=max_colors,
            blur_sigma=blur,
            median_radius=median,
            max_side=max_side,
            color_space=color_space,
            max_match_distance=max_distance,
            samples_dir=samples_dir,
            output_format=output_format,
            save_quantized=comparison,
            save_comparison=comparison,
            input_dir=input_dir,
            output_dir=output_dir,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    input_dir.mkdir(exist_ok=True)
    output_dir.mkdir(exist_ok=True)
    _check_samples(samples_dir, cfg.sample_extension)

    images = _collect_images(input_dir, cfg.SUPPORTED_EXTENSIONS)
    if not images:
        console.print(f"\n[yellow]No images found in {input_dir}/[/yellow]")
        console.print("Place .jpg / .png / ... files there and re-run.\n")
        raise typer.Exit(0)

    console.print(Panel.fit(
        f"[bold]SAMPLE MOSAIC[/bold]\n"
        f"Colours: {cfg.max_colors}  |  Tolerance: {cfg.tolerance}\n"
        f"Samples: {cfg.samples_dir}  |  Colour space: {cfg.color_space}\n"
        f"Images: {len(images)}",
        border_style="cyan",
    ))

    # One library for the whole batch so tiles are loaded once
    library, matcher = build_library(cfg)

    for idx, img_path in enumerate(images, 1):
        console.rule(f"[bold cyan][{idx}/{len(images)}] {img_path.name}[/bold cyan]")
        t_total = time.perf_counter()

        out_path = output_dir / f"{img_path.stem}_mosaic.{cfg.output_format}"
        result = render_mosaic(img_path, out_path, cfg, library=library, matcher=matcher)

        elapsed = time.perf_counter() - t_total
        mark = "[green]✓[/green]" if result.complete else "[yellow]![/yellow]"
        console.print(
            f"  {mark} {out_path.name}  "
            f"[dim]{result.width}x{result.height}  regions={result.regions}"
            f"  coverage={result.coverage:.1%}  time={elapsed:.1f}s[/dim]"
        )

    console.print(Panel.fit(
        f"[bold green]ALL DONE[/bold green] - results in [bold]{output_dir}/[/bold]",
        border_style="green",
    ))


# -- single-image command ----------------------------------------------

@app.command()
def single(
    image: Path = typer.Argument(..., help="Path to the source photo"),
    output: Path = typer.Option(Path("output.jpg"), "--output", "-o"),
    samples_dir: Path = typer.Option(_DEFAULTS.samples_dir, "--samples", "-s"),
    max_colors: int = typer.Option(_DEFAULTS.max_colors, "--colors", "-c"),
    tolerance: int = typer.Option(_DEFAULTS.tolerance, "--tolerance", "-t"),
    max_side: int | None = typer.Option(_DEFAULTS.max_side, "--max-side", "-m"),
    color_space: str = typer.Option(_DEFAULTS.color_space, "--color-space"),
    max_distance: float | None = typer.Option(_DEFAULTS.max_match_distance, "--max-distance"),
    legacy_edges: bool = typer.Option(
        _DEFAULTS.skip_edge_neighbors, "--legacy-edges/--no-legacy-edges",
        help="Never grow regions into row/column 0",
    ),
    comparison: bool = typer.Option(_DEFAULTS.save_comparison, "--comparison/--no-comparison"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Process a single image."""
    _setup_logging(verbose)

    if not image.is_file():
        raise typer.BadParameter(f"{image} does not exist", param_hint="IMAGE")
    try:
        cfg = MosaicConfig(
            tolerance=tolerance,
            max_colors=max_colors,
            max_side=max_side,
            color_space=color_space,
            max_match_distance=max_distance,
            skip_edge_neighbors=legacy_edges,
            samples_dir=samples_dir,
            save_comparison=comparison,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    _check_samples(samples_dir, cfg.sample_extension)

    result = render_mosaic(image, output, cfg)

    mark = "[green]✓[/green]" if result.complete else "[yellow]![/yellow]"
    console.print(
        f"{mark} Saved to {output}  "
        f"[dim]{result.width}x{result.height}  regions={result.regions}"
        f"  unfilled={result.unfilled_count}[/dim]"
    )
    for anchor, reason in result.failures:
        console.print(f"  [yellow]unusable[/yellow] {anchor}: [dim]{reason}[/dim]")


# -- sample folder commands --------------------------------------------

@app.command()
def samples(
    samples_dir: Path = typer.Option(_DEFAULTS.samples_dir, "--samples", "-s"),
) -> None:
    """List the sample anchors available in SAMPLES_DIR."""
    anchors = scan_sample_directory(samples_dir, _DEFAULTS.sample_extension)
    if not anchors:
        console.print(f"[yellow]No samples in {samples_dir}/[/yellow]")
        raise typer.Exit(0)

    table = Table(title=f"{len(anchors)} samples in {samples_dir}")
    table.add_column("Key")
    table.add_column("RGB", justify="right")
    table.add_column("Swatch")
    for anchor in anchors:
        key = anchor_to_key(anchor)
        table.add_row(key, "%d, %d, %d" % anchor, f"[on #{key}]      [/on #{key}]")
    console.print(table)


@app.command()
def index(
    photos_dir: Path = typer.Argument(..., help="Folder of arbitrary photos"),
    samples_dir: Path = typer.Option(_DEFAULTS.samples_dir, "--samples", "-s"),
    tile_size: int = typer.Option(64, "--tile-size", help="Square tile side in pixels"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Build a sample folder: each photo saved as a tile named by its mean colour."""
    _setup_logging(verbose)
    photos = _collect_images(photos_dir, _DEFAULTS.SUPPORTED_EXTENSIONS)
    if not photos:
        console.print(f"[yellow]No images found in {photos_dir}/[/yellow]")
        raise typer.Exit(0)

    written = index_samples(photos, samples_dir, tile_size, _DEFAULTS.sample_extension)
    console.print(
        f"[green]✓[/green] {len(written)} new sample(s) in {samples_dir}  "
        f"[dim]{len(photos) - len(written)} skipped[/dim]"
    )


if __name__ == "__main__":
    app()
