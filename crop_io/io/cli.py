"""Command-line interface for crop-io.

Provides a `cio` command with subcommands for inspecting media files and for
rotating and cropping videos and images.
"""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Optional

import rich_click as click
from tqdm import tqdm

from crop_io.errors import CropError
from crop_io.io.asset import MediaAsset, inspect_asset
from crop_io.io.coordinator import crop_video
from crop_io.io.export import EXPORT_PRESETS, ExportSettings
from crop_io.io.image import crop_image
from crop_io.model.job import CropRect

click.rich_click.USE_MARKDOWN = True


@click.group(help="crop-io command line interface")
@click.option("-v", "--verbose", is_flag=True, help="Log job progress to stderr.")
def cli(verbose: bool):
    """Top-level command group for the crop-io CLI."""
    if verbose:
        logging.basicConfig(
            level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s"
        )


def _parse_rect(ctx, param, value: str) -> CropRect:
    try:
        return CropRect.parse(value)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc


def _print_asset_summary(asset: MediaAsset) -> str:
    duration = f"{asset.duration:.3f}s" if asset.duration is not None else "unknown"
    lines = [
        f"file: {asset.path}",
        f"format: {asset.format_name}",
        f"duration: {duration}",
        f"tracks: {len(asset.tracks)}",
    ]
    for track in asset.tracks:
        if track.kind == "video":
            fps = f"{track.fps:.2f}" if track.fps else "?"
            lines.append(
                f"- {track.index}: video {track.codec} {track.width}x{track.height} "
                f"fps={fps} rotation={track.rotation}"
            )
        else:
            lines.append(f"- {track.index}: audio {track.codec}")
    return "\n".join(lines)


@cli.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path))
def probe(path: Path):
    """Print the tracks of a media file."""
    try:
        asset = inspect_asset(path)
    except CropError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(_print_asset_summary(asset))


@cli.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--rect",
    required=True,
    callback=_parse_rect,
    help="Crop rectangle `x,y,width,height` in the displayed frame.",
)
@click.option(
    "--angle",
    type=float,
    default=0.0,
    show_default=True,
    help="Clockwise rotation in degrees, applied before cropping.",
)
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Output path. Defaults to `<input>.cropped.mov` next to the input.",
)
@click.option(
    "--preset",
    type=click.Choice(list(EXPORT_PRESETS)),
    default="highest",
    show_default=True,
    help="Export quality preset.",
)
@click.option(
    "--quality",
    type=click.Choice(["nearest", "bilinear", "bicubic"]),
    default="bilinear",
    show_default=True,
    help="Interpolation used for rotated frames.",
)
@click.option(
    "progress",
    "--progress/--no-progress",
    default=True,
    help="Show a progress bar.",
)
def crop(
    path: Path,
    rect: CropRect,
    angle: float,
    output: Optional[Path],
    preset: str,
    quality: str,
    progress: bool,
):
    """Rotate and crop a video, keeping its audio."""
    settings = ExportSettings(preset=preset, quality=quality)
    if output is None:
        output = path.with_name(f"{path.stem}.cropped.{settings.extension}")

    with tqdm(
        total=100, desc="Cropping", unit="%", disable=not progress, leave=False
    ) as pbar:

        def on_progress(value: float):
            pbar.update(round(value * 100) - pbar.n)

        try:
            out_path = crop_video(
                path,
                rect,
                angle=math.radians(angle),
                output_path=output,
                settings=settings,
                on_progress=on_progress,
            )
        except CropError as exc:
            raise click.ClickException(str(exc)) from exc

    click.echo(f"Saved: {out_path}")


@cli.command("crop-image")
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--rect",
    required=True,
    callback=_parse_rect,
    help="Crop rectangle `x,y,width,height` in the displayed image.",
)
@click.option(
    "--angle",
    type=float,
    default=0.0,
    show_default=True,
    help="Clockwise rotation in degrees, applied before cropping.",
)
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Output path. Defaults to `<input>_cropped.<ext>` next to the input.",
)
def crop_image_command(path: Path, rect: CropRect, angle: float, output: Optional[Path]):
    """Rotate and crop an image."""
    try:
        out_path = crop_image(path, rect, angle=math.radians(angle), output_path=output)
    except CropError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Saved: {out_path}")
