"""
Utility functions for the mosaic tools.

Provides helper functions for validation, formatting, and logging.
"""

import logging
from typing import List

import click

from .exceptions import LevelOutOfRangeError

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(verbosity: int = 0):
    """
    Configure root logging for command line use.

    Args:
        verbosity: 0 for warnings, 1 for info, 2 or more for debug
    """
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT)


def validate_level(level: int, num_resolutions: int) -> bool:
    """
    Validate an overview level.

    Returns:
        True if valid, raises LevelOutOfRangeError otherwise
    """
    if not 0 <= level < num_resolutions:
        raise LevelOutOfRangeError(level, num_resolutions)
    return True


def parse_band_list(bands: str) -> List[str]:
    """
    Parse a comma separated band list.

    Examples:
        >>> parse_band_list("B4, B3,B2")
        ['B4', 'B3', 'B2']
    """
    names = [name.strip() for name in bands.split(',') if name.strip()]
    if not names:
        raise ValueError(f"Invalid band list: {bands!r}")
    return names


def format_bytes(size_bytes: int) -> str:
    """
    Format byte size as human readable string.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted string (e.g., "1.23 MB")
    """
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if size_bytes < 1024.0:
            return f"{size_bytes:.2f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.2f} PB"


def estimate_level_size(width: int, height: int, level: int, itemsize: int = 2) -> int:
    """Bytes of one band composited at an overview level."""
    return (width >> level) * (height >> level) * itemsize


def print_summary(product):
    """
    Print product summary.

    Args:
        product: Opened Sentinel2Product
    """
    click.echo("\n" + "=" * 50)
    click.echo("Product Summary")
    click.echo("=" * 50)
    click.echo(f"Name: {product.name}")
    click.echo(f"Type: {product.product_type}")
    if product.start_time:
        click.echo(f"Sensing: {product.start_time.isoformat()} - "
                   f"{product.stop_time.isoformat() if product.stop_time else '?'}")

    rect = product.scene_rectangle
    click.echo(f"Scene: {rect.width} x {rect.height} pixels, {product.tile_count} tiles")
    click.echo(f"Levels: {product.num_resolutions}")
    click.echo(f"Level 0 band size: {format_bytes(estimate_level_size(rect.width, rect.height, 0))}")

    envelope = product.scene_envelope
    if envelope is not None:
        click.echo(f"CRS: {product.crs}")
        click.echo(f"Envelope: [{envelope.min_x:.1f}, {envelope.min_y:.1f}, "
                   f"{envelope.max_x:.1f}, {envelope.max_y:.1f}]")

    click.echo("Bands:")
    for info in product.band_infos:
        click.echo(f"  {info.band_name:>4}  {info.resolution!s:>4}  "
                   f"{info.waveband_info.wavelength:7.1f} nm  {len(info.tile_files)} tiles")
    click.echo("=" * 50 + "\n")
