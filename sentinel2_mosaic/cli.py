"""
Command line interface for Sentinel-2 mosaics.

Provides commands to inspect a product, export composited band levels as
GeoTIFF, write quicklooks, and draw the tile layout.
"""

import sys
import traceback
from typing import Optional

import click
from tqdm import tqdm

from . import __version__
from .cache import CacheManager
from .exceptions import EmptyMosaicError
from .geotiff import GeoTIFFWriter, render_tile_picture, write_quicklook
from .product import open_product
from .utils import parse_band_list, print_summary, setup_logging, validate_level


class TileProgress:
    """Progress callback drawing one tqdm bar per composite."""

    def __init__(self, description: str, disable: bool = False):
        self.description = description
        self.disable = disable
        self.bar = None

    def __call__(self, completed: int, total: int):
        if self.bar is None:
            self.bar = tqdm(total=total, desc=self.description, unit='tile', disable=self.disable)
        self.bar.update(completed - self.bar.n)
        if completed >= total:
            self.close()

    def close(self):
        if self.bar is not None:
            self.bar.close()
            self.bar = None


def _fail(e: BaseException, verbose: int):
    click.echo(f"\nError: {e}", err=True)
    if verbose > 0:
        traceback.print_exc()
    sys.exit(1)


@click.group()
@click.option('--cache', type=click.Path(file_okay=False), default=None,
              help='Root of the decoded tile cache (default: ~/.sentinel2-mosaic/cache)')
@click.option('--no-cache', is_flag=True, help='Disable the decoded tile cache')
@click.option('--workers', type=int, default=4, help='Number of tile decode workers (default: 4)')
@click.option('--epsg', type=str, default=None,
              help='Only use tiles in this CRS, e.g. EPSG:32615')
@click.option('-v', '--verbose', count=True,
              help='Increase verbosity (can be used multiple times)')
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, cache: Optional[str], no_cache: bool, workers: int,
         epsg: Optional[str], verbose: int):
    """
    Composite Sentinel-2 tiles into scene mosaics.

    \b
    Examples:
        # Show bands, tiles and geocoding of a product
        s2-mosaic info S2A_MSIL1C_20160701T170012_N0204_R069_T15SUC.SAFE

        # Export band B4 at overview level 2 as GeoTIFF
        s2-mosaic export PRODUCT --band B4 --level 2 --output b4_l2.tif

        # True colour quicklook at level 4
        s2-mosaic quicklook PRODUCT --bands B4,B3,B2 --level 4 --output rgb.png
    """
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj.update(cache=cache, use_cache=not no_cache, workers=workers,
                   epsg=epsg, verbose=verbose)


def _open(ctx: click.Context, product_path: str):
    return open_product(product_path, cache_root=ctx.obj['cache'], epsg=ctx.obj['epsg'],
                        max_workers=ctx.obj['workers'], use_cache=ctx.obj['use_cache'])


@main.command()
@click.argument('product_path', type=click.Path(exists=True))
@click.option('--tiles', 'show_tiles', is_flag=True, help='List tile placements')
@click.pass_context
def info(ctx: click.Context, product_path: str, show_tiles: bool):
    """Show a summary of a product."""
    try:
        product = _open(ctx, product_path)
        print_summary(product)

        if show_tiles and product.scene is not None:
            columns, rows = product.scene.tile_grid_shape
            click.echo(f"Tile grid: {columns} x {rows}")
            for index, tile in enumerate(product.scene.tiles):
                rect = product.tile_rectangle(index)
                click.echo(f"  {index:3d}  {tile.tile_id}  x={rect.x} y={rect.y} "
                           f"w={rect.width} h={rect.height}")
    except Exception as e:
        _fail(e, ctx.obj['verbose'])


@main.command()
@click.argument('product_path', type=click.Path(exists=True))
@click.option('--band', '-b', type=str, required=True, help='Band to export, e.g. B4')
@click.option('--level', '-l', type=int, default=0, help='Overview level (default: 0)')
@click.option('--output', '-o', type=str, required=True, help='Output GeoTIFF file path')
@click.option('--bigtiff', is_flag=True, help='Force BigTIFF format')
@click.option('--compression', type=click.Choice(['lzw', 'deflate', 'none']), default='lzw',
              help='Compression method (default: lzw)')
@click.option('--clear-cache', is_flag=True, help='Clear the product cache before decoding')
@click.pass_context
def export(ctx: click.Context, product_path: str, band: str, level: int, output: str,
           bigtiff: bool, compression: str, clear_cache: bool):
    """Export one band at one overview level as GeoTIFF."""
    progress = TileProgress(f"Compositing {band}", disable=ctx.obj['verbose'] > 1)
    try:
        product = _open(ctx, product_path)
        validate_level(level, product.num_resolutions)

        cache_manager = CacheManager(product.cache_dir) if ctx.obj['use_cache'] else None
        if cache_manager is not None and clear_cache:
            click.echo(f"Clearing cache: {product.cache_dir}")
            cache_manager.clear()

        writer = GeoTIFFWriter(bigtiff=bigtiff, compression=compression)
        result = writer.write_level(product, band, level, output, progress_callback=progress)
        progress.close()

        click.echo("\n" + "=" * 50)
        click.echo("GeoTIFF created successfully!")
        click.echo("=" * 50)
        click.echo(f"File: {result['path']}")
        click.echo(f"Band: {result['band']} (level {result['level']})")
        click.echo(f"Size: {result['width']} x {result['height']} pixels")
        if result['bounds']:
            left, bottom, right, top = result['bounds']
            click.echo(f"Bounds: [{left:.1f}, {bottom:.1f}, {right:.1f}, {top:.1f}]")
        if result['crs']:
            click.echo(f"CRS: {result['crs']}")
        if result['bigtiff']:
            click.echo("Format: BigTIFF")
        click.echo(f"Compression: {result['compression']}")
        click.echo("=" * 50)

        if cache_manager is not None:
            # Re-read the index written by the decoder
            stats = CacheManager(product.cache_dir).get_stats()
            click.echo(f"\nCache stats: {stats['total_tiles']} tiles, {stats['total_size_mb']} MB")

    except EmptyMosaicError as e:
        progress.close()
        click.echo(f"Error: No tiles were successfully decoded ({e})", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        progress.close()
        click.echo("\nExport cancelled", err=True)
        sys.exit(130)
    except Exception as e:
        progress.close()
        _fail(e, ctx.obj['verbose'])


@main.command()
@click.argument('product_path', type=click.Path(exists=True))
@click.option('--bands', type=str, default='B4,B3,B2',
              help='One band, or red,green,blue bands (default: B4,B3,B2)')
@click.option('--level', '-l', type=int, default=4, help='Overview level (default: 4)')
@click.option('--output', '-o', type=str, required=True, help='Output PNG file path')
@click.pass_context
def quicklook(ctx: click.Context, product_path: str, bands: str, level: int, output: str):
    """Write a stretched 8-bit PNG quicklook."""
    progress = TileProgress("Compositing", disable=ctx.obj['verbose'] > 1)
    try:
        band_names = parse_band_list(bands)
        product = _open(ctx, product_path)
        validate_level(level, product.num_resolutions)

        result = write_quicklook(product, band_names, level, output, progress_callback=progress)
        click.echo(f"Quicklook written: {result['path']} ({result['width']} x {result['height']})")
    except KeyboardInterrupt:
        progress.close()
        click.echo("\nQuicklook cancelled", err=True)
        sys.exit(130)
    except Exception as e:
        progress.close()
        _fail(e, ctx.obj['verbose'])


@main.command(name='tile-grid')
@click.argument('product_path', type=click.Path(exists=True))
@click.option('--output', '-o', type=str, required=True, help='Output PNG file path')
@click.option('--size', type=int, default=2048, help='Longer picture side in pixels (default: 2048)')
@click.pass_context
def tile_grid(ctx: click.Context, product_path: str, output: str, size: int):
    """Draw the tile layout of a product."""
    try:
        product = _open(ctx, product_path)
        if product.scene is None:
            click.echo("Error: Product has no tile geocoding", err=True)
            sys.exit(1)

        image = render_tile_picture(product.scene, size)
        image.save(output, format='PNG')
        click.echo(f"Tile grid written: {output} ({image.width} x {image.height})")
    except Exception as e:
        _fail(e, ctx.obj['verbose'])


def run_cli():
    """Entry point for console script."""
    main(obj={})


if __name__ == '__main__':
    run_cli()
