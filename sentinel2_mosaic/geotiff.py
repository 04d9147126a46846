"""
GeoTIFF and picture export of composited levels.

Writes band mosaics as georeferenced GeoTIFF files with BigTIFF support,
stretched 8-bit quicklooks, and a sketch of the tile layout.
"""

import logging
import threading
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np
import rasterio
from PIL import Image, ImageDraw
from rasterio.crs import CRS

from .config import DEFAULT_TILE_SIZE, FILL_CODE_MOSAIC_BG
from .exceptions import EmptyMosaicError
from .mosaic import ProgressCallback
from .product import Sentinel2Product
from .tiles import SceneDescription

logger = logging.getLogger(__name__)

TILE_PICTURE_SIZE = 2048


class GeoTIFFWriter:
    """
    Writes GeoTIFF files from composited band levels.

    Handles georeferencing from the product's tile CRS and BigTIFF support.
    """

    def __init__(self, bigtiff: bool = False, compression: str = 'lzw',
                 block_size: int = DEFAULT_TILE_SIZE, nodata=FILL_CODE_MOSAIC_BG):
        """
        Initialize GeoTIFF writer.

        Args:
            bigtiff: Whether to use BigTIFF format
            compression: Compression method (lzw, deflate, none)
            block_size: Internal tile size of the GeoTIFF
            nodata: Value marking pixels not covered by any tile
        """
        self.bigtiff = bigtiff
        self.compression = compression
        self.block_size = block_size
        self.nodata = nodata

    def _determine_bigtiff(self, width: int, height: int, itemsize: int) -> str:
        """
        Determine if BigTIFF should be used based on image size.

        Returns:
            'YES' or 'IF_SAFER' for BIGTIFF parameter
        """
        if self.bigtiff:
            return 'YES'

        # A full 10 m mosaic of a long datastrip easily exceeds 4GB
        if width * height * itemsize > 4 * 1024 * 1024 * 1024:
            return 'YES'
        return 'IF_SAFER'

    def write_level(self, product: Sentinel2Product, band_name: str, level: int,
                    output_path: Union[str, Path],
                    cancel_event: Optional[threading.Event] = None,
                    progress_callback: Optional[ProgressCallback] = None) -> Dict:
        """
        Write one band of a product at an overview level as GeoTIFF.

        Args:
            product: Opened product
            band_name: Band to export
            level: Overview level
            output_path: Output file path
            cancel_event: Set to abort the composite
            progress_callback: Optional callback function (completed, total)

        Returns:
            Dictionary with output file information

        Raises:
            EmptyMosaicError: If no tile of the band could be decoded
        """
        source = product.get_band(band_name)
        raster = source.image_at(level, cancel_event, progress_callback)
        if raster is None:
            raise EmptyMosaicError(f"No image data for band {band_name} at level {level}")

        height, width = raster.height, raster.width
        crs = CRS.from_string(product.crs) if product.crs else None
        transform = product.transform(level)
        bigtiff_setting = self._determine_bigtiff(width, height, raster.dtype.itemsize)
        tiled = width >= self.block_size and height >= self.block_size

        profile = {
            'driver': 'GTiff',
            'height': height,
            'width': width,
            'count': 1,
            'dtype': raster.dtype.name,
            'crs': crs,
            'transform': transform,
            'BIGTIFF': bigtiff_setting,
            'compress': self.compression,
            'tiled': tiled,
            'nodata': self.nodata,
        }
        if tiled:
            profile['blockxsize'] = self.block_size
            profile['blockysize'] = self.block_size

        logger.info("Writing %s level %d (%dx%d) to %s", band_name, level, width, height, output_path)
        with rasterio.open(str(output_path), 'w', **profile) as dst:
            dst.write(raster.data, 1)
            dst.set_band_description(1, source.band_info.band_name)
            dst.update_tags(
                product=product.name,
                product_type=product.product_type,
                software='sentinel2-mosaic',
                level=level,
                tile_count=product.tile_count,
            )
            dst.update_tags(
                1,
                wavelength=source.band_info.waveband_info.wavelength,
                bandwidth=source.band_info.waveband_info.bandwidth,
                quantification_value=source.band_info.waveband_info.quantification_value,
            )

        envelope = product.scene_envelope
        return {
            'path': str(output_path),
            'width': width,
            'height': height,
            'band': source.band_info.band_name,
            'level': level,
            'dtype': raster.dtype.name,
            'crs': product.crs,
            'bounds': (envelope.min_x, envelope.min_y, envelope.max_x, envelope.max_y)
            if envelope is not None else None,
            'bigtiff': bigtiff_setting == 'YES',
            'compression': self.compression,
        }


def stretch_to_byte(data: np.ndarray, fill_value=FILL_CODE_MOSAIC_BG,
                    percentiles: Tuple[float, float] = (2.0, 98.0)) -> np.ndarray:
    """
    Linearly stretch samples to 0..255 between two percentiles.

    Fill pixels are excluded from the statistics and map to 0.
    """
    valid = data != fill_value
    if not valid.any():
        return np.zeros(data.shape, dtype=np.uint8)

    low, high = np.percentile(data[valid], percentiles)
    if high <= low:
        high = low + 1
    scaled = (data.astype(np.float32) - low) * (255.0 / (high - low))
    result = np.clip(scaled, 1, 255).astype(np.uint8)
    result[~valid] = 0
    return result


def write_quicklook(product: Sentinel2Product, band_names: Sequence[str], level: int,
                    output_path: Union[str, Path],
                    cancel_event: Optional[threading.Event] = None,
                    progress_callback: Optional[ProgressCallback] = None) -> Dict:
    """
    Write a stretched 8-bit PNG of one band (grey) or three bands (RGB).

    Args:
        product: Opened product
        band_names: One band name, or red, green and blue band names
        level: Overview level
        output_path: Output PNG path
        cancel_event: Set to abort the composites
        progress_callback: Optional callback function (completed, total)

    Returns:
        Dictionary with output file information
    """
    if len(band_names) not in (1, 3):
        raise ValueError(f"Quicklook needs 1 or 3 bands, got {len(band_names)}")

    channels = []
    for band_name in band_names:
        raster = product.get_band(band_name).image_at(level, cancel_event, progress_callback)
        if raster is None:
            raise EmptyMosaicError(f"No image data for band {band_name} at level {level}")
        channels.append(stretch_to_byte(raster.data))

    if len(channels) == 1:
        image = Image.fromarray(channels[0])
    else:
        image = Image.fromarray(np.dstack(channels))
    image.save(str(output_path), format='PNG')

    return {
        'path': str(output_path),
        'width': image.width,
        'height': image.height,
        'bands': list(band_names),
        'level': level,
    }


def render_tile_picture(scene: SceneDescription, size: int = TILE_PICTURE_SIZE) -> Image.Image:
    """
    Draw the tile layout of a scene.

    Each tile is an outlined rectangle labelled with its tile id; the
    longer scene side is scaled to ``size`` pixels.
    """
    scene_rect = scene.scene_rectangle()
    scale = size / max(scene_rect.width, scene_rect.height)
    width = max(1, int(round(scene_rect.width * scale)))
    height = max(1, int(round(scene_rect.height * scale)))

    image = Image.new('RGB', (width, height), 'white')
    draw = ImageDraw.Draw(image)
    for index, tile in enumerate(scene.tiles):
        rect = scene.tile_rectangle(index)
        box = (int(rect.x * scale), int(rect.y * scale),
               int((rect.x + rect.width) * scale) - 1, int((rect.y + rect.height) * scale) - 1)
        draw.rectangle(box, outline='blue', width=2)
        draw.text((box[0] + 6, box[1] + 6), tile.tile_id, fill='black')
    return image
