"""
Sentinel-2 Mosaic - Composite Sentinel-2 tiles into scene mosaics.

A Python library and tool that places the tiles of a Sentinel-2 MSI product
on one pixel grid and composites them into multi-resolution band mosaics,
exportable as georeferenced GeoTIFF files.
"""

__version__ = "1.0.0"

from .cache import CacheManager, init_cache_dir
from .config import (
    FILL_CODE_MOSAIC_BG,
    REFERENCE_RESOLUTION,
    S2_WAVEBAND_INFOS,
    SpatialResolution,
    TileLayout,
    WavebandInfo,
)
from .decoder import Raster, RasterioCodec, TileCodec, TileDecoder
from .exceptions import (
    CacheUnavailableError,
    CompositeCancelledError,
    DuplicateTileIdError,
    EmptyMosaicError,
    EmptyTileListError,
    GeometryNotFoundError,
    LevelOutOfRangeError,
    MetadataError,
    NoValidBandsError,
    ProductOpenError,
    Sentinel2MosaicError,
    TileDecodeError,
    UnknownTileIdError,
)
from .geotiff import GeoTIFFWriter, render_tile_picture, write_quicklook
from .metadata import load_header, parse_tile_header
from .models import BandInfo, Tile, TileGeometry
from .mosaic import MosaicCompositor
from .multilevel import MosaicMultiLevelSource, MultiLevelSource, TileMultiLevelSource
from .product import Sentinel2Product, open_product
from .tiles import (
    Envelope,
    Rectangle,
    SceneDescription,
    compute_scene_envelope,
    compute_scene_rectangle,
    get_tile_geometry,
    tile_envelope,
)

__all__ = [
    # Version info
    '__version__',

    # Main classes
    'Sentinel2Product',
    'SceneDescription',
    'MosaicCompositor',
    'TileDecoder',
    'CacheManager',
    'GeoTIFFWriter',

    # Image sources and codecs
    'MultiLevelSource',
    'MosaicMultiLevelSource',
    'TileMultiLevelSource',
    'TileCodec',
    'RasterioCodec',
    'Raster',

    # Records
    'Tile',
    'TileGeometry',
    'BandInfo',
    'Rectangle',
    'Envelope',
    'SpatialResolution',
    'TileLayout',
    'WavebandInfo',

    # Main functions
    'open_product',
    'load_header',
    'parse_tile_header',
    'init_cache_dir',
    'write_quicklook',
    'render_tile_picture',

    # Layout functions
    'get_tile_geometry',
    'tile_envelope',
    'compute_scene_envelope',
    'compute_scene_rectangle',

    # Constants
    'FILL_CODE_MOSAIC_BG',
    'REFERENCE_RESOLUTION',
    'S2_WAVEBAND_INFOS',

    # Errors
    'Sentinel2MosaicError',
    'GeometryNotFoundError',
    'EmptyTileListError',
    'UnknownTileIdError',
    'DuplicateTileIdError',
    'CacheUnavailableError',
    'TileDecodeError',
    'EmptyMosaicError',
    'LevelOutOfRangeError',
    'CompositeCancelledError',
    'ProductOpenError',
    'NoValidBandsError',
    'MetadataError',
]
