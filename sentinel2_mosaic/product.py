"""
Opening of Sentinel-2 products.

A product is either a full user product (a directory holding a
``MTD_MSIL1C.xml``/``MTD_MSIL2A.xml`` header and a ``GRANULE`` folder),
composited tile by tile into one mosaic per band, or a single granule
image file, read together with its sibling band files as a one-tile
product.
"""

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

from rasterio.transform import Affine, from_origin

from .cache import init_cache_dir
from .config import (
    FILL_CODE_MOSAIC_BG,
    REFERENCE_RESOLUTION,
    S2_WAVEBAND_INFOS,
    SpatialResolution,
    band_index_from_name,
)
from .decoder import TileCodec, TileDecoder
from .exceptions import (
    GeometryNotFoundError,
    MetadataError,
    NoValidBandsError,
    ProductOpenError,
)
from .metadata import (
    find_granule_header,
    is_product_header,
    load_header,
    parse_tile_header,
)
from .models import BandInfo, MetadataHeader, Tile, create_band_info
from .mosaic import MosaicCompositor
from .multilevel import MosaicMultiLevelSource, MultiLevelSource, TileMultiLevelSource
from .tiles import Envelope, Rectangle, SceneDescription

logger = logging.getLogger(__name__)

# T15SUC_20160701T170012_B04.jp2, T15SUC_..._B8A_20m.jp2, S2A_OPER_MSI_L1C_TL_..._B04.jp2
BAND_FILE_PATTERN = re.compile(r'_(B\d{2}|B8A)(?:_(\d{2})m)?\.jp2$', re.IGNORECASE)
IMAGE_TILE_ID_PATTERN = re.compile(r'(?:^|_)T(\d{2}[A-Z]{3})_')


def file_band_token(band_name: str) -> str:
    """
    Convert a header band name to the token used in image file names.

    Examples:
        >>> file_band_token("B4")
        'B04'
        >>> file_band_token("B8A")
        'B8A'
    """
    name = band_name.upper()
    if name[1:].isdigit():
        return f"B{int(name[1:]):02d}"
    return name


def find_band_image(granule_dir: Path, band_name: str,
                    resolution: SpatialResolution) -> Optional[Path]:
    """
    Locate the image file of a band inside a granule.

    Level-2A granules hold one file per band and resolution; the file at the
    band's native resolution is preferred, then the finest available.

    Args:
        granule_dir: Granule directory
        band_name: Header band name ("B4", "B8A")
        resolution: Native resolution of the band

    Returns:
        Path of the image file, or None if the granule has none
    """
    token = file_band_token(band_name)
    candidates = []
    for path in sorted((granule_dir / 'IMG_DATA').rglob('*.jp2')):
        match = BAND_FILE_PATTERN.search(path.name)
        if match is None or match.group(1).upper() != token:
            continue
        meters = int(match.group(2)) if match.group(2) else resolution.resolution
        candidates.append((meters != resolution.resolution, meters, path))
    if not candidates:
        return None
    return min(candidates)[2]


def _parse_time(text: str) -> Optional[datetime]:
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace('Z', '+00:00'))
    except ValueError:
        logger.warning("Unparseable product time %r", text)
        return None


class Sentinel2Product:
    """
    An opened Sentinel-2 product: one multi-level image source per band.

    The geocoding is a plain north-up map transform at the reference
    resolution anchored at the upper-left corner of the scene envelope.
    """

    def __init__(self, name: str, product_type: str, scene: Optional[SceneDescription],
                 bands: Dict[str, MultiLevelSource], cache_dir: Path,
                 header: Optional[MetadataHeader] = None):
        self.name = name
        self.product_type = product_type
        self.scene = scene
        self.bands = bands
        self.cache_dir = cache_dir
        self.header = header

        characteristics = header.product_characteristics if header else None
        self.start_time = _parse_time(characteristics.product_start_time) if characteristics else None
        self.stop_time = _parse_time(characteristics.product_stop_time) if characteristics else None

    @property
    def band_names(self) -> List[str]:
        return list(self.bands)

    @property
    def band_infos(self) -> List[BandInfo]:
        return [source.band_info for source in self.bands.values()]

    @property
    def width(self) -> int:
        return next(iter(self.bands.values())).width

    @property
    def height(self) -> int:
        return next(iter(self.bands.values())).height

    @property
    def num_resolutions(self) -> int:
        return min(source.num_resolutions for source in self.bands.values())

    @property
    def scene_rectangle(self) -> Rectangle:
        if self.scene is None:
            return Rectangle(0, 0, self.width, self.height)
        return self.scene.scene_rectangle()

    @property
    def scene_envelope(self) -> Optional[Envelope]:
        return self.scene.scene_envelope if self.scene is not None else None

    @property
    def tile_count(self) -> int:
        return self.scene.tile_count if self.scene is not None else 1

    @property
    def crs(self) -> Optional[str]:
        return self.scene.crs if self.scene is not None else None

    def tile_rectangle(self, index: int, level: int = 0) -> Rectangle:
        if self.scene is None:
            return self.scene_rectangle.shift(level)
        return self.scene.tile_rectangle(index, level)

    def get_band(self, band_name: str) -> MultiLevelSource:
        """
        Get the image source of a band.

        Accepts header names ("B4") and file-name forms ("B04").

        Raises:
            KeyError: If the product has no such band
        """
        if band_name in self.bands:
            return self.bands[band_name]
        index = band_index_from_name(band_name)
        for source in self.bands.values():
            if index >= 0 and source.band_info.band_index == index:
                return source
        raise KeyError(f"Band {band_name} not found in product {self.name}")

    def transform(self, level: int = 0) -> Optional[Affine]:
        """
        Get the affine map transform of the mosaic at an overview level.

        Returns:
            Affine transform, or None if the product has no geocoding
        """
        envelope = self.scene_envelope
        if envelope is None:
            return None
        pixel_size = REFERENCE_RESOLUTION.resolution * (1 << level)
        return from_origin(envelope.min_x, envelope.max_y, pixel_size, pixel_size)

    def __repr__(self):
        return (f"Sentinel2Product(name={self.name!r}, type={self.product_type!r}, "
                f"bands={len(self.bands)}, tiles={self.tile_count})")


def _product_type(header: Optional[MetadataHeader], fallback: str = "L1C") -> str:
    level = header.product_characteristics.processing_level if header else ""
    return f"S2_MSI_{level or fallback}"


def _find_product_header(directory: Path) -> Optional[Path]:
    for candidate in sorted(directory.glob('*.xml')):
        if is_product_header(candidate.name):
            return candidate
    return None


def open_product(path: Union[str, Path], cache_root: Optional[Union[str, Path]] = None,
                 epsg: Optional[str] = None, max_workers: int = 4,
                 codec: Optional[TileCodec] = None, use_cache: bool = True,
                 fill_value=FILL_CODE_MOSAIC_BG) -> Sentinel2Product:
    """
    Open a Sentinel-2 product.

    Args:
        path: Product directory, product header file or granule image file
        cache_root: Root of the product cache directories
        epsg: Only mosaic tiles in this CRS (e.g. "EPSG:32615")
        max_workers: Number of tile decode threads
        codec: Tile image codec (rasterio by default)
        use_cache: Whether decoded tiles are cached on disk
        fill_value: Value of mosaic pixels not covered by any tile

    Returns:
        Opened product

    Raises:
        ProductOpenError: If the input is missing or of an unknown kind
        NoValidBandsError: If no band has any readable tile file
        CacheUnavailableError: If the cache directory cannot be provisioned
        MetadataError: If a header cannot be parsed
    """
    path = Path(path)
    if not path.exists():
        raise ProductOpenError(f"Product not found: {path}")

    decoder = TileDecoder(codec, use_cache)

    if path.is_dir():
        header_path = _find_product_header(path)
        if header_path is None:
            raise ProductOpenError(f"No product header found in {path}")
        return _open_mosaic(header_path, cache_root, epsg, max_workers, decoder, fill_value)

    if path.suffix.lower() == '.xml' and is_product_header(path.name):
        return _open_mosaic(path, cache_root, epsg, max_workers, decoder, fill_value)

    if path.suffix.lower() == '.jp2':
        return _open_granule(path, cache_root, decoder)

    raise ProductOpenError(f"Unhandled input file: {path.name}")


def _open_mosaic(header_path: Path, cache_root, epsg, max_workers: int,
                 decoder: TileDecoder, fill_value) -> Sentinel2Product:
    header = load_header(header_path, epsg)
    if not header.tiles:
        raise ProductOpenError(f"No tiles found in {header_path.name}")

    product_dir = header_path.parent
    cache_dir = init_cache_dir(product_dir, cache_root)
    scene = SceneDescription(header.tiles)
    compositor = MosaicCompositor(scene, decoder, cache_dir, fill_value, max_workers)

    band_informations = header.product_characteristics.band_informations
    bands: Dict[str, MultiLevelSource] = {}
    for spectral in band_informations:
        if not 0 <= spectral.band_id < len(band_informations):
            logger.warning("Illegal band ID detected, skipping band %s", spectral.physical_band)
            continue
        try:
            resolution = SpatialResolution.from_meters(spectral.resolution)
        except ValueError as e:
            logger.warning("Skipping band %s: %s", spectral.physical_band, e)
            continue

        tile_files = {}
        for tile in header.tiles:
            image = find_band_image(header.granule_dirs[tile.tile_id],
                                    spectral.physical_band, resolution)
            if image is None:
                logger.warning("Missing band %s image in tile %s",
                               spectral.physical_band, tile.tile_id)
            else:
                tile_files[tile.tile_id] = image

        if not tile_files:
            logger.warning("No image files found for band %s", spectral.physical_band)
            continue

        band_info = create_band_info(spectral, header.resample_data, tile_files)
        bands[band_info.band_name] = MosaicMultiLevelSource(band_info, compositor)

    if not bands:
        raise NoValidBandsError("No valid bands found.")

    name = product_dir.name
    if name.upper().endswith('.SAFE'):
        name = name[:-5]
    product = Sentinel2Product(name, _product_type(header), scene, bands, cache_dir, header)
    logger.info("Opened %r", product)
    return product


def _granule_dir_of(image_path: Path) -> Path:
    # IMG_DATA/<file> or IMG_DATA/R10m/<file>
    for parent in image_path.parents:
        if parent.name == 'IMG_DATA':
            return parent.parent
    return image_path.parent


def _granule_tile(granule_dir: Path) -> Optional[Tile]:
    header_path = find_granule_header(granule_dir)
    if header_path is None:
        return None
    try:
        return parse_tile_header(header_path)
    except MetadataError as e:
        logger.warning("Ignoring granule header %s: %s", header_path.name, e)
        return None


def _open_granule(image_path: Path, cache_root, decoder: TileDecoder) -> Sentinel2Product:
    granule_dir = _granule_dir_of(image_path)
    tile = _granule_tile(granule_dir)

    match = IMAGE_TILE_ID_PATTERN.search(image_path.name)
    if tile is not None:
        tile_id = tile.tile_id
    elif match is not None:
        tile_id = match.group(1)
    else:
        tile_id = image_path.stem

    # GRANULE/<granule>/ -> product root
    product_header = _find_product_header(granule_dir.parent.parent) \
        if granule_dir.parent.name == 'GRANULE' else None
    header = None
    if product_header is not None:
        try:
            header = load_header(product_header)
        except MetadataError as e:
            logger.warning("Ignoring product header %s: %s", product_header.name, e)

    scene = None
    if tile is not None:
        try:
            scene = SceneDescription([tile])
            rect = scene.tile_rectangle(0)
            width, height = rect.width, rect.height
        except GeometryNotFoundError as e:
            logger.warning("Tile %s has no usable geocoding, using the default layout: %s",
                           tile.tile_id, e)
            scene = None
    if scene is None:
        layout = REFERENCE_RESOLUTION.layout
        width, height = layout.width, layout.height

    cache_dir = init_cache_dir(granule_dir, cache_root)
    spectral_by_index = {}
    if header is not None:
        spectral_by_index = {s.band_id: s for s in header.product_characteristics.band_informations}

    bands: Dict[str, MultiLevelSource] = {}
    for sibling in sorted(image_path.parent.glob('*.jp2')):
        match = BAND_FILE_PATTERN.search(sibling.name)
        if match is None:
            continue
        band_index = band_index_from_name(match.group(1))
        if band_index < 0:
            logger.warning("Illegal band name in %s, skipping", sibling.name)
            continue

        if band_index in spectral_by_index:
            band_info = create_band_info(spectral_by_index[band_index], header.resample_data,
                                         {tile_id: sibling})
        else:
            waveband = S2_WAVEBAND_INFOS[band_index]
            band_info = BandInfo(band_index, waveband, waveband.resolution.layout,
                                 {tile_id: sibling})
        if band_info.band_name in bands:
            continue
        bands[band_info.band_name] = TileMultiLevelSource(band_info, decoder, cache_dir,
                                                          width, height)

    if not bands:
        raise NoValidBandsError("No valid bands found.")

    name = f"{_product_type(header)}_{tile_id}"
    product = Sentinel2Product(name, _product_type(header), scene, bands, cache_dir, header)
    logger.info("Opened %r", product)
    return product
