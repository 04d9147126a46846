"""
Loading of Sentinel-2 product and granule XML headers.

Reads the user product header (``MTD_MSIL1C.xml`` / ``MTD_MSIL2A.xml``) and
the granule headers (``GRANULE/*/MTD_TL.xml``) into the records of
``sentinel2_mosaic.models``. No interpretation is done here beyond
converting text to numbers; angle grids keep their NaN cells.
"""

import logging
import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import numpy as np

from .config import DEFAULT_ANGLES_RESOLUTION, DEFAULT_QUANTIFICATION_VALUE, SpatialResolution
from .exceptions import MetadataError
from .models import (
    AnglesGrid,
    MetadataHeader,
    ProductCharacteristics,
    ReflectanceConversion,
    ResampleData,
    SpectralInformation,
    Tile,
    TileGeometry,
)

logger = logging.getLogger(__name__)

PRODUCT_HEADER_PATTERN = re.compile(r'^(MTD_MSIL(1C|2A)|S2.*MTD.*)\.xml$', re.IGNORECASE)
GRANULE_HEADER_PATTERN = re.compile(r'^(MTD_TL|S2.*MTD.*_TL_.*)\.xml$', re.IGNORECASE)
TILE_ID_PATTERN = re.compile(r'T(\d{2}[A-Z]{3})(?=_|$)')


def _parse(path: Path) -> ET.Element:
    try:
        return ET.parse(str(path)).getroot()
    except (ET.ParseError, OSError) as e:
        raise MetadataError(f"Failed to parse metadata in {path.name}: {e}") from e


def _text(elem: ET.Element, path: str, default: Optional[str] = None) -> Optional[str]:
    found = elem.find(path)
    if found is None or found.text is None:
        return default
    return found.text.strip()


def _float(elem: ET.Element, path: str, default: Optional[float] = None) -> Optional[float]:
    value = _text(elem, path)
    return float(value) if value is not None else default


def is_product_header(name: str) -> bool:
    return bool(PRODUCT_HEADER_PATTERN.match(name)) and not GRANULE_HEADER_PATTERN.match(name)


def is_granule_header(name: str) -> bool:
    return bool(GRANULE_HEADER_PATTERN.match(name))


def parse_spectral_information(root: ET.Element) -> Tuple[SpectralInformation, ...]:
    bands = []
    for elem in root.iterfind('.//{*}Spectral_Information'):
        bands.append(SpectralInformation(
            band_id=int(elem.get('bandId')),
            physical_band=elem.get('physicalBand'),
            resolution=int(float(_text(elem, '{*}RESOLUTION', '0'))),
            wavelength_central=_float(elem, '{*}Wavelength/{*}CENTRAL', 0.0),
            wavelength_min=_float(elem, '{*}Wavelength/{*}MIN', 0.0),
            wavelength_max=_float(elem, '{*}Wavelength/{*}MAX', 0.0),
        ))
    return tuple(bands)


def parse_resample_data(root: ET.Element) -> ResampleData:
    quantification = _float(root, './/{*}QUANTIFICATION_VALUE')
    if quantification is None:
        quantification = _float(root, './/{*}BOA_QUANTIFICATION_VALUE',
                                DEFAULT_QUANTIFICATION_VALUE)

    irradiances = {}
    for elem in root.iterfind('.//{*}Solar_Irradiance_List/{*}SOLAR_IRRADIANCE'):
        irradiances[int(elem.get('bandId'))] = float(elem.text)
    ordered = tuple(irradiances[i] for i in sorted(irradiances))

    conversion = ReflectanceConversion(
        u=_float(root, './/{*}Reflectance_Conversion/{*}U', 1.0),
        solar_irradiances=ordered,
    )
    return ResampleData(quantification, conversion)


def parse_product_characteristics(root: ET.Element) -> ProductCharacteristics:
    level = _text(root, './/{*}PROCESSING_LEVEL', '')
    # "Level-1C" in headers, "L1C" in product types
    level = level.replace('Level-', 'L')
    return ProductCharacteristics(
        spacecraft=_text(root, './/{*}SPACECRAFT_NAME', ''),
        dataset_production_date=_text(root, './/{*}GENERATION_TIME', ''),
        processing_level=level,
        product_start_time=_text(root, './/{*}PRODUCT_START_TIME', ''),
        product_stop_time=_text(root, './/{*}PRODUCT_STOP_TIME', ''),
        band_informations=parse_spectral_information(root),
    )


def granule_names(root: ET.Element) -> List[str]:
    """
    List granule directory names in header order.

    Uses the IMAGE_FILE entries, which start with ``GRANULE/<name>/``.
    """
    names: List[str] = []
    for elem in root.iterfind('.//{*}Granule_List/{*}Granule'):
        image_file = _text(elem, '{*}IMAGE_FILE')
        if image_file:
            parts = Path(image_file).parts
            name = parts[1] if len(parts) > 1 and parts[0] == 'GRANULE' else parts[0]
        else:
            name = elem.get('granuleIdentifier')
        if name and name not in names:
            names.append(name)
    return names


def _parse_values(values_list: Optional[ET.Element]) -> np.ndarray:
    if values_list is None:
        return np.empty((0, 0), dtype=np.float32)
    rows = [[float(v) for v in (row.text or '').split()]
            for row in values_list.iterfind('{*}VALUES')]
    return np.array(rows, dtype=np.float32)


def parse_angles_grid(elem: ET.Element) -> AnglesGrid:
    """
    Read a Zenith/Azimuth angle grid element.

    The text "NaN" parses to a float NaN and is kept as such.
    """
    zenith = elem.find('{*}Zenith')
    azimuth = elem.find('{*}Azimuth')
    band_id = elem.get('bandId')
    detector_id = elem.get('detectorId')
    return AnglesGrid(
        zenith=_parse_values(zenith.find('{*}Values_List') if zenith is not None else None),
        azimuth=_parse_values(azimuth.find('{*}Values_List') if azimuth is not None else None),
        col_step=_float(zenith, '{*}COL_STEP', 0.0) if zenith is not None else 0.0,
        row_step=_float(zenith, '{*}ROW_STEP', 0.0) if zenith is not None else 0.0,
        band_id=int(band_id) if band_id is not None else None,
        detector_id=int(detector_id) if detector_id is not None else None,
    )


def parse_tile_geometries(root: ET.Element) -> dict:
    sizes = {}
    for elem in root.iterfind('.//{*}Tile_Geocoding/{*}Size'):
        sizes[int(elem.get('resolution'))] = (int(_text(elem, '{*}NROWS')),
                                              int(_text(elem, '{*}NCOLS')))

    geometries = {}
    for elem in root.iterfind('.//{*}Tile_Geocoding/{*}Geoposition'):
        meters = int(elem.get('resolution'))
        if meters not in sizes:
            logger.warning("No size given for %dm geoposition, skipping", meters)
            continue
        num_rows, num_cols = sizes[meters]
        geometries[SpatialResolution.from_meters(meters)] = TileGeometry(
            num_rows=num_rows,
            num_cols=num_cols,
            upper_left_x=_float(elem, '{*}ULX'),
            upper_left_y=_float(elem, '{*}ULY'),
            x_dim=_float(elem, '{*}XDIM'),
            y_dim=_float(elem, '{*}YDIM'),
        )
    return geometries


def parse_tile_id(root: ET.Element, granule_dir: Optional[Path] = None) -> str:
    """
    Extract the 5-character tile code from a granule header.

    Falls back to the granule directory name.

    Raises:
        MetadataError: If no tile code can be found
    """
    for candidate in (_text(root, './/{*}TILE_ID'), granule_dir.name if granule_dir else None):
        if candidate:
            match = TILE_ID_PATTERN.search(candidate)
            if match:
                return match.group(1)
    raise MetadataError("Cannot determine tile id from granule header")


def parse_tile_header(path: Union[str, Path]) -> Tile:
    """
    Read a granule header into a Tile.

    Args:
        path: Path to MTD_TL.xml

    Returns:
        Tile with geometries and angle grids
    """
    path = Path(path)
    root = _parse(path)

    sun_elem = root.find('.//{*}Tile_Angles/{*}Sun_Angles_Grid')
    sun_grid = parse_angles_grid(sun_elem) if sun_elem is not None else None
    viewing_grids = tuple(parse_angles_grid(elem) for elem in
                          root.iterfind('.//{*}Tile_Angles/{*}Viewing_Incidence_Angles_Grids'))

    if sun_grid is not None and sun_grid.col_step:
        angles_resolution = int(sun_grid.col_step)
    else:
        logger.warning("Angles resolution cannot be obtained from %s", path.name)
        angles_resolution = DEFAULT_ANGLES_RESOLUTION

    return Tile(
        tile_id=parse_tile_id(root, path.parent),
        horizontal_cs_code=_text(root, './/{*}Tile_Geocoding/{*}HORIZONTAL_CS_CODE', ''),
        horizontal_cs_name=_text(root, './/{*}Tile_Geocoding/{*}HORIZONTAL_CS_NAME', ''),
        geometries=parse_tile_geometries(root),
        sun_angles_grid=sun_grid,
        viewing_incidence_angles_grids=viewing_grids,
        angles_resolution=angles_resolution,
    )


def find_granule_header(granule_dir: Path) -> Optional[Path]:
    for candidate in sorted(granule_dir.glob('*.xml')):
        if is_granule_header(candidate.name):
            return candidate
    return None


def load_tiles(granule_dirs: List[Path],
               epsg: Optional[str] = None) -> Tuple[Tuple[Tile, ...], Dict[str, Path]]:
    """
    Read the granule headers of a product, in the given order.

    Granules without a header are reported and skipped, as are tiles in a
    CRS other than ``epsg`` when given.

    Returns:
        Tiles, and the granule directory of every tile id
    """
    tiles = []
    dirs = {}
    for granule_dir in granule_dirs:
        header_path = find_granule_header(granule_dir)
        if header_path is None:
            logger.warning("Corrupted product: the header of granule %s is missing", granule_dir.name)
            continue
        tile = parse_tile_header(header_path)
        if epsg is not None and tile.horizontal_cs_code != epsg:
            logger.info("Skipping tile %s because it has crs %s instead of requested %s",
                        tile.tile_id, tile.horizontal_cs_code, epsg)
            continue
        tiles.append(tile)
        dirs[tile.tile_id] = granule_dir
    return tuple(tiles), dirs


def load_header(path: Union[str, Path], epsg: Optional[str] = None) -> MetadataHeader:
    """
    Load a product header and all of its granule headers.

    Args:
        path: Path to the product header (MTD_MSIL1C.xml or MTD_MSIL2A.xml)
        epsg: Only keep tiles in this CRS (e.g. "EPSG:32615")

    Returns:
        MetadataHeader with tiles in header order
    """
    path = Path(path)
    root = _parse(path)
    granule_root = path.parent / 'GRANULE'

    names = granule_names(root)
    if names:
        granule_dirs = [granule_root / name for name in names]
    else:
        granule_dirs = sorted(d for d in granule_root.glob('*') if d.is_dir())

    tiles, dirs = load_tiles(granule_dirs, epsg)
    return MetadataHeader(
        product_characteristics=parse_product_characteristics(root),
        resample_data=parse_resample_data(root),
        tiles=tiles,
        granule_dirs=dirs,
    )
