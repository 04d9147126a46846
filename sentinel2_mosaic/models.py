"""
Data records for Sentinel-2 product metadata.

Plain immutable containers filled once by the metadata loader and shared
read-only by the layout, decoding and compositing stages.
"""

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np

from .config import SpatialResolution, TileLayout, WavebandInfo


@dataclass(frozen=True)
class TileGeometry:
    """
    Sampling grid of one tile at one resolution, in projected coordinates.

    ``y_dim`` is negative (north-up).
    """

    num_rows: int
    num_cols: int
    upper_left_x: float
    upper_left_y: float
    x_dim: float
    y_dim: float

    @property
    def width(self) -> float:
        """Physical width in CRS units."""
        return self.num_cols * abs(self.x_dim)

    @property
    def height(self) -> float:
        """Physical height in CRS units."""
        return self.num_rows * abs(self.y_dim)


@dataclass(frozen=True, eq=False)
class AnglesGrid:
    """
    Sun or viewing angles sampled on a coarse grid.

    NaN cells mark grid positions without a valid observation and are kept
    as they are.
    """

    zenith: np.ndarray
    azimuth: np.ndarray
    col_step: float = 0.0
    row_step: float = 0.0
    band_id: Optional[int] = None
    detector_id: Optional[int] = None

    def count_nans(self) -> Tuple[int, int]:
        """Return (zenith NaN count, azimuth NaN count)."""
        return int(np.isnan(self.zenith).sum()), int(np.isnan(self.azimuth).sum())


@dataclass(frozen=True, eq=False)
class Tile:
    """One granule of a product, positioned in a UTM projection."""

    tile_id: str
    horizontal_cs_code: str
    horizontal_cs_name: str = ""
    geometries: Mapping[SpatialResolution, TileGeometry] = field(default_factory=dict)
    sun_angles_grid: Optional[AnglesGrid] = None
    viewing_incidence_angles_grids: Tuple[AnglesGrid, ...] = ()
    angles_resolution: int = 5000

    def __post_init__(self):
        object.__setattr__(self, 'geometries', MappingProxyType(dict(self.geometries)))
        object.__setattr__(self, 'viewing_incidence_angles_grids',
                           tuple(self.viewing_incidence_angles_grids))


@dataclass(frozen=True)
class SpectralInformation:
    band_id: int
    physical_band: str
    resolution: int
    wavelength_central: float
    wavelength_min: float
    wavelength_max: float


@dataclass(frozen=True)
class ReflectanceConversion:
    u: float = 1.0
    solar_irradiances: Tuple[float, ...] = ()


@dataclass(frozen=True)
class ResampleData:
    quantification_value: float
    reflectance_conversion: ReflectanceConversion = ReflectanceConversion()


@dataclass(frozen=True)
class ProductCharacteristics:
    spacecraft: str = ""
    dataset_production_date: str = ""
    processing_level: str = ""
    product_start_time: str = ""
    product_stop_time: str = ""
    band_informations: Tuple[SpectralInformation, ...] = ()


@dataclass(frozen=True)
class MetadataHeader:
    """Everything the reader needs from a product's XML headers."""

    product_characteristics: ProductCharacteristics
    resample_data: ResampleData
    tiles: Tuple[Tile, ...] = ()
    granule_dirs: Mapping[str, Path] = field(default_factory=dict)


@dataclass(frozen=True, eq=False)
class BandInfo:
    """A band of an opened product and the tile image files backing it."""

    band_index: int
    waveband_info: WavebandInfo
    layout: TileLayout
    tile_files: Mapping[str, Path] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'tile_files', MappingProxyType(
            {tile_id: Path(path) for tile_id, path in self.tile_files.items()}
        ))

    @property
    def band_name(self) -> str:
        return self.waveband_info.band_name

    @property
    def resolution(self) -> SpatialResolution:
        return self.waveband_info.resolution


def create_band_info(spectral: SpectralInformation, resample_data: ResampleData,
                     tile_files: Dict[str, Path]) -> BandInfo:
    """
    Build a BandInfo from header records.

    Args:
        spectral: Spectral information entry of the band
        resample_data: Product resample data (quantification, irradiances)
        tile_files: Mapping of tile id to image file

    Returns:
        BandInfo for the band
    """
    resolution = SpatialResolution.from_meters(spectral.resolution)
    irradiances: List[float] = list(resample_data.reflectance_conversion.solar_irradiances)
    solar_irradiance = irradiances[spectral.band_id] if spectral.band_id < len(irradiances) else 0.0
    waveband = WavebandInfo(
        band_index=spectral.band_id,
        band_name=spectral.physical_band,
        resolution=resolution,
        wavelength=spectral.wavelength_central,
        bandwidth=spectral.wavelength_max - spectral.wavelength_min,
        solar_irradiance=solar_irradiance,
        quantification_value=resample_data.quantification_value,
    )
    return BandInfo(spectral.band_id, waveband, resolution.layout, tile_files)
