"""
Static configuration for Sentinel-2 MSI products.

Holds the spatial resolutions with their fixed tile layouts, the default
waveband table used when no product header is available, and the
compositing constants.
"""

import os
from enum import Enum
from pathlib import Path
from typing import NamedTuple, Tuple

import numpy as np


class TileLayout(NamedTuple):
    """Pixel layout of one tile image at its native resolution."""

    width: int
    height: int
    tile_width: int
    tile_height: int
    num_resolutions: int


class SpatialResolution(Enum):
    """Sentinel-2 sampling distances, in meters per pixel."""

    R10M = 10
    R20M = 20
    R60M = 60

    @property
    def resolution(self) -> int:
        return self.value

    @property
    def layout(self) -> TileLayout:
        return TILE_LAYOUTS[self]

    @classmethod
    def from_meters(cls, meters) -> 'SpatialResolution':
        """
        Look up a resolution by its sampling distance.

        Raises:
            ValueError: If no resolution matches
        """
        for member in cls:
            if member.value == int(meters):
                return member
        raise ValueError(f"Unsupported spatial resolution: {meters}")

    def __str__(self):
        return f"{self.value}m"


# A 109800 m tile sampled at each resolution
TILE_LAYOUTS = {
    SpatialResolution.R10M: TileLayout(10980, 10980, 1024, 1024, 6),
    SpatialResolution.R20M: TileLayout(5490, 5490, 1024, 1024, 6),
    SpatialResolution.R60M: TileLayout(1830, 1830, 1830, 1830, 6),
}

# Mosaic pixel grid is always laid out at this resolution
REFERENCE_RESOLUTION = SpatialResolution.R10M

DEFAULT_TILE_SIZE = 512

FILL_CODE_MOSAIC_BG = 0

SAMPLE_DTYPE = np.uint16

DEFAULT_ANGLES_RESOLUTION = 5000

DEFAULT_QUANTIFICATION_VALUE = 10000

CACHE_ROOT = Path(
    os.environ.get(
        "SENTINEL2_MOSAIC_CACHE",
        Path.home() / ".sentinel2-mosaic" / "cache",
    )
)


class WavebandInfo(NamedTuple):
    """Spectral description of one MSI band."""

    band_index: int
    band_name: str
    resolution: SpatialResolution
    wavelength: float
    bandwidth: float
    solar_irradiance: float = 0.0
    quantification_value: float = DEFAULT_QUANTIFICATION_VALUE


def _waveband(index: int, name: str, meters: int, wavelengths: Tuple[float, float, float],
              irradiance: float) -> WavebandInfo:
    central, low, high = wavelengths
    return WavebandInfo(index, name, SpatialResolution.from_meters(meters),
                        central, high - low, irradiance)


# (central, min, max) wavelengths in nm
S2_WAVEBAND_INFOS = (
    _waveband(0, "B1", 60, (443, 432, 453), 1913.57),
    _waveband(1, "B2", 10, (490, 458, 523), 1941.63),
    _waveband(2, "B3", 10, (560, 543, 578), 1822.61),
    _waveband(3, "B4", 10, (665, 650, 680), 1512.79),
    _waveband(4, "B5", 20, (705, 698, 713), 1425.56),
    _waveband(5, "B6", 20, (740, 733, 748), 1288.32),
    _waveband(6, "B7", 20, (783, 773, 793), 1163.19),
    _waveband(7, "B8", 10, (842, 785, 900), 1036.39),
    _waveband(8, "B8A", 20, (865, 855, 875), 955.19),
    _waveband(9, "B9", 60, (945, 935, 955), 813.04),
    _waveband(10, "B10", 60, (1375, 1360, 1390), 367.15),
    _waveband(11, "B11", 20, (1610, 1565, 1655), 245.59),
    _waveband(12, "B12", 20, (2190, 2100, 2280), 85.25),
)


def band_index_from_name(band_name: str) -> int:
    """
    Resolve a band name to its index in the MSI band list.

    Accepts both header names ("B4", "B8A") and file-name forms ("B04").

    Returns:
        Band index, or -1 if the name is unknown
    """
    name = band_name.upper()
    if name.startswith("B") and name[1:].isdigit():
        name = f"B{int(name[1:])}"
    for info in S2_WAVEBAND_INFOS:
        if info.band_name == name:
            return info.band_index
    return -1
