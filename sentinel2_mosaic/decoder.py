"""
Resolution-aware tile decoding.

Wraps the JPEG2000 codec so that one tile image is decoded at one overview
level onto the 10 m reference grid. Bands sampled at 20 m or 60 m are read
straight to the reference-grid shape of the level, so every band of a tile
yields a raster of the same size.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

import numpy as np
import rasterio
from rasterio.enums import Resampling
from rasterio.errors import RasterioError

from .cache import CacheManager
from .config import REFERENCE_RESOLUTION, SAMPLE_DTYPE, SpatialResolution
from .exceptions import TileDecodeError

logger = logging.getLogger(__name__)


@dataclass
class Raster:
    """A 2-D block of samples positioned on the mosaic pixel grid."""

    data: np.ndarray
    min_x: int = 0
    min_y: int = 0

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def dtype(self):
        return self.data.dtype

    def sample(self, x: int, y: int):
        """Get the sample at absolute pixel position (x, y)."""
        col = x - self.min_x
        row = y - self.min_y
        if not (0 <= col < self.width and 0 <= row < self.height):
            raise IndexError(f"Pixel ({x}, {y}) is outside the raster")
        return self.data[row, col]

    def translate(self, x: int, y: int) -> 'Raster':
        """Return the same samples anchored at a new origin."""
        return Raster(self.data, x, y)


class TileCodec(ABC):
    """Decodes a region of a tile image at a requested output shape."""

    @abstractmethod
    def read(self, file_path: Path, out_shape: Tuple[int, int],
             cache_dir: Optional[Path] = None) -> np.ndarray:
        """
        Decode the first band of an image file.

        Args:
            file_path: Tile image file
            out_shape: Output (rows, cols); smaller than native picks an overview
            cache_dir: Writable scratch directory for the codec

        Returns:
            2-D array of samples
        """


class RasterioCodec(TileCodec):
    """
    Codec backed by rasterio and the GDAL JPEG2000 driver.

    Reading to a reduced ``out_shape`` lets GDAL decode only the matching
    JPEG2000 resolution level.
    """

    def __init__(self, resampling: Resampling = Resampling.nearest):
        self.resampling = resampling

    def read(self, file_path: Path, out_shape: Tuple[int, int],
             cache_dir: Optional[Path] = None) -> np.ndarray:
        env_options = {}
        if cache_dir is not None:
            env_options['CPL_TMPDIR'] = str(cache_dir)
        with rasterio.Env(**env_options):
            with rasterio.open(str(file_path)) as src:
                return src.read(1, out_shape=out_shape, resampling=self.resampling)


class TileDecoder:
    """
    Decodes tile images at overview levels, with an on-disk cache.

    The cache directory is passed with every call; a CacheManager is kept
    per directory.
    """

    def __init__(self, codec: Optional[TileCodec] = None, use_cache: bool = True,
                 dtype=SAMPLE_DTYPE):
        """
        Initialize tile decoder.

        Args:
            codec: Codec used to read tile images (rasterio by default)
            use_cache: Whether to store and reuse decoded levels
            dtype: Sample type of the decoded rasters
        """
        self.codec = codec or RasterioCodec()
        self.use_cache = use_cache
        self.dtype = dtype
        self._caches: Dict[Path, CacheManager] = {}
        self._lock = threading.Lock()

    def _get_cache(self, cache_dir: Path) -> CacheManager:
        cache_dir = Path(cache_dir)
        with self._lock:
            if cache_dir not in self._caches:
                self._caches[cache_dir] = CacheManager(cache_dir)
            return self._caches[cache_dir]

    @staticmethod
    def target_shape(level: int,
                     reference_shape: Optional[Tuple[int, int]] = None) -> Tuple[int, int]:
        """
        Get the (rows, cols) of a tile on the reference grid at a level.

        Args:
            level: Overview level
            reference_shape: Level-0 (rows, cols); defaults to the 10 m tile layout
        """
        if reference_shape is None:
            layout = REFERENCE_RESOLUTION.layout
            reference_shape = (layout.height, layout.width)
        rows, cols = reference_shape
        return max(1, rows >> level), max(1, cols >> level)

    def decode(self, file_path: Union[str, Path], cache_dir: Union[str, Path],
               resolution: SpatialResolution, level: int,
               reference_shape: Optional[Tuple[int, int]] = None,
               tile_id: Optional[str] = None) -> Raster:
        """
        Decode one tile image at an overview level.

        Args:
            file_path: Tile image file
            cache_dir: Provisioned product cache directory
            resolution: Native resolution of the band
            level: Overview level
            reference_shape: Level-0 (rows, cols) of the tile on the 10 m grid
            tile_id: Tile id used in error reports (defaults to the file stem)

        Returns:
            Raster anchored at (0, 0)

        Raises:
            TileDecodeError: If the file is missing or cannot be decoded
        """
        file_path = Path(file_path)
        tile_id = tile_id or file_path.stem
        out_shape = self.target_shape(level, reference_shape)
        cache = self._get_cache(cache_dir) if self.use_cache else None

        if not file_path.exists():
            raise TileDecodeError(tile_id, level, f"missing file {file_path}")

        if cache is not None:
            cached = cache.get_tile(file_path.stem, level, source=file_path)
            if cached is not None and cached.shape == out_shape:
                return Raster(cached)

        logger.debug("Decoding %s (%s) at level %d to %s", file_path.name, resolution, level, out_shape)
        try:
            data = self.codec.read(file_path, out_shape, Path(cache_dir))
        except (RasterioError, OSError, ValueError) as e:
            raise TileDecodeError(tile_id, level, str(e)) from e

        data = np.asarray(data)
        if data.shape != out_shape:
            raise TileDecodeError(tile_id, level,
                                  f"codec returned shape {data.shape}, expected {out_shape}")
        data = data.astype(self.dtype, copy=False)

        if cache is not None:
            cache.put_tile(file_path.stem, level, data, source=file_path)
        return Raster(data)
