"""
Per-band multi-level image sources.

A source answers ``image_at(level)`` with a raster of the whole band at
that overview level and keeps each level once computed. Level rasters are
pure functions of band and level, so memoising them is always safe.
"""

import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Tuple

from .decoder import Raster, TileDecoder
from .exceptions import EmptyMosaicError, LevelOutOfRangeError, TileDecodeError
from .models import BandInfo
from .mosaic import MosaicCompositor, ProgressCallback

logger = logging.getLogger(__name__)


class MultiLevelSource(ABC):
    """Image pyramid of one band."""

    def __init__(self, band_info: BandInfo, width: int, height: int,
                 num_resolutions: Optional[int] = None):
        self.band_info = band_info
        self.width = width
        self.height = height
        self.num_resolutions = num_resolutions or band_info.layout.num_resolutions
        self._levels: Dict[int, Raster] = {}
        self._lock = threading.Lock()

    def validate_level(self, level: int):
        if not 0 <= level < self.num_resolutions:
            raise LevelOutOfRangeError(level, self.num_resolutions)

    def image_shape(self, level: int) -> Tuple[int, int]:
        """Get the (rows, cols) of the image at a level."""
        self.validate_level(level)
        return self.height >> level, self.width >> level

    def image_at(self, level: int, cancel_event: Optional[threading.Event] = None,
                 progress_callback: Optional[ProgressCallback] = None) -> Optional[Raster]:
        """
        Get the band image at an overview level.

        Returns:
            Raster of the level, or None if no tile data could be decoded

        Raises:
            LevelOutOfRangeError: If level is outside [0, num_resolutions)
        """
        self.validate_level(level)
        with self._lock:
            if level in self._levels:
                return self._levels[level]

        image = self.create_image(level, cancel_event, progress_callback)
        if image is None:
            return None
        with self._lock:
            self._levels.setdefault(level, image)
            return self._levels[level]

    def release(self, level: Optional[int] = None):
        """Drop cached level images (all of them if level is None)."""
        with self._lock:
            if level is None:
                self._levels.clear()
            else:
                self._levels.pop(level, None)

    @abstractmethod
    def create_image(self, level: int, cancel_event: Optional[threading.Event],
                     progress_callback: Optional[ProgressCallback]) -> Optional[Raster]:
        """Compute the image of one level."""


class TileMultiLevelSource(MultiLevelSource):
    """Source of a single-tile product: the decoded tile is the whole scene."""

    def __init__(self, band_info: BandInfo, decoder: TileDecoder, cache_dir: Path,
                 width: int, height: int, num_resolutions: Optional[int] = None):
        super().__init__(band_info, width, height, num_resolutions)
        self.decoder = decoder
        self.cache_dir = Path(cache_dir)

    def create_image(self, level, cancel_event=None, progress_callback=None):
        tile_id, path = next(iter(self.band_info.tile_files.items()))
        try:
            raster = self.decoder.decode(path, self.cache_dir, self.band_info.resolution, level,
                                         reference_shape=(self.height, self.width),
                                         tile_id=tile_id)
        except TileDecodeError as e:
            logger.warning("%s: no image at level %d: %s", self.band_info.band_name, level, e)
            return None
        if progress_callback:
            progress_callback(1, 1)
        return raster


class MosaicMultiLevelSource(MultiLevelSource):
    """Source of a multi-tile product, composited level by level."""

    def __init__(self, band_info: BandInfo, compositor: MosaicCompositor,
                 num_resolutions: Optional[int] = None):
        scene_rect = compositor.scene.scene_rectangle()
        super().__init__(band_info, scene_rect.width, scene_rect.height, num_resolutions)
        self.compositor = compositor

    def create_image(self, level, cancel_event=None, progress_callback=None):
        try:
            return self.compositor.composite(self.band_info, level, cancel_event, progress_callback)
        except EmptyMosaicError as e:
            logger.warning("%s", e)
            return None
