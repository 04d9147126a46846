"""
Mosaic composition of decoded tiles.

Produces one raster per band and overview level spanning the whole scene.
Tiles may be decoded concurrently, but they are always overlaid in tile
index order, so a pixel covered by several tiles takes the value of the
tile with the highest index no matter which decode finished first.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from .config import FILL_CODE_MOSAIC_BG, SAMPLE_DTYPE
from .decoder import Raster, TileDecoder
from .exceptions import CompositeCancelledError, EmptyMosaicError, TileDecodeError
from .models import BandInfo
from .tiles import SceneDescription

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class MosaicCompositor:
    """
    Overlays the tiles of one band into a scene-sized raster.

    Features:
    - Decoding at the requested overview level only
    - Optional thread pool for tile decodes
    - Deterministic last-writer-wins overlay by tile index
    - Failed tiles are left at the background fill value
    - Cooperative cancellation between tile decodes
    """

    def __init__(self, scene: SceneDescription, decoder: TileDecoder, cache_dir: Path,
                 fill_value=FILL_CODE_MOSAIC_BG, max_workers: int = 1,
                 dtype=SAMPLE_DTYPE):
        """
        Initialize compositor.

        Args:
            scene: Layout of the product's tiles
            decoder: Tile decoder adapter
            cache_dir: Provisioned product cache directory
            fill_value: Value of pixels not covered by any decoded tile
            max_workers: Number of decode threads (1 decodes inline)
            dtype: Sample type of the composite
        """
        self.scene = scene
        self.decoder = decoder
        self.cache_dir = Path(cache_dir)
        self.fill_value = fill_value
        self.max_workers = max_workers
        self.dtype = dtype

    def tile_jobs(self, band_info: BandInfo) -> List[Tuple[int, str, Path]]:
        """
        List the tiles of a band as (index, tile id, file), in index order.

        Raises:
            UnknownTileIdError: If the band references a tile outside the scene
        """
        jobs = [(self.scene.tile_index(tile_id), tile_id, path)
                for tile_id, path in band_info.tile_files.items()]
        return sorted(jobs)

    def _decode_one(self, band_info: BandInfo, level: int, index: int, tile_id: str,
                    path: Path, cancel_event: Optional[threading.Event]) -> Optional[Raster]:
        if cancel_event is not None and cancel_event.is_set():
            return None

        rect0 = self.scene.tile_rectangle(index)
        rect = self.scene.tile_rectangle(index, level)
        try:
            raster = self.decoder.decode(path, self.cache_dir, band_info.resolution, level,
                                         reference_shape=(rect0.height, rect0.width),
                                         tile_id=tile_id)
        except TileDecodeError as e:
            logger.warning("%s: omitting tile %s from mosaic: %s", band_info.band_name, tile_id, e)
            return None

        logger.debug("%s %s: minX=%d, minY=%d, width=%d, height=%d", band_info.band_name,
                     tile_id, rect.x, rect.y, raster.width, raster.height)
        return raster.translate(rect.x, rect.y)

    def decode_tiles(self, band_info: BandInfo, level: int,
                     cancel_event: Optional[threading.Event] = None,
                     progress_callback: Optional[ProgressCallback] = None) -> Dict[int, Raster]:
        """
        Decode all tiles of a band and place them at their mosaic positions.

        Args:
            band_info: Band to decode
            level: Overview level
            cancel_event: Set to stop before the next tile decode
            progress_callback: Optional callback function (completed, total)

        Returns:
            Mapping of tile index to positioned raster, for decoded tiles only

        Raises:
            CompositeCancelledError: If cancel_event was set
        """
        jobs = self.tile_jobs(band_info)
        total = len(jobs)
        results: Dict[int, Raster] = {}

        def check_cancelled():
            if cancel_event is not None and cancel_event.is_set():
                raise CompositeCancelledError(
                    f"Composite of {band_info.band_name} at level {level} cancelled"
                )

        if self.max_workers <= 1:
            for completed, (index, tile_id, path) in enumerate(jobs, 1):
                check_cancelled()
                raster = self._decode_one(band_info, level, index, tile_id, path, cancel_event)
                if raster is not None:
                    results[index] = raster
                if progress_callback:
                    progress_callback(completed, total)
            check_cancelled()
            return results

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self._decode_one, band_info, level, index, tile_id, path,
                                cancel_event): index
                for index, tile_id, path in jobs
            }
            completed = 0
            for future in as_completed(futures):
                # Queued decodes dropped after cancellation
                if future.cancelled():
                    continue
                raster = future.result()
                if raster is not None:
                    results[futures[future]] = raster
                completed += 1
                if progress_callback:
                    progress_callback(completed, total)
                if cancel_event is not None and cancel_event.is_set():
                    for pending in futures:
                        pending.cancel()

        check_cancelled()
        return results

    def composite(self, band_info: BandInfo, level: int,
                  cancel_event: Optional[threading.Event] = None,
                  progress_callback: Optional[ProgressCallback] = None) -> Raster:
        """
        Composite all tiles of a band at an overview level.

        Args:
            band_info: Band to composite
            level: Overview level
            cancel_event: Set to stop before the next tile decode
            progress_callback: Optional callback function (completed, total)

        Returns:
            Raster of shape ``scene_rectangle >> level`` anchored at (0, 0)

        Raises:
            EmptyMosaicError: If no tile could be decoded
            CompositeCancelledError: If cancel_event was set
        """
        rasters = self.decode_tiles(band_info, level, cancel_event, progress_callback)
        if not rasters:
            raise EmptyMosaicError(
                f"No tiles decoded for band {band_info.band_name} at level {level}"
            )

        scene_rect = self.scene.scene_rectangle(level)
        canvas = np.full((scene_rect.height, scene_rect.width), self.fill_value, dtype=self.dtype)

        for index in sorted(rasters):
            overlay(canvas, rasters[index])

        failed = len(band_info.tile_files) - len(rasters)
        if failed:
            logger.warning("%s: %d of %d tiles missing from level %d mosaic",
                           band_info.band_name, failed, len(band_info.tile_files), level)
        return Raster(canvas)


def overlay(canvas: np.ndarray, raster: Raster):
    """
    Copy a positioned raster onto a canvas anchored at (0, 0).

    Parts of the raster outside the canvas are clipped.
    """
    height, width = canvas.shape
    x0 = max(raster.min_x, 0)
    y0 = max(raster.min_y, 0)
    x1 = min(raster.min_x + raster.width, width)
    y1 = min(raster.min_y + raster.height, height)
    if x0 >= x1 or y0 >= y1:
        return
    canvas[y0:y1, x0:x1] = raster.data[y0 - raster.min_y:y1 - raster.min_y,
                                       x0 - raster.min_x:x1 - raster.min_x]
