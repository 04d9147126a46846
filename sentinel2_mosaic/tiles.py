"""
Tile geometry lookup and scene layout computation.

Derives the global mosaic pixel grid of a product from the geometries of
its tiles. All placements are computed once at the 10 m reference
resolution; overview levels shift the level-0 placement right by the level
number instead of re-deriving it from band-specific geometry, so every band
of a tile lands on the same mosaic origin at every level.
"""

import math
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

from .config import REFERENCE_RESOLUTION, SpatialResolution
from .exceptions import (
    DuplicateTileIdError,
    EmptyTileListError,
    GeometryNotFoundError,
    UnknownTileIdError,
)
from .models import Tile, TileGeometry


class Rectangle(NamedTuple):
    """Pixel rectangle; (x, y) is the upper-left corner."""

    x: int
    y: int
    width: int
    height: int

    def shift(self, level: int) -> 'Rectangle':
        """Return the rectangle at an overview level."""
        return Rectangle(self.x >> level, self.y >> level,
                         self.width >> level, self.height >> level)

    def contains(self, other: 'Rectangle') -> bool:
        return (self.x <= other.x and self.y <= other.y
                and other.x + other.width <= self.x + self.width
                and other.y + other.height <= self.y + self.height)


class Envelope(NamedTuple):
    """Axis-aligned bounding box in projected coordinates; (x, y) is the lower-left corner."""

    x: float
    y: float
    width: float
    height: float
    crs: str = ""

    @property
    def min_x(self) -> float:
        return self.x

    @property
    def min_y(self) -> float:
        return self.y

    @property
    def max_x(self) -> float:
        return self.x + self.width

    @property
    def max_y(self) -> float:
        return self.y + self.height

    def union(self, other: 'Envelope') -> 'Envelope':
        min_x = min(self.min_x, other.min_x)
        min_y = min(self.min_y, other.min_y)
        max_x = max(self.max_x, other.max_x)
        max_y = max(self.max_y, other.max_y)
        return Envelope(min_x, min_y, max_x - min_x, max_y - min_y, self.crs or other.crs)


def get_tile_geometry(tile: Tile, resolution: SpatialResolution) -> TileGeometry:
    """
    Get the geometry of a tile at a given resolution.

    Args:
        tile: Tile to look up
        resolution: Requested spatial resolution

    Returns:
        TileGeometry of the tile at that resolution

    Raises:
        GeometryNotFoundError: If the tile has no geometry at that resolution
    """
    try:
        return tile.geometries[resolution]
    except KeyError:
        raise GeometryNotFoundError(tile.tile_id, resolution) from None


def tile_envelope(tile: Tile, resolution: SpatialResolution = REFERENCE_RESOLUTION) -> Envelope:
    """
    Get the projected envelope of a tile.

    Args:
        tile: Tile to measure
        resolution: Geometry to derive the extent from

    Returns:
        Envelope with the lower-left corner as origin

    Examples:
        A 10960 x 10960 tile at 10 m with upper-left (299940, 4300060)
        spans (299940, 4190460) to (409540, 4300060).
    """
    geometry = get_tile_geometry(tile, resolution)
    width = geometry.width
    height = geometry.height
    return Envelope(geometry.upper_left_x, geometry.upper_left_y - height,
                    width, height, tile.horizontal_cs_code)


def compute_scene_envelope(tiles: Sequence[Tile]) -> Envelope:
    """
    Compute the union of all tile envelopes at the reference resolution.

    Args:
        tiles: Tiles of the scene

    Returns:
        Scene envelope

    Raises:
        EmptyTileListError: If no tiles are given
    """
    if not tiles:
        raise EmptyTileListError("Cannot compute a scene envelope without tiles")

    envelope = tile_envelope(tiles[0])
    for tile in tiles[1:]:
        envelope = envelope.union(tile_envelope(tile))
    return envelope


def compute_scene_rectangle(envelope: Envelope,
                            pixel_size: float = REFERENCE_RESOLUTION.resolution) -> Rectangle:
    """
    Convert a scene envelope to a pixel rectangle at the reference resolution.

    Extents are rounded up so fractional tile boundaries never clip the mosaic.

    Examples:
        >>> compute_scene_rectangle(Envelope(299940.0, 4190460.0, 409600.0, 309600.0))
        Rectangle(x=0, y=0, width=40960, height=30960)
    """
    return Rectangle(0, 0,
                     int(math.ceil(envelope.width / pixel_size)),
                     int(math.ceil(envelope.height / pixel_size)))


class SceneDescription:
    """
    Layout of all tiles of one product on the mosaic pixel grid.

    The tile order given at construction is the stable tile index used for
    pixel rectangle lookups and for compositing: when tiles overlap, the one
    with the higher index wins.
    """

    def __init__(self, tiles: Iterable[Tile]):
        self._tiles: Tuple[Tile, ...] = tuple(tiles)
        self._index: Dict[str, int] = {}
        for i, tile in enumerate(self._tiles):
            if tile.tile_id in self._index:
                raise DuplicateTileIdError(f"Duplicate tile id: {tile.tile_id}")
            self._index[tile.tile_id] = i

        self._pixel_size = REFERENCE_RESOLUTION.resolution
        self._envelope = compute_scene_envelope(self._tiles)
        self._rectangle = compute_scene_rectangle(self._envelope, self._pixel_size)
        self._tile_rectangles: List[Rectangle] = [
            self._compute_tile_rectangle(tile) for tile in self._tiles
        ]

    def _compute_tile_rectangle(self, tile: Tile) -> Rectangle:
        envelope = tile_envelope(tile)
        x = int(math.floor((envelope.min_x - self._envelope.min_x) / self._pixel_size))
        y = int(math.floor((self._envelope.max_y - envelope.max_y) / self._pixel_size))
        width = int(math.ceil(envelope.width / self._pixel_size))
        height = int(math.ceil(envelope.height / self._pixel_size))
        return Rectangle(x, y, width, height)

    @property
    def tiles(self) -> Tuple[Tile, ...]:
        return self._tiles

    @property
    def tile_count(self) -> int:
        return len(self._tiles)

    @property
    def scene_envelope(self) -> Envelope:
        return self._envelope

    @property
    def crs(self) -> str:
        return self._envelope.crs

    def scene_rectangle(self, level: int = 0) -> Rectangle:
        return self._rectangle.shift(level)

    def tile_index(self, tile_id: str) -> int:
        """
        Get the position of a tile in the scene's tile list.

        Raises:
            UnknownTileIdError: If the tile is not part of the scene
        """
        try:
            return self._index[tile_id]
        except KeyError:
            raise UnknownTileIdError(tile_id) from None

    def tile(self, index: int) -> Tile:
        return self._tiles[index]

    def tile_envelope(self, index: int) -> Envelope:
        return tile_envelope(self._tiles[index])

    def tile_rectangle(self, index: int, level: int = 0) -> Rectangle:
        """
        Get the pixel rectangle of a tile at an overview level.

        The level-0 rectangle is shifted right by ``level`` on every
        component, never recomputed from resolution-specific geometry.

        Args:
            index: Tile index in the scene
            level: Overview level (0 is full resolution)

        Returns:
            Rectangle in mosaic pixel coordinates at that level
        """
        return self._tile_rectangles[index].shift(level)

    @property
    def tile_grid_shape(self) -> Tuple[int, int]:
        """Number of distinct tile columns and rows, as (width, height)."""
        columns = {rect.x for rect in self._tile_rectangles}
        rows = {rect.y for rect in self._tile_rectangles}
        return len(columns), len(rows)

    def find_tile(self, x: int, y: int, level: int = 0) -> Optional[int]:
        """
        Get the index of the tile providing a mosaic pixel.

        Returns the highest covering index, matching the overlay order, or
        None for background pixels.
        """
        for index in range(len(self._tiles) - 1, -1, -1):
            rect = self.tile_rectangle(index, level)
            if rect.x <= x < rect.x + rect.width and rect.y <= y < rect.y + rect.height:
                return index
        return None

    def __len__(self):
        return len(self._tiles)

    def __repr__(self):
        return (f"SceneDescription(tiles={len(self._tiles)}, "
                f"rectangle={tuple(self._rectangle)}, crs={self.crs!r})")
