"""
Exception hierarchy for the Sentinel-2 mosaic reader.

Every error subclasses both ``Sentinel2MosaicError`` and the closest
built-in exception, so callers can catch either.
"""


class Sentinel2MosaicError(Exception):
    """Base exception for all reader errors."""


class GeometryNotFoundError(Sentinel2MosaicError, KeyError):
    """A tile has no geometry recorded at the requested resolution."""

    def __init__(self, tile_id: str, resolution):
        self.tile_id = tile_id
        self.resolution = resolution
        super().__init__(f"Tile {tile_id} has no geometry at {resolution}")

    def __str__(self):
        return self.args[0]


class EmptyTileListError(Sentinel2MosaicError, ValueError):
    """A scene layout was requested for an empty tile list."""


class UnknownTileIdError(Sentinel2MosaicError, KeyError):
    """A tile id is not part of the scene."""

    def __init__(self, tile_id: str):
        self.tile_id = tile_id
        super().__init__(f"Unknown tile id: {tile_id}")

    def __str__(self):
        return self.args[0]


class DuplicateTileIdError(Sentinel2MosaicError, ValueError):
    """Two tiles of one scene share the same id."""


class CacheUnavailableError(Sentinel2MosaicError, IOError):
    """The product cache directory cannot be created or written."""


class TileDecodeError(Sentinel2MosaicError, IOError):
    """A tile image could not be decoded at the requested level."""

    def __init__(self, tile_id: str, level: int, reason: str = ""):
        self.tile_id = tile_id
        self.level = level
        message = f"Failed to decode tile {tile_id} at level {level}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class EmptyMosaicError(Sentinel2MosaicError, RuntimeError):
    """No tile could be decoded for a composite."""


class CompositeCancelledError(Sentinel2MosaicError, RuntimeError):
    """A composite was cancelled between tile decodes."""


class LevelOutOfRangeError(Sentinel2MosaicError, IndexError):
    """An overview level outside ``[0, num_resolutions)`` was requested."""

    def __init__(self, level: int, num_resolutions: int):
        self.level = level
        self.num_resolutions = num_resolutions
        super().__init__(
            f"Level must be between 0 and {num_resolutions - 1}, got {level}"
        )


class MetadataError(Sentinel2MosaicError, ValueError):
    """A metadata header is missing or malformed."""


class ProductOpenError(Sentinel2MosaicError, IOError):
    """A product could not be opened."""


class NoValidBandsError(ProductOpenError):
    """A product was opened but no band could be resolved."""
