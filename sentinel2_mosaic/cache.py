"""
Per-product scratch directory and decoded tile cache.

The cache directory is provisioned once when a product is opened. Decoded
tile levels are stored in it as ``.npy`` files with unique per-tile names,
so concurrent decodes of different tiles never write the same file.
"""

import hashlib
import json
import logging
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Union

import numpy as np

from .config import CACHE_ROOT
from .exceptions import CacheUnavailableError

logger = logging.getLogger(__name__)


def cache_dir_name(product_dir: Union[str, Path]) -> str:
    """
    Get the cache directory name of a product.

    Products with the same folder name in different places get different
    directories.

    Examples:
        >>> cache_dir_name('/data/S2A_MSIL1C_20160701T170012.SAFE')  # doctest: +SKIP
        'S2A_MSIL1C_20160701T170012.SAFE-3f1c9a0b'
    """
    resolved = Path(product_dir).resolve()
    digest = hashlib.sha1(str(resolved).encode('utf-8')).hexdigest()[:8]
    return f"{resolved.name}-{digest}"


def source_signature(path: Union[str, Path]) -> Dict:
    """Get size and modification time of a tile image file."""
    stat = Path(path).stat()
    return {'source_size': stat.st_size, 'source_mtime_ns': stat.st_mtime_ns}


def init_cache_dir(product_dir: Union[str, Path],
                   cache_root: Optional[Union[str, Path]] = None) -> Path:
    """
    Create and validate the scratch directory of a product.

    Args:
        product_dir: Product directory; its name and resolved location key
            the cache directory
        cache_root: Root of all product caches (defaults to CACHE_ROOT)

    Returns:
        Path of the writable cache directory

    Raises:
        CacheUnavailableError: If the directory cannot be created or written
    """
    root = Path(cache_root) if cache_root is not None else CACHE_ROOT
    cache_dir = root / cache_dir_name(product_dir)
    try:
        cache_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise CacheUnavailableError(f"Can't create cache directory {cache_dir}: {e}") from e

    if not cache_dir.is_dir() or not os.access(cache_dir, os.W_OK):
        raise CacheUnavailableError(f"Can't access cache directory {cache_dir}")

    logger.debug("Using cache directory %s", cache_dir)
    return cache_dir


class CacheManager:
    """
    Stores decoded tile levels on disk.

    Entries are keyed by tile image name and level. An index file records size
    and creation time of every entry for statistics and cleanup, and the
    size and modification time of the image it was decoded from.
    """

    INDEX_NAME = "cache_index.json"

    def __init__(self, cache_dir: Union[str, Path]):
        """
        Initialize cache manager.

        Args:
            cache_dir: Provisioned product cache directory
        """
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.index_file = self.cache_dir / self.INDEX_NAME
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self.index = self._load_index()

    def _load_index(self) -> Dict:
        """Load cache index from disk."""
        if self.index_file.exists():
            try:
                with open(self.index_file, 'r', encoding='utf-8') as f:
                    return json.load(f)
            except (json.JSONDecodeError, IOError) as e:
                logger.warning("Ignoring unreadable cache index %s: %s", self.index_file, e)
                return {}
        return {}

    def save_index(self):
        """Save cache index to disk."""
        # Writers are serialised so an older snapshot never replaces a newer one
        with self._write_lock:
            with self._lock:
                snapshot = dict(self.index)
            try:
                _atomic_write(self.index_file, json.dumps(snapshot, indent=2).encode('utf-8'))
            except IOError as e:
                logger.warning("Could not save cache index: %s", e)

    @staticmethod
    def _get_key(name: str, level: int) -> str:
        return f"{name}_L{level}"

    def _get_path(self, name: str, level: int) -> Path:
        level_dir = self.cache_dir / f"L{level}"
        level_dir.mkdir(exist_ok=True)
        return level_dir / f"{name}.npy"

    def has_tile(self, name: str, level: int) -> bool:
        key = self._get_key(name, level)
        with self._lock:
            if key not in self.index:
                return False
        return self._get_path(name, level).exists()

    def get_tile(self, name: str, level: int,
                 source: Optional[Union[str, Path]] = None) -> Optional[np.ndarray]:
        """
        Get a cached decoded tile.

        Args:
            name: Tile image name
            level: Overview level
            source: Tile image file; an entry decoded from a different
                version of the file is a miss

        Returns:
            Decoded samples, or None if not cached, stale or unreadable
        """
        key = self._get_key(name, level)
        with self._lock:
            entry = self.index.get(key)
        if entry is None:
            return None

        if source is not None:
            try:
                signature = source_signature(source)
            except OSError:
                return None
            if any(entry.get(field) != value for field, value in signature.items()):
                logger.debug("Cached tile %s is stale", key)
                with self._lock:
                    self.index.pop(key, None)
                return None

        path = self._get_path(name, level)
        if not path.exists():
            with self._lock:
                self.index.pop(key, None)
            return None

        try:
            return np.load(path, allow_pickle=False)
        except (IOError, ValueError) as e:
            logger.warning("Could not load cached tile %s: %s", key, e)
            return None

    def put_tile(self, name: str, level: int, data: np.ndarray,
                 source: Optional[Union[str, Path]] = None) -> bool:
        """
        Store a decoded tile.

        Args:
            name: Tile image name
            level: Overview level
            data: Decoded samples
            source: Tile image file the samples were decoded from

        Returns:
            True if successfully cached, False otherwise
        """
        key = self._get_key(name, level)
        path = self._get_path(name, level)
        entry = {
            'timestamp': datetime.now().isoformat(),
            'size': int(data.nbytes),
            'name': name,
            'level': level,
        }

        tmp_name = None
        try:
            if source is not None:
                entry.update(source_signature(source))
            with tempfile.NamedTemporaryFile(dir=path.parent, suffix='.tmp', delete=False) as f:
                tmp_name = f.name
                np.save(f, data, allow_pickle=False)
            os.replace(tmp_name, path)
        except (IOError, ValueError) as e:
            logger.warning("Could not cache tile %s: %s", key, e)
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            return False

        with self._lock:
            self.index[key] = entry
        self.save_index()
        return True

    def clear(self):
        """Remove all cached tiles and the index."""
        with self._lock:
            keys = list(self.index.values())
            self.index = {}
        for entry in keys:
            try:
                path = self._get_path(entry['name'], entry['level'])
                if path.exists():
                    path.unlink()
            except (KeyError, IOError) as e:
                logger.warning("Could not remove cache entry %s: %s", entry, e)
        if self.index_file.exists():
            self.index_file.unlink()

    def get_stats(self) -> Dict:
        """
        Get cache statistics.

        Returns:
            Dictionary with cache statistics
        """
        with self._lock:
            entries = list(self.index.values())

        total_size = sum(entry.get('size', 0) for entry in entries)
        level_counts: Dict[int, int] = {}
        for entry in entries:
            level = entry.get('level', 0)
            level_counts[level] = level_counts.get(level, 0) + 1

        return {
            'total_tiles': len(entries),
            'total_size_bytes': total_size,
            'total_size_mb': round(total_size / (1024 * 1024), 2),
            'levels': sorted(level_counts),
            'tiles_by_level': level_counts,
            'cache_dir': str(self.cache_dir),
        }


def _atomic_write(path: Path, payload: bytes):
    with tempfile.NamedTemporaryFile(dir=path.parent, suffix='.tmp', delete=False) as f:
        tmp_name = f.name
        try:
            f.write(payload)
        except IOError:
            f.close()
            os.unlink(tmp_name)
            raise
    os.replace(tmp_name, path)
