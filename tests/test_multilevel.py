"""
Tests for per-band multi-level sources.
"""

import pytest

from sentinel2_mosaic.config import SpatialResolution, WavebandInfo
from sentinel2_mosaic.decoder import TileDecoder
from sentinel2_mosaic.exceptions import LevelOutOfRangeError
from sentinel2_mosaic.models import BandInfo
from sentinel2_mosaic.mosaic import MosaicCompositor
from sentinel2_mosaic.multilevel import MosaicMultiLevelSource, TileMultiLevelSource
from sentinel2_mosaic.tiles import SceneDescription

from conftest import FakeCodec


def band_info_for(tile_files, resolution=SpatialResolution.R10M):
    waveband = WavebandInfo(3, "B4", resolution, 665.0, 30.0)
    return BandInfo(3, waveband, resolution.layout, tile_files)


@pytest.fixture
def mosaic_source(small_tiles, tile_files, fake_codec, tmp_path):
    decoder = TileDecoder(fake_codec, use_cache=False)
    compositor = MosaicCompositor(SceneDescription(small_tiles), decoder, tmp_path)
    return MosaicMultiLevelSource(band_info_for(tile_files), compositor)


class TestMosaicMultiLevelSource:
    """Tests for MosaicMultiLevelSource."""

    def test_size(self, mosaic_source):
        """Test that the source spans the scene rectangle."""
        assert (mosaic_source.width, mosaic_source.height) == (12, 16)
        assert mosaic_source.num_resolutions == 6
        assert mosaic_source.image_shape(1) == (8, 6)

    def test_image_at(self, mosaic_source):
        """Test level images."""
        raster = mosaic_source.image_at(1)
        assert (raster.height, raster.width) == mosaic_source.image_shape(1)
        assert raster.sample(3, 1) == 200

    def test_memoised(self, mosaic_source, fake_codec):
        """Test that a level is composited only once."""
        first = mosaic_source.image_at(0)
        calls = len(fake_codec.calls)
        assert mosaic_source.image_at(0) is first
        assert len(fake_codec.calls) == calls

    def test_release(self, mosaic_source, fake_codec):
        """Test dropping a cached level."""
        mosaic_source.image_at(0)
        mosaic_source.release(0)
        mosaic_source.image_at(0)
        assert len(fake_codec.calls) == 6

    @pytest.mark.parametrize("level", [-1, 6, 10])
    def test_level_out_of_range(self, mosaic_source, level):
        """Test levels outside the pyramid."""
        with pytest.raises(LevelOutOfRangeError):
            mosaic_source.image_at(level)
        with pytest.raises(IndexError):
            mosaic_source.image_shape(level)

    def test_empty_band(self, small_tiles, tile_files, tmp_path):
        """Test that a band without decodable tiles has no image."""
        codec = FakeCodec(fail={path.name for path in tile_files.values()})
        compositor = MosaicCompositor(SceneDescription(small_tiles),
                                      TileDecoder(codec, use_cache=False), tmp_path)
        source = MosaicMultiLevelSource(band_info_for(tile_files), compositor)
        assert source.image_at(0) is None

    def test_failure_not_memoised(self, small_tiles, tile_files, tmp_path):
        """Test that a level is retried after a failed composite."""
        codec = FakeCodec(fail={path.name for path in tile_files.values()})
        compositor = MosaicCompositor(SceneDescription(small_tiles),
                                      TileDecoder(codec, use_cache=False), tmp_path)
        source = MosaicMultiLevelSource(band_info_for(tile_files), compositor)
        assert source.image_at(0) is None

        codec.fail.clear()
        raster = source.image_at(0)
        assert raster is not None
        assert raster.sample(0, 0) == 100


class TestTileMultiLevelSource:
    """Tests for TileMultiLevelSource."""

    def test_single_tile(self, tile_files, fake_codec, tmp_path):
        """Test a one-tile product source."""
        files = {"01AAA": tile_files["01AAA"]}
        source = TileMultiLevelSource(band_info_for(files, SpatialResolution.R60M),
                                      TileDecoder(fake_codec, use_cache=False),
                                      tmp_path, width=8, height=8)
        raster = source.image_at(2)
        assert (raster.height, raster.width) == (2, 2)
        assert raster.sample(1, 1) == 100

    def test_missing_tile(self, tile_files, fake_codec, tmp_path):
        """Test a tile file that disappeared."""
        files = {"01AAA": tile_files["01AAA"]}
        tile_files["01AAA"].unlink()
        source = TileMultiLevelSource(band_info_for(files), TileDecoder(fake_codec),
                                      tmp_path / "cache", width=8, height=8)
        assert source.image_at(0) is None
