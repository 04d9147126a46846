"""
Tests for GeoTIFF and picture export.
"""

import numpy as np
import pytest
import rasterio
from PIL import Image

from sentinel2_mosaic.exceptions import EmptyMosaicError
from sentinel2_mosaic.geotiff import (
    GeoTIFFWriter,
    render_tile_picture,
    stretch_to_byte,
    write_quicklook,
)
from sentinel2_mosaic.product import open_product
from sentinel2_mosaic.tiles import SceneDescription

from conftest import FakeCodec


@pytest.fixture
def product(product_dir, tmp_path):
    return open_product(product_dir, cache_root=tmp_path / "cache", codec=FakeCodec())


class TestGeoTIFFWriter:
    """Tests for GeoTIFFWriter."""

    def test_write_level(self, product, tmp_path):
        """Test a georeferenced level export."""
        output = tmp_path / "b4.tif"
        result = GeoTIFFWriter().write_level(product, "B4", 0, output)

        assert result['width'] == 12
        assert result['height'] == 16
        assert result['crs'] == "EPSG:32615"
        assert result['bounds'] == (0.0, 0.0, 120.0, 160.0)
        assert not result['bigtiff']

        with rasterio.open(str(output)) as src:
            assert src.crs.to_epsg() == 32615
            assert src.transform.a == 10.0
            assert src.transform.f == 160.0
            assert src.nodata == 0
            assert src.tags()['product_type'] == "S2_MSI_L1C"
            data = src.read(1)
        assert data.dtype == np.uint16
        assert data[0, 0] == 100
        assert data[3, 5] == 200
        assert data[15, 11] == 0

    def test_write_overview(self, product, tmp_path):
        """Test exporting a reduced level."""
        output = tmp_path / "b4_l1.tif"
        result = GeoTIFFWriter(compression='deflate').write_level(product, "B4", 1, output)
        assert (result['width'], result['height']) == (6, 8)
        with rasterio.open(str(output)) as src:
            assert src.transform.a == 20.0

    def test_forced_bigtiff(self, product, tmp_path):
        """Test the BigTIFF switch."""
        result = GeoTIFFWriter(bigtiff=True).write_level(product, "B4", 0, tmp_path / "big.tif")
        assert result['bigtiff']

    def test_empty_band(self, product_dir, tmp_path):
        """Test exporting a band whose tiles cannot be decoded."""
        codec = FakeCodec(fail={p.name for p in product_dir.glob("GRANULE/*/IMG_DATA/*_B04.jp2")})
        product = open_product(product_dir, cache_root=tmp_path / "cache", codec=codec)
        with pytest.raises(EmptyMosaicError):
            GeoTIFFWriter().write_level(product, "B4", 0, tmp_path / "b4.tif")


class TestQuicklook:
    """Tests for quicklook export."""

    def test_stretch(self):
        """Test that fill pixels stay black."""
        data = np.array([[0, 100], [200, 300]], dtype=np.uint16)
        result = stretch_to_byte(data)
        assert result.dtype == np.uint8
        assert result[0, 0] == 0
        assert result[0, 1] < result[1, 0] < result[1, 1]

    def test_stretch_empty(self):
        """Test an image without valid pixels."""
        assert stretch_to_byte(np.zeros((2, 2), dtype=np.uint16)).sum() == 0

    def test_grey(self, product, tmp_path):
        """Test a single band quicklook."""
        output = tmp_path / "b4.png"
        result = write_quicklook(product, ["B4"], 1, output)
        assert (result['width'], result['height']) == (6, 8)
        with Image.open(output) as image:
            assert image.mode == 'L'
            assert image.size == (6, 8)

    def test_rgb(self, product, tmp_path):
        """Test a three band quicklook."""
        output = tmp_path / "rgb.png"
        write_quicklook(product, ["B4", "B1", "B4"], 0, output)
        with Image.open(output) as image:
            assert image.mode == 'RGB'

    def test_band_count(self, product, tmp_path):
        """Test an invalid number of bands."""
        with pytest.raises(ValueError):
            write_quicklook(product, ["B4", "B1"], 0, tmp_path / "x.png")


class TestTilePicture:
    """Tests for render_tile_picture."""

    def test_reference_scene(self, reference_tiles):
        """Test that the longer side is scaled to the requested size."""
        image = render_tile_picture(SceneDescription(reference_tiles), 1024)
        assert image.size == (1024, 774)

    def test_draws_tiles(self, small_tiles):
        """Test that tile outlines are drawn."""
        image = render_tile_picture(SceneDescription(small_tiles), 160)
        assert image.size == (120, 160)
        assert image.getpixel((0, 0)) != (255, 255, 255)
