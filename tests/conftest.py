"""
Shared fixtures: an 11-tile UTM zone 15N scene and small synthetic tiles.
"""

import numpy as np
import pytest

from sentinel2_mosaic.config import SpatialResolution
from sentinel2_mosaic.decoder import TileCodec
from sentinel2_mosaic.models import Tile, TileGeometry

# (tile id, upper-left x, upper-left y) at 10 m, 10960 x 10960 pixels
REFERENCE_TILES = [
    ("15SUC", 299940.0, 4300060.0),
    ("15SUD", 299940.0, 4400060.0),
    ("15SVC", 399960.0, 4300060.0),
    ("15SVD", 399960.0, 4400060.0),
    ("15SWC", 499980.0, 4300060.0),
    ("15SWD", 499980.0, 4400060.0),
    ("15SXC", 599940.0, 4300060.0),
    ("15SXD", 599940.0, 4400060.0),
    ("15TUE", 299940.0, 4500060.0),
    ("15TVE", 399960.0, 4500060.0),
    ("15TWE", 499980.0, 4500060.0),
]


def make_tile(tile_id, ulx, uly, size=10960, pixel=10.0, crs="EPSG:32615", with_coarse=True):
    geometries = {
        SpatialResolution.R10M: TileGeometry(size, size, ulx, uly, pixel, -pixel),
    }
    if with_coarse:
        geometries[SpatialResolution.R20M] = TileGeometry(size // 2, size // 2, ulx, uly,
                                                          2 * pixel, -2 * pixel)
        geometries[SpatialResolution.R60M] = TileGeometry(size // 6, size // 6, ulx, uly,
                                                          6 * pixel, -6 * pixel)
    return Tile(tile_id=tile_id, horizontal_cs_code=crs,
                horizontal_cs_name="WGS84 / UTM zone 15N", geometries=geometries)


@pytest.fixture
def reference_tiles():
    return [make_tile(tile_id, ulx, uly) for tile_id, ulx, uly in REFERENCE_TILES]


@pytest.fixture
def small_tiles():
    """Two overlapping 8x8 tiles and one disjoint tile, 10 m pixels."""
    return [
        make_tile("01AAA", 0.0, 160.0, size=8),
        make_tile("01AAB", 40.0, 160.0, size=8),
        make_tile("01AAC", 0.0, 80.0, size=8),
    ]


class FakeCodec(TileCodec):
    """
    Codec returning a constant image per file.

    The sample value is read from the file content; ``fail`` names files
    whose decode raises an OSError.
    """

    def __init__(self, fail=()):
        self.fail = set(fail)
        self.calls = []

    def read(self, file_path, out_shape, cache_dir=None):
        self.calls.append((file_path.name, out_shape))
        if file_path.name in self.fail:
            raise OSError(f"corrupt codestream in {file_path.name}")
        value = int(file_path.read_text().strip())
        return np.full(out_shape, value, dtype=np.uint16)


@pytest.fixture
def fake_codec():
    return FakeCodec()


@pytest.fixture
def tile_files(tmp_path):
    """Write one fake image file per small tile; file content is the sample value."""
    files = {}
    for value, tile_id in enumerate(["01AAA", "01AAB", "01AAC"], start=1):
        path = tmp_path / "images" / f"T{tile_id}_20160701T170012_B04.jp2"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(str(value * 100))
        files[tile_id] = path
    return files


PRODUCT_HEADER = """<?xml version="1.0" encoding="UTF-8"?>
<n1:Level-1C_User_Product xmlns:n1="https://psd-14.sentinel2.eo.esa.int/PSD/User_Product_Level-1C.xsd">
  <n1:General_Info>
    <Product_Info>
      <PRODUCT_START_TIME>2016-07-01T17:00:12.026Z</PRODUCT_START_TIME>
      <PRODUCT_STOP_TIME>2016-07-01T17:00:42.026Z</PRODUCT_STOP_TIME>
      <PROCESSING_LEVEL>Level-1C</PROCESSING_LEVEL>
      <GENERATION_TIME>2016-07-01T20:54:05.000000Z</GENERATION_TIME>
      <Datatake datatakeIdentifier="GS2A_20160701T170012_005383_N02.04">
        <SPACECRAFT_NAME>Sentinel-2A</SPACECRAFT_NAME>
      </Datatake>
      <Product_Organisation>
        <Granule_List>
{granules}
        </Granule_List>
      </Product_Organisation>
    </Product_Info>
    <Product_Image_Characteristics>
      <QUANTIFICATION_VALUE unit="none">10000</QUANTIFICATION_VALUE>
      <Reflectance_Conversion>
        <U>1.030577302</U>
        <Solar_Irradiance_List>
          <SOLAR_IRRADIANCE bandId="0" unit="W/m2/um">1913.57</SOLAR_IRRADIANCE>
          <SOLAR_IRRADIANCE bandId="1" unit="W/m2/um">1941.63</SOLAR_IRRADIANCE>
          <SOLAR_IRRADIANCE bandId="2" unit="W/m2/um">1822.61</SOLAR_IRRADIANCE>
          <SOLAR_IRRADIANCE bandId="3" unit="W/m2/um">1512.79</SOLAR_IRRADIANCE>
        </Solar_Irradiance_List>
      </Reflectance_Conversion>
      <Spectral_Information_List>
        <Spectral_Information bandId="0" physicalBand="B1">
          <RESOLUTION>60</RESOLUTION>
          <Wavelength><MIN unit="nm">430</MIN><MAX unit="nm">457</MAX><CENTRAL unit="nm">443.9</CENTRAL></Wavelength>
        </Spectral_Information>
        <Spectral_Information bandId="1" physicalBand="B2">
          <RESOLUTION>10</RESOLUTION>
          <Wavelength><MIN unit="nm">440</MIN><MAX unit="nm">538</MAX><CENTRAL unit="nm">496.6</CENTRAL></Wavelength>
        </Spectral_Information>
        <Spectral_Information bandId="3" physicalBand="B4">
          <RESOLUTION>10</RESOLUTION>
          <Wavelength><MIN unit="nm">646</MIN><MAX unit="nm">684</MAX><CENTRAL unit="nm">664.5</CENTRAL></Wavelength>
        </Spectral_Information>
        <Spectral_Information bandId="20" physicalBand="B99">
          <RESOLUTION>10</RESOLUTION>
          <Wavelength><MIN unit="nm">1</MIN><MAX unit="nm">2</MAX><CENTRAL unit="nm">1.5</CENTRAL></Wavelength>
        </Spectral_Information>
      </Spectral_Information_List>
    </Product_Image_Characteristics>
  </n1:General_Info>
</n1:Level-1C_User_Product>
"""

GRANULE_ENTRY = """          <Granule granuleIdentifier="S2A_OPER_MSI_L1C_TL_SGS__20160701T205405_A005383_T{tile_id}_N02.04" imageFormat="JPEG2000">
            <IMAGE_FILE>GRANULE/{granule}/IMG_DATA/T{tile_id}_20160701T170012_B01</IMAGE_FILE>
            <IMAGE_FILE>GRANULE/{granule}/IMG_DATA/T{tile_id}_20160701T170012_B04</IMAGE_FILE>
          </Granule>"""

GRANULE_HEADER = """<?xml version="1.0" encoding="UTF-8"?>
<n1:Level-1C_Tile_ID xmlns:n1="https://psd-14.sentinel2.eo.esa.int/PSD/S2_PDI_Level-1C_Tile_Metadata.xsd">
  <n1:General_Info>
    <TILE_ID metadataLevel="Brief">S2A_OPER_MSI_L1C_TL_SGS__20160701T205405_A005383_T{tile_id}_N02.04</TILE_ID>
  </n1:General_Info>
  <n1:Geometric_Info>
    <Tile_Geocoding metadataLevel="Brief">
      <HORIZONTAL_CS_NAME>WGS84 / UTM zone 15N</HORIZONTAL_CS_NAME>
      <HORIZONTAL_CS_CODE>{crs}</HORIZONTAL_CS_CODE>
      <Size resolution="10"><NROWS>8</NROWS><NCOLS>8</NCOLS></Size>
      <Size resolution="20"><NROWS>4</NROWS><NCOLS>4</NCOLS></Size>
      <Size resolution="60"><NROWS>2</NROWS><NCOLS>2</NCOLS></Size>
      <Geoposition resolution="10"><ULX>{ulx}</ULX><ULY>{uly}</ULY><XDIM>10</XDIM><YDIM>-10</YDIM></Geoposition>
      <Geoposition resolution="20"><ULX>{ulx}</ULX><ULY>{uly}</ULY><XDIM>20</XDIM><YDIM>-20</YDIM></Geoposition>
      <Geoposition resolution="60"><ULX>{ulx}</ULX><ULY>{uly}</ULY><XDIM>40</XDIM><YDIM>-40</YDIM></Geoposition>
    </Tile_Geocoding>
    <Tile_Angles metadataLevel="Standard">
      <Sun_Angles_Grid>
        <Zenith>
          <COL_STEP unit="m">5000</COL_STEP>
          <ROW_STEP unit="m">5000</ROW_STEP>
          <Values_List><VALUES>30.1 30.2</VALUES><VALUES>NaN 30.4</VALUES></Values_List>
        </Zenith>
        <Azimuth>
          <COL_STEP unit="m">5000</COL_STEP>
          <ROW_STEP unit="m">5000</ROW_STEP>
          <Values_List><VALUES>140.0 140.5</VALUES><VALUES>141.0 141.5</VALUES></Values_List>
        </Azimuth>
      </Sun_Angles_Grid>
      <Viewing_Incidence_Angles_Grids bandId="3" detectorId="2">
        <Zenith>
          <COL_STEP unit="m">5000</COL_STEP>
          <ROW_STEP unit="m">5000</ROW_STEP>
          <Values_List><VALUES>NaN NaN</VALUES><VALUES>5.0 5.1</VALUES></Values_List>
        </Zenith>
        <Azimuth>
          <COL_STEP unit="m">5000</COL_STEP>
          <ROW_STEP unit="m">5000</ROW_STEP>
          <Values_List><VALUES>NaN 100.0</VALUES><VALUES>101.0 102.0</VALUES></Values_List>
        </Azimuth>
      </Viewing_Incidence_Angles_Grids>
    </Tile_Angles>
  </n1:Geometric_Info>
</n1:Level-1C_Tile_ID>
"""

# (tile id, upper-left x, upper-left y, B04 sample value), matching small_tiles
PRODUCT_TILES = [
    ("01AAA", 0, 160, 100),
    ("01AAB", 40, 160, 200),
    ("01AAC", 0, 80, 300),
]


def build_product(root, tiles=PRODUCT_TILES, crs_by_tile=None, b01_tiles=("01AAA",)):
    """
    Write a miniature Level-1C product tree.

    Image files hold their sample value as text, for FakeCodec. Band B01
    exists only in ``b01_tiles``; band B02 has no image files at all.
    """
    crs_by_tile = crs_by_tile or {}
    product_dir = root / "S2A_MSIL1C_20160701T170012_N0204_R069_T01AAA_20160701T205405.SAFE"
    granules = []
    for tile_id, ulx, uly, value in tiles:
        granule = f"L1C_T{tile_id}_A005383_20160701T170012"
        granule_dir = product_dir / "GRANULE" / granule
        (granule_dir / "IMG_DATA").mkdir(parents=True)
        (granule_dir / "MTD_TL.xml").write_text(GRANULE_HEADER.format(
            tile_id=tile_id, ulx=ulx, uly=uly, crs=crs_by_tile.get(tile_id, "EPSG:32615")))
        (granule_dir / "IMG_DATA" / f"T{tile_id}_20160701T170012_B04.jp2").write_text(str(value))
        if tile_id in b01_tiles:
            (granule_dir / "IMG_DATA" / f"T{tile_id}_20160701T170012_B01.jp2").write_text("7")
        granules.append(GRANULE_ENTRY.format(tile_id=tile_id, granule=granule))

    (product_dir / "MTD_MSIL1C.xml").write_text(PRODUCT_HEADER.replace("{granules}", "\n".join(granules)))
    return product_dir


@pytest.fixture
def product_dir(tmp_path):
    return build_product(tmp_path)
