"""Tests for geometric and population-weighted district centroids."""

from __future__ import annotations

import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import MultiPolygon, box

from polling_distance.geo.centroids import (
    assign_blocks_to_districts,
    block_centroids,
    centroid_coverage,
    geometric_centroids,
    population_weighted_centroids,
    weighted_centroids,
)

CRS = "EPSG:25833"


def _centroid_of(out: gpd.GeoDataFrame, key: str):
    return out.loc[out["key"] == key].geometry.iloc[0]


def test_weighted_centroid_two_blocks() -> None:
    assigned = pd.DataFrame({"key": ["01001", "01001"], "x": [0.0, 10.0], "y": [0.0, 0.0], "population": [1.0, 3.0]})

    out = weighted_centroids(assigned, crs=CRS)

    c = _centroid_of(out, "01001")
    assert c.x == pytest.approx(7.5)
    assert c.y == pytest.approx(0.0)


def test_weighted_centroid_three_blocks() -> None:
    assigned = pd.DataFrame(
        {
            "key": ["02001"] * 3,
            "x": [0.0, 10.0, 0.0],
            "y": [0.0, 0.0, 10.0],
            "population": [2.0, 1.0, 1.0],
        }
    )

    out = weighted_centroids(assigned, crs=CRS)

    c = _centroid_of(out, "02001")
    # (2*0 + 1*10 + 1*0) / 4, (2*0 + 1*0 + 1*10) / 4
    assert c.x == pytest.approx(2.5)
    assert c.y == pytest.approx(2.5)


def test_weighted_centroid_skips_unpopulated_districts() -> None:
    assigned = pd.DataFrame(
        {"key": ["01001", "01002"], "x": [0.0, 5.0], "y": [0.0, 5.0], "population": [10.0, 0.0]}
    )

    out = weighted_centroids(assigned, crs=CRS)

    assert out["key"].tolist() == ["01001"]


def test_population_weighted_centroids_from_block_polygons() -> None:
    districts = gpd.GeoDataFrame(
        {"key": ["01001", "01002", "01003"]},
        geometry=[box(0, 0, 100, 100), box(100, 0, 200, 100), box(200, 0, 300, 100)],
        crs=CRS,
    ).rename_geometry("district_geometry")
    # block centroids at (10,10), (50,90) in district 1 and (150,50) in district 2
    blocks = gpd.GeoDataFrame(
        {"ew2021": [30, 10, 5]},
        geometry=[box(5, 5, 15, 15), box(45, 85, 55, 95), box(140, 40, 160, 60)],
        crs=CRS,
    )

    out = population_weighted_centroids(blocks, districts, "district_geometry", "ew2021")

    assert set(out["key"]) == {"01001", "01002"}
    c1 = _centroid_of(out, "01001")
    assert c1.x == pytest.approx((30 * 10 + 10 * 50) / 40)
    assert c1.y == pytest.approx((30 * 10 + 10 * 90) / 40)
    c2 = _centroid_of(out, "01002")
    assert (c2.x, c2.y) == pytest.approx((150.0, 50.0))

    coverage = centroid_coverage(districts["key"], out)
    assert coverage.missing_keys == ("01003",)
    assert coverage.n_with_centroid == 2
    assert coverage.share_missing == pytest.approx(1 / 3)


def test_split_district_yields_one_centroid_per_key() -> None:
    split = MultiPolygon([box(0, 0, 10, 10), box(100, 0, 110, 10)])
    districts = gpd.GeoDataFrame({"key": ["03001"]}, geometry=[split], crs=CRS).rename_geometry("district_geometry")
    blocks = gpd.GeoDataFrame(
        {"ew2021": [1, 1]},
        geometry=[box(4, 4, 6, 6), box(104, 4, 106, 6)],
        crs=CRS,
    )

    points = block_centroids(blocks, "ew2021")
    assigned = assign_blocks_to_districts(points, districts, "district_geometry")
    out = weighted_centroids(assigned, crs=CRS)

    assert len(out) == 1
    assert (out.geometry.iloc[0].x, out.geometry.iloc[0].y) == pytest.approx((55.0, 5.0))


def test_block_centroids_drop_missing_population() -> None:
    blocks = gpd.GeoDataFrame(
        {"ew2021": ["12", None, "-3"]},
        geometry=[box(0, 0, 2, 2), box(2, 0, 4, 2), box(4, 0, 6, 2)],
        crs=CRS,
    )

    points = block_centroids(blocks, "ew2021")

    assert points["population"].tolist() == [12.0]
    assert (points.geometry.iloc[0].x, points.geometry.iloc[0].y) == (1.0, 1.0)


def test_geometric_centroid_uses_named_geometry_column() -> None:
    frame = gpd.GeoDataFrame(
        {"key": ["01001"], "other": gpd.GeoSeries([box(0, 0, 1, 1)], crs=CRS)},
        geometry=[box(0, 0, 4, 2)],
        crs=CRS,
    ).rename_geometry("district_geometry")

    c = geometric_centroids(frame, "district_geometry")

    assert (c.iloc[0].x, c.iloc[0].y) == pytest.approx((2.0, 1.0))
