"""Tests for joining districts, polling stations and results on the district key."""

from __future__ import annotations

import geopandas as gpd
import pandas as pd
from loguru import logger
from shapely.geometry import Point, box

from polling_distance.data.elections import clean_results
from polling_distance.data.merge import (
    drop_missing_geometry,
    merge_sources,
    prepare_districts,
    prepare_stations,
)

CRS = "EPSG:25833"
X0, Y0 = 390_000.0, 5_815_000.0


def _districts(keys=("01001", "01002", "02001")) -> gpd.GeoDataFrame:
    geoms = [box(X0 + i * 1000, Y0, X0 + (i + 1) * 1000, Y0 + 1000) for i in range(len(keys))]
    return gpd.GeoDataFrame({"WLB": list(keys)}, geometry=geoms, crs=CRS)


def _stations(rows) -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {
            "BEZ": [r[0] for r in rows],
            "WAHLBEZIRK": [r[1] for r in rows],
            "BRIEFWAHL": [r[2] for r in rows],
        },
        geometry=[Point(X0 + r[3], Y0 + 500) for r in rows],
        crs=CRS,
    )


def _results(keys=(("1", "001"), ("1", "002"), ("2", "001"))) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "Bezirksnummer": [k[0] for k in keys],
            "Wahlbezirk": [k[1] for k in keys],
            "Wahlberechtigte insgesamt": ["1000"] * len(keys),
            "Wählende": ["700"] * len(keys),
        }
    )


def test_three_row_merge_round_trip() -> None:
    stations = _stations([
        ("1", "W001", "0", 500),
        ("Bez 01", "002", "0", 1500),
        ("02", "1", "0", 2500),
        # postal-only record for an existing key must not fan out
        ("01", "001", "1", 600),
    ])

    res = merge_sources(
        prepare_districts(_districts()),
        prepare_stations(stations),
        clean_results(_results()),
    )
    merged = res.frame

    assert len(merged) == 3
    assert merged["key"].tolist() == ["01001", "01002", "02001"]
    assert not merged["district_geometry"].isna().any()
    assert not merged["station_geometry"].isna().any()
    assert merged.geometry.name == "district_geometry"
    assert merged["station_geometry"].crs == merged.crs
    assert res.diagnostics.n_stations == 3
    assert res.diagnostics.unmatched_stations == 0
    assert res.diagnostics.duplicate_keys == 0


def test_unmatched_keys_are_counted_not_raised() -> None:
    stations = _stations([
        ("1", "001", "0", 500),
        ("1", "002", "0", 1500),
        ("9", "009", "0", 2500),
    ])

    res = merge_sources(
        prepare_districts(_districts()),
        prepare_stations(stations),
        clean_results(_results()),
    )

    assert res.diagnostics.unmatched_stations == 1
    assert res.diagnostics.districts_without_station == 1
    assert len(res.frame) == 3

    kept = drop_missing_geometry(res.frame, ["district_geometry", "station_geometry"])
    assert kept["key"].tolist() == ["01001", "01002"]


def test_duplicate_station_keys_fan_out_and_are_reported() -> None:
    stations = _stations([
        ("1", "001", "0", 500),
        ("1", "001", "0", 550),
        ("1", "002", "0", 1500),
        ("2", "001", "0", 2500),
    ])

    res = merge_sources(
        prepare_districts(_districts()),
        prepare_stations(stations),
        clean_results(_results()),
    )

    assert len(res.frame) == 4
    assert res.diagnostics.duplicate_keys == 1


def test_prepare_stations_reprojects_to_analysis_crs() -> None:
    stations = _stations([("1", "001", "0", 500)]).to_crs("EPSG:4326")

    prepared = prepare_stations(stations)

    assert prepared.crs.to_epsg() == 25833
    assert prepared.geometry.name == "station_geometry"
    assert prepared.geometry.iloc[0].distance(Point(X0 + 500, Y0 + 500)) < 0.01


def test_dropped_rows_are_logged_with_their_keys() -> None:
    stations = _stations([("1", "001", "0", 500), ("1", "002", "0", 1500)])
    res = merge_sources(
        prepare_districts(_districts()),
        prepare_stations(stations),
        clean_results(_results()),
    )

    messages = []
    sink = logger.add(messages.append, format="{message}")
    try:
        drop_missing_geometry(res.frame, ["district_geometry", "station_geometry"])
    finally:
        logger.remove(sink)

    dropped = [m for m in messages if "missing geometry" in m]
    assert len(dropped) == 1
    assert "02001" in dropped[0]
