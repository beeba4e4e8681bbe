from __future__ import annotations

import geopandas as gpd
import numpy as np
import pandas as pd
from loguru import logger

from ..config import Columns
from ..data.io import assert_projected_planar
from ..errors import DatasetError
from .centroids import geometric_centroids


def pairwise_distance(a: gpd.GeoSeries, b: gpd.GeoSeries) -> pd.Series:
    """
    Row-by-row planar distance in metres between two index-aligned series.

    Not an all-pairs matrix: row i of `a` is only compared with row i of `b`.
    A missing geometry on either side gives NaN.
    """
    assert_projected_planar(a, "pairwise_distance (left)")
    assert_projected_planar(b, "pairwise_distance (right)")
    if a.crs != b.crs:
        raise DatasetError("pairwise_distance", f"CRS mismatch: {a.crs} vs {b.crs}")

    if not a.index.equals(b.index):
        b = b.reindex(a.index)
    missing = (a.isna() | a.is_empty).to_numpy() | (b.isna() | b.is_empty).to_numpy()
    out = np.full(len(a), np.nan)
    ok = ~missing
    if ok.any():
        out[ok] = a[ok].distance(b[ok], align=False).to_numpy(dtype=float)
    return pd.Series(out, index=a.index, dtype=float)


def add_centroid_distance(frame: gpd.GeoDataFrame, cols: Columns = Columns()) -> gpd.GeoDataFrame:
    """Baseline measure: station to the geometric centroid of its district."""
    out = frame.copy()
    centroids = geometric_centroids(frame, cols.district_geometry)
    stations = gpd.GeoSeries(frame[cols.station_geometry], crs=frame[cols.station_geometry].crs)
    out[cols.dist_centroid] = pairwise_distance(stations, centroids)
    logger.info(f"distance to centroid: median {out[cols.dist_centroid].median():.0f} m")
    return out


def add_weighted_distance(
    frame: gpd.GeoDataFrame,
    weighted: gpd.GeoDataFrame,
    cols: Columns = Columns(),
) -> gpd.GeoDataFrame:
    """
    Advanced measure: station to the population-weighted centroid.

    Districts without a weighted centroid get NaN and must be dropped before
    fitting the advanced models.
    """
    out = frame.copy()
    lookup = gpd.GeoSeries(weighted.geometry.values, index=weighted[cols.key].values, crs=weighted.crs)
    lookup = lookup[~lookup.index.duplicated(keep="first")]
    matched = gpd.GeoSeries(lookup.reindex(frame[cols.key].values).values, index=frame.index, crs=weighted.crs)
    stations = gpd.GeoSeries(frame[cols.station_geometry], crs=frame[cols.station_geometry].crs)
    out[cols.dist_weighted] = pairwise_distance(stations, matched)
    n_missing = int(out[cols.dist_weighted].isna().sum())
    if n_missing:
        logger.info(f"distance to weighted centroid: {n_missing} rows without a weighted centroid")
    return out
