from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

import geopandas as gpd
import pandas as pd
from loguru import logger

from ..config import Columns
from ..data.io import DENSITY_DATASET, assert_projected_planar
from ..errors import DatasetError, require_columns


@dataclass(frozen=True)
class CoverageReport:
    n_districts: int
    n_with_centroid: int
    missing_keys: tuple

    @property
    def n_missing(self) -> int:
        return len(self.missing_keys)

    @property
    def share_missing(self) -> float:
        return self.n_missing / self.n_districts if self.n_districts else 0.0


def geometric_centroids(frame: gpd.GeoDataFrame, geometry_col: str) -> gpd.GeoSeries:
    geoms = gpd.GeoSeries(frame[geometry_col], crs=frame[geometry_col].crs)
    assert_projected_planar(geoms, "geometric_centroids")
    return geoms.centroid


def block_centroids(blocks: gpd.GeoDataFrame, pop_col: str) -> gpd.GeoDataFrame:
    """One point per density block (its centroid) with its population as weight."""
    require_columns(blocks, [pop_col], dataset=DENSITY_DATASET)
    assert_projected_planar(blocks.geometry, DENSITY_DATASET)

    pop = pd.to_numeric(blocks[pop_col], errors="coerce")
    bad = pop.isna() | (pop < 0) | blocks.geometry.isna()
    if bad.any():
        logger.warning(f"density_blocks: dropping {int(bad.sum())} blocks with missing/negative population")

    kept = blocks.loc[~bad]
    return gpd.GeoDataFrame(
        {"population": pop.loc[~bad].astype(float).values},
        geometry=kept.geometry.centroid.values,
        crs=blocks.crs,
    )


def assign_blocks_to_districts(
    block_points: gpd.GeoDataFrame,
    districts: gpd.GeoDataFrame,
    geometry_col: str,
    cols: Columns = Columns(),
) -> pd.DataFrame:
    """
    Spatially join block centroids to the district polygons they fall in.

    Returns a plain frame of (key, x, y, population); blocks outside every
    district are dropped.
    """
    polys = gpd.GeoDataFrame(
        {cols.key: districts[cols.key].values},
        geometry=gpd.GeoSeries(districts[geometry_col]).values,
        crs=districts[geometry_col].crs,
    )
    if polys.crs != block_points.crs:
        raise DatasetError(
            DENSITY_DATASET,
            f"CRS {block_points.crs} does not match district CRS {polys.crs}",
        )

    joined = gpd.sjoin(block_points, polys, how="inner", predicate="intersects")
    n_outside = len(block_points) - joined.index.nunique()
    if n_outside:
        logger.info(f"density_blocks: {n_outside} block centroids fall outside all districts")

    return pd.DataFrame({
        cols.key: joined[cols.key].values,
        "x": joined.geometry.x.values,
        "y": joined.geometry.y.values,
        "population": joined["population"].values,
    })


def weighted_centroids(assigned: pd.DataFrame, crs=None, cols: Columns = Columns()) -> gpd.GeoDataFrame:
    """
    Population-weighted centroid per district key.

    Folds each group into (sum p*x, sum p*y, sum p) and divides at the end.
    Keys whose blocks hold no population get no centroid.
    """
    acc = assigned.assign(
        px=assigned["population"] * assigned["x"],
        py=assigned["population"] * assigned["y"],
    ).groupby(cols.key, sort=True)[["px", "py", "population"]].sum()

    empty = acc["population"] <= 0
    if empty.any():
        logger.warning(f"weighted centroids: {int(empty.sum())} districts have zero block population")
    acc = acc.loc[~empty]

    wx = acc["px"] / acc["population"]
    wy = acc["py"] / acc["population"]
    return gpd.GeoDataFrame(
        {cols.key: acc.index.astype("string"), "population": acc["population"].values},
        geometry=gpd.points_from_xy(wx.values, wy.values),
        crs=crs,
    ).reset_index(drop=True)


def centroid_coverage(district_keys: Iterable[str], centroids: gpd.GeoDataFrame, cols: Columns = Columns()) -> CoverageReport:
    keys = pd.Series(list(district_keys), dtype="string").dropna().unique()
    have = set(centroids[cols.key].dropna())
    missing = tuple(sorted(k for k in keys if k not in have))
    report = CoverageReport(n_districts=len(keys), n_with_centroid=len(keys) - len(missing), missing_keys=missing)
    if report.n_missing:
        logger.warning(
            f"weighted centroids: {report.n_missing}/{report.n_districts} districts "
            f"({100 * report.share_missing:.1f}%) have none and are excluded from the advanced model"
        )
    return report


def population_weighted_centroids(
    blocks: gpd.GeoDataFrame,
    districts: gpd.GeoDataFrame,
    geometry_col: str,
    pop_col: str,
    cols: Columns = Columns(),
) -> gpd.GeoDataFrame:
    points = block_centroids(blocks, pop_col)
    assigned = assign_blocks_to_districts(points, districts, geometry_col, cols)
    out = weighted_centroids(assigned, crs=points.crs, cols=cols)
    logger.info(f"weighted centroids: {len(out)} districts from {len(points)} blocks")
    return out

