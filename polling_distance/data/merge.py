from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Dict, Iterable

import geopandas as gpd
import pandas as pd
from loguru import logger

from ..config import Columns
from ..errors import DatasetError, require_columns
from .io import stdcols, to_analysis_crs
from .keys import build_key_from_parts, normalize_key


@dataclass(frozen=True)
class MergeDiagnostics:
    n_districts: int
    n_stations: int
    n_results: int
    unmatched_stations: int
    unmatched_results: int
    districts_without_station: int
    districts_without_results: int
    duplicate_keys: int

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class MergeResult:
    frame: gpd.GeoDataFrame
    diagnostics: MergeDiagnostics


def prepare_districts(raw: gpd.GeoDataFrame, cols: Columns = Columns()) -> gpd.GeoDataFrame:
    gdf = to_analysis_crs(stdcols(raw), "districts")
    require_columns(gdf, [cols.district_key, "geometry"], dataset="districts")
    out = gpd.GeoDataFrame(
        {cols.key: normalize_key(gdf[cols.district_key]).values},
        geometry=gdf.geometry.values,
        crs=gdf.crs,
    )
    n_bad = int(out[cols.key].isna().sum())
    if n_bad:
        logger.warning(f"districts: {n_bad} polygons without a usable key")
    return out.rename_geometry(cols.district_geometry)


def is_postal_only(flag: pd.Series, cols: Columns = Columns()) -> pd.Series:
    s = flag.astype("string").str.strip().str.lower()
    return s.isin(set(cols.postal_flag_values)).fillna(False).astype(bool)


def prepare_stations(raw: gpd.GeoDataFrame, cols: Columns = Columns()) -> gpd.GeoDataFrame:
    gdf = to_analysis_crs(stdcols(raw), "stations")
    require_columns(gdf, [cols.station_borough, cols.station_subdistrict, "geometry"], dataset="stations")

    if cols.station_postal_flag in gdf.columns:
        postal = is_postal_only(gdf[cols.station_postal_flag], cols)
        if postal.any():
            logger.info(f"stations: excluding {int(postal.sum())} postal-only records")
        gdf = gdf.loc[~postal]
    else:
        logger.warning(f"stations: no '{cols.station_postal_flag}' column, keeping all records")

    out = gpd.GeoDataFrame(
        {cols.key: build_key_from_parts(gdf[cols.station_borough], gdf[cols.station_subdistrict]).values},
        geometry=gdf.geometry.values,
        crs=gdf.crs,
    )
    return out.rename_geometry(cols.station_geometry)


def _duplicated_keys(*keys: pd.Series) -> int:
    n = 0
    for k in keys:
        k = k.dropna()
        n += int(k[k.duplicated(keep=False)].nunique())
    return n


def merge_sources(
    districts: gpd.GeoDataFrame,
    stations: gpd.GeoDataFrame,
    results: pd.DataFrame,
    cols: Columns = Columns(),
) -> MergeResult:
    """
    District polygons <- stations <- results, all left joins on the key.

    The output keeps `district_geometry` as the active geometry and carries
    `station_geometry` as a second GeoSeries. Duplicate keys are not
    resolved: they fan out into extra rows and are reported.
    """
    for name, df in (("districts", districts), ("stations", stations), ("results", results)):
        require_columns(df, [cols.key], dataset=name)

    district_keys = set(districts[cols.key].dropna())
    station_keys = set(stations[cols.key].dropna())
    result_keys = set(results[cols.key].dropna())

    diag = MergeDiagnostics(
        n_districts=len(districts),
        n_stations=len(stations),
        n_results=len(results),
        unmatched_stations=int((~stations[cols.key].isin(district_keys)).sum()),
        unmatched_results=int((~results[cols.key].isin(district_keys)).sum()),
        districts_without_station=int((~districts[cols.key].isin(station_keys)).sum()),
        districts_without_results=int((~districts[cols.key].isin(result_keys)).sum()),
        duplicate_keys=_duplicated_keys(districts[cols.key], stations[cols.key], results[cols.key]),
    )

    station_cols = pd.DataFrame({
        cols.key: stations[cols.key].values,
        cols.station_geometry: stations.geometry.values,
    })
    merged = districts.merge(station_cols, on=cols.key, how="left")
    merged = merged.merge(results, on=cols.key, how="left")
    merged[cols.station_geometry] = gpd.GeoSeries(merged[cols.station_geometry], crs=stations.crs)
    merged = gpd.GeoDataFrame(merged, geometry=cols.district_geometry, crs=districts.crs)

    _log_diagnostics(diag)
    return MergeResult(frame=merged, diagnostics=diag)


def _log_diagnostics(diag: MergeDiagnostics) -> None:
    logger.info(
        f"merge: {diag.n_districts} districts, {diag.n_stations} stations, {diag.n_results} result rows"
    )
    if diag.unmatched_stations:
        logger.warning(f"merge: {diag.unmatched_stations} stations match no district key")
    if diag.unmatched_results:
        logger.warning(f"merge: {diag.unmatched_results} result rows match no district key")
    if diag.districts_without_station:
        logger.warning(f"merge: {diag.districts_without_station} districts have no polling station")
    if diag.districts_without_results:
        logger.warning(f"merge: {diag.districts_without_results} districts have no results row")
    if diag.duplicate_keys:
        logger.warning(f"merge: {diag.duplicate_keys} keys occur more than once (rows fan out)")


def drop_missing_geometry(frame: gpd.GeoDataFrame, columns: Iterable[str], key_col: str = "key") -> gpd.GeoDataFrame:
    columns = list(columns)
    mask = pd.Series(False, index=frame.index)
    for c in columns:
        if c not in frame.columns:
            raise DatasetError("merged", f"geometry column '{c}' not present")
        mask |= frame[c].isna() | gpd.GeoSeries(frame[c]).is_empty
    if mask.any():
        keys = frame.loc[mask, key_col].head(10).tolist() if key_col in frame.columns else []
        logger.info(f"dropping {int(mask.sum())} rows with missing geometry in {columns} (keys: {keys})")
    return frame.loc[~mask].copy()
