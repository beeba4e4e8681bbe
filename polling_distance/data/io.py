#!/usr/bin/env python3
from __future__ import annotations

import io
import re
import time
from pathlib import Path
from typing import Optional

import geopandas as gpd
import pandas as pd
import requests
from loguru import logger

from ..config import ANALYSIS_CRS, DENSITY_TYPE_NAME, SOURCE_CRS, FetchParams
from ..errors import DatasetError, DensityFetchError

SUPPORTED_GEO = (".shp", ".gpkg", ".geojson", ".json", ".parquet", ".pq")
DENSITY_DATASET = "density_blocks"


def mkdir_p(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)


def stdcols(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = [
        re.sub(r"_{2,}", "_", re.sub(r"[^\w]+", "_", str(c).strip().lower())).strip("_")
        if c != "geometry" else c
        for c in df.columns
    ]
    return df


def read_any(path: Path, sheet_name: Optional[str] = None, dataset: Optional[str] = None):
    path = Path(path)
    ext = path.suffix.lower()
    name = dataset or path.stem
    if not path.exists():
        raise DatasetError(name, f"input file not found: {path}")
    if ext in (".parquet", ".pq"):
        # could be GeoParquet or regular Parquet
        try:
            return gpd.read_parquet(path)
        except ValueError:
            return pd.read_parquet(path)
    if ext in (".csv", ".tsv"):
        sep = "\t" if ext == ".tsv" else ","
        return pd.read_csv(path, sep=sep, dtype=str)
    if ext in (".xlsx", ".xls"):
        return pd.read_excel(path, sheet_name=sheet_name or 0, dtype=str)
    if ext in SUPPORTED_GEO:
        return gpd.read_file(path)
    raise DatasetError(name, f"unsupported input type '{ext}': {path}")


def ensure_crs(gdf: gpd.GeoDataFrame, dataset: str, default: str = SOURCE_CRS) -> gpd.GeoDataFrame:
    if gdf.crs is None:
        logger.warning(f"{dataset}: no CRS on input, assuming {default}")
        gdf = gdf.set_crs(default)
    return gdf


def to_analysis_crs(gdf: gpd.GeoDataFrame, dataset: str) -> gpd.GeoDataFrame:
    gdf = ensure_crs(gdf, dataset)
    if gdf.crs.to_string() != ANALYSIS_CRS:
        gdf = gdf.to_crs(ANALYSIS_CRS)
    return gdf


def assert_projected_planar(geoms, where: str = "") -> None:
    crs = geoms.crs
    if crs is None:
        raise DatasetError(where, f"geometry has no CRS; project to {ANALYSIS_CRS} before metric computations.")
    if crs.is_geographic:
        raise DatasetError(where, f"CRS is geographic ({crs.to_string()}); reproject to {ANALYSIS_CRS} first.")


def fetch_wfs_layer(
    url: str,
    type_name: str = DENSITY_TYPE_NAME,
    params: FetchParams = FetchParams(),
    srs: str = ANALYSIS_CRS,
) -> gpd.GeoDataFrame:
    """
    Download a full WFS layer as a GeoDataFrame.

    Connection errors and HTTP 429/5xx are retried with exponential backoff;
    anything else, or running out of attempts, raises DensityFetchError.
    """
    query = {
        "service": "WFS",
        "version": "2.0.0",
        "request": "GetFeature",
        "typeNames": type_name,
        "srsName": srs,
    }
    last_reason = "no attempt made"
    with requests.Session() as session:
        session.headers.update({"User-Agent": "polling-distance/0.1"})
        for attempt in range(params.max_retries):
            try:
                with session.get(url, params=query, timeout=params.timeout) as resp:
                    if resp.status_code in params.retry_status:
                        last_reason = f"HTTP {resp.status_code}"
                    else:
                        resp.raise_for_status()
                        logger.info(f"Fetched {len(resp.content) / 1e6:.1f} MB from {url}")
                        return _parse_layer(url, resp.content, srs)
            except (requests.ConnectionError, requests.Timeout) as e:
                last_reason = f"network error: {e}"
            except requests.HTTPError as e:
                raise DensityFetchError(url, str(e)) from e

            if attempt < params.max_retries - 1:
                delay = params.backoff * (2 ** attempt)
                logger.warning(f"{url}: {last_reason}, retrying in {delay:.1f}s ({attempt + 1}/{params.max_retries})")
                time.sleep(delay)

    raise DensityFetchError(url, f"{last_reason} after {params.max_retries} attempts")


def _parse_layer(url: str, content: bytes, srs: str) -> gpd.GeoDataFrame:
    # WFS servers report failures as an XML ExceptionReport with status 200
    if b"ExceptionReport" in content[:2048]:
        raise DensityFetchError(url, f"service returned an exception report: {content[:300]!r}")
    try:
        gdf = gpd.read_file(io.BytesIO(content))
    except Exception as e:
        raise DensityFetchError(url, f"response is not a readable vector layer ({type(e).__name__}: {e})") from e
    if gdf.crs is None:
        gdf = gdf.set_crs(srs)
    return gdf


def load_density_blocks(source: str, params: FetchParams = FetchParams()) -> gpd.GeoDataFrame:
    """Density blocks from the WFS endpoint or a local copy of the layer."""
    if str(source).startswith(("http://", "https://")):
        gdf = fetch_wfs_layer(str(source), params=params)
    else:
        gdf = read_any(Path(source), dataset=DENSITY_DATASET)
    return to_analysis_crs(stdcols(gdf), DENSITY_DATASET)
