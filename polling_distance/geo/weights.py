from __future__ import annotations

import geopandas as gpd
import numpy as np
from libpysal.weights import Queen, W, lag_spatial
from loguru import logger

from ..data.io import assert_projected_planar
from ..errors import DatasetError


def build_contiguity_weights(
    frame: gpd.GeoDataFrame,
    geometry_col: str,
    style: str = "r",
    key_col: str = "key",
) -> W:
    """
    Queen contiguity over district polygons, row-standardized.

    Rows keep the positional order of `frame`. Districts without any
    neighbour (islands) stay in the structure with an all-zero row, so their
    spatial lag is 0 instead of the build failing.
    """
    geoms = gpd.GeoSeries(frame[geometry_col], crs=frame[geometry_col].crs).reset_index(drop=True)
    missing = geoms.isna().to_numpy()
    if missing.any():
        keys = frame[key_col].to_numpy()[missing].tolist() if key_col in frame.columns else []
        raise DatasetError(
            "weights",
            f"{int(missing.sum())} rows have no '{geometry_col}'",
            key=", ".join(str(k) for k in keys[:10]) or None,
        )
    assert_projected_planar(geoms, "weights")

    polys = gpd.GeoDataFrame(geometry=geoms)
    w = Queen.from_dataframe(polys, use_index=False, silence_warnings=True)
    w.transform = style

    if w.islands:
        logger.warning(f"weights: {len(w.islands)} districts have no neighbours, spatial lag set to 0: {w.islands[:10]}")
    logger.info(f"weights: n={w.n}, mean neighbours={w.mean_neighbors:.2f}")
    return w


def row_sums(w: W) -> np.ndarray:
    return np.asarray(w.sparse.sum(axis=1)).ravel()


def spatial_lag(w: W, values) -> np.ndarray:
    return lag_spatial(w, np.asarray(values, dtype=float))
