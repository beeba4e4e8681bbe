from __future__ import annotations

import numpy as np
import pandas as pd
from loguru import logger

from ..config import Columns
from ..errors import require_columns
from .io import stdcols
from .keys import build_key_from_parts


def clean_results(df: pd.DataFrame, cols: Columns = Columns()) -> pd.DataFrame:
    """
    Standardize the per-district results sheet.

    Returns one row per source row with columns:
      - key (string, "BBSSS") built from the borough + sub-district columns
      - registered, voters (float, NaN where unparsable)
    """
    out = stdcols(df)
    require_columns(
        out,
        [cols.results_borough, cols.results_subdistrict, cols.results_registered, cols.results_voters],
        dataset="results",
    )
    out[cols.key] = build_key_from_parts(out[cols.results_borough], out[cols.results_subdistrict])
    out[cols.registered] = pd.to_numeric(out[cols.results_registered], errors="coerce")
    out[cols.voters] = pd.to_numeric(out[cols.results_voters], errors="coerce")

    n_bad = int(out[cols.key].isna().sum())
    if n_bad:
        logger.warning(f"results: {n_bad} rows without a usable district key (will not match)")
    return out[[cols.key, cols.registered, cols.voters]].copy()


def zero_registered(df: pd.DataFrame, cols: Columns = Columns()) -> pd.Series:
    return df[cols.registered].fillna(0) <= 0


def compute_turnout(df: pd.DataFrame, cols: Columns = Columns()) -> pd.DataFrame:
    """
    Turnout in percent of registered voters.

    Rows matching `zero_registered` are dropped (turnout undefined); values
    outside [0, 100] are kept but set to NaN.
    """
    drop = zero_registered(df, cols)
    if drop.any():
        logger.info(f"turnout: dropping {int(drop.sum())} rows with zero registered voters")
    out = df.loc[~drop].copy()

    turnout = 100.0 * out[cols.voters].astype(float) / out[cols.registered].astype(float)
    invalid = turnout.notna() & ((turnout < 0) | (turnout > 100))
    if invalid.any():
        logger.warning(
            f"turnout: {int(invalid.sum())} rows outside [0, 100] set missing "
            f"(keys: {out.loc[invalid, cols.key].head(10).tolist()})"
        )
    out[cols.turnout] = np.where(invalid, np.nan, turnout)
    return out
