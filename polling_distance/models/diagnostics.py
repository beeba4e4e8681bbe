from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd
from esda.moran import Moran
from libpysal.weights import W
from loguru import logger

from .regression import FittedModel


@dataclass(frozen=True)
class MoranResult:
    statistic: float
    expected: float
    z_score: float
    p_value: float
    p_sim: Optional[float]
    alpha: float

    @property
    def reject(self) -> bool:
        """Residuals are spatially autocorrelated at level alpha."""
        return self.p_value < self.alpha


def residual_moran(residuals, w: W, permutations: int = 999, alpha: float = 0.05) -> MoranResult:
    """
    Moran's I of a residual vector against the weights.

    The decision uses the two-sided normal approximation; the permutation
    p-value is reported alongside when permutations > 0.
    """
    e = np.asarray(residuals, dtype=float).ravel()
    if e.shape[0] != w.n:
        raise ValueError(f"residual length {e.shape[0]} does not match weights n={w.n}")
    # Moran applies `transformation` to w in place
    mi = Moran(e, w, transformation=w.transform, permutations=permutations, two_tailed=True)
    p_sim = getattr(mi, "p_sim", None)
    return MoranResult(
        statistic=float(mi.I),
        expected=float(mi.EI),
        z_score=float(mi.z_norm),
        p_value=float(mi.p_norm),
        p_sim=float(p_sim) if p_sim is not None else None,
        alpha=alpha,
    )


def moran_for_models(
    models: Sequence[FittedModel],
    w: W,
    permutations: int = 999,
    alpha: float = 0.05,
) -> Dict[str, MoranResult]:
    out = {}
    for m in models:
        res = residual_moran(m.residuals, w, permutations=permutations, alpha=alpha)
        flag = "autocorrelated" if res.reject else "no evidence of autocorrelation"
        logger.info(f"[{m.measure}] {m.name}: Moran's I={res.statistic:.4f}, p={res.p_value:.4g} ({flag})")
        out[m.name] = res
    return out


def compare_models(models: Sequence[FittedModel], morans: Optional[Dict[str, MoranResult]] = None) -> pd.DataFrame:
    """
    AIC table for models fitted on the same data, lowest (preferred) first.
    """
    if not models:
        raise ValueError("compare_models needs at least one fitted model")
    measures = {m.measure for m in models}
    if len(measures) > 1:
        raise ValueError(f"AIC is only comparable on one measure at a time, got {sorted(measures)}")

    rows = []
    for m in models:
        row = {
            "model": m.name,
            "measure": m.measure,
            "n_obs": m.n_obs,
            "n_params": m.n_params,
            "log_likelihood": m.log_likelihood,
            "aic": m.aic,
        }
        if morans and m.name in morans:
            row["moran_i"] = morans[m.name].statistic
            row["moran_p"] = morans[m.name].p_value
        rows.append(row)

    table = pd.DataFrame(rows).sort_values("aic", kind="mergesort").reset_index(drop=True)
    table["preferred"] = False
    table.loc[0, "preferred"] = True
    logger.info(f"[{table.loc[0, 'measure']}] preferred specification by AIC: {table.loc[0, 'model']}")
    return table
