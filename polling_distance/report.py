from __future__ import annotations

from typing import Any, Dict, List, Optional

import pandas as pd
from loguru import logger

from .models.diagnostics import MoranResult
from .models.regression import FittedModel


def format_float(value: float) -> str:
    return f"{value:.4g}"


def log_model(model: FittedModel, moran: Optional[MoranResult] = None) -> None:
    logger.info(f"--- {model.name} [{model.measure}] n={model.n_obs} ---")
    for term, row in model.coefficients.iterrows():
        logger.info(
            f"  {term:<22} {row['estimate']:>12.6f}  se={row['std_err']:.6f}  "
            f"stat={row['statistic']:.3f}  p={format_float(row['p_value'])}"
        )
    logger.info(f"  logL={model.log_likelihood:.2f}  AIC={model.aic:.2f}")
    if moran is not None:
        sim = f", p_sim={format_float(moran.p_sim)}" if moran.p_sim is not None else ""
        logger.info(
            f"  residual Moran's I={moran.statistic:.4f} (E={moran.expected:.4f}), "
            f"z={moran.z_score:.3f}, p={format_float(moran.p_value)}{sim}"
        )


def log_table(title: str, table: pd.DataFrame) -> None:
    logger.info(f"{title}\n{table.to_string()}")


def build_summary(
    measure: str,
    models: List[FittedModel],
    morans: Dict[str, MoranResult],
    comparison: pd.DataFrame,
    impacts: Optional[pd.DataFrame] = None,
) -> Dict[str, Any]:
    return {
        "measure": measure,
        "models": {
            m.name: {
                "coefficients": m.coefficients.to_dict(orient="index"),
                "rho": m.rho,
                "aic": m.aic,
                "log_likelihood": m.log_likelihood,
                "moran_i": morans[m.name].statistic if m.name in morans else None,
                "moran_p": morans[m.name].p_value if m.name in morans else None,
            }
            for m in models
        },
        "preferred": str(comparison.loc[comparison["preferred"], "model"].iloc[0]),
        "impacts": impacts.to_dict(orient="index") if impacts is not None else None,
    }
