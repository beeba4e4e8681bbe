from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

import numpy as np
import pandas as pd
from libpysal.weights import W
from loguru import logger
from spreg import ML_Lag, OLS

from ..geo.weights import spatial_lag

LINEAR = "linear"
SLX = "slx"
SPATIAL_LAG = "spatial_lag"
SPECIFICATIONS = (LINEAR, SLX, SPATIAL_LAG)


@dataclass
class FittedModel:
    name: str
    measure: str
    coefficients: pd.DataFrame
    residuals: np.ndarray
    log_likelihood: float
    n_params: int
    n_obs: int
    rho: Optional[float] = None
    raw: Any = field(default=None, repr=False)

    @property
    def aic(self) -> float:
        return 2.0 * self.n_params - 2.0 * self.log_likelihood

    def coefficient(self, term: str) -> float:
        return float(self.coefficients.loc[term, "estimate"])

    def p_value(self, term: str) -> float:
        return float(self.coefficients.loc[term, "p_value"])


def _as_column(values) -> np.ndarray:
    return np.asarray(values, dtype=float).reshape(-1, 1)


def _as_matrix(x) -> np.ndarray:
    x = np.asarray(x, dtype=float)
    return x.reshape(-1, 1) if x.ndim == 1 else x


def _coef_table(terms: Sequence[str], betas, std_err, stats) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "estimate": np.asarray(betas, dtype=float).ravel(),
            "std_err": np.asarray(std_err, dtype=float).ravel(),
            "statistic": [float(s[0]) for s in stats],
            "p_value": [float(s[1]) for s in stats],
        },
        index=pd.Index(list(terms), name="term"),
    )


def _ols_log_likelihood(utu: float, n: int) -> float:
    return float(-0.5 * n * (np.log(2.0 * np.pi) + np.log(utu / n) + 1.0))


def _fit_ols(name: str, measure: str, y, x, x_names: List[str], y_name: str) -> FittedModel:
    y = _as_column(y)
    x = _as_matrix(x)
    reg = OLS(y, x, name_y=y_name, name_x=x_names)
    terms = ["CONSTANT"] + x_names
    n = int(reg.n)
    utu = float(reg.utu)
    return FittedModel(
        name=name,
        measure=measure,
        coefficients=_coef_table(terms, reg.betas, reg.std_err, reg.t_stat),
        residuals=np.asarray(reg.u, dtype=float).ravel(),
        log_likelihood=_ols_log_likelihood(utu, n),
        # betas + sigma^2
        n_params=int(reg.k) + 1,
        n_obs=n,
        raw=reg,
    )


def fit_linear(y, distance, measure: str, y_name: str = "turnout") -> FittedModel:
    """turnout ~ distance by ordinary least squares."""
    model = _fit_ols(LINEAR, measure, y, distance, [measure], y_name)
    logger.info(f"[{measure}] OLS: beta={model.coefficient(measure):.6f}, AIC={model.aic:.2f}")
    return model


def fit_slx(y, distance, w: W, measure: str, y_name: str = "turnout") -> FittedModel:
    """OLS on distance plus its spatial lag W*distance."""
    x = np.asarray(distance, dtype=float)
    x_aug = np.column_stack([x, spatial_lag(w, x)])
    model = _fit_ols(SLX, measure, y, x_aug, [measure, f"W_{measure}"], y_name)
    logger.info(
        f"[{measure}] SLX: beta={model.coefficient(measure):.6f}, "
        f"theta={model.coefficient(f'W_{measure}'):.6f}, AIC={model.aic:.2f}"
    )
    return model


def fit_spatial_lag(
    y,
    distance,
    w: W,
    measure: str,
    y_name: str = "turnout",
    method: str = "full",
) -> FittedModel:
    """
    Spatial autoregressive lag model y = rho*W*y + X*beta + e, by maximum likelihood.

    `residuals` are the model residuals y - rho*W*y - X*beta, the vector the
    Moran diagnostic is run on.
    """
    y = _as_column(y)
    x = _as_matrix(distance)
    reg = ML_Lag(y, x, w, method=method, name_y=y_name, name_x=[measure], name_w="queen")
    betas = np.asarray(reg.betas, dtype=float).ravel()
    terms = ["CONSTANT", measure, "rho"]
    model = FittedModel(
        name=SPATIAL_LAG,
        measure=measure,
        coefficients=_coef_table(terms, betas, reg.std_err, reg.z_stat),
        residuals=np.asarray(reg.u, dtype=float).ravel(),
        log_likelihood=float(np.asarray(reg.logll).ravel()[0]),
        # betas incl. rho + sigma^2
        n_params=len(betas) + 1,
        n_obs=int(reg.n),
        rho=float(np.asarray(reg.rho).ravel()[0]),
        raw=reg,
    )
    logger.info(
        f"[{measure}] ML lag: beta={model.coefficient(measure):.6f}, rho={model.rho:.4f}, AIC={model.aic:.2f}"
    )
    return model


def fit_suite(y, distance, w: W, measure: str, method: str = "full") -> List[FittedModel]:
    """All three specifications for one distance measure, in order of complexity."""
    return [
        fit_linear(y, distance, measure),
        fit_slx(y, distance, w, measure),
        fit_spatial_lag(y, distance, w, measure, method=method),
    ]
