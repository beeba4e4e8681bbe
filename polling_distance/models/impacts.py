from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd
from libpysal.weights import W
from loguru import logger
from scipy import sparse, stats
from scipy.sparse.linalg import spsolve
from tqdm import tqdm

from .regression import SPATIAL_LAG, FittedModel


@dataclass(frozen=True)
class ImpactMultipliers:
    """Average diagonal and average row sum of (I - rho W)^-1."""
    direct: float
    total: float

    @property
    def indirect(self) -> float:
        return self.total - self.direct


def weight_eigenvalues(w: W) -> np.ndarray:
    dense, _ = w.full()
    return np.real(np.linalg.eigvals(dense))


def multipliers(rho: float, w: W, eigenvalues: np.ndarray) -> ImpactMultipliers:
    direct = float(np.mean(1.0 / (1.0 - rho * eigenvalues)))
    a = sparse.identity(w.n, format="csc") - rho * w.sparse.tocsc()
    total = float(np.mean(spsolve(a, np.ones(w.n))))
    return ImpactMultipliers(direct=direct, total=total)


def simulate_impacts(
    model: FittedModel,
    w: W,
    n_sim: int = 100,
    seed: int = 42,
) -> pd.DataFrame:
    """
    Direct, indirect and total effects of the distance term in a lag model.

    Point estimates use the fitted (beta, rho). Inference draws (beta, rho)
    n_sim times from N(estimate, vm) and recomputes the effects per draw;
    draws with |rho| >= 1 are discarded.
    """
    if model.name != SPATIAL_LAG or model.rho is None:
        raise ValueError(f"impacts need a spatial lag model, got '{model.name}'")

    reg = model.raw
    theta = np.asarray(reg.betas, dtype=float).ravel()
    k = theta.shape[0]
    vm = np.asarray(reg.vm, dtype=float)[:k, :k]
    beta_idx, rho_idx = 1, k - 1

    eig = weight_eigenvalues(w)
    point = multipliers(model.rho, w, eig)
    beta = theta[beta_idx]
    estimates = {
        "direct": beta * point.direct,
        "indirect": beta * point.indirect,
        "total": beta * point.total,
    }

    rng = np.random.default_rng(seed)
    draws = rng.multivariate_normal(theta, vm, size=n_sim)
    sims = []
    for d in tqdm(draws, desc=f"impacts[{model.measure}]", leave=False):
        rho = d[rho_idx]
        if abs(rho) >= 1.0:
            continue
        m = multipliers(rho, w, eig)
        b = d[beta_idx]
        sims.append((b * m.direct, b * m.indirect, b * m.total))
    if not sims:
        raise ValueError("no usable draws for impact simulation (all |rho| >= 1)")
    if len(sims) < n_sim:
        logger.warning(f"impacts: discarded {n_sim - len(sims)} draws with |rho| >= 1")
    sims = np.asarray(sims)

    rows = []
    for i, effect in enumerate(("direct", "indirect", "total")):
        sd = float(np.std(sims[:, i], ddof=1)) if len(sims) > 1 else np.nan
        mean = float(np.mean(sims[:, i]))
        z = mean / sd if sd and np.isfinite(sd) else np.nan
        rows.append({
            "effect": effect,
            "estimate": float(estimates[effect]),
            "sim_mean": mean,
            "sim_sd": sd,
            "z": z,
            "p_value": float(2.0 * stats.norm.sf(abs(z))) if np.isfinite(z) else np.nan,
        })

    out = pd.DataFrame(rows).set_index("effect")
    logger.info(
        f"[{model.measure}] impacts: direct={out.loc['direct', 'estimate']:.6f}, "
        f"indirect={out.loc['indirect', 'estimate']:.6f}, total={out.loc['total', 'estimate']:.6f}"
    )
    return out
