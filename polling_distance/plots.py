from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

import geopandas as gpd
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
from loguru import logger  # noqa: E402

from .config import Columns  # noqa: E402
from .data.io import mkdir_p  # noqa: E402
from .geo.centroids import geometric_centroids  # noqa: E402


def _save(fig, out_path: Path) -> Path:
    mkdir_p(out_path.parent)
    fig.savefig(out_path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    logger.info(f"[plot] {out_path}")
    return out_path


def _geoms(frame: gpd.GeoDataFrame, col: str) -> gpd.GeoSeries:
    return gpd.GeoSeries(frame[col], crs=frame[col].crs)


def plot_overview(frame: gpd.GeoDataFrame, out_path: Path, cols: Columns = Columns()) -> Path:
    fig, ax = plt.subplots(figsize=(10, 9))
    _geoms(frame, cols.district_geometry).plot(ax=ax, facecolor="none", edgecolor="grey", linewidth=0.2)
    _geoms(frame, cols.station_geometry).plot(ax=ax, color="tab:red", markersize=1)
    ax.set_title("Voting districts and polling stations, Berlin 2021")
    ax.set_axis_off()
    return _save(fig, out_path)


def plot_distance_hist(frame: gpd.GeoDataFrame, column: str, out_path: Path, label: str) -> Path:
    fig, ax = plt.subplots(figsize=(7, 4.5))
    values = frame[column].dropna()
    ax.hist(values, bins=50, density=True, color="tab:blue", alpha=0.8)
    ax.axvline(values.median(), color="black", linestyle="--", linewidth=1, label=f"median {values.median():.0f} m")
    ax.set_xlabel(f"{label} (m)")
    ax.set_ylabel("density")
    ax.legend()
    return _save(fig, out_path)


def plot_distance_choropleth(frame: gpd.GeoDataFrame, column: str, out_path: Path, cols: Columns = Columns()) -> Path:
    fig, ax = plt.subplots(figsize=(10, 9))
    polys = gpd.GeoDataFrame({column: frame[column].values}, geometry=_geoms(frame, cols.district_geometry).values)
    polys.plot(ax=ax, column=column, cmap="viridis", legend=True, legend_kwds={"label": "distance (m)"},
               missing_kwds={"color": "lightgrey"})
    ax.set_title("Distance from polling station to district centroid")
    ax.set_axis_off()
    return _save(fig, out_path)


def plot_centroid_comparison(
    frame: gpd.GeoDataFrame,
    weighted: gpd.GeoDataFrame,
    out_path: Path,
    n_sample: int = 12,
    seed: int = 42,
    cols: Columns = Columns(),
) -> Path:
    """Geometric vs population-weighted centroid for a sample of districts."""
    have = frame[cols.key].isin(set(weighted[cols.key]))
    sample = frame.loc[have]
    if len(sample) > n_sample:
        sample = sample.sample(n=n_sample, random_state=seed)

    geo_c = geometric_centroids(sample, cols.district_geometry)
    w_c = weighted.set_index(cols.key).geometry.reindex(sample[cols.key].values)

    fig, ax = plt.subplots(figsize=(10, 9))
    _geoms(sample, cols.district_geometry).plot(ax=ax, facecolor="whitesmoke", edgecolor="grey", linewidth=0.5)
    geo_c.plot(ax=ax, color="tab:blue", markersize=12, label="geometric centroid")
    gpd.GeoSeries(w_c.values, crs=weighted.crs).plot(ax=ax, color="tab:orange", markersize=12, label="weighted centroid")
    _geoms(sample, cols.station_geometry).plot(ax=ax, color="tab:red", marker="^", markersize=14, label="polling station")
    ax.legend(loc="lower left")
    ax.set_axis_off()
    return _save(fig, out_path)


def render_all(
    frame: gpd.GeoDataFrame,
    figures_dir: Path,
    weighted: Optional[gpd.GeoDataFrame] = None,
    cols: Columns = Columns(),
) -> Dict[str, Path]:
    figures_dir = Path(figures_dir)
    out = {
        "overview": plot_overview(frame, figures_dir / "overview.png", cols),
        "hist_centroid": plot_distance_hist(
            frame, cols.dist_centroid, figures_dir / "hist_dist_centroid.png", "distance to centroid"
        ),
        "choropleth": plot_distance_choropleth(frame, cols.dist_centroid, figures_dir / "choropleth_dist_centroid.png", cols),
    }
    if weighted is not None and cols.dist_weighted in frame.columns:
        out["hist_weighted"] = plot_distance_hist(
            frame, cols.dist_weighted, figures_dir / "hist_dist_weighted.png", "distance to weighted centroid"
        )
        out["centroids"] = plot_centroid_comparison(frame, weighted, figures_dir / "centroid_comparison.png", cols=cols)
    return out
