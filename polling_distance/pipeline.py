#!/usr/bin/env python3
# pipeline.py
# Polling-station distance and turnout, Berlin 2021 federal election.
# - Stage 1: normalize keys, merge districts + stations + results, turnout
# - Stage 2: centroid distances (geometric; population-weighted from density blocks)
# - Stage 3: OLS / SLX / ML lag per distance measure, Moran's I, AIC, impacts
# - Outputs: figures under reports/figures, everything else to the log

from __future__ import annotations

import argparse
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import geopandas as gpd
from libpysal.weights import W
from loguru import logger

from .config import Columns, FetchParams, ModelParams, Paths
from .data.elections import clean_results, compute_turnout
from .data.io import DENSITY_DATASET, load_density_blocks, read_any
from .data.merge import MergeDiagnostics, drop_missing_geometry, merge_sources, prepare_districts, prepare_stations
from .errors import DatasetError, DensityFetchError
from .geo.centroids import CoverageReport, centroid_coverage, population_weighted_centroids
from .geo.distances import add_centroid_distance, add_weighted_distance
from .geo.weights import build_contiguity_weights
from .models.diagnostics import MoranResult, compare_models, moran_for_models
from .models.impacts import simulate_impacts
from .models.regression import SPATIAL_LAG, FittedModel, fit_suite
from .plots import render_all
from .report import build_summary, log_model, log_table


@dataclass
class MeasureResult:
    measure: str
    n_obs: int
    weights: W
    models: List[FittedModel]
    morans: Dict[str, MoranResult]
    comparison: Any
    impacts: Any
    summary: Dict[str, Any]

    def model(self, name: str) -> FittedModel:
        return next(m for m in self.models if m.name == name)


@dataclass
class PipelineResult:
    frame: gpd.GeoDataFrame
    merge: MergeDiagnostics
    baseline: MeasureResult
    advanced: Optional[MeasureResult] = None
    coverage: Optional[CoverageReport] = None
    weighted_centroids: Optional[gpd.GeoDataFrame] = None
    figures: Dict[str, Path] = field(default_factory=dict)


def load_merged(paths: Paths, cols: Columns = Columns()):
    """Read the three local sources and merge them into one district-level frame with turnout."""
    districts = prepare_districts(read_any(paths.districts), cols)
    stations = prepare_stations(read_any(paths.stations), cols)
    results = clean_results(read_any(paths.results, sheet_name=paths.results_sheet), cols)

    merged = merge_sources(districts, stations, results, cols)
    frame = merged.frame

    no_results = frame[cols.registered].isna() | frame[cols.voters].isna()
    if no_results.any():
        logger.info(f"dropping {int(no_results.sum())} districts without results")
    frame = compute_turnout(frame.loc[~no_results], cols)
    frame = drop_missing_geometry(frame, [cols.district_geometry, cols.station_geometry], key_col=cols.key)
    return frame.reset_index(drop=True), merged.diagnostics


def run_measure(frame: gpd.GeoDataFrame, measure: str, params: ModelParams, cols: Columns = Columns()) -> MeasureResult:
    """Fit linear, SLX and lag models on one distance measure, with diagnostics."""
    data = frame.dropna(subset=[cols.turnout, measure]).reset_index(drop=True)
    dropped = len(frame) - len(data)
    if dropped:
        logger.info(f"[{measure}] {dropped} rows without turnout or distance excluded")
    logger.info(f"[{measure}] fitting on {len(data)} districts")

    w = build_contiguity_weights(data, cols.district_geometry, style=params.weights_style, key_col=cols.key)
    y = data[cols.turnout].to_numpy(dtype=float)
    x = data[measure].to_numpy(dtype=float)

    models = fit_suite(y, x, w, measure, method=params.ml_method)
    morans = moran_for_models(models, w, permutations=params.permutations, alpha=params.alpha)
    comparison = compare_models(models, morans)

    lag = next(m for m in models if m.name == SPATIAL_LAG)
    impacts = simulate_impacts(lag, w, n_sim=params.n_sim, seed=params.random_seed)

    for m in models:
        log_model(m, morans[m.name])
    log_table(f"[{measure}] model comparison (lower AIC is better)", comparison)
    log_table(f"[{measure}] lag model impacts ({params.n_sim} simulations)", impacts)

    return MeasureResult(
        measure=measure,
        n_obs=len(data),
        weights=w,
        models=models,
        morans=morans,
        comparison=comparison,
        impacts=impacts,
        summary=build_summary(measure, models, morans, comparison, impacts),
    )


def run_pipeline(
    paths: Paths = Paths(),
    params: ModelParams = ModelParams(),
    fetch: FetchParams = FetchParams(),
    cols: Columns = Columns(),
    skip_advanced: bool = False,
    make_plots: bool = True,
) -> PipelineResult:
    frame, diagnostics = load_merged(paths, cols)
    frame = add_centroid_distance(frame, cols)
    baseline = run_measure(frame, cols.dist_centroid, params, cols)

    advanced = coverage = weighted = None
    if skip_advanced:
        logger.info("advanced analysis skipped")
    else:
        # baseline results stand on their own; density failures only cost the advanced run
        try:
            blocks = load_density_blocks(paths.density_source, fetch)
            weighted = population_weighted_centroids(
                blocks, frame, cols.district_geometry, cols.density_population, cols
            )
        except DensityFetchError as e:
            logger.error(f"advanced analysis aborted: {e}")
        except DatasetError as e:
            if e.dataset != DENSITY_DATASET:
                raise
            logger.error(f"advanced analysis aborted: {e}")
        else:
            coverage = centroid_coverage(frame[cols.key], weighted, cols)
            frame = add_weighted_distance(frame, weighted, cols)
            advanced = run_measure(frame, cols.dist_weighted, params, cols)

    figures = render_all(frame, paths.figures_dir, weighted, cols) if make_plots else {}
    return PipelineResult(
        frame=frame,
        merge=diagnostics,
        baseline=baseline,
        advanced=advanced,
        coverage=coverage,
        weighted_centroids=weighted,
        figures=figures,
    )


def main() -> None:
    defaults = Paths()
    p = argparse.ArgumentParser(description="Distance to polling station vs. turnout (Berlin, BTW 2021)")
    p.add_argument("--districts", type=Path, default=defaults.districts)
    p.add_argument("--stations", type=Path, default=defaults.stations)
    p.add_argument("--results", type=Path, default=defaults.results)
    p.add_argument("--results-sheet", default=defaults.results_sheet)
    p.add_argument("--density-source", default=defaults.density_source, help="WFS URL or local file")
    p.add_argument("--figures-dir", type=Path, default=defaults.figures_dir)
    p.add_argument("--skip-advanced", action="store_true", help="Only the geometric-centroid analysis")
    p.add_argument("--no-plots", action="store_true")
    p.add_argument("--n-sim", type=int, default=ModelParams.n_sim)
    p.add_argument("--seed", type=int, default=ModelParams.random_seed)
    args = p.parse_args()

    paths = replace(
        defaults,
        districts=args.districts,
        stations=args.stations,
        results=args.results,
        results_sheet=args.results_sheet,
        density_source=args.density_source,
        figures_dir=args.figures_dir,
    )
    params = replace(ModelParams(), n_sim=args.n_sim, random_seed=args.seed)

    result = run_pipeline(paths, params, skip_advanced=args.skip_advanced, make_plots=not args.no_plots)
    logger.info(f"merge diagnostics: {result.merge.as_dict()}")
    if result.coverage is not None:
        logger.info(f"weighted centroid coverage: {result.coverage.n_with_centroid}/{result.coverage.n_districts}")
    logger.info(f"Done. baseline n={result.baseline.n_obs}, advanced={'yes' if result.advanced else 'no'}")


if __name__ == "__main__":
    main()
