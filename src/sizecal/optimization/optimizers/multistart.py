# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""
Multi-Start Robustness and Identifiability Analysis.

Repeats the catch-objective fit from randomly perturbed starting points to
check that the optimum is reached reliably and to expose parameters the
data cannot pin down.

- run_multistart: jittered restarts sharing one compiled objective, with
  IQR-based outlier flags on the final objective values
- profile_objective: objective along one parameter, the others held fixed
  or re-optimized
- identifiability_report: spread of the fitted parameters among the runs
  that reach the best objective

Shape parameters (selectivity lengths and ratios) are jittered by
``shape_jitter``, rate parameters (mu_mat and catchability) by the
wider ``rate_jitter``.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

import numpy as np
import pandas as pd

from sizecal.core.config import CalibrationConfig
from sizecal.core.exceptions import ConfigurationError, StructuralInputError
from sizecal.optimization.objectives.catch_objective import RATE_PARAMS, SHAPE_PARAMS, perturb_theta

from .gradient_optimizer import GradientOptimizer, OptimizationResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class MultiStartSummary:
    """
    Reduced outcome of a multi-start run.

    Attributes:
        runs: One row per start with multipliers, starting and fitted
            parameters, objective, convergence and outlier flags
        results: The OptimizationResult of each start, in start order
        param_names: Parameter names
        min_objective: Smallest finite objective over all runs
        success_rate: Fraction of runs converged to within the convergence
            band of min_objective
        outlier_threshold: Q3 + k * IQR of the finite objectives
    """
    runs: pd.DataFrame
    results: List[OptimizationResult]
    param_names: Sequence[str]
    min_objective: float
    success_rate: float
    outlier_threshold: float

    @property
    def best(self) -> Optional[OptimizationResult]:
        finite = [r for r in self.results if np.isfinite(r.objective)]
        if not finite:
            return None
        converged = [r for r in finite if r.converged]
        return min(converged or finite, key=lambda r: r.objective)

    @property
    def outliers(self) -> pd.DataFrame:
        return self.runs[self.runs['outlier']]

    @property
    def n_converged(self) -> int:
        return int(self.runs['converged'].sum())


@dataclass(frozen=True, eq=False)
class IdentifiabilityReport:
    """Spread of fitted parameters among equally good runs."""
    table: pd.DataFrame
    poorly_identified: List[str]
    n_runs: int

    @property
    def identifiable(self) -> bool:
        return self.n_runs > 0 and not self.poorly_identified


def _jitter_range(name: str, shape_jitter: Sequence[float], rate_jitter: Sequence[float]) -> Sequence[float]:
    if name in RATE_PARAMS:
        return rate_jitter
    if name in SHAPE_PARAMS:
        return shape_jitter
    raise ConfigurationError(f"no jitter range for parameter '{name}'")


def draw_start_multipliers(
    param_names: Sequence[str],
    n_starts: int,
    shape_jitter: Sequence[float],
    rate_jitter: Sequence[float],
    rng: np.random.Generator,
) -> np.ndarray:
    """Uniform multipliers per start and parameter, shape (n_starts, n_params)."""
    ranges = [_jitter_range(name, shape_jitter, rate_jitter) for name in param_names]
    low = np.array([r[0] for r in ranges], dtype=float)
    high = np.array([r[1] for r in ranges], dtype=float)
    return rng.uniform(low, high, size=(n_starts, len(param_names)))


def flag_outliers(values: np.ndarray, iqr_factor: float) -> tuple:
    """Flag finite values above Q3 + iqr_factor * IQR.

    Returns:
        (boolean flags, threshold); non-finite values are never flagged
    """
    values = np.asarray(values, dtype=float)
    finite = np.isfinite(values)
    if not finite.any():
        return np.zeros_like(values, dtype=bool), np.nan
    q1, q3 = np.percentile(values[finite], [25, 75])
    threshold = q3 + iqr_factor * (q3 - q1)
    return finite & (values > threshold), float(threshold)


def _runs_frame(
    param_names: Sequence[str],
    multipliers: np.ndarray,
    results: Sequence[OptimizationResult],
) -> pd.DataFrame:
    rows = []
    for i, (mult, res) in enumerate(zip(multipliers, results)):
        row = {'start': i}
        for j, name in enumerate(param_names):
            row[f'mult_{name}'] = float(mult[j])
            row[f'start_{name}'] = float(res.theta0[j])
            row[name] = float(res.theta[j])
        row.update({
            'objective': res.objective,
            'converged': res.converged,
            'reason': res.reason.value,
            'n_iterations': res.n_iterations,
        })
        rows.append(row)
    return pd.DataFrame(rows)


def run_multistart(
    objective: Any,
    theta0: Sequence[float],
    config: Optional[CalibrationConfig] = None,
    optimizer: Optional[GradientOptimizer] = None,
) -> MultiStartSummary:
    """
    Fit the objective from jittered copies of ``theta0``.

    Args:
        objective: CalibrationObjective, shared by all runs
        theta0: Reference parameters the starts are drawn around
        config: Calibration configuration (multistart and optimizer sections)
        optimizer: Optimizer to use; built from ``config.optimizer`` if omitted

    Returns:
        MultiStartSummary

    Raises:
        StructuralInputError: If theta0 itself is outside its domain
    """
    config = config or CalibrationConfig()
    ms = config.multistart
    optimizer = optimizer or GradientOptimizer(config.optimizer)
    names = tuple(objective.param_names)

    rng = np.random.default_rng(ms.seed)
    multipliers = draw_start_multipliers(names, ms.n_starts, ms.shape_jitter, ms.rate_jitter, rng)
    starts = [perturb_theta(theta0, names, m) for m in multipliers]

    # Compile before the workers start
    objective.value_and_grad_internal(objective.to_internal(theta0))

    logger.info(f"Multi-start for {objective.species}: {ms.n_starts} starts, {ms.max_workers} worker(s)")
    if ms.max_workers > 1:
        with ThreadPoolExecutor(max_workers=ms.max_workers) as executor:
            results = list(executor.map(lambda start: optimizer.run(objective, start), starts))
    else:
        results = [optimizer.run(objective, start) for start in starts]

    runs = _runs_frame(names, multipliers, results)
    objective_values = runs['objective'].to_numpy(dtype=float)
    outlier, threshold = flag_outliers(objective_values, ms.outlier_iqr_factor)
    runs['outlier'] = outlier

    finite = np.isfinite(objective_values)
    min_objective = float(objective_values[finite].min()) if finite.any() else np.nan
    runs['within_band'] = runs['converged'] & (runs['objective'] <= min_objective + ms.convergence_band)
    success_rate = float(runs['within_band'].mean())

    logger.info(
        f"Multi-start for {objective.species}: min objective {min_objective:.6g}, "
        f"success rate {success_rate:.0%}, {int(runs['outlier'].sum())} outlier(s)"
    )
    return MultiStartSummary(
        runs=runs,
        results=results,
        param_names=names,
        min_objective=min_objective,
        success_rate=success_rate,
        outlier_threshold=threshold,
    )


def profile_objective(
    objective: Any,
    theta: Sequence[float],
    name: str,
    values: Sequence[float],
    reoptimize: bool = False,
    optimizer: Optional[GradientOptimizer] = None,
) -> pd.DataFrame:
    """
    Objective along one parameter.

    Args:
        objective: CalibrationObjective
        theta: Parameters the profile passes through
        name: Parameter to vary
        values: Values of that parameter
        reoptimize: If True, the other parameters are re-fitted at each value
        optimizer: Optimizer for the re-fits

    Returns:
        DataFrame with the profiled values, objective and convergence flag;
        re-fitted parameters appear as ``fit_<name>`` columns
    """
    names = list(objective.param_names)
    if name not in names:
        raise StructuralInputError(f"unknown parameter '{name}'", value=tuple(names))
    idx = names.index(name)
    optimizer = optimizer or GradientOptimizer()

    rows = []
    for value in values:
        th = np.array(theta, dtype=float)
        th[idx] = value
        if reoptimize:
            res = optimizer.run(objective, th, fixed={name})
            row = {name: float(value), 'objective': res.objective, 'converged': res.converged}
            row.update({f'fit_{n}': float(v) for n, v in zip(names, res.theta)})
        else:
            try:
                obj = objective.evaluate(th)
            except StructuralInputError:
                obj = np.nan
            row = {name: float(value), 'objective': obj, 'converged': bool(np.isfinite(obj))}
        rows.append(row)
    return pd.DataFrame(rows)


def identifiability_report(summary: MultiStartSummary, tolerance: float = 0.05) -> IdentifiabilityReport:
    """
    Summarize the spread of fitted parameters among runs within the band.

    A parameter whose range over those runs exceeds ``tolerance`` times its
    mean is reported as poorly identified.
    """
    good = summary.runs[summary.runs['within_band']]
    records = []
    for name in summary.param_names:
        column = good[name].to_numpy(dtype=float)
        if column.size == 0:
            records.append({'param': name, 'mean': np.nan, 'std': np.nan, 'min': np.nan,
                            'max': np.nan, 'relative_spread': np.nan})
            continue
        mean = float(column.mean())
        spread = float(column.max() - column.min())
        records.append({
            'param': name,
            'mean': mean,
            'std': float(column.std()),
            'min': float(column.min()),
            'max': float(column.max()),
            'relative_spread': spread / abs(mean) if mean != 0 else np.inf,
        })
    table = pd.DataFrame(records).set_index('param')
    poorly = [name for name in summary.param_names if table.loc[name, 'relative_spread'] > tolerance]
    return IdentifiabilityReport(table=table, poorly_identified=poorly, n_runs=len(good))
