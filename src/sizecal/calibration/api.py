# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""
Calibration entry points.

- calibrate: run the full pipeline on species, gear and catch tables
- evaluate_objective: catch objective at an explicit parameter vector
- run_optimizer: the optimizer alone from a caller-supplied start
"""

import logging
from typing import Any, Dict, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from sizecal.core.config import CalibrationConfig
from sizecal.core.exceptions import StructuralInputError
from sizecal.data.tables import (
    diet_matrix_from_frame,
    gear_params_from_frame,
    gear_params_to_frame,
    observed_catch_from_frame,
    species_params_from_frame,
    species_params_to_frame,
)
from sizecal.models.sizespectrum.parameters import (
    GearParams,
    ObservedCatch,
    SpeciesParams,
    complete_species_params,
)
from sizecal.optimization.objectives.catch_objective import CalibrationObjective, ObjectiveBuilder
from sizecal.optimization.optimizers.gradient_optimizer import GradientOptimizer, OptimizationResult

from .pipeline import CalibrationPipeline, CalibrationReport
from .rescaling import resolve_mu_mat

logger = logging.getLogger(__name__)

ConfigLike = Union[CalibrationConfig, Dict[str, Any], None]
GearLike = Union[GearParams, Sequence[GearParams]]


def _as_config(config: ConfigLike) -> CalibrationConfig:
    if config is None:
        return CalibrationConfig()
    if isinstance(config, dict):
        return CalibrationConfig.from_dict(config)
    return config


def _build_objective(
    species: SpeciesParams,
    gear: GearLike,
    observed: ObservedCatch,
    config: CalibrationConfig,
) -> Tuple[SpeciesParams, CalibrationObjective]:
    gears = [gear] if isinstance(gear, GearParams) else list(gear)
    sp = complete_species_params(species)
    return sp, CalibrationObjective(ObjectiveBuilder.from_params(sp, gears, observed, config))


def calibrate(
    species_df: pd.DataFrame,
    gear_df: Optional[pd.DataFrame],
    catch_df: Optional[pd.DataFrame],
    config: ConfigLike = None,
    diet_df: Optional[pd.DataFrame] = None,
) -> Tuple[pd.DataFrame, pd.DataFrame, CalibrationReport]:
    """
    Calibrate every species in ``species_df``.

    A species whose species, gear or catch rows cannot be read is left
    out of the calibration and reported as failed; the other species are
    calibrated as usual. Table-wide defects such as missing columns still
    raise.

    Args:
        species_df: Species table
        gear_df: Gear table (may be None for unfished species)
        catch_df: Catch-at-length table (may be None)
        config: CalibrationConfig, or a flat/nested dict of settings such as
            ``{'YIELD_LAMBDA': 0.0}``
        diet_df: Optional diet table

    Returns:
        (updated species table, updated gear table, CalibrationReport)

    Raises:
        StructuralInputError: If a table lacks required columns or has rows
            without a species name
    """
    config = _as_config(config)
    errors: Dict[str, StructuralInputError] = {}
    species = species_params_from_frame(species_df, errors=errors)
    gears = gear_params_from_frame(gear_df, errors=errors) if gear_df is not None else []
    observed = observed_catch_from_frame(catch_df, species_df, errors=errors) if catch_df is not None else {}
    diets = diet_matrix_from_frame(diet_df) if diet_df is not None else None

    records, report = CalibrationPipeline(config).run(species, gears, observed, diets, failures=errors)

    species_out = species_params_to_frame(r.params for r in records.values())
    species_out['stage'] = [r.stage.name for r in records.values()]
    gear_out = gear_params_to_frame(g for r in records.values() for g in r.gears)
    return species_out, gear_out, report


def evaluate_objective(
    species: SpeciesParams,
    gear: GearLike,
    observed: ObservedCatch,
    theta: Sequence[float],
    config: ConfigLike = None,
) -> float:
    """
    Catch objective at ``theta``, for sensitivity and profile analysis.

    Raises:
        StructuralInputError: If the inputs or theta are invalid
    """
    _, objective = _build_objective(species, gear, observed, _as_config(config))
    return objective.evaluate(theta)


def run_optimizer(
    species: SpeciesParams,
    gear: GearLike,
    observed: ObservedCatch,
    theta0: Optional[Sequence[float]] = None,
    config: ConfigLike = None,
) -> OptimizationResult:
    """
    Run the optimizer once from ``theta0``.

    ``theta0`` defaults to the fitted gear's current values and the
    species' mu_mat (or its fallback).

    Raises:
        StructuralInputError: If species, gear or catch data are invalid;
            an invalid theta0 is reported as a construction failure instead
    """
    config = _as_config(config)
    sp, objective = _build_objective(species, gear, observed, config)
    if theta0 is None:
        theta0 = objective.initial_theta(resolve_mu_mat(sp, config.default_mu_mat))
    return GradientOptimizer(config.optimizer).run(objective, np.asarray(theta0, dtype=float))
