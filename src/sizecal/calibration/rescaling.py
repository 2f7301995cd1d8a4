# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""
Deterministic Calibration Stages.

Closed-form or one-dimensional rescalings that bring a species record in
line with a single observation each:

- match_growth: scale intake so age at maturity matches
- find_steady_state: solve the equilibrium abundance
- match_biomasses: scale abundance to the observed biomass
- match_consumption: scale intake to the observed consumption, compensating
  metabolism so growth is unchanged
- match_diet: attach normalized diet proportions

Each returns a new record; all except match_growth leave a species without
the relevant observation unchanged apart from its stage tag.
"""

import logging
import math
from dataclasses import replace
from typing import Dict, Mapping, Optional

from scipy.optimize import brentq

from sizecal.core.config import CalibrationConfig
from sizecal.core.constants import Numerics
from sizecal.core.exceptions import StructuralInputError
from sizecal.models.sizespectrum.model import (
    age_to_maturity,
    growth_rate,
    make_grid,
    solve_steady_state,
)
from sizecal.models.sizespectrum.parameters import SpeciesParams, age_at_maturity

from .record import SpeciesCalibration
from .stages import CalibrationStage, stage_operation

logger = logging.getLogger(__name__)

EXTERNAL_FOOD = 'external'
DIET_SUM_TOLERANCE = 1e-6
MAX_BRACKET_STEPS = 60


# =============================================================================
# HELPERS
# =============================================================================

def scale_intake(sp: SpeciesParams, factor: float) -> SpeciesParams:
    """Multiply search volume, maximum intake and external encounter by ``factor``.

    The feeding level is unchanged, so intake scales by ``factor``.
    """
    return replace(
        sp,
        gamma=sp.gamma * factor,
        h=sp.h * factor,
        ext_encounter=sp.ext_encounter * factor,
    )


def resolve_mu_mat(sp: SpeciesParams, default: float) -> float:
    """Natural mortality at maturity, else P/B, else ``default``."""
    if sp.mu_mat is not None:
        return sp.mu_mat
    if sp.production_observed is not None and sp.biomass_observed is not None:
        return sp.production_observed / sp.biomass_observed
    return default


def harmonize_metabolic_exponent(sp: SpeciesParams) -> SpeciesParams:
    """Set p = n when p is unset.

    Raises:
        StructuralInputError: If p is set and differs from n
    """
    if sp.p is None:
        return replace(sp, p=sp.n)
    if not math.isclose(sp.p, sp.n):
        raise StructuralInputError(
            "metabolic exponent p must equal intake exponent n to match consumption",
            species=sp.species, stage=CalibrationStage.CONSUMPTION_MATCHED.name, value=(sp.n, sp.p),
        )
    return sp


def scale_consumption(sp: SpeciesParams, factor: float) -> SpeciesParams:
    """
    Scale intake by ``factor`` while keeping growth unchanged.

    The feeding level is raised through the external encounter rate; once it
    would exceed Numerics.MAX_FEEDING_LEVEL the maximum intake h is raised
    instead. Standard metabolism absorbs the extra assimilated energy.

    Raises:
        StructuralInputError: If metabolism would become negative
    """
    f = sp.feeding_level
    intake_coef = f * sp.h
    new_coef = factor * intake_coef

    h = sp.h
    new_f = factor * f
    if new_f > Numerics.MAX_FEEDING_LEVEL:
        new_f = Numerics.MAX_FEEDING_LEVEL
        h = new_coef / new_f

    ks = sp.ks + sp.alpha * (new_coef - intake_coef)
    if ks < 0:
        raise StructuralInputError(
            "consumption target would make standard metabolism negative",
            species=sp.species, stage=CalibrationStage.CONSUMPTION_MATCHED.name, value=ks,
        )
    return replace(sp, h=h, ext_encounter=new_f * h / (1.0 - new_f), ks=ks)


def normalize_diet_row(species: str, row: Mapping[str, float]) -> Dict[str, float]:
    """Validate prey proportions and add the external-food remainder.

    Raises:
        StructuralInputError: On negative or non-finite proportions, or a sum above 1
    """
    values = {str(prey): float(v) for prey, v in row.items() if prey != EXTERNAL_FOOD}
    bad = [prey for prey, v in values.items() if not math.isfinite(v) or v < 0]
    if bad:
        raise StructuralInputError(
            "diet proportions must be finite and non-negative",
            species=species, stage=CalibrationStage.DIET_MATCHED.name, value=bad,
        )
    total = sum(values.values())
    if total > 1.0 + DIET_SUM_TOLERANCE:
        raise StructuralInputError(
            "diet proportions sum to more than 1",
            species=species, stage=CalibrationStage.DIET_MATCHED.name, value=total,
        )
    if total > 1.0:
        values = {prey: v / total for prey, v in values.items()}
        total = 1.0
    values[EXTERNAL_FOOD] = 1.0 - total
    return values


# =============================================================================
# STAGE OPERATIONS
# =============================================================================

@stage_operation(CalibrationStage.GROWTH_MATCHED)
def match_growth(record: SpeciesCalibration, config: Optional[CalibrationConfig] = None) -> SpeciesCalibration:
    """
    Scale gamma, h and ext_encounter by one factor so that the age at
    maturity of the model equals the observed one.

    Age at maturity decreases monotonically in the factor, so the root of
    age_mat / age(c) - 1 is bracketed by doubling or halving c and then
    found with Brent's method.

    Raises:
        StructuralInputError: If no factor reproduces the observed age
    """
    config = config or CalibrationConfig()
    sp = record.params
    target = age_at_maturity(sp)
    if target is None:
        logger.info(f"No age at maturity for {sp.species}; growth left unchanged")
        return record

    w, dw = make_grid(sp, config.grid.no_w)

    def mismatch(factor: float) -> float:
        scaled = scale_intake(sp, factor)
        return target / age_to_maturity(scaled, w, dw, growth_rate(scaled, w)) - 1.0

    lo = hi = 1.0
    at_one = mismatch(1.0)
    steps = 0
    if at_one < 0:
        while mismatch(hi) < 0:
            hi *= 2.0
            steps += 1
            if steps > MAX_BRACKET_STEPS:
                raise StructuralInputError(
                    "no intake scaling reaches the observed age at maturity",
                    species=sp.species, stage=CalibrationStage.GROWTH_MATCHED.name, value=target,
                )
        lo = hi / 2.0
    elif at_one > 0:
        while mismatch(lo) > 0:
            lo /= 2.0
            steps += 1
            if steps > MAX_BRACKET_STEPS:
                raise StructuralInputError(
                    "no intake scaling slows growth to the observed age at maturity",
                    species=sp.species, stage=CalibrationStage.GROWTH_MATCHED.name, value=target,
                )
        hi = lo * 2.0

    factor = 1.0 if at_one == 0 else brentq(mismatch, lo, hi, xtol=1e-14, rtol=1e-12)
    logger.info(f"Growth of {sp.species} scaled by {factor:.6g} to reach maturity at age {target:.4g}")
    return replace(record, params=scale_intake(sp, factor), state=None)


@stage_operation(CalibrationStage.STEADY_STATE)
def find_steady_state(record: SpeciesCalibration, config: Optional[CalibrationConfig] = None) -> SpeciesCalibration:
    """Solve the equilibrium abundance with the record's gears.

    A missing mu_mat is filled from P/B or the configured default.
    """
    config = config or CalibrationConfig()
    sp = record.params
    if sp.mu_mat is None:
        mu_mat = resolve_mu_mat(sp, config.default_mu_mat)
        logger.info(f"mu_mat for {sp.species} not given; using {mu_mat:.4g}")
        sp = replace(sp, mu_mat=mu_mat)
    state = solve_steady_state(sp, record.gears, config.grid.no_w)
    return replace(record, params=sp, state=state)


@stage_operation(CalibrationStage.BIOMASS_MATCHED)
def match_biomasses(record: SpeciesCalibration, config: Optional[CalibrationConfig] = None) -> SpeciesCalibration:
    """Scale abundance so the biomass above the cutoff equals the observed biomass."""
    state = record.require_state()
    target = record.params.biomass_observed
    if target is None:
        logger.info(f"No observed biomass for {record.species}; abundance left unchanged")
        return record

    biomass = state.biomass()
    if not biomass > 0:
        raise StructuralInputError(
            "model biomass above cutoff is zero",
            species=record.species, stage=CalibrationStage.BIOMASS_MATCHED.name,
        )
    factor = target / biomass
    logger.debug(f"Biomass of {record.species} scaled by {factor:.6g}")
    return replace(record, state=state.rescaled(factor))


@stage_operation(CalibrationStage.CONSUMPTION_MATCHED)
def match_consumption(record: SpeciesCalibration, config: Optional[CalibrationConfig] = None) -> SpeciesCalibration:
    """
    Scale intake so model consumption equals the observed consumption.

    Growth is left unchanged (metabolism takes up the difference), so the
    abundance is unchanged too; the steady state is re-solved at the same
    biomass to refresh the intake rate.
    """
    config = config or CalibrationConfig()
    state = record.require_state()
    sp = harmonize_metabolic_exponent(record.params)
    target = sp.consumption_observed
    if target is None:
        logger.info(f"No observed consumption for {sp.species}; intake left unchanged")
        return replace(record, params=sp)

    consumption = state.consumption()
    if not consumption > 0:
        raise StructuralInputError(
            "model consumption is zero",
            species=sp.species, stage=CalibrationStage.CONSUMPTION_MATCHED.name,
        )
    factor = target / consumption
    sp = scale_consumption(sp, factor)
    new_state = solve_steady_state(sp, record.gears, config.grid.no_w, biomass_target=state.biomass())
    logger.info(f"Intake of {sp.species} scaled by {factor:.6g}; feeding level now {sp.feeding_level:.3f}")
    return replace(record, params=sp, state=new_state)


@stage_operation(CalibrationStage.DIET_MATCHED)
def match_diet(record: SpeciesCalibration, diet: Optional[Mapping[str, float]] = None) -> SpeciesCalibration:
    """Attach the species' diet row, with the remainder attributed to external food."""
    if diet is None:
        logger.debug(f"No diet data for {record.species}")
        return record
    return replace(record, diet=normalize_diet_row(record.species, diet))
