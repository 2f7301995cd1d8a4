# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""
Single-species size-spectrum model.

Components:
    - parameters: SpeciesParams, GearParams, ObservedCatch and their validation
    - selectivity: sigmoid and double-sigmoid length selectivity (numpy or JAX)
    - model: weight grid, growth and mortality rates, steady-state solver

Usage:
    from sizecal.models.sizespectrum import SpeciesParams, solve_steady_state

    sp = complete_species_params(SpeciesParams('cod', w_max=20000, w_mat=3000, mu_mat=0.3))
    state = solve_steady_state(sp, gears, biomass_target=sp.biomass_observed)
"""

from .model import (
    SizeSpectrumState,
    age_to_maturity,
    background_mortality,
    fishing_mortality,
    growth_rate,
    intake_rate,
    make_grid,
    solve_steady_state,
)
from .parameters import (
    DOUBLE_SIGMOID_LENGTH,
    SELECTIVITY_FUNCTIONS,
    SIGMOID_LENGTH,
    GearParams,
    ObservedCatch,
    SpeciesParams,
    age_at_maturity,
    complete_species_params,
    validate_gear,
    validate_observed_catch,
    validate_species,
)
from .selectivity import double_sigmoid_length, gear_selectivity, sigmoid_length

__all__ = [
    'DOUBLE_SIGMOID_LENGTH',
    'SELECTIVITY_FUNCTIONS',
    'SIGMOID_LENGTH',
    'GearParams',
    'ObservedCatch',
    'SizeSpectrumState',
    'SpeciesParams',
    'age_at_maturity',
    'age_to_maturity',
    'background_mortality',
    'complete_species_params',
    'double_sigmoid_length',
    'fishing_mortality',
    'gear_selectivity',
    'growth_rate',
    'intake_rate',
    'make_grid',
    'sigmoid_length',
    'solve_steady_state',
    'validate_gear',
    'validate_observed_catch',
    'validate_species',
]
