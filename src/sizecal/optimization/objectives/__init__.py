# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""Differentiable calibration objectives."""

from .catch_objective import (
    DOME_PARAM_NAMES,
    RATE_PARAMS,
    SHAPE_PARAMS,
    SINGLE_PARAM_NAMES,
    CalibrationObjective,
    ObjectiveBuilder,
    ObjectivePayload,
    gear_from_theta,
    param_names_for,
    perturb_theta,
    theta_from_gear,
)

__all__ = [
    'DOME_PARAM_NAMES',
    'RATE_PARAMS',
    'SHAPE_PARAMS',
    'SINGLE_PARAM_NAMES',
    'CalibrationObjective',
    'ObjectiveBuilder',
    'ObjectivePayload',
    'gear_from_theta',
    'param_names_for',
    'perturb_theta',
    'theta_from_gear',
]
