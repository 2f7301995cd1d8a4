# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""
Numerical constants and model defaults for sizecal.

Centralizes hardcoded constants shared by the steady-state solver, the
catch objective and the calibration stages.
"""

import math


class ModelDefaults:
    """Default life-history values used when a species table leaves them out."""

    W_MIN = 0.001
    """Egg weight (g)."""

    LENGTH_WEIGHT_A = 0.01
    """Coefficient of w = a * l^b (g / cm^b)."""

    LENGTH_WEIGHT_B = 3.0
    """Exponent of w = a * l^b."""

    N = 0.75
    """Allometric exponent of maximum intake rate."""

    Q = 0.8
    """Allometric exponent of search volume."""

    M = 1.0
    """Exponent of reproductive investment."""

    ALPHA = 0.6
    """Assimilation efficiency."""

    H = 30.0
    """Maximum intake coefficient (g^(1-n) / year)."""

    FEEDING_LEVEL = 0.6
    """Feeding level used to derive default encounter and metabolism."""

    METABOLIC_FRACTION = 0.2
    """Fraction of assimilated intake spent on standard metabolism by default."""

    W_MAT25_RATIO = 3 ** (-1 / 10)
    """Default w_mat25 / w_mat, giving a maturity ogive exponent of 10."""

    BETA = 100.0
    """Preferred predator/prey mass ratio."""

    SIGMA = 2.0
    """Width of the lognormal predation kernel."""

    EFFORT = 1.0
    """Default fishing effort."""

    MU_MAT = 0.2
    """Fallback natural mortality at maturity (1/year)."""

    NO_W = 200
    """Number of weight grid points per species."""


class Numerics:
    """Small constants guarding against degenerate arithmetic."""

    LOG3 = math.log(3.0)
    """Appears in every 25%/50% logistic parameterisation."""

    CATCHABILITY_FLOOR = 1e-8
    """Catchability is floored here before optimization."""

    PROPORTION_FLOOR = 1e-300
    """Lower clip for predicted catch proportions inside the log."""

    MAX_FEEDING_LEVEL = 0.95
    """Highest feeding level match_consumption will set before raising h."""

    RELATIVE_TOLERANCE = 1e-10
    """Tolerance for sums of proportions and similar checks."""
