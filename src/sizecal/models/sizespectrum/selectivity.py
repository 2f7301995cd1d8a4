# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""
Length-based fishing selectivity curves.

Both curves are parameterised by the lengths at which selectivity reaches
25% and 50%, so the logistic slope follows analytically as
ln(3) / (l50 - l25):

- sigmoid_length: ascending logistic, 0.25 at l25, 0.5 at l50, 1 as l -> inf
- double_sigmoid_length: ascending limb times a descending limb that is
  0.5 at l50_right and 0.25 at l25_right (dome shape)

Functions accept an array backend ``xp`` (numpy or jax.numpy) so the same
curve serves the forward model and the differentiated catch objective.
"""

from typing import Any, Optional

import jax
import numpy as np
from scipy.special import expit

from sizecal.core.constants import Numerics
from sizecal.core.exceptions import StructuralInputError

from .parameters import DOUBLE_SIGMOID_LENGTH, SIGMOID_LENGTH, GearParams, _is_finite


def _logistic(x: Any, xp: Any = np) -> Any:
    """Overflow-safe logistic for either backend."""
    if xp is np:
        return expit(x)
    return jax.nn.sigmoid(x)


def ascending_limb(length: Any, l25: Any, l50: Any, xp: Any = np) -> Any:
    """Logistic rising through 0.25 at ``l25`` and 0.5 at ``l50``."""
    return _logistic(Numerics.LOG3 * (length - l50) / (l50 - l25), xp)


def descending_limb(length: Any, l50_right: Any, l25_right: Any, xp: Any = np) -> Any:
    """Logistic falling through 0.5 at ``l50_right`` and 0.25 at ``l25_right``."""
    return _logistic(Numerics.LOG3 * (l50_right - length) / (l25_right - l50_right), xp)


def sigmoid_length(length: Any, l25: Any, l50: Any, xp: Any = np) -> Any:
    """Single-sigmoid selectivity at ``length``."""
    return ascending_limb(length, l25, l50, xp)


def double_sigmoid_length(
    length: Any,
    l25: Any,
    l50: Any,
    l50_right: Optional[float] = None,
    l25_right: Optional[float] = None,
    xp: Any = np,
) -> Any:
    """Dome-shaped selectivity at ``length``.

    If either descending-limb length is absent or non-finite the descending
    factor is 1 and the curve is the single sigmoid.
    """
    if not (_is_finite(l50_right) and _is_finite(l25_right)):
        return sigmoid_length(length, l25, l50, xp)
    return ascending_limb(length, l25, l50, xp) * descending_limb(length, l50_right, l25_right, xp)


def gear_selectivity(gear: GearParams, length: Any, xp: Any = np) -> Any:
    """Evaluate the selectivity curve named by ``gear.sel_func``."""
    if gear.sel_func == SIGMOID_LENGTH:
        return sigmoid_length(length, gear.l25, gear.l50, xp)
    if gear.sel_func == DOUBLE_SIGMOID_LENGTH:
        return double_sigmoid_length(length, gear.l25, gear.l50, gear.l50_right, gear.l25_right, xp)
    raise StructuralInputError(
        f"unknown selectivity function for gear '{gear.gear}'", species=gear.species, value=gear.sel_func
    )
