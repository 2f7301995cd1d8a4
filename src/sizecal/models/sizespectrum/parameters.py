# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""
Size-Spectrum Model Parameters.

Species, gear and observation records for the single-species steady-state
model, with defaults, validation and the length-weight conversion.

Species records carry:
- Size: w_min, w_mat, w_mat25, w_max and the length-weight pair (a, b)
- Physiology: intake (h, n), metabolism (ks, p), search volume (gamma, q),
  assimilation efficiency alpha, external encounter rate, reproduction exponent m
- Mortality: natural mortality at maturity mu_mat
- Targets: observed biomass, consumption and production
- Predation kernel: beta/sigma and optional stomach-content fit parameters

All records are frozen. Calibration stages return updated copies via
``dataclasses.replace``.
"""

import math
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional

import numpy as np

from sizecal.core.constants import ModelDefaults, Numerics
from sizecal.core.exceptions import StructuralInputError

SIGMOID_LENGTH = 'sigmoid_length'
DOUBLE_SIGMOID_LENGTH = 'double_sigmoid_length'
SELECTIVITY_FUNCTIONS = (SIGMOID_LENGTH, DOUBLE_SIGMOID_LENGTH)

# Default abundance of the resource spectrum and its slope, used only to
# derive a default search volume coefficient.
KAPPA = 1e11
LAMBDA = 2.05


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class SpeciesParams:
    """
    Life-history parameters for one species.

    Attributes:
        species: Species name (table key)
        w_max: Maximum body weight (g)
        w_mat: Weight at 50% maturity (g)
        w_min: Egg weight (g)
        w_mat25: Weight at 25% maturity (g); defaults from w_mat
        a, b: Length-weight relationship w = a * l^b (g, cm)
        n: Exponent of maximum intake rate
        p: Exponent of metabolic rate; None means "same as n"
        q: Exponent of search volume
        m: Exponent of reproductive investment
        alpha: Assimilation efficiency
        h: Maximum intake coefficient
        ks: Standard metabolism coefficient
        gamma: Search volume coefficient
        ext_encounter: External (non-prey) encounter rate coefficient
        mu_mat: Natural mortality at maturity (1/year), nullable
        age_mat: Age at maturity (year), nullable
        k_vb, t0: von Bertalanffy parameters used when age_mat is missing
        biomass_observed: Observed standing biomass
        biomass_cutoff: Smallest weight included in observed biomass/production
        consumption_observed: Observed consumption per year
        production_observed: Observed production per year
        beta, sigma: Lognormal predation kernel
        kernel_exp, kernel_l_l, kernel_u_l, kernel_l_r, kernel_u_r:
            Power-law kernel fitted to stomach contents (optional)
    """
    species: str
    w_max: float
    w_mat: float
    w_min: float = ModelDefaults.W_MIN
    w_mat25: Optional[float] = None
    a: float = ModelDefaults.LENGTH_WEIGHT_A
    b: float = ModelDefaults.LENGTH_WEIGHT_B
    n: float = ModelDefaults.N
    p: Optional[float] = None
    q: float = ModelDefaults.Q
    m: float = ModelDefaults.M
    alpha: float = ModelDefaults.ALPHA
    h: Optional[float] = None
    ks: Optional[float] = None
    gamma: Optional[float] = None
    ext_encounter: Optional[float] = None
    mu_mat: Optional[float] = None
    age_mat: Optional[float] = None
    k_vb: Optional[float] = None
    t0: float = 0.0
    biomass_observed: Optional[float] = None
    biomass_cutoff: Optional[float] = None
    consumption_observed: Optional[float] = None
    production_observed: Optional[float] = None
    beta: float = ModelDefaults.BETA
    sigma: float = ModelDefaults.SIGMA
    kernel_exp: Optional[float] = None
    kernel_l_l: Optional[float] = None
    kernel_u_l: Optional[float] = None
    kernel_l_r: Optional[float] = None
    kernel_u_r: Optional[float] = None

    @property
    def metabolic_exponent(self) -> float:
        return self.n if self.p is None else self.p

    @property
    def feeding_level(self) -> float:
        """Constant feeding level in the absence of prey interaction."""
        return self.ext_encounter / (self.ext_encounter + self.h)

    @property
    def maturity_exponent(self) -> float:
        """Steepness U of the maturity ogive (1 + (w/w_mat)^-U)^-1."""
        return Numerics.LOG3 / math.log(self.w_mat / self.w_mat25)

    def length(self, w: Any) -> Any:
        """Convert weight (g) to length (cm)."""
        return (w / self.a) ** (1.0 / self.b)

    def weight(self, length: Any) -> Any:
        """Convert length (cm) to weight (g)."""
        return self.a * length ** self.b

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class GearParams:
    """
    Selectivity and catchability of one gear for one species.

    Attributes:
        species: Species caught
        gear: Gear name
        sel_func: 'sigmoid_length' or 'double_sigmoid_length'
        l50, l25: Lengths at 50% and 25% selectivity of the ascending limb (cm)
        l50_right, l25_right: Lengths at 50% and 25% of the descending limb (cm);
            absent or non-finite means no descending limb
        catchability: Converts effort into fishing mortality
        effort: Fishing effort
    """
    species: str
    gear: str
    sel_func: str
    l50: float
    l25: float
    l50_right: Optional[float] = None
    l25_right: Optional[float] = None
    catchability: float = 1.0
    effort: float = ModelDefaults.EFFORT

    @property
    def has_descending_limb(self) -> bool:
        return (
            self.sel_func == DOUBLE_SIGMOID_LENGTH
            and _is_finite(self.l50_right)
            and _is_finite(self.l25_right)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True, eq=False)
class ObservedCatch:
    """
    Observed catch-at-length histogram for one species.

    ``length`` holds the lower bin edges, ``dl`` the bin widths and
    ``count`` the numbers caught per bin.
    """
    species: str
    length: np.ndarray
    dl: np.ndarray
    count: np.ndarray
    gear: Optional[str] = None
    yield_observed: Optional[float] = None
    production_observed: Optional[float] = None

    @property
    def total(self) -> float:
        return float(np.sum(self.count))


# =============================================================================
# VALIDATION
# =============================================================================

def _is_finite(value: Any) -> bool:
    if value is None:
        return False
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def _require_positive(sp_name: str, name: str, value: Any, optional: bool = False) -> None:
    if value is None and optional:
        return
    if not _is_finite(value) or float(value) <= 0:
        raise StructuralInputError(f"{name} must be a finite positive number", species=sp_name, value=value)


def validate_species(sp: SpeciesParams) -> SpeciesParams:
    """Check a species record for missing, non-finite or inconsistent values.

    Raises:
        StructuralInputError: On the first offending value
    """
    for name in ('w_max', 'w_mat', 'w_min', 'a', 'b', 'n', 'alpha'):
        _require_positive(sp.species, name, getattr(sp, name))
    for name in ('p', 'w_mat25', 'h', 'ks', 'gamma', 'ext_encounter', 'mu_mat', 'age_mat', 'k_vb',
                 'biomass_observed', 'biomass_cutoff', 'consumption_observed', 'production_observed'):
        _require_positive(sp.species, name, getattr(sp, name), optional=True)

    if not sp.w_min < sp.w_mat < sp.w_max:
        raise StructuralInputError(
            "weights must satisfy w_min < w_mat < w_max",
            species=sp.species, value=(sp.w_min, sp.w_mat, sp.w_max),
        )
    if sp.w_mat25 is not None and not sp.w_min < sp.w_mat25 < sp.w_mat:
        raise StructuralInputError(
            "w_mat25 must lie between w_min and w_mat", species=sp.species, value=sp.w_mat25
        )
    if sp.alpha > 1:
        raise StructuralInputError("alpha must not exceed 1", species=sp.species, value=sp.alpha)
    return sp


def validate_gear(gear: GearParams) -> GearParams:
    """Check the ordering l25 < l50 (< l50_right < l25_right for a dome).

    A double-sigmoid gear whose descending lengths are both absent or
    non-finite is valid and behaves as a single sigmoid. Setting only one
    of them is an error.

    Raises:
        StructuralInputError: On unknown selectivity functions, non-positive
            values or out-of-order lengths
    """
    if gear.sel_func not in SELECTIVITY_FUNCTIONS:
        raise StructuralInputError(
            f"unknown selectivity function for gear '{gear.gear}'",
            species=gear.species, value=gear.sel_func,
        )
    _require_positive(gear.species, 'l50', gear.l50)
    _require_positive(gear.species, 'l25', gear.l25)
    _require_positive(gear.species, 'effort', gear.effort)
    if not _is_finite(gear.catchability) or gear.catchability < 0:
        raise StructuralInputError(
            "catchability must be finite and non-negative", species=gear.species, value=gear.catchability
        )
    if gear.l25 >= gear.l50:
        raise StructuralInputError(
            f"gear '{gear.gear}' needs l25 < l50", species=gear.species, value=(gear.l25, gear.l50)
        )
    if gear.sel_func != DOUBLE_SIGMOID_LENGTH:
        return gear
    right_finite = (_is_finite(gear.l50_right), _is_finite(gear.l25_right))
    if right_finite[0] != right_finite[1]:
        raise StructuralInputError(
            f"gear '{gear.gear}' sets only one of l50_right and l25_right",
            species=gear.species, value=(gear.l50_right, gear.l25_right),
        )
    if right_finite[0] and gear.l50_right <= gear.l50:
        raise StructuralInputError(
            f"gear '{gear.gear}' needs l50_right > l50",
            species=gear.species, value=(gear.l50, gear.l50_right),
        )
    if gear.has_descending_limb:
        if gear.l25_right <= gear.l50_right:
            raise StructuralInputError(
                f"gear '{gear.gear}' needs l25_right > l50_right",
                species=gear.species, value=(gear.l50_right, gear.l25_right),
            )
    return gear


def validate_observed_catch(obs: ObservedCatch) -> ObservedCatch:
    """Check that the histogram is ordered, finite and non-empty."""
    length = np.asarray(obs.length, dtype=float)
    dl = np.asarray(obs.dl, dtype=float)
    count = np.asarray(obs.count, dtype=float)
    if not (length.ndim == dl.ndim == count.ndim == 1 and len(length) == len(dl) == len(count)):
        raise StructuralInputError("catch histogram columns must be 1-D and of equal length", species=obs.species)
    if len(length) == 0:
        raise StructuralInputError("catch histogram is empty", species=obs.species)
    if not (np.all(np.isfinite(length)) and np.all(np.isfinite(dl)) and np.all(np.isfinite(count))):
        raise StructuralInputError("catch histogram contains non-finite values", species=obs.species)
    if np.any(dl <= 0):
        raise StructuralInputError("bin widths must be positive", species=obs.species, value=float(dl.min()))
    if np.any(count < 0) or count.sum() <= 0:
        raise StructuralInputError("counts must be non-negative with a positive total", species=obs.species)
    if np.any(length[1:] < length[:-1] + dl[:-1] - Numerics.RELATIVE_TOLERANCE * length[1:]):
        raise StructuralInputError("length bins must be increasing and non-overlapping", species=obs.species)
    for name in ('yield_observed', 'production_observed'):
        _require_positive(obs.species, name, getattr(obs, name), optional=True)
    return obs


# =============================================================================
# DEFAULTS
# =============================================================================

def default_gamma(sp: SpeciesParams, feeding_level: float = ModelDefaults.FEEDING_LEVEL) -> float:
    """Search volume giving ``feeding_level`` on a resource of abundance KAPPA."""
    lm2 = LAMBDA - 2
    ae = math.sqrt(2 * math.pi) * sp.sigma * sp.beta ** lm2 * math.exp(lm2 ** 2 * sp.sigma ** 2 / 2)
    return sp.h / (KAPPA * ae) * feeding_level / (1 - feeding_level)


def age_at_maturity(sp: SpeciesParams) -> Optional[float]:
    """Age at maturity, from ``age_mat`` or from von Bertalanffy growth."""
    if sp.age_mat is not None:
        return sp.age_mat
    if sp.k_vb is None:
        return None
    ratio = (sp.w_mat / sp.w_max) ** (1.0 / sp.b)
    return -math.log(1.0 - ratio) / sp.k_vb + sp.t0


def complete_species_params(sp: SpeciesParams) -> SpeciesParams:
    """Fill physiology coefficients left unset and validate the result.

    Defaults give a feeding level of ModelDefaults.FEEDING_LEVEL and spend
    ModelDefaults.METABOLIC_FRACTION of assimilated intake on metabolism.
    """
    updates: Dict[str, Any] = {}
    h = sp.h if sp.h is not None else ModelDefaults.H
    f0 = ModelDefaults.FEEDING_LEVEL
    if sp.h is None:
        updates['h'] = h
    if sp.ext_encounter is None:
        updates['ext_encounter'] = f0 * h / (1 - f0)
    if sp.ks is None:
        updates['ks'] = ModelDefaults.METABOLIC_FRACTION * sp.alpha * f0 * h
    if sp.w_mat25 is None:
        updates['w_mat25'] = sp.w_mat * ModelDefaults.W_MAT25_RATIO
    completed = replace(sp, **updates) if updates else sp
    if completed.gamma is None:
        completed = replace(completed, gamma=default_gamma(completed))
    return validate_species(completed)
