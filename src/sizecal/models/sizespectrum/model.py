# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""
Single-Species Steady State - Size-Spectrum Model Core.

Computes the equilibrium abundance-at-weight distribution of one species
with no inter-species feeding. The physics is:

1. Intake - constant feeding level f = E / (E + h) on external food,
   intake(w) = f * h * w^n
2. Energy - e(w) = alpha * intake(w) - ks * w^p
3. Growth - g(w) = max(e, 0) * (1 - psi(w)), psi the proportion of
   energy invested in reproduction (maturity ogive times (w/w_max)^(m-n))
4. Mortality - mu(w) = mu_mat * (w/w_mat)^(n-1) + sum over gears of
   effort * catchability * selectivity(l(w))
5. Equilibrium - the flux g*n decays with mortality along the weight axis,
   d(g n)/dw = -mu n, discretised upwind as
       n_{i+1} = n_i * g_i / (g_{i+1} + mu_{i+1} * dw_{i+1})

The recursion is written against an array backend ``xp`` so that the catch
objective can run it under JAX autodiff.
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Optional, Sequence, Tuple

import numpy as np

from sizecal.core.constants import ModelDefaults
from sizecal.core.exceptions import StructuralInputError

from .parameters import GearParams, SpeciesParams
from .selectivity import gear_selectivity

logger = logging.getLogger(__name__)

__all__ = [
    'SizeSpectrumState',
    'make_grid',
    'maturity_ogive',
    'repro_proportion',
    'intake_rate',
    'energy_available',
    'growth_rate',
    'background_mortality',
    'fishing_mortality',
    'steady_state_abundance',
    'steady_state_log_abundance',
    'log_positive',
    'check_growth',
    'age_to_maturity',
    'solve_steady_state',
]


# =============================================================================
# STATE
# =============================================================================

@dataclass(frozen=True, eq=False)
class SizeSpectrumState:
    """
    Equilibrium abundance of one species on its weight grid.

    Attributes:
        species: Species name
        w: Weight grid (g)
        dw: Grid cell widths (g)
        n: Abundance density (numbers per g), non-negative
        growth: Growth rate g(w) (g/year)
        mortality: Total mortality mu(w) (1/year)
        fishing_mortality: Fishing part of mu(w) (1/year)
        intake: Intake rate (g/year)
        biomass_cutoff: Smallest weight counted in biomass and production
    """
    species: str
    w: np.ndarray
    dw: np.ndarray
    n: np.ndarray
    growth: np.ndarray
    mortality: np.ndarray
    fishing_mortality: np.ndarray
    intake: np.ndarray
    biomass_cutoff: Optional[float] = None

    @property
    def cutoff_mask(self) -> np.ndarray:
        if self.biomass_cutoff is None:
            return np.ones_like(self.w, dtype=bool)
        return self.w >= self.biomass_cutoff

    def biomass(self) -> float:
        return float(np.sum((self.n * self.w * self.dw)[self.cutoff_mask]))

    def production(self) -> float:
        return float(np.sum((self.n * self.growth * self.dw)[self.cutoff_mask]))

    def consumption(self) -> float:
        return float(np.sum(self.n * self.intake * self.dw))

    def yield_(self) -> float:
        return float(np.sum(self.n * self.fishing_mortality * self.w * self.dw))

    def rescaled(self, factor: float) -> 'SizeSpectrumState':
        return replace(self, n=self.n * factor)


# =============================================================================
# GRID AND RATES
# =============================================================================

def make_grid(sp: SpeciesParams, no_w: int = ModelDefaults.NO_W) -> Tuple[np.ndarray, np.ndarray]:
    """Log-spaced weight grid from w_min to w_max and its cell widths."""
    w = np.logspace(np.log10(sp.w_min), np.log10(sp.w_max), no_w)
    dw = np.diff(w)
    dw = np.append(dw, dw[-1] * w[-1] / w[-2])
    return w, dw


def maturity_ogive(sp: SpeciesParams, w: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + (w / sp.w_mat) ** (-sp.maturity_exponent))


def repro_proportion(sp: SpeciesParams, w: np.ndarray) -> np.ndarray:
    """Proportion psi(w) of available energy invested in reproduction."""
    psi = maturity_ogive(sp, w) * (w / sp.w_max) ** (sp.m - sp.n)
    psi = np.minimum(psi, 1.0)
    return np.where(w >= sp.w_max, 1.0, psi)


def intake_rate(sp: SpeciesParams, w: np.ndarray) -> np.ndarray:
    return sp.feeding_level * sp.h * w ** sp.n


def energy_available(sp: SpeciesParams, w: np.ndarray) -> np.ndarray:
    return sp.alpha * intake_rate(sp, w) - sp.ks * w ** sp.metabolic_exponent


def growth_rate(sp: SpeciesParams, w: np.ndarray) -> np.ndarray:
    return np.maximum(energy_available(sp, w), 0.0) * (1.0 - repro_proportion(sp, w))


def background_mortality(sp: SpeciesParams, w: Any, mu_mat: Any) -> Any:
    """Natural mortality scaling allometrically from ``mu_mat`` at w_mat."""
    return mu_mat * (w / sp.w_mat) ** (sp.n - 1)


def fishing_mortality(sp: SpeciesParams, gears: Sequence[GearParams], w: np.ndarray) -> np.ndarray:
    """Sum of effort * catchability * selectivity over the species' gears."""
    length = sp.length(w)
    f_mort = np.zeros_like(w)
    for gear in gears:
        f_mort = f_mort + gear.effort * gear.catchability * gear_selectivity(gear, length)
    return f_mort


# =============================================================================
# STEADY STATE
# =============================================================================

def steady_state_abundance(growth: Any, mortality: Any, dw: Any, xp: Any = np) -> Any:
    """Upwind solution of d(g n)/dw = -mu n with n = 1 in the first cell."""
    ratios = growth[:-1] / (growth[1:] + mortality[1:] * dw[1:])
    return xp.concatenate([xp.ones(1), xp.cumprod(ratios)])


def steady_state_log_abundance(log_growth_upstream: Any, growth: Any, mortality: Any, dw: Any, xp: Any = np) -> Any:
    """Log of :func:`steady_state_abundance`.

    ``log_growth_upstream`` is log(growth[:-1]) with -inf where growth is
    zero; it does not depend on mortality and is computed once by the caller.
    Working in logs keeps the recursion free of underflow when mortality is
    large.
    """
    log_ratios = log_growth_upstream - xp.log(growth[1:] + mortality[1:] * dw[1:])
    return xp.concatenate([xp.zeros(1), xp.cumsum(log_ratios)])


def log_positive(values: np.ndarray) -> np.ndarray:
    """Elementwise log with -inf for non-positive entries."""
    values = np.asarray(values, dtype=float)
    out = np.full_like(values, -np.inf)
    positive = values > 0
    out[positive] = np.log(values[positive])
    return out


def check_growth(sp: SpeciesParams, w: np.ndarray, growth: np.ndarray) -> None:
    """Reject growth curves that stall before maturity.

    Raises:
        StructuralInputError: If g(w) <= 0 for some w < w_mat
    """
    juvenile = w < sp.w_mat
    stalled = juvenile & ~(growth > 0)
    if np.any(stalled):
        w_bad = float(w[np.argmax(stalled)])
        raise StructuralInputError(
            "growth rate is non-positive below maturity weight",
            species=sp.species, value=w_bad,
        )


def age_to_maturity(sp: SpeciesParams, w: np.ndarray, dw: np.ndarray, growth: np.ndarray) -> float:
    """Time to grow from w_min to w_mat, inf if growth stalls on the way."""
    juvenile = w < sp.w_mat
    g = growth[juvenile]
    if np.any(~(g > 0)):
        return float('inf')
    return float(np.sum(dw[juvenile] / g))


def solve_steady_state(
    sp: SpeciesParams,
    gears: Sequence[GearParams] = (),
    no_w: int = ModelDefaults.NO_W,
    mu_mat: Optional[float] = None,
    biomass_target: Optional[float] = None,
) -> SizeSpectrumState:
    """
    Equilibrium abundance of one species in isolation.

    Args:
        sp: Completed species parameters
        gears: Gears fishing this species
        no_w: Number of weight grid points
        mu_mat: Natural mortality at maturity; defaults to ``sp.mu_mat``
        biomass_target: If given, abundance is scaled so biomass equals it;
            otherwise the first grid cell has density 1

    Returns:
        SizeSpectrumState

    Raises:
        StructuralInputError: If mu_mat is unknown or growth stalls below maturity
    """
    mu_mat = sp.mu_mat if mu_mat is None else mu_mat
    if mu_mat is None:
        raise StructuralInputError("natural mortality at maturity is not set", species=sp.species)

    w, dw = make_grid(sp, no_w)
    growth = growth_rate(sp, w)
    check_growth(sp, w, growth)

    f_mort = fishing_mortality(sp, gears, w)
    mortality = background_mortality(sp, w, mu_mat) + f_mort
    n = steady_state_abundance(growth, mortality, dw)

    state = SizeSpectrumState(
        species=sp.species,
        w=w,
        dw=dw,
        n=n,
        growth=growth,
        mortality=mortality,
        fishing_mortality=f_mort,
        intake=intake_rate(sp, w),
        biomass_cutoff=sp.biomass_cutoff,
    )

    if biomass_target is not None:
        biomass = state.biomass()
        if not biomass > 0:
            raise StructuralInputError(
                "model biomass above cutoff is zero; cannot normalise",
                species=sp.species, value=sp.biomass_cutoff,
            )
        state = state.rescaled(biomass_target / biomass)

    logger.debug(
        f"Steady state for {sp.species}: biomass={state.biomass():.4g}, "
        f"yield={state.yield_():.4g}, production={state.production():.4g}"
    )
    return state
