# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""
Catch Objective - Composite Likelihood for Fishing Parameters.

Fits the selectivity, catchability and natural mortality of one species to
an observed catch-at-length histogram. The objective combines:

1. Catch shape - multinomial deviance sum_j y_j * log(q_j / p_j) over the
   bins with observed counts, q observed and p predicted proportions
2. Yield - yield_lambda * (Y / Y_obs - 1)^2
3. Production - production_lambda * (P / P_obs - 1)^2

A missing target or a weight of 0 drops its term.

Parameter vector theta:
    single sigmoid: (l50, ratio, mu_mat, catchability)
    double sigmoid: (l50, ratio, d50, mu_mat, catchability, r_right)
with l25 = ratio * l50, l50_right = l50 + d50, l25_right = r_right * l50_right.

The optimizer works on unconstrained internal coordinates: log for l50,
d50, mu_mat and catchability, logit for ratio and log(r_right - 1).

Gradients come from jax.value_and_grad through the whole forward model
(selectivity, steady state, biomass scaling, binning), compiled once per
objective.
"""

import logging
from dataclasses import replace
from typing import Any, Dict, NamedTuple, Optional, Sequence, Tuple

import jax
import jax.numpy as jnp
import numpy as np
from jax.scipy.special import logsumexp
from scipy.special import expit, logit

from sizecal.core.config import CalibrationConfig
from sizecal.core.exceptions import StructuralInputError
from sizecal.models.sizespectrum.model import (
    background_mortality,
    check_growth,
    fishing_mortality,
    growth_rate,
    log_positive,
    make_grid,
    steady_state_log_abundance,
)
from sizecal.models.sizespectrum.parameters import (
    GearParams,
    ObservedCatch,
    SpeciesParams,
    validate_gear,
    validate_observed_catch,
)
from sizecal.models.sizespectrum.selectivity import ascending_limb, descending_limb

jax.config.update("jax_enable_x64", True)

logger = logging.getLogger(__name__)

SINGLE_PARAM_NAMES = ('l50', 'ratio', 'mu_mat', 'catchability')
DOME_PARAM_NAMES = ('l50', 'ratio', 'd50', 'mu_mat', 'catchability', 'r_right')

# Parameters shaping the selectivity curve vs. scaling mortality rates
SHAPE_PARAMS = ('l50', 'ratio', 'd50', 'r_right')
RATE_PARAMS = ('mu_mat', 'catchability')

_TINY = float(np.finfo(float).tiny)


# =============================================================================
# PARAMETER VECTOR
# =============================================================================

def param_names_for(gear: GearParams) -> Tuple[str, ...]:
    """Parameter names fitted for ``gear``; a dome without finite descending lengths fits as a single sigmoid."""
    return DOME_PARAM_NAMES if gear.has_descending_limb else SINGLE_PARAM_NAMES


def theta_from_gear(gear: GearParams, mu_mat: float) -> np.ndarray:
    """Encode a gear and natural mortality as a parameter vector."""
    values = {
        'l50': gear.l50,
        'ratio': gear.l25 / gear.l50,
        'mu_mat': mu_mat,
        'catchability': gear.catchability,
    }
    if gear.has_descending_limb:
        values['d50'] = gear.l50_right - gear.l50
        values['r_right'] = gear.l25_right / gear.l50_right
    return np.array([values[name] for name in param_names_for(gear)], dtype=float)


def theta_to_dict(theta: Sequence[float], param_names: Sequence[str]) -> Dict[str, float]:
    return {name: float(value) for name, value in zip(param_names, theta)}


def gear_from_theta(gear: GearParams, theta: Sequence[float]) -> Tuple[GearParams, float]:
    """Decode a parameter vector into an updated gear and mu_mat.

    Raises:
        StructuralInputError: If the reconstructed gear is invalid
    """
    values = theta_to_dict(theta, param_names_for(gear))
    updates = {
        'l50': values['l50'],
        'l25': values['ratio'] * values['l50'],
        'catchability': values['catchability'],
    }
    if 'd50' in values:
        l50_right = values['l50'] + values['d50']
        updates['l50_right'] = l50_right
        updates['l25_right'] = values['r_right'] * l50_right
    return validate_gear(replace(gear, **updates)), values['mu_mat']


def to_internal(theta: Sequence[float], param_names: Sequence[str]) -> np.ndarray:
    """Map theta to unconstrained coordinates.

    Raises:
        StructuralInputError: If theta has the wrong length or a value lies
            outside its domain
    """
    theta = np.asarray(theta, dtype=float)
    if theta.shape != (len(param_names),):
        raise StructuralInputError(
            f"theta must have one value per parameter {tuple(param_names)}", value=theta.shape
        )

    x = np.empty_like(theta)
    for i, (name, value) in enumerate(zip(param_names, theta)):
        if not np.isfinite(value):
            raise StructuralInputError(f"parameter '{name}' is not finite", value=float(value))
        if name == 'ratio':
            if not 0.0 < value < 1.0:
                raise StructuralInputError("ratio = l25 / l50 must lie in (0, 1)", value=float(value))
            x[i] = logit(value)
        elif name == 'r_right':
            if not value > 1.0:
                raise StructuralInputError("r_right = l25_right / l50_right must exceed 1", value=float(value))
            x[i] = np.log(value - 1.0)
        elif name == 'd50':
            if not value > 0.0:
                raise StructuralInputError("d50 must be positive (l50_right > l50)", value=float(value))
            x[i] = np.log(value)
        else:
            if not value > 0.0:
                raise StructuralInputError(f"parameter '{name}' must be positive", value=float(value))
            x[i] = np.log(value)
    return x


def from_internal(x: Any, param_names: Sequence[str], xp: Any = np) -> Any:
    """Inverse of :func:`to_internal` for either backend."""
    sigmoid = expit if xp is np else jax.nn.sigmoid
    parts = []
    for i, name in enumerate(param_names):
        if name == 'ratio':
            parts.append(sigmoid(x[i]))
        elif name == 'r_right':
            parts.append(1.0 + xp.exp(x[i]))
        else:
            parts.append(xp.exp(x[i]))
    return xp.stack(parts)


def perturb_theta(theta: Sequence[float], param_names: Sequence[str], multipliers: Sequence[float]) -> np.ndarray:
    """Scale each parameter by a multiplier, staying inside its domain.

    For ``ratio`` and ``r_right`` the multiplier scales the distance to 1.
    """
    out = np.array(theta, dtype=float)
    for i, (name, mult) in enumerate(zip(param_names, multipliers)):
        if name == 'ratio':
            out[i] = 1.0 - (1.0 - out[i]) * mult
        elif name == 'r_right':
            out[i] = 1.0 + (out[i] - 1.0) * mult
        else:
            out[i] = out[i] * mult
    return out


# =============================================================================
# PAYLOAD
# =============================================================================

def length_overlap_matrix(
    sp: SpeciesParams,
    w: np.ndarray,
    dw: np.ndarray,
    bin_lower: np.ndarray,
    bin_width: np.ndarray,
) -> np.ndarray:
    """Fraction of each weight cell's length interval inside each length bin.

    Returns:
        Array of shape (n_bins, n_weights)
    """
    l_lo = sp.length(w)
    l_hi = sp.length(w + dw)
    lo = np.maximum(l_lo[None, :], bin_lower[:, None])
    hi = np.minimum(l_hi[None, :], (bin_lower + bin_width)[:, None])
    return np.clip(hi - lo, 0.0, None) / (l_hi - l_lo)[None, :]


class ObjectivePayload(NamedTuple):
    """Fixed arrays and targets of one species' catch objective."""
    species: str
    gear: GearParams
    fixed_gears: Tuple[GearParams, ...]
    param_names: Tuple[str, ...]
    w: np.ndarray
    dw: np.ndarray
    length: np.ndarray
    growth: np.ndarray
    log_growth_upstream: np.ndarray
    mortality_shape: np.ndarray
    f_other: np.ndarray
    effort: float
    overlap: np.ndarray
    count: np.ndarray
    dl: np.ndarray
    log_biomass_weight: np.ndarray
    production_weight: np.ndarray
    biomass_target: float
    yield_target: Optional[float]
    production_target: Optional[float]
    yield_lambda: float
    production_lambda: float
    proportion_floor: float

    @property
    def dome(self) -> bool:
        return self.param_names == DOME_PARAM_NAMES


def _select_fitted_gear(
    species: str,
    gears: Sequence[GearParams],
    gear_name: Optional[str],
) -> Tuple[GearParams, Tuple[GearParams, ...]]:
    if not gears:
        raise StructuralInputError("no gear fishes this species", species=species)
    if gear_name is not None:
        matches = [g for g in gears if g.gear == gear_name]
        if not matches:
            raise StructuralInputError(
                f"observed catch names unknown gear '{gear_name}'",
                species=species, value=tuple(g.gear for g in gears),
            )
        fitted = matches[0]
    elif len(gears) == 1:
        fitted = gears[0]
    else:
        raise StructuralInputError(
            "observed catch must name its gear when several gears fish the species",
            species=species, value=tuple(g.gear for g in gears),
        )
    return fitted, tuple(g for g in gears if g is not fitted)


class ObjectiveBuilder:
    """Assemble the fixed arrays of a catch objective from species records."""

    @staticmethod
    def build(record: Any, observed: ObservedCatch, config: Optional[CalibrationConfig] = None) -> ObjectivePayload:
        """Build from a calibration record carrying ``params`` and ``gears``."""
        return ObjectiveBuilder.from_params(record.params, record.gears, observed, config)

    @staticmethod
    def from_params(
        species: SpeciesParams,
        gears: Sequence[GearParams],
        observed: ObservedCatch,
        config: Optional[CalibrationConfig] = None,
    ) -> ObjectivePayload:
        """
        Build the payload for one species.

        Args:
            species: Completed species parameters
            gears: All gears fishing the species; the one named by
                ``observed.gear`` (or the only one) is fitted, the rest stay fixed
            observed: Observed catch-at-length histogram
            config: Calibration configuration (grid size and objective weights)

        Returns:
            ObjectivePayload

        Raises:
            StructuralInputError: On inconsistent species, gear or catch data
        """
        config = config or CalibrationConfig()
        obs = validate_observed_catch(observed)
        if obs.species != species.species:
            raise StructuralInputError(
                "observed catch belongs to another species", species=species.species, value=obs.species
            )

        gears = tuple(validate_gear(g) for g in gears)
        fitted, fixed = _select_fitted_gear(species.species, gears, obs.gear)

        w, dw = make_grid(species, config.grid.no_w)
        growth = growth_rate(species, w)
        check_growth(species, w, growth)

        if species.biomass_cutoff is None:
            mask = np.ones_like(w, dtype=bool)
        else:
            mask = w >= species.biomass_cutoff
        if not mask.any():
            raise StructuralInputError(
                "biomass cutoff lies above maximum weight", species=species.species, value=species.biomass_cutoff
            )

        yield_lambda = config.objective.yield_lambda
        production_lambda = config.objective.production_lambda
        biomass_target = species.biomass_observed
        if biomass_target is None:
            logger.warning(
                f"No observed biomass for {species.species}: catch magnitude is unconstrained, "
                f"yield and production terms disabled"
            )
            biomass_target = 1.0
            yield_lambda = production_lambda = 0.0

        yield_target = obs.yield_observed
        production_target = (
            obs.production_observed if obs.production_observed is not None else species.production_observed
        )
        if yield_target is None:
            yield_lambda = 0.0
        if production_target is None:
            production_lambda = 0.0

        bin_lower = np.asarray(obs.length, dtype=float)
        dl = np.asarray(obs.dl, dtype=float)
        overlap = length_overlap_matrix(species, w, dw, bin_lower, dl)
        if not overlap.any():
            raise StructuralInputError(
                "catch length bins lie outside the species' size range",
                species=species.species, value=(float(bin_lower[0]), float(bin_lower[-1] + dl[-1])),
            )

        payload = ObjectivePayload(
            species=species.species,
            gear=fitted,
            fixed_gears=fixed,
            param_names=param_names_for(fitted),
            w=w,
            dw=dw,
            length=species.length(w),
            growth=growth,
            log_growth_upstream=log_positive(growth[:-1]),
            mortality_shape=background_mortality(species, w, 1.0),
            f_other=fishing_mortality(species, fixed, w),
            effort=float(fitted.effort),
            overlap=overlap,
            count=np.asarray(obs.count, dtype=float),
            dl=dl,
            log_biomass_weight=np.where(mask, np.log(w * dw), -np.inf),
            production_weight=np.where(mask, growth * dw, 0.0),
            biomass_target=float(biomass_target),
            yield_target=yield_target,
            production_target=production_target,
            yield_lambda=float(yield_lambda),
            production_lambda=float(production_lambda),
            proportion_floor=config.objective.proportion_floor,
        )
        logger.debug(
            f"Catch objective for {species.species}/{fitted.gear}: {len(bin_lower)} bins, "
            f"params={payload.param_names}, yield_lambda={yield_lambda}, production_lambda={production_lambda}"
        )
        return payload


# =============================================================================
# OBJECTIVE
# =============================================================================

class CalibrationObjective:
    """
    Differentiable catch objective for one species.

    Usage:
        payload = ObjectiveBuilder.from_params(species, gears, observed)
        objective = CalibrationObjective(payload)
        value, grad = objective.value_and_grad(theta)
    """

    def __init__(self, payload: ObjectivePayload):
        self.payload = payload
        self.param_names = payload.param_names
        self._observed_bins = np.flatnonzero(payload.count > 0)
        self._observed_proportion = payload.count / payload.count.sum()

        self._value_fn = jax.jit(self._loss)
        self._value_and_grad_fn = jax.jit(jax.value_and_grad(self._loss))
        self._value_and_grad_internal_fn = jax.jit(jax.value_and_grad(self._internal_loss))
        self._outputs_fn = jax.jit(self._outputs)

    @classmethod
    def from_record(
        cls,
        record: Any,
        observed: ObservedCatch,
        config: Optional[CalibrationConfig] = None,
    ) -> 'CalibrationObjective':
        return cls(ObjectiveBuilder.build(record, observed, config))

    @property
    def species(self) -> str:
        return self.payload.species

    @property
    def gear(self) -> GearParams:
        return self.payload.gear

    # -------------------------------------------------------------------------
    # Forward model (JAX)
    # -------------------------------------------------------------------------

    def _forward(self, theta):
        p = self.payload
        values = {name: theta[i] for i, name in enumerate(p.param_names)}

        l50 = values['l50']
        selectivity = ascending_limb(p.length, values['ratio'] * l50, l50, jnp)
        if p.dome:
            l50_right = l50 + values['d50']
            selectivity = selectivity * descending_limb(
                p.length, l50_right, values['r_right'] * l50_right, jnp
            )
        f_fit = p.effort * values['catchability'] * selectivity

        mortality = values['mu_mat'] * p.mortality_shape + p.f_other + f_fit
        log_n = steady_state_log_abundance(p.log_growth_upstream, p.growth, mortality, p.dw, jnp)
        log_biomass = logsumexp(log_n + p.log_biomass_weight)
        n = jnp.exp(log_n - log_biomass + jnp.log(p.biomass_target))

        catch = f_fit * n * p.dw
        return {
            'n': n,
            'fishing_mortality': f_fit,
            'predicted_catch': p.overlap @ catch,
            'yield': jnp.sum(catch * p.w),
            'production': jnp.sum(n * p.production_weight),
        }

    def _terms(self, out):
        p = self.payload
        predicted = out['predicted_catch']
        total = jnp.maximum(jnp.sum(predicted), _TINY)
        proportion = jnp.maximum(predicted / total, p.proportion_floor)

        idx = self._observed_bins
        deviance = jnp.sum(p.count[idx] * jnp.log(self._observed_proportion[idx] / proportion[idx]))

        yield_penalty = 0.0
        if p.yield_lambda > 0:
            yield_penalty = p.yield_lambda * (out['yield'] / p.yield_target - 1.0) ** 2
        production_penalty = 0.0
        if p.production_lambda > 0:
            production_penalty = p.production_lambda * (out['production'] / p.production_target - 1.0) ** 2

        return {
            'deviance': deviance,
            'yield_penalty': yield_penalty,
            'production_penalty': production_penalty,
            'total': deviance + yield_penalty + production_penalty,
        }

    def _loss(self, theta):
        return self._terms(self._forward(theta))['total']

    def _internal_loss(self, x):
        return self._loss(from_internal(x, self.param_names, jnp))

    def _outputs(self, theta):
        out = self._forward(theta)
        out.update(self._terms(out))
        return out

    # -------------------------------------------------------------------------
    # Public interface
    # -------------------------------------------------------------------------

    def to_internal(self, theta: Sequence[float]) -> np.ndarray:
        return to_internal(theta, self.param_names)

    def from_internal(self, x: Sequence[float]) -> np.ndarray:
        return np.asarray(from_internal(np.asarray(x, dtype=float), self.param_names, np))

    def initial_theta(self, mu_mat: float) -> np.ndarray:
        """Theta encoding the fitted gear's current values."""
        return theta_from_gear(self.payload.gear, mu_mat)

    def gear_from_theta(self, theta: Sequence[float]) -> Tuple[GearParams, float]:
        return gear_from_theta(self.payload.gear, theta)

    def evaluate(self, theta: Sequence[float]) -> float:
        """Objective value at theta.

        Raises:
            StructuralInputError: If theta lies outside its domain
        """
        self.to_internal(theta)
        return float(self._value_fn(jnp.asarray(theta, dtype=jnp.float64)))

    def value_and_grad(self, theta: Sequence[float]) -> Tuple[float, np.ndarray]:
        """Objective value and its gradient with respect to theta."""
        self.to_internal(theta)
        value, grad = self._value_and_grad_fn(jnp.asarray(theta, dtype=jnp.float64))
        return float(value), np.asarray(grad, dtype=float)

    def value_and_grad_internal(self, x: Sequence[float]) -> Tuple[float, np.ndarray]:
        """Objective value and gradient in unconstrained coordinates."""
        value, grad = self._value_and_grad_internal_fn(jnp.asarray(x, dtype=jnp.float64))
        return float(value), np.asarray(grad, dtype=float)

    def predicted_catch(self, theta: Sequence[float]) -> np.ndarray:
        """Predicted numbers caught per observed length bin."""
        self.to_internal(theta)
        out = self._outputs_fn(jnp.asarray(theta, dtype=jnp.float64))
        return np.asarray(out['predicted_catch'], dtype=float)

    def components(self, theta: Sequence[float]) -> Dict[str, float]:
        """Objective terms and the yield and production behind them."""
        self.to_internal(theta)
        out = self._outputs_fn(jnp.asarray(theta, dtype=jnp.float64))
        keys = ('deviance', 'yield_penalty', 'production_penalty', 'total', 'yield', 'production')
        return {key: float(out[key]) for key in keys}
