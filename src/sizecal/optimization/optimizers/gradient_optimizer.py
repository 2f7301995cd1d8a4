# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""Gradient-Based Optimizer for the Catch Objective.

Runs a quasi-Newton method (scipy.optimize.minimize, L-BFGS-B by default,
BFGS optionally) on the objective's unconstrained internal coordinates,
using the exact JAX gradient.

Failures never propagate as exceptions. Each run ends in an
OptimizationResult whose ``reason`` tells the caller what went wrong:

- CONSTRUCTION_FAILURE: the starting theta is outside its domain or the
  fitted gear cannot be rebuilt from the result
- NON_CONVERGENT: the objective became non-finite, or the iteration cap
  was reached
- GRADIENT_FAILURE: the gradient became non-finite, or evaluating the
  objective raised a numeric error (FloatingPointError, ValueError, ...)

References:
    Byrd, R.H., Lu, P., Nocedal, J. and Zhu, C. (1995). A limited memory
    algorithm for bound constrained optimization. SIAM Journal on
    Scientific Computing, 16(5), 1190-1208.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Collection, Dict, Optional, Sequence, Tuple

import numpy as np
from scipy.optimize import minimize

from sizecal.core.config import OptimizerConfig
from sizecal.core.exceptions import StructuralInputError
from sizecal.core.mixins import LoggingMixin

# scipy status codes counted as convergence; 1 is the iteration cap
_STATUS_SUCCESS = 0
_STATUS_PRECISION_LOSS = 2

# Raised by numpy, scipy or jax when the forward model or its gradient
# breaks down numerically
_NUMERIC_ERRORS = (FloatingPointError, OverflowError, ZeroDivisionError, ValueError)


class FailureReason(Enum):
    """Why an optimizer run did not produce a usable fit."""
    NONE = 'none'
    CONSTRUCTION_FAILURE = 'construction_failure'
    NON_CONVERGENT = 'non_convergent'
    GRADIENT_FAILURE = 'gradient_failure'


@dataclass(frozen=True, eq=False)
class OptimizationResult:
    """
    Outcome of one optimizer run.

    Attributes:
        theta: Fitted parameters (best finite point on failure)
        theta0: Starting parameters after flooring
        param_names: Names matching the entries of theta
        objective: Objective value at theta (nan if never evaluated)
        converged: True if the run ended at a finite stationary point
        reason: FailureReason.NONE on success
        message: Diagnostic text from scipy or the failure
        n_iterations: Optimizer iterations
        n_evaluations: Objective and gradient evaluations
    """
    theta: np.ndarray
    theta0: np.ndarray
    param_names: Tuple[str, ...]
    objective: float
    converged: bool
    reason: FailureReason
    message: str = ''
    n_iterations: int = 0
    n_evaluations: int = 0

    def as_dict(self) -> Dict[str, float]:
        return {name: float(value) for name, value in zip(self.param_names, self.theta)}


class _NonFiniteEvaluation(Exception):
    """Aborts scipy when the objective or gradient stops being finite."""

    def __init__(self, reason: FailureReason, message: str):
        self.reason = reason
        super().__init__(message)


class GradientOptimizer(LoggingMixin):
    """
    Minimize a CalibrationObjective from a starting theta.

    Example:
        >>> optimizer = GradientOptimizer(OptimizerConfig(method='L-BFGS-B'))
        >>> result = optimizer.run(objective, theta0)
        >>> if result.converged:
        ...     gear, mu_mat = objective.gear_from_theta(result.theta)
    """

    def __init__(self, config: Optional[OptimizerConfig] = None, logger: Optional[logging.Logger] = None):
        self.optimizer_config = config or OptimizerConfig()
        self.logger = logger

    def _options(self) -> Dict[str, Any]:
        cfg = self.optimizer_config
        if cfg.method == 'L-BFGS-B':
            return {'maxiter': cfg.max_iterations, 'ftol': cfg.ftol, 'gtol': cfg.gtol}
        return {'maxiter': cfg.max_iterations, 'gtol': cfg.gtol}

    def floor_catchability(self, theta: Sequence[float], param_names: Sequence[str]) -> np.ndarray:
        theta = np.array(theta, dtype=float)
        if 'catchability' in param_names:
            idx = list(param_names).index('catchability')
            theta[idx] = max(theta[idx], self.optimizer_config.catchability_floor)
        return theta

    def run(
        self,
        objective: Any,
        theta0: Sequence[float],
        fixed: Optional[Collection[str]] = None,
    ) -> OptimizationResult:
        """
        Run the optimizer.

        Args:
            objective: CalibrationObjective
            theta0: Starting parameters, ordered as ``objective.param_names``
            fixed: Parameter names held at their starting values

        Returns:
            OptimizationResult
        """
        names = tuple(objective.param_names)
        theta0 = self.floor_catchability(theta0, names)

        def _result(theta, value, converged, reason, message, nit=0, nfev=0):
            return OptimizationResult(
                theta=np.asarray(theta, dtype=float),
                theta0=theta0,
                param_names=names,
                objective=float(value),
                converged=converged,
                reason=reason,
                message=message,
                n_iterations=nit,
                n_evaluations=nfev,
            )

        try:
            x0 = objective.to_internal(theta0)
        except StructuralInputError as e:
            self.logger.warning(f"Invalid starting parameters for {objective.species}: {e}")
            return _result(theta0, np.nan, False, FailureReason.CONSTRUCTION_FAILURE, str(e))

        fixed = set(fixed or ())
        unknown = fixed.difference(names)
        if unknown:
            return _result(
                theta0, np.nan, False, FailureReason.CONSTRUCTION_FAILURE,
                f"cannot fix unknown parameters {sorted(unknown)}",
            )
        free = np.array([i for i, name in enumerate(names) if name not in fixed], dtype=int)

        best = {'x': x0.copy(), 'value': np.inf}
        counter = {'nfev': 0}

        def fun(x_free: np.ndarray) -> Tuple[float, np.ndarray]:
            x = x0.copy()
            x[free] = x_free
            counter['nfev'] += 1
            try:
                value, grad = objective.value_and_grad_internal(x)
            except _NUMERIC_ERRORS as e:
                raise _NonFiniteEvaluation(
                    FailureReason.GRADIENT_FAILURE, f"evaluation failed: {type(e).__name__}: {e}"
                ) from e
            if not np.isfinite(value):
                raise _NonFiniteEvaluation(FailureReason.NON_CONVERGENT, f"objective is {value}")
            if not np.all(np.isfinite(grad)):
                raise _NonFiniteEvaluation(FailureReason.GRADIENT_FAILURE, "gradient is not finite")
            if value < best['value']:
                best['x'], best['value'] = x, value
            return value, grad[free]

        if free.size == 0:
            try:
                value, _ = fun(x0[free])
            except _NonFiniteEvaluation as e:
                return _result(theta0, np.nan, False, e.reason, str(e), nfev=counter['nfev'])
            return _result(theta0, value, True, FailureReason.NONE, 'all parameters fixed', nfev=1)

        try:
            fun(x0[free])
            res = minimize(
                fun, x0[free], jac=True,
                method=self.optimizer_config.method,
                options=self._options(),
            )
        except _NonFiniteEvaluation as e:
            self.logger.warning(f"Optimizer aborted for {objective.species}: {e}")
            theta = objective.from_internal(best['x'])
            return _result(theta, best['value'] if np.isfinite(best['value']) else np.nan,
                           False, e.reason, str(e), nfev=counter['nfev'])
        except _NUMERIC_ERRORS as e:
            self.logger.warning(f"Optimizer failed for {objective.species}: {type(e).__name__}: {e}")
            theta = objective.from_internal(best['x'])
            return _result(theta, best['value'] if np.isfinite(best['value']) else np.nan,
                           False, FailureReason.GRADIENT_FAILURE, f"{type(e).__name__}: {e}",
                           nfev=counter['nfev'])

        x = x0.copy()
        x[free] = res.x
        theta = objective.from_internal(x)
        value = float(res.fun)
        message = str(res.message)

        if not np.isfinite(value):
            return _result(theta, value, False, FailureReason.NON_CONVERGENT, message,
                           res.nit, counter['nfev'])
        if res.status not in (_STATUS_SUCCESS, _STATUS_PRECISION_LOSS):
            self.logger.info(
                f"{objective.species}: {self.optimizer_config.method} stopped without converging "
                f"after {res.nit} iterations ({message})"
            )
            return _result(theta, value, False, FailureReason.NON_CONVERGENT, message,
                           res.nit, counter['nfev'])

        try:
            objective.gear_from_theta(theta)
        except StructuralInputError as e:
            return _result(theta, value, False, FailureReason.CONSTRUCTION_FAILURE, str(e),
                           res.nit, counter['nfev'])

        self.logger.debug(
            f"{objective.species}: converged to {value:.6g} in {res.nit} iterations "
            f"({counter['nfev']} evaluations)"
        )
        return _result(theta, value, True, FailureReason.NONE, message, res.nit, counter['nfev'])
