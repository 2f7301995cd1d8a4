# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""
Calibration Pipeline.

Drives every species through the calibration stages in order:

    RAW -> GROWTH_MATCHED -> STEADY_STATE -> BIOMASS_MATCHED
        -> CATCH_MATCHED -> CONSUMPTION_MATCHED -> DIET_MATCHED

Species are independent and may be calibrated in parallel. Structural
input errors and numeric divergence abort only the affected species and
are collected in a CalibrationReport; a StageOrderViolation is a
programming error and propagates.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from sizecal.core.config import CalibrationConfig
from sizecal.core.exceptions import NumericDivergenceError, StructuralInputError
from sizecal.core.mixins import ConfigMixin, LoggingMixin
from sizecal.models.sizespectrum.model import solve_steady_state
from sizecal.models.sizespectrum.parameters import (
    GearParams,
    ObservedCatch,
    SpeciesParams,
    complete_species_params,
    validate_gear,
)
from sizecal.optimization.objectives.catch_objective import CalibrationObjective, perturb_theta
from sizecal.optimization.optimizers.gradient_optimizer import GradientOptimizer, OptimizationResult

from .record import SpeciesCalibration
from .rescaling import (
    find_steady_state,
    match_biomasses,
    match_consumption,
    match_diet,
    match_growth,
    resolve_mu_mat,
)
from .stages import CalibrationStage, stage_operation

logger = logging.getLogger(__name__)

STATUS_OK = 'ok'
STATUS_FAILED = 'failed'


# =============================================================================
# CATCH STAGE
# =============================================================================

@stage_operation(CalibrationStage.CATCH_MATCHED)
def match_catch(
    record: SpeciesCalibration,
    observed: Optional[ObservedCatch] = None,
    config: Optional[CalibrationConfig] = None,
    optimizer: Optional[GradientOptimizer] = None,
) -> SpeciesCalibration:
    """
    Fit selectivity, catchability and mu_mat to the observed catch.

    The first attempt starts from the record's current gear and mu_mat;
    later attempts start from jittered copies. The first converged run is
    written back, and the steady state is re-solved and re-normalized to
    the observed biomass.

    Raises:
        StructuralInputError: If the catch data or gear are inconsistent
        NumericDivergenceError: If every attempt fails
    """
    if observed is None:
        logger.info(f"No observed catch for {record.species}; fishing parameters left unchanged")
        return record

    config = config or CalibrationConfig()
    optimizer = optimizer or GradientOptimizer(config.optimizer)
    sp = record.params
    previous = record.require_state()

    objective = CalibrationObjective.from_record(record, observed, config)
    theta0 = objective.initial_theta(resolve_mu_mat(sp, config.default_mu_mat))
    names = objective.param_names

    rng = np.random.default_rng(config.optimizer.seed)
    jitter = config.optimizer.retry_jitter
    attempts: List[OptimizationResult] = []
    accepted = None
    for attempt in range(config.optimizer.retries + 1):
        start = theta0
        if attempt > 0:
            start = perturb_theta(theta0, names, rng.uniform(1 - jitter, 1 + jitter, size=len(names)))
        result = optimizer.run(objective, start)
        attempts.append(result)
        if result.converged:
            accepted = result
            break
        logger.warning(
            f"Catch fit for {sp.species} attempt {attempt + 1} failed: "
            f"{result.reason.value} ({result.message})"
        )

    if accepted is None:
        reasons = ', '.join(r.reason.value for r in attempts)
        raise NumericDivergenceError(
            f"catch fit for '{sp.species}' failed in all {len(attempts)} attempts ({reasons})",
            species=sp.species, attempts=len(attempts),
        )

    fitted_gear, mu_mat = objective.gear_from_theta(accepted.theta)
    gears = tuple(fitted_gear if g.gear == fitted_gear.gear else g for g in record.gears)
    sp = replace(sp, mu_mat=mu_mat)
    biomass_target = sp.biomass_observed if sp.biomass_observed is not None else previous.biomass()
    state = solve_steady_state(sp, gears, config.grid.no_w, biomass_target=biomass_target)

    logger.info(
        f"Catch matched for {sp.species} in {len(attempts)} attempt(s): objective={accepted.objective:.6g}, "
        f"l50={fitted_gear.l50:.3g}, catchability={fitted_gear.catchability:.3g}, mu_mat={mu_mat:.3g}"
    )
    return replace(record, params=sp, gears=gears, state=state, optimization=accepted)


# =============================================================================
# REPORT
# =============================================================================

@dataclass(frozen=True)
class SpeciesReport:
    """Outcome of one species' calibration."""
    species: str
    stage: CalibrationStage
    status: str
    error_type: Optional[str] = None
    error: Optional[str] = None
    objective: Optional[float] = None


def _failure_entry(species: str, stage: CalibrationStage, error: Exception) -> SpeciesReport:
    return SpeciesReport(
        species=species,
        stage=stage,
        status=STATUS_FAILED,
        error_type=type(error).__name__,
        error=str(error),
    )


@dataclass
class CalibrationReport:
    """Per-species calibration outcomes."""
    entries: Dict[str, SpeciesReport] = field(default_factory=dict)

    def add(self, entry: SpeciesReport) -> None:
        self.entries[entry.species] = entry

    @property
    def succeeded(self) -> List[str]:
        return [name for name, e in self.entries.items() if e.status == STATUS_OK]

    @property
    def failed(self) -> List[str]:
        return [name for name, e in self.entries.items() if e.status == STATUS_FAILED]

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                'species': e.species,
                'stage': e.stage.name,
                'status': e.status,
                'error_type': e.error_type,
                'error': e.error,
                'objective': e.objective,
            }
            for e in self.entries.values()
        ]
        return pd.DataFrame(rows, columns=['species', 'stage', 'status', 'error_type', 'error', 'objective'])


# =============================================================================
# PIPELINE
# =============================================================================

class CalibrationPipeline(LoggingMixin, ConfigMixin):
    """
    Calibrate a set of species.

    Example:
        >>> pipeline = CalibrationPipeline(CalibrationConfig(max_workers=4))
        >>> records, report = pipeline.run(species, gears, observed)
        >>> report.failed
        []
    """

    def __init__(
        self,
        config: Optional[Any] = None,
        logger: Optional[logging.Logger] = None,
        optimizer: Optional[GradientOptimizer] = None,
    ):
        self.config = config
        self.logger = logger
        self.optimizer = optimizer or GradientOptimizer(self.config.optimizer)

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    def create_records(
        self,
        species: Iterable[SpeciesParams],
        gears: Iterable[GearParams] = (),
    ) -> Dict[str, SpeciesCalibration]:
        """Group gears by species into RAW records; gears of unknown species are dropped."""
        records = {sp.species: SpeciesCalibration(params=sp) for sp in species}
        by_species: Dict[str, List[GearParams]] = {name: [] for name in records}
        for gear in gears:
            if gear.species not in records:
                self.logger.warning(f"Gear '{gear.gear}' fishes unknown species '{gear.species}'; ignored")
                continue
            by_species[gear.species].append(gear)
        return {
            name: replace(record, gears=tuple(by_species[name]))
            for name, record in records.items()
        }

    # -------------------------------------------------------------------------
    # Stage operations bound to this pipeline's configuration
    # -------------------------------------------------------------------------

    def match_growth(self, record: SpeciesCalibration) -> SpeciesCalibration:
        return match_growth(record, self.config)

    def steady_state(self, record: SpeciesCalibration) -> SpeciesCalibration:
        return find_steady_state(record, self.config)

    def match_biomasses(self, record: SpeciesCalibration) -> SpeciesCalibration:
        return match_biomasses(record, self.config)

    def match_catch(self, record: SpeciesCalibration, observed: Optional[ObservedCatch] = None) -> SpeciesCalibration:
        return match_catch(record, observed, self.config, self.optimizer)

    def match_consumption(self, record: SpeciesCalibration) -> SpeciesCalibration:
        return match_consumption(record, self.config)

    def match_diet(self, record: SpeciesCalibration, diet: Optional[Mapping[str, float]] = None) -> SpeciesCalibration:
        return match_diet(record, diet)

    # -------------------------------------------------------------------------
    # Driver
    # -------------------------------------------------------------------------

    def prepare(self, record: SpeciesCalibration) -> SpeciesCalibration:
        """Fill default physiology and validate the record's species and gears."""
        return replace(
            record,
            params=complete_species_params(record.params),
            gears=tuple(validate_gear(g) for g in record.gears),
        )

    def calibrate_species(
        self,
        record: SpeciesCalibration,
        observed: Optional[ObservedCatch] = None,
        diet: Optional[Mapping[str, float]] = None,
    ) -> Tuple[SpeciesCalibration, SpeciesReport]:
        """
        Run every remaining stage for one species.

        Returns:
            The last successfully calibrated record and its report entry.
            Structural and numeric failures end the species' calibration and
            are reported, not raised.
        """
        steps = (
            self.match_growth,
            self.steady_state,
            self.match_biomasses,
            lambda r: self.match_catch(r, observed),
            self.match_consumption,
            lambda r: self.match_diet(r, diet),
        )
        try:
            if record.stage == CalibrationStage.RAW:
                record = self.prepare(record)
            # steps[k] reaches stage k + 1
            for step in steps[int(record.stage):]:
                record = step(record)
        except (StructuralInputError, NumericDivergenceError) as e:
            self.logger.error(f"Calibration of {record.species} stopped at {record.stage.name}: {e}")
            return record, _failure_entry(record.species, record.stage, e)

        objective = record.optimization.objective if record.optimization is not None else None
        return record, SpeciesReport(
            species=record.species, stage=record.stage, status=STATUS_OK, objective=objective,
        )

    def run(
        self,
        species: Sequence[SpeciesParams],
        gears: Sequence[GearParams] = (),
        observed: Optional[Mapping[str, ObservedCatch]] = None,
        diets: Optional[Mapping[str, Mapping[str, float]]] = None,
        failures: Optional[Mapping[str, Exception]] = None,
    ) -> Tuple[Dict[str, SpeciesCalibration], CalibrationReport]:
        """
        Calibrate all species.

        Args:
            species: Species parameters
            gears: Gears, matched to species by name
            observed: Observed catch keyed by species
            diets: Diet rows (prey -> proportion) keyed by predator
            failures: Errors found before calibration (e.g. while reading
                input tables) keyed by species; those species stay at RAW
                and are reported as failed

        Returns:
            (records keyed by species, CalibrationReport)
        """
        observed = dict(observed or {})
        diets = dict(diets or {})
        failures = dict(failures or {})
        records = self.create_records(species, gears)
        for name in set(observed).difference(records).difference(failures):
            self.logger.warning(f"Observed catch for unknown species '{name}' ignored")

        def _work(name: str) -> Tuple[SpeciesCalibration, SpeciesReport]:
            return self.calibrate_species(records[name], observed.get(name), diets.get(name))

        names = [name for name in records if name not in failures]
        self.logger.info(f"Calibrating {len(names)} species with {self.config.max_workers} worker(s)")
        if self.config.max_workers > 1:
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
                outcomes = list(executor.map(_work, names))
        else:
            outcomes = [_work(name) for name in names]

        calibrated = dict(zip(names, outcomes))
        report = CalibrationReport()
        results: Dict[str, SpeciesCalibration] = {}
        for name in list(records) + [n for n in failures if n not in records]:
            if name in calibrated:
                results[name], entry = calibrated[name]
            else:
                if name in records:
                    results[name] = records[name]
                entry = _failure_entry(name, CalibrationStage.RAW, failures[name])
            report.add(entry)

        self.logger.info(
            f"Calibration finished: {len(report.succeeded)} succeeded, {len(report.failed)} failed"
        )
        return results, report
