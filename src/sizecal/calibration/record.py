# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""Per-species calibration record."""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from sizecal.core.exceptions import StructuralInputError
from sizecal.models.sizespectrum.model import SizeSpectrumState
from sizecal.models.sizespectrum.parameters import GearParams, SpeciesParams
from sizecal.optimization.optimizers.gradient_optimizer import OptimizationResult

from .stages import CalibrationStage


@dataclass(frozen=True, eq=False)
class SpeciesCalibration:
    """
    Everything the calibration knows about one species.

    Records are immutable; each stage operation returns a new record tagged
    with the stage it completed.

    Attributes:
        params: Species parameters
        gears: Gears fishing the species
        stage: Last completed stage
        state: Current steady state (from STEADY_STATE on)
        diet: Prey proportions including external food (after DIET_MATCHED)
        optimization: Result of the accepted catch fit
    """
    params: SpeciesParams
    gears: Tuple[GearParams, ...] = ()
    stage: CalibrationStage = CalibrationStage.RAW
    state: Optional[SizeSpectrumState] = None
    diet: Optional[Dict[str, float]] = None
    optimization: Optional[OptimizationResult] = None

    @property
    def species(self) -> str:
        return self.params.species

    def require_state(self) -> SizeSpectrumState:
        if self.state is None:
            raise StructuralInputError(
                "no steady state has been computed", species=self.species, stage=self.stage.name
            )
        return self.state
