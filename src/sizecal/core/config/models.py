# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""
Calibration configuration models.

Contains configuration classes for the calibration engine:
GridConfig, ObjectiveConfig, OptimizerConfig, MultiStartConfig, and the
parent CalibrationConfig.
"""

from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sizecal.core.constants import ModelDefaults, Numerics

# Standard ConfigDict for all config models
FROZEN_CONFIG = ConfigDict(extra='forbid', populate_by_name=True, frozen=True)

OptimizerMethodType = Literal['L-BFGS-B', 'BFGS']


class GridConfig(BaseModel):
    """Weight grid settings"""
    model_config = FROZEN_CONFIG

    no_w: int = Field(default=ModelDefaults.NO_W, alias='NO_W', ge=20, le=5000)


class ObjectiveConfig(BaseModel):
    """Catch objective weights.

    The relative scaling of the catch-shape likelihood and the two penalty
    terms is a calibration choice; a weight of 0 disables its term.
    """
    model_config = FROZEN_CONFIG

    yield_lambda: float = Field(default=1.0, alias='YIELD_LAMBDA', ge=0)
    production_lambda: float = Field(default=1.0, alias='PRODUCTION_LAMBDA', ge=0)
    proportion_floor: float = Field(default=Numerics.PROPORTION_FLOOR, alias='PROPORTION_FLOOR', gt=0)


class OptimizerConfig(BaseModel):
    """Gradient-based optimizer settings"""
    model_config = FROZEN_CONFIG

    method: OptimizerMethodType = Field(default='L-BFGS-B', alias='OPTIMIZER_METHOD')
    max_iterations: int = Field(default=1000, alias='MAX_ITERATIONS', ge=1)
    ftol: float = Field(default=1e-14, alias='FTOL', gt=0)
    gtol: float = Field(default=1e-9, alias='GTOL', gt=0)
    catchability_floor: float = Field(default=Numerics.CATCHABILITY_FLOOR, alias='CATCHABILITY_FLOOR', gt=0)
    retries: int = Field(default=2, alias='RETRIES', ge=0)
    retry_jitter: float = Field(default=0.1, alias='RETRY_JITTER', ge=0, lt=1.0)
    seed: Optional[int] = Field(default=None, alias='OPTIMIZER_SEED')


class MultiStartConfig(BaseModel):
    """Multi-start robustness analysis settings"""
    model_config = FROZEN_CONFIG

    n_starts: int = Field(default=30, alias='N_STARTS', ge=1)
    shape_jitter: Tuple[float, float] = Field(default=(0.8, 1.2), alias='SHAPE_JITTER')
    rate_jitter: Tuple[float, float] = Field(default=(0.2, 2.0), alias='RATE_JITTER')
    outlier_iqr_factor: float = Field(default=2.0, alias='OUTLIER_IQR_FACTOR', ge=0)
    convergence_band: float = Field(default=0.5, alias='CONVERGENCE_BAND', gt=0)
    max_workers: int = Field(default=1, alias='MULTISTART_MAX_WORKERS', ge=1)
    seed: Optional[int] = Field(default=None, alias='MULTISTART_SEED')

    @field_validator('shape_jitter', 'rate_jitter')
    @classmethod
    def _check_range(cls, value: Tuple[float, float]) -> Tuple[float, float]:
        lo, hi = value
        if not 0 < lo <= hi:
            raise ValueError(f"jitter range must satisfy 0 < lo <= hi, got {value}")
        return value


class CalibrationConfig(BaseModel):
    """Top-level calibration configuration"""
    model_config = FROZEN_CONFIG

    grid: GridConfig = Field(default_factory=GridConfig)
    objective: ObjectiveConfig = Field(default_factory=ObjectiveConfig)
    optimizer: OptimizerConfig = Field(default_factory=OptimizerConfig)
    multistart: MultiStartConfig = Field(default_factory=MultiStartConfig)
    default_mu_mat: float = Field(default=ModelDefaults.MU_MAT, alias='DEFAULT_MU_MAT', gt=0)
    max_workers: int = Field(default=1, alias='MAX_WORKERS', ge=1)

    @classmethod
    def from_dict(cls, values: Optional[dict] = None) -> 'CalibrationConfig':
        from .factories import from_dict_factory
        return from_dict_factory(values)

    @classmethod
    def from_file(cls, path) -> 'CalibrationConfig':
        from .factories import from_file_factory
        return from_file_factory(path)

    def to_dict(self, flatten: bool = True) -> dict:
        """Dump to a dictionary keyed by upper-case aliases (flat) or by section."""
        if not flatten:
            return self.model_dump(by_alias=False)
        flat = {}
        for section in SECTION_MODELS:
            flat.update(getattr(self, section).model_dump(by_alias=True))
        flat['DEFAULT_MU_MAT'] = self.default_mu_mat
        flat['MAX_WORKERS'] = self.max_workers
        return flat


SECTION_MODELS = {
    'grid': GridConfig,
    'objective': ObjectiveConfig,
    'optimizer': OptimizerConfig,
    'multistart': MultiStartConfig,
}
