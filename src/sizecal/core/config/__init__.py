# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""Typed configuration for the calibration engine."""

from .models import (
    FROZEN_CONFIG,
    CalibrationConfig,
    GridConfig,
    MultiStartConfig,
    ObjectiveConfig,
    OptimizerConfig,
)

__all__ = [
    'FROZEN_CONFIG',
    'CalibrationConfig',
    'GridConfig',
    'MultiStartConfig',
    'ObjectiveConfig',
    'OptimizerConfig',
]
