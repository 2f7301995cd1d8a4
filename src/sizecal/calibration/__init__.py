# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""Staged calibration of size-spectrum species records."""

from .pipeline import CalibrationPipeline, CalibrationReport, SpeciesReport, match_catch
from .record import SpeciesCalibration
from .rescaling import find_steady_state, match_biomasses, match_consumption, match_diet, match_growth
from .stages import CalibrationStage

__all__ = [
    'CalibrationPipeline',
    'CalibrationReport',
    'CalibrationStage',
    'SpeciesCalibration',
    'SpeciesReport',
    'find_steady_state',
    'match_biomasses',
    'match_catch',
    'match_consumption',
    'match_diet',
    'match_growth',
]
