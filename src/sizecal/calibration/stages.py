# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""
Calibration stage tags.

Every species record carries the stage it has reached. A stage operation
may run when the record is at the stage directly before it, or at the
stage itself (re-running a stage is allowed and is a no-op for the
idempotent rescalings).
"""

import functools
from dataclasses import replace
from enum import IntEnum
from typing import Any, Callable, Optional

from sizecal.core.exceptions import StageOrderViolation


class CalibrationStage(IntEnum):
    """Calibration stages in the order they run."""
    RAW = 0
    GROWTH_MATCHED = 1
    STEADY_STATE = 2
    BIOMASS_MATCHED = 3
    CATCH_MATCHED = 4
    CONSUMPTION_MATCHED = 5
    DIET_MATCHED = 6


def predecessor(stage: CalibrationStage) -> Optional[CalibrationStage]:
    if stage == CalibrationStage.RAW:
        return None
    return CalibrationStage(stage - 1)


def check_stage_order(species: str, current: CalibrationStage, requested: CalibrationStage) -> None:
    """
    Raises:
        StageOrderViolation: Unless ``current`` is ``requested`` or its predecessor
    """
    if current not in (requested, predecessor(requested)):
        raise StageOrderViolation(species, requested, current)


def stage_operation(stage: CalibrationStage) -> Callable:
    """Decorate a ``record -> record`` function as the operation reaching ``stage``.

    The wrapper checks the stage order before running and tags the
    returned record with ``stage``.
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(record: Any, *args, **kwargs) -> Any:
            check_stage_order(record.species, record.stage, stage)
            result = func(record, *args, **kwargs)
            return replace(result, stage=stage)

        wrapper.stage = stage
        return wrapper
    return decorator
