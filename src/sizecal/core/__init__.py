# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""Core utilities: exceptions, constants, mixins and configuration."""

from .exceptions import (
    ConfigurationError,
    NumericDivergenceError,
    OptimizationError,
    SizecalError,
    StageOrderViolation,
    StructuralInputError,
    ValidationError,
)

__all__ = [
    'ConfigurationError',
    'NumericDivergenceError',
    'OptimizationError',
    'SizecalError',
    'StageOrderViolation',
    'StructuralInputError',
    'ValidationError',
]
