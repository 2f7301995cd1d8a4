# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""Optimizers for the catch objective."""

from .gradient_optimizer import FailureReason, GradientOptimizer, OptimizationResult
from .multistart import (
    IdentifiabilityReport,
    MultiStartSummary,
    identifiability_report,
    profile_objective,
    run_multistart,
)

__all__ = [
    'FailureReason',
    'GradientOptimizer',
    'IdentifiabilityReport',
    'MultiStartSummary',
    'OptimizationResult',
    'identifiability_report',
    'profile_objective',
    'run_multistart',
]
