# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""Table adapters for species, gear, catch and diet data."""

from .tables import (
    apply_kernel_fits,
    apply_targets,
    diet_matrix_from_frame,
    ecopath_targets,
    gear_params_from_frame,
    gear_params_to_frame,
    observed_catch_from_frame,
    species_params_from_frame,
    species_params_to_frame,
)

__all__ = [
    'apply_kernel_fits',
    'apply_targets',
    'diet_matrix_from_frame',
    'ecopath_targets',
    'gear_params_from_frame',
    'gear_params_to_frame',
    'observed_catch_from_frame',
    'species_params_from_frame',
    'species_params_to_frame',
]
