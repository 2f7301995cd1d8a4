# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""
Factory methods for creating calibration configurations.

- from_dict_factory: Build from a flat upper-case dictionary or a nested one
- from_file_factory: Load from a YAML file

Flat keys are routed to the section model declaring them as an alias, so
``{'YIELD_LAMBDA': 0.0, 'NO_W': 300}`` and
``{'objective': {'yield_lambda': 0.0}, 'grid': {'no_w': 300}}`` are
equivalent.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from sizecal.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def _section_aliases(model) -> Dict[str, str]:
    return {
        (field.alias or name): name
        for name, field in model.model_fields.items()
    }


def from_dict_factory(values: Optional[Dict[str, Any]] = None):
    """Create a CalibrationConfig from a flat or nested dictionary.

    Raises:
        ConfigurationError: On unknown keys or invalid values
    """
    from .models import SECTION_MODELS, CalibrationConfig

    remaining = dict(values or {})
    kwargs: Dict[str, Any] = {}

    for section, model in SECTION_MODELS.items():
        section_values = remaining.pop(section, None)
        if section_values is None:
            section_values = {}
        elif not isinstance(section_values, dict):
            raise ConfigurationError(
                f"Config section '{section}' must be a mapping, got {type(section_values).__name__}"
            )
        else:
            section_values = dict(section_values)

        for alias in _section_aliases(model):
            if alias in remaining:
                section_values[alias] = remaining.pop(alias)
        kwargs[section] = section_values

    kwargs.update(remaining)

    try:
        return CalibrationConfig(**kwargs)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid calibration configuration: {e}") from e


def from_file_factory(path: Union[str, Path]):
    """Load a CalibrationConfig from a YAML file.

    Raises:
        ConfigurationError: If the file is missing or cannot be parsed
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            file_config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Could not parse configuration file {path}: {e}") from e

    if not isinstance(file_config, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")

    logger.debug(f"Loaded calibration configuration from {path}")
    return from_dict_factory(file_config)
