# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""
Core mixins for sizecal classes.

Provides the logging mixin and a typed-config mixin that calibration
components build upon.
"""

import logging
from typing import Any, Optional


class LoggingMixin:
    """
    Mixin providing standardized logger access.

    Ensures a logger is always available, defaulting to one named after the
    class if none is explicitly set.
    """

    @property
    def logger(self) -> logging.Logger:
        """Get the logger instance."""
        _logger = getattr(self, '_logger', None)
        if _logger is None:
            module = self.__class__.__module__
            name = self.__class__.__name__
            self._logger = logging.getLogger(f"{module}.{name}")
            return self._logger
        return _logger

    @logger.setter
    def logger(self, value: Optional[logging.Logger]) -> None:
        """Set the logger instance."""
        self._logger = value


class ConfigMixin:
    """
    Mixin for classes holding a ``CalibrationConfig``.

    Falls back to the default configuration when none was given.
    """

    @property
    def config(self) -> Any:
        _config = getattr(self, '_config', None)
        if _config is None:
            from sizecal.core.config import CalibrationConfig
            self._config = CalibrationConfig()
            return self._config
        return _config

    @config.setter
    def config(self, value: Any) -> None:
        if isinstance(value, dict):
            from sizecal.core.config import CalibrationConfig
            value = CalibrationConfig.from_dict(value)
        self._config = value
